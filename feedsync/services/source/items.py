from __future__ import annotations

from dataclasses import dataclass, field
import time
from typing import Any

from feedsync.services.normalize import (
    DEFAULT_PLATFORM_BASE_URL,
    build_video_share_link,
    pick_cover_url,
)


def _as_int(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _first_url(block: Any) -> str:
    if not isinstance(block, dict):
        return ""
    url_list = block.get("url_list")
    if isinstance(url_list, list) and url_list and isinstance(url_list[0], str):
        return url_list[0]
    return ""


@dataclass(frozen=True)
class VideoStats:
    play_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    share_count: int = 0
    collect_count: int = 0

    @classmethod
    def from_api_dict(cls, data: Any) -> VideoStats:
        if not isinstance(data, dict):
            return cls()
        return cls(
            play_count=_as_int(data.get("play_count")),
            like_count=_as_int(data.get("digg_count")),
            comment_count=_as_int(data.get("comment_count")),
            share_count=_as_int(data.get("share_count")),
            collect_count=_as_int(data.get("collect_count")),
        )

    @property
    def interaction_rate(self) -> float:
        if self.play_count <= 0:
            return 0.0
        interactions = self.like_count + self.comment_count + self.collect_count + self.share_count
        return interactions / self.play_count


@dataclass(frozen=True)
class VideoItem:
    """One short video as returned by the search or account listing endpoints."""

    item_id: str
    author_handle: str
    description: str
    create_time: int
    share_link: str
    download_url: str
    cover_url: str
    region: str
    music_title: str
    stats: VideoStats
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_api_dict(
        cls,
        data: dict[str, Any],
        *,
        base_url: str = DEFAULT_PLATFORM_BASE_URL,
    ) -> VideoItem | None:
        """Decode one raw item; search results wrap it in ``aweme_info``.

        Returns None for entries without an author, which the source emits
        for ads and removed videos.
        """
        if not isinstance(data, dict):
            return None
        payload = data.get("aweme_info") if isinstance(data.get("aweme_info"), dict) else data
        author = payload.get("author")
        if not isinstance(author, dict) or not author:
            return None

        item_id = _as_text(payload.get("aweme_id"))
        author_handle = _as_text(author.get("unique_id"))
        share_info = payload.get("share_info") if isinstance(payload.get("share_info"), dict) else {}
        video = payload.get("video") if isinstance(payload.get("video"), dict) else {}
        music = payload.get("music") if isinstance(payload.get("music"), dict) else {}
        return cls(
            item_id=item_id,
            author_handle=author_handle,
            description=_as_text(payload.get("desc")),
            create_time=_as_int(payload.get("create_time")),
            share_link=build_video_share_link(
                share_url=payload.get("share_url"),
                share_info_url=share_info.get("share_url"),
                item_id=item_id,
                author_handle=author_handle,
                base_url=base_url,
            ),
            download_url=_first_url(video.get("play_addr")) or _first_url(video.get("download_addr")),
            cover_url=pick_cover_url(video),
            region=_as_text(payload.get("region")),
            music_title=_as_text(music.get("title")),
            stats=VideoStats.from_api_dict(payload.get("statistics")),
            raw=payload,
        )


@dataclass(frozen=True)
class AccountProfile:
    username: str = ""
    account_name: str = ""
    account_url: str = ""
    instagram_url: str = ""
    youtube_url: str = ""
    followers: int | None = None
    likes: int | None = None
    videos: int | None = None
    average_play_count: float | None = None
    interaction_rate: float | None = None
    email: str = ""
    video_location: str = ""
    has_shop: bool | None = None
    last_post_time: int | None = None
    post_frequency: float | None = None
    fetched_at: int | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_api_dict(cls, data: dict[str, Any]) -> AccountProfile:
        def optional_int(key: str) -> int | None:
            value = _as_float(data.get(key))
            return int(value) if value is not None else None

        has_shop = data.get("hasShop")
        return cls(
            username=_as_text(data.get("username")),
            account_name=_as_text(data.get("accountName")),
            account_url=_as_text(data.get("accountUrl")),
            instagram_url=_as_text(data.get("instagramUrl")),
            youtube_url=_as_text(data.get("youtubeUrl")),
            followers=optional_int("followers"),
            likes=optional_int("likes"),
            videos=optional_int("videos"),
            average_play_count=_as_float(data.get("averagePlayCount")),
            interaction_rate=_as_float(data.get("interactionRate")),
            email=_as_text(data.get("email")),
            video_location=_as_text(data.get("videoLocation")),
            has_shop=bool(has_shop) if has_shop is not None else None,
            last_post_time=optional_int("lastPostTime"),
            post_frequency=_as_float(data.get("postFrequency")),
            fetched_at=optional_int("fetchedAt"),
            raw=data,
        )

    def fetched_at_or_now(self) -> int:
        return self.fetched_at or int(time.time() * 1000)
