"""Output columns per run kind.

New output fields are added here and nowhere else.
"""

from __future__ import annotations

from typing import Any

from feedsync.services.commerce.detection import pick_product_link, translate_commerce_reason
from feedsync.services.datastore.types import FieldType
from feedsync.services.normalize import normalize_account_key, normalize_url_key
from feedsync.services.records.types import (
    FieldMapping,
    MappingTable,
    ProjectionContext,
    SideFetchKind,
)
from feedsync.services.runs.types import RunKind
from feedsync.services.source.items import AccountProfile, VideoItem

# Numeric columns that keep their fractional part.
FRACTIONAL_FIELDS = frozenset({"interaction_rate", "post_frequency"})

POST_TYPE_COMMERCE = "commerce video"
POST_TYPE_CONTENT = "content video"


def _is_commercial(ctx: ProjectionContext) -> bool:
    return bool(ctx.commerce and ctx.commerce.is_commercial)


def _product_links(ctx: ProjectionContext) -> list[str]:
    if ctx.commerce is None:
        return []
    return [link for link in (pick_product_link(p) for p in ctx.commerce.products) if link]


def _first_product_link(_item: Any, ctx: ProjectionContext) -> str:
    links = _product_links(ctx)
    return links[0] if links else ""


def _all_product_links(_item: Any, ctx: ProjectionContext) -> str:
    return "\n".join(_product_links(ctx))


def _commerce_reasons(_item: Any, ctx: ProjectionContext) -> str:
    if ctx.commerce is None:
        return ""
    return ", ".join(translate_commerce_reason(reason) for reason in ctx.commerce.reasons)


def _product_count(_item: Any, ctx: ProjectionContext) -> Any:
    if not _is_commercial(ctx):
        return ""
    return ctx.commerce.products_total


def _product_info(_item: Any, ctx: ProjectionContext) -> str:
    return ctx.commerce.product_text if ctx.commerce else ""


def _published_at(item: VideoItem, _ctx: ProjectionContext) -> int:
    return item.create_time * 1000


def _post_type(_item: VideoItem, ctx: ProjectionContext) -> str:
    return POST_TYPE_COMMERCE if _is_commercial(ctx) else POST_TYPE_CONTENT


_COMMERCE_MAPPINGS = (
    FieldMapping("is_commercial", FieldType.CHECKBOX, lambda _i, ctx: _is_commercial(ctx)),
    FieldMapping("product_link", FieldType.URL, _first_product_link),
    FieldMapping("product_links_all", FieldType.TEXT, _all_product_links),
    FieldMapping("commerce_reasons", FieldType.TEXT, _commerce_reasons),
    FieldMapping("product_count", FieldType.TEXT, _product_count),
    FieldMapping("product_info", FieldType.TEXT, _product_info),
)

_TRANSCRIPT_MAPPING = FieldMapping(
    "transcript",
    FieldType.TEXT,
    lambda item, _ctx: item.share_link,
    side_fetch=SideFetchKind.TRANSCRIPT,
)
_COVER_MAPPING = FieldMapping(
    "cover",
    FieldType.ATTACHMENT,
    lambda item, _ctx: item.cover_url,
    side_fetch=SideFetchKind.COVER,
)


def _search_video_mappings(query_field: str) -> tuple[FieldMapping, ...]:
    return (
        FieldMapping(query_field, FieldType.TEXT, lambda _i, ctx: ctx.query_label),
        FieldMapping("published_at", FieldType.DATETIME, _published_at),
        FieldMapping("video_url", FieldType.URL, lambda item, _ctx: item.share_link),
        _COVER_MAPPING,
        FieldMapping("play_count", FieldType.NUMBER, lambda item, _ctx: item.stats.play_count),
        FieldMapping("like_count", FieldType.NUMBER, lambda item, _ctx: item.stats.like_count),
        FieldMapping("comment_count", FieldType.NUMBER, lambda item, _ctx: item.stats.comment_count),
        FieldMapping("share_count", FieldType.NUMBER, lambda item, _ctx: item.stats.share_count),
        FieldMapping("collect_count", FieldType.NUMBER, lambda item, _ctx: item.stats.collect_count),
        FieldMapping("interaction_rate", FieldType.NUMBER, lambda item, _ctx: item.stats.interaction_rate),
        FieldMapping("account_name", FieldType.TEXT, lambda item, _ctx: item.author_handle),
        FieldMapping("title", FieldType.TEXT, lambda item, _ctx: item.description),
        FieldMapping("region", FieldType.TEXT, lambda item, _ctx: item.region),
        FieldMapping("download_url", FieldType.URL, lambda item, _ctx: item.download_url),
        *_COMMERCE_MAPPINGS,
        _TRANSCRIPT_MAPPING,
    )


ACCOUNT_VIDEO_MAPPINGS = (
    FieldMapping("video_url", FieldType.URL, lambda item, _ctx: item.share_link),
    _COVER_MAPPING,
    FieldMapping("published_at", FieldType.DATETIME, _published_at),
    FieldMapping("title", FieldType.TEXT, lambda item, _ctx: item.description),
    FieldMapping("play_count", FieldType.NUMBER, lambda item, _ctx: item.stats.play_count),
    FieldMapping("like_count", FieldType.NUMBER, lambda item, _ctx: item.stats.like_count),
    FieldMapping("comment_count", FieldType.NUMBER, lambda item, _ctx: item.stats.comment_count),
    FieldMapping("share_count", FieldType.NUMBER, lambda item, _ctx: item.stats.share_count),
    FieldMapping("collect_count", FieldType.NUMBER, lambda item, _ctx: item.stats.collect_count),
    FieldMapping("interaction_rate", FieldType.NUMBER, lambda item, _ctx: item.stats.interaction_rate),
    FieldMapping("region", FieldType.TEXT, lambda item, _ctx: item.region),
    FieldMapping("music_title", FieldType.TEXT, lambda item, _ctx: item.music_title),
    FieldMapping("download_url", FieldType.URL, lambda item, _ctx: item.download_url),
    FieldMapping("post_type", FieldType.TEXT, _post_type),
    *_COMMERCE_MAPPINGS,
    _TRANSCRIPT_MAPPING,
)


def _account_key_source(profile: AccountProfile) -> str:
    return profile.account_url or profile.username or profile.account_name


def _or_zero(value: Any) -> Any:
    return 0 if value is None else value


ACCOUNT_INFO_MAPPINGS = (
    FieldMapping("account_name", FieldType.TEXT, lambda p, _ctx: p.account_name or p.username),
    FieldMapping(
        "account_url",
        FieldType.URL,
        lambda p, _ctx: normalize_account_key(_account_key_source(p)),
    ),
    FieldMapping("instagram_url", FieldType.URL, lambda p, _ctx: p.instagram_url),
    FieldMapping("youtube_url", FieldType.URL, lambda p, _ctx: p.youtube_url),
    FieldMapping("follower_count", FieldType.NUMBER, lambda p, _ctx: _or_zero(p.followers)),
    FieldMapping("like_count", FieldType.NUMBER, lambda p, _ctx: _or_zero(p.likes)),
    FieldMapping("video_count", FieldType.NUMBER, lambda p, _ctx: _or_zero(p.videos)),
    FieldMapping("average_play_count", FieldType.NUMBER, lambda p, _ctx: _or_zero(p.average_play_count)),
    FieldMapping("interaction_rate", FieldType.NUMBER, lambda p, _ctx: _or_zero(p.interaction_rate)),
    FieldMapping("email", FieldType.TEXT, lambda p, _ctx: p.email),
    FieldMapping("video_location", FieldType.TEXT, lambda p, _ctx: p.video_location),
    FieldMapping("has_shop", FieldType.CHECKBOX, lambda p, _ctx: bool(p.has_shop)),
    FieldMapping("last_post_time", FieldType.DATETIME, lambda p, _ctx: p.last_post_time or None),
    FieldMapping("post_frequency", FieldType.NUMBER, lambda p, _ctx: _or_zero(p.post_frequency)),
    FieldMapping("fetched_at", FieldType.DATETIME, lambda p, _ctx: p.fetched_at_or_now()),
)


MAPPING_TABLES: dict[RunKind, MappingTable] = {
    RunKind.KEYWORD: MappingTable(
        mappings=_search_video_mappings("keyword"),
        key_field="video_url",
        key_source=lambda item: item.share_link,
        key_normalizer=normalize_url_key,
        required_fields=frozenset({"keyword", "video_url"}),
    ),
    RunKind.HASHTAG: MappingTable(
        mappings=_search_video_mappings("hashtag"),
        key_field="video_url",
        key_source=lambda item: item.share_link,
        key_normalizer=normalize_url_key,
        required_fields=frozenset({"hashtag", "video_url"}),
    ),
    RunKind.ACCOUNT_VIDEOS: MappingTable(
        mappings=ACCOUNT_VIDEO_MAPPINGS,
        key_field="video_url",
        key_source=lambda item: item.share_link,
        key_normalizer=normalize_url_key,
        required_fields=frozenset({"title", "video_url"}),
    ),
    RunKind.ACCOUNT_INFO: MappingTable(
        mappings=ACCOUNT_INFO_MAPPINGS,
        key_field="account_url",
        key_source=_account_key_source,
        key_normalizer=normalize_account_key,
        required_fields=frozenset({"account_name", "account_url"}),
    ),
}


def mapping_table_for(kind: RunKind) -> MappingTable:
    return MAPPING_TABLES[kind]
