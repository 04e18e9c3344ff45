"""Page sources: one adapter per run kind over the content source client."""

from __future__ import annotations

from typing import Any

from feedsync.services.normalize import (
    DEFAULT_PLATFORM_BASE_URL,
    extract_account_name,
)
from feedsync.services.runs.types import RunConfig, RunKind
from feedsync.services.source.client import ContentSourceClient
from feedsync.services.source.items import AccountProfile, VideoItem
from feedsync.services.source.types import SourcePage

INITIAL_CURSOR = "0"


def hashtag_query(tag: str) -> str:
    cleaned = tag.strip().lstrip("#").strip()
    return f"#{cleaned}" if cleaned else ""


def _decode_videos(raw_items: list[Any], base_url: str) -> list[VideoItem]:
    items = []
    for raw in raw_items:
        item = VideoItem.from_api_dict(raw, base_url=base_url)
        if item is not None:
            items.append(item)
    return items


class SearchPageSource:
    def __init__(
        self,
        *,
        client: ContentSourceClient,
        query: str,
        region: str,
        page_size: int,
        sort_type: str = "0",
        publish_time: str = "0",
        base_url: str = DEFAULT_PLATFORM_BASE_URL,
    ) -> None:
        self._client = client
        self._query = query
        self._region = region
        self._page_size = page_size
        self._sort_type = sort_type
        self._publish_time = publish_time
        self._base_url = base_url

    async def next_page(self, cursor: str) -> SourcePage:
        page = await self._client.search_videos(
            self._query,
            cursor=cursor,
            count=self._page_size,
            region=self._region,
            sort_type=self._sort_type,
            publish_time=self._publish_time,
        )
        return SourcePage(
            items=_decode_videos(page.items, self._base_url),
            has_more=page.has_more,
            next_cursor=page.next_cursor,
        )


class AccountVideosPageSource:
    def __init__(
        self,
        *,
        client: ContentSourceClient,
        username: str,
        region: str,
        page_size: int,
        base_url: str = DEFAULT_PLATFORM_BASE_URL,
    ) -> None:
        self._client = client
        self._username = username
        self._region = region
        self._page_size = page_size
        self._base_url = base_url

    async def next_page(self, cursor: str) -> SourcePage:
        page = await self._client.list_account_videos(
            self._username,
            cursor=cursor,
            count=self._page_size,
            region=self._region,
        )
        return SourcePage(
            items=_decode_videos(page.items, self._base_url),
            has_more=page.has_more,
            next_cursor=page.next_cursor,
        )


class AccountInfoPageSource:
    """Walks a list of handles, one profile per page; the cursor is the list position."""

    def __init__(self, *, client: ContentSourceClient, handles: list[str]) -> None:
        self._client = client
        self._handles = handles

    async def next_page(self, cursor: str) -> SourcePage:
        try:
            position = int(cursor or INITIAL_CURSOR)
        except ValueError:
            position = 0
        if position >= len(self._handles):
            return SourcePage(items=[], has_more=False, next_cursor=None)

        data = await self._client.fetch_account_info(self._handles[position])
        next_position = position + 1
        has_more = next_position < len(self._handles)
        return SourcePage(
            items=[AccountProfile.from_api_dict(data)],
            has_more=has_more,
            next_cursor=str(next_position) if has_more else None,
        )


def _unique_handles(raw_handles: tuple[str, ...], base_url: str) -> list[str]:
    handles: list[str] = []
    for raw in raw_handles:
        name = extract_account_name(raw, base_url=base_url)
        if name and name not in handles:
            handles.append(name)
    return handles


def build_page_source(
    config: RunConfig,
    *,
    client: ContentSourceClient,
    default_region: str,
    keyword_page_size: int,
    account_page_size: int,
    base_url: str = DEFAULT_PLATFORM_BASE_URL,
):
    region = config.query.region or default_region
    if config.kind == RunKind.KEYWORD:
        return SearchPageSource(
            client=client,
            query=config.query.term.strip(),
            region=region,
            page_size=keyword_page_size,
            sort_type=config.query.sort_type,
            publish_time=config.query.publish_time,
            base_url=base_url,
        )
    if config.kind == RunKind.HASHTAG:
        return SearchPageSource(
            client=client,
            query=hashtag_query(config.query.term),
            region=region,
            page_size=keyword_page_size,
            sort_type=config.query.sort_type,
            publish_time=config.query.publish_time,
            base_url=base_url,
        )
    if config.kind == RunKind.ACCOUNT_VIDEOS:
        return AccountVideosPageSource(
            client=client,
            username=extract_account_name(config.query.term, base_url=base_url),
            region=region,
            page_size=account_page_size,
            base_url=base_url,
        )
    handles = config.query.handles or ((config.query.term,) if config.query.term else ())
    return AccountInfoPageSource(client=client, handles=_unique_handles(handles, base_url))
