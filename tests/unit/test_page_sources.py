from __future__ import annotations

import json

import httpx
import pytest

from feedsync.services.runs.types import RunConfig, RunKind, RunQuery
from feedsync.services.source.client import ContentSourceClient
from feedsync.services.source.items import AccountProfile, VideoItem
from feedsync.services.source.queries import (
    AccountInfoPageSource,
    AccountVideosPageSource,
    SearchPageSource,
    build_page_source,
    hashtag_query,
)


def _client(handler) -> ContentSourceClient:
    return ContentSourceClient(
        base_url="https://source.example.com",
        user_id="u",
        tenant_key="t",
        transport=httpx.MockTransport(handler),
    )


def _build(kind: RunKind, client: ContentSourceClient, **query):
    return build_page_source(
        RunConfig(kind=kind, query=RunQuery(**query)),
        client=client,
        default_region="US",
        keyword_page_size=15,
        account_page_size=30,
    )


def test_hashtag_query_normalizes_leading_marks() -> None:
    assert hashtag_query(" ##desk setup ") == "#desk setup"
    assert hashtag_query("#") == ""


@pytest.mark.asyncio
async def test_hashtag_runs_search_with_tag_and_drop_authorless_items(make_video_payload) -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "search_item_list": [
                    {"aweme_info": make_video_payload("1")},
                    {"aweme_info": {"aweme_id": "ad"}},
                ],
                "has_more": 0,
            },
        )

    async with _client(handler) as client:
        source = _build(RunKind.HASHTAG, client, term="desk", region="GB")
        page = await source.next_page("0")

    assert isinstance(source, SearchPageSource)
    assert bodies[0]["keyword"] == "#desk"
    assert bodies[0]["region"] == "GB"
    assert [type(item) for item in page.items] == [VideoItem]
    assert page.items[0].share_link == "https://www.tiktok.com/@creator/video/1"


@pytest.mark.asyncio
async def test_account_videos_source_uses_handle_from_profile_link() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"aweme_list": [], "has_more": False})

    async with _client(handler) as client:
        source = _build(RunKind.ACCOUNT_VIDEOS, client, term="https://www.tiktok.com/@Ada?lang=en")
        await source.next_page("0")

    assert isinstance(source, AccountVideosPageSource)
    assert bodies == [{"username": "ada", "count": "30", "offset": "0", "region": "US"}]


@pytest.mark.asyncio
async def test_account_info_source_walks_unique_handles() -> None:
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        username = json.loads(request.content)["username"]
        requested.append(username)
        return httpx.Response(200, json={"username": username, "followers": 10})

    async with _client(handler) as client:
        source = _build(RunKind.ACCOUNT_INFO, client, handles=("@ada", "https://www.tiktok.com/@ADA", "bob"))
        first = await source.next_page("0")
        second = await source.next_page(first.next_cursor)
        done = await source.next_page("2")

    assert isinstance(source, AccountInfoPageSource)
    assert requested == ["ada", "bob"]
    assert (first.has_more, first.next_cursor) == (True, "1")
    assert (second.has_more, second.next_cursor) == (False, None)
    assert isinstance(first.items[0], AccountProfile)
    assert done.items == []
