from __future__ import annotations

import pytest

from feedsync.services.datastore.cells import extract_text_from_cell, is_cell_value_empty, is_record_empty
from feedsync.services.datastore.scanning import (
    EmptySlotPool,
    collect_existing_keys,
    ensure_fields,
    find_empty_records,
)
from feedsync.services.datastore.types import FieldType
from feedsync.services.normalize import normalize_url_key
from feedsync.services.runs.cancellation import CancellationToken


def test_cell_emptiness_rules() -> None:
    assert is_cell_value_empty(None)
    assert is_cell_value_empty("   ")
    assert is_cell_value_empty([])
    assert is_cell_value_empty([{"text": " "}])
    assert is_cell_value_empty({"link": ""})
    assert not is_cell_value_empty(0)
    assert not is_cell_value_empty(False)
    assert not is_cell_value_empty([{"name": "cover.jpg"}])
    assert is_record_empty({})
    assert is_record_empty({"a": None, "b": ""})
    assert not is_record_empty({"a": None, "b": 3})


def test_extract_text_from_cell_shapes() -> None:
    assert extract_text_from_cell([{"text": "https://a/1", "type": "url"}]) == "https://a/1"
    assert extract_text_from_cell({"link": "https://a/2"}) == "https://a/2"
    assert extract_text_from_cell(3.0) == "3"
    assert extract_text_from_cell(0) == ""
    assert extract_text_from_cell(None) == ""


@pytest.mark.asyncio
async def test_ensure_fields_creates_missing_and_skips_type_mismatch(memory_store) -> None:
    memory_store.add_field("title", FieldType.NUMBER)
    writers = await ensure_fields(
        memory_store,
        [("video_url", FieldType.URL), ("title", FieldType.TEXT)],
    )

    assert "video_url" in writers
    assert "title" not in writers
    assert len(writers) == 1
    assert len(memory_store.fields) == 2


@pytest.mark.asyncio
async def test_collect_existing_keys_normalizes_and_respects_limit(memory_store) -> None:
    memory_store.add_field("video_url", FieldType.URL)
    memory_store.add_row({"video_url": [{"text": "https://www.tiktok.com/@A/video/1?x=1"}]})
    memory_store.add_row({"video_url": "https://www.tiktok.com/@a/video/2"})
    memory_store.add_row({})
    memory_store.add_row({"video_url": "https://www.tiktok.com/@a/video/3"})

    keys = await collect_existing_keys(memory_store, "video_url", normalize_url_key, page_size=2)
    limited = await collect_existing_keys(
        memory_store,
        "video_url",
        normalize_url_key,
        max_scan=2,
        page_size=2,
    )

    assert keys == {
        "https://www.tiktok.com/@a/video/1",
        "https://www.tiktok.com/@a/video/2",
        "https://www.tiktok.com/@a/video/3",
    }
    assert limited == {"https://www.tiktok.com/@a/video/1", "https://www.tiktok.com/@a/video/2"}
    assert await collect_existing_keys(memory_store, "missing", normalize_url_key) == set()


@pytest.mark.asyncio
async def test_find_empty_records_in_scan_order(memory_store) -> None:
    memory_store.add_field("title", FieldType.TEXT)
    first = memory_store.add_row()
    memory_store.add_row({"title": "taken"})
    second = memory_store.add_row({"title": "  "})

    assert await find_empty_records(memory_store, page_size=1) == [first, second]

    token = CancellationToken("keyword")
    token.cancel()
    assert await find_empty_records(memory_store, token=token) == []


@pytest.mark.asyncio
async def test_collect_existing_keys_stops_between_pages_once_cancelled(memory_store) -> None:
    memory_store.add_field("video_url", FieldType.URL)
    for n in range(6):
        memory_store.add_row({"video_url": f"https://www.tiktok.com/@a/video/{n}"})
    token = CancellationToken("keyword")
    scan_calls: list[str | None] = []
    scan = memory_store.scan_records

    async def cancelling_scan(page_token, *, page_size):
        scan_calls.append(page_token)
        token.cancel()
        return await scan(page_token, page_size=page_size)

    memory_store.scan_records = cancelling_scan

    keys = await collect_existing_keys(
        memory_store,
        "video_url",
        normalize_url_key,
        token=token,
        page_size=2,
    )

    assert scan_calls == [None]
    assert keys == {"https://www.tiktok.com/@a/video/0", "https://www.tiktok.com/@a/video/1"}


def test_empty_slot_pool_hands_out_each_slot_once() -> None:
    pool = EmptySlotPool(["r1", "r2"])

    assert pool.take() == "r1"
    assert pool.take() == "r2"
    assert pool.take() is None
    assert pool.consumed == 2
    assert len(pool) == 0
