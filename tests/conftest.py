from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import pytest

from feedsync.logging_context import set_run_id
from feedsync.services.datastore.errors import DatastoreError
from feedsync.services.datastore.types import FieldMeta, FieldType, ScanPage, StoredRecord
from feedsync.services.source.types import SourcePage


class InMemoryDatastore:
    """Row/column store kept in dicts; failure hooks are plain attributes."""

    def __init__(self) -> None:
        self.fields: dict[str, FieldMeta] = {}
        self.rows: dict[str, dict[str, Any]] = {}
        self.failing_fill_ids: set[str] = set()
        self.reject_record: Callable[[dict[str, Any]], bool] | None = None
        self.add_record_calls = 0
        self._next_field = 1
        self._next_record = 1

    def add_field(self, name: str, field_type: FieldType) -> FieldMeta:
        meta = FieldMeta(field_id=f"fld{self._next_field}", name=name, field_type=field_type)
        self._next_field += 1
        self.fields[meta.field_id] = meta
        return meta

    def add_row(self, values: dict[str, Any] | None = None) -> str:
        record_id = f"rec{self._next_record}"
        self._next_record += 1
        by_name = {meta.name: meta.field_id for meta in self.fields.values()}
        self.rows[record_id] = {by_name[name]: value for name, value in (values or {}).items()}
        return record_id

    def values(self, record_id: str) -> dict[str, Any]:
        return {self.fields[field_id].name: value for field_id, value in self.rows[record_id].items()}

    def column(self, name: str) -> list[Any]:
        field_id = next(meta.field_id for meta in self.fields.values() if meta.name == name)
        return [row.get(field_id) for row in self.rows.values()]

    async def list_fields(self) -> list[FieldMeta]:
        return list(self.fields.values())

    async def ensure_field(self, name: str, field_type: FieldType) -> FieldMeta:
        for meta in self.fields.values():
            if meta.name == name:
                return meta
        return self.add_field(name, field_type)

    async def scan_records(self, page_token: str | None, *, page_size: int) -> ScanPage:
        ordered = list(self.rows.items())
        start = int(page_token or 0)
        window = ordered[start:start + page_size]
        has_more = start + page_size < len(ordered)
        return ScanPage(
            records=[StoredRecord(record_id=record_id, fields=dict(cells)) for record_id, cells in window],
            has_more=has_more,
            next_page_token=str(start + page_size) if has_more else None,
        )

    async def set_cell_value(self, field_id: str, record_id: str, value: Any) -> None:
        if record_id in self.failing_fill_ids:
            raise DatastoreError(f"row {record_id} is locked")
        if record_id not in self.rows:
            raise DatastoreError(f"row {record_id} does not exist")
        self.rows[record_id][field_id] = value

    async def add_record(self, cells: dict[str, Any]) -> str:
        self.add_record_calls += 1
        if self.reject_record is not None and self.reject_record(cells):
            raise DatastoreError("record rejected")
        record_id = f"rec{self._next_record}"
        self._next_record += 1
        self.rows[record_id] = dict(cells)
        return record_id


class BatchingDatastore(InMemoryDatastore):
    def __init__(self) -> None:
        super().__init__()
        self.batch_error: Exception | None = None
        self.batch_sizes: list[int] = []

    async def add_records(self, rows: list[dict[str, Any]]) -> list[str]:
        self.batch_sizes.append(len(rows))
        if self.batch_error is not None:
            raise self.batch_error
        ids = []
        for cells in rows:
            record_id = f"rec{self._next_record}"
            self._next_record += 1
            self.rows[record_id] = dict(cells)
            ids.append(record_id)
        return ids


class ScriptedPageSource:
    """Replays a fixed list of pages (or exceptions) and records each cursor asked for."""

    def __init__(self, pages: list[SourcePage | Exception]) -> None:
        self._pages = list(pages)
        self.cursors: list[str] = []

    async def next_page(self, cursor: str) -> SourcePage:
        self.cursors.append(cursor)
        if not self._pages:
            return SourcePage(items=[], has_more=False, next_cursor=None)
        page = self._pages.pop(0)
        if isinstance(page, Exception):
            raise page
        return page


def video_payload(
    item_id: str,
    *,
    author: str = "creator",
    plays: int = 100,
    likes: int = 10,
    cover: str | None = "https://cdn.example.com/cover.jpg",
    **extra: Any,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "aweme_id": item_id,
        "desc": f"video {item_id}",
        "create_time": 1_700_000_000,
        "author": {"unique_id": author},
        "share_url": f"https://www.tiktok.com/@{author}/video/{item_id}?lang=en",
        "region": "US",
        "statistics": {
            "play_count": plays,
            "digg_count": likes,
            "comment_count": 2,
            "share_count": 1,
            "collect_count": 3,
        },
        "video": {"cover": {"url_list": [cover]}} if cover else {},
        "music": {"title": "original sound"},
    }
    payload.update(extra)
    return payload


@pytest.fixture
def memory_store() -> InMemoryDatastore:
    return InMemoryDatastore()


@pytest.fixture
def batch_store() -> BatchingDatastore:
    return BatchingDatastore()


@pytest.fixture
def scripted_source() -> Callable[[list[SourcePage | Exception]], ScriptedPageSource]:
    return ScriptedPageSource


@pytest.fixture
def make_video_payload() -> Callable[..., dict[str, Any]]:
    return video_payload


@pytest.fixture(autouse=True)
def reset_run_context() -> Iterator[None]:
    set_run_id(None)
    yield
    set_run_id(None)
