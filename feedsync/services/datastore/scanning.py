from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
import logging
from typing import Any

from feedsync.logging_utils import structured_log
from feedsync.services.datastore.cells import extract_text_from_cell, is_record_empty
from feedsync.services.datastore.types import Datastore, FieldMeta, FieldType
from feedsync.services.runs.cancellation import CancellationToken

logger = logging.getLogger(__name__)

DEFAULT_SCAN_PAGE_SIZE = 200
DEFAULT_KEY_SCAN_LIMIT = 5000
DEFAULT_EMPTY_SLOT_SCAN_LIMIT = 500


@dataclass(frozen=True)
class FieldWriters:
    """Writable fields for one run, by field name."""

    by_name: dict[str, FieldMeta] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.by_name

    def __len__(self) -> int:
        return len(self.by_name)

    def get(self, name: str) -> FieldMeta | None:
        return self.by_name.get(name)

    def to_cells(self, values: dict[str, Any]) -> dict[str, Any]:
        return {
            self.by_name[name].field_id: value
            for name, value in values.items()
            if name in self.by_name
        }


async def ensure_fields(
    store: Datastore,
    specs: Iterable[tuple[str, FieldType]],
) -> FieldWriters:
    """Create missing fields and return the ones that can be written.

    An existing field whose type differs from the requested one is left
    untouched and excluded from the writers.
    """
    existing = {meta.name: meta for meta in await store.list_fields()}
    writers: dict[str, FieldMeta] = {}
    for name, field_type in specs:
        meta = existing.get(name)
        if meta is None:
            meta = await store.ensure_field(name, field_type)
            existing[name] = meta
            structured_log(
                logger,
                "info",
                "datastore.field_created",
                field_name=name,
                field_type=field_type.value,
            )
        if meta.field_type != field_type:
            structured_log(
                logger,
                "warning",
                "datastore.field_type_mismatch",
                field_name=name,
                expected_type=field_type.value,
                actual_type=meta.field_type.value,
            )
            continue
        writers[name] = meta
    return FieldWriters(by_name=writers)


async def collect_existing_keys(
    store: Datastore,
    field_name: str,
    normalizer: Callable[[str], str],
    *,
    token: CancellationToken | None = None,
    max_scan: int = DEFAULT_KEY_SCAN_LIMIT,
    page_size: int = DEFAULT_SCAN_PAGE_SIZE,
) -> set[str]:
    keys: set[str] = set()
    target = next((meta for meta in await store.list_fields() if meta.name == field_name), None)
    if target is None:
        return keys

    page_token: str | None = None
    has_more = True
    scanned = 0
    while has_more and scanned < max_scan:
        if token is not None and token.cancelled:
            break
        page = await store.scan_records(page_token, page_size=page_size)
        scanned += len(page.records)
        for record in page.records:
            key = normalizer(extract_text_from_cell(record.fields.get(target.field_id)))
            if key:
                keys.add(key)
        has_more = page.has_more and scanned < max_scan
        page_token = page.next_page_token

    structured_log(
        logger,
        "debug",
        "datastore.existing_keys_collected",
        field_name=field_name,
        scanned=scanned,
        key_count=len(keys),
    )
    return keys


async def find_empty_records(
    store: Datastore,
    *,
    token: CancellationToken | None = None,
    max_scan: int = DEFAULT_EMPTY_SLOT_SCAN_LIMIT,
    page_size: int = DEFAULT_SCAN_PAGE_SIZE,
) -> list[str]:
    empty_ids: list[str] = []
    page_token: str | None = None
    has_more = True
    scanned = 0
    while has_more:
        if token is not None and token.cancelled:
            break
        page = await store.scan_records(page_token, page_size=page_size)
        scanned += len(page.records)
        empty_ids.extend(record.record_id for record in page.records if is_record_empty(record.fields))
        has_more = page.has_more and scanned < max_scan
        page_token = page.next_page_token

    structured_log(
        logger,
        "info",
        "datastore.empty_slots_scanned",
        scanned=scanned,
        scan_limit=max_scan,
        empty_count=len(empty_ids),
    )
    return empty_ids


class EmptySlotPool:
    """First-come pool of reusable row ids. A taken slot never returns."""

    def __init__(self, record_ids: Iterable[str] = ()) -> None:
        self._slots: deque[str] = deque(record_ids)
        self.consumed = 0

    def __len__(self) -> int:
        return len(self._slots)

    def take(self) -> str | None:
        if not self._slots:
            return None
        self.consumed += 1
        return self._slots.popleft()
