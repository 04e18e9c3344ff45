from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable


class FieldType(StrEnum):
    TEXT = "text"
    NUMBER = "number"
    DATETIME = "datetime"
    CHECKBOX = "checkbox"
    URL = "url"
    ATTACHMENT = "attachment"


@dataclass(frozen=True)
class FieldMeta:
    field_id: str
    name: str
    field_type: FieldType


@dataclass(frozen=True)
class StoredRecord:
    record_id: str
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScanPage:
    records: list[StoredRecord]
    has_more: bool
    next_page_token: str | None = None


@runtime_checkable
class Datastore(Protocol):
    """Row/column store a run writes into. Cell maps are keyed by field id."""

    async def list_fields(self) -> list[FieldMeta]:
        ...

    async def ensure_field(self, name: str, field_type: FieldType) -> FieldMeta:
        ...

    async def scan_records(self, page_token: str | None, *, page_size: int) -> ScanPage:
        ...

    async def set_cell_value(self, field_id: str, record_id: str, value: Any) -> None:
        ...

    async def add_record(self, cells: dict[str, Any]) -> str | None:
        ...


def supports_batch_insert(store: object) -> bool:
    return callable(getattr(store, "add_records", None))
