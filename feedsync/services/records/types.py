from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

from feedsync.services.commerce.detection import CommerceSignal
from feedsync.services.datastore.types import FieldType


class SideFetchKind(StrEnum):
    COVER = "cover"
    TRANSCRIPT = "transcript"


# Covers are attached before the row exists, transcripts after.
WRITE_BEFORE_SIDE_FETCHES = frozenset({SideFetchKind.COVER})


@dataclass
class ProjectionContext:
    query_label: str = ""
    commerce: CommerceSignal | None = None


@dataclass(frozen=True)
class FieldMapping:
    name: str
    field_type: FieldType
    extract: Callable[[Any, ProjectionContext], Any]
    side_fetch: SideFetchKind | None = None


@dataclass(frozen=True)
class MappingTable:
    mappings: tuple[FieldMapping, ...]
    key_field: str
    key_source: Callable[[Any], str]
    key_normalizer: Callable[[str], str]
    required_fields: frozenset[str] = frozenset()

    def resolve_selection(self, selected: Iterable[str]) -> frozenset[str]:
        return frozenset(selected) | self.required_fields

    def selected(self, selected: Iterable[str]) -> tuple[FieldMapping, ...]:
        names = self.resolve_selection(selected)
        return tuple(mapping for mapping in self.mappings if mapping.name in names)

    def field_specs(self, selected: Iterable[str]) -> list[tuple[str, FieldType]]:
        return [(mapping.name, mapping.field_type) for mapping in self.selected(selected)]

    def key_of(self, item: Any) -> str:
        return self.key_normalizer(self.key_source(item) or "")


@dataclass(frozen=True)
class PendingSideFetch:
    field_name: str
    kind: SideFetchKind
    source: str


@dataclass(frozen=True)
class ProjectedRecord:
    key: str
    fields: dict[str, Any]
    side_fetches: tuple[PendingSideFetch, ...] = ()
    item: Any = field(default=None, compare=False, repr=False)

    def with_field(self, name: str, value: Any) -> ProjectedRecord:
        return replace(self, fields={**self.fields, name: value})

    def side_fetches_for(self, kinds: Iterable[SideFetchKind]) -> list[PendingSideFetch]:
        wanted = set(kinds)
        return [pending for pending in self.side_fetches if pending.kind in wanted]
