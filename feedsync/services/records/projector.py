from __future__ import annotations

from collections.abc import Iterable
import logging
import math
from typing import Any

from feedsync.logging_utils import structured_log
from feedsync.services.commerce.detection import commerce_from_item, has_commerce_indicators
from feedsync.services.datastore.types import FieldType
from feedsync.services.records.mappings import FRACTIONAL_FIELDS
from feedsync.services.records.types import (
    MappingTable,
    PendingSideFetch,
    ProjectedRecord,
    ProjectionContext,
)

logger = logging.getLogger(__name__)

_SKIP = object()


def _as_number(raw: Any) -> float | None:
    if raw is None:
        return None
    if isinstance(raw, bool):
        return float(raw)
    if isinstance(raw, str) and not raw.strip():
        return 0.0
    try:
        number = float(raw)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def normalize_value(field_type: FieldType, field_name: str, raw: Any) -> Any:
    """Coerce an extracted value to the cell type; ``_SKIP`` drops the cell."""
    if field_type == FieldType.NUMBER:
        number = _as_number(raw)
        if number is None:
            return _SKIP
        if field_name in FRACTIONAL_FIELDS:
            return number
        if math.isinf(number):
            return _SKIP
        return math.trunc(number)

    if field_type == FieldType.CHECKBOX:
        return bool(raw)

    if field_type == FieldType.DATETIME:
        number = _as_number(raw)
        if number is None or math.isinf(number):
            return _SKIP
        return int(number) if number.is_integer() else number

    if field_type == FieldType.URL:
        return str(raw) if raw else ""

    if field_type == FieldType.ATTACHMENT:
        return raw if raw else _SKIP

    return "" if raw is None else str(raw)


class RecordProjector:
    """Turns decoded items into field maps for one run.

    The projector owns the run's seen-key set: it is seeded from the
    datastore before the run starts and only ever grows.
    """

    def __init__(
        self,
        *,
        table: MappingTable,
        selected_fields: Iterable[str],
        seen_keys: Iterable[str] = (),
    ) -> None:
        self._table = table
        self._mappings = table.selected(selected_fields)
        self._seen_keys: set[str] = set(seen_keys)

    @property
    def seen_key_count(self) -> int:
        return len(self._seen_keys)

    def has_seen(self, key: str) -> bool:
        return key in self._seen_keys

    def project(self, item: Any, context: ProjectionContext) -> ProjectedRecord | None:
        key = self._table.key_of(item)
        if not key or key in self._seen_keys:
            return None
        self._seen_keys.add(key)

        raw = getattr(item, "raw", None)
        if context.commerce is None and isinstance(raw, dict) and has_commerce_indicators(raw):
            context.commerce = commerce_from_item(raw)

        fields: dict[str, Any] = {}
        side_fetches: list[PendingSideFetch] = []
        for mapping in self._mappings:
            try:
                value = mapping.extract(item, context)
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                structured_log(
                    logger,
                    "warning",
                    "projection.field_extract_failed",
                    field_name=mapping.name,
                    error=str(exc),
                )
                continue
            if mapping.side_fetch is not None:
                if value:
                    side_fetches.append(
                        PendingSideFetch(field_name=mapping.name, kind=mapping.side_fetch, source=str(value))
                    )
                continue
            normalized = normalize_value(mapping.field_type, mapping.name, value)
            if normalized is _SKIP:
                continue
            fields[mapping.name] = normalized

        if not fields:
            return None
        return ProjectedRecord(key=key, fields=fields, side_fetches=tuple(side_fetches), item=item)
