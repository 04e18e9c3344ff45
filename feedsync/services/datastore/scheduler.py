"""Two-phase write-back: reuse empty rows first, then append in chunks."""

from __future__ import annotations

from collections import deque
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
import logging
from typing import Any

from feedsync.logging_utils import structured_log
from feedsync.services.datastore.errors import WriteFailureError
from feedsync.services.datastore.scanning import EmptySlotPool, FieldWriters
from feedsync.services.datastore.types import Datastore, supports_batch_insert
from feedsync.services.runs.cancellation import CancellationToken

logger = logging.getLogger(__name__)

DEFAULT_WRITE_CHUNK_SIZE = 50


@dataclass(frozen=True)
class _PendingRow:
    index: int
    cells: dict[str, Any]


@dataclass(frozen=True)
class PersistResult:
    filled: int = 0
    appended: int = 0
    dropped: int = 0
    assigned_ids: list[str] = field(default_factory=list)
    interrupted: bool = False

    @property
    def written(self) -> int:
        return self.filled + self.appended


class WriteScheduler:
    def __init__(
        self,
        *,
        store: Datastore,
        writers: FieldWriters,
        chunk_size: int = DEFAULT_WRITE_CHUNK_SIZE,
    ) -> None:
        self._store = store
        self._writers = writers
        self._chunk_size = max(1, int(chunk_size))

    async def persist(
        self,
        records: Sequence[Mapping[str, Any]],
        slots: EmptySlotPool,
        *,
        token: CancellationToken | None = None,
    ) -> PersistResult:
        """Write ``records`` (field name -> value) and report the row id of each.

        ``assigned_ids`` is indexed by input position; rows that were not
        written, or whose id the store did not report, hold "".
        """
        assigned_ids = [""] * len(records)
        fresh = deque(
            _PendingRow(index=index, cells=self._writers.to_cells(dict(values)))
            for index, values in enumerate(records)
        )

        filled, requeued, interrupted = await self._fill_phase(fresh, slots, assigned_ids, token)
        pending = list(fresh) + requeued

        appended = 0
        dropped = 0
        failure: str | None = None
        if pending and not interrupted:
            appended, dropped, interrupted, failure = await self._append_phase(
                pending,
                assigned_ids,
                token,
            )

        result = PersistResult(
            filled=filled,
            appended=appended,
            dropped=dropped,
            assigned_ids=assigned_ids,
            interrupted=interrupted,
        )
        structured_log(
            logger,
            "info",
            "write.batch_persisted",
            record_count=len(records),
            filled=filled,
            appended=appended,
            dropped=dropped,
            interrupted=interrupted,
        )
        if failure is not None:
            raise WriteFailureError(failure, failed_count=dropped, partial=result)
        return result

    async def _fill_phase(
        self,
        fresh: deque[_PendingRow],
        slots: EmptySlotPool,
        assigned_ids: list[str],
        token: CancellationToken | None,
    ) -> tuple[int, list[_PendingRow], bool]:
        filled = 0
        requeued: list[_PendingRow] = []
        while fresh and len(slots):
            if token is not None and token.cancelled:
                return filled, requeued, True
            record_id = slots.take()
            if record_id is None:
                break
            row = fresh.popleft()
            try:
                for field_id, value in row.cells.items():
                    await self._store.set_cell_value(field_id, record_id, value)
            except Exception as exc:
                structured_log(
                    logger,
                    "warning",
                    "write.fill_failed",
                    record_id=record_id,
                    record_index=row.index,
                    error=str(exc),
                )
                requeued.append(row)
                continue
            filled += 1
            assigned_ids[row.index] = record_id
        return filled, requeued, False

    async def _append_phase(
        self,
        pending: list[_PendingRow],
        assigned_ids: list[str],
        token: CancellationToken | None,
    ) -> tuple[int, int, bool, str | None]:
        appended = 0
        dropped = 0
        for start in range(0, len(pending), self._chunk_size):
            if token is not None and token.cancelled:
                return appended, dropped, True, None
            chunk = pending[start:start + self._chunk_size]
            if supports_batch_insert(self._store):
                try:
                    ids = await self._store.add_records([row.cells for row in chunk])
                except Exception as exc:
                    structured_log(
                        logger,
                        "warning",
                        "write.batch_insert_failed",
                        chunk_size=len(chunk),
                        error=str(exc),
                    )
                else:
                    for row, record_id in zip(chunk, ids or []):
                        if record_id:
                            assigned_ids[row.index] = str(record_id)
                    appended += len(chunk)
                    continue

            chunk_appended, chunk_dropped = await self._append_one_by_one(chunk, assigned_ids)
            appended += chunk_appended
            dropped += chunk_dropped
            if chunk_appended == 0 and chunk_dropped:
                return (
                    appended,
                    dropped,
                    False,
                    f"Datastore rejected all {chunk_dropped} records of a write chunk",
                )
        return appended, dropped, False, None

    async def _append_one_by_one(
        self,
        chunk: list[_PendingRow],
        assigned_ids: list[str],
    ) -> tuple[int, int]:
        appended = 0
        dropped = 0
        for row in chunk:
            try:
                record_id = await self._store.add_record(row.cells)
            except Exception as exc:
                dropped += 1
                structured_log(
                    logger,
                    "warning",
                    "write.record_dropped",
                    record_index=row.index,
                    error=str(exc),
                )
                continue
            if record_id:
                assigned_ids[row.index] = str(record_id)
            appended += 1
        return appended, dropped
