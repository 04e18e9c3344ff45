from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feedsync.db.models import StoreCell, StoreField, StoreRecord, StoreTable
from feedsync.logging_utils import structured_log
from feedsync.services.datastore.errors import DatastoreError
from feedsync.services.datastore.types import FieldMeta, FieldType, ScanPage, StoredRecord

logger = logging.getLogger(__name__)


def _field_meta(row: StoreField) -> FieldMeta:
    return FieldMeta(field_id=str(row.id), name=row.name, field_type=FieldType(row.field_type))


def _parse_id(raw: str, *, kind: str) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise DatastoreError(f"Invalid {kind} id: {raw!r}") from exc


class SqlTableStore:
    """One named table of the SQL-backed datastore."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        table_id: int,
        table_name: str,
    ) -> None:
        self._session_factory = session_factory
        self.table_id = table_id
        self.table_name = table_name

    @classmethod
    async def open(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        table_name: str,
    ) -> SqlTableStore:
        async with session_factory() as session:
            table = await session.scalar(select(StoreTable).where(StoreTable.name == table_name))
            if table is None:
                table = StoreTable(name=table_name)
                session.add(table)
                await session.commit()
                structured_log(logger, "info", "datastore.table_created", table_name=table_name)
            return cls(session_factory=session_factory, table_id=table.id, table_name=table_name)

    async def list_fields(self) -> list[FieldMeta]:
        async with self._session_factory() as session:
            result = await session.scalars(
                select(StoreField)
                .where(StoreField.table_id == self.table_id)
                .order_by(StoreField.position, StoreField.id)
            )
            return [_field_meta(row) for row in result]

    async def ensure_field(self, name: str, field_type: FieldType) -> FieldMeta:
        async with self._session_factory() as session:
            existing = await session.scalar(
                select(StoreField).where(
                    StoreField.table_id == self.table_id,
                    StoreField.name == name,
                )
            )
            if existing is not None:
                return _field_meta(existing)
            position = await session.scalar(
                select(func.count(StoreField.id)).where(StoreField.table_id == self.table_id)
            )
            row = StoreField(
                table_id=self.table_id,
                name=name,
                field_type=field_type,
                position=int(position or 0),
            )
            session.add(row)
            await session.commit()
            return _field_meta(row)

    async def scan_records(self, page_token: str | None, *, page_size: int) -> ScanPage:
        after_id = _parse_id(page_token, kind="page token") if page_token else 0
        limit = max(1, int(page_size))
        async with self._session_factory() as session:
            record_ids = list(
                await session.scalars(
                    select(StoreRecord.id)
                    .where(StoreRecord.table_id == self.table_id, StoreRecord.id > after_id)
                    .order_by(StoreRecord.id)
                    .limit(limit + 1)
                )
            )
            has_more = len(record_ids) > limit
            record_ids = record_ids[:limit]
            cells: dict[int, dict[str, Any]] = {record_id: {} for record_id in record_ids}
            if record_ids:
                result = await session.scalars(
                    select(StoreCell).where(StoreCell.record_id.in_(record_ids))
                )
                for cell in result:
                    cells[cell.record_id][str(cell.field_id)] = cell.value

        records = [StoredRecord(record_id=str(record_id), fields=cells[record_id]) for record_id in record_ids]
        next_token = str(record_ids[-1]) if has_more and record_ids else None
        return ScanPage(records=records, has_more=has_more, next_page_token=next_token)

    async def set_cell_value(self, field_id: str, record_id: str, value: Any) -> None:
        record_pk = _parse_id(record_id, kind="record")
        field_pk = _parse_id(field_id, kind="field")
        async with self._session_factory() as session:
            record = await session.get(StoreRecord, record_pk)
            if record is None or record.table_id != self.table_id:
                raise DatastoreError(f"Record {record_id} does not exist in table {self.table_name}")
            await self._require_field(session, field_pk)
            await session.merge(StoreCell(record_id=record_pk, field_id=field_pk, value=value))
            record.touch()
            await session.commit()

    async def add_record(self, cells: dict[str, Any]) -> str:
        ids = await self.add_records([cells])
        return ids[0]

    async def add_records(self, rows: list[dict[str, Any]]) -> list[str]:
        if not rows:
            return []
        async with self._session_factory() as session:
            for cells in rows:
                for field_id in cells:
                    await self._require_field(session, _parse_id(field_id, kind="field"))
            records = [StoreRecord(table_id=self.table_id) for _ in rows]
            session.add_all(records)
            await session.flush()
            for record, cells in zip(records, rows):
                session.add_all(
                    StoreCell(record_id=record.id, field_id=int(field_id), value=value)
                    for field_id, value in cells.items()
                )
            await session.commit()
            return [str(record.id) for record in records]

    async def add_empty_records(self, count: int) -> list[str]:
        return await self.add_records([{} for _ in range(max(0, count))])

    async def _require_field(self, session: AsyncSession, field_pk: int) -> None:
        row = await session.get(StoreField, field_pk)
        if row is None or row.table_id != self.table_id:
            raise DatastoreError(f"Field {field_pk} does not exist in table {self.table_name}")
