from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from feedsync.db.base import Base, TimestampMixin
from feedsync.services.datastore.types import FieldType

FIELD_TYPE_DB_ENUM = Enum(
    FieldType,
    name="store_field_type",
    values_callable=lambda members: [member.value for member in members],
)


class StoreTable(Base):
    __tablename__ = "store_tables"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class StoreField(Base):
    __tablename__ = "store_fields"
    __table_args__ = (UniqueConstraint("table_id", "name", name="uq_store_fields_table_name"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    table_id: Mapped[int] = mapped_column(
        ForeignKey("store_tables.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    field_type: Mapped[FieldType] = mapped_column(FIELD_TYPE_DB_ENUM, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class StoreRecord(TimestampMixin, Base):
    __tablename__ = "store_records"
    __table_args__ = (Index("ix_store_records_table_id_id", "table_id", "id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    table_id: Mapped[int] = mapped_column(
        ForeignKey("store_tables.id", ondelete="CASCADE"), nullable=False
    )


class StoreCell(Base):
    __tablename__ = "store_cells"

    record_id: Mapped[int] = mapped_column(
        ForeignKey("store_records.id", ondelete="CASCADE"), primary_key=True
    )
    field_id: Mapped[int] = mapped_column(
        ForeignKey("store_fields.id", ondelete="CASCADE"), primary_key=True
    )
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
