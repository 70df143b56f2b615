"""
Module: hr_kernel.db.base
Responsibility: Declarative base and portable column types shared by every
    workflow table (instances, transitions, side-effect outbox, leases,
    repayment schedules).
Architecture position: Kernel > DB.  Imported by models/ and by domain
    modules that add their own tables; imports nothing from the kernel.

Column conventions:
    - Primary keys are uuid4 values kept in a 36-character string column,
      so the same schema runs on PostgreSQL and SQLite.
    - Money (salary, advance amounts, installments) is Numeric(18, 2).
    - Timestamps go in and come out as aware UTC datetimes.  SQLite loses
      the offset on storage, so it is reattached on load.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID values stored as their canonical hyphenated text."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(str(value))


class UTCDateTime(TypeDecorator):
    """Aware datetime column; naive values are refused on write."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("UTCDateTime requires a timezone-aware datetime")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base: uuid4 ``id`` plus the annotation-to-column map."""

    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        datetime: UTCDateTime(),
        Decimal: Numeric(18, 2),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)
