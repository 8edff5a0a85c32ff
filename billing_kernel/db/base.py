"""
Module: billing_kernel.db.base
Responsibility: Declarative base and shared column conventions for the two
    kernel tables (stored documents, sequence counters).
Architecture position: Kernel > DB.  Imported by models/ and services/;
    imports nothing from the kernel itself.

Invariants enforced:
    - Surrogate keys are uuid4 values in SQLAlchemy's portable ``Uuid``
      type (native on PostgreSQL, CHAR(32) on SQLite).
    - datetime columns are timezone-aware; int columns are BigInteger.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        UUID: Uuid(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)


class TimestampMixin:
    """``created_at`` / ``updated_at`` stamped by the writer from its clock."""

    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
