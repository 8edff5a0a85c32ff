"""
SequenceService -- gap-tolerant counters behind invoice numbers.

Responsibility:
    One row per sequence name (``invoice:electronics:GST``,
    ``invoice:furniture:202403``) in ``sequence_counters``. A caller locks
    the row, bumps it and gets the new value inside its own transaction.
    Invoice numbers never come from scanning existing invoices.

Architecture position:
    Kernel > Services. Flushes, never commits.

Invariants enforced:
    - A committed value is never handed out twice for the same name.
    - Rolling back the caller's transaction returns the value.

Failure modes:
    - Two transactions creating the same name at once: the loser's insert
      hits the unique constraint inside a savepoint and it re-reads the
      winner's row.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base
from billing_kernel.logging_config import get_logger
from billing_kernel.services.base import BaseService

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService(BaseService):
    """
    Usage:
        with session_scope(factory) as session:
            value = SequenceService(session).next_value("invoice:electronics:GST")
    """

    def _select_for_update(self, name: str) -> SequenceCounter | None:
        stmt = (
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def _counter(self, name: str, start: int = 0) -> SequenceCounter:
        """The locked row for ``name``, inserted at ``start`` on first use."""
        counter = self._select_for_update(name)
        if counter is not None:
            return counter

        savepoint = self.session.begin_nested()
        try:
            counter = SequenceCounter(name=name, current_value=start)
            self.session.add(counter)
            self.session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_created_concurrently", extra={"sequence_name": name})
            counter = self._select_for_update(name)
            if counter is None:
                raise
        else:
            savepoint.commit()
        return counter

    def next_value(self, sequence_name: str) -> int:
        counter = self._counter(sequence_name)
        counter.current_value += 1
        self.session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Last value handed out, or None for a name never used."""
        value = self.session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return value

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """
        Seed or rewind a counter; the next allocation returns ``value + 1``.

        For tests and data migration (seeding from the highest number of an
        imported invoice collection).
        """
        counter = self._counter(sequence_name, start=value)
        counter.current_value = value
        self.session.flush()
