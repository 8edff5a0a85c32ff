"""
Clock -- injectable time source.

Responsibility:
    Engines and services never call ``datetime.now()`` or ``date.today()``
    directly. They receive a Clock, so due-date arithmetic, payment
    timestamps, the stats cache TTL and the notification cooldown can all be
    driven from tests.

Failure modes:
    (none)
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        - ``now()`` returns a timezone-aware UTC ``datetime``.
        - ``today()`` returns the calendar date of ``now()``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...

    def today(self) -> date:
        """Get the current calendar date."""
        return self.now().date()

    def monotonic(self) -> float:
        """Seconds since the epoch, for TTL and cooldown bookkeeping."""
        return self.now().timestamp()


class SystemClock(Clock):
    """Production clock that returns actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock: ``now()`` stays put until ``advance()`` moves it.

    Day-level moves drive due-date scenarios; second-level moves drive the
    stats cache TTL and the notification cooldown.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._now = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: int = 1, *, days: int = 0) -> None:
        self._now += timedelta(days=days, seconds=seconds)
