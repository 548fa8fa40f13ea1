"""
Clock -- injectable time source.

Engine code never calls ``datetime.now()`` directly; it asks the clock on
the engine context. Timestamps handed to the ledger are integer UNIX seconds.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock(ABC):
    """Abstract clock interface."""

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time as a timezone-aware UTC datetime."""
        ...

    def timestamp(self) -> int:
        """Get the current time as integer UNIX seconds."""
        return int(self.now().timestamp())


class SystemClock(Clock):
    """Production clock that returns actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Test clock with controlled time.

    ``now()`` returns the same value on repeated calls until ``advance()``
    or ``set_time()`` is called.
    """

    def __init__(self, fixed_time: Optional[datetime] = None):
        """
        Args:
            fixed_time: Starting time. Naive datetimes are treated as UTC.
                        Defaults to 2024-01-01 12:00 UTC.
        """
        self._time = _as_utc(fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))

    def now(self) -> datetime:
        return self._time

    def set_time(self, time: datetime) -> None:
        self._time = _as_utc(time)

    def advance(self, seconds: int = 0, days: int = 0) -> datetime:
        """Move the clock forward and return the new time."""
        self._time = self._time + timedelta(days=days, seconds=seconds)
        return self._time


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
