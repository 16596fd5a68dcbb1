"""
Clock -- injectable time source.

Services, the scheduler and the HTTP layer never call ``datetime.now()`` or
``date.today()`` themselves.  computed_at, distributed_at, voided_at and
default payment dates all come from the Clock they were constructed with,
so tests pin them with ``DeterministicClock``.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timezone


class Clock(ABC):
    """``now()`` is timezone-aware UTC; ``today()`` is its UTC date."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now().astimezone(timezone.utc).date()


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Always reads ``fixed_time`` (default 2024-01-01 12:00 UTC)."""

    DEFAULT_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or self.DEFAULT_TIME

    def now(self) -> datetime:
        return self._fixed_time
