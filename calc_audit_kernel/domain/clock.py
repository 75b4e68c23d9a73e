"""
Injectable time source.

Version strings, amendment review times, report generation and export
timestamps all read the time through a Clock handed to the owning service,
so a test can pin or move time without patching ``datetime``.

SystemClock is the only implementation that touches the real wall clock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware instants."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def now_utc(self) -> datetime:
        """``now()`` normalized to UTC; version clocks are always UTC."""
        return self.now().astimezone(timezone.utc)


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock pinned to an instant that only moves when told to.

    Repeated ``now()`` calls return the same value. ``advance`` moves forward
    by whole seconds; ``set_time`` jumps anywhere, including backwards, which
    is how tests exercise the version issuer's monotonic bump.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        if time.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware datetime")
        self._current = time

    def advance(self, seconds: int = 1) -> None:
        self._current = self._current + timedelta(seconds=seconds)
