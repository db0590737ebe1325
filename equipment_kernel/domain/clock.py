"""
Clock -- injectable time source.

Responsibility:
    Gives services a single place to ask for "now", so that approval,
    allocation and return timestamps are reproducible in tests.

Architecture position:
    Kernel > Domain -- zero I/O, except SystemClock, which is the one
    sanctioned read of wall-clock time.

Failure modes:
    None.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        Services receive a Clock via constructor injection and never call
        ``datetime.now()`` themselves.

    Guarantees:
        ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value until ``advance()`` or
          ``set_time()`` is called.
        - ``tick()`` advances by exactly one second and returns the new time.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(
            2025, 3, 1, 8, 0, 0, tzinfo=timezone.utc
        )
        self._offset = timedelta()

    def now(self) -> datetime:
        return self._fixed_time + self._offset

    def set_time(self, time: datetime) -> None:
        self._fixed_time = time
        self._offset = timedelta()

    def advance(self, seconds: int = 1) -> None:
        self._offset += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        self.advance(1)
        return self.now()
