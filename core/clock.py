"""
Core Module - System Clock.

============================================================
RESPONSIBILITY
============================================================
Provides a testable UTC clock for the risk service.

- Risk checks, disable-until computation and the daily reset
  schedule all read time through a clock instance
- Exchange nonces are derived from the clock in microseconds
- MockClock enables deterministic tests around midnight UTC

============================================================
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional
import threading
import time


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for system clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass

    @abstractmethod
    def timestamp(self) -> float:
        """Get current Unix timestamp."""
        pass

    def epoch_millis(self) -> int:
        """Current Unix time in milliseconds."""
        return int(self.timestamp() * 1000)

    def epoch_micros(self) -> int:
        """Current Unix time in microseconds."""
        return int(self.timestamp() * 1_000_000)


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """
    Production clock using actual system time.

    All times are in UTC.
    """

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def timestamp(self) -> float:
        return time.time()

    def epoch_micros(self) -> int:
        return time.time_ns() // 1000


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Mock clock for testing.

    Allows time manipulation for deterministic tests.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        """
        Initialize mock clock.

        Args:
            initial_time: Starting time (defaults to current UTC)
        """
        self._time = ensure_utc(initial_time or datetime.now(timezone.utc))
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._time

    def timestamp(self) -> float:
        with self._lock:
            return self._time.timestamp()

    def set_time(self, new_time: datetime) -> None:
        """Set the current time."""
        with self._lock:
            self._time = ensure_utc(new_time)

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Advance time by the specified amount.

        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (hours, minutes, days, etc.)
        """
        with self._lock:
            self._time = self._time + timedelta(seconds=seconds, **kwargs)


# ============================================================
# TIMESTAMP UTILITIES
# ============================================================

def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes.

    SQLite returns naive values for timezone-aware columns; every
    stored timestamp is written in UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso8601(dt: Optional[datetime]) -> Optional[str]:
    """Convert datetime to ISO 8601 string."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()


def next_day_at(now: datetime, hour: int, minute: int) -> datetime:
    """The next UTC calendar day at hh:mm:00."""
    next_day = ensure_utc(now) + timedelta(days=1)
    return next_day.replace(hour=hour, minute=minute, second=0, microsecond=0)


def next_occurrence(now: datetime, hour: int, minute: int) -> datetime:
    """The next UTC instant strictly after now at hh:mm:00."""
    now = ensure_utc(now)
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ensure_utc",
    "to_iso8601",
    "next_day_at",
    "next_occurrence",
]
