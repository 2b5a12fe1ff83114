"""
Time source.

Services take a Clock instead of calling datetime.now() so that session
activity checks and cleanup cutoffs can be tested with a fixed time.
"""

from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """A clock that only moves when told to."""

    def __init__(self, current: datetime):
        self.current = ensure_utc(current)

    def now(self) -> datetime:
        return self.current

    def set(self, current: datetime) -> None:
        self.current = ensure_utc(current)

    def advance(self, delta: timedelta) -> None:
        self.current = self.current + delta


system_clock = SystemClock()


def ensure_utc(value: datetime) -> datetime:
    """Tag naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
