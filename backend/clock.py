"""
Nexus Scheduling Agent - Clock
Injected source of "now" so every time-relative rule can be tested at any instant.
"""

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional, Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in the configured timezone."""

    def __init__(self, tz: Optional[tzinfo] = None):
        self.tz = tz or timezone.utc

    def now(self) -> datetime:
        return datetime.now(self.tz)


class FixedClock:
    """A clock pinned to one instant. ``advance`` moves it forward."""

    def __init__(self, instant: datetime):
        if instant.tzinfo is None:
            raise ValueError("FixedClock needs a timezone-aware datetime")
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def advance(self, **kwargs) -> datetime:
        self._instant = self._instant + timedelta(**kwargs)
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = instant


def build_clock(timezone_name: str, fixed_today: Optional[str] = None) -> Clock:
    """Create the clock described by the schedule configuration."""
    tz = ZoneInfo(timezone_name)
    if fixed_today:
        instant = datetime.fromisoformat(fixed_today)
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=tz)
        return FixedClock(instant)
    return SystemClock(tz)
