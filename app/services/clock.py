"""Time sources"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current time as naive UTC, matching how timestamps are stored"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Clock:
    """Wall clock. Inject a different instance to control time."""

    def now(self) -> datetime:
        return utcnow()


class FrozenClock(Clock):
    """Clock that only moves when told to"""

    def __init__(self, start: datetime):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, **kwargs) -> datetime:
        """Move forward by ``timedelta(**kwargs)`` and return the new time"""
        self._now = self._now + timedelta(**kwargs)
        return self._now
