"""Helpers for exercising time-dependent components without sleeping."""

from datetime import datetime, timedelta, timezone
from typing import Optional


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, days: float = 0) -> datetime:
        self.now += timedelta(seconds=seconds, days=days)
        return self.now
