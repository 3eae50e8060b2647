"""Clock abstraction for upgrade timestamps.

WallClock: real wall-clock time (production)
FrozenClock: fixed, manually advanced time (tests, dry runs)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class IClock(Protocol):
    """Clock interface used when stamping ``premium_upgraded_at``."""

    def now(self) -> datetime:
        """Current time as timezone-aware UTC datetime."""
        ...


class WallClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self._time = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._time

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError(f"FrozenClock cannot go backwards: {seconds}s")
        self._time = self._time + timedelta(seconds=seconds)
