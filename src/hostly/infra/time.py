"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


class FrozenClock:
    """Manually advanced clock for tests and replay tooling.

    Usage:
        clock = FrozenClock(datetime(2025, 9, 1, tzinfo=timezone.utc))
        clock.advance(minutes=11)
    """

    def __init__(self, start: datetime) -> None:
        if start.tzinfo is None:
            raise ValueError("FrozenClock requires a timezone-aware datetime")
        self._now = start

    def __call__(self) -> datetime:
        return self._now

    def advance(self, **delta_kwargs: float) -> datetime:
        self._now = self._now + timedelta(**delta_kwargs)
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value
