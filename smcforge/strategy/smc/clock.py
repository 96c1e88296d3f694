"""
Clock — the only place the engine reads wall-clock time.

Everything time-dependent (pattern recency, queue expiry, swing freshness,
cache TTLs) asks an injected clock instead of calling datetime.now()
directly, so tests and backtests can move time deterministically.

Timestamps inside the engine are epoch milliseconds (the exchange kline
convention); now() is still available for log lines.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Union

MS_PER_HOUR = 60 * 60 * 1000


def to_ms(dt: datetime) -> int:
    """Epoch milliseconds for a datetime. Naive datetimes are treated as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def from_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


class SystemClock:
    """Live clock (UTC)."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def now_ms(self) -> int:
        return to_ms(self.now())


class FixedClock:
    """
    Manually driven clock for tests and replays.

        clock = FixedClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        clock.advance(hours=6, minutes=1)
    """

    def __init__(self, start: Union[datetime, int, None] = None):
        if start is None:
            start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._ms = start if isinstance(start, int) else to_ms(start)

    def now(self) -> datetime:
        return from_ms(self._ms)

    def now_ms(self) -> int:
        return self._ms

    def set(self, when: Union[datetime, int]) -> None:
        self._ms = when if isinstance(when, int) else to_ms(when)

    def advance(self, **kwargs) -> None:
        """Move forward by timedelta(**kwargs)."""
        self._ms += int(timedelta(**kwargs).total_seconds() * 1000)
