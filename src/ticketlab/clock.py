"""UTC time helpers; all persisted timestamps are naive UTC."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, time, timezone

NowFn = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_midnight(day: date) -> datetime:
    """Return 00:00 UTC of ``day`` as a naive datetime."""

    return datetime.combine(day, time.min)


def from_timestamp(seconds: int | float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
