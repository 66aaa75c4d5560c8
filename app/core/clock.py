from datetime import UTC, datetime, timedelta
from typing import Protocol


def to_utc(dt: datetime) -> datetime:
    """Convert to naive UTC for TIMESTAMP WITHOUT TIME ZONE columns.

    Aware datetimes are converted; naive ones are taken to be UTC already.
    """
    if dt.tzinfo is not None:
        return dt.astimezone(UTC).replace(tzinfo=None)
    return dt


def slot_end(start: datetime, duration_minutes: int) -> datetime:
    return start + timedelta(minutes=duration_minutes)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval intersection: [a_start, a_end) and [b_start, b_end)."""
    return a_start < b_end and a_end > b_start


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock, naive UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC).replace(tzinfo=None)


class FrozenClock:
    """Clock pinned to a given instant; advance it explicitly."""

    def __init__(self, at: datetime) -> None:
        self._now = to_utc(at)

    def now(self) -> datetime:
        return self._now

    def set(self, at: datetime) -> None:
        self._now = to_utc(at)

    def advance(self, **kwargs: float) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


system_clock = SystemClock()


def get_clock() -> Clock:
    return system_clock
