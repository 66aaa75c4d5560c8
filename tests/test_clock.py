from datetime import UTC, datetime, timedelta, timezone

from app.core.clock import FrozenClock, overlaps, slot_end, to_utc


def test_to_utc_converts_aware_and_keeps_naive():
    aware = datetime(2025, 3, 10, 11, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_utc(aware) == datetime(2025, 3, 10, 9, 0)
    assert to_utc(aware).tzinfo is None
    naive = datetime(2025, 3, 10, 9, 0)
    assert to_utc(naive) is naive


def test_overlaps_is_half_open():
    nine = datetime(2025, 3, 10, 9, 0)
    half_past = slot_end(nine, 30)
    ten = slot_end(nine, 60)
    # back-to-back slots do not collide
    assert not overlaps(nine, half_past, half_past, ten)
    assert overlaps(nine, half_past, nine + timedelta(minutes=15), ten)
    assert overlaps(nine, ten, nine + timedelta(minutes=10), nine + timedelta(minutes=20))


def test_frozen_clock_advances():
    clock = FrozenClock(datetime(2025, 3, 1, 12, 0, tzinfo=UTC))
    assert clock.now() == datetime(2025, 3, 1, 12, 0)
    assert clock.advance(hours=1, minutes=30) == datetime(2025, 3, 1, 13, 30)
    clock.set(datetime(2025, 3, 2))
    assert clock.now() == datetime(2025, 3, 2)
