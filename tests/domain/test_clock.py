"""Tests for the injectable clocks."""

from datetime import datetime, timedelta, timezone

from escrow_kernel.domain.clock import DeterministicClock, SystemClock


class TestDeterministicClock:

    def test_default_time(self):
        clock = DeterministicClock()
        assert clock.now() == datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def test_now_is_stable(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now()

    def test_advance(self):
        clock = DeterministicClock()
        start = clock.now()
        clock.advance(90)
        assert clock.now() - start == timedelta(seconds=90)

    def test_tick_advances_one_second(self):
        clock = DeterministicClock()
        start = clock.now()
        assert clock.tick() == start + timedelta(seconds=1)

    def test_set_time_resets_advance(self):
        clock = DeterministicClock()
        clock.advance(10)
        target = datetime(2030, 6, 1, tzinfo=timezone.utc)
        clock.set_time(target)
        assert clock.now() == target


def test_system_clock_is_utc_aware():
    now = SystemClock().now()
    assert now.tzinfo is not None
    assert now.utcoffset() == timedelta(0)
