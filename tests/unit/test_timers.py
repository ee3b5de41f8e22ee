"""Unit tests for cycleloop.scheduling.timers: ordering, periodic fires, tombstones."""

from __future__ import annotations

import pytest

from cycleloop.core.exceptions import TimerCallbackError
from cycleloop.scheduling.timers import TimerWheel

MS = 1_000_000


class NsClock:
    def __init__(self) -> None:
        self.now = 10_000 * MS

    def __call__(self) -> int:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += int(ms * MS)


@pytest.fixture()
def ns_clock() -> NsClock:
    return NsClock()


@pytest.fixture()
def wheel(ns_clock: NsClock) -> TimerWheel:
    return TimerWheel(clock=ns_clock, rebuild_threshold=4)


def fire_all(wheel: TimerWheel) -> int:
    fired = 0
    while wheel.process_timers():
        fired += 1
    return fired


class TestRegistration:
    def test_negative_delay_rejected(self, wheel: TimerWheel) -> None:
        with pytest.raises(ValueError):
            wheel.add_timer(-0.1, lambda: None)

    def test_periodic_validation(self, wheel: TimerWheel) -> None:
        with pytest.raises(ValueError):
            wheel.add_periodic_timer(0, lambda: None)
        with pytest.raises(ValueError):
            wheel.add_periodic_timer(1.0, lambda: None, max_executions=0)

    def test_ids_and_membership(self, wheel: TimerWheel) -> None:
        timer_id = wheel.add_timer(1.0, lambda: None)
        assert timer_id.startswith("timer:")
        assert wheel.has_timer(timer_id)
        assert wheel.has_timers()

    def test_timer_info(self, wheel: TimerWheel, ns_clock: NsClock) -> None:
        timer_id = wheel.add_periodic_timer(0.5, lambda: None, max_executions=2)
        info = wheel.timer_info(timer_id)
        assert info is not None
        assert info["id"] == timer_id
        assert wheel.timer_info("timer:999") is None


class TestFiring:
    def test_not_ready_before_deadline(self, wheel: TimerWheel, ns_clock: NsClock) -> None:
        wheel.add_timer(0.010, lambda: None)
        ns_clock.advance_ms(9)
        assert not wheel.has_ready_timers()
        assert wheel.process_timers() is False
        ns_clock.advance_ms(1)
        assert wheel.has_ready_timers()

    def test_deadline_then_creation_order(self, wheel: TimerWheel, ns_clock: NsClock) -> None:
        order: list[str] = []
        wheel.add_timer(0.020, lambda: order.append("late"))
        wheel.add_timer(0.010, lambda: order.append("a"))
        wheel.add_timer(0.010, lambda: order.append("b"))
        ns_clock.advance_ms(25)
        assert fire_all(wheel) == 3
        assert order == ["a", "b", "late"]

    def test_process_fires_exactly_one(self, wheel: TimerWheel) -> None:
        wheel.add_timer(0, lambda: None)
        wheel.add_timer(0, lambda: None)
        assert wheel.process_timers() is True
        assert wheel.stats()["fired"] == 1

    def test_one_shot_removed_after_fire(self, wheel: TimerWheel) -> None:
        timer_id = wheel.add_timer(0, lambda: None)
        wheel.process_timers()
        assert not wheel.has_timer(timer_id)
        assert not wheel.has_timers()

    def test_next_delay(self, wheel: TimerWheel, ns_clock: NsClock) -> None:
        assert wheel.get_next_timer_delay() is None
        wheel.add_timer(0.050, lambda: None)
        ns_clock.advance_ms(20)
        assert wheel.get_next_timer_delay() == pytest.approx(0.030)
        ns_clock.advance_ms(100)
        assert wheel.get_next_timer_delay() == 0

    def test_horizon_excludes_timers_created_later(self, wheel: TimerWheel) -> None:
        wheel.add_timer(0, lambda: None)
        now_ns, max_seq = wheel.horizon()
        wheel.add_timer(0, lambda: None)
        assert wheel.process_timers(now_ns=now_ns, max_seq=max_seq) is True
        assert wheel.process_timers(now_ns=now_ns, max_seq=max_seq) is False
        assert wheel.process_timers() is True


class TestPeriodic:
    def test_stops_after_max_executions(self, wheel: TimerWheel, ns_clock: NsClock) -> None:
        count = 0

        def tick() -> None:
            nonlocal count
            count += 1

        timer_id = wheel.add_periodic_timer(0.010, tick, max_executions=3)
        for _ in range(5):
            ns_clock.advance_ms(10)
            wheel.process_timers()
        assert count == 3
        assert not wheel.has_timer(timer_id)

    def test_deadline_advances_by_interval(self, wheel: TimerWheel, ns_clock: NsClock) -> None:
        start = ns_clock.now
        timer_id = wheel.add_periodic_timer(0.010, lambda: None)
        ns_clock.advance_ms(13)
        wheel.process_timers()
        info = wheel.timer_info(timer_id)
        assert info is not None
        assert info["execution_count"] == 1
        # Next deadline is start + 2 intervals, not "fire time + interval".
        assert wheel.get_next_timer_delay() == pytest.approx((start + 20 * MS - ns_clock.now) / 1e9)

    def test_late_repeats_fire_once_per_phase(self, wheel: TimerWheel, ns_clock: NsClock) -> None:
        fired: list[int] = []
        timer_id = wheel.add_periodic_timer(0.001, lambda: fired.append(1))
        ns_clock.advance_ms(1000)

        for phase in range(1, 4):
            now_ns, max_seq = wheel.horizon()
            while wheel.process_timers(now_ns=now_ns, max_seq=max_seq):
                pass
            assert len(fired) == phase
        info = wheel.timer_info(timer_id)
        assert info is not None
        assert info["execution_count"] == 3
        assert wheel.has_ready_timers()

    def test_rescheduled_before_callback_error(self, wheel: TimerWheel, ns_clock: NsClock) -> None:
        def boom() -> None:
            raise ValueError("bad")

        timer_id = wheel.add_periodic_timer(0.001, boom)
        ns_clock.advance_ms(1)
        with pytest.raises(TimerCallbackError) as excinfo:
            wheel.process_timers()
        assert excinfo.value.timer_id == timer_id
        assert isinstance(excinfo.value.__cause__, ValueError)
        assert wheel.has_timer(timer_id)

    def test_one_shot_removed_before_callback_error(self, wheel: TimerWheel) -> None:
        timer_id = wheel.add_timer(0, lambda: 1 / 0)
        with pytest.raises(TimerCallbackError):
            wheel.process_timers()
        assert not wheel.has_timer(timer_id)


class TestCancellation:
    def test_cancel_known_and_unknown(self, wheel: TimerWheel) -> None:
        timer_id = wheel.add_timer(1.0, lambda: None)
        assert wheel.cancel_timer(timer_id) is True
        assert wheel.cancel_timer(timer_id) is False
        assert wheel.cancel_timer("timer:nope") is False
        assert not wheel.has_timer(timer_id)

    def test_cancelled_timer_never_fires(self, wheel: TimerWheel, ns_clock: NsClock) -> None:
        fired: list[str] = []
        timer_id = wheel.add_timer(0.001, lambda: fired.append("x"))
        wheel.cancel_timer(timer_id)
        ns_clock.advance_ms(5)
        assert wheel.has_ready_timers() is False
        assert fire_all(wheel) == 0
        assert fired == []
        assert wheel.get_next_timer_delay() is None

    def test_cancel_from_earlier_callback_in_same_phase(self, wheel: TimerWheel) -> None:
        fired: list[str] = []
        second: list[str] = []

        def first() -> None:
            fired.append("first")
            wheel.cancel_timer(second[0])

        wheel.add_timer(0, first)
        second.append(wheel.add_timer(0, lambda: fired.append("second")))
        fire_all(wheel)
        assert fired == ["first"]

    def test_heap_rebuilt_when_tombstones_dominate(self, wheel: TimerWheel) -> None:
        keep = wheel.add_timer(10.0, lambda: None)
        doomed = [wheel.add_timer(5.0 + i, lambda: None) for i in range(5)]
        for timer_id in doomed:
            wheel.cancel_timer(timer_id)
        stats = wheel.stats()
        assert stats["rebuilds"] == 1
        assert stats["heap_size"] == 1
        assert stats["tombstones"] == 0
        assert wheel.has_timer(keep)

    def test_clear_all_timers(self, wheel: TimerWheel) -> None:
        wheel.add_timer(1.0, lambda: None)
        wheel.add_periodic_timer(1.0, lambda: None)
        wheel.clear_all_timers()
        assert not wheel.has_timers()
        assert wheel.stats()["heap_size"] == 0
