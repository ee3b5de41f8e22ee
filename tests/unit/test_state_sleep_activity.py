"""Unit tests for RunStateMachine, IdleSleepController and ActivityTracker."""

from __future__ import annotations

import pytest

from cycleloop.orchestrator.activity import ActivityTracker
from cycleloop.orchestrator.sleep import IdleSleepController
from cycleloop.orchestrator.state import MIN_GRACEFUL_TIMEOUT, RunState, RunStateMachine

# ---------------------------------------------------------------------------
# RunStateMachine
# ---------------------------------------------------------------------------


class TestRunStateMachine:
    def test_starts_running(self, clock) -> None:
        state = RunStateMachine(clock=clock)
        assert state.state is RunState.RUNNING
        assert state.is_running()
        assert state.time_since_stop() == 0.0
        assert not state.should_force_shutdown()

    def test_stop_enters_graceful_once(self, clock) -> None:
        state = RunStateMachine(2.0, clock=clock)
        assert state.stop() is True
        assert state.is_in_graceful_shutdown()
        clock.advance(1.0)
        assert state.stop() is False
        assert state.time_since_stop() == pytest.approx(1.0)

    def test_force_after_timeout(self, clock) -> None:
        state = RunStateMachine(2.0, clock=clock)
        state.stop()
        clock.advance(2.0)
        assert not state.should_force_shutdown()
        clock.advance(0.01)
        assert state.should_force_shutdown()

    def test_force_stop_from_any_state(self, clock) -> None:
        state = RunStateMachine(clock=clock)
        state.force_stop()
        assert state.is_force_stopped()
        assert not state.is_running()
        assert state.stop() is False

    def test_graceful_timeout_floor(self, clock) -> None:
        state = RunStateMachine(0.0, clock=clock)
        assert state.graceful_timeout == MIN_GRACEFUL_TIMEOUT
        state.set_graceful_timeout(0.01)
        assert state.graceful_timeout == MIN_GRACEFUL_TIMEOUT
        state.set_graceful_timeout(5.0)
        assert state.graceful_timeout == 5.0


# ---------------------------------------------------------------------------
# IdleSleepController
# ---------------------------------------------------------------------------


def controller(delay: float | None, immediate: bool = False) -> IdleSleepController:
    return IdleSleepController(
        lambda: delay,
        lambda: immediate,
        max_sleep=0.01,
        min_sleep=0.0001,
        buffer_ratio=0.9,
    )


class TestIdleSleepController:
    def test_zero_with_immediate_work(self) -> None:
        assert controller(5.0, immediate=True).next_sleep_duration() == 0.0

    def test_ceiling_without_timers(self) -> None:
        assert controller(None).next_sleep_duration() == 0.01

    def test_scaled_timer_delay(self) -> None:
        assert controller(0.005).next_sleep_duration() == pytest.approx(0.0045)

    def test_clamped_to_ceiling(self) -> None:
        assert controller(3.0).next_sleep_duration() == 0.01

    def test_clamped_to_floor(self) -> None:
        assert controller(0.0).next_sleep_duration() == 0.0001

    def test_platform_default_ceiling(self) -> None:
        sleeper = IdleSleepController(lambda: None, lambda: False)
        assert sleeper.max_sleep in (0.001, 0.01)


# ---------------------------------------------------------------------------
# ActivityTracker
# ---------------------------------------------------------------------------


class TestActivityTracker:
    def test_fixed_threshold_initially(self, clock) -> None:
        tracker = ActivityTracker(5.0, clock=clock)
        tracker.record()
        clock.advance(4.9)
        assert not tracker.is_idle()
        clock.advance(0.2)
        assert tracker.is_idle()
        assert tracker.idle_for() == pytest.approx(5.1)

    def test_adaptive_threshold_after_enough_records(self, clock) -> None:
        tracker = ActivityTracker(5.0, clock=clock)
        for _ in range(150):
            clock.advance(0.001)
            tracker.record()
        # Busy every millisecond: the 1 s floor applies.
        assert tracker.threshold() == pytest.approx(1.0)
        clock.advance(1.5)
        assert tracker.is_idle()

    def test_adaptive_threshold_scales_with_sparse_activity(self, clock) -> None:
        tracker = ActivityTracker(5.0, clock=clock)
        for _ in range(300):
            clock.advance(0.5)
            tracker.record()
        assert tracker.threshold() == pytest.approx(5.0, rel=0.05)

    def test_stats(self, clock) -> None:
        tracker = ActivityTracker(clock=clock)
        tracker.record()
        stats = tracker.stats()
        assert stats["count"] == 1
        assert stats["idle_for_s"] == 0
