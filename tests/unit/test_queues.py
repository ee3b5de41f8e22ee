"""Unit tests for cycleloop.scheduling.queues: lane priority and drain bounds."""

from __future__ import annotations

import logging

import pytest

from cycleloop.core import events
from cycleloop.core.exceptions import CallbackError
from cycleloop.scheduling.queues import Lane, TaskQueue


@pytest.fixture()
def queue() -> TaskQueue:
    return TaskQueue()


class TestEnqueue:
    def test_enqueue_never_runs_inline(self, queue: TaskQueue) -> None:
        ran: list[str] = []
        queue.enqueue(Lane.TICK, lambda: ran.append("x"))
        assert ran == []
        assert queue.size(Lane.TICK) == 1
        assert queue.has_work()

    def test_lane_accepts_string(self, queue: TaskQueue) -> None:
        queue.enqueue("deferred", lambda: None)
        assert queue.has_lane_work(Lane.DEFERRED)
        assert not queue.has_urgent_work()

    def test_non_callable_rejected(self, queue: TaskQueue) -> None:
        with pytest.raises(TypeError):
            queue.enqueue(Lane.TICK, "nope")  # type: ignore[arg-type]

    def test_invalid_microtask_limit(self) -> None:
        with pytest.raises(ValueError):
            TaskQueue(microtask_limit=0)


class TestTickMicrotaskDrain:
    def test_ticks_before_microtasks(self, queue: TaskQueue) -> None:
        order: list[str] = []
        queue.enqueue(Lane.MICROTASK, lambda: order.append("m1"))
        queue.enqueue(Lane.TICK, lambda: order.append("t1"))
        queue.enqueue(Lane.TICK, lambda: order.append("t2"))
        assert queue.drain_ticks_and_microtasks() is True
        assert order == ["t1", "t2", "m1"]

    def test_tick_scheduled_by_microtask_waits_for_microtask_batch(self, queue: TaskQueue) -> None:
        order: list[str] = []

        def m1() -> None:
            order.append("m1")
            queue.enqueue(Lane.TICK, lambda: order.append("t"))
            queue.enqueue(Lane.MICROTASK, lambda: order.append("m2"))

        queue.enqueue(Lane.MICROTASK, m1)
        queue.drain_ticks_and_microtasks()
        # The microtask batch finishes first, then the new tick runs.
        assert order == ["m1", "m2", "t"]

    def test_tick_batches_are_snapshots(self, queue: TaskQueue) -> None:
        order: list[str] = []

        def t1() -> None:
            order.append("t1")
            queue.enqueue(Lane.TICK, lambda: order.append("t3"))

        queue.enqueue(Lane.TICK, t1)
        queue.enqueue(Lane.TICK, lambda: order.append("t2"))
        queue.enqueue(Lane.MICROTASK, lambda: order.append("m"))
        queue.drain_ticks_and_microtasks()
        assert order == ["t1", "t2", "t3", "m"]

    def test_empty_drain_reports_no_work(self, queue: TaskQueue) -> None:
        assert queue.drain_ticks_and_microtasks() is False

    def test_microtask_cap_leaves_rest_queued(self, caplog: pytest.LogCaptureFixture) -> None:
        queue = TaskQueue(microtask_limit=5)
        ran: list[int] = []

        def spawn(n: int) -> None:
            ran.append(n)
            queue.enqueue(Lane.MICROTASK, lambda: spawn(n + 1))

        queue.enqueue(Lane.MICROTASK, lambda: spawn(0))
        with caplog.at_level(logging.WARNING):
            queue.drain_ticks_and_microtasks()

        assert ran == [0, 1, 2, 3, 4]
        assert queue.size(Lane.MICROTASK) == 1
        assert any(
            getattr(r, "event", None) == events.MICROTASK_LIMIT_REACHED for r in caplog.records
        )


class TestImmediateAndDeferred:
    def test_immediate_batches_flush_ticks_between(self, queue: TaskQueue) -> None:
        order: list[str] = []

        def i1() -> None:
            order.append("i1")
            queue.enqueue(Lane.TICK, lambda: order.append("t"))
            queue.enqueue(Lane.IMMEDIATE, lambda: order.append("i3"))

        queue.enqueue(Lane.IMMEDIATE, i1)
        queue.enqueue(Lane.IMMEDIATE, lambda: order.append("i2"))
        queue.drain_immediate(after_batch=queue.drain_ticks_and_microtasks)
        assert order == ["i1", "i2", "t", "i3"]

    def test_deferred_runs_only_entries_present_at_entry(self, queue: TaskQueue) -> None:
        order: list[str] = []

        def d1() -> None:
            order.append("d1")
            queue.enqueue(Lane.DEFERRED, lambda: order.append("d2"))

        queue.enqueue(Lane.DEFERRED, d1)
        assert queue.drain_deferred() is True
        assert order == ["d1"]
        assert queue.size(Lane.DEFERRED) == 1


class TestErrors:
    def test_error_wraps_and_keeps_rest_queued(self, queue: TaskQueue) -> None:
        ran: list[str] = []

        def boom() -> None:
            raise RuntimeError("boom")

        queue.enqueue(Lane.TICK, boom)
        queue.enqueue(Lane.TICK, lambda: ran.append("after"))

        with pytest.raises(CallbackError) as excinfo:
            queue.drain_ticks_and_microtasks()

        assert excinfo.value.lane == "tick"
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert ran == []
        assert queue.size(Lane.TICK) == 1
        queue.drain_ticks_and_microtasks()
        assert ran == ["after"]

    def test_clear_from_inside_batch_stops_cleanly(self, queue: TaskQueue) -> None:
        ran: list[str] = []
        queue.enqueue(Lane.TICK, queue.clear)
        queue.enqueue(Lane.TICK, lambda: ran.append("dropped"))
        queue.drain_ticks_and_microtasks()
        assert ran == []
        assert not queue.has_work()


class TestStats:
    def test_stats_and_clear(self, queue: TaskQueue) -> None:
        queue.enqueue(Lane.TICK, lambda: None)
        queue.enqueue(Lane.IMMEDIATE, lambda: None)
        queue.drain_ticks_and_microtasks()
        stats = queue.stats()
        assert stats["tick"] == 0
        assert stats["immediate"] == 1
        assert stats["executed"] == 1
        queue.clear()
        assert queue.size() == 0
