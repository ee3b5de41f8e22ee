"""Unit tests for cycleloop.orchestrator.phases: phase order and re-entrancy bounds."""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

import pytest

from cycleloop.core.exceptions import CallbackError
from cycleloop.orchestrator.phases import PhaseOrchestrator
from cycleloop.scheduling.queues import Lane, TaskQueue
from cycleloop.scheduling.tasks import Task, TaskScheduler
from cycleloop.scheduling.timers import TimerWheel
from cycleloop.sources.base import WorkSource


class RecordingSource(WorkSource):
    """Work source that records its polls and reports configurable work."""

    name = "recording"

    def __init__(self, log: list[str], label: str, *, work: bool = True, did_work: bool = True):
        self.log = log
        self.label = label
        self.work = work
        self.did_work = did_work
        self.cleared = False
        self.on_poll: Any = None

    def has_work(self) -> bool:
        return self.work

    def has_immediate_work(self) -> bool:
        return False

    def poll(self) -> bool:
        self.log.append(self.label)
        if self.on_poll is not None:
            self.on_poll()
        return self.did_work

    def clear(self) -> None:
        self.cleared = True
        self.work = False


class FailingClearSource(RecordingSource):
    def clear(self) -> None:
        super().clear()
        raise CallbackError(self.name, "callback raised while clearing")


@pytest.fixture()
def log() -> list[str]:
    return []


@pytest.fixture()
def parts() -> tuple[TaskQueue, TimerWheel, TaskScheduler]:
    return TaskQueue(), TimerWheel(), TaskScheduler()


def make(parts: tuple[TaskQueue, TimerWheel, TaskScheduler], **kwargs: Any) -> PhaseOrchestrator:
    queue, timers, tasks = parts
    return PhaseOrchestrator(queue, timers, tasks, **kwargs)


class TestPhaseOrder:
    def test_full_cycle_order(self, parts: Any, log: list[str]) -> None:
        queue, timers, tasks = parts
        signals = RecordingSource(log, "signal")
        io = RecordingSource(log, "io", did_work=False)
        orch = make(parts, signal_source=signals, io_sources=[io])

        queue.enqueue(Lane.DEFERRED, lambda: log.append("deferred"))
        queue.enqueue(Lane.IMMEDIATE, lambda: log.append("immediate"))
        queue.enqueue(Lane.MICROTASK, lambda: log.append("microtask"))
        queue.enqueue(Lane.TICK, lambda: log.append("tick"))
        timers.add_timer(0, lambda: log.append("timer"))
        tasks.add_task(Task(lambda: log.append("task")))

        assert orch.process_cycle() is True
        assert log == [
            "signal",
            "tick",
            "microtask",
            "timer",
            "task",
            "io",
            "immediate",
            "deferred",
        ]

    def test_idle_cycle_reports_no_work(self, parts: Any, log: list[str]) -> None:
        orch = make(parts)
        assert orch.process_cycle() is False

    def test_source_without_work_not_polled(self, parts: Any, log: list[str]) -> None:
        idle = RecordingSource(log, "idle", work=False)
        orch = make(parts, io_sources=[idle])
        orch.process_cycle()
        assert log == []


class TestReentrancy:
    def test_timer_created_by_timer_waits_for_next_cycle(self, parts: Any, log: list[str]) -> None:
        _, timers, _ = parts
        orch = make(parts)

        def first() -> None:
            log.append("first")
            timers.add_timer(0, lambda: log.append("second"))

        timers.add_timer(0, first)
        orch.process_cycle()
        assert log == ["first"]
        orch.process_cycle()
        assert log == ["first", "second"]

    def test_tick_from_timer_runs_before_next_timer(self, parts: Any, log: list[str]) -> None:
        queue, timers, _ = parts
        orch = make(parts)

        def t1() -> None:
            log.append("t1")
            queue.enqueue(Lane.TICK, lambda: log.append("tick"))

        timers.add_timer(0, t1)
        timers.add_timer(0, lambda: log.append("t2"))
        orch.process_cycle()
        assert log == ["t1", "tick", "t2"]

    def test_woken_task_runs_next_cycle(self, parts: Any, log: list[str]) -> None:
        queue, _, tasks = parts
        orch = make(parts)

        def body() -> Generator[None, Any, None]:
            log.append("before")
            yield
            log.append("after")

        task = tasks.add_task(Task(body))
        orch.process_cycle()
        queue.enqueue(Lane.TICK, lambda: tasks.wake(task))
        orch.process_cycle()
        assert log == ["before", "after"]


class TestClosePhase:
    def test_deferred_waits_while_io_did_work(self, parts: Any, log: list[str]) -> None:
        queue, _, _ = parts
        io = RecordingSource(log, "io", did_work=True)
        orch = make(parts, io_sources=[io])
        queue.enqueue(Lane.DEFERRED, lambda: log.append("deferred"))

        orch.process_cycle()
        assert "deferred" not in log

        io.did_work = False
        orch.process_cycle()
        assert log[-1] == "deferred"

    def test_deferred_waits_for_ready_task(self, parts: Any, log: list[str]) -> None:
        queue, _, tasks = parts
        orch = make(parts)

        def spawner() -> None:
            log.append("spawner")
            tasks.add_task(Task(lambda: log.append("child")))

        tasks.add_task(Task(spawner))
        queue.enqueue(Lane.DEFERRED, lambda: log.append("deferred"))
        orch.process_cycle()
        assert log == ["spawner"]
        orch.process_cycle()
        assert log == ["spawner", "child", "deferred"]


class TestQueries:
    def test_has_work_tracks_every_component(self, parts: Any, log: list[str]) -> None:
        queue, timers, tasks = parts
        source = RecordingSource(log, "io", work=False)
        orch = make(parts, io_sources=[source])
        assert not orch.has_work()

        timer_id = timers.add_timer(60, lambda: None)
        assert orch.has_work()
        assert not orch.has_immediate_work()
        timers.cancel_timer(timer_id)

        source.work = True
        assert orch.has_work()
        source.work = False

        queue.enqueue(Lane.DEFERRED, lambda: None)
        assert orch.has_immediate_work()

    def test_clear_all(self, parts: Any, log: list[str]) -> None:
        queue, timers, tasks = parts
        failing = FailingClearSource(log, "bad")
        good = RecordingSource(log, "good")
        orch = make(parts, io_sources=[failing, good])
        queue.enqueue(Lane.TICK, lambda: None)
        timers.add_timer(1, lambda: None)
        tasks.add_task(Task(lambda: None))

        with pytest.raises(CallbackError):
            orch.clear_all()

        assert failing.cleared and good.cleared
        assert not orch.has_work()

    def test_added_source_polled(self, parts: Any, log: list[str]) -> None:
        orch = make(parts)
        orch.add_source(RecordingSource(log, "late"))
        orch.process_cycle()
        assert log == ["late"]
