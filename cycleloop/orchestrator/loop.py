"""The event loop: public runtime handle over the scheduling core and sources.

:class:`EventLoop` assembles one instance of every component, then exposes
their operations as a single surface:

* callback lanes (:meth:`~EventLoop.schedule_tick`,
  :meth:`~EventLoop.schedule_microtask`, :meth:`~EventLoop.schedule_immediate`,
  :meth:`~EventLoop.schedule_deferred`);
* timers (:meth:`~EventLoop.add_timer`, :meth:`~EventLoop.add_periodic_timer`,
  :meth:`~EventLoop.cancel_timer`);
* cooperative tasks (:meth:`~EventLoop.spawn`, :meth:`~EventLoop.wake`);
* pass-throughs to the signal, HTTP, stream and file sources.

Run protocol
~~~~~~~~~~~~
::

    while running and has_work():
        did_work = process_cycle()
        if not did_work and not has_immediate_work():
            sleep(next_sleep_duration())

    if stopped and has_work():
        up to graceful_max_iterations cycles within graceful_shutdown_timeout
        then force_stop() if anything is left

``run()`` returns once nothing is left to do.  Any error raised by a
callback, timer or task propagates out of ``run()``; the loop stays usable
and a later ``run()`` continues with whatever is still queued.

A stopped loop is not restarted: ``run()`` on it only performs the shutdown
drain.  Create a new :class:`EventLoop` (or call
:func:`~cycleloop.orchestrator.default.reset_default_loop`) instead.

Typical usage::

    from cycleloop.orchestrator.loop import EventLoop

    loop = EventLoop()
    loop.add_timer(0.5, lambda: print("half a second later"))
    loop.schedule_tick(lambda: print("first"))
    loop.run()
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Generator, Iterable
from types import TracebackType
from typing import Any

from cycleloop.core import events
from cycleloop.core.exceptions import CycleLoopError, LoopStateError
from cycleloop.core.logging_config import cycle_context
from cycleloop.core.models import (
    FileOperationKind,
    FileOperationOptions,
    FileWatcherOptions,
    StreamWatchKind,
)
from cycleloop.core.settings import LoopSettings
from cycleloop.orchestrator.activity import ActivityTracker
from cycleloop.orchestrator.metrics import LoopStats
from cycleloop.orchestrator.phases import PhaseOrchestrator
from cycleloop.orchestrator.sleep import IdleSleepController
from cycleloop.orchestrator.state import RunState, RunStateMachine
from cycleloop.scheduling.queues import Lane, TaskQueue
from cycleloop.scheduling.tasks import Task, TaskScheduler
from cycleloop.scheduling.timers import TimerWheel
from cycleloop.sources.base import WorkSource
from cycleloop.sources.files import FileWorkSource
from cycleloop.sources.http.client import TransferClient
from cycleloop.sources.http.source import HttpWorkSource
from cycleloop.sources.signals import SignalWorkSource
from cycleloop.sources.streams import StreamWorkSource

__all__ = ["EventLoop"]

logger = logging.getLogger(__name__)

_NS_PER_S = 1_000_000_000


class EventLoop:
    """Single-threaded cooperative event loop.

    Args:
        settings: Tunables; loaded from the environment when omitted.
        clock: Callable returning monotonic seconds.  Drives the timers,
            the graceful-shutdown window, idle tracking and file watchers.
            Defaults to :func:`time.monotonic` (timers then use
            :func:`time.monotonic_ns` directly).
        sleep: Callable used for idle and graceful sleeps.  Defaults to
            :func:`time.sleep`.
        signal_source: Replacement for the default signal source.
        http_source: Replacement for the default HTTP source.
        stream_source: Replacement for the default stream source.
        file_source: Replacement for the default file source.
        extra_sources: Additional sources polled after the built-in ones in
            the I/O phase.
    """

    def __init__(
        self,
        settings: LoopSettings | None = None,
        *,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Any] | None = None,
        signal_source: SignalWorkSource | None = None,
        http_source: HttpWorkSource | None = None,
        stream_source: StreamWorkSource | None = None,
        file_source: FileWorkSource | None = None,
        extra_sources: Iterable[WorkSource] = (),
    ) -> None:
        self.settings = settings or LoopSettings()
        cfg = self.settings
        self._clock = clock or time.monotonic
        self._sleep = sleep or time.sleep

        if clock is None:
            timer_clock: Callable[[], int] = time.monotonic_ns
        else:
            def timer_clock() -> int:
                return int(clock() * _NS_PER_S)

        self._queue = TaskQueue(microtask_limit=cfg.microtask_limit)
        self._timers = TimerWheel(clock=timer_clock, rebuild_threshold=cfg.tombstone_rebuild_threshold)
        self._tasks = TaskScheduler()

        self._signals = signal_source or SignalWorkSource()
        self._http = http_source or HttpWorkSource(
            TransferClient(
                connect_timeout=cfg.http_connect_timeout,
                read_timeout=cfg.http_read_timeout,
                max_attempts=cfg.http_max_attempts,
            ),
            poll_timeout=cfg.http_poll_timeout,
            max_concurrent=cfg.http_max_concurrent,
        )
        self._streams = stream_source or StreamWorkSource(select_timeout=cfg.stream_select_timeout)
        self._files = file_source or FileWorkSource(
            chunk_size=cfg.file_chunk_size,
            chunks_per_poll=cfg.file_chunks_per_poll,
            watch_interval=cfg.file_watch_interval,
            clock=self._clock,
        )

        self._orchestrator = PhaseOrchestrator(
            self._queue,
            self._timers,
            self._tasks,
            signal_source=self._signals,
            io_sources=[self._http, self._streams, self._files, *extra_sources],
        )
        self._state = RunStateMachine(cfg.graceful_shutdown_timeout, clock=self._clock)
        self._sleeper = IdleSleepController(
            self._timers.get_next_timer_delay,
            self._orchestrator.has_immediate_work,
            max_sleep=cfg.max_sleep,
            min_sleep=cfg.min_sleep,
            buffer_ratio=cfg.sleep_buffer_ratio,
        )
        self._activity = ActivityTracker(cfg.idle_threshold, clock=self._clock)
        self._loop_stats = LoopStats()
        self._iterations = 0
        self._in_run = False

    def __repr__(self) -> str:
        return f"<EventLoop {self._state.state.value} iterations={self._iterations}>"

    def __enter__(self) -> EventLoop:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def signals(self) -> SignalWorkSource:
        return self._signals

    @property
    def http(self) -> HttpWorkSource:
        return self._http

    @property
    def streams(self) -> StreamWorkSource:
        return self._streams

    @property
    def files(self) -> FileWorkSource:
        return self._files

    @property
    def loop_stats(self) -> LoopStats:
        return self._loop_stats

    @property
    def state(self) -> RunState:
        return self._state.state

    def add_source(self, source: WorkSource) -> None:
        """Poll *source* in the I/O phase from the next cycle on."""
        self._orchestrator.add_source(source)

    # ------------------------------------------------------------------
    # Callback lanes
    # ------------------------------------------------------------------

    def schedule_tick(self, callback: Callable[[], Any]) -> None:
        self._queue.enqueue(Lane.TICK, callback)

    def schedule_microtask(self, callback: Callable[[], Any]) -> None:
        self._queue.enqueue(Lane.MICROTASK, callback)

    def schedule_immediate(self, callback: Callable[[], Any]) -> None:
        self._queue.enqueue(Lane.IMMEDIATE, callback)

    def schedule_deferred(self, callback: Callable[[], Any]) -> None:
        self._queue.enqueue(Lane.DEFERRED, callback)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def add_timer(self, delay: float, callback: Callable[[], Any]) -> str:
        return self._timers.add_timer(delay, callback)

    def add_periodic_timer(
        self,
        interval: float,
        callback: Callable[[], Any],
        max_executions: int | None = None,
    ) -> str:
        return self._timers.add_periodic_timer(interval, callback, max_executions)

    def cancel_timer(self, timer_id: str) -> bool:
        return self._timers.cancel_timer(timer_id)

    def has_timer(self, timer_id: str) -> bool:
        return self._timers.has_timer(timer_id)

    def has_timers(self) -> bool:
        return self._timers.has_timers()

    def timer_info(self, timer_id: str) -> dict[str, Any] | None:
        return self._timers.timer_info(timer_id)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def add_task(self, task: Task | Callable[..., Any] | Generator[Any, Any, Any]) -> Task:
        """Schedule *task* for the next task phase."""
        return self._tasks.add_task(task)

    def spawn(
        self,
        target: Callable[..., Any] | Generator[Any, Any, Any],
        *args: Any,
        name: str | None = None,
        **kwargs: Any,
    ) -> Task:
        """Wrap *target* in a :class:`Task` and schedule it.

        Example::

            def worker(loop):
                value = yield          # suspended until woken
                print("woken with", value)

            task = loop.spawn(worker, loop)
            loop.add_timer(1.0, lambda: loop.wake(task, 42))
        """
        return self._tasks.add_task(Task(target, *args, name=name, **kwargs))

    def wake(self, task: Task, value: Any = None) -> bool:
        return self._tasks.wake(task, value)

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def add_signal(self, signum: int, callback: Callable[[int], Any]) -> str:
        return self._signals.add_signal(signum, callback)

    def remove_signal(self, listener_id: str) -> bool:
        return self._signals.remove_signal(listener_id)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def add_http_request(self, url: str, callback: Callable[..., Any], **options: Any) -> str:
        """Queue an HTTP transfer; see :meth:`HttpWorkSource.add_request`."""
        return self._http.add_request(url, callback, **options)

    def cancel_http_request(self, request_id: str) -> bool:
        return self._http.cancel(request_id)

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    def add_stream_watcher(
        self,
        fileobj: Any,
        callback: Callable[[Any], Any],
        kind: StreamWatchKind | str = StreamWatchKind.READ,
    ) -> str:
        return self._streams.add_stream_watcher(fileobj, callback, kind)

    def add_read_watcher(self, fileobj: Any, callback: Callable[[Any], Any]) -> str:
        return self._streams.add_read_watcher(fileobj, callback)

    def add_write_watcher(self, fileobj: Any, callback: Callable[[Any], Any]) -> str:
        return self._streams.add_write_watcher(fileobj, callback)

    def remove_stream_watcher(self, watcher_id: str) -> bool:
        return self._streams.remove_stream_watcher(watcher_id)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def add_file_operation(
        self,
        kind: FileOperationKind | str,
        path: str,
        data: Any,
        callback: Callable[..., Any],
        options: FileOperationOptions | dict[str, Any] | None = None,
    ) -> str:
        return self._files.add_file_operation(kind, path, data, callback, options)

    def cancel_file_operation(self, operation_id: str) -> bool:
        return self._files.cancel_file_operation(operation_id)

    def add_file_watcher(
        self,
        path: str,
        callback: Callable[[str, str], Any],
        options: FileWatcherOptions | dict[str, Any] | None = None,
    ) -> str:
        return self._files.add_file_watcher(path, callback, options)

    def remove_file_watcher(self, watcher_id: str) -> bool:
        return self._files.remove_file_watcher(watcher_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        return self._state.is_running()

    def is_in_graceful_shutdown(self) -> bool:
        return self._state.is_in_graceful_shutdown()

    def is_idle(self) -> bool:
        """``True`` with nothing left to do, or after an adaptive quiet period."""
        return not self._orchestrator.has_work() or self._activity.is_idle()

    def has_work(self) -> bool:
        return self._orchestrator.has_work()

    def has_immediate_work(self) -> bool:
        return self._orchestrator.has_immediate_work()

    @property
    def iteration_count(self) -> int:
        return self._iterations

    def stats(self) -> dict[str, Any]:
        """Snapshot of the loop counters and every component's counters."""
        sources: dict[str, Any] = {}
        for source in self._orchestrator.sources:
            key = source.name
            if key in sources:
                key = f"{key}:{len(sources)}"
            sources[key] = source.stats()
        return {
            "state": self._state.state.value,
            "iterations": self._iterations,
            "loop": self._loop_stats.as_dict(),
            "queue": self._queue.stats(),
            "timers": self._timers.stats(),
            "tasks": self._tasks.stats(),
            "activity": self._activity.stats(),
            "sources": sources,
        }

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Run cycles until no work is left or the loop has been stopped.

        Raises:
            LoopStateError: If called while ``run()`` or ``run_once()`` is
                already active on this loop.
            CycleLoopError: Any callback, timer, task or source error raised
                during a cycle.
        """
        self._enter()
        logger.info("Event loop started.", extra={"event": events.LOOP_START})
        try:
            while self._state.is_running() and self._orchestrator.has_work():
                did_work = self._cycle()
                if not did_work and not self._orchestrator.has_immediate_work():
                    self._idle_sleep()

            if not self._state.is_running() and self._orchestrator.has_work():
                self._graceful_shutdown()
        finally:
            self._in_run = False
        self._loop_stats.runs += 1
        logger.info(
            "Event loop exited after %d iteration(s).",
            self._iterations,
            extra={"event": events.LOOP_EXIT},
        )

    def run_once(self) -> bool:
        """Run a single cycle; sleep afterwards if nothing is runnable.

        Returns:
            ``True`` if the cycle did work.
        """
        self._enter()
        try:
            did_work = self._cycle()
            if not did_work and not self._orchestrator.has_immediate_work():
                self._idle_sleep()
        finally:
            self._in_run = False
        return did_work

    def stop(self) -> None:
        """Request a graceful stop; pending work gets the graceful window."""
        if self._state.stop():
            logger.info(
                "Stop requested; graceful window %.1fs.",
                self._state.graceful_timeout,
                extra={"event": events.LOOP_STOP_REQUESTED},
            )

    def force_stop(self) -> None:
        """Stop immediately and drop every pending callback, timer, task and I/O."""
        self._state.force_stop()
        self._tasks.prepare_shutdown()
        self._loop_stats.forced_stops += 1
        logger.warning(
            "Forced stop: clearing all pending work.",
            extra={"event": events.LOOP_FORCE_STOP},
        )
        self._orchestrator.clear_all()

    def set_graceful_shutdown_timeout(self, timeout: float) -> None:
        self._state.set_graceful_timeout(timeout)

    def close(self) -> None:
        """Release source resources (selector, HTTP client, signal handlers)."""
        for source in self._orchestrator.sources:
            source.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _enter(self) -> None:
        if self._in_run:
            raise LoopStateError("The event loop is already running")
        self._in_run = True

    def _cycle(self) -> bool:
        self._iterations += 1
        with cycle_context(self._iterations):
            try:
                did_work = self._orchestrator.process_cycle()
            except CycleLoopError as exc:
                self._loop_stats.record_cycle(True)
                self._loop_stats.callback_errors += 1
                logger.error(
                    "Cycle %d aborted: %s",
                    self._iterations,
                    exc,
                    extra={"event": events.CALLBACK_FAILED},
                )
                raise
        self._loop_stats.record_cycle(did_work)
        if did_work:
            self._activity.record()
        return did_work

    def _idle_sleep(self) -> None:
        duration = self._sleeper.next_sleep_duration()
        if duration <= 0:
            return
        self._loop_stats.record_sleep(duration)
        self._sleep(duration)

    def _graceful_shutdown(self) -> None:
        cfg = self.settings
        self._loop_stats.graceful_shutdowns += 1
        logger.info(
            "Graceful shutdown: finishing pending work.",
            extra={"event": events.LOOP_GRACEFUL_SHUTDOWN},
        )
        count = 0
        while (
            self._orchestrator.has_work()
            and count < cfg.graceful_max_iterations
            and not self._state.should_force_shutdown()
        ):
            self._cycle()
            count += 1
            self._sleep(cfg.graceful_sleep_interval)

        if self._orchestrator.has_work() or self._state.should_force_shutdown():
            self.force_stop()
