"""The fixed seven-phase loop cycle.

:meth:`PhaseOrchestrator.process_cycle` interleaves every kind of work in a
fixed order:

    Phase order
    -----------
    1. signal   poll the signal source once
    2. drain    ticks and microtasks until quiescent
    3. timers   fire ready timers one at a time, draining after each fire
    4. tasks    one pass over the ready tasks, then drain
    5. I/O      poll every I/O source with work; drain if any did work
    6. check    drain the immediate lane to exhaustion, draining after
                every batch
    7. close    drain the deferred lane once, but only when nothing else
                is runnable and no I/O happened this cycle

Re-entrancy bounds
~~~~~~~~~~~~~~~~~~
Ticks, microtasks and immediates scheduled during a phase run within the same
phase.  Timers created during the timer phase, tasks added during the task
pass, and I/O registered during the I/O phase wait for the next cycle.  The
timer bound comes from a ``(now, last_seq)`` horizon captured when the timer
phase starts.

Every callback error propagates out of :meth:`process_cycle` unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from cycleloop.core.exceptions import CallbackError
from cycleloop.scheduling.queues import Lane, TaskQueue
from cycleloop.scheduling.tasks import TaskScheduler
from cycleloop.scheduling.timers import TimerWheel
from cycleloop.sources.base import WorkSource

__all__ = ["PhaseOrchestrator"]

logger = logging.getLogger(__name__)


class PhaseOrchestrator:
    """Runs one loop cycle over the queue, timers, tasks and work sources.

    Args:
        queue: The four-lane callback queue.
        timers: The timer heap.
        tasks: The cooperative task scheduler.
        signal_source: Source polled in the signal phase, if any.
        io_sources: Sources polled, in order, in the I/O phase.
    """

    def __init__(
        self,
        queue: TaskQueue,
        timers: TimerWheel,
        tasks: TaskScheduler,
        *,
        signal_source: WorkSource | None = None,
        io_sources: Iterable[WorkSource] = (),
    ) -> None:
        self.queue = queue
        self.timers = timers
        self.tasks = tasks
        self.signal_source = signal_source
        self.io_sources: list[WorkSource] = list(io_sources)

    @property
    def sources(self) -> list[WorkSource]:
        """Every source, signal source first."""
        head = [self.signal_source] if self.signal_source is not None else []
        return head + self.io_sources

    def add_source(self, source: WorkSource) -> None:
        """Append *source* to the I/O phase."""
        self.io_sources.append(source)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def process_cycle(self) -> bool:
        """Run the seven phases once.

        Returns:
            ``True`` if any phase did work.
        """
        queue = self.queue
        drain = queue.drain_ticks_and_microtasks
        did_work = False

        # 1. signal
        source = self.signal_source
        if source is not None and source.has_work() and source.poll():
            did_work = True

        # 2. tick / microtask
        if drain():
            did_work = True

        # 3. timers
        now_ns, max_seq = self.timers.horizon()
        while self.timers.process_timers(now_ns=now_ns, max_seq=max_seq):
            did_work = True
            drain()

        # 4. tasks
        if self.tasks.process_tasks():
            did_work = True
        if drain():
            did_work = True

        # 5. I/O
        io_did_work = False
        for source in list(self.io_sources):
            if source.has_work() and source.poll():
                io_did_work = True
        if io_did_work:
            did_work = True
            drain()

        # 6. check
        if queue.drain_immediate(after_batch=drain):
            did_work = True

        # 7. close
        if not io_did_work and queue.has_lane_work(Lane.DEFERRED) and self._close_allowed():
            queue.drain_deferred()
            drain()
            did_work = True

        return did_work

    def _close_allowed(self) -> bool:
        return not (
            self.queue.has_urgent_work()
            or self.timers.has_ready_timers()
            or self.tasks.has_ready_tasks()
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_work(self) -> bool:
        """``True`` while anything is queued, live, active or in flight."""
        return (
            self.queue.has_work()
            or self.timers.has_timers()
            or self.tasks.has_active_tasks()
            or any(source.has_work() for source in self.sources)
        )

    def has_immediate_work(self) -> bool:
        """``True`` if the next cycle can run something without waiting."""
        return (
            self.queue.has_work()
            or self.timers.has_ready_timers()
            or self.tasks.has_ready_tasks()
            or any(source.has_immediate_work() for source in self.sources)
        )

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def clear_all(self) -> None:
        """Hard-clear every lane, the timer heap, the task sets and every source.

        Every source is cleared even if one of them raises while notifying
        its callbacks; the first such error is re-raised at the end.
        """
        self.queue.clear()
        self.timers.clear_all_timers()
        self.tasks.clear()
        first_error: CallbackError | None = None
        for source in self.sources:
            try:
                source.clear()
            except CallbackError as exc:
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error
