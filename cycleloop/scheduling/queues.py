"""Four-lane callback queue with strict priority ordering.

Immediate callbacks are kept in four FIFO lanes.  The lane decides *when* in
a loop cycle a callback runs, never the order within a lane (always FIFO):

    Lane priority
    -------------
    TICK       drained before anything else, in snapshot batches
    MICROTASK  drained after ticks, including entries added mid-drain,
               up to ``microtask_limit`` per drain
    IMMEDIATE  drained by the check phase until empty, with ticks and
               microtasks flushed after every batch
    DEFERRED   drained by the close phase, only entries present at entry

Callbacks are popped one at a time, so when a callback raises every entry
that has not run yet is still queued.  The exception is wrapped in
:class:`~cycleloop.core.exceptions.CallbackError` (original exception as
``__cause__``) and propagates to the caller.

Typical usage::

    from cycleloop.scheduling.queues import Lane, TaskQueue

    queue = TaskQueue()
    queue.enqueue(Lane.MICROTASK, lambda: print("B"))
    queue.enqueue(Lane.TICK, lambda: print("A"))
    queue.drain_ticks_and_microtasks()   # prints A, then B
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from enum import StrEnum
from typing import Any, Final

from cycleloop.core import events
from cycleloop.core.exceptions import CallbackError

__all__ = [
    "Lane",
    "TaskQueue",
    "DEFAULT_MICROTASK_LIMIT",
]

logger = logging.getLogger(__name__)

#: Default cap on microtasks run in a single drain.
DEFAULT_MICROTASK_LIMIT: Final[int] = 10_000


class Lane(StrEnum):
    """Priority lanes for immediate callbacks, highest priority first."""

    TICK = "tick"
    MICROTASK = "microtask"
    IMMEDIATE = "immediate"
    DEFERRED = "deferred"


class TaskQueue:
    """FIFO callback lanes drained by the phase orchestrator.

    Args:
        microtask_limit: Maximum microtasks run by one microtask drain.  When
            the cap is hit the drain stops, a warning is logged and the
            remaining microtasks wait for the next drain.
    """

    def __init__(self, microtask_limit: int = DEFAULT_MICROTASK_LIMIT) -> None:
        if microtask_limit < 1:
            raise ValueError(f"microtask_limit must be >= 1, got {microtask_limit}")
        self._microtask_limit = microtask_limit
        self._lanes: dict[Lane, deque[Callable[[], Any]]] = {lane: deque() for lane in Lane}
        self._executed = 0

    # ------------------------------------------------------------------
    # Enqueueing
    # ------------------------------------------------------------------

    def enqueue(self, lane: Lane | str, callback: Callable[[], Any]) -> None:
        """Append *callback* to *lane*.  Never blocks and never runs it inline."""
        if not callable(callback):
            raise TypeError(f"callback must be callable, got {type(callback).__name__}")
        self._lanes[Lane(lane)].append(callback)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def has_work(self) -> bool:
        """``True`` when any lane holds a callback."""
        return any(self._lanes.values())

    def has_lane_work(self, lane: Lane | str) -> bool:
        return bool(self._lanes[Lane(lane)])

    def has_urgent_work(self) -> bool:
        """``True`` when the tick, microtask or immediate lane is non-empty."""
        return bool(
            self._lanes[Lane.TICK] or self._lanes[Lane.MICROTASK] or self._lanes[Lane.IMMEDIATE]
        )

    def size(self, lane: Lane | str | None = None) -> int:
        """Number of queued callbacks in *lane*, or in all lanes when ``None``."""
        if lane is None:
            return sum(len(q) for q in self._lanes.values())
        return len(self._lanes[Lane(lane)])

    @property
    def executed(self) -> int:
        """Total callbacks run since construction."""
        return self._executed

    # ------------------------------------------------------------------
    # Draining
    # ------------------------------------------------------------------

    def _run_one(self, lane: Lane) -> None:
        entries = self._lanes[lane]
        # A callback may have cleared the lanes mid-batch.
        if not entries:
            return
        callback = entries.popleft()
        self._executed += 1
        try:
            callback()
        except Exception as exc:
            raise CallbackError(lane.value, f"{type(exc).__name__}: {exc}") from exc

    def drain_ticks_and_microtasks(self) -> bool:
        """Run ticks and microtasks until both lanes are empty.

        Tick batches are snapshotted (ticks added by a tick run in the next
        batch, still before any microtask).  Microtasks added during the drain
        run in the same drain, up to the configured cap.

        Returns:
            ``True`` if at least one callback ran.
        """
        ticks = self._lanes[Lane.TICK]
        microtasks = self._lanes[Lane.MICROTASK]
        did_work = False

        while ticks or microtasks:
            if ticks:
                for _ in range(len(ticks)):
                    self._run_one(Lane.TICK)
                did_work = True
                continue

            ran = 0
            while microtasks and ran < self._microtask_limit:
                self._run_one(Lane.MICROTASK)
                ran += 1
            did_work = True
            if microtasks and ran >= self._microtask_limit:
                logger.warning(
                    "Microtask limit of %d reached; %d microtask(s) left queued.",
                    self._microtask_limit,
                    len(microtasks),
                    extra={"event": events.MICROTASK_LIMIT_REACHED},
                )
                break

        return did_work

    def drain_immediate(self, after_batch: Callable[[], Any] | None = None) -> bool:
        """Drain the immediate lane until it is empty.

        Each batch is the set of entries present when the batch starts;
        *after_batch* (normally :meth:`drain_ticks_and_microtasks`) runs after
        every batch, so ticks scheduled by an immediate run before the next
        immediate batch.

        Returns:
            ``True`` if at least one immediate callback ran.
        """
        immediates = self._lanes[Lane.IMMEDIATE]
        did_work = False
        while immediates:
            for _ in range(len(immediates)):
                self._run_one(Lane.IMMEDIATE)
            did_work = True
            if after_batch is not None:
                after_batch()
        return did_work

    def drain_deferred(self) -> bool:
        """Run at most the deferred entries present at entry.

        Deferred callbacks scheduled by a deferred callback wait for the next
        close phase.

        Returns:
            ``True`` if at least one deferred callback ran.
        """
        deferred = self._lanes[Lane.DEFERRED]
        count = len(deferred)
        for _ in range(count):
            self._run_one(Lane.DEFERRED)
        return count > 0

    def clear(self) -> None:
        """Drop every queued callback in every lane."""
        for lane in self._lanes.values():
            lane.clear()

    def stats(self) -> dict[str, int]:
        """Per-lane queue depths plus the lifetime executed count."""
        snapshot = {lane.value: len(q) for lane, q in self._lanes.items()}
        snapshot["executed"] = self._executed
        return snapshot
