"""Timer heap with lazy tombstone cancellation.

Timers are kept in two structures:

* a live table ``id -> Timer``, the single source of truth for whether a
  timer exists, and
* a binary min-heap of ``(deadline_ns, seq, id)`` entries ordered by
  absolute monotonic deadline, then by creation order.

Cancelling a timer only removes it from the live table.  Its heap entry stays
behind as a *tombstone* and is discarded the next time it reaches the heap
root.  When tombstones outnumber both the rebuild threshold and the live
timers, the heap is rebuilt from the live table in one ``heapify``.

Firing order
~~~~~~~~~~~~
:meth:`TimerWheel.process_timers` fires **exactly one** ready timer per call
so the orchestrator can drain ticks and microtasks between two timer fires.
A periodic timer is rescheduled (or dropped once it has run
``max_executions`` times) *before* its callback runs, so the callback sees a
consistent table and may cancel its own timer.

Typical usage::

    from cycleloop.scheduling.timers import TimerWheel

    wheel = TimerWheel()
    timer_id = wheel.add_timer(0.5, lambda: print("fired"))
    wheel.cancel_timer(timer_id)      # True
    wheel.cancel_timer(timer_id)      # False, already gone
"""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Final

from cycleloop.core import events
from cycleloop.core.exceptions import TimerCallbackError
from cycleloop.core.ids import IdSequence

__all__ = [
    "Timer",
    "TimerWheel",
    "DEFAULT_REBUILD_THRESHOLD",
]

logger = logging.getLogger(__name__)

#: Default minimum tombstone count before a heap rebuild is considered.
DEFAULT_REBUILD_THRESHOLD: Final[int] = 1_000

_NS_PER_SECOND: Final[int] = 1_000_000_000


def _to_ns(seconds: float) -> int:
    return int(round(seconds * _NS_PER_SECOND))


@dataclass
class Timer:
    """One live timer.

    Attributes:
        id: Opaque ``"timer:<n>"`` identifier.
        deadline_ns: Absolute monotonic deadline in nanoseconds.
        callback: Zero-argument callable run when the timer fires.
        seq: Scheduling sequence number, breaks deadline ties.  Renewed on
            every periodic reschedule.
        interval_ns: Repeat interval for periodic timers, ``None`` for one-shot.
        max_executions: Fire limit for periodic timers, ``None`` for unlimited.
        execution_count: Number of times the timer has fired so far.
    """

    id: str
    deadline_ns: int
    callback: Callable[[], Any]
    seq: int
    interval_ns: int | None = None
    max_executions: int | None = None
    execution_count: int = 0

    @property
    def is_periodic(self) -> bool:
        return self.interval_ns is not None

    def as_dict(self, now_ns: int) -> dict[str, Any]:
        """Introspection snapshot; remaining time is relative to *now_ns*."""
        return {
            "id": self.id,
            "periodic": self.is_periodic,
            "remaining_s": max(0, self.deadline_ns - now_ns) / _NS_PER_SECOND,
            "interval_s": (
                self.interval_ns / _NS_PER_SECOND if self.interval_ns is not None else None
            ),
            "max_executions": self.max_executions,
            "execution_count": self.execution_count,
        }


class TimerWheel:
    """Min-heap of one-shot and periodic timers.

    Args:
        clock: Callable returning a monotonic timestamp in **nanoseconds**.
            Defaults to :func:`time.monotonic_ns`.  Override in tests for
            deterministic behaviour.
        rebuild_threshold: Minimum tombstone count before the heap is rebuilt.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], int] | None = None,
        rebuild_threshold: int = DEFAULT_REBUILD_THRESHOLD,
    ) -> None:
        self._clock = clock or time.monotonic_ns
        self._rebuild_threshold = rebuild_threshold
        self._timers: dict[str, Timer] = {}
        self._heap: list[tuple[int, int, str]] = []
        self._ids = IdSequence("timer")
        self._seq = itertools.count(1)
        self._last_seq = 0
        self._tombstones = 0
        self._fired = 0
        self._rebuilds = 0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _insert(self, timer: Timer) -> str:
        self._timers[timer.id] = timer
        heapq.heappush(self._heap, (timer.deadline_ns, timer.seq, timer.id))
        return timer.id

    def _new_seq(self) -> int:
        self._last_seq = next(self._seq)
        return self._last_seq

    def _purge_root(self) -> None:
        """Pop tombstones sitting at the heap root."""
        heap = self._heap
        while heap and heap[0][2] not in self._timers:
            heapq.heappop(heap)
            if self._tombstones:
                self._tombstones -= 1

    def _maybe_rebuild(self) -> None:
        if self._tombstones <= self._rebuild_threshold or self._tombstones <= len(self._timers):
            return
        dropped = self._tombstones
        self._heap = [(t.deadline_ns, t.seq, t.id) for t in self._timers.values()]
        heapq.heapify(self._heap)
        self._tombstones = 0
        self._rebuilds += 1
        logger.debug(
            "Timer heap rebuilt: dropped %d tombstone(s), %d live timer(s).",
            dropped,
            len(self._timers),
            extra={"event": events.TIMER_HEAP_REBUILT},
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_timer(self, delay: float, callback: Callable[[], Any]) -> str:
        """Schedule *callback* once, *delay* seconds from now.

        Raises:
            ValueError: If *delay* is negative.
        """
        if delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")
        timer = Timer(
            id=self._ids.next(),
            deadline_ns=self._clock() + _to_ns(delay),
            callback=callback,
            seq=self._new_seq(),
        )
        return self._insert(timer)

    def add_periodic_timer(
        self,
        interval: float,
        callback: Callable[[], Any],
        max_executions: int | None = None,
    ) -> str:
        """Schedule *callback* every *interval* seconds.

        Args:
            interval: Seconds between fires; the first fire is one interval
                from now.
            callback: Zero-argument callable.
            max_executions: Stop after this many fires; ``None`` repeats until
                cancelled.

        Raises:
            ValueError: If *interval* is not positive or *max_executions* < 1.
        """
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        if max_executions is not None and max_executions < 1:
            raise ValueError(f"max_executions must be >= 1, got {max_executions}")
        interval_ns = max(1, _to_ns(interval))
        timer = Timer(
            id=self._ids.next(),
            deadline_ns=self._clock() + interval_ns,
            callback=callback,
            seq=self._new_seq(),
            interval_ns=interval_ns,
            max_executions=max_executions,
        )
        return self._insert(timer)

    def cancel_timer(self, timer_id: str) -> bool:
        """Cancel *timer_id*.

        Returns:
            ``True`` if a live timer was cancelled, ``False`` for unknown or
            already-finished ids.
        """
        if self._timers.pop(timer_id, None) is None:
            return False
        self._tombstones += 1
        self._maybe_rebuild()
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_timer(self, timer_id: str) -> bool:
        return timer_id in self._timers

    def has_timers(self) -> bool:
        return bool(self._timers)

    def horizon(self) -> tuple[int, int]:
        """Return ``(now_ns, last_seq)`` for bounding one timer phase.

        Passing these to :meth:`has_ready_timers` and :meth:`process_timers`
        keeps timers created after the call out of the current phase.
        """
        return self._clock(), self._last_seq

    def has_ready_timers(self, *, now_ns: int | None = None, max_seq: int | None = None) -> bool:
        """``True`` if the earliest live timer is due at *now_ns*."""
        self._purge_root()
        if not self._heap:
            return False
        deadline_ns, seq, _ = self._heap[0]
        if now_ns is None:
            now_ns = self._clock()
        if max_seq is not None and seq > max_seq:
            return False
        return deadline_ns <= now_ns

    def get_next_timer_delay(self) -> float | None:
        """Seconds until the earliest live deadline (``0.0`` if overdue).

        Returns ``None`` when no timer is live.
        """
        self._purge_root()
        if not self._heap:
            return None
        remaining = self._heap[0][0] - self._clock()
        return max(0, remaining) / _NS_PER_SECOND

    def timer_info(self, timer_id: str) -> dict[str, Any] | None:
        timer = self._timers.get(timer_id)
        return timer.as_dict(self._clock()) if timer is not None else None

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    def process_timers(self, *, now_ns: int | None = None, max_seq: int | None = None) -> bool:
        """Fire the earliest ready timer, if any.

        Returns:
            ``True`` if a timer fired.

        Raises:
            TimerCallbackError: If the callback raised.  The timer has already
                been rescheduled or removed.
        """
        if not self.has_ready_timers(now_ns=now_ns, max_seq=max_seq):
            return False

        _, _, timer_id = heapq.heappop(self._heap)
        timer = self._timers[timer_id]
        timer.execution_count += 1

        if timer.interval_ns is not None and (
            timer.max_executions is None or timer.execution_count < timer.max_executions
        ):
            timer.deadline_ns += timer.interval_ns
            # A fresh sequence number keeps a late repeat out of the current phase.
            timer.seq = self._new_seq()
            heapq.heappush(self._heap, (timer.deadline_ns, timer.seq, timer.id))
        else:
            del self._timers[timer_id]

        self._fired += 1
        try:
            timer.callback()
        except Exception as exc:
            raise TimerCallbackError(timer_id, f"{type(exc).__name__}: {exc}") from exc
        return True

    # ------------------------------------------------------------------
    # Shutdown / introspection
    # ------------------------------------------------------------------

    def clear_all_timers(self) -> None:
        """Drop every timer and every tombstone."""
        self._timers.clear()
        self._heap.clear()
        self._tombstones = 0

    def stats(self) -> dict[str, int]:
        return {
            "live": len(self._timers),
            "heap_size": len(self._heap),
            "tombstones": self._tombstones,
            "fired": self._fired,
            "rebuilds": self._rebuilds,
        }
