"""Cumulative run statistics for the event loop.

Tracks lifetime totals across every loop iteration and provides two output
paths:

1. **Log summary**: :meth:`LoopStats.format_summary` returns a
   human-readable string suitable for a single ``logger.info()`` call.
2. **JSON stats file**: :func:`write_stats_file` serialises a snapshot to a
   file (default ``/tmp/cycleloop_stats.json``, overridable via
   ``CYCLELOOP_STATS_PATH``).

Write errors are logged at WARNING level and never propagated.  A stats-file
failure must not crash the loop.

Typical usage::

    from cycleloop.orchestrator.metrics import write_stats_file

    loop.run()
    logger.info("%s", loop.loop_stats.format_summary())
    write_stats_file(loop.stats())
"""

from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

__all__ = [
    "STATS_PATH",
    "LoopStats",
    "write_stats_file",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Stats file path constant
# ---------------------------------------------------------------------------

#: Destination for the JSON stats snapshot.  Override via the
#: ``CYCLELOOP_STATS_PATH`` environment variable if ``/tmp`` is not writable.
STATS_PATH: str = os.environ.get("CYCLELOOP_STATS_PATH", "/tmp/cycleloop_stats.json")


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class LoopStats:
    """Counters accumulated by an :class:`~cycleloop.orchestrator.loop.EventLoop`.

    Attributes:
        iterations: Cycles run, including graceful-window cycles.
        cycles_with_work: Cycles in which at least one phase did work.
        idle_sleeps: Times the loop slept because a cycle found nothing to do.
        total_sleep_s: Seconds spent in those idle sleeps.
        runs: Completed calls to ``run()``.
        graceful_shutdowns: Graceful windows entered after ``stop()``.
        forced_stops: Hard clears performed by ``force_stop()``.
        callback_errors: Callback, timer and task errors that escaped a cycle.
    """

    iterations: int = 0
    cycles_with_work: int = 0
    idle_sleeps: int = 0
    total_sleep_s: float = 0.0
    runs: int = 0
    graceful_shutdowns: int = 0
    forced_stops: int = 0
    callback_errors: int = 0

    # --- private (excluded from repr for brevity) ---
    _start_monotonic: float = field(default_factory=time.monotonic, repr=False)
    _started_at: datetime = field(
        default_factory=lambda: datetime.now(UTC),
        repr=False,
    )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def uptime_s(self) -> float:
        """Seconds since this :class:`LoopStats` instance was created."""
        return time.monotonic() - self._start_monotonic

    @property
    def busy_ratio(self) -> float:
        """Fraction of iterations that did work (``0.0`` before the first)."""
        if not self.iterations:
            return 0.0
        return self.cycles_with_work / self.iterations

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def record_cycle(self, did_work: bool) -> None:
        self.iterations += 1
        if did_work:
            self.cycles_with_work += 1

    def record_sleep(self, seconds: float) -> None:
        self.idle_sleeps += 1
        self.total_sleep_s += seconds

    # ------------------------------------------------------------------
    # Serialisation / formatting
    # ------------------------------------------------------------------

    def format_summary(self) -> str:
        """Return a human-readable two-line summary for logging.

        Example output::

            loop stats | uptime: 0h00m03s | iterations=412 busy=37 runs=1
              idle_sleeps=375 slept=2.981s graceful=1 forced=0 errors=0

        Returns:
            Multi-line string suitable for a single ``logger.info()`` call.
        """
        hours, rem = divmod(int(self.uptime_s), 3600)
        minutes, seconds = divmod(rem, 60)
        header = (
            f"loop stats | uptime: {hours}h{minutes:02d}m{seconds:02d}s | "
            f"iterations={self.iterations} busy={self.cycles_with_work} runs={self.runs}"
        )
        detail = (
            f"  idle_sleeps={self.idle_sleeps} slept={self.total_sleep_s:.3f}s "
            f"graceful={self.graceful_shutdowns} forced={self.forced_stops} "
            f"errors={self.callback_errors}"
        )
        return "\n".join([header, detail])

    def as_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the counters.

        The ``started_at`` key is an ISO-8601 string in UTC.  ``uptime_s``
        is rounded to one decimal place.
        """
        return {
            "started_at": self._started_at.isoformat(),
            "uptime_s": round(self.uptime_s, 1),
            "iterations": self.iterations,
            "cycles_with_work": self.cycles_with_work,
            "idle_sleeps": self.idle_sleeps,
            "total_sleep_s": round(self.total_sleep_s, 6),
            "runs": self.runs,
            "graceful_shutdowns": self.graceful_shutdowns,
            "forced_stops": self.forced_stops,
            "callback_errors": self.callback_errors,
        }


# ---------------------------------------------------------------------------
# Stats file writer
# ---------------------------------------------------------------------------


def write_stats_file(
    stats: LoopStats | Mapping[str, object],
    path: str = STATS_PATH,
) -> None:
    """Write a JSON snapshot of *stats* to *path*.

    Errors are logged at ``WARNING`` level and never propagated.

    Args:
        stats: A :class:`LoopStats` instance, or an already-built snapshot
            such as the one returned by ``EventLoop.stats()``.
        path: Destination file path.  Defaults to :data:`STATS_PATH`.
    """
    payload = stats.as_dict() if isinstance(stats, LoopStats) else dict(stats)
    try:
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, default=str)
    except OSError:
        logger.warning("Failed to write stats file '%s'.", path, exc_info=True)
