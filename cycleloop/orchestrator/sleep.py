"""Idle sleep duration for work-free loop cycles.

When a cycle did no work and nothing is immediately runnable, the loop sleeps
instead of spinning.  The duration is bounded on both sides:

* the **ceiling** (1 ms on Windows, 10 ms elsewhere) bounds how stale
  readiness that nothing signals (a suspended task, a file watcher) can get;
* the **floor** (100 us) avoids sub-millisecond sleeps that cost more in
  syscalls than they save.

With a timer pending the loop sleeps for ``ratio`` (0.9) of the time left
until its deadline, so it wakes slightly early rather than late.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from cycleloop.core.settings import default_max_sleep

__all__ = ["IdleSleepController"]

logger = logging.getLogger(__name__)


class IdleSleepController:
    """Computes how long an idle loop may sleep.

    Args:
        next_timer_delay: Returns seconds until the earliest timer deadline,
            or ``None`` when no timer is live.
        has_immediate_work: Returns ``True`` when something can run now.
        max_sleep: Ceiling in seconds; defaults to the platform value.
        min_sleep: Floor in seconds.
        buffer_ratio: Fraction of the next timer delay to sleep for.
    """

    def __init__(
        self,
        next_timer_delay: Callable[[], float | None],
        has_immediate_work: Callable[[], bool],
        *,
        max_sleep: float | None = None,
        min_sleep: float = 0.0001,
        buffer_ratio: float = 0.9,
    ) -> None:
        self._next_timer_delay = next_timer_delay
        self._has_immediate_work = has_immediate_work
        self.max_sleep = max_sleep if max_sleep is not None else default_max_sleep()
        self.min_sleep = min(min_sleep, self.max_sleep)
        self.buffer_ratio = buffer_ratio

    def next_sleep_duration(self) -> float:
        """Seconds to sleep now; ``0.0`` whenever immediate work exists."""
        if self._has_immediate_work():
            return 0.0
        delay = self._next_timer_delay()
        if delay is None:
            return self.max_sleep
        return min(self.max_sleep, max(self.min_sleep, delay * self.buffer_ratio))
