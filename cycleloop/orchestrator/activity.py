"""Adaptive idle detection backing ``EventLoop.is_idle()``.

The tracker records a timestamp every time a loop cycle does work and keeps
an exponential moving average (EMA) of the interval between two records.
The loop counts as idle when nothing happened for longer than a threshold:

* for the first 100 records, the fixed ``idle_threshold`` (5 s by default);
* afterwards, ``max(1 s, 10 x EMA)``, so a loop that is normally busy every
  few milliseconds is reported idle after a second of silence, while a loop
  with sparse activity gets a proportionally longer grace period.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Final

__all__ = ["ActivityTracker"]

logger = logging.getLogger(__name__)

#: Records needed before the adaptive threshold replaces the fixed one.
_ADAPTIVE_AFTER: Final[int] = 100

#: Lower bound of the adaptive threshold in seconds.
_MIN_ADAPTIVE_THRESHOLD: Final[float] = 1.0

#: Multiple of the average activity interval used as the adaptive threshold.
_ADAPTIVE_FACTOR: Final[float] = 10.0

#: Weight of the previous average in the EMA update.
_EMA_DECAY: Final[float] = 0.9


class ActivityTracker:
    """Records loop activity and answers whether the loop has gone idle.

    Args:
        idle_threshold: Seconds without activity before the loop is idle,
            used until enough records exist for the adaptive threshold.
        clock: Callable returning monotonic seconds.  Defaults to
            :func:`time.monotonic`.
    """

    def __init__(
        self,
        idle_threshold: float = 5.0,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._clock = clock or time.monotonic
        self._idle_threshold = idle_threshold
        self._last_activity = self._clock()
        self._count = 0
        self._avg_interval = 0.0

    def record(self) -> None:
        """Mark that the loop just did work."""
        now = self._clock()
        if self._count > 0:
            interval = now - self._last_activity
            self._avg_interval = self._avg_interval * _EMA_DECAY + interval * (1 - _EMA_DECAY)
        self._last_activity = now
        self._count += 1

    def threshold(self) -> float:
        """Current idle threshold in seconds."""
        if self._count > _ADAPTIVE_AFTER:
            return max(_MIN_ADAPTIVE_THRESHOLD, self._avg_interval * _ADAPTIVE_FACTOR)
        return self._idle_threshold

    def is_idle(self) -> bool:
        return self.idle_for() > self.threshold()

    def idle_for(self) -> float:
        """Seconds since the last recorded activity."""
        return self._clock() - self._last_activity

    def stats(self) -> dict[str, float]:
        return {
            "count": self._count,
            "avg_interval_s": self._avg_interval,
            "idle_for_s": self.idle_for(),
        }
