"""Run/stop state machine for the event loop.

State machine
~~~~~~~~~~~~~
::

    RUNNING ──(stop)──▶ GRACEFUL_STOPPING(since)
       │                        │
       │                        │ (graceful timeout elapsed, or force_stop)
       │                        ▼
       └──────(force_stop)──▶ FORCE_STOPPED

Terminology
~~~~~~~~~~~
* **Graceful window**: the time after ``stop()`` during which the loop keeps
  running cycles so pending work can finish.  It lasts at most
  ``graceful_timeout`` seconds.
* **Forced stop**: the unconditional hard clear of every lane, the timer
  heap, the task sets and every work source.

The machine itself never clears anything; it only answers questions.  The
:class:`~cycleloop.orchestrator.loop.EventLoop` performs the clear when it
moves the machine to ``FORCE_STOPPED``.

Typical usage::

    from cycleloop.orchestrator.state import RunStateMachine

    state = RunStateMachine(graceful_timeout=2.0)
    state.stop()
    if state.should_force_shutdown():
        state.force_stop()
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import StrEnum
from typing import Final

__all__ = [
    "RunState",
    "RunStateMachine",
    "MIN_GRACEFUL_TIMEOUT",
    "DEFAULT_GRACEFUL_TIMEOUT",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Default graceful window in seconds.
DEFAULT_GRACEFUL_TIMEOUT: Final[float] = 2.0

#: Shortest graceful window accepted; smaller values are raised to this.
MIN_GRACEFUL_TIMEOUT: Final[float] = 0.1


class RunState(StrEnum):
    """Possible states of the run loop."""

    RUNNING = "running"
    """Normal operation; cycles run while there is work."""

    GRACEFUL_STOPPING = "graceful_stopping"
    """``stop()`` was called; pending work may finish within the window."""

    FORCE_STOPPED = "force_stopped"
    """All pending work was cleared; the loop exits."""


class RunStateMachine:
    """Tracks the loop's run state and the graceful-shutdown deadline.

    Args:
        graceful_timeout: Seconds of graceful window; values below
            :data:`MIN_GRACEFUL_TIMEOUT` are raised to it.
        clock: Callable returning a monotonic timestamp (seconds).  Defaults
            to :func:`time.monotonic`.  Override in tests for deterministic
            behaviour.
    """

    def __init__(
        self,
        graceful_timeout: float = DEFAULT_GRACEFUL_TIMEOUT,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._clock = clock or time.monotonic
        self._graceful_timeout = max(MIN_GRACEFUL_TIMEOUT, graceful_timeout)
        self._state = RunState.RUNNING
        self._stop_requested_at: float | None = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def graceful_timeout(self) -> float:
        return self._graceful_timeout

    def is_running(self) -> bool:
        return self._state is RunState.RUNNING

    def is_in_graceful_shutdown(self) -> bool:
        return self._state is RunState.GRACEFUL_STOPPING

    def is_force_stopped(self) -> bool:
        return self._state is RunState.FORCE_STOPPED

    def time_since_stop(self) -> float:
        """Seconds since ``stop()`` moved the loop out of RUNNING (``0.0`` if never)."""
        if self._stop_requested_at is None:
            return 0.0
        return self._clock() - self._stop_requested_at

    def should_force_shutdown(self) -> bool:
        """``True`` once the graceful window has elapsed."""
        return self.is_in_graceful_shutdown() and self.time_since_stop() > self._graceful_timeout

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def stop(self) -> bool:
        """RUNNING -> GRACEFUL_STOPPING.  No-op in any other state.

        Returns:
            ``True`` if the transition happened.
        """
        if self._state is not RunState.RUNNING:
            return False
        self._state = RunState.GRACEFUL_STOPPING
        self._stop_requested_at = self._clock()
        return True

    def force_stop(self) -> None:
        """Any state -> FORCE_STOPPED."""
        if self._stop_requested_at is None:
            self._stop_requested_at = self._clock()
        self._state = RunState.FORCE_STOPPED

    def set_graceful_timeout(self, timeout: float) -> None:
        self._graceful_timeout = max(MIN_GRACEFUL_TIMEOUT, timeout)
