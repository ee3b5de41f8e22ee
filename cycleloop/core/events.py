"""Structured log event name constants for the cycleloop runtime.

Every key transition in the loop emits a log record with an ``event`` field
(passed via ``extra={"event": events.X}``).  Using named constants instead of
raw strings keeps them greppable and lets ``LOG_FORMAT=json`` consumers query
``extra.event`` reliably.

Usage example::

    import logging
    from cycleloop.core import events

    logger = logging.getLogger(__name__)

    logger.info("Loop started", extra={"event": events.LOOP_START})

Hot paths (individual callbacks, individual timer fires) never log; only
lifecycle transitions and anomalies do.
"""

from __future__ import annotations

__all__ = [
    # Loop lifecycle
    "LOOP_START",
    "LOOP_EXIT",
    "LOOP_STOP_REQUESTED",
    "LOOP_GRACEFUL_SHUTDOWN",
    "LOOP_FORCE_STOP",
    # Scheduling anomalies
    "MICROTASK_LIMIT_REACHED",
    "TIMER_HEAP_REBUILT",
    "TASK_FAILED",
    "TASK_REJECTED",
    "CALLBACK_FAILED",
    # Work sources
    "SOURCE_CLEARED",
    "SIGNAL_DISPATCHED",
    "HTTP_TRANSFER_DONE",
    "HTTP_TRANSFER_FAILED",
    "HTTP_TRANSFER_CANCELLED",
    "FILE_OPERATION_DONE",
    "FILE_OPERATION_FAILED",
    "FILE_OPERATION_CANCELLED",
    "FILE_WATCH_CHANGE",
]

# ---------------------------------------------------------------------------
# Loop lifecycle
# ---------------------------------------------------------------------------

#: Emitted once when :meth:`~cycleloop.orchestrator.loop.EventLoop.run` starts.
LOOP_START: str = "LOOP_START"

#: Emitted once when :meth:`~cycleloop.orchestrator.loop.EventLoop.run` returns.
LOOP_EXIT: str = "LOOP_EXIT"

#: ``stop()`` moved the loop from RUNNING to GRACEFUL_STOPPING.
LOOP_STOP_REQUESTED: str = "LOOP_STOP_REQUESTED"

#: The graceful window started because work was still pending after ``stop()``.
LOOP_GRACEFUL_SHUTDOWN: str = "LOOP_GRACEFUL_SHUTDOWN"

#: All pending work was hard-cleared.
LOOP_FORCE_STOP: str = "LOOP_FORCE_STOP"

# ---------------------------------------------------------------------------
# Scheduling anomalies
# ---------------------------------------------------------------------------

#: Microtask drain hit its iteration cap; remaining entries stay queued.
MICROTASK_LIMIT_REACHED: str = "MICROTASK_LIMIT_REACHED"

#: Timer heap rebuilt from the live table to drop accumulated tombstones.
TIMER_HEAP_REBUILT: str = "TIMER_HEAP_REBUILT"

#: A cooperative task raised; it was terminated before the error propagated.
TASK_FAILED: str = "TASK_FAILED"

#: A task was dropped because the scheduler stopped accepting new tasks.
TASK_REJECTED: str = "TASK_REJECTED"

#: A queued or timer callback raised; the error propagates out of the loop.
CALLBACK_FAILED: str = "CALLBACK_FAILED"

# ---------------------------------------------------------------------------
# Work sources
# ---------------------------------------------------------------------------

#: A work source dropped all pending/active work (force stop).
SOURCE_CLEARED: str = "SOURCE_CLEARED"

#: A pending OS signal was delivered to its listeners.
SIGNAL_DISPATCHED: str = "SIGNAL_DISPATCHED"

#: An HTTP transfer completed with a success status.
HTTP_TRANSFER_DONE: str = "HTTP_TRANSFER_DONE"

#: An HTTP transfer failed after retries.
HTTP_TRANSFER_FAILED: str = "HTTP_TRANSFER_FAILED"

#: An HTTP transfer was cancelled or cleared.
HTTP_TRANSFER_CANCELLED: str = "HTTP_TRANSFER_CANCELLED"

#: A file operation completed successfully.
FILE_OPERATION_DONE: str = "FILE_OPERATION_DONE"

#: A file operation failed; the error was handed to its callback.
FILE_OPERATION_FAILED: str = "FILE_OPERATION_FAILED"

#: A file operation was cancelled before completing.
FILE_OPERATION_CANCELLED: str = "FILE_OPERATION_CANCELLED"

#: A watched path changed (modified or deleted).
FILE_WATCH_CHANGE: str = "FILE_WATCH_CHANGE"
