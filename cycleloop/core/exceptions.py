"""cycleloop exception taxonomy.

Every custom exception inherits from :class:`CycleLoopError`.  Exceptions are
organised by where they originate so callers can catch at the right
granularity:

    Origin hierarchy
    ----------------
    CycleLoopError
    ├── ConfigError
    ├── LoopStateError
    ├── CallbackError
    │   └── TimerCallbackError
    ├── TaskError
    ├── UnsupportedCapabilityError
    └── WorkSourceError
        ├── HttpTransferError
        │   ├── HttpStatusError
        │   │   └── HttpRateLimitError
        │   └── TransferCancelledError
        └── FileOperationError

Callback, timer and task errors are never swallowed by the loop: they wrap the
user's exception (available as ``__cause__``) and propagate out of
:meth:`~cycleloop.orchestrator.loop.EventLoop.run`.  HTTP and file failures are
*results* of an operation and are handed to the operation's callback instead.

Usage:

    from cycleloop.core.exceptions import CallbackError

    try:
        loop.run()
    except CallbackError as exc:
        logger.error("Lane %s failed: %r", exc.lane, exc.__cause__)
"""

from __future__ import annotations

import logging
from typing import Any

__all__ = [
    "CycleLoopError",
    # Config / lifecycle
    "ConfigError",
    "LoopStateError",
    # Scheduled work
    "CallbackError",
    "TimerCallbackError",
    "TaskError",
    # Platform
    "UnsupportedCapabilityError",
    # Work sources
    "WorkSourceError",
    "HttpTransferError",
    "HttpStatusError",
    "HttpRateLimitError",
    "TransferCancelledError",
    "FileOperationError",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class CycleLoopError(Exception):
    """Root exception for all cycleloop errors.

    Catch this to handle any runtime-level error uniformly.  Prefer catching
    the origin-specific subclasses wherever possible.
    """


# ---------------------------------------------------------------------------
# Config / lifecycle
# ---------------------------------------------------------------------------


class ConfigError(CycleLoopError):
    """Raised when runtime configuration is invalid or incomplete."""


class LoopStateError(CycleLoopError):
    """Raised when a loop operation is not valid in the current state.

    Examples:
        - :meth:`~cycleloop.orchestrator.loop.EventLoop.run` called from a
          callback while the loop is already running.
    """


# ---------------------------------------------------------------------------
# Scheduled work
# ---------------------------------------------------------------------------


class CallbackError(CycleLoopError):
    """Raised when a queued callback raises.

    The original exception is chained as ``__cause__``.

    Args:
        lane: Name of the lane the callback was queued on (``"tick"``,
            ``"microtask"``, ``"immediate"``, ``"deferred"`` or ``"timer"``).
        message: Human-readable error description.
    """

    def __init__(self, lane: str, message: str) -> None:
        self.lane = lane
        super().__init__(f"[{lane}] {message}")


class TimerCallbackError(CallbackError):
    """Raised when a timer callback raises.

    By the time this surfaces the timer has already been removed (one-shot,
    exhausted periodic) or rescheduled (periodic with executions left).

    Args:
        timer_id: Id of the timer whose callback failed.
        message: Human-readable error description.
    """

    def __init__(self, timer_id: str, message: str) -> None:
        self.timer_id = timer_id
        super().__init__("timer", f"{timer_id}: {message}")


class TaskError(CycleLoopError):
    """Raised when a cooperative task raises.

    The failing task is already terminated and removed from the scheduler's
    ready queue and suspended set when this propagates.

    Args:
        task: The failed :class:`~cycleloop.scheduling.tasks.Task`.
        message: Human-readable error description.
    """

    def __init__(self, task: Any, message: str) -> None:
        self.task = task
        super().__init__(f"Task {getattr(task, 'name', task)!s} failed: {message}")


# ---------------------------------------------------------------------------
# Platform
# ---------------------------------------------------------------------------


class UnsupportedCapabilityError(CycleLoopError):
    """Raised synchronously when a platform-unavailable capability is requested.

    Args:
        capability: Short name of the capability (e.g. ``"signals"``).
        message: Human-readable explanation.
    """

    def __init__(self, capability: str, message: str) -> None:
        self.capability = capability
        super().__init__(f"{capability} unsupported: {message}")


# ---------------------------------------------------------------------------
# Work sources
# ---------------------------------------------------------------------------


class WorkSourceError(CycleLoopError):
    """Base class for errors produced by a work source.

    Args:
        source: Short name of the source (e.g. ``"http"``).
        message: Human-readable error description.
    """

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        super().__init__(f"[{source}] {message}")


class HttpTransferError(WorkSourceError):
    """Raised (or delivered to a transfer callback) when a transfer fails.

    Covers network errors and timeouts after retries are exhausted.

    Args:
        url: Request URL.
        message: Human-readable error description.
        request_id: Transfer id, when known.
    """

    def __init__(self, url: str, message: str, *, request_id: str | None = None) -> None:
        self.url = url
        self.request_id = request_id
        super().__init__("http", message)


class HttpStatusError(HttpTransferError):
    """The remote answered with a non-success status.

    Args:
        url: Request URL.
        status_code: HTTP status code of the final response.
        message: Human-readable error description.
    """

    def __init__(
        self,
        url: str,
        status_code: int,
        message: str,
        *,
        request_id: str | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(url, f"HTTP {status_code}: {message}", request_id=request_id)


class HttpRateLimitError(HttpStatusError):
    """The remote answered HTTP 429 (Too Many Requests).

    Args:
        url: Request URL.
        retry_after: Recommended back-off interval in seconds, if known.
    """

    def __init__(
        self,
        url: str,
        retry_after: float | None = None,
        *,
        request_id: str | None = None,
    ) -> None:
        self.retry_after = retry_after
        detail = f"retry after {retry_after}s" if retry_after is not None else "no retry hint"
        super().__init__(url, 429, f"Rate limited, {detail}", request_id=request_id)


class TransferCancelledError(HttpTransferError):
    """Delivered to a transfer callback when the transfer was cancelled or cleared."""


class FileOperationError(WorkSourceError):
    """Delivered to a file-operation callback when the operation fails.

    Args:
        path: Filesystem path the operation targeted.
        message: Human-readable error description.
        operation_id: Operation id, when known.
    """

    def __init__(self, path: str, message: str, *, operation_id: str | None = None) -> None:
        self.path = path
        self.operation_id = operation_id
        super().__init__("file", message)
