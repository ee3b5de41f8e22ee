"""Core settings, logging configuration, option models, ids, and exceptions."""

from cycleloop.core.exceptions import (
    CallbackError,
    ConfigError,
    CycleLoopError,
    FileOperationError,
    HttpRateLimitError,
    HttpStatusError,
    HttpTransferError,
    LoopStateError,
    TaskError,
    TimerCallbackError,
    TransferCancelledError,
    UnsupportedCapabilityError,
    WorkSourceError,
)
from cycleloop.core.logging_config import JsonFormatter, configure_logging
from cycleloop.core.models import (
    FileOperationKind,
    FileOperationOptions,
    FileWatchEvent,
    FileWatcherOptions,
    HttpRequestSpec,
    StreamWatchKind,
)
from cycleloop.core.settings import LoopSettings

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    # Option models
    "FileOperationKind",
    "FileOperationOptions",
    "FileWatchEvent",
    "FileWatcherOptions",
    "HttpRequestSpec",
    "StreamWatchKind",
    # Settings
    "LoopSettings",
    # Exceptions, base
    "CycleLoopError",
    # Exceptions, config / lifecycle
    "ConfigError",
    "LoopStateError",
    # Exceptions, scheduled work
    "CallbackError",
    "TimerCallbackError",
    "TaskError",
    # Exceptions, platform
    "UnsupportedCapabilityError",
    # Exceptions, work sources
    "WorkSourceError",
    "HttpTransferError",
    "HttpStatusError",
    "HttpRateLimitError",
    "TransferCancelledError",
    "FileOperationError",
]
