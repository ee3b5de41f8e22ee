"""Process-wide logging setup for cycleloop.

Every record emitted while a loop cycle is running is tagged with that
cycle's iteration number, so a callback's log lines can be grouped with the
phase output of the same cycle.  Records logged with
``extra={"event": events.X}`` also carry a stable event tag.

Modules log through a module-level logger and never configure handlers
themselves::

    import logging
    logger = logging.getLogger(__name__)

Only entry points call :func:`configure_logging`.  Environment fallbacks
(read at call time)::

    CYCLELOOP_LOG_LEVEL   DEBUG | INFO | WARNING | ERROR | CRITICAL   (default: INFO)
    CYCLELOOP_LOG_FORMAT  text | json                                 (default: text)
"""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any, Final

__all__ = [
    "CYCLE_ID_CTX",
    "CycleContextFilter",
    "JsonFormatter",
    "configure_logging",
    "cycle_context",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Cycle tagging
# ---------------------------------------------------------------------------

#: Iteration number of the cycle currently running, as a string.
#: ``"-"`` outside any cycle (startup, shutdown, plain test code).
CYCLE_ID_CTX: ContextVar[str] = ContextVar("cycle_id", default="-")

#: Placeholder used when a record carries no cycle or no event tag.
_UNSET: Final[str] = "-"


@contextmanager
def cycle_context(cycle_id: int | str) -> Iterator[None]:
    """Tag every record logged inside the block with *cycle_id*.

    Typical usage::

        with cycle_context(loop.iteration_count):
            orchestrator.process_cycle()
    """
    token = CYCLE_ID_CTX.set(str(cycle_id))
    try:
        yield
    finally:
        CYCLE_ID_CTX.reset(token)


class CycleContextFilter(logging.Filter):
    """Give every record ``cycle_id`` and ``event`` attributes.

    ``event`` is left untouched when the call site passed one through
    ``extra``; otherwise it is set to ``"-"`` so the text format never fails
    on a missing key.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.cycle_id = CYCLE_ID_CTX.get()
        if not hasattr(record, "event"):
            record.event = _UNSET
        return True


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_TEXT_FORMAT: Final[str] = (
    "%(asctime)s.%(msecs)03d %(levelname)-8s cycle=%(cycle_id)s "
    "%(name)s [%(event)s] %(message)s"
)
_DATE_FORMAT: Final[str] = "%H:%M:%S"
_FORMATS: Final[frozenset[str]] = frozenset({"text", "json"})

#: Libraries that log per request or per loop creation at INFO/DEBUG.
_CHATTY_LOGGERS: Final[tuple[str, ...]] = ("httpx", "httpcore", "asyncio")


def _resolve_level(level: str | None) -> str:
    name = (level or os.environ.get("CYCLELOOP_LOG_LEVEL") or "INFO").upper()
    known = {n for n in logging.getLevelNamesMapping() if n not in ("NOTSET", "WARN", "FATAL")}
    if name not in known:
        raise ValueError(f"Unknown log level {name!r}. Must be one of: {', '.join(sorted(known))}")
    return name


def _resolve_format(fmt: str | None) -> str:
    name = (fmt or os.environ.get("CYCLELOOP_LOG_FORMAT") or "text").lower()
    if name not in _FORMATS:
        raise ValueError(f"Unknown log format {name!r}. Must be one of: {', '.join(sorted(_FORMATS))}")
    return name


def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    force: bool = False,
) -> None:
    """Install a single stderr handler on the root logger.

    Args:
        level: Level name.  Falls back to ``$CYCLELOOP_LOG_LEVEL``, then INFO.
        fmt: ``"text"`` or ``"json"``.  Falls back to
            ``$CYCLELOOP_LOG_FORMAT``, then text.
        force: Replace existing root handlers.  Without it an already
            configured root logger (pytest's ``log_cli``, an embedding
            application) only has its level adjusted.

    Raises:
        ValueError: If *level* or *fmt* is not recognised.
    """
    resolved_level = _resolve_level(level)
    resolved_fmt = _resolve_format(fmt)

    root = logging.getLogger()
    root.setLevel(resolved_level)
    if root.handlers and not force:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(CycleContextFilter())
    if resolved_fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt=_DATE_FORMAT))
    root.handlers = [handler]

    chatty_level = logging.DEBUG if resolved_level == "DEBUG" else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(chatty_level)

    logger.debug("Logging configured: level=%s format=%s", resolved_level, resolved_fmt)


# ---------------------------------------------------------------------------
# JSON output
# ---------------------------------------------------------------------------


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with the cycle and event tags at top level.

    Example line::

        {"ts": "2026-03-01T09:15:02.114Z", "level": "INFO",
         "logger": "cycleloop.orchestrator.loop", "cycle_id": "-",
         "event": "LOOP_START", "message": "Event loop started.", "extra": {}}

    Anything else passed through ``extra=`` lands under ``"extra"``.
    Tracebacks appear as ``"exc_info"``.
    """

    _STANDARD_ATTRS: Final[frozenset[str]] = frozenset(
        logging.LogRecord("", 0, "", 0, "", None, None).__dict__
    ) | {"message", "asctime", "cycle_id", "event"}

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        created = datetime.fromtimestamp(record.created, tz=UTC)
        payload: dict[str, Any] = {
            "ts": created.strftime("%Y-%m-%dT%H:%M:%S.") + f"{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "cycle_id": getattr(record, "cycle_id", CYCLE_ID_CTX.get()),
            "event": getattr(record, "event", _UNSET),
            "message": record.getMessage(),
            "extra": {
                key: value
                for key, value in record.__dict__.items()
                if key not in self._STANDARD_ATTRS
            },
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["exc_info"] = record.exc_text
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(payload, default=str)
