"""Validated option models shared by the loop and its work sources.

Callers hand these to :class:`~cycleloop.orchestrator.loop.EventLoop` (or
directly to a work source) to describe an HTTP transfer, a file operation or a
file watcher.  Plain dicts are accepted everywhere a model is; they are
validated through the model on the way in, so a typo in an option name or a
negative chunk size fails at registration time rather than mid-poll.

Typical usage::

    from cycleloop.core.models import FileOperationKind, FileOperationOptions

    options = FileOperationOptions(use_streaming=True, chunk_size=4096)
    loop.add_file_operation(FileOperationKind.READ, "big.log", None, on_done, options)
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any, TypeVar

from pydantic import BaseModel, Field, field_validator

__all__ = [
    "FileOperationKind",
    "FileWatchEvent",
    "StreamWatchKind",
    "HttpRequestSpec",
    "FileOperationOptions",
    "FileWatcherOptions",
    "coerce_options",
]

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class FileOperationKind(StrEnum):
    """Every file operation the file work source can run.

    Values are plain strings, so ``"read"`` and ``FileOperationKind.READ``
    are interchangeable at the public surface.
    """

    READ = "read"
    WRITE = "write"
    APPEND = "append"
    DELETE = "delete"
    EXISTS = "exists"
    STAT = "stat"
    MKDIR = "mkdir"
    RMDIR = "rmdir"
    COPY = "copy"
    RENAME = "rename"

    @property
    def supports_streaming(self) -> bool:
        """``True`` for the kinds that can run chunk by chunk."""
        return self in (FileOperationKind.READ, FileOperationKind.WRITE, FileOperationKind.COPY)


class FileWatchEvent(StrEnum):
    """Change notifications delivered to file-watcher callbacks."""

    MODIFIED = "modified"
    DELETED = "deleted"


class StreamWatchKind(StrEnum):
    """Readiness a stream watcher waits for."""

    READ = "read"
    WRITE = "write"


# ---------------------------------------------------------------------------
# Option models
# ---------------------------------------------------------------------------


class HttpRequestSpec(BaseModel):
    """Description of one HTTP transfer.

    Attributes:
        url: Absolute request URL.
        method: HTTP method, upper-cased on validation.
        headers: Extra request headers.
        params: Query-string parameters.
        json_body: JSON-serialisable request body (sent with ``json=``).
        content: Raw request body; mutually exclusive with ``json_body``.
        timeout: Per-transfer timeout in seconds overriding the client default.
    """

    model_config = {"frozen": True}

    url: str = Field(..., min_length=1, description="Absolute request URL.")
    method: str = Field(default="GET", description="HTTP method.")
    headers: dict[str, str] | None = Field(default=None, description="Extra request headers.")
    params: dict[str, Any] | None = Field(default=None, description="Query parameters.")
    json_body: Any = Field(default=None, description="JSON request body.")
    content: bytes | str | None = Field(default=None, description="Raw request body.")
    timeout: float | None = Field(default=None, gt=0.0, description="Timeout override.")

    @field_validator("method")
    @classmethod
    def _upper_method(cls, v: str) -> str:
        v_upper = v.strip().upper()
        if not v_upper:
            raise ValueError("method must not be blank")
        return v_upper

    @field_validator("url")
    @classmethod
    def _absolute_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"url must be absolute http(s), got {v!r}")
        return v


class FileOperationOptions(BaseModel):
    """Options for a single file operation.

    Attributes:
        use_streaming: Run ``read``/``write``/``copy`` chunk by chunk, checking
            cancellation between chunks.  Ignored for other kinds.
        chunk_size: Bytes per chunk; ``None`` uses the loop setting.
        offset: Byte offset a ``read`` starts from.
        length: Maximum bytes a ``read`` returns; ``None`` reads to EOF.
        mode: Permission bits for ``mkdir``.
        recursive: ``mkdir`` creates parents; ``rmdir`` removes the whole tree.
        create_directories: ``write``/``append``/``copy``/``rename`` create the
            destination's parent directory first.
        encoding: When set, ``read`` decodes and ``write`` encodes text with it.
    """

    model_config = {"frozen": True}

    use_streaming: bool = False
    chunk_size: int | None = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)
    length: int | None = Field(default=None, ge=0)
    mode: int = Field(default=0o777, ge=0)
    recursive: bool = False
    create_directories: bool = False
    encoding: str | None = None


class FileWatcherOptions(BaseModel):
    """Options for a path watcher.

    Attributes:
        polling_interval: Seconds between checks; ``None`` uses the loop setting.
        watch_size: Also report a change when only the size differs.
    """

    model_config = {"frozen": True}

    polling_interval: float | None = Field(default=None, gt=0.0)
    watch_size: bool = True


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def coerce_options(model: type[M], value: M | dict[str, Any] | None) -> M:
    """Return *value* as an instance of *model*.

    ``None`` yields the model defaults; a dict is validated through the model;
    an existing instance is returned unchanged.
    """
    if value is None:
        return model()
    if isinstance(value, model):
        return value
    return model.model_validate(value)
