"""File operations and path watchers as a polled work source.

:class:`FileWorkSource` runs queued filesystem operations from the loop's
I/O phase and polls registered path watchers for changes.

Operations
~~~~~~~~~~
``read, write, append, delete, exists, stat, mkdir, rmdir, copy, rename``.
Every operation reports through ``callback(error, result)``: on success
``error`` is ``None``; on failure it is a
:class:`~cycleloop.core.exceptions.FileOperationError` whose ``__cause__`` is
the underlying :class:`OSError`, and ``result`` is ``None``.

===========  ===============================  ==========================
Kind         ``data`` argument                Result
===========  ===============================  ==========================
read         unused                           ``bytes`` (``str`` with
                                              ``encoding``)
write        ``bytes``/``str``/iterable of    bytes written
             chunks
append       ``bytes``/``str``                bytes written
delete       unused                           ``True``
exists       unused                           ``bool``
stat         unused                           :class:`os.stat_result`
mkdir        unused                           ``True``
rmdir        unused                           ``True``
copy         destination path                 ``True``
rename       destination path                 ``True``
===========  ===============================  ==========================

With ``use_streaming=True``, ``read``, ``write`` and ``copy`` run chunk by
chunk: each poll advances an operation by at most ``chunks_per_poll``
chunks, and a cancelled operation stops before its next chunk.  A cancelled
operation never calls its callback.

Watchers
~~~~~~~~
A watcher stats its path every ``polling_interval`` seconds and calls
``callback(event, path)`` with ``"modified"`` (mtime changed, size changed
when ``watch_size`` is set, or the path appeared) or ``"deleted"``.

Typical usage::

    def on_read(error, content):
        if error is None:
            print(len(content))

    loop.add_file_operation("read", "/var/log/syslog", None, on_read,
                            {"use_streaming": True})
"""

from __future__ import annotations

import logging
import os
import shutil
import time
from collections import deque
from collections.abc import Callable, Generator, Iterable
from dataclasses import dataclass
from typing import Any, Final

from cycleloop.core import events
from cycleloop.core.exceptions import CallbackError, FileOperationError
from cycleloop.core.ids import IdSequence
from cycleloop.core.models import (
    FileOperationKind,
    FileOperationOptions,
    FileWatchEvent,
    FileWatcherOptions,
    coerce_options,
)
from cycleloop.sources.base import WorkSource

__all__ = ["FileWorkSource", "FileOperation", "FileWatcher"]

logger = logging.getLogger(__name__)

#: Default bytes per chunk for streaming operations.
DEFAULT_CHUNK_SIZE: Final[int] = 8192

#: Default chunks a streaming operation advances per poll.
DEFAULT_CHUNKS_PER_POLL: Final[int] = 100

#: Default seconds between two checks of a watched path.
DEFAULT_WATCH_INTERVAL: Final[float] = 0.1

#: Minimum mtime difference (seconds) counted as a modification.
_MTIME_EPSILON: Final[float] = 0.001

#: Failures of the operation itself, delivered to its callback as FileOperationError.
#: Decode errors are ValueErrors; unusable payload items raise TypeError.
_OPERATION_FAILURES: Final = (OSError, ValueError, TypeError)

#: Payload types written as-is; anything else must be an iterable of them.
_BYTES_LIKE: Final = (str, bytes, bytearray, memoryview)

OperationCallback = Callable[[FileOperationError | None, Any], Any]
WatcherCallback = Callable[[str, str], Any]


@dataclass
class FileOperation:
    """One queued or running file operation."""

    id: str
    kind: FileOperationKind
    path: str
    data: Any
    callback: OperationCallback
    options: FileOperationOptions
    cancelled: bool = False
    steps: Generator[None, None, Any] | None = None


@dataclass
class FileWatcher:
    """Polling state for one watched path."""

    id: str
    path: str
    callback: WatcherCallback
    interval: float
    watch_size: bool
    last_checked: float
    last_mtime: float = 0.0
    last_size: int = 0
    exists: bool = False

    def snapshot(self) -> None:
        try:
            st = os.stat(self.path)
        except OSError:
            self.exists, self.last_mtime, self.last_size = False, 0.0, 0
            return
        self.exists, self.last_mtime, self.last_size = True, st.st_mtime, st.st_size

    def detect_change(self) -> FileWatchEvent | None:
        """Compare the path against the last snapshot and update it."""
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            if self.exists:
                self.exists, self.last_mtime, self.last_size = False, 0.0, 0
                return FileWatchEvent.DELETED
            return None

        changed = (
            not self.exists
            or abs(st.st_mtime - self.last_mtime) > _MTIME_EPSILON
            or (self.watch_size and st.st_size != self.last_size)
        )
        if not changed:
            return None
        self.exists, self.last_mtime, self.last_size = True, st.st_mtime, st.st_size
        return FileWatchEvent.MODIFIED


@dataclass
class _Counters:
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    chunks: int = 0
    watch_events: int = 0


class FileWorkSource(WorkSource):
    """Runs file operations and polls path watchers.

    Args:
        chunk_size: Default bytes per chunk for streaming operations.
        chunks_per_poll: Chunks a streaming operation advances per poll.
        watch_interval: Default seconds between watcher checks.
        clock: Callable returning monotonic seconds, used for watcher
            intervals.  Defaults to :func:`time.monotonic`.
    """

    name = "file"

    def __init__(
        self,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunks_per_poll: int = DEFAULT_CHUNKS_PER_POLL,
        watch_interval: float = DEFAULT_WATCH_INTERVAL,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._chunk_size = chunk_size
        self._chunks_per_poll = chunks_per_poll
        self._watch_interval = watch_interval
        self._clock = clock or time.monotonic
        self._op_ids = IdSequence("file")
        self._watch_ids = IdSequence("watch")
        self._pending: deque[FileOperation] = deque()
        self._operations: dict[str, FileOperation] = {}
        self._active: dict[str, FileOperation] = {}
        self._watchers: dict[str, FileWatcher] = {}
        self._counters = _Counters()
        self._handlers: dict[FileOperationKind, Callable[[FileOperation], Any]] = {
            FileOperationKind.READ: self._read,
            FileOperationKind.WRITE: self._write,
            FileOperationKind.APPEND: self._append,
            FileOperationKind.DELETE: self._delete,
            FileOperationKind.EXISTS: self._exists,
            FileOperationKind.STAT: self._stat,
            FileOperationKind.MKDIR: self._mkdir,
            FileOperationKind.RMDIR: self._rmdir,
            FileOperationKind.COPY: self._copy,
            FileOperationKind.RENAME: self._rename,
        }

    # ------------------------------------------------------------------
    # Operations: registration
    # ------------------------------------------------------------------

    def add_file_operation(
        self,
        kind: FileOperationKind | str,
        path: str | os.PathLike[str],
        data: Any,
        callback: OperationCallback,
        options: FileOperationOptions | dict[str, Any] | None = None,
    ) -> str:
        """Queue a file operation; it starts on the next poll.

        Raises:
            ValueError: For an unknown *kind*, a ``copy``/``rename``
                without a destination path in *data*, or a ``write``/``append``
                whose *data* is neither text, bytes nor an iterable of chunks.
        """
        kind = FileOperationKind(kind)
        if kind in (FileOperationKind.WRITE, FileOperationKind.APPEND) and not isinstance(
            data, Iterable
        ):
            raise ValueError(f"{kind} needs text, bytes or an iterable of chunks, got {data!r}")
        if kind in (FileOperationKind.COPY, FileOperationKind.RENAME) and not isinstance(
            data, str | os.PathLike
        ):
            raise ValueError(f"{kind} needs a destination path as data, got {data!r}")
        operation = FileOperation(
            id=self._op_ids.next(),
            kind=kind,
            path=os.fspath(path),
            data=data,
            callback=callback,
            options=coerce_options(FileOperationOptions, options),
        )
        self._pending.append(operation)
        self._operations[operation.id] = operation
        return operation.id

    def cancel_file_operation(self, operation_id: str) -> bool:
        """Cancel a queued or streaming operation.  Its callback never runs."""
        operation = self._operations.pop(operation_id, None)
        if operation is None:
            return False
        operation.cancelled = True
        self._active.pop(operation_id, None)
        if operation.steps is not None:
            operation.steps.close()
        self._counters.cancelled += 1
        logger.debug(
            "File operation %s (%s %s) cancelled.",
            operation_id,
            operation.kind,
            operation.path,
            extra={"event": events.FILE_OPERATION_CANCELLED},
        )
        return True

    # ------------------------------------------------------------------
    # Watchers: registration
    # ------------------------------------------------------------------

    def add_file_watcher(
        self,
        path: str | os.PathLike[str],
        callback: WatcherCallback,
        options: FileWatcherOptions | dict[str, Any] | None = None,
    ) -> str:
        opts = coerce_options(FileWatcherOptions, options)
        watcher = FileWatcher(
            id=self._watch_ids.next(),
            path=os.fspath(path),
            callback=callback,
            interval=opts.polling_interval or self._watch_interval,
            watch_size=opts.watch_size,
            last_checked=self._clock(),
        )
        watcher.snapshot()
        self._watchers[watcher.id] = watcher
        return watcher.id

    def remove_file_watcher(self, watcher_id: str) -> bool:
        return self._watchers.pop(watcher_id, None) is not None

    # ------------------------------------------------------------------
    # WorkSource contract
    # ------------------------------------------------------------------

    def has_work(self) -> bool:
        return bool(self._pending or self._active or self._watchers)

    def has_immediate_work(self) -> bool:
        return bool(self._pending or self._active)

    def poll(self) -> bool:
        """Start queued operations, advance streaming ones, check watchers."""
        did_work = False
        streaming = list(self._active.values())

        for _ in range(len(self._pending)):
            if not self._pending:
                break
            operation = self._pending.popleft()
            if operation.cancelled:
                continue
            did_work = True
            self._start(operation)

        for operation in streaming:
            if operation.cancelled or operation.steps is None:
                continue
            did_work = True
            self._advance(operation)

        if self._watchers and self._check_watchers():
            did_work = True

        return did_work

    def clear(self) -> None:
        had_work = self.has_work()
        for operation in list(self._operations.values()):
            operation.cancelled = True
            if operation.steps is not None:
                operation.steps.close()
        self._pending.clear()
        self._operations.clear()
        self._active.clear()
        self._watchers.clear()
        if had_work:
            logger.debug("File operations and watchers cleared.", extra={"event": events.SOURCE_CLEARED})

    def close(self) -> None:
        self.clear()

    def stats(self) -> dict[str, int]:
        return {
            "pending": len(self._pending),
            "active": len(self._active),
            "watchers": len(self._watchers),
            "completed": self._counters.completed,
            "failed": self._counters.failed,
            "cancelled": self._counters.cancelled,
            "chunks": self._counters.chunks,
            "watch_events": self._counters.watch_events,
        }

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def active_count(self) -> int:
        return len(self._active)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _start(self, operation: FileOperation) -> None:
        if operation.options.use_streaming and operation.kind.supports_streaming:
            operation.steps = self._streaming_steps(operation)
            self._active[operation.id] = operation
            self._advance(operation)
            return
        try:
            result = self._handlers[operation.kind](operation)
        except _OPERATION_FAILURES as exc:
            self._finish(operation, error=self._wrap(operation, exc))
        else:
            self._finish(operation, result=result)

    def _advance(self, operation: FileOperation) -> None:
        """Run up to ``chunks_per_poll`` chunks of a streaming operation."""
        assert operation.steps is not None
        try:
            for _ in range(self._chunks_per_poll):
                if operation.cancelled:
                    return
                next(operation.steps)
                self._counters.chunks += 1
        except StopIteration as stop:
            self._finish(operation, result=stop.value)
        except _OPERATION_FAILURES as exc:
            self._finish(operation, error=self._wrap(operation, exc))

    def _finish(
        self,
        operation: FileOperation,
        *,
        result: Any = None,
        error: FileOperationError | None = None,
    ) -> None:
        self._active.pop(operation.id, None)
        self._operations.pop(operation.id, None)
        operation.steps = None
        if error is None:
            self._counters.completed += 1
            logger.debug(
                "File operation %s (%s %s) done.",
                operation.id,
                operation.kind,
                operation.path,
                extra={"event": events.FILE_OPERATION_DONE},
            )
        else:
            self._counters.failed += 1
            logger.debug(
                "File operation %s failed: %s",
                operation.id,
                error,
                extra={"event": events.FILE_OPERATION_FAILED},
            )
        try:
            operation.callback(error, result)
        except Exception as exc:
            raise CallbackError(self.name, f"{type(exc).__name__}: {exc}") from exc

    @staticmethod
    def _wrap(operation: FileOperation, exc: Exception) -> FileOperationError:
        reason = getattr(exc, "strerror", None) or f"{type(exc).__name__}: {exc}"
        error = FileOperationError(
            operation.path,
            f"{operation.kind} failed: {reason}",
            operation_id=operation.id,
        )
        error.__cause__ = exc
        return error

    def _chunk_size_for(self, operation: FileOperation) -> int:
        return operation.options.chunk_size or self._chunk_size

    # ------------------------------------------------------------------
    # Streaming bodies (one ``yield`` per chunk)
    # ------------------------------------------------------------------

    def _streaming_steps(self, operation: FileOperation) -> Generator[None, None, Any]:
        if operation.kind is FileOperationKind.READ:
            return self._stream_read(operation)
        if operation.kind is FileOperationKind.WRITE:
            return self._stream_write(operation)
        return self._stream_copy(operation)

    def _stream_read(self, operation: FileOperation) -> Generator[None, None, Any]:
        opts = operation.options
        chunk_size = self._chunk_size_for(operation)
        remaining = opts.length
        parts: list[bytes] = []
        with open(operation.path, "rb") as fh:
            if opts.offset:
                fh.seek(opts.offset)
            while remaining is None or remaining > 0:
                size = chunk_size if remaining is None else min(chunk_size, remaining)
                chunk = fh.read(size)
                if not chunk:
                    break
                parts.append(chunk)
                if remaining is not None:
                    remaining -= len(chunk)
                yield
        content = b"".join(parts)
        return content.decode(opts.encoding) if opts.encoding else content

    def _stream_write(self, operation: FileOperation) -> Generator[None, None, int]:
        self._prepare_parent(operation, operation.path)
        written = 0
        with open(operation.path, "wb") as fh:
            for chunk in self._iter_chunks(operation):
                written += fh.write(chunk)
                yield
        return written

    def _stream_copy(self, operation: FileOperation) -> Generator[None, None, bool]:
        destination = os.fspath(operation.data)
        self._require_file(operation.path)
        self._prepare_parent(operation, destination)
        chunk_size = self._chunk_size_for(operation)
        with open(operation.path, "rb") as src, open(destination, "wb") as dst:
            while chunk := src.read(chunk_size):
                dst.write(chunk)
                yield
        return True

    def _iter_chunks(self, operation: FileOperation) -> Iterable[bytes]:
        """Yield the write payload as byte chunks of at most ``chunk_size``."""
        data = operation.data
        encoding = operation.options.encoding or "utf-8"
        chunk_size = self._chunk_size_for(operation)
        if isinstance(data, _BYTES_LIKE):
            payload = data.encode(encoding) if isinstance(data, str) else bytes(data)
            for start in range(0, len(payload), chunk_size):
                yield payload[start : start + chunk_size]
            return
        for piece in data:
            yield piece.encode(encoding) if isinstance(piece, str) else bytes(piece)

    # ------------------------------------------------------------------
    # One-shot handlers
    # ------------------------------------------------------------------

    @staticmethod
    def _prepare_parent(operation: FileOperation, target: str) -> None:
        if operation.options.create_directories:
            parent = os.path.dirname(os.path.abspath(target))
            os.makedirs(parent, exist_ok=True)

    @staticmethod
    def _require_file(path: str) -> None:
        if not os.path.exists(path):
            raise FileNotFoundError(2, "No such file or directory", path)
        if not os.path.isfile(path):
            raise IsADirectoryError(21, "Path is not a file", path)

    def _encode(self, operation: FileOperation) -> bytes:
        data = operation.data
        if isinstance(data, str):
            return data.encode(operation.options.encoding or "utf-8")
        if isinstance(data, bytes | bytearray | memoryview):
            return bytes(data)
        return b"".join(self._iter_chunks(operation))

    def _read(self, operation: FileOperation) -> bytes | str:
        opts = operation.options
        with open(operation.path, "rb") as fh:
            if opts.offset:
                fh.seek(opts.offset)
            content = fh.read() if opts.length is None else fh.read(opts.length)
        return content.decode(opts.encoding) if opts.encoding else content

    def _write(self, operation: FileOperation) -> int:
        self._prepare_parent(operation, operation.path)
        payload = self._encode(operation)
        with open(operation.path, "wb") as fh:
            return fh.write(payload)

    def _append(self, operation: FileOperation) -> int:
        self._prepare_parent(operation, operation.path)
        payload = self._encode(operation)
        with open(operation.path, "ab") as fh:
            return fh.write(payload)

    def _delete(self, operation: FileOperation) -> bool:
        self._require_file(operation.path)
        os.remove(operation.path)
        return True

    def _exists(self, operation: FileOperation) -> bool:
        return os.path.exists(operation.path)

    def _stat(self, operation: FileOperation) -> os.stat_result:
        return os.stat(operation.path)

    def _mkdir(self, operation: FileOperation) -> bool:
        opts = operation.options
        if opts.recursive:
            os.makedirs(operation.path, opts.mode)
        else:
            os.mkdir(operation.path, opts.mode)
        return True

    def _rmdir(self, operation: FileOperation) -> bool:
        if not os.path.isdir(operation.path):
            raise NotADirectoryError(20, "Not a directory", operation.path)
        if operation.options.recursive:
            shutil.rmtree(operation.path)
        else:
            os.rmdir(operation.path)
        return True

    def _copy(self, operation: FileOperation) -> bool:
        destination = os.fspath(operation.data)
        self._require_file(operation.path)
        self._prepare_parent(operation, destination)
        shutil.copyfile(operation.path, destination)
        return True

    def _rename(self, operation: FileOperation) -> bool:
        destination = os.fspath(operation.data)
        if not os.path.exists(operation.path):
            raise FileNotFoundError(2, "No such file or directory", operation.path)
        if os.path.exists(destination):
            raise FileExistsError(17, "File exists", destination)
        self._prepare_parent(operation, destination)
        os.rename(operation.path, destination)
        return True

    # ------------------------------------------------------------------
    # Watchers
    # ------------------------------------------------------------------

    def _check_watchers(self) -> bool:
        now = self._clock()
        fired = False
        for watcher in list(self._watchers.values()):
            if watcher.id not in self._watchers or now - watcher.last_checked < watcher.interval:
                continue
            watcher.last_checked = now
            event = watcher.detect_change()
            if event is None:
                continue
            fired = True
            self._counters.watch_events += 1
            logger.debug(
                "Watched path %s %s.",
                watcher.path,
                event,
                extra={"event": events.FILE_WATCH_CHANGE},
            )
            try:
                watcher.callback(event.value, watcher.path)
            except Exception as exc:
                raise CallbackError(self.name, f"{type(exc).__name__}: {exc}") from exc
        return fired
