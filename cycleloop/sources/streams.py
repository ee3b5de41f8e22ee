"""Readiness polling for streams, sockets and pipes.

:class:`StreamWorkSource` multiplexes watched file objects through
:mod:`selectors`.  Each poll waits at most ``select_timeout`` seconds (1 ms by
default) so the loop stays responsive.

* **Read watchers** persist until removed; they fire on every poll in which
  the stream is readable.
* **Write watchers** are one-shot; they are removed just before their
  callback runs.

Callbacks receive the watched file object: ``callback(fileobj)``.

Typical usage::

    import socket

    left, right = socket.socketpair()
    watcher_id = loop.add_read_watcher(left, lambda sock: print(sock.recv(1024)))
    right.sendall(b"ping")
"""

from __future__ import annotations

import logging
import selectors
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from cycleloop.core import events
from cycleloop.core.exceptions import CallbackError, WorkSourceError
from cycleloop.core.ids import IdSequence
from cycleloop.core.models import StreamWatchKind
from cycleloop.sources.base import WorkSource

__all__ = ["StreamWorkSource", "StreamWatcher"]

logger = logging.getLogger(__name__)

StreamCallback = Callable[[Any], Any]

_EVENT_FOR_KIND = {
    StreamWatchKind.READ: selectors.EVENT_READ,
    StreamWatchKind.WRITE: selectors.EVENT_WRITE,
}


def _fileno(fileobj: Any) -> int:
    if isinstance(fileobj, int):
        fd = fileobj
    else:
        try:
            fd = int(fileobj.fileno())
        except (AttributeError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid stream object: {fileobj!r}") from exc
    if fd < 0:
        raise ValueError(f"Invalid file descriptor: {fd}")
    return fd


@dataclass
class StreamWatcher:
    """One registered readiness watcher."""

    id: str
    fileobj: Any
    fd: int
    kind: StreamWatchKind
    callback: StreamCallback


class StreamWorkSource(WorkSource):
    """Watches streams for read/write readiness.

    Args:
        select_timeout: Seconds one poll may block in ``select``.
        selector: Selector to use; defaults to
            :class:`selectors.DefaultSelector`.
    """

    name = "stream"

    def __init__(
        self,
        *,
        select_timeout: float = 0.001,
        selector: selectors.BaseSelector | None = None,
    ) -> None:
        self._select_timeout = select_timeout
        self._selector = selector or selectors.DefaultSelector()
        self._ids = IdSequence("stream")
        self._watchers: dict[str, StreamWatcher] = {}
        self._by_fd: dict[int, list[str]] = {}
        self._fired = 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_stream_watcher(
        self,
        fileobj: Any,
        callback: StreamCallback,
        kind: StreamWatchKind | str = StreamWatchKind.READ,
    ) -> str:
        """Watch *fileobj* for *kind* readiness.

        Raises:
            ValueError: If *fileobj* has no usable file descriptor.
        """
        watcher = StreamWatcher(
            id=self._ids.next(),
            fileobj=fileobj,
            fd=_fileno(fileobj),
            kind=StreamWatchKind(kind),
            callback=callback,
        )
        self._watchers[watcher.id] = watcher
        self._by_fd.setdefault(watcher.fd, []).append(watcher.id)
        self._sync(watcher.fd, fileobj)
        return watcher.id

    def add_read_watcher(self, fileobj: Any, callback: StreamCallback) -> str:
        return self.add_stream_watcher(fileobj, callback, StreamWatchKind.READ)

    def add_write_watcher(self, fileobj: Any, callback: StreamCallback) -> str:
        return self.add_stream_watcher(fileobj, callback, StreamWatchKind.WRITE)

    def remove_stream_watcher(self, watcher_id: str) -> bool:
        watcher = self._watchers.pop(watcher_id, None)
        if watcher is None:
            return False
        ids = self._by_fd.get(watcher.fd, [])
        if watcher_id in ids:
            ids.remove(watcher_id)
        if not ids:
            self._by_fd.pop(watcher.fd, None)
        self._sync(watcher.fd, watcher.fileobj)
        return True

    def _sync(self, fd: int, fileobj: Any) -> None:
        """Bring the selector registration for *fd* in line with its watchers."""
        mask = 0
        for watcher_id in self._by_fd.get(fd, ()):
            mask |= _EVENT_FOR_KIND[self._watchers[watcher_id].kind]
        try:
            registered = self._selector.get_key(fd)
        except KeyError:
            registered = None

        if mask == 0:
            if registered is not None:
                self._selector.unregister(fd)
        elif registered is None:
            self._selector.register(fd, mask)
        elif registered.events != mask:
            self._selector.modify(fd, mask)

    # ------------------------------------------------------------------
    # WorkSource contract
    # ------------------------------------------------------------------

    def has_work(self) -> bool:
        return bool(self._watchers)

    def has_immediate_work(self) -> bool:
        return False

    def poll(self) -> bool:
        """Select once and run the callbacks of every ready watcher."""
        if not self._watchers:
            return False
        try:
            ready = self._selector.select(self._select_timeout)
        except (OSError, ValueError) as exc:
            raise WorkSourceError(self.name, f"select failed: {exc}") from exc

        did_work = False
        for key, mask in ready:
            for watcher_id in list(self._by_fd.get(key.fd, ())):
                watcher = self._watchers.get(watcher_id)
                if watcher is None or not mask & _EVENT_FOR_KIND[watcher.kind]:
                    continue
                if watcher.kind is StreamWatchKind.WRITE:
                    self.remove_stream_watcher(watcher_id)
                did_work = True
                self._fired += 1
                try:
                    watcher.callback(watcher.fileobj)
                except Exception as exc:
                    raise CallbackError(self.name, f"{type(exc).__name__}: {exc}") from exc
        return did_work

    def clear(self) -> None:
        had_work = bool(self._watchers)
        for fd in list(self._by_fd):
            self._selector.unregister(fd)
        self._watchers.clear()
        self._by_fd.clear()
        if had_work:
            logger.debug("Stream watchers cleared.", extra={"event": events.SOURCE_CLEARED})

    def close(self) -> None:
        self.clear()
        self._selector.close()

    def stats(self) -> dict[str, int]:
        return {"watchers": len(self._watchers), "fired": self._fired}
