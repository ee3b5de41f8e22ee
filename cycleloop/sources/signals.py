"""OS signal dispatch as a polled work source.

The OS-level handler installed by :class:`SignalWorkSource` only records the
signal number.  Listeners run later, from the loop's signal phase, so they
can safely touch loop state (schedule callbacks, call ``stop()``...).

The OS handler for a signal is installed when its first listener is added and
the previous handler is restored when its last listener is removed.

Signal handling is only offered on POSIX platforms, and only from the main
thread (a CPython restriction).  Anywhere else :meth:`add_signal` raises
:class:`~cycleloop.core.exceptions.UnsupportedCapabilityError` instead of
silently doing nothing.

Typical usage::

    import signal

    listener_id = loop.add_signal(signal.SIGTERM, lambda signum: loop.stop())
    ...
    loop.remove_signal(listener_id)
"""

from __future__ import annotations

import logging
import signal
import sys
from collections import deque
from collections.abc import Callable
from types import FrameType
from typing import Any

from cycleloop.core import events
from cycleloop.core.exceptions import CallbackError, UnsupportedCapabilityError
from cycleloop.core.ids import IdSequence
from cycleloop.sources.base import WorkSource

__all__ = ["SignalWorkSource", "signals_supported"]

logger = logging.getLogger(__name__)

SignalCallback = Callable[[int], Any]


def signals_supported() -> bool:
    """``True`` when the platform can deliver OS signals to listeners."""
    return not sys.platform.startswith("win") and hasattr(signal, "signal")


class SignalWorkSource(WorkSource):
    """Registers OS signal listeners and dispatches pending signals on poll."""

    name = "signal"

    def __init__(self) -> None:
        self._ids = IdSequence("signal")
        self._listeners: dict[int, dict[str, SignalCallback]] = {}
        self._owner: dict[str, int] = {}
        self._previous: dict[int, Any] = {}
        self._pending: deque[int] = deque()
        self._dispatched = 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_signal(self, signum: int, callback: SignalCallback) -> str:
        """Call ``callback(signum)`` from the signal phase whenever *signum* arrives.

        Returns:
            Listener id for :meth:`remove_signal`.

        Raises:
            UnsupportedCapabilityError: On platforms without signal support,
                or when called outside the main thread.
        """
        if not signals_supported():
            raise UnsupportedCapabilityError(
                "signals", f"signal handling is not available on {sys.platform}"
            )
        signum = int(signum)
        if signum not in self._listeners:
            try:
                previous = signal.signal(signum, self._on_signal)
            except (ValueError, OSError) as exc:
                raise UnsupportedCapabilityError("signals", str(exc)) from exc
            self._previous[signum] = previous
            self._listeners[signum] = {}

        listener_id = self._ids.next()
        self._listeners[signum][listener_id] = callback
        self._owner[listener_id] = signum
        return listener_id

    def remove_signal(self, listener_id: str) -> bool:
        """Remove a listener; restores the OS handler after the last one goes."""
        signum = self._owner.pop(listener_id, None)
        if signum is None:
            return False
        listeners = self._listeners[signum]
        del listeners[listener_id]
        if not listeners:
            self._restore(signum)
        return True

    def listener_count(self, signum: int) -> int:
        return len(self._listeners.get(int(signum), {}))

    def _restore(self, signum: int) -> None:
        previous = self._previous.pop(signum, None)
        del self._listeners[signum]
        signal.signal(signum, previous if previous is not None else signal.SIG_DFL)

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        self._pending.append(signum)

    # ------------------------------------------------------------------
    # WorkSource contract
    # ------------------------------------------------------------------

    def has_work(self) -> bool:
        return bool(self._owner)

    def has_immediate_work(self) -> bool:
        return bool(self._pending)

    def poll(self) -> bool:
        """Deliver every signal recorded since the last poll to its listeners."""
        did_work = False
        for _ in range(len(self._pending)):
            signum = self._pending.popleft()
            listeners = list(self._listeners.get(signum, {}).values())
            if not listeners:
                continue
            did_work = True
            self._dispatched += 1
            logger.debug(
                "Dispatching signal %d to %d listener(s).",
                signum,
                len(listeners),
                extra={"event": events.SIGNAL_DISPATCHED},
            )
            for callback in listeners:
                try:
                    callback(signum)
                except Exception as exc:
                    raise CallbackError("signal", f"{type(exc).__name__}: {exc}") from exc
        return did_work

    def clear(self) -> None:
        """Remove every listener and restore every original OS handler."""
        had_work = bool(self._owner)
        for signum in list(self._listeners):
            self._restore(signum)
        self._owner.clear()
        self._pending.clear()
        if had_work:
            logger.debug("Signal listeners cleared.", extra={"event": events.SOURCE_CLEARED})

    def close(self) -> None:
        self.clear()

    def stats(self) -> dict[str, int]:
        return {
            "listeners": len(self._owner),
            "pending": len(self._pending),
            "dispatched": self._dispatched,
        }
