"""Process-wide default :class:`~cycleloop.orchestrator.loop.EventLoop`.

A convenience for scripts that only ever need one loop.  Nothing in the
package depends on it; every component works with an explicitly constructed
loop.

Typical usage::

    from cycleloop.orchestrator.default import get_default_loop

    loop = get_default_loop()
    loop.add_timer(1.0, lambda: print("tick"))
    loop.run()
"""

from __future__ import annotations

import logging

from cycleloop.orchestrator.loop import EventLoop

__all__ = ["get_default_loop", "set_default_loop", "reset_default_loop"]

logger = logging.getLogger(__name__)

_default_loop: EventLoop | None = None


def get_default_loop() -> EventLoop:
    """Return the default loop, creating it on first use."""
    global _default_loop
    if _default_loop is None:
        _default_loop = EventLoop()
    return _default_loop


def set_default_loop(loop: EventLoop | None) -> None:
    """Install *loop* as the default (``None`` unsets it without closing)."""
    global _default_loop
    _default_loop = loop


def reset_default_loop() -> None:
    """Close and forget the current default loop.

    The next :func:`get_default_loop` call builds a fresh one.
    """
    global _default_loop
    loop, _default_loop = _default_loop, None
    if loop is not None:
        loop.close()
