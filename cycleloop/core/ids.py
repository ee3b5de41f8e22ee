"""Id strategy for everything the loop hands back to callers.

Timers, HTTP transfers, file operations, watchers and signal listeners are
all identified by an opaque string of the form ``"<kind>:<n>"``, e.g.
``"timer:7"`` or ``"http:3"``.  The numeric part comes from a per-process
counter per kind, so ids are unique for the lifetime of the process and are
never reused.  Because the kind is part of the id, a timer id can never be
mistaken for a transfer id even when both counters reach the same value.

Typical usage::

    from cycleloop.core.ids import IdSequence

    timer_ids = IdSequence("timer")
    timer_ids.next()          # "timer:1"
    timer_ids.next()          # "timer:2"
"""

from __future__ import annotations

import itertools
import logging

__all__ = [
    "ID_SEPARATOR",
    "IdSequence",
    "make_id",
    "id_kind",
]

logger = logging.getLogger(__name__)

#: Separator character used between the kind and the sequence number.
ID_SEPARATOR: str = ":"


def make_id(kind: str, number: int) -> str:
    """Return the canonical id string for *kind* and *number*.

    Example::

        assert make_id("timer", 7) == "timer:7"
    """
    return f"{kind}{ID_SEPARATOR}{number}"


def id_kind(identifier: str) -> str:
    """Return the kind prefix of *identifier* (``""`` if it has none)."""
    kind, sep, _ = identifier.partition(ID_SEPARATOR)
    return kind if sep else ""


class IdSequence:
    """Monotonic id generator for one kind of handle.

    Args:
        kind: Prefix placed before the separator (``"timer"``, ``"file"``...).
    """

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._counter = itertools.count(1)

    def next(self) -> str:  # noqa: A003
        """Return the next unused id for this kind."""
        return make_id(self.kind, next(self._counter))
