"""Work-source contract polled uniformly by the phase orchestrator.

Every collaborator that performs I/O on behalf of the loop (HTTP transfers,
stream readiness, file operations, OS signals) subclasses
:class:`WorkSource` and implements :meth:`has_work` and :meth:`poll`.

Design decisions
----------------
* **Abstract base class (ABC)** rather than a ``Protocol``: subclasses share
  the ``has_immediate_work`` default and the context-manager lifecycle
  without duplication.
* **``name`` as a class variable**: sources declare a short label at class
  level so logs and stats can name them without an instance.
* **Bounded polls**: :meth:`poll` must never block for longer than a short,
  configured timeout.  A source that blocks stalls every other lane.

Typical usage::

    from cycleloop.sources.base import WorkSource


    class CounterSource(WorkSource):
        name = "counter"

        def __init__(self) -> None:
            self.remaining = 3

        def has_work(self) -> bool:
            return self.remaining > 0

        def poll(self) -> bool:
            self.remaining -= 1
            return True

    loop = EventLoop(extra_sources=[CounterSource()])
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from types import TracebackType
from typing import ClassVar

__all__ = ["WorkSource"]

logger = logging.getLogger(__name__)


class WorkSource(ABC):
    """Abstract base for everything the I/O and signal phases poll.

    Attributes:
        name: Short label used in logs and stats.
    """

    name: ClassVar[str] = "source"

    # ------------------------------------------------------------------
    # Core contract
    # ------------------------------------------------------------------

    @abstractmethod
    def has_work(self) -> bool:
        """``True`` while the source has pending or in-flight work.

        The run loop keeps going as long as any source returns ``True``.
        """

    @abstractmethod
    def poll(self) -> bool:
        """Advance pending work without blocking beyond a short bound.

        Returns:
            ``True`` if the poll performed work (dispatched a callback,
            completed a chunk, started a transfer...).
        """

    def has_immediate_work(self) -> bool:
        """``True`` if the next poll is known to have work to do right away.

        The idle-sleep controller skips sleeping when any source returns
        ``True``.  Defaults to :meth:`has_work`; sources that only wait on
        external readiness override it.
        """
        return self.has_work()

    def clear(self) -> None:  # noqa: B027
        """Drop all pending and active work (forced shutdown).

        The default implementation is a no-op.
        """

    def stats(self) -> dict[str, int]:
        """Counters describing the source's current load."""
        return {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:  # noqa: B027
        """Release resources held by the source.  Defaults to a no-op."""

    def __enter__(self) -> WorkSource:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
