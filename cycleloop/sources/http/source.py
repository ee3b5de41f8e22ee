"""HTTP transfer multiplexing as a polled work source.

:class:`HttpWorkSource` runs many outbound transfers concurrently without
blocking the loop.  Each transfer is an :mod:`asyncio` task driving
:meth:`TransferClient.send <cycleloop.sources.http.client.TransferClient.send>`
on a private asyncio event loop.  That private loop only advances inside
:meth:`HttpWorkSource.poll`, and never for longer than ``poll_timeout``.

Transfer lifecycle
~~~~~~~~~~~~~~~~~~
::

    add_request ──▶ pending ──(poll, below max_concurrent)──▶ active
                                                                │
                      callback(error, response) ◀──(task done)──┘

Callbacks receive ``(error, response)``: ``error`` is ``None`` and
``response`` an :class:`httpx.Response` on success; otherwise ``error`` is an
:class:`~cycleloop.core.exceptions.HttpTransferError` and ``response`` is
``None``.  :meth:`cancel` calls the callback right away with a
:class:`~cycleloop.core.exceptions.TransferCancelledError`.

Typical usage::

    def on_done(error, response):
        if error is None:
            print(response.status_code)

    request_id = loop.add_http_request("https://example.com/", on_done)
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from cycleloop.core import events
from cycleloop.core.exceptions import CallbackError, HttpTransferError, TransferCancelledError
from cycleloop.core.ids import IdSequence
from cycleloop.core.models import HttpRequestSpec
from cycleloop.sources.base import WorkSource
from cycleloop.sources.http.client import TransferClient

__all__ = ["HttpWorkSource", "Transfer"]

logger = logging.getLogger(__name__)

TransferCallback = Callable[[HttpTransferError | None, httpx.Response | None], Any]


@dataclass
class Transfer:
    """One pending or in-flight HTTP transfer."""

    id: str
    spec: HttpRequestSpec
    callback: TransferCallback
    task: asyncio.Task[httpx.Response] | None = None


class HttpWorkSource(WorkSource):
    """Multiplexes outbound HTTP transfers.

    Args:
        client: Shared :class:`TransferClient`.  A default client is created
            when omitted.
        poll_timeout: Seconds one poll may advance in-flight transfers.
        max_concurrent: Maximum transfers in flight; the rest wait queued.
    """

    name = "http"

    def __init__(
        self,
        client: TransferClient | None = None,
        *,
        poll_timeout: float = 0.001,
        max_concurrent: int = 16,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self._client = client or TransferClient()
        self._poll_timeout = poll_timeout
        self._max_concurrent = max_concurrent
        self._ids = IdSequence("http")
        self._transfers: dict[str, Transfer] = {}
        self._pending: deque[Transfer] = deque()
        self._active: dict[str, Transfer] = {}
        self._orphans: set[asyncio.Task[httpx.Response]] = set()
        self._aio: asyncio.AbstractEventLoop | None = None
        self._completed = 0
        self._failed = 0
        self._cancelled = 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_request(
        self,
        url: str,
        callback: TransferCallback,
        *,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
        content: bytes | str | None = None,
        timeout: float | None = None,
    ) -> str:
        """Queue a transfer; it starts on a later poll.

        Raises:
            pydantic.ValidationError: If the request description is invalid
                (relative URL, blank method, non-positive timeout).
        """
        spec = HttpRequestSpec(
            url=url,
            method=method,
            headers=headers,
            params=params,
            json_body=json,
            content=content,
            timeout=timeout,
        )
        return self.add_spec(spec, callback)

    def add_spec(self, spec: HttpRequestSpec, callback: TransferCallback) -> str:
        transfer = Transfer(id=self._ids.next(), spec=spec, callback=callback)
        self._transfers[transfer.id] = transfer
        self._pending.append(transfer)
        return transfer.id

    def cancel(self, request_id: str) -> bool:
        """Cancel a pending or in-flight transfer.

        The callback runs immediately with a
        :class:`~cycleloop.core.exceptions.TransferCancelledError`.

        Returns:
            ``False`` for unknown or already-finished transfers.
        """
        transfer = self._detach(request_id)
        if transfer is None:
            return False
        self._cancelled += 1
        logger.debug(
            "HTTP transfer %s cancelled.",
            request_id,
            extra={"event": events.HTTP_TRANSFER_CANCELLED},
        )
        self._notify(
            transfer,
            TransferCancelledError(transfer.spec.url, "Request cancelled", request_id=request_id),
            None,
        )
        return True

    def _detach(self, request_id: str) -> Transfer | None:
        transfer = self._transfers.pop(request_id, None)
        if transfer is None:
            return None
        self._active.pop(request_id, None)
        if transfer.task is None:
            self._pending.remove(transfer)
        else:
            transfer.task.cancel()
            self._orphans.add(transfer.task)
        return transfer

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def active_count(self) -> int:
        return len(self._active)

    def has_transfer(self, request_id: str) -> bool:
        return request_id in self._transfers

    def stats(self) -> dict[str, int]:
        return {
            "pending": len(self._pending),
            "active": len(self._active),
            "completed": self._completed,
            "failed": self._failed,
            "cancelled": self._cancelled,
        }

    # ------------------------------------------------------------------
    # WorkSource contract
    # ------------------------------------------------------------------

    def has_work(self) -> bool:
        return bool(self._transfers)

    def poll(self) -> bool:
        """Start queued transfers, advance in-flight ones, deliver results."""
        if not self._transfers and not self._orphans:
            return False

        aio = self._event_loop()
        did_work = False

        while self._pending and len(self._active) < self._max_concurrent:
            transfer = self._pending.popleft()
            transfer.task = aio.create_task(self._client.send(transfer.spec, request_id=transfer.id))
            self._active[transfer.id] = transfer
            did_work = True

        waiting = {t.task for t in self._active.values() if t.task is not None} | self._orphans
        if waiting:
            aio.run_until_complete(asyncio.wait(waiting, timeout=self._poll_timeout))
        self._orphans = {task for task in self._orphans if not task.done()}

        for transfer in [t for t in self._active.values() if t.task is not None and t.task.done()]:
            if self._transfers.pop(transfer.id, None) is None:
                continue
            self._active.pop(transfer.id, None)
            did_work = True
            self._deliver(transfer)

        return did_work

    def _deliver(self, transfer: Transfer) -> None:
        assert transfer.task is not None
        exc = transfer.task.exception()
        if exc is None:
            self._completed += 1
            response = transfer.task.result()
            logger.debug(
                "HTTP transfer %s done: %d.",
                transfer.id,
                response.status_code,
                extra={"event": events.HTTP_TRANSFER_DONE},
            )
            self._notify(transfer, None, response)
            return

        self._failed += 1
        if isinstance(exc, HttpTransferError):
            error = exc
        else:
            error = HttpTransferError(
                transfer.spec.url,
                f"{type(exc).__name__}: {exc}",
                request_id=transfer.id,
            )
            error.__cause__ = exc
        logger.info(
            "HTTP transfer %s (%s %s) failed: %s",
            transfer.id,
            transfer.spec.method,
            transfer.spec.url,
            error,
            extra={"event": events.HTTP_TRANSFER_FAILED},
        )
        self._notify(transfer, error, None)

    def _notify(
        self,
        transfer: Transfer,
        error: HttpTransferError | None,
        response: httpx.Response | None,
    ) -> None:
        try:
            transfer.callback(error, response)
        except Exception as exc:
            raise CallbackError(self.name, f"{type(exc).__name__}: {exc}") from exc

    def _event_loop(self) -> asyncio.AbstractEventLoop:
        if self._aio is None or self._aio.is_closed():
            self._aio = asyncio.new_event_loop()
        return self._aio

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Cancel every transfer; each callback receives a cancellation error."""
        if not self._transfers:
            return
        cleared = [self._detach(request_id) for request_id in list(self._transfers)]
        logger.debug(
            "Cleared %d HTTP transfer(s).",
            len(cleared),
            extra={"event": events.SOURCE_CLEARED},
        )
        for transfer in cleared:
            if transfer is None:
                continue
            self._cancelled += 1
            self._notify(
                transfer,
                TransferCancelledError(transfer.spec.url, "Request cleared", request_id=transfer.id),
                None,
            )

    def close(self) -> None:
        """Drop every transfer without callbacks and release the private loop."""
        for request_id in list(self._transfers):
            self._detach(request_id)
        if self._aio is None or self._aio.is_closed():
            return
        aio = self._aio
        if self._orphans:
            aio.run_until_complete(asyncio.gather(*self._orphans, return_exceptions=True))
            self._orphans.clear()
        aio.run_until_complete(self._client.close())
        aio.run_until_complete(aio.shutdown_asyncgens())
        aio.close()
        self._aio = None
