"""Async HTTP transfer client used by the HTTP work source.

Wraps :class:`httpx.AsyncClient` with:

* **Automatic retries**: exponential back-off with random jitter via
  :mod:`tenacity`; configurable number of attempts.
* **Rate-limit awareness**: HTTP 429 responses pause retries for the
  duration given in the ``Retry-After`` header (or JSON body), then raise
  :class:`~cycleloop.core.exceptions.HttpRateLimitError` once retries are
  exhausted.
* **Structured error mapping**: transient failures (5xx, transport errors)
  are retried; other non-2xx statuses raise
  :class:`~cycleloop.core.exceptions.HttpStatusError` immediately without
  consuming retry budget.  Transport errors that survive every attempt
  surface as :class:`~cycleloop.core.exceptions.HttpTransferError`.

One client is shared by every transfer of an
:class:`~cycleloop.sources.http.source.HttpWorkSource` so the connection pool
is reused.

Typical usage::

    from cycleloop.core.models import HttpRequestSpec
    from cycleloop.sources.http.client import TransferClient

    async with TransferClient() as client:
        response = await client.send(HttpRequestSpec(url="https://example.com/"))
"""

from __future__ import annotations

import logging
import random
from types import TracebackType
from typing import Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from cycleloop.core.exceptions import HttpRateLimitError, HttpStatusError, HttpTransferError
from cycleloop.core.models import HttpRequestSpec

__all__ = ["TransferClient"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: HTTP status codes that signal a transient server-side fault (safe to retry).
_RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({500, 502, 503, 504})

#: Default connection timeout in seconds.
_DEFAULT_CONNECT_TIMEOUT: Final[float] = 5.0

#: Default timeout waiting for response data.
_DEFAULT_READ_TIMEOUT: Final[float] = 30.0

#: Default timeout for uploading the request body.
_DEFAULT_WRITE_TIMEOUT: Final[float] = 10.0

#: Default total attempts (1 initial + 2 retries).
_DEFAULT_MAX_ATTEMPTS: Final[int] = 3

#: Default first back-off step in seconds; doubles on every attempt.
_DEFAULT_BACKOFF_BASE: Final[float] = 0.5

#: Hard cap on exponential back-off before adding jitter (seconds).
_MAX_BACKOFF: Final[float] = 30.0

#: Upper bound on jitter added on top of the exponential step (seconds).
_MAX_BACKOFF_JITTER: Final[float] = 1.0

# ---------------------------------------------------------------------------
# Internal sentinel exception
# ---------------------------------------------------------------------------


class _RetryableServerError(HttpStatusError):
    """Internal: signals a 5xx status for tenacity to retry."""


# ---------------------------------------------------------------------------
# Public client
# ---------------------------------------------------------------------------


class TransferClient:
    """Async HTTP client with retries and error mapping.

    Args:
        headers: Default headers merged into every request.
        connect_timeout: TCP connection establishment timeout in seconds.
        read_timeout: Timeout for receiving response data.
        write_timeout: Timeout for uploading the request body.
        max_attempts: Total attempts including the initial try (>= 1).
        backoff_base: First back-off step in seconds.  ``0`` disables waiting
            between attempts (useful in tests); ``Retry-After`` hints are
            still honoured.
        transport: Optional httpx transport, e.g. :class:`httpx.MockTransport`.

    Raises:
        ValueError: If ``max_attempts`` is less than 1.
    """

    def __init__(
        self,
        *,
        headers: dict[str, str] | None = None,
        connect_timeout: float = _DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = _DEFAULT_READ_TIMEOUT,
        write_timeout: float = _DEFAULT_WRITE_TIMEOUT,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = _DEFAULT_BACKOFF_BASE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts!r}.")

        self._default_headers: dict[str, str] = headers or {}
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._transport = transport
        self._timeout = httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=write_timeout,
            pool=5.0,
        )
        self._http: httpx.AsyncClient | None = None

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TransferClient:
        await self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call more than once."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("TransferClient HTTP session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Public request method
    # ------------------------------------------------------------------

    async def send(self, spec: HttpRequestSpec, *, request_id: str | None = None) -> httpx.Response:
        """Perform *spec* with retries.

        Returns:
            The :class:`httpx.Response` on HTTP 2xx.

        Raises:
            HttpRateLimitError: On HTTP 429 after exhausting retries.
            HttpStatusError: On any other non-2xx final status.
            HttpTransferError: On a network error after exhausting retries.
        """
        retry_types = (
            _RetryableServerError,
            HttpRateLimitError,
            httpx.TransportError,
        )

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "HTTP %s %s: attempt %d/%d failed (%s). Retrying in %.1f s.",
                spec.method,
                spec.url,
                rs.attempt_number,
                self._max_attempts,
                type(exc).__name__ if exc else "?",
                self._wait(rs),
            )

        response: httpx.Response | None = None
        try:
            async for attempt in AsyncRetrying(
                wait=self._wait,
                stop=stop_after_attempt(self._max_attempts),
                retry=retry_if_exception_type(retry_types),
                reraise=True,
                before_sleep=_before_sleep,
            ):
                with attempt:
                    response = await self._single_request(spec, request_id)
        except httpx.TransportError as exc:
            raise HttpTransferError(
                spec.url,
                f"{type(exc).__name__}: {exc}",
                request_id=request_id,
            ) from exc

        assert response is not None, "tenacity exited without a response or exception"
        return response

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _wait(self, retry_state: RetryCallState) -> float:
        """Seconds to wait before the next attempt.

        A positive ``Retry-After`` on a 429 is honoured exactly; everything
        else backs off exponentially with jitter.
        """
        if retry_state.outcome is not None:
            exc = retry_state.outcome.exception()
            if isinstance(exc, HttpRateLimitError) and exc.retry_after is not None:
                return exc.retry_after

        if self._backoff_base <= 0:
            return 0.0
        attempt = max(retry_state.attempt_number, 1)
        base = min(self._backoff_base * 2.0 ** (attempt - 1), _MAX_BACKOFF)
        jitter = random.uniform(0.0, min(base, _MAX_BACKOFF_JITTER))
        return base + jitter

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                headers=self._default_headers,
                transport=self._transport,
            )
            logger.debug("TransferClient HTTP session opened.")
        return self._http

    async def _single_request(
        self, spec: HttpRequestSpec, request_id: str | None
    ) -> httpx.Response:
        """Perform exactly one HTTP request and map its status.

        Raises:
            HttpRateLimitError: On HTTP 429.
            _RetryableServerError: On HTTP 5xx (internal sentinel).
            HttpStatusError: On non-retryable HTTP errors.
            httpx.TransportError: Network-level failures (propagated for retry).
        """
        client = await self._ensure_client()
        timeout = httpx.Timeout(spec.timeout) if spec.timeout is not None else self._timeout

        try:
            response = await client.request(
                method=spec.method,
                url=spec.url,
                params=spec.params,
                headers=spec.headers,
                json=spec.json_body,
                content=spec.content,
                timeout=timeout,
            )
        except httpx.TransportError:
            logger.debug("Transport error on %s %s.", spec.method, spec.url, exc_info=True)
            raise

        logger.debug("HTTP %s %s -> %d", spec.method, spec.url, response.status_code)

        if response.is_success:
            return response

        if response.status_code == 429:
            raise HttpRateLimitError(
                spec.url,
                retry_after=_parse_retry_after(response),
                request_id=request_id,
            )

        if response.status_code in _RETRYABLE_STATUS:
            raise _RetryableServerError(
                spec.url,
                response.status_code,
                "transient server error",
                request_id=request_id,
            )

        raise HttpStatusError(
            spec.url,
            response.status_code,
            response.text[:200],
            request_id=request_id,
        )


# ---------------------------------------------------------------------------
# Response parsing helpers
# ---------------------------------------------------------------------------


def _parse_retry_after(response: httpx.Response) -> float | None:
    """Extract a back-off hint (seconds) from an HTTP 429 response.

    Checks the standard ``Retry-After`` header, then a ``retryAfter`` /
    ``retry_after`` field in a JSON body.  Returns ``None`` when neither is
    usable.
    """
    header = response.headers.get("retry-after", "")
    if header:
        try:
            return max(float(header), 0.0)
        except ValueError:
            logger.debug("Could not parse Retry-After header %r.", header)

    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        hint = body.get("retryAfter", body.get("retry_after"))
        if isinstance(hint, int | float):
            return max(float(hint), 0.0)
    return None
