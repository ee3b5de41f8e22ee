"""Unit tests for cycleloop.sources.http: TransferClient and HttpWorkSource.

All HTTP traffic goes through :class:`httpx.MockTransport`; nothing touches
the network.  HttpWorkSource drives its own private asyncio loop, so its
tests are plain synchronous functions.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from typing import Any

import httpx
import pytest

from cycleloop.core.exceptions import (
    CallbackError,
    HttpRateLimitError,
    HttpStatusError,
    HttpTransferError,
    TransferCancelledError,
)
from cycleloop.core.models import HttpRequestSpec
from cycleloop.sources.http import HttpWorkSource, TransferClient

Handler = Callable[[httpx.Request], httpx.Response]


class Results:
    def __init__(self) -> None:
        self.calls: list[tuple[Any, Any]] = []

    def __call__(self, error: Any, response: Any) -> None:
        self.calls.append((error, response))


def make_client(handler: Handler, **kwargs: Any) -> TransferClient:
    kwargs.setdefault("backoff_base", 0)
    return TransferClient(transport=httpx.MockTransport(handler), **kwargs)


def poll_until_done(source: HttpWorkSource, limit: int = 2000) -> int:
    polls = 0
    while source.has_work() and polls < limit:
        source.poll()
        polls += 1
    return polls


@pytest.fixture()
def make_source() -> Iterator[Callable[..., HttpWorkSource]]:
    created: list[HttpWorkSource] = []

    def factory(handler: Handler, *, max_concurrent: int = 16, **client_kwargs: Any) -> HttpWorkSource:
        source = HttpWorkSource(make_client(handler, **client_kwargs), max_concurrent=max_concurrent)
        created.append(source)
        return source

    yield factory
    for source in created:
        source.close()


# ---------------------------------------------------------------------------
# TransferClient
# ---------------------------------------------------------------------------


class TestTransferClient:
    async def test_success_returns_response(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["x-test"] == "1"
            return httpx.Response(200, json={"ok": True})

        async with make_client(handler, headers={"x-test": "1"}) as client:
            response = await client.send(HttpRequestSpec(url="https://example.test/a"))
        assert response.json() == {"ok": True}

    async def test_retries_server_errors(self) -> None:
        attempts: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(503 if len(attempts) < 3 else 200)

        async with make_client(handler, max_attempts=3) as client:
            response = await client.send(HttpRequestSpec(url="https://example.test/"))
        assert response.status_code == 200
        assert len(attempts) == 3

    async def test_client_error_not_retried(self) -> None:
        attempts: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(404, text="missing")

        async with make_client(handler) as client:
            with pytest.raises(HttpStatusError) as excinfo:
                await client.send(HttpRequestSpec(url="https://example.test/x"), request_id="http:1")
        assert excinfo.value.status_code == 404
        assert excinfo.value.request_id == "http:1"
        assert len(attempts) == 1

    async def test_rate_limit_exhausts_retries(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, headers={"Retry-After": "0"})

        async with make_client(handler, max_attempts=2) as client:
            with pytest.raises(HttpRateLimitError) as excinfo:
                await client.send(HttpRequestSpec(url="https://example.test/"))
        assert excinfo.value.retry_after == 0.0

    async def test_transport_error_mapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler, max_attempts=2) as client:
            with pytest.raises(HttpTransferError) as excinfo:
                await client.send(HttpRequestSpec(url="https://example.test/"))
        assert isinstance(excinfo.value.__cause__, httpx.ConnectError)

    def test_invalid_max_attempts(self) -> None:
        with pytest.raises(ValueError):
            TransferClient(max_attempts=0)


# ---------------------------------------------------------------------------
# HttpWorkSource
# ---------------------------------------------------------------------------


class TestHttpWorkSource:
    def test_success_delivered_on_poll(self, make_source) -> None:
        source = make_source(lambda request: httpx.Response(200, text="hello"))
        results = Results()
        request_id = source.add_request("https://example.test/", results)
        assert source.has_transfer(request_id)
        assert source.has_work()
        assert source.pending_count == 1

        poll_until_done(source)
        assert len(results.calls) == 1
        error, response = results.calls[0]
        assert error is None
        assert response.text == "hello"
        assert source.stats()["completed"] == 1
        assert not source.has_transfer(request_id)

    def test_request_options_forwarded(self, make_source) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201)

        source = make_source(handler)
        source.add_request(
            "https://example.test/items",
            Results(),
            method="post",
            headers={"x-id": "7"},
            params={"q": "a"},
            json={"name": "widget"},
        )
        poll_until_done(source)
        assert seen[0].method == "POST"
        assert seen[0].url.params["q"] == "a"
        assert seen[0].headers["x-id"] == "7"
        assert json.loads(seen[0].content) == {"name": "widget"}

    def test_status_error_delivered_to_callback(self, make_source) -> None:
        source = make_source(lambda request: httpx.Response(404))
        results = Results()
        source.add_request("https://example.test/missing", results)
        poll_until_done(source)
        error, response = results.calls[0]
        assert response is None
        assert isinstance(error, HttpStatusError)
        assert error.status_code == 404
        assert source.stats()["failed"] == 1

    def test_transient_failure_retried(self, make_source) -> None:
        attempts: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(503 if len(attempts) == 1 else 200)

        source = make_source(handler)
        results = Results()
        source.add_request("https://example.test/", results)
        poll_until_done(source)
        assert results.calls[0][0] is None
        assert len(attempts) == 2

    def test_rate_limit_error(self, make_source) -> None:
        source = make_source(
            lambda request: httpx.Response(429, headers={"Retry-After": "0"}), max_attempts=1
        )
        results = Results()
        source.add_request("https://example.test/", results)
        poll_until_done(source)
        assert isinstance(results.calls[0][0], HttpRateLimitError)

    def test_cancel_pending_calls_back_immediately(self, make_source) -> None:
        source = make_source(lambda request: httpx.Response(200))
        results = Results()
        request_id = source.add_request("https://example.test/", results)
        assert source.cancel(request_id) is True
        assert source.cancel(request_id) is False
        error, response = results.calls[0]
        assert isinstance(error, TransferCancelledError)
        assert error.request_id == request_id
        assert response is None
        assert not source.has_work()

    def test_max_concurrent_keeps_rest_pending(self, make_source) -> None:
        source = make_source(lambda request: httpx.Response(200), max_concurrent=2)
        results = Results()
        for index in range(5):
            source.add_request(f"https://example.test/{index}", results)
        source.poll()
        assert source.active_count + len(results.calls) <= 5
        assert source.pending_count == 3
        poll_until_done(source)
        assert len(results.calls) == 5
        assert all(error is None for error, _ in results.calls)

    def test_clear_cancels_everything(self, make_source) -> None:
        source = make_source(lambda request: httpx.Response(200))
        results = Results()
        source.add_request("https://example.test/a", results)
        source.add_request("https://example.test/b", results)
        source.clear()
        assert len(results.calls) == 2
        assert all(isinstance(error, TransferCancelledError) for error, _ in results.calls)
        assert source.stats()["cancelled"] == 2
        assert source.poll() is False

    def test_callback_error_wrapped(self, make_source) -> None:
        source = make_source(lambda request: httpx.Response(200))

        def broken(error: Any, response: Any) -> None:
            raise KeyError("oops")

        source.add_request("https://example.test/", broken)
        with pytest.raises(CallbackError) as excinfo:
            poll_until_done(source)
        assert excinfo.value.lane == "http"

    def test_relative_url_rejected(self, make_source) -> None:
        source = make_source(lambda request: httpx.Response(200))
        with pytest.raises(ValueError):
            source.add_request("/relative", Results())

    def test_immediate_work_follows_transfers(self, make_source) -> None:
        source = make_source(lambda request: httpx.Response(200))
        assert not source.has_immediate_work()
        source.add_request("https://example.test/", Results())
        assert source.has_immediate_work()
        poll_until_done(source)
        assert not source.has_immediate_work()
