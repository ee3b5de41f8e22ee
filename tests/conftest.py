"""Shared pytest fixtures and configuration for the cycleloop test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across unit and integration tests.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator

import pytest
from pydantic_settings import SettingsConfigDict

from cycleloop.core import configure_logging
from cycleloop.core.settings import LoopSettings
from cycleloop.orchestrator.loop import EventLoop

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test.

    Using ``force=True`` ensures the configuration is applied even when
    pytest's own ``log_cli`` handler is already present.
    """
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove all ``CYCLELOOP_*`` env vars for the duration of a test.

    Also disables pydantic-settings `.env` file loading so that a local
    `.env` file does not leak into LoopSettings isolation tests.
    """
    for key in list(os.environ):
        if key.startswith("CYCLELOOP_"):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        LoopSettings,
        "model_config",
        SettingsConfigDict(
            env_prefix="CYCLELOOP_",
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced monotonic clock in seconds.

    Doubles as a ``sleep`` replacement: sleeping advances the clock instead
    of blocking, so loops driven by it run instantly and deterministically.
    """

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def ns(self) -> int:
        return int(self.now * 1_000_000_000)

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def loop(clean_env: None, clock: FakeClock) -> Iterator[EventLoop]:
    """An :class:`EventLoop` on a fake clock whose sleeps never block."""
    event_loop = EventLoop(LoopSettings(), clock=clock, sleep=clock.sleep)
    yield event_loop
    event_loop.close()


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` scoped to the running test."""
    return logging.getLogger("tests")
