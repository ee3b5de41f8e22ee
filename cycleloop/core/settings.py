"""cycleloop runtime settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.

Every tunable of the loop maps 1-to-1 to a field in :class:`LoopSettings`.
Environment variables carry the ``CYCLELOOP_`` prefix and the upper-case field
name (e.g. ``CYCLELOOP_GRACEFUL_SHUTDOWN_TIMEOUT`` ->
``graceful_shutdown_timeout``).

Typical usage::

    from cycleloop.core.settings import LoopSettings
    from cycleloop.orchestrator.loop import EventLoop

    settings = LoopSettings(graceful_shutdown_timeout=5.0)
    loop = EventLoop(settings=settings)
"""

from __future__ import annotations

import logging
import sys

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["LoopSettings", "default_max_sleep"]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def default_max_sleep() -> float:
    """Return the platform idle-sleep ceiling in seconds.

    Windows timer resolution makes long sleeps overshoot badly, so the ceiling
    is 1 ms there and 10 ms everywhere else.
    """
    return 0.001 if sys.platform.startswith("win") else 0.01


# ---------------------------------------------------------------------------
# Settings model
# ---------------------------------------------------------------------------


class LoopSettings(BaseSettings):
    """Central runtime configuration.

    Values are loaded in priority order:

    1. Explicit keyword arguments.
    2. ``CYCLELOOP_*`` environment variables.
    3. ``.env`` file in the working directory.
    4. Field defaults (lowest priority).
    """

    model_config = SettingsConfigDict(
        env_prefix="CYCLELOOP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------
    graceful_shutdown_timeout: float = Field(
        default=2.0,
        ge=0.1,
        description="Seconds the loop keeps draining work after stop() before forcing.",
    )
    graceful_max_iterations: int = Field(
        default=10,
        ge=1,
        description="Maximum extra cycles run during graceful shutdown.",
    )
    graceful_sleep_interval: float = Field(
        default=0.001,
        ge=0.0,
        description="Seconds slept between graceful-shutdown cycles.",
    )

    # ------------------------------------------------------------------
    # Queues and timers
    # ------------------------------------------------------------------
    microtask_limit: int = Field(
        default=10_000,
        ge=1,
        description="Maximum microtasks run in one drain before yielding.",
    )
    tombstone_rebuild_threshold: int = Field(
        default=1_000,
        ge=1,
        description="Cancelled-timer count above which the heap may be rebuilt.",
    )

    # ------------------------------------------------------------------
    # Idle sleep / activity
    # ------------------------------------------------------------------
    max_sleep: float = Field(
        default_factory=default_max_sleep,
        gt=0.0,
        description="Idle sleep ceiling in seconds (1 ms on Windows, 10 ms elsewhere).",
    )
    min_sleep: float = Field(
        default=0.0001,
        gt=0.0,
        description="Idle sleep floor in seconds.",
    )
    sleep_buffer_ratio: float = Field(
        default=0.9,
        gt=0.0,
        le=1.0,
        description="Fraction of the next timer delay the loop sleeps for.",
    )
    idle_threshold: float = Field(
        default=5.0,
        gt=0.0,
        description="Seconds without activity before the loop reports idle.",
    )

    # ------------------------------------------------------------------
    # Streams and files
    # ------------------------------------------------------------------
    stream_select_timeout: float = Field(
        default=0.001,
        ge=0.0,
        description="Seconds a stream poll may block in select().",
    )
    file_chunk_size: int = Field(
        default=8192,
        ge=1,
        description="Bytes per chunk for streaming file operations.",
    )
    file_chunks_per_poll: int = Field(
        default=100,
        ge=1,
        description="Chunks a streaming file operation advances per poll.",
    )
    file_watch_interval: float = Field(
        default=0.1,
        gt=0.0,
        description="Default seconds between file-watcher checks.",
    )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------
    http_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Total attempts per transfer, including the first.",
    )
    http_connect_timeout: float = Field(
        default=5.0,
        gt=0.0,
        description="TCP connect timeout in seconds.",
    )
    http_read_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Response read timeout in seconds.",
    )
    http_poll_timeout: float = Field(
        default=0.001,
        ge=0.0,
        description="Seconds one poll may advance in-flight transfers.",
    )
    http_max_concurrent: int = Field(
        default=16,
        ge=1,
        description="Maximum transfers in flight at once; the rest wait queued.",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    # ------------------------------------------------------------------
    # Model validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def _validate_sleep_bounds(self) -> LoopSettings:
        """Ensure the idle sleep floor does not exceed the ceiling."""
        if self.min_sleep > self.max_sleep:
            raise ValueError(f"min_sleep ({self.min_sleep}) > max_sleep ({self.max_sleep})")
        return self

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def http_timeout(self) -> tuple[float, float]:
        """``(connect, read)`` timeouts for the HTTP transfer client."""
        return (self.http_connect_timeout, self.http_read_timeout)
