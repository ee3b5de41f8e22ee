"""cycleloop command-line entry-point.

Usage:
    python -m cycleloop [--log-level LEVEL] [--log-format FORMAT]
                        [--stats-file PATH] fetch URL [URL ...]
    python -m cycleloop [...] watch PATH [--duration SECONDS]

``fetch`` runs every GET concurrently through the loop's HTTP source and
prints one line per response.  ``watch`` reports changes to *PATH* until the
duration elapses.  In both modes SIGINT and SIGTERM request a graceful stop.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import Any

from pydantic import ValidationError

from cycleloop.core import configure_logging
from cycleloop.core.exceptions import ConfigError, CycleLoopError, UnsupportedCapabilityError
from cycleloop.core.settings import LoopSettings
from cycleloop.orchestrator.loop import EventLoop
from cycleloop.orchestrator.metrics import write_stats_file

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cycleloop",
        description="Drive HTTP fetches or path watches through a cycleloop event loop.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override CYCLELOOP_LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override CYCLELOOP_LOG_FORMAT env var (text|json).",
    )
    parser.add_argument(
        "--stats-file",
        default=None,
        metavar="PATH",
        help="Write a JSON stats snapshot to PATH when the loop exits.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    fetch = commands.add_parser("fetch", help="GET one or more URLs concurrently.")
    fetch.add_argument("urls", nargs="+", metavar="URL")

    watch = commands.add_parser("watch", help="Report modifications and deletion of a path.")
    watch.add_argument("path", metavar="PATH")
    watch.add_argument(
        "--duration",
        type=float,
        default=10.0,
        metavar="SECONDS",
        help="Stop watching after this many seconds (default: 10).",
    )
    return parser


def _load_settings() -> LoopSettings:
    try:
        return LoopSettings()
    except ValidationError as exc:
        raise ConfigError(f"Invalid CYCLELOOP_* settings: {exc}") from exc


class _Session:
    """Signal listeners plus the bookkeeping shared by both commands."""

    def __init__(self, loop: EventLoop) -> None:
        self.loop = loop
        self.failures = 0
        self._listeners: list[str] = []

    def install_signals(self) -> None:
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._listeners.append(self.loop.add_signal(signum, self._on_signal))
            except UnsupportedCapabilityError as exc:
                logger.debug("Signal handling unavailable: %s", exc)
                return

    def release_signals(self) -> None:
        for listener_id in self._listeners:
            self.loop.remove_signal(listener_id)
        self._listeners.clear()

    def _on_signal(self, signum: int) -> None:
        logger.info("Received %s; stopping.", signal.Signals(signum).name)
        self.release_signals()
        self.loop.stop()


def _fetch(loop: EventLoop, session: _Session, urls: list[str]) -> None:
    remaining = len(urls)

    def on_done(url: str, error: Any, response: Any) -> None:
        nonlocal remaining
        remaining -= 1
        if error is not None:
            session.failures += 1
            print(f"ERR  {url}  {error}")  # noqa: T201
        else:
            print(f"{response.status_code}  {url}  {len(response.content)} bytes")  # noqa: T201
        if remaining == 0:
            session.release_signals()

    for url in urls:
        loop.add_http_request(url, lambda error, response, url=url: on_done(url, error, response))


def _watch(loop: EventLoop, session: _Session, path: str, duration: float) -> None:
    def on_change(event: str, changed: str) -> None:
        print(f"{event}  {changed}")  # noqa: T201

    watcher_id = loop.add_file_watcher(path, on_change)

    def finish() -> None:
        loop.remove_file_watcher(watcher_id)
        session.release_signals()

    loop.add_timer(duration, finish)


def main(argv: list[str] | None = None) -> int:
    """CLI entry-point registered in ``pyproject.toml``."""
    args = _build_parser().parse_args(argv)

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"cycleloop: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        return 1

    try:
        settings = _load_settings()
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        return 1

    with EventLoop(settings) as loop:
        session = _Session(loop)
        session.install_signals()
        try:
            if args.command == "fetch":
                _fetch(loop, session, args.urls)
            else:
                _watch(loop, session, args.path, args.duration)
            loop.run()
        except (CycleLoopError, ValueError) as exc:
            logger.error("Loop failed: %s", exc)
            session.failures += 1
        finally:
            logger.info("%s", loop.loop_stats.format_summary())
            if args.stats_file:
                write_stats_file(loop.stats(), args.stats_file)

    return 1 if session.failures else 0


if __name__ == "__main__":
    sys.exit(main())
