"""cycleloop: a single-threaded cooperative event loop.

Timers, four callback lanes, generator-backed tasks and polled I/O sources
(signals, HTTP transfers, streams, files) share one deterministic cycle.
"""

from cycleloop.orchestrator import (
    EventLoop,
    get_default_loop,
    reset_default_loop,
    set_default_loop,
)

__all__ = ["EventLoop", "get_default_loop", "reset_default_loop", "set_default_loop"]

__version__ = "0.1.0"
