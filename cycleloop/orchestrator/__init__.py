"""Loop assembly: the phase cycle, run-state machine, idle sleep and stats."""

from cycleloop.orchestrator.activity import ActivityTracker
from cycleloop.orchestrator.default import get_default_loop, reset_default_loop, set_default_loop
from cycleloop.orchestrator.loop import EventLoop
from cycleloop.orchestrator.metrics import LoopStats, write_stats_file
from cycleloop.orchestrator.phases import PhaseOrchestrator
from cycleloop.orchestrator.sleep import IdleSleepController
from cycleloop.orchestrator.state import RunState, RunStateMachine

__all__ = [
    "ActivityTracker",
    "EventLoop",
    "IdleSleepController",
    "LoopStats",
    "PhaseOrchestrator",
    "RunState",
    "RunStateMachine",
    "get_default_loop",
    "reset_default_loop",
    "set_default_loop",
    "write_stats_file",
]
