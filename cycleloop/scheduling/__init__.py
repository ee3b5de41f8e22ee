"""Scheduling primitives: callback lanes, the timer heap, and cooperative tasks."""

from cycleloop.scheduling.queues import Lane, TaskQueue
from cycleloop.scheduling.tasks import Task, TaskScheduler, TaskState
from cycleloop.scheduling.timers import Timer, TimerWheel

__all__ = [
    "Lane",
    "TaskQueue",
    "Task",
    "TaskScheduler",
    "TaskState",
    "Timer",
    "TimerWheel",
]
