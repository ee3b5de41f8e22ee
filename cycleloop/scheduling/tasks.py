"""Cooperative task scheduler with explicit wake-up.

A :class:`Task` wraps a generator.  Every ``yield`` inside the generator is a
suspension point; the task stays suspended until something outside the
scheduler calls :meth:`TaskScheduler.wake`, and the value passed to ``wake``
becomes the result of the ``yield`` expression.  The scheduler never polls or
resumes a suspended task by itself.

Task states
~~~~~~~~~~~
::

    READY ──(process_tasks)──▶ RUNNING ──(yield)──▶ SUSPENDED
      ▲                           │                     │
      │                           │ (return / raise)    │ (wake)
      │                           ▼                     │
      │                       TERMINATED                │
      └─────────────────────────────────────────────────┘

A plain callable (one that does not return a generator) is accepted too; it
runs to completion the first time it is scheduled.

Typical usage::

    from cycleloop.scheduling.tasks import TaskScheduler

    scheduler = TaskScheduler()

    def worker():
        reply = yield            # suspends until woken
        print("got", reply)

    task = scheduler.add_task(worker)
    scheduler.process_tasks()    # runs worker() up to the yield
    scheduler.wake(task, 42)
    scheduler.process_tasks()    # prints "got 42"
"""

from __future__ import annotations

import inspect
import logging
from collections import deque
from collections.abc import Callable, Generator
from enum import StrEnum
from typing import Any

from cycleloop.core import events
from cycleloop.core.exceptions import TaskError
from cycleloop.core.ids import IdSequence

__all__ = [
    "TaskState",
    "Task",
    "TaskScheduler",
]

logger = logging.getLogger(__name__)

_task_ids = IdSequence("task")


class TaskState(StrEnum):
    """Lifecycle states of a cooperative task."""

    READY = "ready"
    RUNNING = "running"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"


class Task:
    """A cooperative unit of work backed by a generator.

    Args:
        target: A generator object, a generator function, or any callable.
            Callables are invoked with *args* and *kwargs* on first run; if
            they return a generator it becomes the task body.
        name: Label used in logs and errors.  Defaults to a ``"task:<n>"`` id.

    Attributes:
        state: Current :class:`TaskState`.
        result: Return value of the body once it completed normally.
        error: Exception that terminated the task, if any.
        cancelled: ``True`` if the task was dropped by a forced clear.
        last_yielded: Value most recently produced by the body's ``yield``.
    """

    def __init__(
        self,
        target: Callable[..., Any] | Generator[Any, Any, Any],
        *args: Any,
        name: str | None = None,
        **kwargs: Any,
    ) -> None:
        if not (inspect.isgenerator(target) or callable(target)):
            raise TypeError(f"task target must be a generator or callable, got {target!r}")
        self.name = name or _task_ids.next()
        self.state = TaskState.READY
        self.result: Any = None
        self.error: BaseException | None = None
        self.cancelled = False
        self.last_yielded: Any = None
        self._target = target
        self._args = args
        self._kwargs = kwargs
        self._gen: Generator[Any, Any, Any] | None = None
        self._started = False
        self._send_value: Any = None
        self._wake_pending = False

    def __repr__(self) -> str:
        return f"<Task {self.name} {self.state.value}>"

    @property
    def started(self) -> bool:
        return self._started

    @property
    def done(self) -> bool:
        return self.state is TaskState.TERMINATED

    def _step(self) -> bool:
        """Advance the body to its next ``yield`` or to completion.

        Returns:
            ``True`` if the body suspended, ``False`` if it finished.
        """
        value, self._send_value = self._send_value, None
        try:
            if not self._started:
                self._started = True
                if inspect.isgenerator(self._target):
                    self._gen = self._target
                else:
                    outcome = self._target(*self._args, **self._kwargs)
                    if not inspect.isgenerator(outcome):
                        self.result = outcome
                        return False
                    self._gen = outcome
                self.last_yielded = next(self._gen)
            else:
                assert self._gen is not None
                self.last_yielded = self._gen.send(value)
        except StopIteration as stop:
            self.result = stop.value
            return False
        return True


class TaskScheduler:
    """Ready queue plus suspended set for cooperative tasks.

    Only :meth:`wake` moves a suspended task back into the ready queue.
    """

    def __init__(self) -> None:
        self._ready: deque[Task] = deque()
        self._suspended: set[Task] = set()
        self._accepting = True
        self._active = 0
        self._current: Task | None = None
        self._started = 0
        self._resumed = 0
        self._completed = 0
        self._failed = 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_task(self, task: Task | Callable[..., Any] | Generator[Any, Any, Any]) -> Task:
        """Queue *task* for its first run.

        Non-:class:`Task` targets are wrapped.  After :meth:`prepare_shutdown`
        the task is returned but never queued.

        Raises:
            ValueError: If the task has already been scheduled once.
        """
        if not isinstance(task, Task):
            task = Task(task)
        if task.started or task.state is not TaskState.READY or task in self._ready:
            raise ValueError(f"{task!r} has already been scheduled")
        if not self._accepting:
            logger.debug(
                "Scheduler is shutting down; dropped %r.",
                task,
                extra={"event": events.TASK_REJECTED},
            )
            return task
        self._ready.append(task)
        self._active += 1
        return task

    def wake(self, task: Task, value: Any = None) -> bool:
        """Make a suspended *task* ready, delivering *value* to its ``yield``.

        Waking the task that is currently running defers the wake-up until it
        next suspends; it is then queued for the following pass.  Waking a
        ready, unstarted or terminated task is a no-op.

        Returns:
            ``True`` if the wake-up was recorded.
        """
        if task.state is TaskState.SUSPENDED and task in self._suspended:
            self._suspended.discard(task)
            task._send_value = value
            task.state = TaskState.READY
            self._ready.append(task)
            return True
        if task.state is TaskState.RUNNING and task is self._current:
            task._send_value = value
            task._wake_pending = True
            return True
        return False

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def process_tasks(self) -> bool:
        """Run every task that was ready when the call started.

        Returns:
            ``True`` if at least one task ran.

        Raises:
            TaskError: If a task raised.  The task is terminated and dropped
                before the error propagates; tasks not yet processed in this
                pass stay queued.
        """
        did_work = False
        for _ in range(len(self._ready)):
            if not self._ready:
                break
            task = self._ready.popleft()
            did_work = True
            self._run(task)
        return did_work

    def _run(self, task: Task) -> None:
        first_run = not task.started
        task.state = TaskState.RUNNING
        self._current = task
        try:
            suspended = task._step()
        except Exception as exc:
            task.state = TaskState.TERMINATED
            task.error = exc
            # A forced clear from inside the task already dropped it from the count.
            if not task.cancelled:
                self._active -= 1
            self._failed += 1
            logger.warning(
                "Task %s failed: %s: %s",
                task.name,
                type(exc).__name__,
                exc,
                extra={"event": events.TASK_FAILED},
            )
            raise TaskError(task, f"{type(exc).__name__}: {exc}") from exc
        finally:
            self._current = None

        if first_run:
            self._started += 1
        else:
            self._resumed += 1

        # A forced clear from inside the body already terminated the task.
        if task.cancelled:
            return

        if not suspended:
            task.state = TaskState.TERMINATED
            self._active -= 1
            self._completed += 1
        elif task._wake_pending:
            task._wake_pending = False
            task.state = TaskState.READY
            self._ready.append(task)
        else:
            task.state = TaskState.SUSPENDED
            self._suspended.add(task)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_active_tasks(self) -> bool:
        return bool(self._ready or self._suspended)

    def has_ready_tasks(self) -> bool:
        return bool(self._ready)

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def suspended_count(self) -> int:
        return len(self._suspended)

    @property
    def is_accepting(self) -> bool:
        return self._accepting

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def prepare_shutdown(self) -> None:
        """Stop accepting new tasks; later :meth:`add_task` calls are dropped."""
        self._accepting = False

    def clear(self) -> None:
        """Terminate and drop every ready and suspended task."""
        for task in (*self._ready, *self._suspended):
            task.state = TaskState.TERMINATED
            task.cancelled = True
        if self._current is not None:
            self._current.cancelled = True
            self._current.state = TaskState.TERMINATED
        self._ready.clear()
        self._suspended.clear()
        self._active = 0

    def stats(self) -> dict[str, int]:
        return {
            "active": self._active,
            "ready": len(self._ready),
            "suspended": len(self._suspended),
            "started": self._started,
            "resumed": self._resumed,
            "completed": self._completed,
            "failed": self._failed,
        }
