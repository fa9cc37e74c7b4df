"""
Scheduled tasks and the in-memory task table.

A ScheduledTask binds a command name, its arguments/options and a
schedule expression to mutable run-state (last run, next run, running).
Run-state is only changed through claim/complete so that the scheduler
tick and a finishing worker never race on the same task.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from command_scheduler.expressions import ScheduleExpression


@dataclass(frozen=True)
class TaskSnapshot:
    """Read-only view of a scheduled task, used for listings."""
    command_name: str
    expression: str
    args: Tuple[str, ...]
    options: Dict[str, Any]
    last_run: Optional[datetime]
    next_run: Optional[datetime]
    running: bool
    run_count: int
    failure_count: int


class ScheduledTask:
    """A command bound to a schedule expression, plus its run-state."""

    def __init__(
        self,
        command_name: str,
        expression: ScheduleExpression,
        args: Iterable[str] = (),
        options: Optional[Dict[str, Any]] = None,
        next_run: Optional[datetime] = None
    ):
        if not command_name or not str(command_name).strip():
            raise ValueError("command_name cannot be empty")
        if not isinstance(expression, ScheduleExpression):
            raise TypeError(f"expression must be a ScheduleExpression, got {type(expression).__name__}")

        self.command_name = command_name
        self.expression = expression
        self.args: Tuple[str, ...] = tuple(str(a) for a in args)
        self.options: Dict[str, Any] = dict(options or {})

        self._lock = threading.Lock()
        self._last_run: Optional[datetime] = None
        self._next_run = next_run if next_run is not None else datetime.now()
        self._running = False
        self._run_count = 0
        self._failure_count = 0

    @property
    def last_run(self) -> Optional[datetime]:
        return self._last_run

    @property
    def next_run(self) -> Optional[datetime]:
        return self._next_run

    @property
    def running(self) -> bool:
        return self._running

    @property
    def run_count(self) -> int:
        return self._run_count

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def is_due(self, now: datetime) -> bool:
        """True if the task should be dispatched at ``now``."""
        with self._lock:
            return not self._running and self._next_run is not None and self._next_run <= now

    def try_claim(self, now: datetime) -> bool:
        """
        Atomically mark the task as running if it is due.

        Returns:
            True if the caller now owns the in-flight invocation.
        """
        with self._lock:
            if self._running or self._next_run is None or self._next_run > now:
                return False
            self._running = True
            return True

    def release(self):
        """Drop a claim whose invocation never started."""
        with self._lock:
            self._running = False

    def complete(self, finished_at: datetime, next_run: Optional[datetime], failed: bool = False):
        """Record a finished invocation (successful or not) and free the task."""
        with self._lock:
            self._last_run = finished_at
            self._next_run = next_run
            self._run_count += 1
            if failed:
                self._failure_count += 1
            self._running = False

    def rebase(self, next_run: datetime) -> bool:
        """
        Move the next run earlier, unless the task is in flight.

        Returns:
            True if the next run time was changed.
        """
        with self._lock:
            if self._running or self._next_run is None or next_run >= self._next_run:
                return False
            self._next_run = next_run
            return True

    def snapshot(self) -> TaskSnapshot:
        with self._lock:
            return TaskSnapshot(
                command_name=self.command_name,
                expression=self.expression.describe(),
                args=self.args,
                options=dict(self.options),
                last_run=self._last_run,
                next_run=self._next_run,
                running=self._running,
                run_count=self._run_count,
                failure_count=self._failure_count,
            )

    def __repr__(self):
        return (
            f"ScheduledTask(command={self.command_name!r}, expression={self.expression.describe()!r}, "
            f"next_run={self._next_run}, running={self._running})"
        )


class TaskTable:
    """Ordered, append-only collection of scheduled tasks."""

    def __init__(self):
        self._lock = threading.Lock()
        self._tasks: List[ScheduledTask] = []

    def append(self, task: ScheduledTask):
        with self._lock:
            self._tasks.append(task)

    def list(self) -> Tuple[ScheduledTask, ...]:
        """Tasks in insertion order."""
        with self._lock:
            return tuple(self._tasks)

    def clear(self) -> int:
        """Remove every task; in-flight invocations are left to finish."""
        with self._lock:
            removed = len(self._tasks)
            self._tasks = []
        return removed

    def __len__(self):
        with self._lock:
            return len(self._tasks)

    def __iter__(self):
        return iter(self.list())
