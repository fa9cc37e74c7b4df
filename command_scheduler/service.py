"""
Core scheduler service.

CommandScheduler keeps an in-memory table of scheduled tasks and runs a
recurring APScheduler timer that scans the table ("tick"). Every due
task is claimed and handed to a worker pool; the tick never waits for a
command to finish. When an invocation completes, successfully or not,
the task's next run time is recomputed from its schedule expression.

Guarantees:
- At most one invocation per task is in flight at any time
- A failing command never stops the loop or affects other tasks
- stop() and clear_tasks() never cancel work that is already running
"""

import logging
import threading
from concurrent import futures
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler

from command_scheduler.commands import CommandRegistry
from command_scheduler.dispatcher import CommandDispatcher
from command_scheduler.errors import (
    CommandExecutionFailure,
    CommandNotFound,
    InvalidExpression,
    InvalidStateTransition,
)
from command_scheduler.expressions import ScheduleExpression
from command_scheduler.output import ConsoleOutput, Output
from command_scheduler.tasks import ScheduledTask, TaskSnapshot, TaskTable

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 1000
TICK_JOB_ID = 'command-scheduler-tick'


class CommandScheduler:
    """
    Schedules registered commands and runs them when they become due.

    All collaborators are passed in explicitly; the clock and worker pool
    can be replaced to drive the scheduler deterministically.
    """

    def __init__(
        self,
        registry: CommandRegistry,
        output: Optional[Output] = None,
        clock: Optional[Callable[[], datetime]] = None,
        executor: Optional[futures.Executor] = None,
        max_workers: int = 5,
        max_dispatch_per_tick: Optional[int] = None
    ):
        """
        Initialize the scheduler.

        Args:
            registry: Registry used to resolve command names at dispatch time
            output: Sink for status and error lines (stdout if omitted)
            clock: Returns the current local time (datetime.now if omitted)
            executor: Worker pool for command invocations
            max_workers: Size of the default worker pool
            max_dispatch_per_tick: Cap on dispatches per tick (None = no cap)
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        if max_dispatch_per_tick is not None and max_dispatch_per_tick < 1:
            raise ValueError(f"max_dispatch_per_tick must be at least 1, got {max_dispatch_per_tick}")

        self.registry = registry
        self.dispatcher = CommandDispatcher(registry)
        self.output = output or ConsoleOutput()
        self.max_workers = max_workers
        self.max_dispatch_per_tick = max_dispatch_per_tick
        self.poll_interval_ms: Optional[int] = None

        self._clock = clock or datetime.now
        self._executor = executor
        self._owns_executor = executor is None
        self._tasks = TaskTable()
        self._timer: Optional[BackgroundScheduler] = None
        self._state_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._timer is not None

    def schedule(
        self,
        command_name: str,
        expression: ScheduleExpression,
        args: Iterable[str] = (),
        options: Optional[Dict[str, Any]] = None
    ) -> 'CommandScheduler':
        """
        Schedule a command. The task is eligible on the next tick.

        The command does not need to be registered yet; it is resolved
        each time the task is dispatched.

        Returns:
            The scheduler, for chaining

        Raises:
            InvalidExpression: If the expression can never fire
        """
        now = self._clock()
        if expression.next_after(now) is None:
            raise InvalidExpression(f"Schedule {expression.describe()} never fires")

        task = ScheduledTask(command_name, expression, args, options, next_run=now)
        self._tasks.append(task)

        if not self.registry.has(command_name):
            logger.warning(f"Scheduled command '{command_name}' is not registered yet")
        logger.info(f"Scheduled '{command_name}' {expression.describe()}")
        return self

    def start(self, poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS) -> 'CommandScheduler':
        """
        Start checking for due tasks every ``poll_interval_ms``.

        Starting an already running scheduler does nothing besides an
        advisory message.

        Raises:
            ValueError: If the poll interval is not a positive number
        """
        if isinstance(poll_interval_ms, bool) or not isinstance(poll_interval_ms, (int, float)) \
                or poll_interval_ms <= 0:
            raise ValueError(f"poll_interval_ms must be a positive number, got {poll_interval_ms!r}")

        with self._state_lock:
            if self._timer is not None:
                self._advise(InvalidStateTransition(
                    f"Scheduler is already running (poll interval {self.poll_interval_ms}ms)"
                ))
                return self

            timer = BackgroundScheduler(
                executors={'default': ThreadPoolExecutor(1)},
                job_defaults={
                    'coalesce': True,  # Collapse missed ticks into one
                    'max_instances': 1,
                    'misfire_grace_time': None
                }
            )
            self._setup_event_listeners(timer)
            timer.add_job(
                self._on_timer,
                'interval',
                seconds=poll_interval_ms / 1000,
                id=TICK_JOB_ID,
                name='scheduler tick'
            )
            timer.start()

            self._timer = timer
            self.poll_interval_ms = poll_interval_ms

        logger.info(f"Scheduler started (poll interval: {poll_interval_ms}ms, tasks: {len(self._tasks)})")
        self.output.info('Scheduler started.')
        return self

    def stop(self) -> 'CommandScheduler':
        """
        Stop the timer. Invocations already in flight run to completion.
        """
        with self._state_lock:
            timer, self._timer = self._timer, None
            if timer is None:
                self._advise(InvalidStateTransition('Scheduler is not running'))
                return self

        timer.shutdown(wait=False)
        logger.info("Scheduler stopped")
        self.output.info('Scheduler stopped.')
        return self

    def shutdown(self, wait: bool = True):
        """
        Stop the timer and release the worker pool.

        Args:
            wait: If True, wait for in-flight invocations to finish
        """
        if self.running:
            self.stop()
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    def get_tasks(self) -> List[TaskSnapshot]:
        """Snapshots of all scheduled tasks, in scheduling order."""
        return [task.snapshot() for task in self._tasks.list()]

    def clear_tasks(self) -> 'CommandScheduler':
        """Remove all tasks. Running invocations are not cancelled."""
        removed = self._tasks.clear()
        logger.info(f"Cleared {removed} scheduled task(s)")
        return self

    def tick(self) -> int:
        """
        Dispatch every due task that is not already in flight.

        Returns:
            Number of tasks dispatched
        """
        now = self._clock()
        dispatched = 0

        for task in self._tasks.list():
            if self.max_dispatch_per_tick is not None and dispatched >= self.max_dispatch_per_tick:
                logger.debug(f"Dispatch cap of {self.max_dispatch_per_tick} reached; deferring to next tick")
                break

            try:
                self._rebase_after_clock_change(task, now)
                if not task.try_claim(now):
                    continue
                try:
                    self._get_executor().submit(self._run_task, task)
                except Exception:
                    task.release()
                    raise
                dispatched += 1
            except Exception:
                logger.exception(f"Failed to dispatch '{task.command_name}'")

        if dispatched:
            logger.debug(f"Tick at {now.isoformat()} dispatched {dispatched} task(s)")
        return dispatched

    def _on_timer(self):
        try:
            self.tick()
        except Exception:
            logger.exception("Scheduler tick failed")

    def _get_executor(self) -> futures.Executor:
        if self._executor is None:
            self._executor = futures.ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix='command-scheduler'
            )
            self._owns_executor = True
        return self._executor

    def _rebase_after_clock_change(self, task: ScheduledTask, now: datetime):
        """
        Pull an interval task back if its next run is over one interval away.

        That can only happen after the wall clock moved backward.
        """
        horizon = task.expression.horizon
        next_run = task.next_run
        if horizon is None or next_run is None or next_run <= now + horizon:
            return
        if task.rebase(now + horizon):
            logger.warning(
                f"Clock moved backward; rescheduled '{task.command_name}' "
                f"from {next_run.isoformat()} to {(now + horizon).isoformat()}"
            )

    def _run_task(self, task: ScheduledTask):
        """Run one claimed task in a worker and record its completion."""
        name = task.command_name
        failed = True
        try:
            self.output.info(f"Running scheduled command: {name}")
            exit_code = self.dispatcher.dispatch(task)
            if exit_code == 0:
                failed = False
                logger.info(f"Command '{name}' completed (exit code 0)")
                self.output.success(f"Command {name} executed successfully.")
            else:
                self._report_failure(CommandExecutionFailure(name, exit_code))
        except CommandNotFound as e:
            logger.error(f"Scheduled command '{name}' is not registered")
            self.output.error(str(e))
        except CommandExecutionFailure as e:
            self._report_failure(e)
        except Exception as e:
            logger.exception(f"Unexpected error running '{name}'")
            self.output.error(f"Error running command {name}: {e}")
        finally:
            self._finish(task, failed)

    def _report_failure(self, failure: CommandExecutionFailure):
        logger.error(f"Command '{failure.name}' failed: {failure}")
        self.output.error(f"Error running command {failure.name}: {failure}")

    def _finish(self, task: ScheduledTask, failed: bool):
        try:
            finished_at = self._clock()
        except Exception:
            logger.exception(f"Clock failed while finishing '{task.command_name}'; using system time")
            finished_at = datetime.now()

        try:
            next_run = task.expression.next_after(finished_at)
        except Exception:
            logger.exception(f"Could not compute next run for '{task.command_name}'")
            next_run = None

        task.complete(finished_at, next_run, failed=failed)

        if next_run is None:
            logger.warning(f"'{task.command_name}' has no further runs and will not be dispatched again")
        else:
            logger.debug(f"'{task.command_name}' next run at {next_run.isoformat()}")

    def _advise(self, advisory: InvalidStateTransition):
        logger.warning(str(advisory))
        self.output.warning(str(advisory))

    def _setup_event_listeners(self, timer: BackgroundScheduler):
        """Log problems with the tick timer itself."""

        def tick_error_listener(event):
            logger.error(f"Scheduler tick raised exception: {event.exception}")

        def tick_missed_listener(event):
            logger.warning(f"Scheduler tick missed its run time ({event.scheduled_run_time})")

        def tick_overlap_listener(event):
            logger.warning("Scheduler tick skipped: previous tick still running")

        timer.add_listener(tick_error_listener, EVENT_JOB_ERROR)
        timer.add_listener(tick_missed_listener, EVENT_JOB_MISSED)
        timer.add_listener(tick_overlap_listener, EVENT_JOB_MAX_INSTANCES)
