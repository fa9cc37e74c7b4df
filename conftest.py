"""
Shared fixtures: a controllable clock, an inline executor and recording commands.
"""

import threading
import time
from concurrent import futures
from datetime import datetime, timedelta

import pytest

from command_scheduler.commands import BaseCommand, CommandRegistry
from command_scheduler.output import BufferedOutput
from command_scheduler.service import CommandScheduler

# Monday
START = datetime(2030, 1, 7, 12, 0, 0)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.now

    def advance(self, milliseconds: int = 0, **kwargs):
        with self._lock:
            self.now += timedelta(milliseconds=milliseconds, **kwargs)

    def set(self, value: datetime):
        with self._lock:
            self.now = value


class InlineExecutor(futures.Executor):
    """Runs submitted work immediately in the calling thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future = futures.Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class RecordingCommand(BaseCommand):
    """Records every invocation and returns a fixed exit code."""

    def __init__(self, name: str = 'ping', exit_code: int = 0, error: Exception = None, clock=None):
        super().__init__(name, 'Records invocations')
        self.exit_code = exit_code
        self.error = error
        self.clock = clock
        self.calls = []

    def handle(self) -> int:
        self.calls.append({
            'args': list(self.args),
            'options': dict(self.options),
            'at': self.clock() if self.clock else None,
        })
        if self.error is not None:
            raise self.error
        return self.exit_code


class BlockingCommand(BaseCommand):
    """Blocks every invocation until ``release`` is set."""

    name = 'slow'

    def __init__(self):
        super().__init__()
        self.release = threading.Event()
        self.started = threading.Event()
        self.invocations = 0
        self.concurrent = 0
        self.max_concurrent = 0
        self._lock = threading.Lock()

    def handle(self) -> int:
        with self._lock:
            self.invocations += 1
            self.concurrent += 1
            self.max_concurrent = max(self.max_concurrent, self.concurrent)
        self.started.set()
        self.release.wait(5)
        with self._lock:
            self.concurrent -= 1
        return self.SUCCESS


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def registry() -> CommandRegistry:
    return CommandRegistry()


@pytest.fixture()
def output() -> BufferedOutput:
    return BufferedOutput()


@pytest.fixture()
def inline_executor() -> InlineExecutor:
    return InlineExecutor()


@pytest.fixture()
def scheduler(registry, output, clock, inline_executor) -> CommandScheduler:
    """Scheduler driven by the fake clock, running commands inline."""
    scheduler = CommandScheduler(registry, output=output, clock=clock, executor=inline_executor)
    yield scheduler
    scheduler.shutdown(wait=False)
