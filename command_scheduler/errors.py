"""
Exceptions raised by the command scheduler.

Per-task failures (CommandNotFound, CommandExecutionFailure) are caught
by the scheduler and only ever reported to the output sink; they never
stop the scheduler loop.
"""

from typing import Optional


class SchedulerError(Exception):
    """Base class for scheduler errors."""
    pass


class InvalidExpression(SchedulerError, ValueError):
    """Raised when a schedule expression is malformed."""
    pass


class CommandNotFound(SchedulerError, LookupError):
    """Raised when a task references a command that is not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f'Command "{name}" not found.')


class CommandExecutionFailure(SchedulerError):
    """Raised when a command fails or exits with a non-zero code."""

    def __init__(self, name: str, exit_code: int = 1, message: Optional[str] = None):
        self.name = name
        self.exit_code = exit_code
        super().__init__(message or f"Command {name} failed with exit code {exit_code}")


class InvalidStateTransition(SchedulerError):
    """
    Describes a start() while running or stop() while stopped.

    Never raised by the scheduler itself; it is reported as an advisory.
    """
    pass
