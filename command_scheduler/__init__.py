"""
Command Scheduler

Runs registered commands on a schedule, in process.

Features:
- Interval, cron-style and daily time-of-day schedules
- Non-blocking dispatch onto a worker pool
- At most one in-flight invocation per scheduled task
- Failures are reported, never propagated to the scheduler loop
- JSON configuration and a command-line interface
"""

from command_scheduler.commands import BaseCommand, CommandRegistry, ShellCommand
from command_scheduler.config import SchedulerConfig
from command_scheduler.dispatcher import CommandDispatcher
from command_scheduler.errors import (
    CommandExecutionFailure,
    CommandNotFound,
    InvalidExpression,
    InvalidStateTransition,
    SchedulerError,
)
from command_scheduler.expressions import Cron, DailyAt, Interval, ScheduleExpression, parse_expression
from command_scheduler.output import BufferedOutput, ConsoleOutput, Output
from command_scheduler.service import CommandScheduler
from command_scheduler.tasks import ScheduledTask, TaskSnapshot, TaskTable

__version__ = "0.1.0"
__all__ = [
    # Scheduler
    "CommandScheduler",
    "CommandDispatcher",
    # Expressions
    "ScheduleExpression",
    "Interval",
    "Cron",
    "DailyAt",
    "parse_expression",
    # Tasks
    "ScheduledTask",
    "TaskSnapshot",
    "TaskTable",
    # Commands
    "BaseCommand",
    "CommandRegistry",
    "ShellCommand",
    # Output
    "Output",
    "ConsoleOutput",
    "BufferedOutput",
    # Configuration
    "SchedulerConfig",
    # Errors
    "SchedulerError",
    "InvalidExpression",
    "CommandNotFound",
    "CommandExecutionFailure",
    "InvalidStateTransition",
]
