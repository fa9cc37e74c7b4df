"""
Command dispatch.

Resolves a task's command by name and invokes it with the task's
arguments and options. The exit code is returned as-is; a command that
raises is reported as a CommandExecutionFailure.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from command_scheduler.commands import CommandRegistry
from command_scheduler.errors import CommandExecutionFailure, CommandNotFound
from command_scheduler.tasks import ScheduledTask

logger = logging.getLogger(__name__)


class CommandDispatcher:
    """Runs commands from a registry by name."""

    def __init__(self, registry: CommandRegistry):
        self.registry = registry

    def dispatch(self, task: ScheduledTask) -> int:
        """
        Execute the command bound to a scheduled task.

        Args:
            task: The task being run

        Returns:
            The command's exit code

        Raises:
            CommandNotFound: If the command is not registered
            CommandExecutionFailure: If the command raised an exception
        """
        return self.run(task.command_name, task.args, task.options)

    def run(
        self,
        name: str,
        args: Iterable[str] = (),
        options: Optional[Dict[str, Any]] = None
    ) -> int:
        """Execute a registered command by name (see ``dispatch``)."""
        command = self.registry.get(name)
        if command is None:
            raise CommandNotFound(name)

        try:
            exit_code = command.execute(list(args), dict(options or {}))
        except CommandExecutionFailure:
            raise
        except Exception as e:
            logger.debug(f"Command {name} raised", exc_info=True)
            raise CommandExecutionFailure(name, 1, f"Command {name} raised: {e}") from e

        return 0 if exit_code is None else int(exit_code)
