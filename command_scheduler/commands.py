"""
Commands and the command registry.

A command is anything with a ``name`` and an
``execute(args, options) -> exit code`` method. Commands are registered
explicitly with ``CommandRegistry.add``; the scheduler looks them up by
name when a task becomes due.

ShellCommand runs an external shell command line, which is how commands
defined in the configuration file are executed.
"""

import logging
import shlex
import subprocess
import threading
from typing import Any, Dict, List, Optional

from command_scheduler.errors import CommandExecutionFailure

logger = logging.getLogger(__name__)


class BaseCommand:
    """
    Base class for commands.

    Subclasses set ``name``/``description`` (or pass them to __init__)
    and implement ``handle``. ``execute`` binds the invocation arguments
    to ``self.args``/``self.options`` before calling ``handle``.
    """

    SUCCESS = 0
    FAILURE = 1
    INVALID = 2

    name: str = ''
    description: str = ''

    def __init__(self, name: Optional[str] = None, description: Optional[str] = None):
        if name:
            self.name = name
        if description:
            self.description = description
        if not self.name:
            raise ValueError(f"{type(self).__name__} has no command name")
        self.args: List[str] = []
        self.options: Dict[str, Any] = {}

    def execute(self, args: List[str], options: Dict[str, Any]) -> int:
        self.args = list(args)
        self.options = dict(options)
        return self.handle()

    def handle(self) -> int:
        raise NotImplementedError

    def argument(self, index: int, default: Optional[str] = None) -> Optional[str]:
        """Positional argument by index, or ``default``."""
        return self.args[index] if index < len(self.args) else default

    def option(self, name: str, default: Any = None) -> Any:
        return self.options.get(name, default)

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r})"


class CommandRegistry:
    """In-memory map of command names to command instances."""

    def __init__(self):
        self._commands: Dict[str, BaseCommand] = {}
        self._lock = threading.Lock()

    def add(self, command: BaseCommand):
        """
        Register a command.

        Raises:
            ValueError: If a command with the same name already exists.
        """
        with self._lock:
            if command.name in self._commands:
                raise ValueError(f'Command "{command.name}" already exists.')
            self._commands[command.name] = command
        logger.debug(f"Registered command: {command.name}")

    def get(self, name: str) -> Optional[BaseCommand]:
        with self._lock:
            return self._commands.get(name)

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._commands

    def all(self) -> List[BaseCommand]:
        with self._lock:
            return list(self._commands.values())

    def remove(self, name: str) -> bool:
        with self._lock:
            return self._commands.pop(name, None) is not None

    def clear(self):
        with self._lock:
            self._commands.clear()

    def __len__(self):
        with self._lock:
            return len(self._commands)


def _option_flags(options: Dict[str, Any]) -> List[str]:
    """Render options as ``--name value`` flags; True becomes a bare flag."""
    flags = []
    for key, value in options.items():
        if value is None or value is False:
            continue
        flag = f"--{key.replace('_', '-')}"
        if value is True:
            flags.append(flag)
        else:
            flags.extend([flag, str(value)])
    return flags


class ShellCommand(BaseCommand):
    """
    Runs a shell command line.

    Task arguments and options are appended (shell-quoted) to the
    configured command line. stdout and stderr are streamed into the log
    line by line while the process runs.
    """

    def __init__(
        self,
        name: str,
        command: str,
        timeout: Optional[int] = 3600,
        working_dir: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        description: Optional[str] = None
    ):
        super().__init__(name, description or f"Run: {command}")
        if not command or not command.strip():
            raise ValueError(f"Command {name}: shell command cannot be empty")
        self.command = command
        self.timeout = timeout
        self.working_dir = working_dir
        self.env = env

    def build_command_line(self) -> str:
        extra = [*self.args, *_option_flags(self.options)]
        if not extra:
            return self.command
        return f"{self.command} {' '.join(shlex.quote(part) for part in extra)}"

    def handle(self) -> int:
        command_line = self.build_command_line()
        log_prefix = f"[{self.name}] "
        logger.info(f"{log_prefix}Executing command: {command_line}")

        process = subprocess.Popen(
            command_line,
            shell=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            cwd=self.working_dir,
            env=self.env
        )

        def read_stream(stream, log_func):
            for line in stream:
                log_func(f"{log_prefix}{line.rstrip()}")

        readers = [
            threading.Thread(target=read_stream, args=(process.stdout, logger.info), daemon=True),
            threading.Thread(target=read_stream, args=(process.stderr, logger.warning), daemon=True),
        ]
        for reader in readers:
            reader.start()

        try:
            process.wait(timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            process.kill()
            process.wait()
            logger.error(f"{log_prefix}Command timed out after {self.timeout}s: {command_line}")
            raise CommandExecutionFailure(
                self.name, self.FAILURE, f"Command {self.name} timed out after {self.timeout}s"
            ) from e
        finally:
            for reader in readers:
                reader.join()

        logger.info(f"{log_prefix}Exited with code {process.returncode}")
        return process.returncode
