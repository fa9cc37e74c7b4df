"""
Scheduler configuration management.

Handles loading, saving, and validating the scheduler configuration:
shell commands to register, the schedules that run them, scheduler
options and logging. Configuration only describes what to schedule;
run-state is never written back.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from command_scheduler.commands import CommandRegistry, ShellCommand
from command_scheduler.errors import InvalidExpression
from command_scheduler.expressions import parse_expression

load_dotenv()

logger = logging.getLogger(__name__)

ENV_CONFIG_PATH = 'COMMAND_SCHEDULER_CONFIG'
ENV_LOG_DIR = 'COMMAND_SCHEDULER_LOG_DIR'


@dataclass
class CommandConfig:
    """A shell command registered under ``name``."""
    name: str
    command: str  # Shell command line
    timeout: int = 3600  # Seconds
    working_dir: Optional[str] = None
    description: Optional[str] = None


@dataclass
class ScheduleEntry:
    """
    One scheduled run of a registered command.

    ``schedule`` is a mapping understood by parse_expression, e.g.
    {"type": "cron", "cron": "0 2 * * *"}.
    """
    command: str
    schedule: Dict[str, Any]
    args: List[str] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True


def _get_default_log_file() -> Optional[str]:
    """Get default log file path from environment, if set."""
    if os.environ.get(ENV_LOG_DIR):
        return str(Path(os.environ[ENV_LOG_DIR]).expanduser() / "scheduler.log")
    return None


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None  # Set from the environment in __post_init__

    def __post_init__(self):
        if self.file is None:
            self.file = _get_default_log_file()


@dataclass
class LoopConfig:
    """Scheduler loop options."""
    poll_interval_ms: int = 1000
    max_workers: int = 5
    max_dispatch_per_tick: Optional[int] = None


class SchedulerConfig:
    """
    Scheduler configuration manager.

    Configuration path priority:
    1. Explicit config_path argument
    2. COMMAND_SCHEDULER_CONFIG environment variable
    3. Default: ~/.command_scheduler/config.json
    """

    DEFAULT_CONFIG_PATH = Path.home() / ".command_scheduler" / "config.json"

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize scheduler configuration.

        Args:
            config_path: Path to configuration file. If None, uses env var or default.
        """
        if config_path:
            self.config_path = Path(config_path).expanduser()
        elif os.environ.get(ENV_CONFIG_PATH):
            self.config_path = Path(os.environ[ENV_CONFIG_PATH]).expanduser()
        else:
            self.config_path = self.DEFAULT_CONFIG_PATH

        self.commands: List[CommandConfig] = []
        self.schedules: List[ScheduleEntry] = []
        self.scheduler: LoopConfig = LoopConfig()
        self.logging: LoggingConfig = LoggingConfig()

        if self.config_path.exists():
            self.load()
        else:
            logger.info(f"No config found at {self.config_path}, using defaults")
            self._load_defaults()

    def load(self):
        """Load configuration from JSON file."""
        try:
            with open(self.config_path, 'r') as f:
                data = json.load(f)

            self.commands = [CommandConfig(**item) for item in data.get('commands', [])]
            self.schedules = [ScheduleEntry(**item) for item in data.get('schedules', [])]

            if 'scheduler' in data:
                self.scheduler = LoopConfig(**data['scheduler'])
            if 'logging' in data:
                self.logging = LoggingConfig(**data['logging'])

            logger.info(
                f"Loaded {len(self.commands)} command(s) and {len(self.schedules)} "
                f"schedule(s) from {self.config_path}"
            )

        except Exception as e:
            logger.error(f"Failed to load config from {self.config_path}: {e}")
            raise

    def to_dict(self) -> Dict[str, Any]:
        return {
            'commands': [asdict(command) for command in self.commands],
            'schedules': [asdict(entry) for entry in self.schedules],
            'scheduler': asdict(self.scheduler),
            'logging': asdict(self.logging),
        }

    def save(self):
        """Save configuration to JSON file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Saved configuration to {self.config_path}")

    def _load_defaults(self):
        """Load default configuration: a heartbeat echo every minute."""
        self.commands = [
            CommandConfig(
                name="heartbeat",
                command="echo scheduler heartbeat",
                timeout=60,
                description="Log a heartbeat line"
            )
        ]
        self.schedules = [
            ScheduleEntry(command="heartbeat", schedule={'type': 'interval', 'minutes': 1})
        ]

    def add_command(self, command: CommandConfig):
        """Add a new command to configuration."""
        if self.get_command(command.name):
            raise ValueError(f"Command with name '{command.name}' already exists")

        self.commands.append(command)
        logger.info(f"Added command: {command.name}")

    def add_schedule(self, entry: ScheduleEntry):
        """Add a schedule entry; the same command may be scheduled repeatedly."""
        self.schedules.append(entry)
        logger.info(f"Added schedule for command: {entry.command}")

    def get_command(self, name: str) -> Optional[CommandConfig]:
        """Get command configuration by name."""
        for command in self.commands:
            if command.name == name:
                return command
        return None

    def get_enabled_schedules(self) -> List[ScheduleEntry]:
        """Get list of enabled schedule entries."""
        return [entry for entry in self.schedules if entry.enabled]

    def register_commands(self, registry: CommandRegistry):
        """Register every configured shell command in ``registry``."""
        for command in self.commands:
            registry.add(ShellCommand(
                name=command.name,
                command=command.command,
                timeout=command.timeout,
                working_dir=command.working_dir,
                description=command.description
            ))

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        names = set()

        for command in self.commands:
            if command.name in names:
                errors.append(f"Command {command.name}: duplicate name")
            names.add(command.name)

            if not command.command or not command.command.strip():
                errors.append(f"Command {command.name}: 'command' cannot be empty")
            if command.timeout is not None and command.timeout <= 0:
                errors.append(f"Command {command.name}: 'timeout' must be positive")

        for index, entry in enumerate(self.schedules):
            label = f"Schedule #{index + 1} ({entry.command})"
            if entry.command not in names:
                errors.append(f"{label}: unknown command '{entry.command}'")
            try:
                parse_expression(entry.schedule)
            except InvalidExpression as e:
                errors.append(f"{label}: {e}")

        if self.scheduler.poll_interval_ms <= 0:
            errors.append("Scheduler: 'poll_interval_ms' must be positive")
        if self.scheduler.max_workers < 1:
            errors.append("Scheduler: 'max_workers' must be at least 1")
        if self.scheduler.max_dispatch_per_tick is not None and self.scheduler.max_dispatch_per_tick < 1:
            errors.append("Scheduler: 'max_dispatch_per_tick' must be at least 1")

        return errors

    def __repr__(self):
        return (
            f"SchedulerConfig(commands={len(self.commands)}, "
            f"schedules={len(self.schedules)}, path={self.config_path})"
        )
