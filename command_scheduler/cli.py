"""
Command-line interface for the command scheduler.

Provides CLI commands for:
- Running the scheduler in the foreground
- Listing configured schedules and their next run
- Running a configured command once
- Creating, showing and validating the configuration
"""

import argparse
import logging
import signal
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from command_scheduler.commands import CommandRegistry
from command_scheduler.config import SchedulerConfig
from command_scheduler.dispatcher import CommandDispatcher
from command_scheduler.errors import CommandExecutionFailure, CommandNotFound
from command_scheduler.expressions import parse_expression
from command_scheduler.output import ConsoleOutput, Output
from command_scheduler.service import CommandScheduler

logger = logging.getLogger(__name__)


def setup_logging(log_file: Optional[str] = None, verbose: bool = False, level: str = 'INFO'):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    # APScheduler logs every tick at INFO
    logging.getLogger('apscheduler').setLevel(logging.DEBUG if verbose else logging.WARNING)


def load_config(config_path: Optional[str] = None, config: Optional[SchedulerConfig] = None) -> SchedulerConfig:
    """Load configuration and exit with status 1 if it is invalid."""
    if config is None:
        config = SchedulerConfig(config_path)
    errors = config.validate()
    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        sys.exit(1)
    return config


def build_scheduler(
    config: SchedulerConfig,
    output: Optional[Output] = None,
    max_workers: Optional[int] = None
) -> CommandScheduler:
    """
    Wire a scheduler from configuration.

    Registers the configured shell commands and schedules every enabled
    entry. The scheduler is returned stopped.
    """
    registry = CommandRegistry()
    config.register_commands(registry)

    scheduler = CommandScheduler(
        registry,
        output=output or ConsoleOutput(),
        max_workers=max_workers or config.scheduler.max_workers,
        max_dispatch_per_tick=config.scheduler.max_dispatch_per_tick
    )

    for entry in config.get_enabled_schedules():
        scheduler.schedule(
            entry.command,
            parse_expression(entry.schedule),
            args=entry.args,
            options=entry.options
        )

    return scheduler


def cmd_start(args):
    """Run the scheduler in the foreground until interrupted."""
    config = SchedulerConfig(args.config)
    setup_logging(
        log_file=args.log_file or config.logging.file,
        verbose=args.verbose,
        level=config.logging.level
    )
    load_config(config=config)

    poll_ms = args.poll_ms or config.scheduler.poll_interval_ms
    if poll_ms <= 0:
        logger.error(f"Poll interval must be positive, got {poll_ms}")
        sys.exit(1)

    scheduler = build_scheduler(config, max_workers=args.workers)
    stop_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        scheduler.start(poll_ms)
        logger.info("Running in foreground mode. Press Ctrl+C to stop.")
        while not stop_event.wait(1):
            pass
    finally:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler shut down")


def cmd_list(args):
    """List configured schedules with their next run."""
    setup_logging(verbose=args.verbose)
    config = load_config(args.config)
    now = datetime.now()

    entries = config.schedules
    print(f"\n  Configuration: {config.config_path}")
    print(f"  Total Schedules: {len(entries)}\n")

    if not entries:
        print("  No schedules configured.")
        print()
        return

    for entry in entries:
        expression = parse_expression(entry.schedule)
        next_run = expression.next_after(now)
        status = "\033[92menabled\033[0m" if entry.enabled else "\033[91mdisabled\033[0m"

        print(f"  \033[1m{entry.command}\033[0m ({status})")
        print(f"    Schedule: {expression.describe()}")
        print(f"    Next Run: {next_run.strftime('%Y-%m-%d %H:%M:%S') if next_run else 'Never'}")
        if entry.args:
            print(f"    Args:     {' '.join(entry.args)}")
        if entry.options:
            print(f"    Options:  {entry.options}")
        command = config.get_command(entry.command)
        if command:
            print(f"    Command:  {command.command}")
        print()


def cmd_run(args):
    """Run a configured command once, now."""
    setup_logging(verbose=args.verbose)
    config = load_config(args.config)

    registry = CommandRegistry()
    config.register_commands(registry)
    dispatcher = CommandDispatcher(registry)
    output = ConsoleOutput()

    start_time = datetime.now()
    try:
        exit_code = dispatcher.run(args.name, args.args)
    except CommandNotFound as e:
        output.error(str(e))
        available = ', '.join(sorted(c.name for c in registry.all())) or 'none'
        output.info(f"Available commands: {available}")
        sys.exit(1)
    except CommandExecutionFailure as e:
        output.error(str(e))
        sys.exit(e.exit_code or 1)

    duration = (datetime.now() - start_time).total_seconds()
    if exit_code == 0:
        output.success(f"Command {args.name} completed in {duration:.1f}s")
    else:
        output.error(f"Command {args.name} exited with code {exit_code} after {duration:.1f}s")
    sys.exit(exit_code)


def cmd_init(args):
    """Initialize scheduler configuration."""
    setup_logging(verbose=args.verbose)

    config = SchedulerConfig(args.config)
    if config.config_path.exists() and not args.force:
        logger.error(f"Configuration already exists at {config.config_path} (use --force to overwrite)")
        sys.exit(1)

    if args.force:
        config._load_defaults()
    config.save()
    logger.info(f"Initialized scheduler configuration at: {config.config_path}")


def cmd_show_config(args):
    """Show current configuration."""
    setup_logging(verbose=args.verbose)
    config = SchedulerConfig(args.config)

    print(f"\nConfiguration file: {config.config_path}")
    print(f"\nCommands: {len(config.commands)}")
    for command in config.commands:
        print(f"  {command.name}: {command.command} (timeout {command.timeout}s)")
    print(f"Schedules: {len(config.schedules)} ({len(config.get_enabled_schedules())} enabled)")
    print(f"Poll interval: {config.scheduler.poll_interval_ms}ms")
    print(f"Max workers: {config.scheduler.max_workers}")
    print(f"Logging level: {config.logging.level}")
    print(f"Log file: {config.logging.file or 'console only'}")


def cmd_validate(args):
    """Validate configuration."""
    setup_logging(verbose=args.verbose)
    load_config(args.config)
    print("Configuration is valid")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Command Scheduler - Run registered commands on interval, cron or daily schedules",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        '-c', '--config',
        type=str,
        help='Path to scheduler configuration file'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    subparsers = parser.add_subparsers(dest='subcommand', help='Commands')

    # Start command
    start_parser = subparsers.add_parser('start', help='Run the scheduler in the foreground')
    start_parser.add_argument(
        '--poll-ms',
        type=int,
        help='Polling granularity in milliseconds (default: from config)'
    )
    start_parser.add_argument(
        '--workers',
        type=int,
        help='Maximum concurrent command executions (default: from config)'
    )
    start_parser.add_argument(
        '--log-file',
        type=str,
        help='Log file path'
    )
    start_parser.set_defaults(func=cmd_start)

    # List command
    list_parser = subparsers.add_parser('list', help='List configured schedules')
    list_parser.set_defaults(func=cmd_list)

    # Run command
    run_parser = subparsers.add_parser('run', help='Run a configured command immediately')
    run_parser.add_argument('name', help='Command name')
    run_parser.add_argument('args', nargs='*', help='Arguments passed to the command')
    run_parser.set_defaults(func=cmd_run)

    # Init command
    init_parser = subparsers.add_parser('init', help='Initialize scheduler configuration')
    init_parser.add_argument('--force', action='store_true', help='Overwrite an existing configuration')
    init_parser.set_defaults(func=cmd_init)

    # Show config command
    show_config_parser = subparsers.add_parser('show-config', help='Show configuration')
    show_config_parser.set_defaults(func=cmd_show_config)

    # Validate command
    validate_parser = subparsers.add_parser('validate', help='Validate configuration')
    validate_parser.set_defaults(func=cmd_validate)

    args = parser.parse_args()

    if not args.subcommand:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == '__main__':
    main()
