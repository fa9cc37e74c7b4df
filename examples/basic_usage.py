#!/usr/bin/env python3
"""
Basic Usage Examples for CommandScheduler

This script registers two commands, schedules them with different
expressions and lets the scheduler run them for a few seconds.
"""

import logging
import time

from command_scheduler import BaseCommand, CommandRegistry, CommandScheduler, Cron, DailyAt, Interval, ShellCommand


class GreetCommand(BaseCommand):
    """Prints a greeting for the first argument."""
    name = 'greet'
    description = 'Greet someone'

    def handle(self) -> int:
        name = self.argument(0, 'world')
        shout = self.option('shout', False)
        message = f"Hello, {name}!"
        print(message.upper() if shout else message)
        return self.SUCCESS


def main():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(levelname)s] %(message)s')

    registry = CommandRegistry()
    registry.add(GreetCommand())
    registry.add(ShellCommand('disk', 'df -h .', timeout=30))

    scheduler = CommandScheduler(registry)
    (
        scheduler
        .schedule('greet', Interval(1000), ['Ada'])
        .schedule('greet', Interval.of(seconds=2), ['Grace'], {'shout': True})
        .schedule('disk', Cron('*/5 * * * *'))
        .schedule('disk', DailyAt(2, 0))
    )

    scheduler.start(poll_interval_ms=100)
    try:
        time.sleep(5)
    finally:
        scheduler.shutdown(wait=True)

    print("\nScheduled tasks:")
    for task in scheduler.get_tasks():
        last_run = task.last_run.strftime('%H:%M:%S') if task.last_run else 'Never'
        next_run = task.next_run.strftime('%Y-%m-%d %H:%M:%S') if task.next_run else 'Never'
        print(f"  {task.command_name:<6} {task.expression:<22} runs: {task.run_count:<3} "
              f"last: {last_run:<8} next: {next_run}")


if __name__ == '__main__':
    main()
