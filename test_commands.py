"""
Tests for the command registry, shell commands and the dispatcher.
"""

import pytest

from command_scheduler.commands import BaseCommand, CommandRegistry, ShellCommand
from command_scheduler.dispatcher import CommandDispatcher
from command_scheduler.errors import CommandExecutionFailure, CommandNotFound
from command_scheduler.expressions import Interval
from command_scheduler.tasks import ScheduledTask

from conftest import RecordingCommand


class Greet(BaseCommand):
    name = 'greet'
    description = 'Say hello'

    def handle(self):
        self.greeting = f"Hello {self.argument(0, 'world')}{self.option('punctuation', '!')}"
        return self.SUCCESS


class Silent(BaseCommand):
    name = 'silent'

    def handle(self):
        return None


def test_registry_add_get_has_remove():
    registry = CommandRegistry()
    greet = Greet()
    registry.add(greet)

    assert registry.get('greet') is greet
    assert registry.has('greet')
    assert registry.get('nope') is None
    assert registry.all() == [greet]
    assert len(registry) == 1

    assert registry.remove('greet') is True
    assert registry.remove('greet') is False
    assert not registry.has('greet')


def test_registry_rejects_duplicate_names():
    registry = CommandRegistry()
    registry.add(Greet())
    with pytest.raises(ValueError, match='already exists'):
        registry.add(Greet())


def test_registry_clear():
    registry = CommandRegistry()
    registry.add(Greet())
    registry.add(Silent())
    registry.clear()
    assert registry.all() == []


def test_command_requires_a_name():
    class Anonymous(BaseCommand):
        pass

    with pytest.raises(ValueError):
        Anonymous()


def test_base_command_binds_arguments_and_options():
    greet = Greet()
    assert greet.execute(['Ada'], {'punctuation': '?'}) == BaseCommand.SUCCESS
    assert greet.greeting == 'Hello Ada?'

    greet.execute([], {})
    assert greet.greeting == 'Hello world!'


def test_dispatch_passes_task_args_and_options():
    registry = CommandRegistry()
    command = RecordingCommand('ping', exit_code=3)
    registry.add(command)
    task = ScheduledTask('ping', Interval(1000), ['-n', '1'], {'verbose': True})

    assert CommandDispatcher(registry).dispatch(task) == 3
    assert command.calls[0]['args'] == ['-n', '1']
    assert command.calls[0]['options'] == {'verbose': True}


def test_dispatch_unknown_command_raises_not_found():
    dispatcher = CommandDispatcher(CommandRegistry())
    with pytest.raises(CommandNotFound) as excinfo:
        dispatcher.run('missing')
    assert excinfo.value.name == 'missing'
    assert str(excinfo.value) == 'Command "missing" not found.'


def test_dispatch_translates_exceptions_to_execution_failure():
    registry = CommandRegistry()
    error = RuntimeError('disk full')
    registry.add(RecordingCommand('backup', error=error))

    with pytest.raises(CommandExecutionFailure) as excinfo:
        CommandDispatcher(registry).run('backup')

    assert excinfo.value.exit_code == 1
    assert excinfo.value.name == 'backup'
    assert excinfo.value.__cause__ is error


def test_dispatch_treats_none_as_success():
    registry = CommandRegistry()
    registry.add(Silent())
    assert CommandDispatcher(registry).run('silent') == 0


def test_shell_command_line_quotes_args_and_options():
    command = ShellCommand('report', 'generate-report')
    command.args = ['Q1 2030']
    command.options = {'format': 'pdf', 'dry_run': True, 'skip': False, 'owner': None}

    assert command.build_command_line() == "generate-report 'Q1 2030' --format pdf --dry-run"


def test_shell_command_rejects_empty_command():
    with pytest.raises(ValueError):
        ShellCommand('empty', '  ')


def test_shell_command_returns_process_exit_code(tmp_path):
    marker = tmp_path / 'ran.txt'
    ok = ShellCommand('touch', f'echo hello > {marker}')
    failing = ShellCommand('fail', 'exit 3')

    assert ok.execute([], {}) == 0
    assert marker.read_text().strip() == 'hello'
    assert failing.execute([], {}) == 3


def test_shell_command_runs_in_working_dir(tmp_path):
    command = ShellCommand('pwd', 'pwd > out.txt', working_dir=str(tmp_path))
    assert command.execute([], {}) == 0
    assert (tmp_path / 'out.txt').exists()


def test_shell_command_timeout_is_an_execution_failure():
    command = ShellCommand('sleepy', 'sleep 5', timeout=1)
    with pytest.raises(CommandExecutionFailure, match='timed out'):
        command.execute([], {})
