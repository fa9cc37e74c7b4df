"""
Tests for scheduler configuration and CLI wiring.
"""

import json

import pytest

from command_scheduler import cli
from command_scheduler.commands import CommandRegistry, ShellCommand
from command_scheduler.config import CommandConfig, ScheduleEntry, SchedulerConfig
from command_scheduler.output import BufferedOutput


def write_config(path, data):
    path.write_text(json.dumps(data))
    return str(path)


@pytest.fixture()
def config_file(tmp_path):
    return write_config(tmp_path / 'config.json', {
        'commands': [
            {'name': 'backup', 'command': 'echo backup', 'timeout': 30},
            {'name': 'report', 'command': 'echo report', 'description': 'Nightly report'},
        ],
        'schedules': [
            {'command': 'backup', 'schedule': {'type': 'daily', 'time': '02:00'}, 'args': ['--full']},
            {'command': 'report', 'schedule': {'type': 'cron', 'cron': '0 6 * * 1-5'}},
            {'command': 'backup', 'schedule': {'type': 'interval', 'minutes': 15}, 'enabled': False},
        ],
        'scheduler': {'poll_interval_ms': 500, 'max_workers': 2},
        'logging': {'level': 'DEBUG'},
    })


def test_missing_config_uses_defaults(tmp_path):
    config = SchedulerConfig(str(tmp_path / 'absent.json'))

    assert [c.name for c in config.commands] == ['heartbeat']
    assert config.schedules[0].command == 'heartbeat'
    assert config.scheduler.poll_interval_ms == 1000
    assert config.validate() == []


def test_config_path_from_environment(tmp_path, monkeypatch, config_file):
    monkeypatch.setenv('COMMAND_SCHEDULER_CONFIG', config_file)
    config = SchedulerConfig()
    assert str(config.config_path) == config_file
    assert len(config.commands) == 2


def test_load_config_file(config_file):
    config = SchedulerConfig(config_file)

    assert config.get_command('backup').timeout == 30
    assert config.get_command('report').description == 'Nightly report'
    assert config.get_command('missing') is None
    assert len(config.schedules) == 3
    assert [e.schedule['type'] for e in config.get_enabled_schedules()] == ['daily', 'cron']
    assert config.scheduler.max_workers == 2
    assert config.logging.level == 'DEBUG'
    assert config.validate() == []


def test_save_then_load_keeps_entries(tmp_path):
    config = SchedulerConfig(str(tmp_path / 'new.json'))
    config.add_command(CommandConfig(name='sync', command='rsync -a src/ dst/'))
    config.add_schedule(ScheduleEntry(command='sync', schedule={'type': 'interval', 'hours': 1}))
    config.save()

    reloaded = SchedulerConfig(str(tmp_path / 'new.json'))
    assert reloaded.get_command('sync').command == 'rsync -a src/ dst/'
    assert reloaded.schedules[-1].schedule == {'type': 'interval', 'hours': 1}


def test_add_command_rejects_duplicates(tmp_path):
    config = SchedulerConfig(str(tmp_path / 'absent.json'))
    with pytest.raises(ValueError):
        config.add_command(CommandConfig(name='heartbeat', command='true'))


def test_validate_reports_every_problem(tmp_path):
    path = write_config(tmp_path / 'bad.json', {
        'commands': [
            {'name': 'a', 'command': ' '},
            {'name': 'a', 'command': 'echo', 'timeout': 0},
        ],
        'schedules': [
            {'command': 'ghost', 'schedule': {'type': 'interval', 'seconds': 5}},
            {'command': 'a', 'schedule': {'type': 'cron', 'cron': '99 * * * *'}},
            {'command': 'a', 'schedule': {'type': 'daily'}},
        ],
        'scheduler': {'poll_interval_ms': 0},
    })

    errors = SchedulerConfig(path).validate()

    assert any("'command' cannot be empty" in e for e in errors)
    assert any('duplicate name' in e for e in errors)
    assert any("'timeout' must be positive" in e for e in errors)
    assert any("unknown command 'ghost'" in e for e in errors)
    assert any('Invalid cron pattern' in e for e in errors)
    assert any("requires 'time'" in e for e in errors)
    assert any("'poll_interval_ms' must be positive" in e for e in errors)


def test_validate_reports_non_numeric_interval(tmp_path):
    path = write_config(tmp_path / 'bad.json', {
        'commands': [{'name': 'sync', 'command': 'rsync -a src/ dst/'}],
        'schedules': [{'command': 'sync', 'schedule': {'type': 'interval', 'minutes': '5'}}],
    })

    errors = SchedulerConfig(path).validate()

    assert errors == ["Schedule #1 (sync): Interval 'minutes' must be a number, got '5'"]


def test_register_commands_creates_shell_commands(config_file):
    registry = CommandRegistry()
    SchedulerConfig(config_file).register_commands(registry)

    backup = registry.get('backup')
    assert isinstance(backup, ShellCommand)
    assert backup.command == 'echo backup'
    assert backup.timeout == 30


def test_build_scheduler_schedules_enabled_entries(config_file):
    scheduler = cli.build_scheduler(SchedulerConfig(config_file), output=BufferedOutput())
    try:
        tasks = scheduler.get_tasks()
        assert [(t.command_name, t.expression) for t in tasks] == [
            ('backup', 'daily at 02:00'),
            ('report', "cron '0 6 * * 1-5'"),
        ]
        assert tasks[0].args == ('--full',)
        assert scheduler.max_workers == 2
        assert scheduler.running is False
    finally:
        scheduler.shutdown(wait=False)


def test_load_config_exits_on_invalid_configuration(tmp_path):
    path = write_config(tmp_path / 'bad.json', {
        'commands': [],
        'schedules': [{'command': 'ghost', 'schedule': {'type': 'interval', 'seconds': 5}}],
    })
    with pytest.raises(SystemExit) as excinfo:
        cli.load_config(path)
    assert excinfo.value.code == 1


def test_cli_run_exits_with_command_exit_code(tmp_path, monkeypatch):
    path = write_config(tmp_path / 'config.json', {
        'commands': [{'name': 'fail', 'command': 'exit 4'}],
        'schedules': [],
    })
    monkeypatch.setattr('sys.argv', ['command-scheduler', '-c', path, 'run', 'fail'])

    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    assert excinfo.value.code == 4


def test_cli_init_writes_default_config(tmp_path, monkeypatch):
    path = tmp_path / 'init' / 'config.json'
    monkeypatch.setattr('sys.argv', ['command-scheduler', '-c', str(path), 'init'])

    cli.main()

    data = json.loads(path.read_text())
    assert data['commands'][0]['name'] == 'heartbeat'
    assert data['scheduler']['poll_interval_ms'] == 1000
