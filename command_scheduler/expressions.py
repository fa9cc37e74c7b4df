"""
Schedule expressions.

An expression describes *when* a scheduled task fires next. Three kinds
are supported:

- Interval: every N milliseconds, measured from the previous run
- Cron: a standard 5-field cron pattern (minute hour day month weekday)
- DailyAt: a fixed time of day

All datetimes are naive and expressed in the process's local time zone.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger

from command_scheduler.errors import InvalidExpression

logger = logging.getLogger(__name__)

# Standard cron numbering: 0 and 7 are both Sunday
_CRON_WEEKDAYS = ['sun', 'mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun']
_WEEKDAY_NAMES = set(_CRON_WEEKDAYS)
_TIME_RE = re.compile(r'^(\d{1,2}):(\d{2})$')


class ScheduleExpression(ABC):
    """Base class for all schedule expressions."""

    @abstractmethod
    def next_after(self, now: datetime) -> Optional[datetime]:
        """
        Compute the next instant strictly after ``now`` at which this fires.

        Returns:
            The next fire time, or None if the expression never fires again.
        """

    @abstractmethod
    def describe(self) -> str:
        """Human-readable description used in listings."""

    @property
    def horizon(self) -> Optional[timedelta]:
        """Largest possible gap between a run and the next one, if fixed."""
        return None

    def __str__(self):
        return self.describe()


@dataclass(frozen=True)
class Interval(ScheduleExpression):
    """Fires every ``milliseconds`` after the previous run."""
    milliseconds: int

    def __post_init__(self):
        if isinstance(self.milliseconds, bool) or not isinstance(self.milliseconds, int):
            raise InvalidExpression(
                f"Interval milliseconds must be an integer, got {self.milliseconds!r}"
            )
        if self.milliseconds <= 0:
            raise InvalidExpression(
                f"Interval milliseconds must be positive, got {self.milliseconds}"
            )

    @classmethod
    def of(cls, hours: int = 0, minutes: int = 0, seconds: int = 0,
           milliseconds: int = 0) -> 'Interval':
        """Build an interval from mixed time units."""
        total = ((hours * 60 + minutes) * 60 + seconds) * 1000 + milliseconds
        return cls(int(total))

    @property
    def horizon(self) -> timedelta:
        return timedelta(milliseconds=self.milliseconds)

    def next_after(self, now: datetime) -> datetime:
        return now + self.horizon

    def describe(self) -> str:
        ms = self.milliseconds
        for unit, size in (('h', 3_600_000), ('m', 60_000), ('s', 1000)):
            if ms % size == 0:
                return f"every {ms // size}{unit}"
        return f"every {ms}ms"


@dataclass(frozen=True)
class DailyAt(ScheduleExpression):
    """Fires once a day at ``hour:minute:00``."""
    hour: int
    minute: int = 0

    def __post_init__(self):
        if isinstance(self.hour, bool) or not isinstance(self.hour, int) or not 0 <= self.hour <= 23:
            raise InvalidExpression(f"Hour must be within 0-23, got {self.hour!r}")
        if isinstance(self.minute, bool) or not isinstance(self.minute, int) or not 0 <= self.minute <= 59:
            raise InvalidExpression(f"Minute must be within 0-59, got {self.minute!r}")

    @classmethod
    def parse(cls, value: str) -> 'DailyAt':
        """Parse a ``HH:MM`` string."""
        match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
        if not match:
            raise InvalidExpression(f"Invalid time of day (expected HH:MM): {value!r}")
        return cls(int(match.group(1)), int(match.group(2)))

    def next_after(self, now: datetime) -> datetime:
        candidate = now.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        # Exactly h:m:00 also rolls over: the next run must be strictly in the future
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    def describe(self) -> str:
        return f"daily at {self.hour:02d}:{self.minute:02d}"


def _weekday_index(value: str, pattern: str) -> int:
    if value in _WEEKDAY_NAMES:
        return _CRON_WEEKDAYS.index(value)
    if not value.isdigit():
        raise InvalidExpression(f"Invalid day-of-week '{value}' in cron pattern '{pattern}'")
    number = int(value)
    if number > 7:
        raise InvalidExpression(f"Day-of-week {number} out of range 0-7 in '{pattern}'")
    return number


def _translate_day_of_week(field_text: str, pattern: str) -> str:
    """
    Translate a cron day-of-week field to APScheduler day names.

    APScheduler numbers weekdays from Monday=0, while cron uses Sunday=0,
    so numeric values, ranges and steps are expanded to explicit names.
    """
    names: List[str] = []
    for part in field_text.lower().split(','):
        base, _, step_text = part.partition('/')
        step = 1
        if step_text:
            if not step_text.isdigit() or int(step_text) == 0:
                raise InvalidExpression(f"Invalid step '{step_text}' in cron pattern '{pattern}'")
            step = int(step_text)

        if base == '*':
            if step == 1:
                return '*'
            first, last = 0, 6
        elif '-' in base:
            start, _, end = base.partition('-')
            first = _weekday_index(start, pattern)
            last = _weekday_index(end, pattern)
            # "fri-sun" wraps to the trailing Sunday
            if end == 'sun' and first > 0:
                last = 7
            if first > last:
                raise InvalidExpression(f"Invalid day-of-week range '{base}' in '{pattern}'")
        else:
            if step_text:
                raise InvalidExpression(f"Step without range '{part}' in cron pattern '{pattern}'")
            first = last = _weekday_index(base, pattern)

        names.extend(_CRON_WEEKDAYS[n] for n in range(first, last + 1, step))

    return ','.join(dict.fromkeys(names))


@dataclass(frozen=True)
class Cron(ScheduleExpression):
    """
    Fires on minutes matching a 5-field cron pattern.

    As in standard cron, when both day-of-month and day-of-week are
    restricted a day matches if either field matches.
    """
    pattern: str
    _trigger: BaseTrigger = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not isinstance(self.pattern, str):
            raise InvalidExpression(f"Cron pattern must be a string, got {self.pattern!r}")

        parts = self.pattern.split()
        if len(parts) != 5:
            raise InvalidExpression(
                f"Cron pattern must have 5 fields, has {len(parts)}: '{self.pattern}'"
            )

        minute, hour, day, month, day_of_week = parts
        try:
            weekdays = _translate_day_of_week(day_of_week, self.pattern)
            time_fields = dict(minute=minute, hour=hour, month=month, second=0)
            if day.startswith('*') or day_of_week.startswith('*'):
                trigger = CronTrigger(day=day, day_of_week=weekdays, **time_fields)
            else:
                trigger = OrTrigger([
                    CronTrigger(day=day, day_of_week='*', **time_fields),
                    CronTrigger(day='*', day_of_week=weekdays, **time_fields),
                ])
        except (TypeError, ValueError) as e:
            raise InvalidExpression(f"Invalid cron pattern '{self.pattern}': {e}") from e

        object.__setattr__(self, '_trigger', trigger)

    def next_after(self, now: datetime) -> Optional[datetime]:
        # Smallest whole minute strictly after now
        start = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
        local_start = start.astimezone()
        fire_time = self._trigger.get_next_fire_time(None, local_start)
        if fire_time is None:
            logger.warning(f"Cron pattern '{self.pattern}' has no future occurrence")
            return None
        return fire_time.astimezone().replace(tzinfo=None)

    def describe(self) -> str:
        return f"cron '{self.pattern}'"


def parse_expression(schedule: Dict[str, Any]) -> ScheduleExpression:
    """
    Build an expression from a configuration mapping.

    Accepted forms:
        {"type": "interval", "milliseconds": 500}
        {"type": "interval", "hours": 1, "minutes": 30, "seconds": 0}
        {"type": "cron", "cron": "0 2 * * 1-5"}
        {"type": "daily", "time": "02:00"}

    Raises:
        InvalidExpression: If the mapping does not describe a valid expression.
    """
    if not isinstance(schedule, dict):
        raise InvalidExpression(f"Schedule must be a mapping, got {schedule!r}")

    kind = schedule.get('type')
    if kind == 'interval':
        units = {key: schedule.get(key) or 0 for key in ('hours', 'minutes', 'seconds', 'milliseconds')}
        for key, value in units.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidExpression(f"Interval '{key}' must be a number, got {value!r}")
        if not any(units.values()):
            raise InvalidExpression(
                "'interval' schedule requires 'hours', 'minutes', 'seconds' or 'milliseconds'"
            )
        return Interval.of(**units)
    if kind == 'cron':
        if not schedule.get('cron'):
            raise InvalidExpression("'cron' schedule requires 'cron' expression")
        return Cron(schedule['cron'])
    if kind == 'daily':
        if not schedule.get('time'):
            raise InvalidExpression("'daily' schedule requires 'time'")
        return DailyAt.parse(schedule['time'])

    raise InvalidExpression(f"Unknown schedule type: {kind!r}")
