"""
Job Definition Module

This module defines the Job data structure used by the job kit.
A Job is the static definition of a schedulable unit of work: its
name, schedule rule, timeout, overlap policy, enabled flag and the
action to run.

Schedule rules are APScheduler triggers. The helpers below build
the common ones; any BaseTrigger is accepted.
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
from datetime import datetime
from dataclasses import dataclass
from typing import Callable, Optional
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

## import private pkgs
from Command import Command

def every(weeks: float = 0, days: float = 0, hours: float = 0, minutes: float = 0, seconds: float = 0, start_date = None, timezone: str = 'UTC') -> IntervalTrigger:
    """
    Build a fixed-interval schedule rule.

    Without a start date the first fire time is one interval after
    the rule is built.

    Returns:
        IntervalTrigger: Interval schedule rule
    """

    if weeks * 604800 + days * 86400 + hours * 3600 + minutes * 60 + seconds <= 0:
        raise ValueError('interval must be positive')

    return IntervalTrigger(weeks = weeks, days = days, hours = hours, minutes = minutes, seconds = seconds, start_date = start_date, timezone = timezone)

def cron(timezone: str = 'UTC', **fields) -> CronTrigger:
    """
    Build a cron schedule rule from individual fields (second, minute,
    hour, day, month, day_of_week, ...).

    Returns:
        CronTrigger: Cron schedule rule
    """

    return CronTrigger(timezone = timezone, **fields)

def crontab(expr: str, timezone: str = 'UTC') -> CronTrigger:
    return CronTrigger.from_crontab(expr, timezone = timezone)

def once(at, timezone: str = 'UTC') -> DateTrigger:
    """
    Build a one-shot schedule rule. After its single fire time the
    rule reports "never again".

    Args:
        at (datetime | str): Fire time, a datetime or ISO 8601 string

    Returns:
        DateTrigger: One-shot schedule rule
    """

    if isinstance(at, str):
        at = datetime.fromisoformat(at)

    return DateTrigger(run_date = at, timezone = timezone)

@dataclass
class Job(object):
    """
    Scheduled job definition.

    Attributes:
        name (str):
            Unique name of the job, immutable after registration.

        action (callable):
            Unit of work, called as action(ctx) with a JobContext.
            Raising marks the run failed.

        schedule (BaseTrigger):
            Rule producing the next fire time. None means the job only
            runs on demand.

        timeout (float):
            Maximum run time in seconds, 0 means no timeout.

        enabled (bool):
            Whether scheduled fires are dispatched.

        allow_overlap (bool):
            Whether two invocations may run at the same time.

        description (str):
            Free-form text for status output.
    """

    name: str
    action: Callable
    schedule: Optional[BaseTrigger] = None
    timeout: float = 0
    enabled: bool = True
    allow_overlap: bool = False
    description: str = ''

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError('job name must not be empty')

        if not callable(self.action):
            raise TypeError('job "%s" action is not callable' % (self.name))

        if self.schedule is not None and not isinstance(self.schedule, BaseTrigger):
            raise TypeError('job "%s" schedule must be an APScheduler trigger, got %r' % (self.name, self.schedule))

        if self.timeout is None or self.timeout < 0:
            raise ValueError('job "%s" timeout must be >= 0' % (self.name))

    def next_fire_time(self, previous: Optional[datetime], now: datetime) -> Optional[datetime]:
        """
        Compute the next fire time.

        Args:
            previous (datetime): Previous fire time, None for the first computation
            now (datetime): Current time

        Returns:
            datetime: Next fire time, None if the job never fires again
        """

        if self.schedule is None:
            return None

        return self.schedule.get_next_fire_time(previous, now)

    def describe_schedule(self) -> str:
        return str(self.schedule) if self.schedule is not None else 'on-demand'

    @classmethod
    def from_dict(cls, item: dict, timezone: str = 'UTC') -> 'Job':
        """
        Build a shell command job from a config entry.

        Recognized keys: name, command, one of interval (seconds),
        cron (dict of cron fields), crontab (5-field string) or at
        (ISO timestamp), and timeout, enabled, allow_overlap,
        description.

        Args:
            item (dict): Job config entry
            timezone (str): Timezone for the schedule rule

        Returns:
            Job: Job definition
        """

        ## pick schedule rule
        if 'interval' in item:
            schedule = every(seconds = float(item['interval']), timezone = timezone)

        elif 'cron' in item:
            schedule = cron(timezone = timezone, **item['cron'])

        elif 'crontab' in item:
            schedule = crontab(item['crontab'], timezone = timezone)

        elif 'at' in item:
            schedule = once(item['at'], timezone = timezone)

        else:
            schedule = None

        return cls(
            name = item['name'],
            action = Command(item['command']),
            schedule = schedule,
            timeout = float(item.get('timeout', 0)),
            enabled = bool(item.get('enabled', True)),
            allow_overlap = bool(item.get('allow_overlap', False)),
            description = item.get('description', item['command']),
        )
