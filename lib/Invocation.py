"""
Invocation Record Module

This module defines the record describing one run of one job.
A record is created in the "running" state by the execution engine
and finalized exactly once: the terminal status and the finished
timestamp are always assigned together.
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass
from typing import Optional

## import private pkgs
from LogBuffer import LogBuffer

## terminal statuses
RUNNING = 'running'
SUCCESS = 'success'
FAILED = 'failed'
CANCELLED = 'cancelled'
TIMED_OUT = 'timed-out'
STATUSES = (RUNNING, SUCCESS, FAILED, CANCELLED, TIMED_OUT)

## statuses that carry an error
ERROR_STATUSES = (FAILED, TIMED_OUT)

## what started an invocation
TRIGGER_SCHEDULE = 'schedule'
TRIGGER_MANUAL = 'manual'

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None

def format_error(error: Optional[BaseException]) -> Optional[str]:
    if error is None:
        return None

    return str(error) or error.__class__.__name__

@dataclass
class Invocation(object):
    """
    One run of one job.

    Attributes:
        job_name (str):
            Name of the job this run belongs to.

        started (datetime):
            When the run was admitted (UTC).

        id (int):
            Per-job sequence number, assigned on admission.

        finished (datetime):
            When the run reached its terminal status, None while running.

        timeout (datetime):
            Deadline after which the run is timed out, None if unbounded.

        cancelled (datetime):
            When cancellation was requested, None unless requested.

        status (str):
            One of running, success, failed, cancelled, timed-out.

        error (BaseException):
            Captured error, present iff status is failed or timed-out.

        log (LogBuffer):
            Captured output of the run.

        trigger (str):
            "schedule" or "manual".
    """

    job_name: str
    started: datetime
    id: int = 0
    finished: Optional[datetime] = None
    timeout: Optional[datetime] = None
    cancelled: Optional[datetime] = None
    status: str = RUNNING
    error: Optional[BaseException] = None
    log: Optional[LogBuffer] = None
    trigger: str = TRIGGER_MANUAL

    @property
    def running(self) -> bool:
        return self.status == RUNNING

    @property
    def elapsed(self) -> Optional[timedelta]:
        """
        Run duration, derived as finished - started.

        Returns:
            timedelta: Elapsed time, None while the run is in progress
        """

        if self.finished is None:
            return None

        return self.finished - self.started

    def as_dict(self) -> dict:
        """
        Render the record as a JSON-ready dict.

        Returns:
            dict: Record fields with ISO timestamps and elapsed seconds
        """

        elapsed = self.elapsed
        return {
            'id': self.id,
            'job_name': self.job_name,
            'trigger': self.trigger,
            'status': self.status,
            'started': isoformat(self.started),
            'finished': isoformat(self.finished),
            'timeout': isoformat(self.timeout),
            'cancelled': isoformat(self.cancelled),
            'elapsed': elapsed.total_seconds() if elapsed is not None else None,
            'error': format_error(self.error),
            'output': self.log.text() if self.log is not None else '',
            'output_truncated': self.log.truncated if self.log is not None else False,
        }
