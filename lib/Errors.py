"""
Job Kit Errors Module

This module defines the exception types raised by the job kit
core. Control-operation failures ("not found", "busy") are raised
synchronously to callers; action failures, timeouts and
cancellations are recorded on invocation records instead.
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
from apscheduler.jobstores.base import JobLookupError

class JobKitError(Exception):
    """
    Base class for job kit errors.
    """

class JobNotFoundError(JobLookupError):
    """
    Raised when a job name is not registered.

    Subclasses APScheduler's JobLookupError (and thus KeyError)
    so callers written against APScheduler keep working.
    """

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

class JobBusyError(JobKitError):
    """
    Raised when a job that disallows overlap already has a running
    invocation.
    """

    def __init__(self, name: str) -> None:
        super().__init__('job "%s" is already running' % (name))
        self.name = name

class ScheduleError(JobKitError):
    """
    Raised when a schedule rule produces a fire time that does not
    advance past its reference time.
    """

    def __init__(self, name: str, reference, next_fire_time) -> None:
        super().__init__('job "%s" schedule did not advance: next fire time %s is not after %s' % (name, next_fire_time, reference))
        self.name = name
        self.reference = reference
        self.next_fire_time = next_fire_time

class JobTimeoutError(JobKitError):
    """
    Recorded as the error of a timed-out invocation.
    """

    def __init__(self, name: str, deadline) -> None:
        super().__init__('job "%s" timed out (deadline %s)' % (name, deadline.isoformat() if deadline else '-'))
        self.name = name
        self.deadline = deadline

class JobCancelledError(JobKitError):
    """
    Raised inside an action by JobContext.raise_if_cancelled().
    """

class CommandError(JobKitError):
    """
    Raised by a shell command action that exits non-zero.
    """

    def __init__(self, command: str, returncode: int) -> None:
        super().__init__('command exited with status %d: %s' % (returncode, command))
        self.command = command
        self.returncode = returncode
