"""
Job Manager Service

This module implements the facade of the job kit. The job manager
owns every job definition together with its invocation tracker,
drives the scheduler and the execution engine, and exposes the
control operations and status queries consumed by management
surfaces.

Responsibilities:
- Register jobs once at startup
- Run, cancel, enable and disable jobs on request
- Assemble read-only status snapshots
- Manage scheduler lifecycle and graceful shutdown
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
import time
import signal
from threading import Event
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

## import private pkgs
from Errors import JobBusyError, JobNotFoundError
from ExecutionEngine import ExecutionEngine, DEFAULT_CANCEL_GRACE
from Invocation import Invocation, TRIGGER_MANUAL, TRIGGER_SCHEDULE, isoformat
from InvocationTracker import InvocationTracker
from Scheduler import Scheduler

## defaults used when the configuration leaves a value unset
DEFAULT_MAX_LOG_BYTES = 10 * 1024
DEFAULT_MAX_HISTORY = 10
DEFAULT_SHUTDOWN_GRACE = 30.0
DEFAULT_STATUS_INTERVAL = 60.0

@dataclass(frozen = True)
class JobStatus(object):
    """
    Read-only status of one job.

    Attributes:
        name (str): Job name
        enabled (bool): Whether scheduled fires are dispatched
        schedule (str): Description of the schedule rule
        timeout (float): Run timeout in seconds, 0 for none
        allow_overlap (bool): Overlap policy
        description (str): Job description
        next_fire_time (datetime): Next scheduled fire, None if not armed
        current (Invocation): Most recent running invocation, or None
        running (tuple): All running invocations
        last (Invocation): Last finished invocation, or None
        history (tuple): Finished invocations, newest first
    """

    name: str
    enabled: bool
    schedule: str
    timeout: float
    allow_overlap: bool
    description: str
    next_fire_time: Optional[datetime]
    current: Optional[Invocation]
    running: Tuple[Invocation, ...]
    last: Optional[Invocation]
    history: Tuple[Invocation, ...]

    def as_dict(self) -> dict:
        return {
            'name': self.name,
            'enabled': self.enabled,
            'schedule': self.schedule,
            'timeout': self.timeout,
            'allow_overlap': self.allow_overlap,
            'description': self.description,
            'next_fire_time': isoformat(self.next_fire_time),
            'current': self.current.as_dict() if self.current is not None else None,
            'running': [invocation.as_dict() for invocation in self.running],
            'last': self.last.as_dict() if self.last is not None else None,
            'history': [invocation.as_dict() for invocation in self.history],
        }

class _JobEntry(object):
    """
    A registered job and its tracker. The tracker lock also guards
    the job's enabled flag.
    """

    def __init__(self, job, tracker: InvocationTracker) -> None:
        self.job = job
        self.tracker = tracker

class JobManager(object):
    """
    Core job manager controller.

    Jobs are registered once, at construction. Each job's state is
    guarded by its own lock, so control operations on one job never
    wait on another.
    """

    def __init__(self, logger: object, jobs: list, max_log_bytes: int = DEFAULT_MAX_LOG_BYTES, max_history: int = DEFAULT_MAX_HISTORY, cancel_grace: float = DEFAULT_CANCEL_GRACE, shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE, status_interval: float = DEFAULT_STATUS_INTERVAL) -> None:
        """
        Initialize the job manager.

        Args:
            logger (object): Application logger
            jobs (list): Job definitions to register
            max_log_bytes (int): Output capacity of each run, in bytes
            max_history (int): Finished runs kept per job
            cancel_grace (float): Seconds to wait for an action after cancel/timeout
            shutdown_grace (float): Seconds stop() waits for in-flight runs
            status_interval (float): Seconds between status lines in serve_forever()

        Returns:
            None
        """

        self.logger = logger
        self.logger.info({'status': 'start'})

        self.max_log_bytes = max_log_bytes
        self.max_history = max_history
        self.shutdown_grace = shutdown_grace
        self.status_interval = status_interval

        ## registry, fixed after construction
        self._entries = OrderedDict()
        for job in jobs:
            if job.name in self._entries:
                raise ValueError('duplicate job name "%s"' % (job.name))

            self._entries[job.name] = _JobEntry(job, InvocationTracker(job.name, max_history, job.allow_overlap))

        self._engine = ExecutionEngine(self.logger, max_log_bytes, cancel_grace)
        self._scheduler = Scheduler(self.logger, jobs, self._dispatch, self._schedule_failed)

        ## set when serve_forever() should return
        self._stopped = Event()

        self.logger.info({'status': 'end', 'jobs': list(self._entries)})

    def start(self) -> None:
        """
        Start the scheduling loop.

        Returns:
            None
        """

        self.logger.info({'status': 'start'})
        self._stopped.clear()
        self._scheduler.start()
        self.logger.info({'status': 'end'})

    def stop(self, grace: Optional[float] = None) -> bool:
        """
        Stop the scheduling loop and cancel in-flight runs.

        Runs get up to the shutdown grace period to be finalized.

        Args:
            grace (float): Overrides the configured shutdown grace period

        Returns:
            bool: True if every in-flight run was finalized in time
        """

        self.logger.info({'status': 'start'})
        grace = self.shutdown_grace if grace is None else grace

        ## one deadline shared by every shutdown step
        deadline = time.monotonic() + grace
        try:
            self._scheduler.stop(max(0.0, deadline - time.monotonic()))

            ## cancel whatever is still running
            for entry in self._entries.values():
                self._engine.cancel(entry.tracker)

            clean = self._engine.join(max(0.0, deadline - time.monotonic()))
            if not clean:
                self.logger.warning({'status': 'runs still active after shutdown grace', 'active': self._engine.active})

        finally:
            self._stopped.set()

        self.logger.info({'status': 'end'})
        return clean

    def is_running(self) -> bool:
        return self._scheduler.is_running()

    def names(self) -> list:
        return list(self._entries)

    def status(self) -> list:
        """
        Snapshot every registered job.

        Returns:
            list: JobStatus per job, in registration order
        """

        self.logger.debug({'status': 'start'})
        return [self._status(entry) for entry in self._entries.values()]

    def job(self, name: str) -> JobStatus:
        """
        Snapshot one job.

        Args:
            name (str): Job name

        Returns:
            JobStatus: Job status

        Raises:
            JobNotFoundError: The name is not registered
        """

        return self._status(self._lookup(name))

    def run_job(self, name: str) -> Invocation:
        """
        Trigger a job outside its schedule.

        Disabled jobs can still be run manually. The call returns once
        the run is admitted.

        Args:
            name (str): Job name

        Returns:
            Invocation: Copy of the admitted invocation

        Raises:
            JobNotFoundError: The name is not registered
            JobBusyError: Overlap is disallowed and the job is running
        """

        entry = self._lookup(name)
        self.logger.info({'job': name, 'status': 'run requested'})
        return self._engine.execute(entry.job, entry.tracker, TRIGGER_MANUAL)

    def cancel_job(self, name: str) -> None:
        """
        Request cancellation of the job's running invocation(s).
        A job with nothing running is left untouched.

        Args:
            name (str): Job name

        Returns:
            None

        Raises:
            JobNotFoundError: The name is not registered
        """

        entry = self._lookup(name)
        if not self._engine.cancel(entry.tracker):
            self.logger.debug({'job': name, 'status': 'nothing to cancel'})

    def enable_job(self, name: str) -> None:
        """
        Enable scheduled fires of a job, armed from now.

        Args:
            name (str): Job name

        Returns:
            None

        Raises:
            JobNotFoundError: The name is not registered
        """

        entry = self._lookup(name)
        with entry.tracker.lock:
            if entry.job.enabled:
                return

            entry.job.enabled = True

            ## armed under the job lock so a concurrent disable cannot interleave
            self._scheduler.arm(name)

        self.logger.info({'job': name, 'status': 'enabled'})

    def disable_job(self, name: str) -> None:
        """
        Disable scheduled fires of a job. Runs already in progress
        are not affected.

        Args:
            name (str): Job name

        Returns:
            None

        Raises:
            JobNotFoundError: The name is not registered
        """

        entry = self._lookup(name)
        with entry.tracker.lock:
            if not entry.job.enabled:
                return

            entry.job.enabled = False
            self._scheduler.disarm(name)

        self.logger.info({'job': name, 'status': 'disabled'})

    def serve_forever(self) -> None:
        """
        Run the job manager until a termination signal arrives.

        This method starts the scheduler, installs signal handlers
        and logs a status line every status interval.

        Returns:
            None
        """

        self.logger.info({'status': 'start'})

        ## start scheduler
        self.start()

        ## register signal handlers for graceful shutdown
        signal.signal(signal.SIGTERM, self._handle_exit)
        signal.signal(signal.SIGINT, self._handle_exit)

        ## main service loop
        while not self._stopped.wait(self.status_interval):
            self._log_status()

        self.logger.info({'status': 'end'})

    def _handle_exit(self, signum, frame) -> None:
        """
        Handle process termination signals.

        Args:
            signum (int): Signal number
            frame (object): Current stack frame

        Returns:
            None
        """

        self.logger.info({'status': 'Received signal %s, exiting...' % (signum)})
        self.stop()

    def _log_status(self) -> None:
        for status in self.status():
            last = status.last
            self.logger.info({
                'job': status.name,
                'enabled': status.enabled,
                'running': len(status.running),
                'next_fire_time': isoformat(status.next_fire_time),
                'last_status': last.status if last is not None else None,
            })
            self.logger.debug({'job': status.name, 'detail': status.as_dict()})

    def _lookup(self, name: str) -> _JobEntry:
        entry = self._entries.get(name)
        if entry is None:
            raise JobNotFoundError(name)

        return entry

    def _status(self, entry: _JobEntry) -> JobStatus:
        job = entry.job
        with entry.tracker.lock:
            enabled = job.enabled
            snapshot = entry.tracker.snapshot()

        return JobStatus(
            name = job.name,
            enabled = enabled,
            schedule = job.describe_schedule(),
            timeout = job.timeout,
            allow_overlap = job.allow_overlap,
            description = job.description,
            next_fire_time = self._scheduler.next_fire_time(job.name),
            current = snapshot.current,
            running = snapshot.running,
            last = snapshot.last,
            history = snapshot.history,
        )

    def _dispatch(self, name: str) -> None:
        ## scheduled fire, called from the scheduling loop
        entry = self._entries[name]
        try:
            self._engine.execute(entry.job, entry.tracker, TRIGGER_SCHEDULE)

        except JobBusyError:
            ## skipped fire times are not retried
            self.logger.info({'job': name, 'status': 'skipped, previous run still active'})

    def _schedule_failed(self, name: str, error) -> None:
        ## configuration error, disable once and do not retry
        entry = self._entries[name]
        with entry.tracker.lock:
            entry.job.enabled = False

        self._scheduler.disarm(name)
        self.logger.error({'job': name, 'status': 'schedule error, job disabled', 'error': str(error)})
