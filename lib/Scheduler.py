"""
Scheduler Module

This module implements the single scheduling loop. The loop keeps
the next fire time of every armed job, sleeps until the earliest one
(or until woken), rearms each due job and hands it off to a dispatch
callback. Dispatch must not block: runs execute on their own
threads.

Per job the loop moves Idle -> Armed(next fire time) -> Idle, and a
disabled job is simply not armed.
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
from threading import Condition, Thread
from typing import Callable, Optional
from apscheduler.triggers.date import DateTrigger

## import private pkgs
from Errors import ScheduleError
from Invocation import utcnow

## upper bound on one sleep of the loop, in seconds
DEFAULT_MAX_WAIT = 60.0

class Scheduler(object):
    """
    Scheduling loop controller.

    The loop thread only arms and dispatches. Every other method is
    safe to call from any thread.
    """

    def __init__(self, logger: object, jobs: list, dispatch: Callable, on_schedule_error: Callable, max_wait: float = DEFAULT_MAX_WAIT) -> None:
        """
        Initialize the scheduler.

        Args:
            logger (object): Application logger
            jobs (list): Job definitions
            dispatch (callable): Called as dispatch(name) when a job is due
            on_schedule_error (callable): Called as on_schedule_error(name, error) when a schedule rule does not advance
            max_wait (float): Longest single sleep of the loop, in seconds

        Returns:
            None
        """

        self.logger = logger
        self.jobs = dict((job.name, job) for job in jobs)
        self.dispatch = dispatch
        self.on_schedule_error = on_schedule_error
        self.max_wait = max_wait

        ## name -> next fire time, guarded by _cond
        self._armed = {}
        self._cond = Condition()
        self._running = False
        self._thread = None

    def start(self) -> None:
        """
        Arm every enabled job from now and start the loop thread.

        Returns:
            None
        """

        self.logger.info({'status': 'start'})

        errors = []
        with self._cond:
            if self._running:
                raise RuntimeError('scheduler is already running')

            now = utcnow()
            self._armed.clear()
            for name, job in self.jobs.items():
                if job.enabled:
                    error = self._arm(name, now)
                    if error is not None:
                        errors.append((name, error))

            self._running = True
            self._thread = Thread(target = self._run, name = 'jobkit-scheduler', daemon = True)
            self._thread.start()

        for name, error in errors:
            self._report(name, error)

        self.logger.info({'status': 'end', 'armed': len(self._armed)})

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop the loop. Runs already dispatched are not affected.

        Args:
            timeout (float): Maximum seconds to wait for the loop thread

        Returns:
            None
        """

        self.logger.info({'status': 'start'})
        with self._cond:
            self._running = False
            self._armed.clear()
            self._cond.notify_all()

        if self._thread is not None:
            self._thread.join(timeout)

        self.logger.info({'status': 'end'})

    def is_running(self) -> bool:
        with self._cond:
            return self._running and self._thread is not None and self._thread.is_alive()

    def arm(self, name: str) -> None:
        """
        (Re)arm a job from now. Used when a job is enabled.

        Args:
            name (str): Job name

        Returns:
            None
        """

        with self._cond:
            if not self._running:
                return

            ## a disable that raced ahead of this call wins
            if not self.jobs[name].enabled:
                return

            error = self._arm(name, utcnow())
            self._cond.notify_all()

        if error is not None:
            self._report(name, error)

    def disarm(self, name: str) -> None:
        with self._cond:
            self._armed.pop(name, None)
            self._cond.notify_all()

    def wake(self) -> None:
        with self._cond:
            self._cond.notify_all()

    def next_fire_time(self, name: str):
        with self._cond:
            return self._armed.get(name)

    def _arm(self, name: str, now) -> Optional[ScheduleError]:
        ## caller holds _cond
        job = self.jobs[name]
        next_fire_time = job.next_fire_time(None, now)
        if next_fire_time is None:
            ## on-demand or exhausted
            self._armed.pop(name, None)
            return None

        if next_fire_time <= now:
            self._armed.pop(name, None)

            ## a one-shot whose date has passed is exhausted, not misconfigured
            if isinstance(job.schedule, DateTrigger):
                self.logger.info({'job': name, 'status': 'one-shot schedule exhausted', 'run_date': next_fire_time.isoformat()})
                return None

            return ScheduleError(name, now, next_fire_time)

        self._armed[name] = next_fire_time
        return None

    def _rearm(self, name: str, fire_time, now) -> Optional[ScheduleError]:
        """
        Advance a job past now, starting from the fire time just taken.
        Missed fire times are coalesced, never replayed.
        """

        ## caller holds _cond
        job = self.jobs[name]
        previous = fire_time
        while True:
            next_fire_time = job.next_fire_time(previous, now)
            if next_fire_time is None:
                self._armed.pop(name, None)
                return None

            if next_fire_time <= previous:
                self._armed.pop(name, None)
                return ScheduleError(name, previous, next_fire_time)

            if next_fire_time > now:
                self._armed[name] = next_fire_time
                return None

            previous = next_fire_time

    def _collect(self, now) -> tuple:
        ## caller holds _cond
        due = []
        errors = []
        for name, fire_time in sorted(self._armed.items(), key = lambda item: item[1]):
            if fire_time > now:
                break

            ## rearm before dispatch so a failing dispatch never loses the job
            error = self._rearm(name, fire_time, now)
            if error is not None:
                errors.append((name, error))

            if self.jobs[name].enabled:
                due.append((name, fire_time))

        return due, errors

    def _wait_time(self, now) -> float:
        ## caller holds _cond
        if not self._armed:
            return self.max_wait

        earliest = min(self._armed.values())
        return min(self.max_wait, max(0.0, (earliest - now).total_seconds()))

    def _run(self) -> None:
        self.logger.info({'status': 'loop start'})
        while True:
            with self._cond:
                if not self._running:
                    break

                now = utcnow()
                due, errors = self._collect(now)
                if not due and not errors:
                    self._cond.wait(self._wait_time(now))
                    continue

            for name, error in errors:
                self._report(name, error)

            for name, fire_time in due:
                self._fire(name, fire_time)

        self.logger.info({'status': 'loop end'})

    def _fire(self, name: str, fire_time) -> None:
        self.logger.debug({'job': name, 'fire_time': fire_time.isoformat()})
        try:
            self.dispatch(name)

        except Exception as e:
            ## a dispatch failure never stops the loop
            self.logger.error({'job': name, 'status': 'dispatch failed', 'error': str(e)})

    def _report(self, name: str, error: ScheduleError) -> None:
        try:
            self.on_schedule_error(name, error)

        except Exception as e:
            self.logger.error({'job': name, 'status': 'schedule error handler failed', 'error': str(e)})
