"""
Execution Engine Module

This module runs job actions. Every run gets its own action thread
plus a supervisor thread that races "action finished" against the
cancellation signal and the run deadline, then finalizes the
invocation record.

Responsibilities:
- Admit a running invocation before the action starts
- Pass a cooperative cancellation context to every action
- Enforce run timeouts with a bounded grace period
- Contain action errors to the invocation record
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
import copy
import time
import logging
from datetime import timedelta
from threading import Event, Lock, Thread, current_thread
from typing import Optional

## import private pkgs
from Errors import JobCancelledError, JobTimeoutError
from Invocation import Invocation, CANCELLED, FAILED, SUCCESS, TIMED_OUT, TRIGGER_MANUAL, utcnow
from LogBuffer import LogBuffer, LogBufferHandler

## default grace after cancel/timeout before a record is finalized regardless
DEFAULT_CANCEL_GRACE = 1.0

## format of lines written through JobContext.logger
RUN_LOG_FORMAT = '%(asctime)s %(levelname)s %(message)s'

class JobContext(object):
    """
    Cancellation token and output sink handed to every action.

    Actions are expected to poll `cancelled`, use `wait()` instead of
    time.sleep(), or call `raise_if_cancelled()` at safe points. The
    engine never preempts an action.
    """

    def __init__(self, job_name: str, log: LogBuffer, timeout: float = 0) -> None:
        self.job_name = job_name
        self.invocation_id = 0
        self.log = log

        ## monotonic deadline
        self._deadline = time.monotonic() + timeout if timeout else None

        ## set once cancellation or timeout is requested
        self._cancelled = Event()

        ## set on cancellation request or action completion
        self._wake = Event()

        ## first-writer-wins terminal outcome and when it was decided
        self._lock = Lock()
        self._outcome = None
        self.resolved_at = None

        ## private logger, not registered with the logging manager
        self.logger = logging.Logger('%s.run' % (job_name))
        handler = LogBufferHandler(log)
        handler.setFormatter(logging.Formatter(RUN_LOG_FORMAT))
        self.logger.addHandler(handler)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def reason(self) -> Optional[str]:
        """
        Why the run was signalled: "cancelled" or "timed-out", None
        if it was not.
        """

        with self._lock:
            if self._outcome and self._outcome[0] in (CANCELLED, TIMED_OUT):
                return self._outcome[0]

        return None

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None

        return max(0.0, self._deadline - time.monotonic())

    def wait(self, seconds: Optional[float] = None) -> bool:
        """
        Sleep until cancelled or for the given number of seconds.

        Returns:
            bool: True if the run was cancelled
        """

        return self._cancelled.wait(seconds)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise JobCancelledError('job "%s" was %s' % (self.job_name, self.reason or CANCELLED))

    def write(self, data) -> int:
        return self.log.write(data)

    def cancel(self) -> bool:
        """
        Request cooperative cancellation.

        Returns:
            bool: True if the request decided the run's outcome
        """

        return self._signal(CANCELLED, None)

    def expire(self, deadline = None) -> bool:
        return self._signal(TIMED_OUT, JobTimeoutError(self.job_name, deadline))

    def _signal(self, status: str, error) -> bool:
        won = self._resolve(status, error)
        if won:
            self._cancelled.set()

        self._wake.set()
        return won

    def _resolve(self, status: str, error: Optional[BaseException] = None) -> bool:
        with self._lock:
            if self._outcome is not None:
                return False

            self._outcome = (status, error)
            self.resolved_at = utcnow()
            return True

    def outcome(self) -> tuple:
        with self._lock:
            return self._outcome

class ExecutionEngine(object):
    """
    Runs job actions under a cancellable, time-bounded context.
    """

    def __init__(self, logger: object, max_log_bytes: int, cancel_grace: float = DEFAULT_CANCEL_GRACE) -> None:
        """
        Initialize the execution engine.

        Args:
            logger (object): Application logger
            max_log_bytes (int): Log buffer capacity per run
            cancel_grace (float): Seconds to wait for an action after cancel/timeout

        Returns:
            None
        """

        self.logger = logger
        self.max_log_bytes = max_log_bytes
        self.cancel_grace = cancel_grace

        ## supervisor threads of in-flight runs
        self._threads = set()
        self._threads_lock = Lock()

    def execute(self, job, tracker, trigger: str = TRIGGER_MANUAL) -> Invocation:
        """
        Start one run of a job.

        The invocation is registered with the tracker in the running
        state before the action starts. The call returns as soon as
        the run is admitted.

        Args:
            job (Job): Job to run
            tracker (InvocationTracker): The job's tracker
            trigger (str): What started the run

        Returns:
            Invocation: Copy of the admitted invocation

        Raises:
            JobBusyError: Overlap is disallowed and the job is running
        """

        started = utcnow()
        invocation = Invocation(
            job_name = job.name,
            started = started,
            timeout = started + timedelta(seconds = job.timeout) if job.timeout else None,
            log = LogBuffer(self.max_log_bytes),
            trigger = trigger,
        )
        context = JobContext(job.name, invocation.log, job.timeout)

        ## admission, raises JobBusyError
        tracker.begin(invocation, context)
        context.invocation_id = invocation.id
        self.logger.info({'job': job.name, 'invocation': invocation.id, 'trigger': trigger, 'status': 'started'})

        supervisor = Thread(
            target = self._supervise,
            args = (job, tracker, invocation, context),
            name = 'jobkit-%s-%d' % (job.name, invocation.id),
            daemon = True,
        )
        try:
            with self._threads_lock:
                self._threads.add(supervisor)

            supervisor.start()

        except Exception as e:
            ## could not dispatch, record as an immediate failure
            with self._threads_lock:
                self._threads.discard(supervisor)

            self.logger.error({'job': job.name, 'invocation': invocation.id, 'status': 'dispatch failed', 'error': str(e)})
            context._resolve(FAILED, e)
            self._finalize(tracker, invocation, context)

        with tracker.lock:
            return copy.copy(invocation)

    def cancel(self, tracker) -> int:
        """
        Request cancellation of every running invocation of a job.

        Args:
            tracker (InvocationTracker): The job's tracker

        Returns:
            int: Number of runs signalled
        """

        contexts = tracker.cancel(utcnow())
        for context in contexts:
            context.cancel()
            self.logger.info({'job': context.job_name, 'invocation': context.invocation_id, 'status': 'cancel requested'})

        return len(contexts)

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for in-flight runs to be finalized.

        Args:
            timeout (float): Maximum seconds to wait, None waits forever

        Returns:
            bool: True if every run was finalized in time
        """

        deadline = time.monotonic() + timeout if timeout is not None else None
        with self._threads_lock:
            threads = list(self._threads)

        for thread in threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)

        with self._threads_lock:
            return not self._threads

    @property
    def active(self) -> int:
        with self._threads_lock:
            return len(self._threads)

    def _supervise(self, job, tracker, invocation: Invocation, context: JobContext) -> None:
        done = Event()
        try:
            action = Thread(
                target = self._invoke,
                args = (job, context, done),
                name = 'jobkit-%s-%d-action' % (job.name, invocation.id),
                daemon = True,
            )
            try:
                action.start()

            except Exception as e:
                self.logger.error({'job': job.name, 'invocation': invocation.id, 'status': 'dispatch failed', 'error': str(e)})
                context._resolve(FAILED, e)
                done.set()
                context._wake.set()

            ## race completion against cancellation and the deadline
            if not context._wake.wait(context.remaining()):
                context.expire(invocation.timeout)
                self.logger.warning({'job': job.name, 'invocation': invocation.id, 'status': 'deadline exceeded'})

            ## bounded wait for the action to honor the signal
            if not done.wait(self.cancel_grace):
                self.logger.warning({'job': job.name, 'invocation': invocation.id, 'status': 'action abandoned after grace period', 'grace': self.cancel_grace})

            self._finalize(tracker, invocation, context)

        finally:
            with self._threads_lock:
                self._threads.discard(current_thread())

    def _invoke(self, job, context: JobContext, done: Event) -> None:
        try:
            job.action(context)
            context._resolve(SUCCESS)

        except JobCancelledError:
            context._resolve(CANCELLED)

        except BaseException as e:
            ## contained to the invocation record, SystemExit included
            context._resolve(FAILED, e)

        finally:
            done.set()
            context._wake.set()

    def _finalize(self, tracker, invocation: Invocation, context: JobContext) -> None:
        outcome = context.outcome()
        if outcome is None:
            ## the action neither finished nor was signalled
            outcome = (FAILED, RuntimeError('job "%s" action did not report an outcome' % (invocation.job_name)))

        ## the run ends when its outcome was decided, not when the grace wait ends
        status, error = outcome
        tracker.finish(invocation, status, error, context.resolved_at)

        log = self.logger.error if status in (FAILED, TIMED_OUT) else self.logger.info
        log({
            'job': invocation.job_name,
            'invocation': invocation.id,
            'status': status,
            'elapsed': invocation.elapsed.total_seconds(),
            'error': str(error) if error is not None and status in (FAILED, TIMED_OUT) else None,
        })
