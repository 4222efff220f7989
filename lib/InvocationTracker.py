"""
Invocation Tracker Module

This module keeps the per-job run state: the invocation(s) currently
running, the last finished invocation and a bounded history of
finished invocations.

Every tracker owns one lock. The job manager uses the same lock to
guard the job's enabled flag, so all mutable state of one job is
protected per job and never blocks another job.
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
import copy
import itertools
from threading import RLock
from collections import OrderedDict, deque
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

## import private pkgs
from Errors import JobBusyError, JobTimeoutError
from Invocation import Invocation, ERROR_STATUSES, RUNNING, STATUSES, TIMED_OUT, utcnow

@dataclass(frozen = True)
class TrackerSnapshot(object):
    """
    Point-in-time copy of a tracker.

    Attributes:
        current (Invocation): Most recently admitted running invocation, or None
        running (tuple): All running invocations, oldest first
        last (Invocation): Last finished invocation, or None
        history (tuple): Finished invocations, newest first
    """

    current: Optional[Invocation]
    running: Tuple[Invocation, ...]
    last: Optional[Invocation]
    history: Tuple[Invocation, ...]

class InvocationTracker(object):
    """
    Per-job current/last/history state.

    History is a fixed-capacity FIFO ring (a deque with maxlen):
    appending past the capacity evicts the oldest entry.
    """

    def __init__(self, name: str, max_history: int, allow_overlap: bool = False) -> None:
        """
        Initialize the tracker.

        Args:
            name (str): Job name
            max_history (int): Maximum number of finished invocations kept
            allow_overlap (bool): Whether concurrent invocations are admitted

        Returns:
            None
        """

        if max_history < 0:
            raise ValueError('max_history must be >= 0, got %r' % (max_history))

        self.name = name
        self.max_history = max_history
        self.allow_overlap = allow_overlap

        ## per job lock
        self.lock = RLock()

        ## invocation id sequence
        self._ids = itertools.count(1)

        ## id -> (invocation, context), in admission order
        self._running = OrderedDict()
        self._last = None
        self._history = deque(maxlen = max_history)

    def begin(self, invocation: Invocation, context = None) -> Invocation:
        """
        Admit a running invocation.

        Args:
            invocation (Invocation): Invocation in the running state
            context (JobContext): Cancellation handle of the run

        Returns:
            Invocation: The admitted invocation, with its id assigned

        Raises:
            JobBusyError: Overlap is disallowed and a run is in progress
        """

        with self.lock:
            if self._running and not self.allow_overlap:
                raise JobBusyError(self.name)

            invocation.id = next(self._ids)
            self._running[invocation.id] = (invocation, context)
            return invocation

    def finish(self, invocation: Invocation, status: str, error: Optional[BaseException] = None, finished: Optional[datetime] = None) -> Invocation:
        """
        Finalize a running invocation and move it into history.

        The terminal status and the finished timestamp are set in the
        same critical section that removes the invocation from the
        running set, so snapshots never see a half-finished record.

        Args:
            invocation (Invocation): Running invocation
            status (str): Terminal status
            error (BaseException): Error for failed or timed-out runs
            finished (datetime): Finish time, defaults to now

        Returns:
            Invocation: The finalized invocation
        """

        if status == RUNNING or status not in STATUSES:
            raise ValueError('invalid terminal status %r' % (status))

        with self.lock:
            if self._running.pop(invocation.id, None) is None:
                raise ValueError('invocation %s/%s is not running' % (self.name, invocation.id))

            ## timed-out runs always carry the exceeded deadline
            if status == TIMED_OUT and error is None:
                error = JobTimeoutError(self.name, invocation.timeout)

            invocation.error = error if status in ERROR_STATUSES else None
            invocation.status = status
            invocation.finished = finished or utcnow()
            if invocation.log is not None:
                invocation.log.close()

            self._last = invocation
            self._history.append(invocation)
            return invocation

    def cancel(self, when: Optional[datetime] = None) -> list:
        """
        Stamp every running invocation as cancelled.

        The final status is still decided by the execution engine.

        Args:
            when (datetime): Cancellation time, defaults to now

        Returns:
            list: Contexts of the runs to signal
        """

        when = when or utcnow()
        contexts = []
        with self.lock:
            for invocation, context in self._running.values():
                if invocation.cancelled is None:
                    invocation.cancelled = when

                if context is not None:
                    contexts.append(context)

        return contexts

    @property
    def busy(self) -> bool:
        with self.lock:
            return bool(self._running)

    def snapshot(self) -> TrackerSnapshot:
        """
        Take a consistent point-in-time copy.

        Returns:
            TrackerSnapshot: Copies of current, running, last and history
        """

        with self.lock:
            running = tuple(copy.copy(invocation) for invocation, _ in self._running.values())
            return TrackerSnapshot(
                current = running[-1] if running else None,
                running = running,
                last = copy.copy(self._last) if self._last is not None else None,
                history = tuple(copy.copy(invocation) for invocation in reversed(self._history)),
            )
