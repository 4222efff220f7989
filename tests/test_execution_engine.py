import threading
import time
from datetime import timedelta

import pytest

import ExecutionEngine as execution_engine
from Errors import JobBusyError, JobCancelledError, JobTimeoutError
from ExecutionEngine import ExecutionEngine, JobContext
from Invocation import CANCELLED, FAILED, RUNNING, SUCCESS, TIMED_OUT, TRIGGER_SCHEDULE
from InvocationTracker import InvocationTracker
from Job import Job
from LogBuffer import LogBuffer


@pytest.fixture
def engine(logger):
    return ExecutionEngine(logger, max_log_bytes=1024, cancel_grace=0.5)


def run(engine, wait_until, job, tracker=None, timeout=5.0):
    tracker = tracker or InvocationTracker(job.name, max_history=10, allow_overlap=job.allow_overlap)
    admitted = engine.execute(job, tracker)
    assert wait_until(lambda: not tracker.busy, timeout=timeout)
    return admitted, tracker.snapshot().last


def test_success_captures_output(engine, wait_until):
    def action(ctx):
        ctx.logger.info('working on %s', ctx.job_name)
        ctx.write('raw line\n')

    admitted, last = run(engine, wait_until, Job(name='ok', action=action))

    assert admitted.id == 1
    assert last.status == SUCCESS
    assert last.error is None
    assert last.finished >= last.started
    assert 'INFO working on ok' in last.log.text()
    assert 'raw line' in last.log.text()


def test_admitted_invocation_is_running(engine, wait_until):
    release = threading.Event()
    job = Job(name='slow', action=lambda ctx: release.wait(5))
    tracker = InvocationTracker('slow', max_history=10)

    admitted = engine.execute(job, tracker, TRIGGER_SCHEDULE)

    assert admitted.status == RUNNING
    assert admitted.finished is None
    assert admitted.trigger == TRIGGER_SCHEDULE
    assert tracker.snapshot().current.id == admitted.id

    release.set()
    assert wait_until(lambda: not tracker.busy)
    assert tracker.snapshot().last.status == SUCCESS


def test_action_error_is_recorded(engine, wait_until):
    def action(ctx):
        raise ValueError('bad input')

    _, last = run(engine, wait_until, Job(name='broken', action=action))

    assert last.status == FAILED
    assert isinstance(last.error, ValueError)
    assert last.as_dict()['error'] == 'bad input'


def test_system_exit_is_recorded_as_failure(engine, wait_until):
    def action(ctx):
        raise SystemExit(3)

    _, last = run(engine, wait_until, Job(name='quitter', action=action))

    assert last.status == FAILED
    assert isinstance(last.error, SystemExit)
    assert last.error.code == 3


def test_timeout_with_cooperative_action(engine, wait_until):
    job = Job(name='slow', action=lambda ctx: ctx.wait(5), timeout=0.3)

    admitted, last = run(engine, wait_until, job)

    assert admitted.timeout == admitted.started + timedelta(seconds=0.3)
    assert last.status == TIMED_OUT
    assert isinstance(last.error, JobTimeoutError)
    assert last.error.deadline == last.timeout
    assert timedelta(seconds=0.25) <= last.elapsed < timedelta(seconds=1.5)


def test_timeout_abandons_unresponsive_action(logger, wait_until):
    engine = ExecutionEngine(logger, max_log_bytes=1024, cancel_grace=0.1)
    job = Job(name='stuck', action=lambda ctx: time.sleep(2), timeout=0.2)

    _, last = run(engine, wait_until, job)

    assert last.status == TIMED_OUT
    assert last.elapsed < timedelta(seconds=1.5)


def test_timed_out_finish_is_when_deadline_fired(logger, wait_until):
    engine = ExecutionEngine(logger, max_log_bytes=1024, cancel_grace=1.0)
    job = Job(name='stuck', action=lambda ctx: time.sleep(2), timeout=0.2)

    _, last = run(engine, wait_until, job)

    assert last.status == TIMED_OUT
    assert timedelta(seconds=0.15) <= last.elapsed < timedelta(seconds=0.8)


def test_cancel_running_invocation(engine, wait_until):
    job = Job(name='long', action=lambda ctx: ctx.wait(5))
    tracker = InvocationTracker('long', max_history=10)
    engine.execute(job, tracker)

    assert engine.cancel(tracker) == 1
    assert wait_until(lambda: not tracker.busy)

    last = tracker.snapshot().last
    assert last.status == CANCELLED
    assert last.cancelled is not None
    assert last.error is None
    assert last.elapsed < timedelta(seconds=4)


def test_error_after_cancel_is_reported_as_cancelled(engine, wait_until):
    def action(ctx):
        ctx.wait(5)
        raise RuntimeError('interrupted')

    job = Job(name='noisy', action=action)
    tracker = InvocationTracker('noisy', max_history=10)
    engine.execute(job, tracker)
    engine.cancel(tracker)

    assert wait_until(lambda: not tracker.busy)
    assert tracker.snapshot().last.status == CANCELLED


def test_raise_if_cancelled(engine, wait_until):
    def action(ctx):
        while True:
            ctx.raise_if_cancelled()
            time.sleep(0.01)

    job = Job(name='poller', action=action)
    tracker = InvocationTracker('poller', max_history=10)
    engine.execute(job, tracker)
    engine.cancel(tracker)

    assert wait_until(lambda: not tracker.busy)
    assert tracker.snapshot().last.status == CANCELLED


def test_completed_outcome_wins_over_late_cancel():
    ctx = JobContext('race', LogBuffer(16))
    assert ctx._resolve(SUCCESS)
    assert not ctx.cancel()
    assert not ctx.cancelled
    assert ctx.outcome() == (SUCCESS, None)


def test_timeout_and_cancel_first_writer_wins():
    ctx = JobContext('race', LogBuffer(16))
    assert ctx.cancel()
    assert not ctx.expire()
    assert ctx.reason == CANCELLED
    assert ctx.outcome()[0] == CANCELLED


def test_busy_without_overlap(engine, wait_until):
    release = threading.Event()
    job = Job(name='single', action=lambda ctx: release.wait(5))
    tracker = InvocationTracker('single', max_history=10)
    engine.execute(job, tracker)

    with pytest.raises(JobBusyError):
        engine.execute(job, tracker)

    release.set()
    assert wait_until(lambda: not tracker.busy)
    assert len(tracker.snapshot().history) == 1


def test_overlap_allowed(engine, wait_until):
    release = threading.Event()
    job = Job(name='multi', action=lambda ctx: release.wait(5), allow_overlap=True)
    tracker = InvocationTracker('multi', max_history=10, allow_overlap=True)
    engine.execute(job, tracker)
    engine.execute(job, tracker)

    assert len(tracker.snapshot().running) == 2

    release.set()
    assert wait_until(lambda: not tracker.busy)
    assert [inv.id for inv in tracker.snapshot().history] in ([2, 1], [1, 2])


def test_output_bounded_by_capacity(logger, wait_until):
    engine = ExecutionEngine(logger, max_log_bytes=10)
    job = Job(name='chatty', action=lambda ctx: ctx.write('x' * 100))

    _, last = run(engine, wait_until, job)

    assert len(last.log) == 10
    assert last.log.truncated
    assert last.as_dict()['output_truncated']


def test_dispatch_failure_is_a_failed_invocation(engine, monkeypatch):
    class BrokenThread(threading.Thread):
        def start(self):
            raise RuntimeError("can't start new thread")

    monkeypatch.setattr(execution_engine, 'Thread', BrokenThread)
    tracker = InvocationTracker('unlucky', max_history=10)

    admitted = engine.execute(Job(name='unlucky', action=lambda ctx: None), tracker)

    assert admitted.status == FAILED
    assert "can't start new thread" in str(admitted.error)
    assert not tracker.busy
    assert engine.active == 0


def test_join_waits_for_runs(engine):
    job = Job(name='short', action=lambda ctx: ctx.wait(0.2))
    tracker = InvocationTracker('short', max_history=10)
    engine.execute(job, tracker)

    assert engine.join(5)
    assert engine.active == 0
    assert tracker.snapshot().last.status == SUCCESS


def test_cancelled_error_without_request():
    def action(ctx):
        raise JobCancelledError('gave up')

    engine = ExecutionEngine(None, max_log_bytes=16)
    ctx = JobContext('self', LogBuffer(16))
    done = threading.Event()
    engine._invoke(Job(name='self', action=action), ctx, done)

    assert done.is_set()
    assert ctx.outcome() == (CANCELLED, None)
