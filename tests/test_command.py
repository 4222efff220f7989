import threading
import time

import pytest

from Command import Command
from Errors import CommandError, JobCancelledError
from ExecutionEngine import JobContext
from LogBuffer import LogBuffer


def new_context(capacity=4096):
    return JobContext('cmd', LogBuffer(capacity))


def test_output_is_captured():
    ctx = new_context()
    Command('echo hello; echo oops 1>&2')(ctx)

    text = ctx.log.text()
    assert 'hello\n' in text
    assert 'oops\n' in text
    assert "'cmd'" in text


def test_nonzero_exit_raises():
    with pytest.raises(CommandError) as excinfo:
        Command('exit 3')(new_context())

    assert excinfo.value.returncode == 3
    assert excinfo.value.command == 'exit 3'


def test_devnull_suffix_discards_output():
    ctx = new_context()
    Command('echo hidden &> /dev/null')(ctx)
    assert 'hidden\n' not in ctx.log.text()


def test_cancel_stops_the_process():
    ctx = new_context()
    threading.Timer(0.2, ctx.cancel).start()

    started = time.monotonic()
    with pytest.raises(JobCancelledError):
        Command('sleep 10', poll_interval=0.05)(ctx)

    assert time.monotonic() - started < 5
