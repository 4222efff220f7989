"""
Shared fixtures for the job kit test suite.
"""

import time
import logging

import pytest


@pytest.fixture
def logger():
    logger = logging.getLogger('jobkit.tests')
    logger.setLevel(logging.DEBUG)
    return logger


def _wait_until(predicate, timeout=5.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds or the timeout elapses."""
    return _wait_until
