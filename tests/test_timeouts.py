"""Tests for the timeout helper."""

import threading
import time

import pytest

from image_sanitizer.utils.timeouts import abandoned_count, with_timeout


def _wait_until_settled(deadline: float = 5.0) -> int:
    end = time.monotonic() + deadline
    while abandoned_count() and time.monotonic() < end:
        time.sleep(0.01)
    return abandoned_count()


def test_returns_value():
    assert with_timeout(lambda a, b: a + b, 5, 2, 3) == 5


def test_no_limit_runs_inline():
    assert with_timeout(threading.current_thread, None) is threading.current_thread()


def test_errors_propagate():
    with pytest.raises(ValueError):
        with_timeout(int, 5, "not a number")


def test_timed_out_call_is_tracked_until_it_returns():
    release = threading.Event()
    assert _wait_until_settled() == 0

    with pytest.raises(TimeoutError):
        with_timeout(release.wait, 0.05, 10)

    assert abandoned_count() == 1
    release.set()
    assert _wait_until_settled() == 0
