"""Tests for the bounded-retry combinator."""

import threading
from pathlib import Path

import pytest

from image_sanitizer.core.retry import (
    OperationFailed,
    RetryController,
    RetryPolicy,
    is_retryable,
)
from image_sanitizer.errors import (
    Cancelled,
    FailureReason,
    FingerprintError,
    IntegrityError,
    ToolError,
    ToolTimeout,
)
from image_sanitizer.utils.config import Config


class Flaky:
    """Fails ``failures`` times with ``error``, then returns ``value``."""

    def __init__(self, failures, error, value="done"):
        self.failures = failures
        self.error = error
        self.value = value
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def controller(sleeps):
    return RetryController(RetryPolicy(max_attempts=3, delay=1.0), sleep=sleeps.append)


class TestRetryController:
    def test_success_first_time(self, controller, sleeps):
        attempted = controller.call(Flaky(0, ToolError("t", "boom")))

        assert attempted.value == "done"
        assert attempted.attempts == 1
        assert sleeps == []

    def test_transient_failure_is_retried(self, controller, sleeps):
        op = Flaky(2, ToolTimeout("t", "slow"))

        attempted = controller.call(op)

        assert attempted.attempts == 3
        assert op.calls == 3
        assert sleeps == [1.0, 1.0]

    def test_gives_up_after_max_attempts(self, controller):
        op = Flaky(5, OSError("disk"))

        with pytest.raises(OperationFailed) as exc_info:
            controller.call(op, label="strip a.jpg")

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.error, OSError)
        assert "strip a.jpg" in str(exc_info.value)
        assert op.calls == 3

    def test_file_verdicts_are_not_retried(self, controller):
        op = Flaky(5, IntegrityError(Path("a.jpg"), FailureReason.DIMENSION_MISMATCH))

        with pytest.raises(OperationFailed) as exc_info:
            controller.call(op)

        assert exc_info.value.attempts == 1
        assert op.calls == 1

    def test_custom_predicate(self, controller):
        op = Flaky(1, ToolError("t", "boom"))

        with pytest.raises(OperationFailed):
            controller.call(op, retry_on=lambda exc: isinstance(exc, ToolTimeout))
        assert op.calls == 1

    def test_cleanup_runs_after_each_failure(self, controller):
        cleaned = []

        controller.call(Flaky(2, ToolError("t", "boom")), cleanup=lambda: cleaned.append(1))

        assert cleaned == [1, 1]

    def test_arguments_are_forwarded(self, controller):
        attempted = controller.call(lambda a, b=0: a + b, 2, b=3)

        assert attempted.value == 5

    def test_cancelled_before_first_attempt(self):
        cancel = threading.Event()
        cancel.set()
        controller = RetryController(RetryPolicy(), cancel_event=cancel)
        op = Flaky(0, ToolError("t", "boom"))

        with pytest.raises(Cancelled):
            controller.call(op)
        assert op.calls == 0

    def test_cancelled_during_backoff(self):
        cancel = threading.Event()
        controller = RetryController(RetryPolicy(max_attempts=3, delay=5.0), cancel_event=cancel)

        def op():
            cancel.set()
            raise ToolError("t", "boom")

        with pytest.raises(Cancelled):
            controller.call(op)

    def test_cancelled_is_not_wrapped(self, controller):
        with pytest.raises(Cancelled):
            controller.call(Flaky(1, Cancelled("stop")))


class TestRetryPolicy:
    def test_fixed_delay(self):
        policy = RetryPolicy(delay=2.0, backoff="fixed")

        assert [policy.delay_after(n) for n in (1, 2, 3)] == [2.0, 2.0, 2.0]

    def test_exponential_delay_is_capped(self):
        policy = RetryPolicy(delay=1.0, backoff="exponential", max_delay=3.0)

        assert [policy.delay_after(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]

    def test_from_config(self):
        config = Config.defaults()
        config.set("retry.max_attempts", 0)
        config.set("retry.backoff", "Exponential")

        policy = RetryPolicy.from_config(config)

        assert policy.max_attempts == 1
        assert policy.backoff == "exponential"


def test_is_retryable():
    assert is_retryable(ToolError("t", "x"))
    assert is_retryable(OSError("x"))
    assert is_retryable(TimeoutError())
    assert is_retryable(FingerprintError(Path("a"), FailureReason.UNREADABLE))
    assert not is_retryable(FingerprintError(Path("a"), FailureReason.CORRUPT))
    assert not is_retryable(Cancelled())
    assert not is_retryable(ValueError("bug"))
