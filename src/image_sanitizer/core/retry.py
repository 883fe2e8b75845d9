"""Bounded-retry combinator applied uniformly to every suspension point."""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from image_sanitizer.errors import Cancelled, FileFailure, SanitizerError, ToolError
from image_sanitizer.utils.config import Config
from image_sanitizer.utils.logger import setup_logger

logger = setup_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt count and delay policy."""

    max_attempts: int = 3
    delay: float = 1.0
    backoff: str = "fixed"  # fixed, exponential
    max_delay: float = 8.0

    @classmethod
    def from_config(cls, config: Config) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, int(config.get("retry.max_attempts", 3))),
            delay=float(config.get("retry.delay_seconds", 1.0)),
            backoff=str(config.get("retry.backoff", "fixed")).lower(),
            max_delay=float(config.get("retry.max_delay_seconds", 8.0)),
        )

    def delay_after(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        if self.backoff == "exponential":
            return min(self.max_delay, self.delay * (2 ** (attempt - 1)))
        return min(self.max_delay, self.delay)


@dataclass
class Attempted(Generic[T]):
    """Return value of a successful call plus the attempts it took."""

    value: T
    attempts: int


class OperationFailed(SanitizerError):
    """An operation failed for good: retries exhausted or a non-retryable error."""

    def __init__(self, error: BaseException, attempts: int, label: str = ""):
        super().__init__(f"{label or 'operation'} failed after {attempts} attempt(s): {error}")
        self.error = error
        self.attempts = attempts
        self.label = label


def is_retryable(exc: BaseException) -> bool:
    """Tool failures and I/O errors are transient; per-file verdicts are not."""
    if isinstance(exc, Cancelled):
        return False
    if isinstance(exc, FileFailure):
        return exc.retryable
    return isinstance(exc, (ToolError, OSError, TimeoutError))


class RetryController:
    """Runs operations under a retry policy, honouring cancellation between attempts."""

    def __init__(
        self,
        policy: RetryPolicy,
        cancel_event: Optional[threading.Event] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.policy = policy
        self.cancel_event = cancel_event
        self._sleep = sleep

    def check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise Cancelled("interrupted")

    def call(
        self,
        operation: Callable[..., T],
        *args: Any,
        label: str = "",
        retry_on: Callable[[BaseException], bool] = is_retryable,
        cleanup: Optional[Callable[[], None]] = None,
        **kwargs: Any,
    ) -> Attempted[T]:
        """
        Call ``operation`` up to ``max_attempts`` times.

        Args:
            operation: Callable to run
            label: Name used in logs and errors
            retry_on: Predicate deciding whether a failure is worth another attempt
            cleanup: Called after every failed attempt to discard partial output

        Returns:
            The operation's return value and the number of attempts used

        Raises:
            OperationFailed: When the error is not retryable or attempts ran out
            Cancelled: When an interrupt was requested
        """
        attempts = self.policy.max_attempts
        for attempt in range(1, attempts + 1):
            self.check_cancelled()
            try:
                return Attempted(operation(*args, **kwargs), attempt)
            except Cancelled:
                raise
            except Exception as exc:
                if cleanup is not None:
                    cleanup()
                if not retry_on(exc) or attempt >= attempts:
                    raise OperationFailed(exc, attempt, label) from exc
                delay = self.policy.delay_after(attempt)
                logger.debug(
                    f"{label or 'operation'} attempt {attempt}/{attempts} failed: {exc}; "
                    f"retrying in {delay:.2f}s"
                )
                self._wait(delay)
        raise AssertionError("unreachable")

    def _wait(self, delay: float) -> None:
        if delay <= 0:
            return
        if self.cancel_event is not None:
            if self.cancel_event.wait(delay):
                raise Cancelled("interrupted")
        else:
            self._sleep(delay)
