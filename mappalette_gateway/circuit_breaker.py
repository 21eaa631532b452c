"""
Circuit breaker guarding the shared Redis counter store.
"""
import logging
import time
from enum import Enum
from typing import Any, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Calls go through
    OPEN = "open"  # Calls are refused
    HALF_OPEN = "half_open"  # Trial calls decide whether to close again


class CircuitBreakerOpen(Exception):
    """Raised when a call is refused because the circuit is open."""

    def __init__(self, retry_after: int):
        super().__init__(f"Circuit breaker is OPEN. Retry after {retry_after}s")
        self.retry_after = retry_after


class CircuitBreaker:
    """
    Fail fast while Redis is unreachable instead of paying a socket
    timeout on every request.

    Args:
        failure_threshold: Consecutive failures that open the circuit
        recovery_timeout: Seconds the circuit stays open before a trial call
        success_threshold: Successful trial calls needed to close again
        expected_exceptions: Exception types counted as failures
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30,
        success_threshold: int = 2,
        expected_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self.expected_exceptions = expected_exceptions
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._trial_successes = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._recovery_due():
            self._state = CircuitState.HALF_OPEN
            self._trial_successes = 0
            logger.info("Circuit breaker HALF_OPEN - trying Redis again")
        return self._state

    @property
    def failure_count(self) -> int:
        return self._consecutive_failures

    def call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        """Run func, refusing immediately while the circuit is open."""
        if self.state == CircuitState.OPEN:
            raise CircuitBreakerOpen(self.seconds_until_retry())

        try:
            result = func(*args, **kwargs)
        except self.expected_exceptions:
            self._record_failure()
            raise
        self._record_success()
        return result

    def seconds_until_retry(self) -> int:
        if self._opened_at is None or self._state != CircuitState.OPEN:
            return 0
        remaining = self.recovery_timeout - (self._clock() - self._opened_at)
        return max(0, int(remaining))

    def _recovery_due(self) -> bool:
        return (
            self._opened_at is not None
            and self._clock() - self._opened_at >= self.recovery_timeout
        )

    def _record_success(self):
        self._consecutive_failures = 0
        if self._state == CircuitState.HALF_OPEN:
            self._trial_successes += 1
            if self._trial_successes >= self.success_threshold:
                self._state = CircuitState.CLOSED
                self._opened_at = None
                logger.info("Circuit breaker CLOSED - Redis recovered")

    def _record_failure(self):
        self._consecutive_failures += 1
        if (
            self._state == CircuitState.HALF_OPEN
            or self._consecutive_failures >= self.failure_threshold
        ):
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            logger.error(
                f"Circuit breaker OPEN - {self._consecutive_failures} consecutive failures"
            )
