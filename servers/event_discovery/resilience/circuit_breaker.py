"""Per-provider circuit breaker.

A provider whose searches keep failing is taken out of the fan-out for a
while instead of burning quota and latency on every request.
"""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from ..errors import EventDiscoveryError

logger = structlog.get_logger()

T = TypeVar("T")


class CircuitState(Enum):
    """States for the circuit breaker."""

    CLOSED = "closed"  # requests flow
    OPEN = "open"  # requests rejected
    HALF_OPEN = "half_open"  # probing for recovery


class CircuitBreakerOpenError(EventDiscoveryError):
    """Raised when a provider's circuit is open."""

    def __init__(self, circuit_name: str, retry_in: float = 0.0):
        super().__init__(
            f"{circuit_name} temporarily disabled after repeated failures"
        )
        self.circuit_name = circuit_name
        self.retry_in = retry_in


class CircuitBreaker:
    """Circuit breaker guarding one provider.

    Opens after `failure_threshold` consecutive failures, lets trial
    requests through once `recovery_timeout` seconds have passed, and
    closes again after `half_open_successes` trial requests succeed.
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        half_open_successes: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_successes = half_open_successes
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count_in_half_open = 0
        self.last_failure_time: float | None = None
        self.last_error: str | None = None

    def allow_request(self) -> bool:
        """Whether a request may go through now. May move OPEN to HALF_OPEN."""
        if self.state != CircuitState.OPEN:
            return True
        if self._retry_in() <= 0:
            self._transition_to_half_open()
            return True
        return False

    def ensure_closed(self) -> None:
        """Raise CircuitBreakerOpenError unless a request is allowed."""
        if not self.allow_request():
            raise CircuitBreakerOpenError(self.name, retry_in=self._retry_in())

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run `func(*args, **kwargs)` under breaker protection.

        Raises:
            CircuitBreakerOpenError: If the circuit is open
            Exception: Whatever `func` raised, after recording the failure
        """
        self.ensure_closed()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.success_count_in_half_open += 1
            if self.success_count_in_half_open >= self.half_open_successes:
                self._close_circuit()
        else:
            self.failure_count = 0

    def record_failure(self, error: Exception | str | None = None) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()
        self.last_error = str(error) if error is not None else None

        if self.state == CircuitState.HALF_OPEN:
            self._open_circuit()
        elif (
            self.state == CircuitState.CLOSED
            and self.failure_count >= self.failure_threshold
        ):
            self._open_circuit()

    def _retry_in(self) -> float:
        if self.last_failure_time is None:
            return 0.0
        elapsed = self._clock() - self.last_failure_time
        return max(0.0, self.recovery_timeout - elapsed)

    def _transition_to_half_open(self) -> None:
        self.state = CircuitState.HALF_OPEN
        self.success_count_in_half_open = 0
        logger.info("circuit_half_open", circuit=self.name)

    def _close_circuit(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count_in_half_open = 0
        logger.info("circuit_closed", circuit=self.name)

    def _open_circuit(self) -> None:
        self.state = CircuitState.OPEN
        logger.warning(
            "circuit_opened",
            circuit=self.name,
            failure_count=self.failure_count,
            recovery_timeout=self.recovery_timeout,
            error=self.last_error,
        )

    def reset(self) -> None:
        """Manually return to the closed state."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count_in_half_open = 0
        self.last_failure_time = None
        self.last_error = None

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "retry_in": round(self._retry_in(), 1) if self.is_open else 0.0,
            "last_error": self.last_error,
        }
