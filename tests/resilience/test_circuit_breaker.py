"""Tests for the per-provider circuit breaker."""

import pytest

from servers.event_discovery.errors import EventDiscoveryError
from servers.event_discovery.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitState,
)


async def success():
    return "ok"


async def fail():
    raise ValueError("upstream error")


class TestCircuitBreaker:
    """Tests for CircuitBreaker class."""

    def test_starts_closed(self):
        """Circuit breaker should start in closed state."""
        cb = CircuitBreaker(failure_threshold=3)
        assert cb.state == CircuitState.CLOSED
        assert cb.is_closed
        assert not cb.is_open

    @pytest.mark.asyncio
    async def test_stays_closed_on_success(self):
        """Circuit should stay closed on successful calls."""
        cb = CircuitBreaker(failure_threshold=3)

        result = await cb.call(success)
        assert result == "ok"
        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_passes_arguments(self):
        """call() should forward positional and keyword arguments."""
        cb = CircuitBreaker()

        async def add(a, b, scale=1):
            return (a + b) * scale

        assert await cb.call(add, 2, 3, scale=2) == 10

    @pytest.mark.asyncio
    async def test_opens_after_threshold_failures(self):
        """Circuit should open after reaching failure threshold."""
        cb = CircuitBreaker(failure_threshold=3)

        for _ in range(3):
            with pytest.raises(ValueError):
                await cb.call(fail)

        assert cb.state == CircuitState.OPEN
        assert cb.is_open

    @pytest.mark.asyncio
    async def test_rejects_calls_when_open(self):
        """Open circuit should reject calls with CircuitBreakerOpenError."""
        cb = CircuitBreaker(name="ticketmaster", failure_threshold=1, recovery_timeout=60)

        with pytest.raises(ValueError):
            await cb.call(fail)

        assert cb.is_open
        assert not cb.allow_request()

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            await cb.call(success)

        assert cb.name in str(exc_info.value)
        assert exc_info.value.retry_in > 0

    @pytest.mark.asyncio
    async def test_resets_failure_count_on_success(self):
        """Successful call should reset failure count."""
        cb = CircuitBreaker(failure_threshold=3)
        cb.failure_count = 2

        await cb.call(success)

        assert cb.failure_count == 0
        assert cb.state == CircuitState.CLOSED

    def test_record_failure_keeps_last_error(self):
        """record_failure should remember the most recent error message."""
        cb = CircuitBreaker(failure_threshold=5)
        cb.record_failure("Ticketmaster is unavailable (HTTP 503)")

        assert cb.failure_count == 1
        assert cb.get_status()["last_error"] == "Ticketmaster is unavailable (HTTP 503)"

    def test_reset_method(self, clock):
        """Manual reset should restore initial state."""
        cb = CircuitBreaker(failure_threshold=3, clock=clock)
        cb.failure_count = 5
        cb.state = CircuitState.OPEN
        cb.last_failure_time = clock()

        cb.reset()

        assert cb.failure_count == 0
        assert cb.state == CircuitState.CLOSED
        assert cb.last_failure_time is None

    def test_get_status(self):
        """Status should include all relevant information."""
        cb = CircuitBreaker(failure_threshold=5, name="test_circuit")

        status = cb.get_status()

        assert status["name"] == "test_circuit"
        assert status["state"] == "closed"
        assert status["failure_count"] == 0
        assert status["failure_threshold"] == 5
        assert status["retry_in"] == 0.0


class TestCircuitBreakerRecovery:
    """Tests for circuit breaker recovery behavior."""

    @pytest.mark.asyncio
    async def test_transitions_to_half_open_after_timeout(self, clock):
        """Circuit should transition to half-open after recovery timeout."""
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=30, clock=clock)

        with pytest.raises(ValueError):
            await cb.call(fail)
        assert cb.is_open

        clock.advance(29)
        assert not cb.allow_request()

        clock.advance(2)
        result = await cb.call(success)
        assert result == "ok"
        assert cb.state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_closes_after_successful_half_open_calls(self, clock):
        """Circuit should close after successful calls in half-open state."""
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=10, clock=clock)

        with pytest.raises(ValueError):
            await cb.call(fail)

        clock.advance(11)

        await cb.call(success)
        await cb.call(success)

        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_reopens_on_failure_in_half_open(self, clock):
        """Circuit should reopen on failure during half-open state."""
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=10, clock=clock)

        with pytest.raises(ValueError):
            await cb.call(fail)

        clock.advance(11)

        with pytest.raises(ValueError):
            await cb.call(fail)

        assert cb.state == CircuitState.OPEN


class TestCircuitBreakerOpenError:
    """Tests for CircuitBreakerOpenError exception."""

    def test_error_includes_circuit_name(self):
        """Error message should include circuit name."""
        error = CircuitBreakerOpenError("api_circuit")
        assert "api_circuit" in str(error)
        assert error.circuit_name == "api_circuit"

    def test_is_an_event_discovery_error(self):
        """Open-circuit errors share the package's base exception."""
        assert isinstance(CircuitBreakerOpenError("x"), EventDiscoveryError)
