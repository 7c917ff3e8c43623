"""Resilience patterns for provider calls."""

from .circuit_breaker import CircuitBreaker, CircuitBreakerOpenError, CircuitState
from .fallback import FallbackChain
from .health import HealthMonitor
from .rate_limiter import RateLimiter
from .retry import backoff_delay, retry_once

__all__ = [
    "backoff_delay",
    "retry_once",
    "CircuitBreaker",
    "CircuitState",
    "CircuitBreakerOpenError",
    "FallbackChain",
    "HealthMonitor",
    "RateLimiter",
]
