"""Retry with exponential backoff for provider HTTP calls."""

import asyncio
import random
from typing import Any, Awaitable, Callable, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


def backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """Delay before retry number `attempt` (0-based).

    With jitter the delay is scaled by a random factor in [0.5, 1.5).
    """
    delay = min(base_delay * (exponential_base**attempt), max_delay)
    if jitter:
        delay *= 0.5 + random.random()
    return delay


async def retry_once(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any,
) -> T:
    """Call `func`, retrying `retryable_exceptions` with exponential backoff.

    Raises:
        The last retryable exception once attempts are exhausted, or the
        first non-retryable exception immediately.
    """
    name = getattr(func, "__qualname__", getattr(func, "__name__", repr(func)))
    last_exception: Exception | None = None

    for attempt in range(max_attempts):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            last_exception = e
            if attempt < max_attempts - 1:
                delay = backoff_delay(
                    attempt, base_delay, max_delay, exponential_base, jitter
                )
                logger.warning(
                    "retry_attempt",
                    function=name,
                    attempt=attempt + 1,
                    max_attempts=max_attempts,
                    delay=round(delay, 2),
                    error=str(e),
                )
                await sleep(delay)

    logger.error(
        "retry_exhausted",
        function=name,
        max_attempts=max_attempts,
        error=str(last_exception),
    )
    raise last_exception  # type: ignore[misc]
