"""Sliding-window rate limiter for provider quotas.

Each provider gets its own limiter. Second and minute windows (plus a
minimum spacing between calls) are enforced by waiting; an exhausted daily
quota is refused immediately with QuotaExceededError.
"""

import asyncio
import time
from collections import deque
from typing import Any, Awaitable, Callable

import structlog

from ..errors import QuotaExceededError

logger = structlog.get_logger()

SECOND = 1.0
MINUTE = 60.0
DAY = 86400.0


class RateLimiter:
    """Gate outbound calls to one provider.

    Callers queue on an asyncio.Lock, so waiting callers are released in
    arrival order and a burst never overshoots a window.
    """

    def __init__(
        self,
        name: str,
        per_second: int | None = None,
        per_minute: int | None = None,
        per_day: int | None = None,
        min_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.name = name
        self.per_second = per_second
        self.per_minute = per_minute
        self.per_day = per_day
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()
        self._last_call: float | None = None
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._calls and self._calls[0] <= now - DAY:
            self._calls.popleft()

    def _count_since(self, cutoff: float) -> int:
        count = 0
        for stamp in reversed(self._calls):
            if stamp <= cutoff:
                break
            count += 1
        return count

    def _window_delay(self, now: float, window: float, limit: int | None) -> float:
        if not limit:
            return 0.0
        recent = [t for t in self._calls if t > now - window]
        if len(recent) < limit:
            return 0.0
        # the call that has to age out before one more fits
        blocking = recent[len(recent) - limit]
        return blocking + window - now

    def required_delay(self, now: float | None = None) -> float:
        """Seconds to wait before the next call fits every short window."""
        now = self._clock() if now is None else now
        delays = [
            self._window_delay(now, SECOND, self.per_second),
            self._window_delay(now, MINUTE, self.per_minute),
        ]
        if self.min_interval and self._last_call is not None:
            delays.append(self._last_call + self.min_interval - now)
        return max(0.0, *delays)

    async def wait_if_needed(self) -> None:
        """Wait for a free slot and record the call.

        Raises:
            QuotaExceededError: If the daily quota is exhausted
        """
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if self.per_day is not None and len(self._calls) >= self.per_day:
                    retry_after = self._calls[0] + DAY - now if self._calls else DAY
                    logger.warning(
                        "daily_quota_exhausted",
                        provider=self.name,
                        limit=self.per_day,
                        retry_after=round(retry_after),
                    )
                    raise QuotaExceededError(self.name, retry_after)

                delay = self.required_delay(now)
                if delay <= 0:
                    break
                logger.debug(
                    "rate_limit_wait", provider=self.name, delay=round(delay, 3)
                )
                await self._sleep(delay)

            self._calls.append(now)
            self._last_call = now

    def get_usage(self) -> dict[str, Any]:
        now = self._clock()
        self._prune(now)
        return {
            "second": self._count_since(now - SECOND),
            "minute": self._count_since(now - MINUTE),
            "day": len(self._calls),
            "limits": {
                "second": self.per_second,
                "minute": self.per_minute,
                "day": self.per_day,
                "min_interval": self.min_interval,
            },
        }

    def reset(self) -> None:
        self._calls.clear()
        self._last_call = None
