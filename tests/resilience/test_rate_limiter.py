"""Tests for the sliding-window provider rate limiter."""

import asyncio

import pytest

from servers.event_discovery.errors import QuotaExceededError
from servers.event_discovery.resilience.rate_limiter import DAY, RateLimiter


def make_limiter(clock, **limits) -> RateLimiter:
    return RateLimiter("ticketmaster", clock=clock, sleep=clock.sleep, **limits)


class TestRateLimiterWindows:
    """Short windows delay callers; they never reject."""

    @pytest.mark.asyncio
    async def test_calls_within_quota_do_not_wait(self, clock):
        """Calls under the per-second quota should go straight through."""
        limiter = make_limiter(clock, per_second=5)

        for _ in range(5):
            await limiter.wait_if_needed()

        assert clock.sleeps == []
        assert limiter.get_usage()["second"] == 5

    @pytest.mark.asyncio
    async def test_call_over_per_second_quota_is_delayed(self, clock):
        """The (N+1)th call within a second waits until the window frees up."""
        limiter = make_limiter(clock, per_second=2)
        start = clock()

        await limiter.wait_if_needed()
        await limiter.wait_if_needed()
        await limiter.wait_if_needed()

        assert clock.sleeps == [pytest.approx(1.0)]
        assert clock() - start == pytest.approx(1.0)
        assert limiter.get_usage()["day"] == 3

    @pytest.mark.asyncio
    async def test_per_minute_window(self, clock):
        """A per-minute quota delays the next call by the rest of the minute."""
        limiter = make_limiter(clock, per_minute=3)

        for _ in range(3):
            await limiter.wait_if_needed()
            clock.advance(10)
        await limiter.wait_if_needed()

        # oldest call was 30s ago, so 30s remain in its window
        assert clock.sleeps == [pytest.approx(30.0)]

    @pytest.mark.asyncio
    async def test_min_interval_spacing(self, clock):
        """Consecutive calls are spaced by at least min_interval."""
        limiter = make_limiter(clock, min_interval=0.5)

        await limiter.wait_if_needed()
        clock.advance(0.2)
        await limiter.wait_if_needed()

        assert clock.sleeps == [pytest.approx(0.3)]

    @pytest.mark.asyncio
    async def test_concurrent_callers_are_serialized(self, clock):
        """Concurrent callers never overshoot the window and are all admitted."""
        limiter = make_limiter(clock, per_second=2)

        await asyncio.gather(*(limiter.wait_if_needed() for _ in range(5)))

        stamps = list(limiter._calls)
        assert len(stamps) == 5
        for i in range(len(stamps) - 2):
            assert stamps[i + 2] - stamps[i] >= 1.0

    def test_required_delay_is_zero_when_idle(self, clock):
        """A fresh limiter never asks the caller to wait."""
        limiter = make_limiter(clock, per_second=1, per_minute=1, min_interval=2.0)
        assert limiter.required_delay() == 0.0


class TestRateLimiterDailyQuota:
    """The daily quota is the only condition that rejects."""

    @pytest.mark.asyncio
    async def test_exhausted_daily_quota_raises_immediately(self, clock):
        """Once the day's quota is used up, the next call raises without sleeping."""
        limiter = make_limiter(clock, per_day=2)

        await limiter.wait_if_needed()
        clock.advance(100)
        await limiter.wait_if_needed()

        with pytest.raises(QuotaExceededError) as exc_info:
            await limiter.wait_if_needed()

        assert clock.sleeps == []
        assert exc_info.value.provider == "ticketmaster"
        assert exc_info.value.retry_after == pytest.approx(DAY - 100)

    @pytest.mark.asyncio
    async def test_quota_frees_up_after_a_day(self, clock):
        """Calls older than a day no longer count against the quota."""
        limiter = make_limiter(clock, per_day=1)

        await limiter.wait_if_needed()
        clock.advance(DAY + 1)
        await limiter.wait_if_needed()

        assert limiter.get_usage()["day"] == 1


class TestRateLimiterUsage:
    """Tests for usage reporting and reset."""

    @pytest.mark.asyncio
    async def test_get_usage_reports_windows_and_limits(self, clock):
        """Usage should count calls per window and echo the configured limits."""
        limiter = make_limiter(clock, per_second=5, per_minute=30, per_day=500)

        await limiter.wait_if_needed()
        clock.advance(5)
        await limiter.wait_if_needed()

        usage = limiter.get_usage()
        assert usage["second"] == 1
        assert usage["minute"] == 2
        assert usage["day"] == 2
        assert usage["limits"] == {
            "second": 5,
            "minute": 30,
            "day": 500,
            "min_interval": 0.0,
        }

    @pytest.mark.asyncio
    async def test_reset_clears_history(self, clock):
        """reset() should forget every recorded call."""
        limiter = make_limiter(clock, per_day=1)
        await limiter.wait_if_needed()

        limiter.reset()

        await limiter.wait_if_needed()
        assert limiter.get_usage()["day"] == 1
