"""Shared pytest fixtures for event discovery tests."""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from structlog.testing import capture_logs

from servers.event_discovery.models import (
    CanonicalEvent,
    Coordinates,
    EventSource,
    Price,
    TicketLink,
)
from servers.event_discovery.resilience import RateLimiter


@pytest.fixture(autouse=True)
def log_events() -> Iterator[list[dict]]:
    """Capture structlog events so nothing is printed during tests."""
    with capture_logs() as events:
        yield events


class FakeClock:
    """Manually advanced clock with a matching async sleep."""

    def __init__(self, start: float = 1_000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Provide a fake monotonic clock."""
    return FakeClock()


@pytest.fixture
def future_start() -> datetime:
    """A fixed start time a few days from now (UTC, on the hour)."""
    now = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
    return now + timedelta(days=3)


@pytest.fixture
def make_event(future_start: datetime) -> Callable[..., CanonicalEvent]:
    """Factory for canonical events with sensible defaults."""
    counter = {"n": 0}

    def factory(**overrides: Any) -> CanonicalEvent:
        counter["n"] += 1
        data: dict[str, Any] = {
            "native_id": f"evt-{counter['n']}",
            "source": EventSource.TICKETMASTER,
            "title": f"Sample Concert {counter['n']}",
            "description": "An evening of live music downtown.",
            "category": "Music",
            "start": future_start,
            "location": f"Venue {counter['n']}",
            "address": "123 Main St, New York, NY",
            "coordinates": Coordinates(lat=40.7128, lng=-74.0060),
            "price": Price(min=20, max=40),
            "ticket_links": [
                TicketLink(source="Ticketmaster", link=f"https://tm.example/{counter['n']}")
            ],
            "image": "https://s1.ticketm.net/dam/a/123/sample_TABLET_LANDSCAPE_LARGE_16_9.jpg",
        }
        data.update(overrides)
        return CanonicalEvent(**data)

    return factory


@pytest.fixture
def open_limiter() -> Callable[[str], RateLimiter]:
    """Factory for limiters that never wait."""

    def factory(name: str = "test") -> RateLimiter:
        return RateLimiter(name)

    return factory


def _json_response(
    payload: Any, status_code: int = 200, url: str = "https://api.example.com/search"
) -> httpx.Response:
    return httpx.Response(status_code, json=payload, request=httpx.Request("GET", url))


@pytest.fixture
def json_response() -> Callable[..., httpx.Response]:
    """Factory for real httpx.Response objects carrying a JSON payload."""
    return _json_response


@pytest.fixture
def mock_client() -> Callable[..., MagicMock]:
    """Factory for an httpx client mock whose get() returns the given responses."""

    def factory(*responses: Any) -> MagicMock:
        client = MagicMock(spec=httpx.AsyncClient)
        client.is_closed = False
        if len(responses) == 1 and isinstance(responses[0], BaseException):
            client.get = AsyncMock(side_effect=responses[0])
        elif len(responses) == 1:
            client.get = AsyncMock(return_value=responses[0])
        else:
            client.get = AsyncMock(side_effect=list(responses))
        return client

    return factory
