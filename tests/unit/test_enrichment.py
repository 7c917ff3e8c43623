"""Tests for image and coordinate enrichment."""

import asyncio

import pytest

from servers.event_discovery.enrichment import EventEnricher
from servers.event_discovery.errors import GeocodingError
from servers.event_discovery.geocoding import GeocodeResult, Geocoder
from servers.event_discovery.images import CATEGORY_PLACEHOLDERS
from servers.event_discovery.models import Coordinates


class StubGeocoder(Geocoder):
    """Geocoder returning canned answers and recording queries."""

    name = "stub"

    def __init__(self, answers=None, delay: float = 0.0):
        self.answers = answers or {}
        self.delay = delay
        self.queries: list[str] = []

    async def geocode(self, address: str) -> GeocodeResult:
        self.queries.append(address)
        if self.delay:
            await asyncio.sleep(self.delay)
        for needle, (lat, lng) in self.answers.items():
            if needle in address:
                return GeocodeResult(lat=lat, lng=lng, display_name=address, provider=self.name)
        raise GeocodingError(f"no match for {address!r}")


class TestImageEnrichment:
    """Tests for image replacement."""

    @pytest.mark.asyncio
    async def test_valid_image_kept(self, make_event):
        """A valid image passes through untouched."""
        event = make_event()
        assert await EventEnricher().enhance(event) is event

    @pytest.mark.asyncio
    async def test_missing_image_gets_placeholder(self, make_event):
        """Missing or broken images are replaced with a category placeholder."""
        for image in (None, "https://example.com/not-an-image"):
            event = make_event(image=image, category="Music")
            enhanced = await EventEnricher().enhance(event)

            assert enhanced.image in CATEGORY_PLACEHOLDERS["Music"]
            assert enhanced.image_is_placeholder
            assert event.image == image  # original untouched


class TestCoordinateEnrichment:
    """Tests for geocoding events that lack coordinates."""

    @pytest.mark.asyncio
    async def test_geocodes_missing_coordinates(self, make_event):
        """Venue and address are geocoded together."""
        geocoder = StubGeocoder({"Blue Note": (40.7309, -74.0003)})
        event = make_event(coordinates=None, location="Blue Note", address="131 W 3rd St, New York")

        enhanced = await EventEnricher(geocoder).enhance(event)

        assert enhanced.coordinates == Coordinates(lat=40.7309, lng=-74.0003)
        assert geocoder.queries == ["Blue Note, 131 W 3rd St, New York"]

    @pytest.mark.asyncio
    async def test_placeholder_address_not_geocoded(self, make_event):
        """Events with an "Address TBA" are not sent to the geocoder."""
        geocoder = StubGeocoder()
        await EventEnricher(geocoder).enhance(make_event(coordinates=None, address="Address TBA"))
        assert geocoder.queries == []

    @pytest.mark.asyncio
    async def test_existing_coordinates_not_geocoded(self, make_event):
        """Events with coordinates are left alone."""
        geocoder = StubGeocoder()
        await EventEnricher(geocoder).enhance(make_event())
        assert geocoder.queries == []

    @pytest.mark.asyncio
    async def test_geocode_failure_keeps_event(self, make_event):
        """A geocoding miss leaves coordinates empty."""
        event = make_event(coordinates=None)
        enhanced = await EventEnricher(StubGeocoder()).enhance(event)
        assert enhanced.coordinates is None

    @pytest.mark.asyncio
    async def test_geocode_timeout_keeps_event(self, make_event):
        """A slow geocoder is abandoned after the timeout."""
        geocoder = StubGeocoder({"Main": (40.0, -74.0)}, delay=1.0)
        enricher = EventEnricher(geocoder, timeout=0.01)

        enhanced = await enricher.enhance(make_event(coordinates=None))

        assert enhanced.coordinates is None


class TestEnhanceAll:
    """Tests for batch enrichment."""

    @pytest.mark.asyncio
    async def test_preserves_order_and_count(self, make_event):
        """Every event comes back, in order."""
        events = [make_event(image=None) for _ in range(12)]
        enhanced = await EventEnricher(max_concurrency=3).enhance_all(events)

        assert [e.external_id for e in enhanced] == [e.external_id for e in events]
        assert all(e.image_is_placeholder for e in enhanced)

    @pytest.mark.asyncio
    async def test_empty(self):
        """No events, no work."""
        assert await EventEnricher().enhance_all([]) == []

    @pytest.mark.asyncio
    async def test_unexpected_error_returns_original(self, make_event):
        """A crashing geocoder never drops the event."""

        class BrokenGeocoder(Geocoder):
            async def geocode(self, address):
                raise RuntimeError("boom")

        event = make_event(coordinates=None)
        enhanced = await EventEnricher(BrokenGeocoder()).enhance_all([event])
        assert enhanced == [event]

    @pytest.mark.asyncio
    async def test_batch_bounded_by_deadline(self, make_event):
        """A hanging geocoder holds a batch up for the deadline, not N x timeout."""
        geocoder = StubGeocoder(delay=30.0)
        events = [make_event(coordinates=None, image=None) for _ in range(25)]
        enricher = EventEnricher(geocoder, max_concurrency=5, timeout=0.2, deadline=0.3)

        loop = asyncio.get_running_loop()
        started = loop.time()
        enhanced = await enricher.enhance_all(events)
        elapsed = loop.time() - started

        assert elapsed < 0.6
        assert [e.external_id for e in enhanced] == [e.external_id for e in events]
        assert all(e.image_is_placeholder for e in enhanced)
        assert all(e.coordinates is None for e in enhanced)

    @pytest.mark.asyncio
    async def test_finished_geocodes_kept_at_deadline(self, make_event):
        """Geocodes that finished before the deadline are kept."""

        class SelectiveGeocoder(Geocoder):
            async def geocode(self, address):
                if "Fast" in address:
                    return GeocodeResult(lat=40.0, lng=-74.0, display_name=address, provider="stub")
                await asyncio.sleep(30.0)
                raise GeocodingError("unreachable")

        fast = make_event(coordinates=None, location="Fast Venue")
        slow = make_event(coordinates=None, location="Slow Venue")
        enricher = EventEnricher(SelectiveGeocoder(), timeout=5.0, deadline=0.1)

        enhanced = await enricher.enhance_all([fast, slow])

        assert enhanced[0].coordinates == Coordinates(lat=40.0, lng=-74.0)
        assert enhanced[1].coordinates is None

    def test_deadline_defaults_to_timeout(self):
        assert EventEnricher(timeout=2.5).deadline == 2.5
