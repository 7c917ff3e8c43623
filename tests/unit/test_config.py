"""Tests for settings and service wiring."""

import pytest

from servers.event_discovery.config import Settings
from servers.event_discovery.factory import build_adapters, build_geocoder, build_service, build_store
from servers.event_discovery.geocoding import CachingGeocoder
from servers.event_discovery.providers import (
    EventbriteAdapter,
    RapidApiEventsAdapter,
    TicketmasterAdapter,
)
from servers.event_discovery.store import InMemoryEventStore


def make_settings(**values) -> Settings:
    base = {
        "TICKETMASTER_API_KEY": None,
        "RAPIDAPI_KEY": None,
        "EVENTBRITE_TOKEN": None,
        "MAPBOX_TOKEN": None,
        "SUPABASE_URL": None,
        "SUPABASE_KEY": None,
    }
    base.update(values)
    return Settings(_env_file=None, **base)


class TestSettings:
    """Tests for environment-driven configuration."""

    def test_defaults(self):
        settings = make_settings()
        assert settings.provider_timeout == 12.0
        assert settings.ticketmaster_per_second == 5
        assert settings.ticketmaster_per_day == 5000
        assert settings.cache_ttl_seconds == 300.0
        assert settings.default_city == "New York"
        assert not settings.fuzzy_dedupe
        assert not settings.supabase_configured

    def test_reads_environment(self, monkeypatch):
        """Settings come from environment variables, case-insensitively."""
        monkeypatch.setenv("TICKETMASTER_API_KEY", "tm-from-env")
        monkeypatch.setenv("provider_timeout", "4.5")
        settings = Settings(_env_file=None)
        assert settings.ticketmaster_api_key == "tm-from-env"
        assert settings.provider_timeout == 4.5

    def test_alternate_credential_names(self, monkeypatch):
        """Legacy variable names are still accepted."""
        monkeypatch.delenv("EVENTBRITE_TOKEN", raising=False)
        monkeypatch.delenv("MAPBOX_TOKEN", raising=False)
        monkeypatch.setenv("EVENTBRITE_PRIVATE_TOKEN", "eb")
        monkeypatch.setenv("MAPBOX_ACCESS_TOKEN", "mb")
        settings = Settings(_env_file=None)
        assert settings.eventbrite_token == "eb"
        assert settings.mapbox_token == "mb"

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError):
            make_settings(RETRY_ATTEMPTS=0)
        with pytest.raises(ValueError):
            make_settings(LOG_FORMAT="xml")

    def test_supabase_configured(self):
        settings = make_settings(SUPABASE_URL="https://x.supabase.co", SUPABASE_KEY="k")
        assert settings.supabase_configured


class TestFactory:
    """Tests for building the service graph."""

    def test_adapters_in_priority_order(self):
        settings = make_settings(TICKETMASTER_API_KEY="tm", RAPIDAPI_KEY="ra")
        adapters = build_adapters(settings, client=None)

        assert [type(a) for a in adapters] == [
            TicketmasterAdapter,
            RapidApiEventsAdapter,
            EventbriteAdapter,
        ]
        assert [a.is_configured for a in adapters] == [True, True, False]
        assert adapters[0].limiter.per_second == 5
        assert adapters[1].limiter.per_minute == 30
        assert adapters[0].limiter is not adapters[1].limiter

    def test_geocoder_selection(self):
        assert build_geocoder(make_settings(NOMINATIM_ENABLED=False), client=None) is None

        geocoder = build_geocoder(make_settings(MAPBOX_TOKEN="mb"), client=None)
        assert isinstance(geocoder, CachingGeocoder)
        assert [g.name for g in geocoder.inner.geocoders] == ["mapbox", "nominatim"]

    def test_store_defaults_to_memory(self):
        store = build_store(make_settings(STORE_MAX_AGE_HOURS=6))
        assert isinstance(store, InMemoryEventStore)
        assert store.max_age_seconds == 6 * 3600

    @pytest.mark.asyncio
    async def test_build_service(self):
        settings = make_settings(TICKETMASTER_API_KEY="tm", BREAKER_FAILURE_THRESHOLD=2)
        service = build_service(settings)
        try:
            assert len(service.adapters) == 3
            assert service.breakers["ticketmaster"].failure_threshold == 2
            assert service.cache is not None
            assert service.status()["providers"]["ticketmaster"]["configured"]
        finally:
            await service.aclose()
