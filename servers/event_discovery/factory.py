"""Construct the service graph once at process start."""

from typing import Optional

import httpx
import structlog

from .cache import TTLCache
from .config import Settings, get_settings
from .enrichment import EventEnricher
from .fallback_events import FallbackEventGenerator
from .geocoding import (
    CachingGeocoder,
    ChainedGeocoder,
    Geocoder,
    MapboxGeocoder,
    NominatimGeocoder,
)
from .providers import (
    EventbriteAdapter,
    ProviderAdapter,
    RapidApiEventsAdapter,
    TicketmasterAdapter,
)
from .resilience import CircuitBreaker, HealthMonitor, RateLimiter
from .service import UnifiedEventsService
from .store import EventStore, InMemoryEventStore, SupabaseEventStore

logger = structlog.get_logger()


def build_adapters(settings: Settings, client: httpx.AsyncClient) -> list[ProviderAdapter]:
    """Adapters in merge-priority order, each with its own rate limiter."""
    common = {
        "client": client,
        "timeout": settings.http_timeout,
        "retry_attempts": settings.retry_attempts,
        "retry_base_delay": settings.retry_base_delay,
    }
    return [
        TicketmasterAdapter(
            settings.ticketmaster_api_key,
            RateLimiter(
                "ticketmaster",
                per_second=settings.ticketmaster_per_second,
                per_day=settings.ticketmaster_per_day,
                min_interval=settings.provider_min_interval,
            ),
            **common,
        ),
        RapidApiEventsAdapter(
            settings.rapidapi_key,
            RateLimiter(
                "rapidapi",
                per_minute=settings.rapidapi_per_minute,
                per_day=settings.rapidapi_per_day,
                min_interval=settings.provider_min_interval,
            ),
            host=settings.rapidapi_host,
            **common,
        ),
        EventbriteAdapter(
            settings.eventbrite_token,
            RateLimiter(
                "eventbrite",
                per_minute=settings.eventbrite_per_minute,
                per_day=settings.eventbrite_per_day,
                min_interval=settings.provider_min_interval,
            ),
            **common,
        ),
    ]


def build_geocoder(settings: Settings, client: httpx.AsyncClient) -> Optional[Geocoder]:
    """Mapbox first when a token is set, then Nominatim; results cached."""
    geocoders: list[Geocoder] = []
    if settings.mapbox_token:
        geocoders.append(
            MapboxGeocoder(settings.mapbox_token, client=client, timeout=settings.geocode_timeout)
        )
    if settings.nominatim_enabled:
        geocoders.append(NominatimGeocoder(client=client, timeout=settings.geocode_timeout))
    if not geocoders:
        return None
    return CachingGeocoder(ChainedGeocoder(*geocoders))


def build_store(settings: Settings) -> EventStore:
    if settings.supabase_configured:
        return SupabaseEventStore.from_credentials(
            settings.supabase_url,
            settings.supabase_key,
            table=settings.supabase_table,
            max_age_hours=settings.store_max_age_hours,
        )
    logger.warning("store_not_configured", fallback="in_memory")
    return InMemoryEventStore(max_age_hours=settings.store_max_age_hours)


def build_service(settings: Optional[Settings] = None) -> UnifiedEventsService:
    """Build a fully wired UnifiedEventsService from settings."""
    settings = settings or get_settings()
    client = httpx.AsyncClient(timeout=httpx.Timeout(settings.http_timeout))

    adapters = build_adapters(settings, client)
    geocoder = build_geocoder(settings, client)
    breakers = {
        adapter.name: CircuitBreaker(
            name=adapter.name,
            failure_threshold=settings.breaker_failure_threshold,
            recovery_timeout=settings.breaker_recovery_timeout,
        )
        for adapter in adapters
    }

    service = UnifiedEventsService(
        adapters=adapters,
        store=build_store(settings),
        enricher=EventEnricher(
            geocoder=geocoder,
            max_concurrency=settings.enrichment_concurrency,
            timeout=settings.enrichment_timeout,
            deadline=settings.enrichment_deadline,
        ),
        cache=TTLCache(
            ttl_seconds=settings.cache_ttl_seconds, max_entries=settings.cache_max_entries
        ),
        fallback=FallbackEventGenerator(
            days_ahead=settings.fallback_days_ahead,
            count=settings.fallback_count,
            default_city=settings.default_city,
        ),
        geocoder=geocoder,
        provider_timeout=settings.provider_timeout,
        geocode_timeout=settings.geocode_timeout,
        fuzzy_dedupe=settings.fuzzy_dedupe,
        fuzzy_threshold=settings.fuzzy_threshold,
        breakers=breakers,
        health=HealthMonitor(),
        http_client=client,
    )
    logger.info(
        "service_built",
        providers=[a.name for a in adapters if a.is_configured],
        unconfigured=[a.name for a in adapters if not a.is_configured],
        geocoder=geocoder is not None,
        store=type(service.store).__name__,
    )
    return service
