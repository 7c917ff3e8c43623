"""
Unified events service: one search across every provider.

Flow for each call to `search_events`:
1. Validate parameters (the only error that reaches the caller)
2. Serve from the in-memory response cache when possible
3. Resolve the search centre (explicit lat/lng or geocoded location text)
4. Query the persisted store and fan out to providers concurrently
5. Enrich each batch, persist fresh events in the background
6. Merge (store first), deduplicate, filter, sort, paginate
7. Fall back to sample events when nothing matched

The store is additive: live providers are queried on every search unless
`prefer_cache` is set and the store alone fills the requested page.
"""

import asyncio
import time
from typing import Any, Optional, Union

import httpx
import structlog
from pydantic import ValidationError

from .cache import TTLCache
from .dedup import THRESHOLD, deduplicate
from .enrichment import EventEnricher
from .errors import (
    EventDiscoveryError,
    GeocodingError,
    PersistenceError,
    SearchValidationError,
)
from .fallback_events import FallbackEventGenerator
from .filters import apply_filters, paginate, sort_events
from .geocoding import Geocoder
from .models import (
    CanonicalEvent,
    Coordinates,
    EventSource,
    ProviderResult,
    SearchParams,
    UnifiedEventsResponse,
)
from .providers import ProviderAdapter
from .resilience import CircuitBreaker, CircuitBreakerOpenError, HealthMonitor
from .store import BoundingBox, EventStore

logger = structlog.get_logger()

FALLBACK_NOTICE = "No live events found; showing sample events for illustration."
STORE_QUERY_CAP = 200


class ProviderFailed(EventDiscoveryError):
    """An error result raised through the circuit breaker so it counts as a failure."""

    def __init__(self, result: ProviderResult):
        super().__init__(result.error or f"{result.source.value} failed")
        self.result = result


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        field = ".".join(str(p) for p in item.get("loc", ())) or "params"
        parts.append(f"{field}: {item.get('msg')}")
    return "Invalid search parameters: " + "; ".join(parts)


class UnifiedEventsService:
    """Aggregates provider adapters, the event store and the fallback generator."""

    def __init__(
        self,
        adapters: list[ProviderAdapter],
        store: Optional[EventStore] = None,
        enricher: Optional[EventEnricher] = None,
        cache: Optional[TTLCache] = None,
        fallback: Optional[FallbackEventGenerator] = None,
        geocoder: Optional[Geocoder] = None,
        provider_timeout: float = 12.0,
        geocode_timeout: float = 5.0,
        fuzzy_dedupe: bool = False,
        fuzzy_threshold: float = THRESHOLD,
        breakers: Optional[dict[str, CircuitBreaker]] = None,
        health: Optional[HealthMonitor] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.adapters = list(adapters)
        self.store = store
        self.enricher = enricher or EventEnricher(geocoder=geocoder)
        self.cache = cache
        self.fallback = fallback or FallbackEventGenerator()
        self.geocoder = geocoder
        self.provider_timeout = provider_timeout
        self.geocode_timeout = geocode_timeout
        self.fuzzy_dedupe = fuzzy_dedupe
        self.fuzzy_threshold = fuzzy_threshold
        self.breakers = breakers if breakers is not None else {}
        for adapter in self.adapters:
            self.breakers.setdefault(adapter.name, CircuitBreaker(name=adapter.name))
        self.health = health or HealthMonitor()
        self._http_client = http_client
        self._pending: set[asyncio.Task] = set()
        self.fallback_count = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def search_events(
        self, params: Union[SearchParams, dict, None] = None, **overrides: Any
    ) -> UnifiedEventsResponse:
        """
        Search every source and return one merged page of events.

        Fallback events are served only when no event survives filtering.
        A page past the end of a non-empty result is returned empty with
        `has_more=False`, so paging through results never switches to mock
        events partway.

        Args:
            params: A SearchParams, a plain dict of search fields, or None
            **overrides: Search fields given as keyword arguments

        Returns:
            UnifiedEventsResponse; provider failures are reported in
            `error` and `sources`, never raised

        Raises:
            SearchValidationError: If the parameters are malformed
        """
        params = self.validate(params, **overrides)
        started = time.monotonic()
        cache_key = params.cache_key()

        if self.cache is not None and params.use_cache and not params.force_refresh:
            cached_response = self.cache.get(cache_key)
            if cached_response is not None:
                logger.info("search_cache_hit", cache_key=cache_key)
                return cached_response.model_copy(deep=True)

        center = await self.resolve_center(params)

        if params.prefer_cache:
            stored = await self._query_store(params, center)
            if len(stored) >= params.offset + params.limit:
                logger.info("search_served_from_store", events=len(stored))
                results: list[ProviderResult] = []
            else:
                results = await self._fan_out(params)
        else:
            stored, results = await asyncio.gather(
                self._query_store(params, center), self._fan_out(params)
            )

        stored, results = await self._enrich(stored, results)
        for result in results:
            if result.events:
                self._schedule_persist(result.source, result.events)

        merged: list[CanonicalEvent] = list(stored)
        for result in results:
            merged.extend(result.events)

        deduped = deduplicate(merged, fuzzy=self.fuzzy_dedupe, threshold=self.fuzzy_threshold)
        filtered = apply_filters(deduped.events, params, center)
        ordered = sort_events(filtered, params, center)
        page, has_more = paginate(ordered, params.offset, params.limit)

        sources = {adapter.name: 0 for adapter in self.adapters}
        for result in results:
            sources[result.source.value] = len(result.events)
        sources[EventSource.CACHED.value] = len(stored)
        sources[EventSource.MOCK.value] = 0

        errors = [r.error for r in results if r.status == "error" and r.error]
        if not self.adapters:
            errors.append("No event providers are configured")
        elif results and all(r.status == "skipped" for r in results):
            errors.extend(r.error for r in results if r.error)

        if not ordered:
            response = self._fallback_response(params, center, sources, errors)
        else:
            response = UnifiedEventsResponse(
                events=page,
                total_count=len(ordered),
                has_more=has_more,
                error="; ".join(errors) or None,
                sources=sources,
                offset=params.offset,
                limit=params.limit,
            )
            if self.cache is not None:
                self.cache.set(cache_key, response.model_copy(deep=True))

        logger.info(
            "search_complete",
            total=response.total_count,
            returned=len(response.events),
            duplicates_removed=deduped.duplicates_removed,
            filtered_out=len(deduped.events) - len(filtered),
            is_fallback=response.is_fallback,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return response

    def validate(
        self, params: Union[SearchParams, dict, None] = None, **overrides: Any
    ) -> SearchParams:
        """Build a SearchParams, raising SearchValidationError on bad input."""
        try:
            if isinstance(params, SearchParams):
                if not overrides:
                    return params
                data = params.model_dump(exclude_unset=True)
            else:
                data = dict(params or {})
            data.update(overrides)
            return SearchParams.model_validate(data)
        except ValidationError as e:
            message = _format_validation_error(e)
            logger.warning("search_rejected", error=message)
            raise SearchValidationError(message) from e

    async def resolve_center(self, params: SearchParams) -> Optional[Coordinates]:
        """Explicit coordinates win; otherwise geocode the location text."""
        if params.has_center:
            return Coordinates(lat=params.lat, lng=params.lng)
        if not params.location or self.geocoder is None:
            return None
        try:
            result = await asyncio.wait_for(
                self.geocoder.geocode(params.location), self.geocode_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("search_center_timeout", location=params.location)
            return None
        except GeocodingError as e:
            logger.warning("search_center_unresolved", location=params.location, error=str(e))
            return None
        return Coordinates(lat=result.lat, lng=result.lng)

    def status(self) -> dict[str, Any]:
        """Provider health, breaker state, quota usage and cache stats."""
        providers = {}
        for adapter in self.adapters:
            providers[adapter.name] = {
                "configured": adapter.is_configured,
                "circuit": self.breakers[adapter.name].get_status(),
                "rate_limit": adapter.limiter.get_usage(),
            }
        return {
            "providers": providers,
            "health": self.health.get_status(),
            "cache": self.cache.stats() if self.cache is not None else None,
            "fallback_count": self.fallback_count,
            "pending_persists": len(self._pending),
        }

    async def drain(self) -> None:
        """Wait for every background persist started so far."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        """Finish pending writes and release HTTP clients."""
        await self.drain()
        for adapter in self.adapters:
            await adapter.aclose()
        if self.geocoder is not None:
            await self.geocoder.aclose()
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _query_store(
        self, params: SearchParams, center: Optional[Coordinates]
    ) -> list[CanonicalEvent]:
        if self.store is None or not params.use_cache:
            return []
        bbox = BoundingBox.around(center.lat, center.lng, params.radius_km) if center else None
        try:
            events = await self.store.query(
                bbox=bbox,
                category=params.primary_category,
                start=params.start_date,
                end=params.end_date,
                limit=min(STORE_QUERY_CAP, params.offset + params.limit),
            )
        except PersistenceError as e:
            logger.warning("store_query_failed", error=str(e))
            return []
        logger.debug("store_query_complete", events=len(events))
        return events

    async def _fan_out(self, params: SearchParams) -> list[ProviderResult]:
        if not self.adapters:
            return []
        return list(
            await asyncio.gather(*(self._search_provider(a, params) for a in self.adapters))
        )

    async def _search_provider(
        self, adapter: ProviderAdapter, params: SearchParams
    ) -> ProviderResult:
        """Run one adapter under its breaker and timeout. Never raises."""
        breaker = self.breakers[adapter.name]
        try:
            result = await breaker.call(self._guarded_search, adapter, params)
        except CircuitBreakerOpenError as e:
            reason = str(CircuitBreakerOpenError(adapter.display_name, e.retry_in))
            logger.info("provider_circuit_open", provider=adapter.name, retry_in=e.retry_in)
            self.health.record_skip(adapter.name, reason)
            return ProviderResult(source=adapter.source, status="skipped", error=reason)
        except ProviderFailed as e:
            self.health.record_failure(adapter.name, str(e))
            return e.result

        if result.status == "success":
            self.health.record_success(adapter.name, len(result.events), result.duration_ms)
        else:
            self.health.record_skip(adapter.name, result.error or "skipped")
        return result

    async def _guarded_search(
        self, adapter: ProviderAdapter, params: SearchParams
    ) -> ProviderResult:
        """Search with a timeout; error results are raised as ProviderFailed."""
        try:
            result = await asyncio.wait_for(adapter.search(params), self.provider_timeout)
        except asyncio.TimeoutError:
            result = ProviderResult(
                source=adapter.source,
                status="error",
                error=f"{adapter.display_name} timed out after {self.provider_timeout:g}s",
            )
            logger.warning("provider_timeout", provider=adapter.name, timeout=self.provider_timeout)
        except Exception as e:
            result = ProviderResult(
                source=adapter.source,
                status="error",
                error=f"{adapter.display_name} failed unexpectedly ({e})",
            )
            logger.error(
                "provider_crashed", provider=adapter.name, error=str(e), exc_info=True
            )
        if result.status == "error":
            raise ProviderFailed(result)
        return result

    async def _enrich(
        self, stored: list[CanonicalEvent], results: list[ProviderResult]
    ) -> tuple[list[CanonicalEvent], list[ProviderResult]]:
        batches = await asyncio.gather(
            self.enricher.enhance_all(stored),
            *(self.enricher.enhance_all(r.events) for r in results),
        )
        enriched_results = [
            r.model_copy(update={"events": events}) for r, events in zip(results, batches[1:])
        ]
        return batches[0], enriched_results

    def _schedule_persist(self, source: EventSource, events: list[CanonicalEvent]) -> None:
        if self.store is None:
            return
        task = asyncio.create_task(self._persist(source, events))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, source: EventSource, events: list[CanonicalEvent]) -> None:
        try:
            written = await self.store.upsert(events)
        except PersistenceError as e:
            logger.warning("store_persist_failed", provider=source.value, error=str(e))
        except Exception as e:
            logger.error(
                "store_persist_crashed", provider=source.value, error=str(e), exc_info=True
            )
        else:
            logger.debug("store_persist_complete", provider=source.value, rows=written)

    def _fallback_response(
        self,
        params: SearchParams,
        center: Optional[Coordinates],
        sources: dict[str, int],
        errors: list[str],
    ) -> UnifiedEventsResponse:
        events = self.fallback.generate(params, center)
        self.fallback_count += 1
        sources[EventSource.MOCK.value] = len(events)
        logger.warning(
            "search_fallback_used",
            fallback_count=self.fallback_count,
            provider_errors=len(errors),
            events=len(events),
        )
        return UnifiedEventsResponse(
            events=events[: params.limit],
            total_count=len(events),
            has_more=len(events) > params.limit,
            error="; ".join([*errors, FALLBACK_NOTICE]),
            sources=sources,
            is_fallback=True,
            offset=0,
            limit=params.limit,
        )
