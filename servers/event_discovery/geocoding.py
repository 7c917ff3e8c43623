"""Geocoding collaborators: Mapbox, Nominatim (OpenStreetMap), caching and chaining.

All geocoders share one contract: `await geocode(address)` returns a
GeocodeResult or raises GeocodingError. Callers that must not fail (the
enricher, the aggregator's centre resolution) catch GeocodingError.
"""

import hashlib
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from urllib.parse import quote

import httpx
import structlog

from .errors import GeocodingError
from .normalize import safe_coordinates
from .resilience import FallbackChain, RateLimiter

logger = structlog.get_logger()

MAPBOX_BASE_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places"
NOMINATIM_BASE_URL = "https://nominatim.openstreetmap.org/search"
USER_AGENT = "event-discovery/0.1"
NOMINATIM_MIN_INTERVAL = 1.1  # seconds, per Nominatim usage policy

UNUSABLE_ADDRESSES = {"", "address tba", "venue tba", "tba", "tbd", "online"}


@dataclass
class GeocodeResult:
    """A resolved address."""

    lat: float
    lng: float
    display_name: str
    provider: str


def is_geocodable(address: str | None) -> bool:
    """Whether an address string is worth sending to a geocoder."""
    return bool(address) and address.strip().lower() not in UNUSABLE_ADDRESSES


class Geocoder(ABC):
    """Interface every geocoder implements."""

    name = "geocoder"

    @abstractmethod
    async def geocode(self, address: str) -> GeocodeResult:
        """Resolve `address` or raise GeocodingError."""

    async def aclose(self) -> None:
        return None


class _HttpGeocoder(Geocoder):
    """Shared client handling for geocoders backed by an HTTP API."""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 5.0):
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout

    def get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": USER_AGENT},
            )
            self._owns_client = True
        return self._client

    async def _get_json(self, url: str, params: dict, headers: dict | None = None):
        client = self.get_client()
        try:
            response = await client.get(url, params=params, headers=headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise GeocodingError(
                f"{self.name} returned HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise GeocodingError(f"{self.name} request failed: {e}") from e

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None


class MapboxGeocoder(_HttpGeocoder):
    """Mapbox forward geocoding (needs an access token)."""

    name = "mapbox"

    def __init__(self, token: str, client: httpx.AsyncClient | None = None, timeout: float = 5.0):
        super().__init__(client, timeout)
        self.token = token

    async def geocode(self, address: str) -> GeocodeResult:
        if not is_geocodable(address):
            raise GeocodingError(f"address not geocodable: {address!r}")
        url = f"{MAPBOX_BASE_URL}/{quote(address.strip(), safe='')}.json"
        data = await self._get_json(
            url,
            {
                "access_token": self.token,
                "limit": 1,
                "types": "poi,address,place",
            },
        )
        features = (data or {}).get("features") or []
        if not features:
            raise GeocodingError(f"mapbox found no match for {address!r}")
        feature = features[0]
        center = feature.get("center") or []
        coords = safe_coordinates(center[1], center[0]) if len(center) == 2 else None
        if coords is None:
            raise GeocodingError(f"mapbox returned unusable coordinates for {address!r}")
        return GeocodeResult(
            lat=coords.lat,
            lng=coords.lng,
            display_name=feature.get("place_name") or address,
            provider=self.name,
        )


class NominatimGeocoder(_HttpGeocoder):
    """OpenStreetMap Nominatim geocoding. Free, at most ~1 request per second."""

    name = "nominatim"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
        limiter: RateLimiter | None = None,
        country_codes: str | None = None,
    ):
        super().__init__(client, timeout)
        self.limiter = limiter or RateLimiter(
            "nominatim", min_interval=NOMINATIM_MIN_INTERVAL
        )
        self.country_codes = country_codes

    async def geocode(self, address: str) -> GeocodeResult:
        if not is_geocodable(address):
            raise GeocodingError(f"address not geocodable: {address!r}")
        params = {"q": address.strip(), "format": "json", "limit": 1}
        if self.country_codes:
            params["countrycodes"] = self.country_codes

        await self.limiter.wait_if_needed()
        results = await self._get_json(
            NOMINATIM_BASE_URL, params, headers={"User-Agent": USER_AGENT}
        )
        if not results:
            raise GeocodingError(f"nominatim found no match for {address!r}")
        first = results[0]
        coords = safe_coordinates(first.get("lat"), first.get("lon"))
        if coords is None:
            raise GeocodingError(f"nominatim returned unusable coordinates for {address!r}")
        return GeocodeResult(
            lat=coords.lat,
            lng=coords.lng,
            display_name=first.get("display_name") or address,
            provider=self.name,
        )


class CachingGeocoder(Geocoder):
    """Memoise another geocoder's hits and misses (LRU bounded)."""

    name = "cache"

    def __init__(self, inner: Geocoder, max_entries: int = 2048):
        self.inner = inner
        self.max_entries = max_entries
        self._cache: OrderedDict[str, GeocodeResult | None] = OrderedDict()

    def _cache_key(self, address: str) -> str:
        return hashlib.md5(address.lower().strip().encode()).hexdigest()

    async def geocode(self, address: str) -> GeocodeResult:
        key = self._cache_key(address or "")
        if key in self._cache:
            self._cache.move_to_end(key)
            cached = self._cache[key]
            logger.debug("geocoding_cache_hit", address=(address or "")[:50], hit=cached is not None)
            if cached is None:
                raise GeocodingError(f"no match for {address!r} (cached)")
            return cached

        try:
            result = await self.inner.geocode(address)
        except GeocodingError:
            self._remember(key, None)
            raise
        self._remember(key, result)
        return result

    def _remember(self, key: str, value: GeocodeResult | None) -> None:
        self._cache[key] = value
        self._cache.move_to_end(key)
        while len(self._cache) > self.max_entries:
            self._cache.popitem(last=False)

    def __len__(self) -> int:
        return len(self._cache)

    async def aclose(self) -> None:
        await self.inner.aclose()


class ChainedGeocoder(Geocoder):
    """Try geocoders in order; the first hit wins."""

    name = "chain"

    def __init__(self, *geocoders: Geocoder):
        if not geocoders:
            raise ValueError("ChainedGeocoder needs at least one geocoder")
        self.geocoders = geocoders
        self._chain = FallbackChain(
            *(g.geocode for g in geocoders), labels=[g.name for g in geocoders]
        )

    async def geocode(self, address: str) -> GeocodeResult:
        try:
            return await self._chain.execute(address)
        except GeocodingError:
            raise
        except Exception as e:
            raise GeocodingError(f"geocoding failed for {address!r}: {e}") from e

    async def aclose(self) -> None:
        for geocoder in self.geocoders:
            await geocoder.aclose()
