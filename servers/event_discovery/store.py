"""
Persisted event store.

Events fetched live are written here in the background and read back as a
warm cache on later searches. First-seen wins: re-fetching an event never
overwrites the stored row.
"""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import structlog
from pydantic import ValidationError
from supabase import Client, create_client

from .errors import PersistenceError
from .models import (
    FREE,
    PRICE_TBA,
    CanonicalEvent,
    EventSource,
    Organizer,
    Price,
    TicketLink,
    numeric_id,
)
from .normalize import parse_timestamp, safe_coordinates

logger = structlog.get_logger()

KM_PER_DEGREE = 111.32


@dataclass(frozen=True)
class BoundingBox:
    """Approximate lat/lng box used for coarse store queries."""

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    @classmethod
    def around(cls, lat: float, lng: float, radius_km: float) -> "BoundingBox":
        lat_delta = radius_km / KM_PER_DEGREE
        lng_delta = radius_km / (KM_PER_DEGREE * max(math.cos(math.radians(lat)), 0.01))
        return cls(
            min_lat=max(-90.0, lat - lat_delta),
            max_lat=min(90.0, lat + lat_delta),
            min_lng=max(-180.0, lng - lng_delta),
            max_lng=min(180.0, lng + lng_delta),
        )

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


def event_to_row(event: CanonicalEvent) -> dict[str, Any]:
    """Flatten a canonical event into an `events` table row."""
    price = event.price
    if isinstance(price, Price):
        price_min, price_max = price.min, price.max
        currency, estimated = price.currency, price.estimated
    elif price == FREE:
        price_min, price_max, currency, estimated = 0.0, 0.0, "USD", False
    else:
        price_min, price_max, currency, estimated = None, None, "USD", False

    return {
        "external_id": event.external_id,
        "source": (event.origin or event.source).value,
        "title": event.title,
        "description": event.description,
        "category": event.category,
        "tags": event.tags,
        "start_date": event.start.isoformat() if event.start else None,
        "end_date": event.end.isoformat() if event.end else None,
        "timezone": event.venue_timezone,
        "location_name": event.location,
        "location_address": event.address,
        "location_lat": event.coordinates.lat if event.coordinates else None,
        "location_lng": event.coordinates.lng if event.coordinates else None,
        "price_min": price_min,
        "price_max": price_max,
        "price_currency": currency,
        "price_estimated": estimated,
        "image_url": None if event.image_is_placeholder else event.image,
        "organizer_name": event.organizer.name,
        "organizer_avatar": event.organizer.avatar,
        "ticket_links": [link.model_dump() for link in event.ticket_links],
        "url": event.url,
        "is_active": True,
    }


def row_to_event(row: dict[str, Any]) -> CanonicalEvent:
    """Rebuild a canonical event from a stored row, marked as cached."""
    origin = EventSource(row["source"])
    external_id = row["external_id"]
    prefix = f"{origin.value}_"
    native_id = external_id[len(prefix):] if external_id.startswith(prefix) else external_id

    price_min, price_max = row.get("price_min"), row.get("price_max")
    if price_min is None and price_max is None:
        price = PRICE_TBA
    elif (price_min or 0) == 0 and (price_max or 0) == 0:
        price = FREE
    else:
        price = Price(
            min=price_min,
            max=price_max,
            currency=row.get("price_currency") or "USD",
            estimated=bool(row.get("price_estimated")),
        )

    return CanonicalEvent(
        id=numeric_id(external_id),
        native_id=native_id,
        external_id=external_id,
        source=EventSource.CACHED,
        origin=origin,
        title=row["title"],
        description=row.get("description") or "No description available.",
        category=row.get("category") or "Event",
        tags=row.get("tags") or [],
        start=parse_timestamp(row.get("start_date")),
        end=parse_timestamp(row.get("end_date")),
        venue_timezone=row.get("timezone"),
        location=row.get("location_name") or "Venue TBA",
        address=row.get("location_address") or "Address TBA",
        coordinates=safe_coordinates(row.get("location_lat"), row.get("location_lng")),
        price=price,
        image=row.get("image_url"),
        organizer=Organizer(
            name=row.get("organizer_name") or "Event Organizer",
            avatar=row.get("organizer_avatar"),
        ),
        ticket_links=[TicketLink(**link) for link in row.get("ticket_links") or []],
        url=row.get("url"),
    )


class EventStore(ABC):
    """Persisted event store interface."""

    @abstractmethod
    async def query(
        self,
        bbox: Optional[BoundingBox] = None,
        category: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
    ) -> list[CanonicalEvent]:
        """Return stored events, marked `source="cached"`.

        Raises:
            PersistenceError: If the store cannot be read
        """

    @abstractmethod
    async def upsert(self, events: list[CanonicalEvent]) -> int:
        """Insert events not stored yet; returns how many rows were sent.

        Raises:
            PersistenceError: If the store cannot be written
        """


class InMemoryEventStore(EventStore):
    """Dict-backed store. Used in tests and when Supabase is not configured."""

    def __init__(self, max_age_hours: float = 24.0, clock: Callable[[], float] = time.time):
        self.max_age_seconds = max_age_hours * 3600
        self._clock = clock
        self._rows: dict[tuple[str, str], tuple[float, dict[str, Any]]] = {}

    async def query(
        self,
        bbox: Optional[BoundingBox] = None,
        category: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
    ) -> list[CanonicalEvent]:
        cutoff = self._clock() - self.max_age_seconds
        results = []
        for stored_at, row in self._rows.values():
            if stored_at < cutoff or not row.get("is_active", True):
                continue
            event = row_to_event(row)
            if bbox is not None:
                if event.coordinates is None or not bbox.contains(
                    event.coordinates.lat, event.coordinates.lng
                ):
                    continue
            if category and event.category.lower() != category.lower():
                continue
            if start and (event.start is None or event.start < start):
                continue
            if end and (event.start is None or event.start > end):
                continue
            results.append(event)
        results.sort(key=lambda e: e.start or datetime.max.replace(tzinfo=timezone.utc))
        return results[:limit]

    async def upsert(self, events: list[CanonicalEvent]) -> int:
        now = self._clock()
        written = 0
        for event in events:
            row = event_to_row(event)
            key = (row["external_id"], row["source"])
            if key in self._rows:
                continue
            self._rows[key] = (now, row)
            written += 1
        return written

    def __len__(self) -> int:
        return len(self._rows)


class SupabaseEventStore(EventStore):
    """Store backed by a Supabase (PostgREST) `events` table."""

    def __init__(self, client: Client, table: str = "events", max_age_hours: float = 24.0):
        self._client = client
        self.table = table
        self.max_age_hours = max_age_hours

    @classmethod
    def from_credentials(cls, url: str, key: str, **kwargs: Any) -> "SupabaseEventStore":
        return cls(create_client(url, key), **kwargs)

    def _select(
        self,
        bbox: Optional[BoundingBox],
        category: Optional[str],
        start: Optional[datetime],
        end: Optional[datetime],
        limit: int,
    ) -> list[dict[str, Any]]:
        fresh_after = datetime.now(timezone.utc) - timedelta(hours=self.max_age_hours)
        query = (
            self._client.table(self.table)
            .select("*")
            .eq("is_active", True)
            .gte("created_at", fresh_after.isoformat())
        )
        if bbox is not None:
            query = (
                query.gte("location_lat", bbox.min_lat)
                .lte("location_lat", bbox.max_lat)
                .gte("location_lng", bbox.min_lng)
                .lte("location_lng", bbox.max_lng)
            )
        if category:
            query = query.ilike("category", category)
        if start:
            query = query.gte("start_date", start.isoformat())
        if end:
            query = query.lte("start_date", end.isoformat())
        response = query.order("start_date").limit(limit).execute()
        return response.data or []

    async def query(
        self,
        bbox: Optional[BoundingBox] = None,
        category: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
    ) -> list[CanonicalEvent]:
        try:
            rows = await asyncio.to_thread(self._select, bbox, category, start, end, limit)
        except Exception as e:
            raise PersistenceError(f"event store query failed: {e}") from e

        events = []
        for row in rows:
            try:
                events.append(row_to_event(row))
            except (KeyError, ValueError, TypeError, ValidationError) as e:
                logger.warning(
                    "store_row_skipped", external_id=row.get("external_id"), error=str(e)
                )
        logger.debug("store_query_complete", rows=len(rows), events=len(events))
        return events

    def _insert(self, rows: list[dict[str, Any]]) -> None:
        (
            self._client.table(self.table)
            .upsert(rows, on_conflict="external_id,source", ignore_duplicates=True)
            .execute()
        )

    async def upsert(self, events: list[CanonicalEvent]) -> int:
        if not events:
            return 0
        unique: dict[tuple[str, str], dict[str, Any]] = {}
        for event in events:
            row = event_to_row(event)
            unique.setdefault((row["external_id"], row["source"]), row)
        rows = list(unique.values())
        try:
            await asyncio.to_thread(self._insert, rows)
        except Exception as e:
            raise PersistenceError(f"event store upsert failed: {e}") from e
        logger.info("store_upsert_complete", rows=len(rows))
        return len(rows)
