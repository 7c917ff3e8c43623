"""
RapidAPI "Real-Time Events Search" integration.

Quota: plan dependent, typically a few hundred calls per day.
Results come from Google's event index, ten per page, so a search walks
pages with the `start` offset until it has enough records.

Broadest coverage of small venues, clubs and community events, but prices
are rarely structured and have to be read from free text.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog

from ..errors import TransformError, UpstreamError, UpstreamRequestError
from ..images import validated_image
from ..models import (
    CanonicalEvent,
    EventSource,
    Organizer,
    SearchParams,
    TicketLink,
)
from ..normalize import (
    build_description,
    clean_text,
    dedupe_ticket_links,
    map_category,
    parse_timestamp,
    resolve_price,
    safe_coordinates,
)
from .base import ProviderAdapter

logger = structlog.get_logger()

DEFAULT_HOST = "real-time-events-search.p.rapidapi.com"
SEARCH_PATH = "/search-events"
RESULTS_PER_PAGE = 10

NIGHTLIFE_VENUES = {"night_club", "nightclub", "dance_club", "lounge"}
NIGHTLIFE_TAGS = {"clubbing", "dj", "nightlife", "club", "rave"}
FESTIVAL_TAGS = {"festival", "fest", "fair"}


def date_bucket(start: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Map a requested start date onto the API's coarse `date` filter."""
    if start is None:
        return "any"
    now = now or datetime.now(timezone.utc)
    days = (start.date() - now.date()).days
    if days <= 0:
        return "today"
    if days == 1:
        return "tomorrow"
    if days <= 7:
        return "week"
    if days <= 31:
        return "month"
    return "any"


def error_message(data: dict) -> str:
    """Message from an error body; `error` may be an object or a plain string."""
    error = data.get("error")
    if isinstance(error, dict):
        error = error.get("message")
    return str(error or data.get("status"))


class RapidApiEventsAdapter(ProviderAdapter):
    """Adapter for the RapidAPI real-time events search."""

    source = EventSource.RAPIDAPI
    display_name = "RapidAPI Events"
    credential_setting = "RAPIDAPI_KEY"
    max_page_size = 100

    def __init__(self, credential: Optional[str], limiter, host: str = DEFAULT_HOST, **kwargs: Any):
        super().__init__(credential, limiter, **kwargs)
        self.host = host

    @property
    def base_url(self) -> str:
        return f"https://{self.host}{SEARCH_PATH}"

    @property
    def headers(self) -> dict[str, str]:
        return {"X-RapidAPI-Key": self.credential or "", "X-RapidAPI-Host": self.host}

    def build_query(self, params: SearchParams) -> str:
        """Compose the natural-language query the API expects."""
        parts = [params.query.strip()] if params.query and params.query.strip() else []
        category = params.primary_category
        if category and category != "event":
            parts.append(category)
        if not parts:
            parts.append("events")
        if params.location:
            parts.append(f"in {params.location.strip()}")
        elif params.has_center:
            parts.append(f"near {params.lat:.4f},{params.lng:.4f}")
        return " ".join(parts)

    def build_request(self, params: SearchParams, start: int = 0) -> dict[str, Any]:
        return {
            "query": self.build_query(params),
            "date": date_bucket(params.start_date),
            "is_virtual": "false",
            "start": start,
        }

    async def fetch_records(self, params: SearchParams, size: int) -> tuple[list[dict], int]:
        records: list[dict] = []
        offset = 0
        while len(records) < size:
            try:
                data = await self._get_json(
                    self.base_url, self.build_request(params, offset), headers=self.headers
                )
            except UpstreamError:
                if not records:
                    raise
                logger.warning(
                    "rapidapi_page_failed", start=offset, collected=len(records)
                )
                break

            if data.get("status") not in (None, "OK"):
                if not records:
                    raise UpstreamRequestError(
                        self.name, error_message(data), kind="bad_request"
                    )
                logger.warning(
                    "rapidapi_page_rejected",
                    start=offset,
                    collected=len(records),
                    error=error_message(data),
                )
                break
            page = data.get("data") or []
            if not page:
                break
            records.extend(page)
            if len(page) < RESULTS_PER_PAGE:
                break
            offset += RESULTS_PER_PAGE

        records = records[:size]
        return records, len(records)

    def categorize(self, record: dict, local_hour: Optional[int]) -> str:
        tags = [str(t).lower() for t in record.get("tags") or []]
        venue = record.get("venue") or {}
        subtype = str(venue.get("subtype") or "").lower()
        subtypes = {str(s).lower() for s in venue.get("subtypes") or []}
        name = str(record.get("name") or "").lower()

        at_night = local_hour is not None and (local_hour >= 18 or local_hour <= 6)
        if at_night and (
            subtype in NIGHTLIFE_VENUES
            or NIGHTLIFE_TAGS.intersection(tags)
            or " club" in f" {name}"
        ):
            return "Nightlife"
        if FESTIVAL_TAGS.intersection(tags):
            return "Festival"
        return map_category(*tags, name, subtype, *sorted(subtypes))

    def transform(self, record: dict) -> Optional[CanonicalEvent]:
        native_id = record["event_id"]
        title = clean_text(record.get("name"))
        if not title:
            raise TransformError("event has no name")

        venue = record.get("venue") or {}
        tz_name = venue.get("timezone")
        start = parse_timestamp(record.get("start_time_utc")) or parse_timestamp(
            record.get("start_time"), tz_name
        )
        end = parse_timestamp(record.get("end_time_utc")) or parse_timestamp(
            record.get("end_time"), tz_name
        )
        local_start = parse_timestamp(record.get("start_time"))
        category = self.categorize(record, local_start.hour if local_start else None)

        structured = record.get("price") or {}
        price = resolve_price(
            is_free=record.get("is_free") is True or structured.get("is_free") is True or None,
            low=structured.get("min", record.get("min_price")),
            high=structured.get("max", record.get("max_price")),
            currency=structured.get("currency"),
            texts=(record.get("name"), record.get("description")),
            category=category,
            venue_hints=(venue.get("subtype") or "", venue.get("name") or ""),
        )

        ticket_links = dedupe_ticket_links(
            TicketLink(source=link.get("source") or "Tickets", link=link["link"])
            for link in record.get("ticket_links") or []
            if isinstance(link, dict) and link.get("link")
        )

        return CanonicalEvent(
            native_id=native_id,
            source=self.source,
            title=title,
            description=build_description(record.get("description")),
            category=category,
            tags=[str(t).lower() for t in record.get("tags") or []],
            start=start,
            end=end,
            venue_timezone=tz_name,
            location=clean_text(venue.get("name")) or "Venue TBA",
            address=clean_text(venue.get("full_address")) or "Address TBA",
            coordinates=safe_coordinates(venue.get("latitude"), venue.get("longitude")),
            price=price,
            image=validated_image(record.get("thumbnail")),
            organizer=Organizer(name=record.get("publisher") or venue.get("name") or "Event Organizer"),
            ticket_links=ticket_links,
            url=record.get("link"),
        )
