"""
Eventbrite API v3 integration.

Quota: about 2000 calls/day per OAuth token.
Good coverage of community, business and food events; prices come from the
expanded `ticket_availability` block.
"""

import math
from typing import Any, Optional

import structlog

from ..errors import TransformError
from ..images import validated_image
from ..models import (
    CanonicalEvent,
    EventSource,
    Organizer,
    SearchParams,
    SortKey,
    TicketLink,
)
from ..normalize import (
    build_description,
    clean_text,
    format_provider_datetime,
    map_category,
    parse_timestamp,
    resolve_price,
    safe_coordinates,
)
from .base import ProviderAdapter, reported_total

logger = structlog.get_logger()

EVENTBRITE_SEARCH = "https://www.eventbriteapi.com/v3/events/search/"

# Eventbrite category ids <-> shared vocabulary
CATEGORY_IDS = {
    "101": "Business",
    "102": "Business",
    "103": "Music",
    "104": "Arts",
    "105": "Arts",
    "108": "Sports",
    "110": "Brunch",
    "115": "Family",
}
CATEGORY_FILTERS = {
    "business": "101",
    "music": "103",
    "arts": "105",
    "sports": "108",
    "brunch": "110",
    "family": "115",
}


class EventbriteAdapter(ProviderAdapter):
    """Adapter for the Eventbrite event search API."""

    source = EventSource.EVENTBRITE
    display_name = "Eventbrite"
    credential_setting = "EVENTBRITE_TOKEN"
    max_page_size = 50

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.credential}"}

    def build_request(self, params: SearchParams, size: int) -> dict[str, Any]:
        query: dict[str, Any] = {
            "expand": "venue,organizer,ticket_availability",
            "page_size": size,
            "page": 1,
            "sort_by": "best" if params.sort_by == SortKey.RELEVANCE else "date",
        }
        if params.query:
            query["q"] = params.query
        if params.has_center:
            query["location.latitude"] = params.lat
            query["location.longitude"] = params.lng
            query["location.within"] = f"{max(1, math.ceil(params.radius))}{params.unit}"
        elif params.location:
            query["location.address"] = params.location
        category = params.primary_category
        if category and category in CATEGORY_FILTERS:
            query["categories"] = CATEGORY_FILTERS[category]
        if params.start_date:
            query["start_date.range_start"] = format_provider_datetime(params.start_date)
        if params.end_date:
            query["start_date.range_end"] = format_provider_datetime(params.end_date)
        return query

    async def fetch_records(self, params: SearchParams, size: int) -> tuple[list[dict], int]:
        data = await self._get_json(
            EVENTBRITE_SEARCH, self.build_request(params, size), headers=self.headers
        )
        records = (data or {}).get("events") or []
        total = ((data or {}).get("pagination") or {}).get("object_count")
        return records, reported_total(total, len(records))

    def transform(self, record: dict) -> Optional[CanonicalEvent]:
        native_id = record["id"]
        title = clean_text((record.get("name") or {}).get("text"))
        if not title:
            raise TransformError("event has no name")

        start_info = record.get("start") or {}
        end_info = record.get("end") or {}
        start = parse_timestamp(start_info.get("utc")) or parse_timestamp(
            start_info.get("local"), start_info.get("timezone")
        )
        end = parse_timestamp(end_info.get("utc")) or parse_timestamp(
            end_info.get("local"), end_info.get("timezone")
        )

        venue = record.get("venue") or {}
        venue_address = venue.get("address") or {}
        coordinates = safe_coordinates(
            venue.get("latitude") or venue_address.get("latitude"),
            venue.get("longitude") or venue_address.get("longitude"),
        )
        address = venue_address.get("localized_address_display") or ", ".join(
            p for p in (venue_address.get("address_1"), venue_address.get("city")) if p
        )

        category = CATEGORY_IDS.get(str(record.get("category_id") or "")) or map_category(title)
        summary = record.get("summary")
        description = (record.get("description") or {}).get("text")

        availability = record.get("ticket_availability") or {}
        minimum = availability.get("minimum_ticket_price") or {}
        maximum = availability.get("maximum_ticket_price") or {}
        price = resolve_price(
            is_free=record.get("is_free") is True or None,
            low=minimum.get("major_value"),
            high=maximum.get("major_value"),
            currency=minimum.get("currency") or maximum.get("currency"),
            texts=(summary, description),
            category=category,
            venue_hints=(venue.get("name") or "",),
        )

        logo = record.get("logo") or {}
        organizer = record.get("organizer") or {}
        organizer_logo = organizer.get("logo") or {}
        url = record.get("url")

        return CanonicalEvent(
            native_id=native_id,
            source=self.source,
            title=title,
            description=build_description(description, summary),
            category=category,
            start=start,
            end=end,
            venue_timezone=start_info.get("timezone"),
            location=clean_text(venue.get("name")) or "Venue TBA",
            address=address or "Address TBA",
            coordinates=coordinates,
            price=price,
            image=validated_image((logo.get("original") or {}).get("url") or logo.get("url")),
            organizer=Organizer(
                name=organizer.get("name") or "Event Organizer",
                avatar=validated_image(organizer_logo.get("url")),
            ),
            ticket_links=[TicketLink(source="Eventbrite", link=url)] if url else [],
            url=url,
        )
