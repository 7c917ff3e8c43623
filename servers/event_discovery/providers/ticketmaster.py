"""
Ticketmaster Discovery API v2 integration.

Quota: 5000 calls/day, 5 requests/second.
Docs: https://developer.ticketmaster.com/products-and-docs/apis/discovery-api/v2/

Strongest source for ticketed concerts, sports and theatre; carries real
price ranges and venue coordinates for most records.
"""

import math
from typing import Any, Optional

import structlog

from ..errors import TransformError
from ..images import validated_image
from ..models import CanonicalEvent, EventSource, Organizer, SearchParams, SortKey, TicketLink
from ..normalize import (
    build_description,
    clean_text,
    dedupe_ticket_links,
    detect_free_text,
    format_provider_datetime,
    map_category,
    parse_timestamp,
    pick_best_image,
    resolve_price,
    safe_coordinates,
)
from .base import ProviderAdapter, reported_total

logger = structlog.get_logger()

TICKETMASTER_BASE = "https://app.ticketmaster.com/discovery/v2/events.json"

# Shared vocabulary -> Ticketmaster classificationName
CLASSIFICATIONS = {
    "music": "Music",
    "sports": "Sports",
    "arts": "Arts & Theatre",
    "family": "Family",
    "festival": "Festival",
}


class TicketmasterAdapter(ProviderAdapter):
    """Adapter for the Ticketmaster Discovery API."""

    source = EventSource.TICKETMASTER
    display_name = "Ticketmaster"
    credential_setting = "TICKETMASTER_API_KEY"
    max_page_size = 200

    def build_request(self, params: SearchParams, size: int) -> dict[str, Any]:
        query: dict[str, Any] = {
            "apikey": self.credential,
            "size": size,
            "page": 0,
            "sort": (
                "relevance,desc"
                if params.sort_by == SortKey.RELEVANCE and params.query
                else "date,asc"
            ),
        }
        if params.has_center:
            query["latlong"] = f"{params.lat},{params.lng}"
            query["radius"] = max(1, math.ceil(params.radius))
            query["unit"] = "miles" if params.unit == "mi" else "km"
        elif params.location:
            query["city"] = params.location.split(",")[0].strip()

        if params.query:
            query["keyword"] = params.query
        category = params.primary_category
        if category and category in CLASSIFICATIONS:
            query["classificationName"] = CLASSIFICATIONS[category]
        if params.start_date:
            query["startDateTime"] = format_provider_datetime(params.start_date)
        if params.end_date:
            query["endDateTime"] = format_provider_datetime(params.end_date)
        return query

    async def fetch_records(self, params: SearchParams, size: int) -> tuple[list[dict], int]:
        data = await self._get_json(TICKETMASTER_BASE, self.build_request(params, size))
        records = ((data or {}).get("_embedded") or {}).get("events") or []
        total = ((data or {}).get("page") or {}).get("totalElements")
        return records, reported_total(total, len(records))

    def transform(self, record: dict) -> Optional[CanonicalEvent]:
        native_id = record["id"]
        title = clean_text(record.get("name"))
        if not title:
            raise TransformError("event has no name")

        embedded = record.get("_embedded") or {}
        venue = (embedded.get("venues") or [{}])[0] or {}
        venue_location = venue.get("location") or {}
        coordinates = safe_coordinates(
            venue_location.get("latitude"), venue_location.get("longitude")
        )
        address_parts = [
            (venue.get("address") or {}).get("line1"),
            (venue.get("city") or {}).get("name"),
            (venue.get("state") or {}).get("stateCode"),
        ]
        address = ", ".join(p.strip() for p in address_parts if p and p.strip())

        classification = (record.get("classifications") or [{}])[0] or {}
        labels = [
            (classification.get(key) or {}).get("name")
            for key in ("segment", "genre", "subGenre")
        ]
        tags = [
            label.lower()
            for label in labels
            if label and label.lower() not in ("undefined", "other")
        ]
        category = map_category(*labels, title)

        dates = record.get("dates") or {}
        start_info = dates.get("start") or {}
        start = parse_timestamp(start_info.get("dateTime"))
        if start is None and start_info.get("localDate"):
            local = start_info["localDate"]
            if start_info.get("localTime"):
                local = f"{local}T{start_info['localTime']}"
            start = parse_timestamp(local, dates.get("timezone"))
        end = parse_timestamp((dates.get("end") or {}).get("dateTime"))

        info = record.get("info")
        please_note = record.get("pleaseNote")
        promoter = record.get("promoter") or {}
        accessibility = (record.get("accessibility") or {}).get("info")

        price_range = (record.get("priceRanges") or [{}])[0] or {}
        price = resolve_price(
            is_free=True if detect_free_text(accessibility) else None,
            low=price_range.get("min"),
            high=price_range.get("max"),
            currency=price_range.get("currency"),
            texts=(info, please_note),
            category=category,
            venue_hints=(venue.get("name") or "",),
        )

        attraction = (embedded.get("attractions") or [{}])[0] or {}
        organizer = Organizer(
            name=attraction.get("name") or promoter.get("name") or "Event Organizer",
            avatar=validated_image(pick_best_image(attraction.get("images") or [])),
        )

        description_parts = [p for p in (info, please_note, promoter.get("description")) if p]
        return CanonicalEvent(
            native_id=native_id,
            source=self.source,
            title=title,
            description=build_description(" ".join(description_parts)),
            category=category,
            tags=tags,
            start=start,
            end=end,
            venue_timezone=dates.get("timezone"),
            location=clean_text(venue.get("name")) or "Venue TBA",
            address=address or "Address TBA",
            coordinates=coordinates,
            price=price,
            image=validated_image(pick_best_image(record.get("images") or [])),
            organizer=organizer,
            ticket_links=self._ticket_links(record),
            url=record.get("url"),
        )

    def _ticket_links(self, record: dict) -> list[TicketLink]:
        links = []
        if record.get("url"):
            links.append(TicketLink(source="Ticketmaster", link=record["url"]))
        for presale in (record.get("sales") or {}).get("presales") or []:
            if presale.get("url"):
                links.append(
                    TicketLink(source=presale.get("name") or "Presale", link=presale["url"])
                )
        return dedupe_ticket_links(links)
