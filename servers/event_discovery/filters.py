"""
Post-merge filtering, scoring, sorting and pagination.

Every function here is pure: it takes canonical events and search
parameters and returns new lists without touching the inputs.
"""

import math
from datetime import datetime, time, timedelta
from typing import Callable, Optional

from rapidfuzz import fuzz

from .models import (
    KM_PER_MILE,
    CanonicalEvent,
    Coordinates,
    SearchParams,
    SortKey,
    price_bounds,
)

EARTH_RADIUS_KM = 6371.0088
MIN_TITLE_LENGTH = 3


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def distance_from(
    event: CanonicalEvent, center: Optional[Coordinates], unit: str = "mi"
) -> Optional[float]:
    """Distance from `center` in the search unit, None when either point is unknown."""
    if center is None or event.coordinates is None:
        return None
    km = haversine_km(center.lat, center.lng, event.coordinates.lat, event.coordinates.lng)
    return km / KM_PER_MILE if unit == "mi" else km


def within_radius(
    events: list[CanonicalEvent], center: Optional[Coordinates], radius: float, unit: str = "mi"
) -> list[CanonicalEvent]:
    """Drop events farther than `radius`. Events without coordinates are kept."""
    if center is None:
        return list(events)
    kept = []
    for event in events:
        distance = distance_from(event, center, unit)
        if distance is None or distance <= radius:
            kept.append(event)
    return kept


def matches_category(event: CanonicalEvent, wanted: list[str]) -> bool:
    if not wanted:
        return True
    names = {event.category.lower(), *(tag.lower() for tag in event.tags)}
    return any(category in names for category in wanted)


def matches_tags(event: CanonicalEvent, tags: list[str]) -> bool:
    if not tags:
        return True
    have = {tag.lower() for tag in event.tags}
    return any(tag.strip().lower() in have for tag in tags)


def matches_price(
    event: CanonicalEvent, price_min: Optional[float], price_max: Optional[float]
) -> bool:
    """True when the event's price range overlaps [price_min, price_max].

    Unknown prices only pass when no price filter is set.
    """
    if price_min is None and price_max is None:
        return True
    bounds = price_bounds(event.price)
    if bounds is None:
        return False
    low, high = bounds
    if price_min is not None and high < price_min:
        return False
    if price_max is not None and low > price_max:
        return False
    return True


def _end_of_day_if_midnight(value: datetime) -> datetime:
    if value.time() == time(0, 0):
        return value + timedelta(days=1) - timedelta(microseconds=1)
    return value


def matches_dates(
    event: CanonicalEvent, start: Optional[datetime], end: Optional[datetime]
) -> bool:
    if start is None and end is None:
        return True
    if event.start is None:
        return False
    if start is not None and event.start < start:
        return False
    if end is not None and event.start > _end_of_day_if_midnight(end):
        return False
    return True


def is_quality_event(event: CanonicalEvent) -> bool:
    """Minimum bar for showing an event at all."""
    if len(event.title.strip()) < MIN_TITLE_LENGTH:
        return False
    if event.start is None:
        return False
    return event.has_real_description or bool(event.ticket_links)


def apply_filters(
    events: list[CanonicalEvent], params: SearchParams, center: Optional[Coordinates]
) -> list[CanonicalEvent]:
    """Run every filter in order and return the survivors."""
    wanted = params.wanted_categories
    results = within_radius(events, center, params.radius, params.unit)
    return [
        event
        for event in results
        if matches_category(event, wanted)
        and matches_tags(event, params.tags)
        and matches_price(event, params.price_min, params.price_max)
        and matches_dates(event, params.start_date, params.end_date)
        and is_quality_event(event)
    ]


def popularity_score(event: CanonicalEvent) -> float:
    """Proxy for popularity built from how complete the listing is.

    `attendees_estimate` is display-only and never counted here.
    """
    score = 2.0 * len(event.ticket_links)
    if event.image and not event.image_is_placeholder:
        score += 1.0
    if event.coordinates is not None:
        score += 1.0
    if event.has_real_description:
        score += min(len(event.description), 500) / 500
    return score


def relevance_score(event: CanonicalEvent, query: Optional[str]) -> float:
    """0-100 match of the free-text query against title, tags and venue."""
    if not query or not query.strip():
        return 0.0
    query = query.lower().strip()
    title_score = fuzz.WRatio(query, event.title.lower())
    context = " ".join([event.category, *event.tags, event.location]).lower()
    context_score = fuzz.token_set_ratio(query, context)
    return max(title_score, 0.6 * context_score)


def sort_events(
    events: list[CanonicalEvent], params: SearchParams, center: Optional[Coordinates] = None
) -> list[CanonicalEvent]:
    """Stable sort by the requested key.

    Date, distance and price run ascending; popularity and relevance run
    best-first. `sort_order="desc"` flips that order. Events missing the
    sort value always go last.
    """
    sort_by = params.sort_by
    if sort_by == SortKey.DISTANCE and center is None:
        sort_by = SortKey.DATE

    key: Callable[[CanonicalEvent], Optional[float]]
    if sort_by == SortKey.DATE:
        key = lambda e: e.start.timestamp() if e.start else None
        best_first = False
    elif sort_by == SortKey.DISTANCE:
        key = lambda e: distance_from(e, center, params.unit)
        best_first = False
    elif sort_by == SortKey.PRICE:
        def key(e: CanonicalEvent) -> Optional[float]:
            bounds = price_bounds(e.price)
            return bounds[0] if bounds else None
        best_first = False
    elif sort_by == SortKey.POPULARITY:
        key = popularity_score
        best_first = True
    else:
        key = lambda e: relevance_score(e, params.query)
        best_first = True

    descending = best_first != (params.sort_order == "desc")
    known = [(key(e), e) for e in events]
    missing = [e for value, e in known if value is None]
    present = [(value, e) for value, e in known if value is not None]
    present.sort(key=lambda pair: pair[0], reverse=descending)
    return [e for _, e in present] + missing


def paginate(
    events: list[CanonicalEvent], offset: int, limit: int
) -> tuple[list[CanonicalEvent], bool]:
    """Slice one page. Returns (page, has_more)."""
    page = events[offset:offset + limit]
    return page, offset + limit < len(events)
