"""
Deduplication for merged provider results.

Two passes:
1. Exact: an event is dropped when its external id or its content key
   (normalized title + start date + normalized venue) was already seen.
2. Fuzzy (optional): weighted similarity across sources

   - Title: 40% weight
   - Venue: 25% weight
   - Date: 15% weight
   - Time: 10% weight
   - Location: 10% weight

   Threshold: 0.85

The first occurrence always wins; a dropped duplicate only contributes
ticket links, coordinates or an image the kept event lacks.
"""

import re
from typing import Optional

from rapidfuzz import fuzz

from .filters import haversine_km
from .images import is_valid_image_url
from .models import CanonicalEvent, DedupeResult, DuplicateMatch
from .normalize import dedupe_ticket_links

WEIGHTS = {
    "title": 0.40,
    "venue": 0.25,
    "date": 0.15,
    "time": 0.10,
    "location": 0.10,
}

THRESHOLD = 0.85

TITLE_PREFIXES = ("live:", "live -", "tonight:", "this week:", "event:")
VENUE_SUFFIXES = (
    " bar", " pub", " club", " lounge", " theater", " theatre", " hall",
    " venue", " room", " stage", " arena", " center", " centre", " stadium",
)


def normalize_text(text: str) -> str:
    """Lowercase, drop punctuation and common prefixes, collapse whitespace."""
    if not text:
        return ""
    text = text.lower().strip()
    for prefix in TITLE_PREFIXES:
        if text.startswith(prefix):
            text = text[len(prefix):].strip()
    text = re.sub(r"[^\w\s]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def normalize_venue_name(name: str) -> str:
    if not name or name.strip().lower() == "venue tba":
        return ""
    name = normalize_text(name)
    if name.startswith("the "):
        name = name[4:]
    for suffix in VENUE_SUFFIXES:
        if name.endswith(suffix):
            name = name[: -len(suffix)].strip()
    return name


def title_similarity(e1: CanonicalEvent, e2: CanonicalEvent) -> float:
    t1, t2 = normalize_text(e1.title), normalize_text(e2.title)
    if not t1 or not t2:
        return 0.0
    return fuzz.token_sort_ratio(t1, t2) / 100


def venue_similarity(e1: CanonicalEvent, e2: CanonicalEvent) -> float:
    v1, v2 = normalize_venue_name(e1.location), normalize_venue_name(e2.location)
    if not v1 or not v2:
        return 0.0
    return fuzz.ratio(v1, v2) / 100


def date_similarity(e1: CanonicalEvent, e2: CanonicalEvent) -> float:
    if not e1.start or not e2.start:
        return 0.0
    days = abs((e1.start.date() - e2.start.date()).days)
    return 1.0 if days == 0 else 0.0


def time_similarity(e1: CanonicalEvent, e2: CanonicalEvent) -> float:
    """Full score within 30 minutes, linear decay to zero at 4 hours."""
    if not e1.start or not e2.start:
        return 0.0
    diff = abs((e1.start - e2.start).total_seconds())
    if diff <= 1800:
        return 1.0
    if diff >= 14400:
        return 0.0
    return 1.0 - (diff - 1800) / 12600


def location_similarity(e1: CanonicalEvent, e2: CanonicalEvent) -> float:
    """1.0 within 100 m, zero beyond 2 km; 0.5 when either point is unknown."""
    if not e1.coordinates or not e2.coordinates:
        return 0.5
    distance = haversine_km(
        e1.coordinates.lat, e1.coordinates.lng, e2.coordinates.lat, e2.coordinates.lng
    )
    if distance <= 0.1:
        return 1.0
    if distance >= 2.0:
        return 0.0
    return 1.0 - (distance - 0.1) / 1.9


def calculate_similarity(
    e1: CanonicalEvent, e2: CanonicalEvent, weights: Optional[dict[str, float]] = None
) -> tuple[float, float, float, float]:
    """Weighted similarity. Returns (total, title_sim, venue_sim, time_sim)."""
    weights = weights or WEIGHTS
    title_sim = title_similarity(e1, e2)
    venue_sim = venue_similarity(e1, e2)
    time_sim = time_similarity(e1, e2)
    total = (
        weights["title"] * title_sim
        + weights["venue"] * venue_sim
        + weights["date"] * date_similarity(e1, e2)
        + weights["time"] * time_sim
        + weights["location"] * location_similarity(e1, e2)
    )
    return total, title_sim, venue_sim, time_sim


def _absorb(kept: CanonicalEvent, dropped: CanonicalEvent) -> CanonicalEvent:
    """Fill gaps in the kept event from a dropped duplicate."""
    updates: dict = {}
    links = dedupe_ticket_links([*kept.ticket_links, *dropped.ticket_links])
    if len(links) != len(kept.ticket_links):
        updates["ticket_links"] = links
    if kept.coordinates is None and dropped.coordinates is not None:
        updates["coordinates"] = dropped.coordinates
    if not is_valid_image_url(kept.image) and is_valid_image_url(dropped.image):
        updates["image"] = dropped.image
        updates["image_is_placeholder"] = False
    return kept.model_copy(update=updates) if updates else kept


def deduplicate(
    events: list[CanonicalEvent],
    fuzzy: bool = False,
    threshold: float = THRESHOLD,
    weights: Optional[dict[str, float]] = None,
) -> DedupeResult:
    """
    Deduplicate events, keeping the first occurrence of each.

    Args:
        events: Events in priority order (cache first, then providers)
        fuzzy: Also run the weighted similarity pass
        threshold: Similarity threshold (0-1) for the fuzzy pass
        weights: Optional custom weights for the fuzzy pass

    Returns:
        DedupeResult with deduplicated events and audit trail
    """
    if not events:
        return DedupeResult(events=[], original_count=0, duplicates_removed=0)

    kept: list[CanonicalEvent] = []
    audit_trail: list[DuplicateMatch] = []
    by_external_id: dict[str, int] = {}
    by_content_key: dict[str, int] = {}

    for event in events:
        index = by_external_id.get(event.external_id)
        reason = "same external id"
        if index is None:
            index = by_content_key.get(event.content_key)
            reason = "same title, date and venue"

        if index is None and fuzzy:
            for i, candidate in enumerate(kept):
                total, title_sim, venue_sim, time_sim = calculate_similarity(
                    candidate, event, weights
                )
                if total >= threshold:
                    index = i
                    reason = f"similar to '{candidate.title}'"
                    audit_trail.append(
                        DuplicateMatch(
                            kept_event_id=candidate.external_id,
                            dropped_event_id=event.external_id,
                            reason=reason,
                            similarity_score=total,
                            title_similarity=title_sim,
                            venue_similarity=venue_sim,
                            time_similarity=time_sim,
                        )
                    )
                    break
        elif index is not None:
            audit_trail.append(
                DuplicateMatch(
                    kept_event_id=kept[index].external_id,
                    dropped_event_id=event.external_id,
                    reason=reason,
                )
            )

        if index is None:
            by_external_id[event.external_id] = len(kept)
            by_content_key[event.content_key] = len(kept)
            kept.append(event)
            continue

        kept[index] = _absorb(kept[index], event)
        by_external_id.setdefault(event.external_id, index)

    return DedupeResult(
        events=kept,
        original_count=len(events),
        duplicates_removed=len(events) - len(kept),
        audit_trail=audit_trail,
    )

