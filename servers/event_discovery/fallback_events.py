"""
Synthetic events shown when every live source comes back empty.

Events are generated from per-category templates around the search centre
(or the nearest known city). A centre more than `FAR_CITY_KM` from every
known city is labelled from the search text, or "Nearby". Events are
marked `source="mock"` so the UI can flag them. Generation is
deterministic for a given set of search parameters.
"""

import math
import random
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog

from .filters import haversine_km
from .images import placeholder_image
from .models import (
    FREE,
    CanonicalEvent,
    Coordinates,
    EventSource,
    Organizer,
    Price,
    SearchParams,
    TicketLink,
)

logger = structlog.get_logger()

EVENT_TEMPLATES: dict[str, dict] = {
    "Music": {
        "titles": ["Live Concert", "Jazz Night", "Rock Showcase", "Classical Performance", "DJ Set"],
        "venues": ["Riverside Amphitheater", "Blue Room", "City Park Bandshell", "Symphony Hall", "The Loft"],
        "price_range": (25, 150),
    },
    "Sports": {
        "titles": ["Basketball Game", "Baseball Match", "Tennis Open", "City Marathon", "Boxing Night"],
        "venues": ["Downtown Arena", "Municipal Stadium", "Tennis Center", "Waterfront Park", "Fight Club Gym"],
        "price_range": (30, 200),
    },
    "Arts": {
        "titles": ["Art Exhibition", "Theater Performance", "Dance Show", "Film Screening", "Poetry Reading"],
        "venues": ["Museum of Modern Art", "Playhouse Theater", "Arts Center", "Film Forum", "Public Library"],
        "price_range": (15, 100),
    },
    "Brunch": {
        "titles": ["Food Festival", "Wine Tasting", "Cooking Class", "Bottomless Brunch", "Farmers Market"],
        "venues": ["Market Hall", "Chelsea Kitchen", "Union Square", "Harbor Cafe", "Old Town Plaza"],
        "price_range": (10, 75),
    },
    "Business": {
        "titles": ["Tech Conference", "Startup Pitch Night", "Networking Mixer", "Product Workshop", "Leadership Seminar"],
        "venues": ["Convention Center", "Innovation Hub", "Cowork Commons", "University Hall", "Grand Hotel"],
        "price_range": (0, 500),
    },
    "Family": {
        "titles": ["Kids Show", "Family Fun Day", "Zoo Lantern Walk", "Museum Day", "Circus"],
        "venues": ["City Zoo", "Children's Museum", "Prospect Park", "Science Center", "Boardwalk"],
        "price_range": (0, 50),
    },
    "Nightlife": {
        "titles": ["Late Night Dance Party", "Karaoke Night", "Comedy After Dark", "Rooftop Social", "Silent Disco"],
        "venues": ["Neon Lounge", "Skyline Rooftop", "Basement Club", "Velvet Bar", "Warehouse 9"],
        "price_range": (10, 60),
    },
    "Festival": {
        "titles": ["Street Fair", "Lantern Festival", "Summer Music Fest", "Craft Beer Festival", "Cultural Parade"],
        "venues": ["Main Street", "Festival Grounds", "Riverfront", "Town Square", "Fairgrounds"],
        "price_range": (0, 120),
    },
}

# (lat, lng, state)
KNOWN_CITIES: dict[str, tuple[float, float, str]] = {
    "New York": (40.7128, -74.006, "NY"),
    "Los Angeles": (34.0522, -118.2437, "CA"),
    "Chicago": (41.8781, -87.6298, "IL"),
    "Houston": (29.7604, -95.3698, "TX"),
    "Phoenix": (33.4484, -112.074, "AZ"),
    "Philadelphia": (39.9526, -75.1652, "PA"),
    "San Antonio": (29.4241, -98.4936, "TX"),
    "San Diego": (32.7157, -117.1611, "CA"),
    "Dallas": (32.7767, -96.797, "TX"),
    "San Jose": (37.3382, -121.8863, "CA"),
    "Austin": (30.2672, -97.7431, "TX"),
    "San Francisco": (37.7749, -122.4194, "CA"),
    "Seattle": (47.6062, -122.3321, "WA"),
    "Denver": (39.7392, -104.9903, "CO"),
    "Boston": (42.3601, -71.0589, "MA"),
    "Miami": (25.7617, -80.1918, "FL"),
    "Atlanta": (33.749, -84.388, "GA"),
    "Las Vegas": (36.1699, -115.1398, "NV"),
    "Portland": (45.5152, -122.6784, "OR"),
    "Washington": (38.9072, -77.0369, "DC"),
}

DEFAULT_CITY = "New York"
MAX_SCATTER_KM = 8.0
FREE_CHANCE = 0.2
SLOT = timedelta(minutes=30)
# Beyond this the nearest known city is not named in titles
FAR_CITY_KM = 100.0
NEARBY = "Nearby"


def _next_slot(value: datetime) -> datetime:
    """Round up to the next :00 or :30."""
    rounded = value.replace(minute=0, second=0, microsecond=0)
    while rounded < value:
        rounded += SLOT
    return rounded


def nearest_city(lat: float, lng: float) -> str:
    return min(
        KNOWN_CITIES,
        key=lambda name: haversine_km(lat, lng, KNOWN_CITIES[name][0], KNOWN_CITIES[name][1]),
    )


def city_from_text(location: Optional[str]) -> Optional[str]:
    if not location:
        return None


def place_from_text(location: Optional[str]) -> Optional[str]:
    """First comma-separated part of a free-text location, if any."""
    if not location:
        return None
    head = location.split(",")[0].strip()
    return head or None
    text = location.lower()
    for name in KNOWN_CITIES:
        if name.lower() in text:
            return name
    return None


def scatter(rng: random.Random, center: Coordinates, max_km: float) -> Coordinates:
    """Random point within `max_km` of `center`, uniform over the disc."""
    distance = max_km * math.sqrt(rng.random())
    bearing = rng.uniform(0, 2 * math.pi)
    d_lat = (distance * math.cos(bearing)) / 111.32
    d_lng = (distance * math.sin(bearing)) / (111.32 * max(math.cos(math.radians(center.lat)), 0.01))
    return Coordinates(
        lat=max(-90.0, min(90.0, center.lat + d_lat)),
        lng=max(-180.0, min(180.0, center.lng + d_lng)),
    )


class FallbackEventGenerator:
    """Builds plausible placeholder events for an empty search."""

    def __init__(
        self,
        seed: Optional[int] = None,
        days_ahead: int = 14,
        count: int = 12,
        default_city: str = DEFAULT_CITY,
    ):
        self.seed = seed
        self.days_ahead = max(1, days_ahead)
        self.count = count
        self.default_city = default_city if default_city in KNOWN_CITIES else DEFAULT_CITY

    def _templates(self, params: SearchParams) -> list[str]:
        wanted = params.wanted_categories
        chosen = [name for name in EVENT_TEMPLATES if name.lower() in wanted]
        return chosen or list(EVENT_TEMPLATES)

    def _window(self, params: SearchParams, now: datetime) -> tuple[datetime, datetime]:
        start = params.start_date or now + timedelta(hours=1)
        end = params.end_date or start + timedelta(days=self.days_ahead)
        if params.end_date and params.end_date.time() == datetime.min.time():
            end = params.end_date + timedelta(days=1) - timedelta(minutes=1)
        if end <= start:
            end = start + timedelta(hours=1)
        return start, end

    def generate(
        self,
        params: SearchParams,
        center: Optional[Coordinates] = None,
        now: Optional[datetime] = None,
    ) -> list[CanonicalEvent]:
        """Generate up to `count` mock events for `params`.

        Args:
            params: The search that came back empty
            center: Resolved search centre, if any
            now: Reference time, defaults to the current UTC time
        """
        rng = random.Random(self.seed if self.seed is not None else params.cache_key())
        now = now or datetime.now(timezone.utc)

        if center is not None:
            city = nearest_city(center.lat, center.lng)
            lat, lng, state = KNOWN_CITIES[city]
            if haversine_km(center.lat, center.lng, lat, lng) > FAR_CITY_KM:
                label = place_from_text(params.location) or NEARBY
                suffix = label
            else:
                label = city
                suffix = f"{city}, {state}"
        else:
            city = city_from_text(params.location) or self.default_city
            lat, lng, state = KNOWN_CITIES[city]
            center = Coordinates(lat=lat, lng=lng)
            label = city
            suffix = f"{city}, {state}"
        area = "the area" if label == NEARBY else label

        radius_km = min(params.radius_km * 0.8, MAX_SCATTER_KM)
        window_start, window_end = self._window(params, now)
        first_slot = _next_slot(window_start)
        slots = max(1, int((window_end - first_slot) // SLOT) + 1)
        categories = self._templates(params)
        count = min(self.count, params.limit)

        events = []
        for i in range(count):
            category = categories[i % len(categories)]
            template = EVENT_TEMPLATES[category]
            title = rng.choice(template["titles"])
            venue = rng.choice(template["venues"])

            start = first_slot + SLOT * rng.randrange(slots)

            low, high = template["price_range"]
            free_chance = FREE_CHANCE * 2 if low == 0 else FREE_CHANCE
            if rng.random() < free_chance:
                price = FREE
            else:
                amount = float(rng.randint(max(low, 5), high))
                price = Price(min=amount, max=amount)

            native_id = f"{params.cache_key()[:8]}-{i + 1}"
            external_id = f"{EventSource.MOCK.value}_{native_id}"
            events.append(
                CanonicalEvent(
                    native_id=native_id,
                    source=EventSource.MOCK,
                    title=f"{title} - {label}",
                    description=(
                        f"Join us for a {category.lower()} event in {area}. "
                        f"This {title.lower()} is a sample listing shown while live "
                        "event sources are unavailable."
                    ),
                    category=category,
                    tags=[category, label, "Sample Event"],
                    start=start,
                    end=start + timedelta(hours=rng.choice([2, 3, 4])),
                    location=venue,
                    address=f"{venue}, {suffix}",
                    coordinates=scatter(rng, center, radius_km),
                    price=price,
                    ticket_links=[TicketLink(source="Sample Tickets", link="#")],
                    organizer=Organizer(name=f"{label} {category} Society"),
                    image=placeholder_image(category, external_id),
                    image_is_placeholder=True,
                    attendees_estimate=rng.randint(50, 550),
                )
            )

        logger.info("fallback_events_generated", city=label, count=len(events))
        return sorted(events, key=lambda e: e.start)
