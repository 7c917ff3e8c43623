"""
Pydantic models for event data structures.

These models define the core data types used throughout the service:
- CanonicalEvent: the normalized event every provider adapter produces
- SearchParams: a validated search request
- ProviderResult: the outcome of one provider call
- UnifiedEventsResponse: what the aggregator hands back to the UI
- DuplicateMatch / DedupeResult: the outcome of a deduplication pass
"""

import hashlib
import json
import re
import zlib
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Union

from dateutil import parser as date_parser
from dateutil import tz
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)


FREE = "Free"
PRICE_TBA = "Price TBA"
NO_DESCRIPTION = "No description available."
VENUE_TBA = "Venue TBA"
ADDRESS_TBA = "Address TBA"
DEFAULT_CATEGORY = "Event"

# Shared category vocabulary every provider taxonomy is mapped into
CATEGORIES = (
    "Music",
    "Sports",
    "Arts",
    "Business",
    "Family",
    "Nightlife",
    "Festival",
    "Brunch",
    DEFAULT_CATEGORY,
)

KM_PER_MILE = 1.609344


class EventSource(str, Enum):
    """Where a canonical event came from."""

    TICKETMASTER = "ticketmaster"
    RAPIDAPI = "rapidapi"
    EVENTBRITE = "eventbrite"
    CACHED = "cached"
    MOCK = "mock"


class SortKey(str, Enum):
    """Supported result orderings."""

    DATE = "date"
    DISTANCE = "distance"
    PRICE = "price"
    POPULARITY = "popularity"
    RELEVANCE = "relevance"


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return an aware UTC datetime. Naive values are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def make_external_id(source: Union[EventSource, str], native_id: str) -> str:
    """Build the `{provider}_{nativeId}` dedupe/storage key."""
    return f"{EventSource(source).value}_{native_id}"


def numeric_id(value: str) -> int:
    """Stable non-negative integer id derived from a string id."""
    return zlib.crc32(value.encode("utf-8"))


def _format_amount(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"


class Coordinates(BaseModel):
    """A WGS84 point."""

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class Price(BaseModel):
    """Structured ticket price. `estimated` marks heuristic guesses."""

    min: Optional[float] = Field(default=None, ge=0)
    max: Optional[float] = Field(default=None, ge=0)
    currency: str = "USD"
    estimated: bool = False

    @model_validator(mode="after")
    def _check_bounds(self) -> "Price":
        if self.min is None and self.max is None:
            raise ValueError("price needs at least one of min/max")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"price min {self.min} is greater than max {self.max}")
        return self

    @property
    def bounds(self) -> tuple[float, float]:
        low = self.min if self.min is not None else self.max
        high = self.max if self.max is not None else self.min
        return low, high  # type: ignore[return-value]

    @property
    def display(self) -> str:
        low, high = self.bounds
        if high == 0:
            return FREE
        symbol = "$" if self.currency == "USD" else f"{self.currency} "
        if low == high:
            text = f"{symbol}{_format_amount(low)}"
        else:
            text = f"{symbol}{_format_amount(low)} - {symbol}{_format_amount(high)}"
        return f"~{text}" if self.estimated else text


PriceValue = Union[Price, Literal["Free", "Price TBA"]]


def price_bounds(price: PriceValue) -> Optional[tuple[float, float]]:
    """Numeric (min, max) for a price, or None when unknown."""
    if isinstance(price, Price):
        return price.bounds
    if price == FREE:
        return (0.0, 0.0)
    return None


class TicketLink(BaseModel):
    """A link to buy tickets on one platform."""

    source: str
    link: str


class Organizer(BaseModel):
    """Who runs the event."""

    name: str = "Event Organizer"
    avatar: Optional[str] = None


class CanonicalEvent(BaseModel):
    """Represents a single normalized event with all metadata."""

    # Identity
    id: int
    native_id: str
    external_id: str
    source: EventSource
    origin: Optional[EventSource] = None  # provider that first produced it

    # Core event info
    title: str
    description: str = NO_DESCRIPTION
    category: str = DEFAULT_CATEGORY
    tags: list[str] = Field(default_factory=list)

    # Timing (authoritative, UTC)
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    venue_timezone: Optional[str] = None  # IANA name, used for display only

    # Location
    location: str = VENUE_TBA
    address: str = ADDRESS_TBA
    coordinates: Optional[Coordinates] = None

    # Details
    price: PriceValue = PRICE_TBA
    url: Optional[str] = None
    ticket_links: list[TicketLink] = Field(default_factory=list)
    organizer: Organizer = Field(default_factory=Organizer)

    # Media
    image: Optional[str] = None
    image_is_placeholder: bool = False

    # Presentation-only fields
    attendees_estimate: Optional[int] = Field(
        default=None, description="Display estimate, not a real attendance count"
    )
    is_favorite: bool = False

    @model_validator(mode="before")
    @classmethod
    def _fill_identity(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("native_id") is not None:
            data["native_id"] = str(data["native_id"])
        if not data.get("external_id") and data.get("source") and data.get("native_id"):
            data["external_id"] = make_external_id(data["source"], data["native_id"])
        if data.get("id") is None and data.get("external_id"):
            data["id"] = numeric_id(data["external_id"])
        if data.get("origin") is None:
            data["origin"] = data.get("source")
        return data

    @field_validator("start", "end")
    @classmethod
    def _normalize_timestamp(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @property
    def local_start(self) -> Optional[datetime]:
        """`start` in the venue's time zone, or UTC when the zone is unknown."""
        if not self.start:
            return None
        zone = tz.gettz(self.venue_timezone) if self.venue_timezone else None
        return self.start.astimezone(zone) if zone else self.start

    @computed_field
    @property
    def date(self) -> str:
        """Display date in the venue's local time."""
        local = self.local_start
        if not local:
            return "Date TBA"
        return f"{local:%B} {local.day}, {local.year}"

    @computed_field
    @property
    def time(self) -> str:
        """Display time in the venue's local time."""
        local = self.local_start
        if not local:
            return "Time TBA"
        hour = local.hour % 12 or 12
        return f"{hour}:{local:%M} {'AM' if local.hour < 12 else 'PM'}"

    @property
    def has_real_description(self) -> bool:
        text = (self.description or "").strip()
        return bool(text) and text != NO_DESCRIPTION

    @property
    def content_key(self) -> str:
        """Key for cross-provider dedupe: title + start date + venue."""
        title = re.sub(r"[^\w\s]", "", self.title.lower())
        title = re.sub(r"\s+", " ", title).strip()
        venue = re.sub(r"[^\w\s]", "", self.location.lower())
        venue = re.sub(r"\s+", " ", venue).strip()
        day = self.start.strftime("%Y-%m-%d") if self.start else ""
        key_string = f"{title}|{day}|{venue}"
        return hashlib.md5(key_string.encode()).hexdigest()


def _parse_date_input(value: Any) -> Any:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            return date_parser.isoparse(value)
        except ValueError:
            return date_parser.parse(value)
    return value


class SearchParams(BaseModel):
    """A validated search request."""

    model_config = ConfigDict(extra="forbid")

    query: Optional[str] = None
    location: Optional[str] = None  # free-text place, geocoded when no lat/lng
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    radius: float = Field(default=25.0, gt=0, le=500)
    unit: Literal["mi", "km"] = "mi"

    category: Optional[str] = None
    categories: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    price_min: Optional[float] = Field(default=None, ge=0)
    price_max: Optional[float] = Field(default=None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    sort_by: SortKey = SortKey.DATE
    sort_order: Literal["asc", "desc"] = "asc"

    limit: int = Field(default=50, ge=1, le=200)
    offset: int = Field(default=0, ge=0)
    page: Optional[int] = Field(default=None, ge=1)
    page_size: Optional[int] = Field(default=None, ge=1, le=200)

    use_cache: bool = True
    force_refresh: bool = False
    prefer_cache: bool = False  # let a full store hit skip live providers

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _parse_dates(cls, value: Any) -> Any:
        return _parse_date_input(value)

    @field_validator("start_date", "end_date")
    @classmethod
    def _dates_to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_consistency(self) -> "SearchParams":
        if (self.lat is None) != (self.lng is None):
            raise ValueError("lat and lng must be provided together")
        if (
            self.price_min is not None
            and self.price_max is not None
            and self.price_min > self.price_max
        ):
            raise ValueError("price_min must not exceed price_max")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if self.page is not None:
            size = self.page_size or self.limit
            self.limit = size
            self.offset = (self.page - 1) * size
        return self

    @property
    def has_center(self) -> bool:
        return self.lat is not None and self.lng is not None

    @property
    def radius_km(self) -> float:
        return self.radius * KM_PER_MILE if self.unit == "mi" else self.radius

    @property
    def wanted_categories(self) -> list[str]:
        """Lower-cased category filter, ignoring the "all" wildcard."""
        names = list(self.categories)
        if self.category:
            names.append(self.category)
        return [n.strip().lower() for n in names if n and n.strip().lower() != "all"]

    @property
    def primary_category(self) -> Optional[str]:
        wanted = self.wanted_categories
        return wanted[0] if wanted else None

    def cache_key(self) -> str:
        """Stable hash of every field that changes the result."""
        payload = self.model_dump(
            mode="json", exclude={"use_cache", "force_refresh", "page", "page_size"}
        )
        encoded = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.md5(encoded.encode()).hexdigest()


class ProviderResult(BaseModel):
    """Result of one provider search."""

    source: EventSource
    events: list[CanonicalEvent] = Field(default_factory=list)
    total_count: int = 0
    status: Literal["success", "error", "skipped"] = "success"
    error: Optional[str] = None
    duration_ms: Optional[int] = None


class UnifiedEventsResponse(BaseModel):
    """Aggregated search result returned to the UI."""

    events: list[CanonicalEvent]
    total_count: int
    has_more: bool
    error: Optional[str] = None
    sources: dict[str, int] = Field(default_factory=dict)
    is_fallback: bool = False
    offset: int = 0
    limit: int = 50


class DuplicateMatch(BaseModel):
    """Records a dropped duplicate for the audit trail."""

    kept_event_id: str
    dropped_event_id: str
    reason: str
    similarity_score: float = 1.0
    title_similarity: Optional[float] = None
    venue_similarity: Optional[float] = None
    time_similarity: Optional[float] = None


class DedupeResult(BaseModel):
    """Result of deduplication with audit trail."""

    events: list[CanonicalEvent]
    original_count: int
    duplicates_removed: int
    audit_trail: list[DuplicateMatch] = Field(default_factory=list)

    @computed_field
    @property
    def dedup_rate(self) -> float:
        """Percentage of events that were duplicates."""
        if self.original_count == 0:
            return 0.0
        return self.duplicates_removed / self.original_count * 100
