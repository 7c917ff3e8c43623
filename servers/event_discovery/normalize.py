"""
Shared helpers for turning raw provider records into canonical fields.

Every provider adapter leans on these so that text cleanup, price
resolution, category mapping and coordinate handling behave the same no
matter which upstream a record came from.
"""

import math
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

import structlog
from bs4 import BeautifulSoup
from dateutil import parser as date_parser
from dateutil import tz

from .models import (
    DEFAULT_CATEGORY,
    FREE,
    NO_DESCRIPTION,
    PRICE_TBA,
    Coordinates,
    Price,
    PriceValue,
    TicketLink,
    ensure_utc,
)

logger = structlog.get_logger()

MAX_DESCRIPTION_LENGTH = 500
PROVIDER_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

FREE_TEXT_PATTERN = re.compile(
    r"^\s*free\b"
    r"|\bfree\s+(?:entry|admission|event|show|concert|tickets?|to\s+attend|of\s+charge)\b"
    r"|\b(?:is|for|always)\s+free\b"
    r"|\badmission\s*:?\s*free\b"
    r"|\bno\s+(?:cover|charge)\b"
    r"|\bcomplimentary\b",
    re.IGNORECASE,
)
DOLLAR_AMOUNT_PATTERN = re.compile(r"\$\s*(\d{1,3}(?:,\d{3})+|\d+)(\.\d{1,2})?")

# Ordered: the first category whose keywords match wins, so the more
# specific buckets come before the broad ones.
CATEGORY_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("Festival", ("festival", "festivals", "fest", "fair", "carnival")),
    ("Brunch", ("brunch", "mimosa", "mimosas", "food & drink", "food and drink")),
    (
        "Sports",
        (
            "sports", "sport", "football", "basketball", "baseball", "hockey",
            "soccer", "nfl", "nba", "mlb", "nhl", "mls", "tennis", "golf",
            "boxing", "wrestling", "racing", "motorsports", "marathon",
        ),
    ),
    (
        "Business",
        (
            "business", "conference", "conferences", "networking", "seminar",
            "seminars", "workshop", "workshops", "expo", "summit", "professional",
            "startup", "tech", "science & technology",
        ),
    ),
    ("Family", ("family", "kids", "children", "child", "family & education")),
    (
        "Music",
        (
            "music", "concert", "concerts", "live music", "jazz", "rock", "blues",
            "hip-hop", "rap", "country", "classical", "r&b", "band", "orchestra",
            "symphony", "live_music_venue", "concert_hall", "music_venue",
        ),
    ),
    (
        "Arts",
        (
            "arts", "art", "arts & theatre", "theatre", "theater", "comedy",
            "museum", "exhibition", "gallery", "film", "dance", "opera",
            "ballet", "performing arts", "performing & visual arts",
        ),
    ),
    (
        "Nightlife",
        (
            "nightlife", "club", "clubbing", "night_club", "nightclub", "party",
            "parties", "dj", "lounge", "rave",
        ),
    ),
]

_CATEGORY_PATTERNS = [
    (name, re.compile(r"(?<![\w&])(?:" + "|".join(re.escape(k) for k in keys) + r")(?![\w&])"))
    for name, keys in CATEGORY_KEYWORDS
]

# Rough ticket bands used only when a record carries no usable price.
CATEGORY_PRICE_BANDS: dict[str, tuple[float, float]] = {
    "Music": (25.0, 75.0),
    "Sports": (35.0, 150.0),
    "Arts": (20.0, 65.0),
    "Business": (0.0, 50.0),
    "Family": (10.0, 35.0),
    "Nightlife": (15.0, 40.0),
    "Festival": (40.0, 120.0),
    "Brunch": (25.0, 55.0),
}
VENUE_PRICE_BANDS: list[tuple[tuple[str, ...], tuple[float, float]]] = [
    (("stadium", "arena", "field", "ballpark"), (45.0, 150.0)),
    (("amphitheater", "amphitheatre", "pavilion"), (35.0, 110.0)),
    (("theater", "theatre", "opera house", "concert_hall", "concert hall"), (35.0, 95.0)),
    (("night_club", "nightclub", "club", "lounge"), (15.0, 40.0)),
    (("bar", "pub", "brewery", "tavern"), (10.0, 25.0)),
    (("park", "library", "community center", "church"), (0.0, 15.0)),
]


def clean_text(value: Any) -> str:
    """Strip HTML tags and entities and collapse whitespace."""
    if value is None:
        return ""
    text = str(value)
    if "<" in text or "&" in text:
        text = BeautifulSoup(text, "html.parser").get_text(" ")
    return re.sub(r"\s+", " ", text).strip()


def clamp_text(text: str, limit: int = MAX_DESCRIPTION_LENGTH) -> str:
    if len(text) <= limit:
        return text
    cut = text[: limit - 3].rstrip()
    if " " in cut:
        cut = cut[: cut.rfind(" ")].rstrip()
    return f"{cut}..."


def build_description(*candidates: Any, limit: int = MAX_DESCRIPTION_LENGTH) -> str:
    """First non-empty candidate, cleaned and clamped, else the placeholder."""
    for candidate in candidates:
        text = clean_text(candidate)
        if text:
            return clamp_text(text, limit)
    return NO_DESCRIPTION


def parse_amount(value: Any) -> Optional[float]:
    """Parse a single money amount ("25.00", 25, "$1,200") or return None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        amount = float(value)
    else:
        text = str(value).replace("$", "").replace(",", "").strip()
        if not text:
            return None
        try:
            amount = float(text)
        except ValueError:
            return None
    if math.isnan(amount) or math.isinf(amount) or amount < 0:
        return None
    return amount


def detect_free_text(*texts: Any) -> bool:
    """True when any text advertises a free event."""
    return any(text and FREE_TEXT_PATTERN.search(str(text)) for text in texts)


def find_dollar_amounts(text: str) -> list[float]:
    amounts = []
    for whole, cents in DOLLAR_AMOUNT_PATTERN.findall(text or ""):
        amounts.append(float(whole.replace(",", "") + (cents or "")))
    return amounts


def parse_price_range(text: Any) -> Optional[tuple[float, float]]:
    """Parse a display price string into (min, max).

    "Free" gives (0, 0), "$10" gives (10, 10), "$10 - $20" gives (10, 20).
    Anything unrecognised gives None.
    """
    if text is None:
        return None
    value = str(text).strip()
    if not value:
        return None
    if value.lower() == "free":
        return (0.0, 0.0)
    amounts = find_dollar_amounts(value)
    if not amounts:
        return None
    return (min(amounts), max(amounts))


def price_from_bounds(
    low: Any, high: Any = None, currency: Optional[str] = None
) -> Optional[PriceValue]:
    """Build a price from explicit provider bounds, or None if unusable."""
    low_amount = parse_amount(low)
    high_amount = parse_amount(high)
    if low_amount is None and high_amount is None:
        return None
    if low_amount is not None and high_amount is not None and low_amount > high_amount:
        low_amount, high_amount = high_amount, low_amount
    if (low_amount or 0) == 0 and (high_amount or 0) == 0:
        return FREE
    return Price(min=low_amount, max=high_amount, currency=(currency or "USD").upper())


def estimate_price(category: str, venue_hints: Iterable[str] = ()) -> Optional[Price]:
    """Guess a price band from venue type or category keywords."""
    hints = " ".join(h.lower() for h in venue_hints if h)
    for keywords, (low, high) in VENUE_PRICE_BANDS:
        if any(re.search(rf"\b{re.escape(keyword)}\b", hints) for keyword in keywords):
            return Price(min=low, max=high, estimated=True)
    band = CATEGORY_PRICE_BANDS.get(category)
    if band:
        return Price(min=band[0], max=band[1], estimated=True)
    return None


def resolve_price(
    *,
    is_free: Optional[bool] = None,
    low: Any = None,
    high: Any = None,
    currency: Optional[str] = None,
    texts: Sequence[Any] = (),
    category: str = DEFAULT_CATEGORY,
    venue_hints: Iterable[str] = (),
    estimate: bool = True,
) -> PriceValue:
    """Run the price chain: explicit flags and bounds, then text, then estimate."""
    if is_free is True:
        return FREE
    explicit = price_from_bounds(low, high, currency)
    if explicit is not None:
        return explicit
    if detect_free_text(*texts):
        return FREE
    ranges = [r for r in map(parse_price_range, texts) if r is not None]
    if ranges:
        low_text = min(r[0] for r in ranges)
        high_text = max(r[1] for r in ranges)
        return price_from_bounds(low_text, high_text, currency) or PRICE_TBA
    if estimate:
        guessed = estimate_price(category, venue_hints)
        if guessed is not None:
            return guessed
    return PRICE_TBA


def map_category(*labels: Any) -> str:
    """Map provider taxonomy labels onto the shared category vocabulary.

    Labels are tried in order, so pass the most authoritative first.
    """
    for label in labels:
        if not label:
            continue
        text = str(label).lower().strip()
        if text in ("undefined", "other", "miscellaneous"):
            continue
        for name, pattern in _CATEGORY_PATTERNS:
            if pattern.search(text):
                return name
    return DEFAULT_CATEGORY


def safe_coordinates(lat: Any, lng: Any) -> Optional[Coordinates]:
    """Coordinates from loosely typed input, or None when not trustworthy.

    Missing, non-numeric, NaN, out-of-range and exact (0, 0) pairs are all
    treated as absent.
    """
    try:
        lat_value = float(lat)
        lng_value = float(lng)
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(lat_value) and math.isfinite(lng_value)):
        return None
    if lat_value == 0 and lng_value == 0:
        return None
    if not (-90 <= lat_value <= 90 and -180 <= lng_value <= 180):
        return None
    return Coordinates(lat=lat_value, lng=lng_value)


def parse_timestamp(value: Any, tz_name: Optional[str] = None) -> Optional[datetime]:
    """Parse a provider timestamp into an aware UTC datetime.

    Naive values are interpreted in `tz_name` when given, else as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.parse(str(value))
        except (ValueError, OverflowError, TypeError):
            logger.debug("timestamp_unparseable", value=str(value)[:50])
            return None
    if parsed.tzinfo is None and tz_name:
        zone = tz.gettz(tz_name)
        if zone is not None:
            parsed = parsed.replace(tzinfo=zone)
    return ensure_utc(parsed)


def format_provider_datetime(value: datetime) -> str:
    """Strict `YYYY-MM-DDTHH:MM:SSZ` as Ticketmaster and Eventbrite expect."""
    aware = ensure_utc(value) or datetime.now(timezone.utc)
    return aware.strftime(PROVIDER_DATETIME_FORMAT)


_SIZE_RANK = {"large": 3, "medium": 2, "small": 1}


def pick_best_image(images: Sequence[dict[str, Any]]) -> Optional[str]:
    """Best image URL by named size (large > medium > small), then width."""

    def rank(image: dict[str, Any]) -> tuple[int, float]:
        named = str(image.get("size") or image.get("ratio") or "").lower()
        width = parse_amount(image.get("width")) or 0.0
        return _SIZE_RANK.get(named, 0), width

    candidates = [img for img in images or [] if isinstance(img, dict) and img.get("url")]
    if not candidates:
        return None
    return max(candidates, key=rank)["url"]


def dedupe_ticket_links(links: Iterable[TicketLink]) -> list[TicketLink]:
    """Keep one link per platform and per URL, preserving order."""
    seen_sources: set[str] = set()
    seen_links: set[str] = set()
    result = []
    for link in links:
        source_key = link.source.strip().lower()
        if not link.link or source_key in seen_sources or link.link in seen_links:
            continue
        seen_sources.add(source_key)
        seen_links.add(link.link)
        result.append(link)
    return result
