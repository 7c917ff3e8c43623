"""
Image URL validation and category placeholders.

Provider image fields are frequently empty, relative, point at tracking
pixels or at hosts that never serve images. A URL is accepted only when it
is absolute http(s), names a public host and either ends in a known image
extension or comes from a host known to serve event artwork.
"""

import ipaddress
import zlib
from typing import Optional
from urllib.parse import urlparse

IMAGE_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".bmp", ".tiff", ".avif",
)

# Hosts (and their subdomains) that serve event artwork without extensions
TRUSTED_IMAGE_HOSTS = {
    "img.evbuc.com",
    "cdn.evbuc.com",
    "s1.ticketm.net",
    "media.ticketmaster.com",
    "tmol-prd.s3.amazonaws.com",
    "livenationinternational.com",
    "images.unsplash.com",
    "source.unsplash.com",
    "images.pexels.com",
    "cdn.pixabay.com",
    "res.cloudinary.com",
    "cloudinary.com",
    "amazonaws.com",
    "cloudfront.net",
    "googleusercontent.com",
    "gstatic.com",
    "fbcdn.net",
    "cdninstagram.com",
    "i.imgur.com",
    "m.media-amazon.com",
}

BLOCKED_HOSTNAMES = {"localhost", "localhost.localdomain"}

COMMUNITY_PLACEHOLDER = "/community-event.png"

CATEGORY_PLACEHOLDERS: dict[str, tuple[str, ...]] = {
    "Music": ("/event-1.png", "/event-2.png", "/event-3.png"),
    "Nightlife": ("/event-4.png", "/event-5.png", "/event-6.png"),
    "Festival": ("/event-1.png", "/event-7.png", "/event-8.png"),
    "Sports": ("/event-4.png", "/event-5.png"),
    "Arts": ("/event-6.png", "/event-10.png", "/event-11.png"),
    "Brunch": ("/event-12.png", "/event-9.png"),
    "Business": ("/event-2.png", "/event-3.png"),
    "Family": ("/event-7.png", "/event-8.png"),
}


def _host_is_public(hostname: str) -> bool:
    if hostname in BLOCKED_HOSTNAMES or hostname.endswith(".localhost"):
        return False
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return "." in hostname
    return ip.is_global


def _host_is_trusted(hostname: str) -> bool:
    return any(
        hostname == trusted or hostname.endswith(f".{trusted}")
        for trusted in TRUSTED_IMAGE_HOSTS
    )


def is_valid_image_url(url: Optional[str]) -> bool:
    """Whether `url` plausibly points at a displayable image."""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    if parsed.scheme.lower() not in ("http", "https"):
        return False
    hostname = (parsed.hostname or "").lower()
    if not hostname or not _host_is_public(hostname):
        return False
    if parsed.path.lower().endswith(IMAGE_EXTENSIONS):
        return True
    return _host_is_trusted(hostname)


def placeholder_image(category: Optional[str], key: str = "") -> str:
    """Deterministic placeholder for a category; `key` picks within the set."""
    choices = CATEGORY_PLACEHOLDERS.get(category or "")
    if not choices:
        return COMMUNITY_PLACEHOLDER
    return choices[zlib.crc32(key.encode("utf-8")) % len(choices)]


def validated_image(url: Optional[str]) -> Optional[str]:
    """Return `url` if it validates, else None for enrichment to fill in."""
    if url and is_valid_image_url(url):
        return url.strip()
    return None
