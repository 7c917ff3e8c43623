"""
Event Discovery aggregation service

Queries several event APIs in parallel and returns one normalized,
deduplicated, geo-filtered result set:
- Provider adapters for Ticketmaster, RapidAPI events search and Eventbrite
- Per-provider rate limiting, retries and circuit breaking
- Image and geocode enrichment
- Persisted event store used as an additive cache
- Sample events when every live source comes back empty
"""

__version__ = "0.1.0"
