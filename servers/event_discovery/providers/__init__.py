"""Event provider adapters."""

from .base import ProviderAdapter, classify_status
from .eventbrite import EventbriteAdapter
from .rapidapi import RapidApiEventsAdapter
from .ticketmaster import TicketmasterAdapter

__all__ = [
    "ProviderAdapter",
    "classify_status",
    "TicketmasterAdapter",
    "RapidApiEventsAdapter",
    "EventbriteAdapter",
]
