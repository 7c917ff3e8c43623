"""Best-effort image and coordinate enrichment for canonical events."""

import asyncio
from typing import Optional

import structlog

from .errors import GeocodingError
from .geocoding import Geocoder, is_geocodable
from .images import is_valid_image_url, placeholder_image
from .models import CanonicalEvent, Coordinates

logger = structlog.get_logger()


class EventEnricher:
    """Fill in images and missing coordinates.

    Never drops an event and never raises for a single event: a failed or
    slow geocode leaves the event without coordinates. A whole batch is
    bounded by `deadline`; geocodes still running then are cancelled and
    those events get the image fix only.
    """

    def __init__(
        self,
        geocoder: Optional[Geocoder] = None,
        max_concurrency: int = 5,
        timeout: float = 3.0,
        deadline: Optional[float] = None,
    ):
        self.geocoder = geocoder
        self.max_concurrency = max_concurrency
        self.timeout = timeout
        self.deadline = timeout if deadline is None else deadline

    def _image_updates(self, event: CanonicalEvent) -> dict:
        if event.image_is_placeholder or is_valid_image_url(event.image):
            return {}
        return {
            "image": placeholder_image(event.category, event.external_id),
            "image_is_placeholder": True,
        }

    def with_image(self, event: CanonicalEvent) -> CanonicalEvent:
        """Image fix only, no network."""
        updates = self._image_updates(event)
        return event.model_copy(update=updates) if updates else event

    async def enhance(self, event: CanonicalEvent) -> CanonicalEvent:
        """Return a copy of `event` with a usable image and, if possible, coordinates."""
        updates = self._image_updates(event)

        if event.coordinates is None and self.geocoder and is_geocodable(event.address):
            coordinates = await self._geocode(event)
            if coordinates is not None:
                updates["coordinates"] = coordinates

        if not updates:
            return event
        return event.model_copy(update=updates)

    async def _geocode(self, event: CanonicalEvent) -> Optional[Coordinates]:
        query = event.address
        if event.location and event.location != "Venue TBA" and event.location not in query:
            query = f"{event.location}, {query}"
        try:
            result = await asyncio.wait_for(self.geocoder.geocode(query), self.timeout)
        except asyncio.TimeoutError:
            logger.debug("enrichment_geocode_timeout", event_id=event.external_id)
            return None
        except GeocodingError as e:
            logger.debug("enrichment_geocode_failed", event_id=event.external_id, error=str(e))
            return None
        return Coordinates(lat=result.lat, lng=result.lng)

    async def enhance_all(self, events: list[CanonicalEvent]) -> list[CanonicalEvent]:
        """Enhance a batch concurrently, preserving order, within `deadline`."""
        if not events:
            return []
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def guarded(event: CanonicalEvent) -> CanonicalEvent:
            async with semaphore:
                try:
                    return await self.enhance(event)
                except Exception as e:
                    logger.warning(
                        "enrichment_failed", event_id=event.external_id, error=str(e)
                    )
                    return event

        tasks = [asyncio.ensure_future(guarded(e)) for e in events]
        try:
            _, pending = await asyncio.wait(tasks, timeout=self.deadline)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise
        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "enrichment_deadline_reached",
                deadline=self.deadline,
                unfinished=len(pending),
                events=len(events),
            )

        enhanced = [
            self.with_image(event) if task.cancelled() else task.result()
            for task, event in zip(tasks, events)
        ]
        geocoded = sum(
            1 for before, after in zip(events, enhanced)
            if before.coordinates is None and after.coordinates is not None
        )
        logger.debug("enrichment_complete", events=len(events), geocoded=geocoded)
        return enhanced
