"""
Provider adapter base class.

Each upstream event API gets one adapter that turns a SearchParams into
provider requests and provider records into CanonicalEvents. The base class
owns everything the three providers do the same way: the credential check,
the rate-limiter gate, retries on transient failures, HTTP status
classification and skipping of malformed records.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from ..errors import (
    ConfigurationError,
    QuotaExceededError,
    TransformError,
    UpstreamError,
    UpstreamRequestError,
    UpstreamTransientError,
)
from ..models import CanonicalEvent, EventSource, ProviderResult, SearchParams
from ..resilience import RateLimiter, retry_once

logger = structlog.get_logger()

STATUS_KINDS = {
    400: "bad_request",
    401: "auth_invalid",
    403: "forbidden",
    404: "not_found",
    429: "rate_limited",
}


def classify_status(provider: str, response: httpx.Response) -> UpstreamError:
    """Map an HTTP error response onto the upstream error taxonomy."""
    status = response.status_code
    reason = response.reason_phrase or "error"
    if status >= 500:
        return UpstreamTransientError(provider, f"HTTP {status} {reason}", status)
    kind = STATUS_KINDS.get(status, "client_error")
    return UpstreamRequestError(provider, f"HTTP {status} {reason}", status, kind=kind)


def reported_total(value: Any, fallback: int) -> int:
    """Provider-reported result count, or `fallback` when it is missing or junk."""
    try:
        total = int(value)
    except (TypeError, ValueError, OverflowError):
        return fallback
    return max(total, fallback)


class ProviderAdapter(ABC):
    """Base class for event provider adapters.

    Subclasses set `source`, `display_name`, `credential_setting` and
    `max_page_size`, and implement `fetch_records` and `transform`.
    """

    source: EventSource
    display_name: str = "Provider"
    credential_setting: str = ""
    max_page_size: int = 100

    def __init__(
        self,
        credential: Optional[str],
        limiter: RateLimiter,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.credential = credential
        self.limiter = limiter
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self.source.value

    @property
    def is_configured(self) -> bool:
        return bool(self.credential and self.credential.strip())

    def clamp_size(self, requested: int) -> int:
        return max(1, min(requested, self.max_page_size))

    def get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def search(self, params: SearchParams) -> ProviderResult:
        """Search this provider. Never raises; failures become error results."""
        if not self.is_configured:
            reason = str(ConfigurationError(self.display_name, self.credential_setting))
            logger.warning("provider_skipped", provider=self.name, reason=reason)
            return ProviderResult(source=self.source, status="skipped", error=reason)

        start = time.monotonic()
        size = self.clamp_size(params.offset + params.limit)
        try:
            try:
                records, total = await self.fetch_records(params, size)
            except (KeyError, TypeError, AttributeError, ValueError) as e:
                raise UpstreamError(self.name, f"malformed response: {e!r}") from e
        except (UpstreamError, QuotaExceededError) as e:
            message = self.describe_error(e)
            logger.warning(
                "provider_search_failed",
                provider=self.name,
                error_type=type(e).__name__,
                status_code=getattr(e, "status_code", None),
                error=message,
            )
            return ProviderResult(
                source=self.source,
                status="error",
                error=message,
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        events = self.transform_all(records)
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "provider_search_complete",
            provider=self.name,
            records=len(records),
            events=len(events),
            duration_ms=duration_ms,
        )
        return ProviderResult(
            source=self.source,
            events=events,
            total_count=max(total, len(events)),
            duration_ms=duration_ms,
        )

    def describe_error(self, error: Exception) -> str:
        """Human-readable message for a failed search."""
        if isinstance(error, QuotaExceededError):
            return f"{self.display_name}: {error}"
        if isinstance(error, UpstreamRequestError):
            if error.kind in ("auth_invalid", "forbidden"):
                return f"{self.display_name} rejected the credentials ({error})"
            if error.kind == "rate_limited":
                return f"{self.display_name} is rate limiting requests ({error})"
            return f"{self.display_name} rejected the request ({error})"
        return f"{self.display_name} is unavailable ({error})"

    async def _request_once(
        self, url: str, params: Optional[dict] = None, headers: Optional[dict] = None
    ) -> Any:
        await self.limiter.wait_if_needed()
        client = self.get_client()
        try:
            response = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as e:
            raise UpstreamTransientError(self.name, f"request timed out: {e!r}") from e
        except httpx.HTTPError as e:
            raise UpstreamTransientError(self.name, f"network error: {e!r}") from e

        if response.status_code >= 400:
            raise classify_status(self.name, response)
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(self.name, "response was not valid JSON") from e
        if not isinstance(data, dict):
            raise UpstreamError(
                self.name, f"unexpected response body ({type(data).__name__})"
            )
        return data

    async def _get_json(
        self, url: str, params: Optional[dict] = None, headers: Optional[dict] = None
    ) -> Any:
        """GET `url` through the rate limiter, retrying transient failures."""
        return await retry_once(
            self._request_once,
            url,
            params,
            headers,
            max_attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            retryable_exceptions=(UpstreamTransientError,),
            sleep=self._sleep,
        )

    def transform_all(self, records: list[dict]) -> list[CanonicalEvent]:
        """Transform a batch, skipping (and logging) records that fail."""
        events = []
        for record in records:
            try:
                event = self.transform(record)
            except (TransformError, KeyError, ValueError, TypeError, AttributeError) as e:
                record_id = record.get("id") if isinstance(record, dict) else None
                logger.warning(
                    "provider_record_skipped",
                    provider=self.name,
                    record_id=record_id,
                    error=str(e),
                )
                continue
            if event is not None:
                events.append(event)
        return events

    @abstractmethod
    async def fetch_records(self, params: SearchParams, size: int) -> tuple[list[dict], int]:
        """Fetch raw records. Returns (records, provider-reported total)."""

    @abstractmethod
    def transform(self, record: dict) -> Optional[CanonicalEvent]:
        """Turn one raw record into a CanonicalEvent."""
