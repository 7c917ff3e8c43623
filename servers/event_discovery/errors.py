"""Exception taxonomy for event discovery.

Only SearchValidationError is meant to reach callers of the aggregator.
Everything else is caught at a component boundary and turned into a soft
error string, a skipped record or a log line.
"""

from typing import Optional


class EventDiscoveryError(Exception):
    """Base class for all event discovery errors."""


class ConfigurationError(EventDiscoveryError):
    """Raised when a provider or collaborator is missing credentials."""

    def __init__(self, component: str, setting: str):
        super().__init__(f"{component} is not configured ({setting} missing)")
        self.component = component
        self.setting = setting


class SearchValidationError(EventDiscoveryError, ValueError):
    """Raised when search parameters are malformed."""


class UpstreamError(EventDiscoveryError):
    """Base class for failures talking to an external event provider."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class UpstreamRequestError(UpstreamError):
    """A 4xx response from a provider. Never retried."""

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
        kind: str = "client_error",
    ):
        super().__init__(provider, message, status_code)
        self.kind = kind


class UpstreamTransientError(UpstreamError):
    """Network failure, timeout or 5xx response. Retried with backoff."""


class QuotaExceededError(EventDiscoveryError):
    """Raised when a provider's daily quota is exhausted."""

    def __init__(self, provider: str, retry_after: float):
        super().__init__(
            f"{provider} daily quota exceeded, retry after {retry_after:.0f}s"
        )
        self.provider = provider
        self.retry_after = retry_after


class TransformError(EventDiscoveryError):
    """Raised when a single provider record cannot be normalized."""


class PersistenceError(EventDiscoveryError):
    """Raised when the persisted event store fails."""


class GeocodingError(EventDiscoveryError):
    """Raised when an address cannot be geocoded."""
