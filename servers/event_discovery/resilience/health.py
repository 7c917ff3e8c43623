"""Health bookkeeping for event providers."""

from datetime import datetime, timezone
from typing import Any

import structlog

logger = structlog.get_logger()


class HealthMonitor:
    """Track the outcome of each provider's most recent searches.

    Feeds the aggregator's status report; the circuit breaker makes the
    actual on/off decisions.
    """

    def __init__(self):
        self.status: dict[str, dict[str, Any]] = {}

    def _previous(self, provider: str) -> dict[str, Any]:
        return self.status.get(
            provider, {"consecutive_failures": 0, "total_calls": 0, "total_failures": 0}
        )

    def record_success(
        self, provider: str, event_count: int, duration_ms: int | None = None
    ) -> None:
        previous = self._previous(provider)
        self.status[provider] = {
            "healthy": True,
            "state": "ok",
            "last_check": datetime.now(timezone.utc).isoformat(),
            "event_count": event_count,
            "duration_ms": duration_ms,
            "consecutive_failures": 0,
            "total_calls": previous["total_calls"] + 1,
            "total_failures": previous["total_failures"],
            "last_error": None,
        }
        logger.debug("provider_healthy", provider=provider, event_count=event_count)

    def record_failure(self, provider: str, error: str) -> None:
        previous = self._previous(provider)
        consecutive = previous["consecutive_failures"] + 1
        self.status[provider] = {
            "healthy": False,
            "state": "error",
            "last_check": datetime.now(timezone.utc).isoformat(),
            "event_count": 0,
            "duration_ms": None,
            "consecutive_failures": consecutive,
            "total_calls": previous["total_calls"] + 1,
            "total_failures": previous["total_failures"] + 1,
            "last_error": error,
        }
        logger.warning(
            "provider_unhealthy",
            provider=provider,
            consecutive_failures=consecutive,
            error=error,
        )

    def record_skip(self, provider: str, reason: str) -> None:
        """An unconfigured provider is neither healthy nor failing."""
        previous = self._previous(provider)
        self.status[provider] = {
            **previous,
            "healthy": previous.get("healthy", True),
            "state": "skipped",
            "last_check": datetime.now(timezone.utc).isoformat(),
            "event_count": 0,
            "last_error": reason,
        }

    def is_healthy(self, provider: str) -> bool:
        """Unknown providers count as healthy."""
        return self.status.get(provider, {}).get("healthy", True)

    def get_provider_status(self, provider: str) -> dict[str, Any] | None:
        return self.status.get(provider)

    def get_unhealthy_providers(self) -> list[str]:
        return [
            name for name, status in self.status.items() if not status.get("healthy", True)
        ]

    def get_status(self) -> dict[str, Any]:
        healthy_count = sum(1 for s in self.status.values() if s.get("healthy", False))
        total_count = len(self.status)
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "summary": {
                "healthy": healthy_count,
                "unhealthy": total_count - healthy_count,
                "total": total_count,
            },
            "providers": self.status,
        }

    def reset(self, provider: str | None = None) -> None:
        if provider:
            self.status.pop(provider, None)
        else:
            self.status.clear()
