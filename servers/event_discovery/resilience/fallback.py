"""Fallback chain pattern for graceful degradation."""

from typing import Any, Awaitable, Callable, Sequence, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


def _label(func: Callable[..., Any]) -> str:
    owner = getattr(func, "__self__", None)
    if owner is not None:
        return getattr(owner, "name", type(owner).__name__)
    return getattr(func, "__name__", repr(func))


class FallbackChain:
    """Try async callables in order until one succeeds.

    Used to chain collaborators that can stand in for one another, such as
    a keyed geocoder backed by a free one.
    """

    def __init__(
        self,
        *functions: Callable[..., Awaitable[T]],
        labels: Sequence[str] | None = None,
    ):
        """Initialize fallback chain with ordered functions.

        Args:
            *functions: Async callables to try in order
            labels: Optional names for logging, one per function
        """
        if not functions:
            raise ValueError("FallbackChain needs at least one function")
        self.functions = functions
        self.labels = list(labels) if labels else [_label(f) for f in functions]

    async def execute(self, *args: Any, **kwargs: Any) -> T:
        """Return the first successful result.

        Raises:
            The last exception if every function fails
        """
        last_error: Exception | None = None

        for i, func in enumerate(self.functions):
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                last_error = e
                logger.warning(
                    "fallback_attempt_failed",
                    function=self.labels[i],
                    attempt=i + 1,
                    total_functions=len(self.functions),
                    error=str(e),
                )
                continue
            if i > 0:
                logger.info(
                    "fallback_used",
                    function=self.labels[i],
                    attempt=i + 1,
                    total_functions=len(self.functions),
                )
            return result

        logger.warning(
            "fallback_chain_exhausted",
            functions=self.labels,
            final_error=str(last_error),
        )
        raise last_error  # type: ignore[misc]

