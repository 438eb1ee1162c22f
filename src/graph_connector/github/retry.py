"""Rate-limit-aware retry for upstream GitHub reads.

Only RateLimitExceeded is retried. The wait is exactly the duration the
server asked for (zero or negative means retry immediately), and the number
of retries is bounded by a RetryBudget owned by one top-level call.

Built on tenacity.AsyncRetrying: the budget drives the stop condition, the
exception's retry_after drives the wait, and the sleep is asyncio.sleep so
a rate-limit pause never blocks other work on the event loop.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
)

from graph_connector.github.client import RateLimitExceeded
from graph_connector.metrics import rate_limit_retries_total

logger = logging.getLogger("graph_connector.github.retry")

T = TypeVar("T")

__all__ = ["RetryBudget", "fetch_with_retry"]


@dataclass
class RetryBudget:
    """Remaining rate-limit retries for one fetch call chain."""

    remaining: int

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    def consume(self) -> None:
        """Spend one retry."""
        if self.exhausted:
            raise RuntimeError("Retry budget already exhausted")
        self.remaining -= 1


def _server_wait(retry_state: RetryCallState) -> float:
    """Wait exactly as long as the rate-limited response asked."""
    exception = retry_state.outcome.exception()
    return max(0.0, float(getattr(exception, "retry_after", 0.0)))


async def fetch_with_retry(
    request_fn: Callable[[], Awaitable[T]],
    max_retries: int,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    source: str = "github",
) -> T:
    """Invoke ``request_fn``, retrying on rate limits up to ``max_retries`` times.

    Args:
        request_fn: Zero-argument coroutine function performing one read
        max_retries: Retry budget; ``max_retries + 1`` attempts at most
        sleep: Async sleep function (injectable for tests)
        source: Upstream name used in logs and metrics

    Returns:
        Whatever ``request_fn`` returns on its first non-rate-limited attempt

    Raises:
        RateLimitExceeded: The last rate-limit error, once the budget is spent
        Exception: Any other error from ``request_fn``, without retry
    """
    budget = RetryBudget(remaining=max_retries)

    def _budget_spent(retry_state: RetryCallState) -> bool:
        return budget.exhausted

    def _before_sleep(retry_state: RetryCallState) -> None:
        budget.consume()
        rate_limit_retries_total.labels(source=source).inc()
        exception = retry_state.outcome.exception()
        logger.warning(
            "Rate limit exceeded - waiting for %.1f seconds. %d retries remaining.",
            retry_state.next_action.sleep,
            budget.remaining,
            extra={
                "attempt": retry_state.attempt_number,
                "source": source,
                "reset_at": exception.reset_at.isoformat(),
            },
        )

    retrying = AsyncRetrying(
        stop=_budget_spent,
        wait=_server_wait,
        retry=retry_if_exception_type(RateLimitExceeded),
        before_sleep=_before_sleep,
        sleep=sleep,
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            return await request_fn()
