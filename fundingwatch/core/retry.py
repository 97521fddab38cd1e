"""Bounded retry with doubling backoff around a single upstream fetch."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from fundingwatch.core.types import FetchResult
from fundingwatch.core.upstream import UpstreamAdapter

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, initial_backoff: float) -> float:
    """Delay before 1-based ``attempt``: none before the first, then doubling."""

    if attempt < 2:
        return 0.0
    return initial_backoff * 2 ** (attempt - 2)


async def fetch_with_retry(
    adapter: UpstreamAdapter,
    resource: str,
    params: Mapping[str, Any] | None,
    max_attempts: int,
    initial_backoff: float,
    sleep: Sleep = asyncio.sleep,
) -> FetchResult:
    """Call the adapter until success, a terminal failure, or the attempt budget runs out.

    Only network failures and HTTP 5xx are retried. The last result is returned
    either way; exhaustion is reported through ``succeeded=False``.
    """

    attempts = max(1, max_attempts)
    result = await adapter.fetch(resource, params)

    for attempt in range(2, attempts + 1):
        if not result.is_transient:
            return result

        delay = backoff_delay(attempt, initial_backoff)
        if delay > 0:
            logger.info(
                "upstream_retry",
                extra={
                    "resource": resource,
                    "attempt": attempt,
                    "delay_s": delay,
                    "previous_status": result.http_status,
                },
            )
            await sleep(delay)

        result = await adapter.fetch(resource, params)

    if not result.is_transient:
        return result

    logger.warning(
        "upstream_exhausted",
        extra={
            "resource": resource,
            "attempts": attempts,
            "status": result.http_status,
            "stage": result.error,
        },
    )
    return result
