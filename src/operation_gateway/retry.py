"""Retry with exponential backoff for transient dependency failures."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from .errors import RemoteRejection, TransportFailure
from .metrics import GatewayMetrics


logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_EXCEPTIONS = (
    TransportFailure,
    httpx.TransportError,
    httpx.TimeoutException,
    TimeoutError,
    ConnectionError,
)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, RemoteRejection):
        return exc.retryable
    return isinstance(exc, RETRYABLE_EXCEPTIONS)


@dataclass
class RetryPolicy:
    """Retry settings.

    Args:
        max_attempts: Total attempts, including the first one
        base_delay: Seconds before the first retry; doubles on each attempt
        max_delay: Upper bound for any single delay
        jitter: Extra random fraction of the delay (0.2 adds up to 20%)
        metrics: Optional collector counting each retry by failure type
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.2
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)
    metrics: Optional[GatewayMetrics] = field(default=None, repr=False)

    def delay_for(self, attempt: int, exc: Optional[BaseException] = None) -> float:
        delay = self.base_delay * (2 ** (attempt - 1))
        delay += delay * random.uniform(0, self.jitter)
        if isinstance(exc, RemoteRejection) and exc.retry_after is not None:
            delay = max(delay, exc.retry_after)
        return min(delay, self.max_delay)

    async def run(self, fn: Callable[[], Awaitable[T]], description: str = "call") -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await fn()
            except Exception as exc:
                if not is_retryable(exc) or attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt, exc)
                logger.warning(
                    "%s failed (attempt %s/%s): %s. Retrying in %.2fs",
                    description,
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                )
                if self.metrics is not None:
                    self.metrics.record_retry(type(exc).__name__)
                await self.sleep(delay)
