"""Bounded retry with backoff for connectivity failures."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from ..errors import ConnectivityError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Exponential backoff with jitter, applied to connectivity errors only."""
    attempts: int = 3
    base: float = 0.5
    cap: float = 8.0
    retry_on: Tuple[Type[BaseException], ...] = (ConnectivityError,)

    def delay(self, attempt: int) -> float:
        delay = min(self.cap, self.base * (2 ** attempt))
        return delay * (1 + random.random() * 0.25)


async def with_retry(
    coro_factory: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str = "request"
) -> T:
    """
    Execute ``coro_factory`` until it succeeds or the policy is exhausted.

    Errors outside ``policy.retry_on`` propagate immediately; the last
    retryable error propagates once all attempts are used.
    """
    attempts = max(1, policy.attempts)
    for attempt in range(attempts):
        try:
            return await coro_factory()
        except policy.retry_on as e:
            if attempt == attempts - 1:
                raise
            delay = policy.delay(attempt)
            logger.warning(
                f"Retrying {description} after connectivity error "
                f"(attempt {attempt + 1}/{attempts}, backoff {delay:.2f}s): {e}"
            )
            await asyncio.sleep(delay)
    raise RuntimeError("Unreachable retry state")
