"""Retry policy shared by the upload client."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def fixed_delay(seconds: float) -> Callable[[int], float]:
    """Return a delay function that always waits the same time."""
    return lambda _attempt: seconds


def exponential_delay(base: float, cap: float) -> Callable[[int], float]:
    """Return ``min(base * 2**n, cap)`` for the n-th retry, counting from 0."""
    return lambda attempt: min(base * 2**attempt, cap)


def _always(_exc: Exception) -> bool:
    return True


@dataclass
class RetryPolicy:
    """Runs an operation up to ``max_attempts`` times.

    ``delay(n)`` gives the pause before retry ``n`` (0-based). Errors for
    which ``is_retryable`` returns false are raised immediately.
    """

    max_attempts: int
    delay: Callable[[int], float]
    is_retryable: Callable[[Exception], bool] = _always
    sleep: Sleep = field(default=asyncio.sleep)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: Callable[[int, Exception], None] | None = None,
    ) -> T:
        """Await ``operation`` until it succeeds or retries are exhausted."""
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                attempt += 1
                if attempt >= self.max_attempts or not self.is_retryable(exc):
                    raise
                logger.warning(
                    "Attempt %d/%d failed: %s", attempt, self.max_attempts, exc
                )
                await self.sleep(self.delay(attempt - 1))
                if on_retry is not None:
                    on_retry(attempt, exc)
