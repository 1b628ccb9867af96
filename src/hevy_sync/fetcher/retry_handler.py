"""Retry policy with exponential backoff and jitter."""

import asyncio
import random
from typing import Awaitable, Callable, Optional

from hevy_sync.models.errors import SyncError


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    jitter: Optional[float] = None
) -> float:
    """
    Calculate exponential backoff delay with multiplicative jitter.

    Formula: min(max_delay, base_delay * (2 ** attempt)) * jitter, jitter in [0.5, 1.0]

    Args:
        attempt: Retry attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay cap in seconds
        jitter: Fixed jitter factor; drawn uniformly from [0.5, 1.0] when None

    Returns:
        Delay in seconds
    """
    if jitter is None:
        jitter = random.uniform(0.5, 1.0)
    return min(base_delay * (2 ** attempt), max_delay) * jitter


class RetryPolicy:
    """
    Decides which failures are retried and how long to wait in between.

    Retries on: transport failures and 408, 429, 500, 502, 503, 504
    Never retries: 401 and any other 4xx
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize retry policy.

        Args:
            max_retries: Retries after the first attempt
            base_delay: Base delay for exponential backoff
            max_delay: Maximum delay cap
            sleeper: Async sleep function (default: asyncio.sleep)
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleeper

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, SyncError) and error.retryable

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        return attempt < self.max_retries and self.is_retryable(error)

    def delay_for(self, attempt: int) -> float:
        return calculate_backoff_delay(attempt, self.base_delay, self.max_delay)

    async def backoff(self, attempt: int) -> float:
        delay = self.delay_for(attempt)
        await self._sleep(delay)
        return delay

