"""
Migration Throttle: Pacing Batch Work Against Interactive Traffic

Token bucket rate limiting for per-record migrations, so a scan over
millions of aged records cannot starve the hot store's request path.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TokenBucket:
    """
    Token bucket rate limiter.

    Provides smooth rate limiting with burst support.
    """

    __slots__ = ("_capacity", "_rate", "_tokens", "_last_update", "_clock")

    def __init__(
        self,
        rate: float,
        capacity: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            rate: Tokens per second to add
            capacity: Maximum tokens (burst size)
        """
        if rate <= 0 or capacity <= 0:
            raise ValueError("rate and capacity must be > 0")
        self._rate = rate
        self._capacity = capacity
        self._tokens = capacity
        self._clock = clock
        self._last_update = clock()

    def acquire(self, tokens: float = 1.0) -> bool:
        """
        Try to acquire tokens without blocking.

        Returns True if tokens acquired, False otherwise.
        """
        self._refill()

        if self._tokens >= tokens:
            self._tokens -= tokens
            return True
        return False

    def wait_time(self, tokens: float = 1.0) -> float:
        """Seconds until `tokens` become available."""
        self._refill()
        return max(0.0, (tokens - self._tokens) / self._rate)

    async def acquire_async(
        self,
        tokens: float = 1.0,
        timeout: Optional[float] = None,
    ) -> bool:
        """Acquire tokens with async waiting; no deadline when timeout is None."""
        deadline = None if timeout is None else self._clock() + timeout

        while deadline is None or self._clock() < deadline:
            if self.acquire(tokens):
                return True

            wait = self.wait_time(tokens)
            if deadline is not None:
                wait = min(wait, deadline - self._clock())
            if wait > 0:
                await asyncio.sleep(wait)

        return False

    def _refill(self) -> None:
        """Add tokens based on elapsed time."""
        now = self._clock()
        elapsed = now - self._last_update
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._last_update = now

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens


class MigrationThrottle:
    """
    Paces record migrations at `rate` records per second.

    A rate of 0 disables throttling. Waiters are served in arrival order.
    """

    __slots__ = ("_bucket", "_lock")

    def __init__(self, rate: float, burst: Optional[float] = None) -> None:
        self._bucket: Optional[TokenBucket] = None
        if rate > 0:
            self._bucket = TokenBucket(rate=rate, capacity=burst or max(1.0, rate))
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self._bucket is not None

    async def wait(self) -> None:
        if self._bucket is None:
            return
        async with self._lock:
            await self._bucket.acquire_async()


__all__ = ["TokenBucket", "MigrationThrottle"]
