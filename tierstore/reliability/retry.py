"""
Retry Policy: Exponential Backoff with Jitter

Implements robust retry strategy for Result-returning storage calls:
- Exponential backoff: 100ms × 2^n
- Full jitter: random(0, backoff) to prevent thundering herd
- Bounded attempts; only transient errors are retried
- Every attempt runs under a request timeout; a timeout is a failure

Adapter calls are idempotent (hot put/get, conditional delete, cold
put-if-absent), so retrying any of them is safe.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tierstore.core import constants as C
from tierstore.core.config import ReliabilityConfig
from tierstore.core.errors import StorageError
from tierstore.core.types import Err, Result

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration."""

    max_retries: int = C.RETRY_MAX_ATTEMPTS
    base_delay_ms: int = C.RETRY_BASE_MS
    max_delay_ms: int = C.RETRY_MAX_DELAY_MS
    exponential_base: float = 2.0
    jitter: bool = True  # Full jitter
    request_timeout_s: float = C.DEFAULT_OPERATION_TIMEOUT_S

    @classmethod
    def default(cls) -> RetryPolicy:
        return cls()

    @classmethod
    def no_retry(cls, request_timeout_s: float = C.DEFAULT_OPERATION_TIMEOUT_S) -> RetryPolicy:
        """Single attempt, still bounded by the request timeout."""
        return cls(max_retries=0, request_timeout_s=request_timeout_s)

    @classmethod
    def from_config(cls, config: ReliabilityConfig, request_timeout_s: float) -> RetryPolicy:
        return cls(
            max_retries=config.retry_max_attempts,
            base_delay_ms=config.retry_base_ms,
            max_delay_ms=config.retry_max_delay_ms,
            request_timeout_s=request_timeout_s,
        )

    def with_timeout(self, request_timeout_s: float) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            exponential_base=self.exponential_base,
            jitter=self.jitter,
            request_timeout_s=request_timeout_s,
        )


def calculate_backoff(
    attempt: int,
    base_delay_ms: int,
    max_delay_ms: int,
    exponential_base: float,
    jitter: bool,
) -> float:
    """
    Calculate backoff delay with optional jitter.

    Full jitter: random(0, min(cap, base * 2^attempt))
    """
    delay = min(max_delay_ms, base_delay_ms * (exponential_base ** attempt))
    if jitter:
        delay = random.uniform(0, delay)
    return delay


def _is_transient(error: object) -> bool:
    return isinstance(error, StorageError) and error.is_transient


async def retry_result(
    func: Callable[[], Awaitable[Result[T, StorageError]]],
    policy: Optional[RetryPolicy] = None,
    operation: str = "storage",
    is_retryable: Callable[[StorageError], bool] = _is_transient,
) -> Result[T, StorageError]:
    """
    Run a Result-returning coroutine with timeout and retry.

    Returns the first Ok, the first non-retryable Err, or the last Err once
    attempts are exhausted. A timed-out attempt becomes StorageError.timeout
    and is retried like any other transient failure.
    """
    if policy is None:
        policy = RetryPolicy.default()

    result: Result[T, StorageError] = Err(StorageError.unavailable(operation))
    for attempt in range(policy.max_retries + 1):
        try:
            result = await asyncio.wait_for(func(), timeout=policy.request_timeout_s)
        except asyncio.TimeoutError as e:
            result = Err(StorageError.timeout(
                operation, int(policy.request_timeout_s * 1000), cause=e
            ))

        if result.is_ok() or not is_retryable(result.error):
            return result

        if attempt < policy.max_retries:
            delay = calculate_backoff(
                attempt=attempt,
                base_delay_ms=policy.base_delay_ms,
                max_delay_ms=policy.max_delay_ms,
                exponential_base=policy.exponential_base,
                jitter=policy.jitter,
            )
            logger.debug(
                f"{operation} attempt {attempt + 1} failed, retrying in {delay:.0f}ms",
                extra={"error": str(result.error)},
            )
            await asyncio.sleep(delay / 1000)

    logger.warning(
        f"{operation} failed after {policy.max_retries + 1} attempts",
        extra={"error": str(result.error)},
    )
    return result
