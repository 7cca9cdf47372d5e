"""
Circuit Breaker: Fault Tolerance for the Cold Tier

Implements Hystrix-style circuit breaker:
- CLOSED: Normal operation, requests flow through
- OPEN: Failure threshold exceeded, requests fail fast
- HALF_OPEN: Testing recovery, limited requests allowed

Wraps Result-returning calls: an Err result counts as a failure, an Ok
result (including "not found") as a success. Prevents a degraded cold
tier from tying up request handlers on seconds-long timeouts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Awaitable, Callable, Optional, TypeVar, Union

from tierstore.core.config import ReliabilityConfig
from tierstore.core.errors import ReliabilityError
from tierstore.core.types import Err, Result

logger = logging.getLogger(__name__)

T = TypeVar("T")
E = TypeVar("E")


class CircuitState(Enum):
    """Circuit breaker state."""
    CLOSED = auto()     # Normal operation
    OPEN = auto()       # Failing fast
    HALF_OPEN = auto()  # Testing recovery


@dataclass
class CircuitStats:
    """Circuit breaker statistics."""
    state: CircuitState
    failures: int
    successes: int
    consecutive_failures: int
    last_failure_time: Optional[float]
    last_state_change: float
    total_requests: int
    rejected_requests: int


class CircuitBreaker:
    """
    Circuit breaker with configurable thresholds.

    Usage:
        breaker = CircuitBreaker("cold-store")
        result = await breaker.call(lambda: cold.get(record_id))
    """

    __slots__ = (
        "_name", "_failure_threshold", "_success_threshold",
        "_timeout_seconds", "_state", "_failures", "_successes",
        "_consecutive_failures", "_last_failure_time",
        "_last_state_change", "_lock", "_total_requests",
        "_rejected_requests", "_clock",
    )

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        timeout_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            name: Identifier for logging
            failure_threshold: Consecutive failures before opening circuit
            success_threshold: Successes in half-open to close
            timeout_seconds: Time before testing recovery
            clock: Monotonic seconds source
        """
        self._name = name
        self._failure_threshold = failure_threshold
        self._success_threshold = success_threshold
        self._timeout_seconds = timeout_seconds
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._consecutive_failures = 0
        self._last_failure_time: Optional[float] = None
        self._last_state_change = clock()
        self._total_requests = 0
        self._rejected_requests = 0
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, name: str, config: ReliabilityConfig) -> CircuitBreaker:
        return cls(
            name,
            failure_threshold=config.breaker_failure_threshold,
            success_threshold=config.breaker_success_threshold,
            timeout_seconds=config.breaker_reset_s,
        )

    async def call(
        self,
        func: Callable[[], Awaitable[Result[T, E]]],
    ) -> Result[T, Union[E, ReliabilityError]]:
        """
        Execute a Result-returning coroutine through the breaker.

        Returns:
            The call's own Result, or Err(ReliabilityError) when OPEN
        """
        async with self._lock:
            self._total_requests += 1
            self._check_state_transition()

            if self._state == CircuitState.OPEN:
                self._rejected_requests += 1
                logger.warning(f"Circuit '{self._name}' is OPEN, rejecting request")
                return Err(ReliabilityError.circuit_open(
                    circuit_name=self._name,
                    failure_count=self._consecutive_failures,
                    retry_after_seconds=int(self._time_until_half_open()),
                ))

        # Execute outside lock
        try:
            result = await func()
        except Exception:
            await self._on_failure()
            raise

        if result.is_ok():
            await self._on_success()
        else:
            await self._on_failure()
        return result

    async def _on_success(self) -> None:
        async with self._lock:
            self._successes += 1
            self._consecutive_failures = 0

            if self._state == CircuitState.HALF_OPEN:
                if self._successes >= self._success_threshold:
                    self._transition_to(CircuitState.CLOSED)

    async def _on_failure(self) -> None:
        async with self._lock:
            self._failures += 1
            self._consecutive_failures += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                # Single failure in half-open reopens
                self._transition_to(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED:
                if self._consecutive_failures >= self._failure_threshold:
                    self._transition_to(CircuitState.OPEN)

    def _check_state_transition(self) -> None:
        if self._state == CircuitState.OPEN:
            if self._time_until_half_open() <= 0:
                self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._last_state_change = self._clock()

        if new_state == CircuitState.CLOSED:
            self._failures = 0
            self._consecutive_failures = 0
            self._successes = 0
        elif new_state == CircuitState.HALF_OPEN:
            self._successes = 0

        logger.info(f"Circuit '{self._name}': {old_state.name} -> {new_state.name}")

    def _time_until_half_open(self) -> float:
        if self._last_failure_time is None:
            return 0
        elapsed = self._clock() - self._last_failure_time
        return max(0, self._timeout_seconds - elapsed)

    def force_open(self) -> None:
        """Manually open circuit."""
        self._last_failure_time = self._clock()
        self._transition_to(CircuitState.OPEN)

    def force_close(self) -> None:
        """Manually close circuit."""
        self._transition_to(CircuitState.CLOSED)

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def stats(self) -> CircuitStats:
        return CircuitStats(
            state=self._state,
            failures=self._failures,
            successes=self._successes,
            consecutive_failures=self._consecutive_failures,
            last_failure_time=self._last_failure_time,
            last_state_change=self._last_state_change,
            total_requests=self._total_requests,
            rejected_requests=self._rejected_requests,
        )
