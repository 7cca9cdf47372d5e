"""
Reliability module: Circuit breakers and retry with backoff.
"""

from tierstore.reliability.circuit_breaker import CircuitBreaker, CircuitState
from tierstore.reliability.retry import RetryPolicy, calculate_backoff, retry_result

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "RetryPolicy",
    "calculate_backoff",
    "retry_result",
]
