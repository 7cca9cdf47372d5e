"""
Tiering Policy: Age-Based Tier Classification

Maps a record's write timestamp to the tier it belongs in.

Properties:
    - Pure and total: no I/O, no side effects, defined for every input
    - Monotonic: once a record is old enough to be COLD it stays COLD for
      every later `now`, so migrated records never need re-checking
    - Derived, never stored: changing the threshold only changes future
      scan selection and never requires rewriting data
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta
from enum import Enum, auto

from tierstore.core import constants as C
from tierstore.core.types import Timestamp


class TierDecision(Enum):
    """Storage tier for a record."""
    HOT = auto()   # Low-latency, high-cost
    COLD = auto()  # High-latency, low-cost

    @property
    def access_latency_hint(self) -> str:
        """Expected access latency."""
        return {
            TierDecision.HOT: "<10ms",
            TierDecision.COLD: "<10s",
        }[self]


def _threshold_nanos(age_threshold: timedelta) -> int:
    return (
        (age_threshold.days * 86_400 + age_threshold.seconds) * C.NS_PER_S
        + age_threshold.microseconds * 1_000
    )


def decide(written_at: Timestamp, now: Timestamp, age_threshold: timedelta) -> TierDecision:
    """COLD iff now - written_at >= age_threshold."""
    if now - written_at >= _threshold_nanos(age_threshold):
        return TierDecision.COLD
    return TierDecision.HOT


class TieringPolicy(ABC):
    """
    Pluggable tier classification.

    Implementations must be pure and monotonic in `now`. `cutoff` gives the
    newest write timestamp that classifies as COLD at `now`, which lets the
    hot store pre-filter its age scan.
    """

    @abstractmethod
    def decide(self, written_at: Timestamp, now: Timestamp) -> TierDecision:
        ...

    @abstractmethod
    def cutoff(self, now: Timestamp) -> Timestamp:
        ...


class AgeThresholdPolicy(TieringPolicy):
    """Records at least `age_threshold` old belong to the cold tier."""

    __slots__ = ("_age_threshold", "_threshold_nanos")

    def __init__(self, age_threshold: timedelta) -> None:
        if age_threshold <= timedelta(0):
            raise ValueError(f"age_threshold must be positive, got {age_threshold}")
        self._age_threshold = age_threshold
        self._threshold_nanos = _threshold_nanos(age_threshold)

    @property
    def age_threshold(self) -> timedelta:
        return self._age_threshold

    def decide(self, written_at: Timestamp, now: Timestamp) -> TierDecision:
        return decide(written_at, now, self._age_threshold)

    def cutoff(self, now: Timestamp) -> Timestamp:
        return Timestamp(nanos=now.nanos - self._threshold_nanos)

    def __repr__(self) -> str:
        return f"AgeThresholdPolicy(age_threshold={self._age_threshold!r})"


__all__ = ["TierDecision", "decide", "TieringPolicy", "AgeThresholdPolicy"]
