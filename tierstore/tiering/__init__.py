"""
Tiering module: pure tier classification policies.
"""

from tierstore.tiering.policy import (
    TierDecision,
    TieringPolicy,
    AgeThresholdPolicy,
    decide,
)

__all__ = [
    "TierDecision",
    "TieringPolicy",
    "AgeThresholdPolicy",
    "decide",
]
