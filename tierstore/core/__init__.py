"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions for the tiered store:
- Result/Either monads for zero-exception control flow
- Record data model shared by both tiers
- Exhaustive error hierarchy with pattern matching support
- Configuration management with validation
"""

from tierstore.core.types import (
    Result,
    Ok,
    Err,
    Timestamp,
    Clock,
    ContentHash,
    RecordKey,
    Record,
    ScanPosition,
)
from tierstore.core.errors import (
    ErrorCode,
    TierStoreError,
    StorageError,
    RecordError,
    MigrationError,
    ReliabilityError,
)
from tierstore.core.config import TierStoreConfig

__all__ = [
    "Result",
    "Ok",
    "Err",
    "Timestamp",
    "Clock",
    "ContentHash",
    "RecordKey",
    "Record",
    "ScanPosition",
    "ErrorCode",
    "TierStoreError",
    "StorageError",
    "RecordError",
    "MigrationError",
    "ReliabilityError",
    "TierStoreConfig",
]
