"""
Tiered Record Store

Keeps recently written records in a low-latency hot tier and moves records
past an age threshold to a low-cost cold tier, transparently to callers:
- Unified Access Facade: one read/write/delete API across both tiers
- Tiering Policy: pure age-based Hot/Cold classification
- Migration Engine: crash-safe copy-verify-delete with a persisted cursor
- Adapters: Redis hot tier, S3 or filesystem cold tier, in-memory for tests

Guarantees:
- A record is never absent from both tiers
- Hot is never deleted before its cold copy is verified identical
- A write racing a migration stays hot with the new payload

License: MIT
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from tierstore.core.types import (
    Result,
    Ok,
    Err,
    Timestamp,
    RecordKey,
    Record,
)
from tierstore.core.errors import (
    TierStoreError,
    StorageError,
    RecordError,
    MigrationError,
)
from tierstore.core.config import TierStoreConfig

from tierstore.tiering import TierDecision, TieringPolicy, AgeThresholdPolicy, decide
from tierstore.storage import (
    HotRecordStore,
    ColdRecordStore,
    InMemoryHotStore,
    InMemoryColdStore,
    FileSystemColdStore,
    StorageConfig,
    open_hot_store,
    open_cold_store,
)
from tierstore.migration import (
    MigrationCursor,
    CursorStore,
    MigrationEngine,
    MigrationSettings,
    MigrationScheduler,
    CycleReport,
    RecordOutcome,
    open_cursor_store,
    JobLease,
    open_job_lease,
)
from tierstore.facade import TieredRecordStore

__all__ = [
    "__version__",
    # Core
    "Result",
    "Ok",
    "Err",
    "Timestamp",
    "RecordKey",
    "Record",
    "TierStoreError",
    "StorageError",
    "RecordError",
    "MigrationError",
    "TierStoreConfig",
    # Tiering
    "TierDecision",
    "TieringPolicy",
    "AgeThresholdPolicy",
    "decide",
    # Storage
    "HotRecordStore",
    "ColdRecordStore",
    "InMemoryHotStore",
    "InMemoryColdStore",
    "FileSystemColdStore",
    "StorageConfig",
    "open_hot_store",
    "open_cold_store",
    # Migration
    "MigrationCursor",
    "CursorStore",
    "MigrationEngine",
    "MigrationSettings",
    "MigrationScheduler",
    "CycleReport",
    "RecordOutcome",
    "open_cursor_store",
    "JobLease",
    "open_job_lease",
    # Facade
    "TieredRecordStore",
]
