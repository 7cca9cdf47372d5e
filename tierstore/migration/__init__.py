"""
Migration module: crash-safe hot-to-cold record movement.

Components:
- MigrationEngine: copy-verify-delete cycles over the hot age scan
- MigrationCursor / CursorStore: persisted, resumable scan progress
- MigrationScheduler: periodic background cycles
- JobLease: one cycle per job across processes
- EventSink: structured events for external collectors
"""

from tierstore.migration.cursor import (
    MigrationCursor,
    CursorCodec,
    CursorStore,
    InMemoryCursorStore,
    FileCursorStore,
    PostgresCursorStore,
    create_cursor_store,
    open_cursor_store,
)
from tierstore.migration.events import (
    EventKind,
    MigrationEvent,
    EventSink,
    LoggingEventSink,
    InMemoryEventSink,
    FanOutEventSink,
)
from tierstore.migration.lease import (
    LeaseConfig,
    LeaseHandle,
    JobLease,
    InMemoryJobLease,
    RedisJobLease,
    PostgresJobLease,
    create_job_lease,
    open_job_lease,
)
from tierstore.migration.throttle import TokenBucket, MigrationThrottle
from tierstore.migration.engine import (
    RecordOutcome,
    CycleReport,
    MigrationSettings,
    MigrationEngine,
)
from tierstore.migration.scheduler import MigrationScheduler

__all__ = [
    # Cursor
    "MigrationCursor",
    "CursorCodec",
    "CursorStore",
    "InMemoryCursorStore",
    "FileCursorStore",
    "PostgresCursorStore",
    "create_cursor_store",
    "open_cursor_store",
    # Events
    "EventKind",
    "MigrationEvent",
    "EventSink",
    "LoggingEventSink",
    "InMemoryEventSink",
    "FanOutEventSink",
    # Lease
    "LeaseConfig",
    "LeaseHandle",
    "JobLease",
    "InMemoryJobLease",
    "RedisJobLease",
    "PostgresJobLease",
    "create_job_lease",
    "open_job_lease",
    # Engine
    "TokenBucket",
    "MigrationThrottle",
    "RecordOutcome",
    "CycleReport",
    "MigrationSettings",
    "MigrationEngine",
    "MigrationScheduler",
]
