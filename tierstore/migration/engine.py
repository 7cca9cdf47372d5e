"""
Migration Engine: Crash-Safe Hot-to-Cold Record Migration

Moves exactly the records the tiering policy selects from the hot tier to
the cold tier, once each, with no window in which a record is unreadable.

Per-record protocol (copy-verify-delete):
    a. Read the full record from hot; a vanished record is skipped
    b. Idempotent put to cold (same record always yields the same state)
    c. Read the cold copy back and compare size, SHA-256 and written_at
    d. Re-read hot, then conditionally delete it: the delete only applies
       if hot still holds exactly the copy that was verified

Crash safety:
    Hot is never deleted before its cold copy is confirmed identical, and
    the conditional delete makes the final step atomic against concurrent
    writers. A crash at any step leaves the record fully in hot, or fully
    in cold, or identical in both (resolved by the next cycle).

Cursor:
    The persisted position advances only through the contiguous prefix of
    records that reached a final outcome, so a resumed cycle never skips a
    record that still needs migrating. It is saved as soon as that prefix
    grows, record by record. The in-memory scan position always moves
    forward so a cycle terminates even when records fail.

Concurrency:
    Records of one page are migrated concurrently, bounded by a semaphore;
    steps for the same record never interleave. No lock is shared with the
    request path: the protocol tolerates races instead of preventing them.
    Cycles of one job are serialized across processes by a job lease; a
    second holder would take the first one's hot deletes for a caller's
    and discard the only cold copy.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from tierstore.core import constants as C
from tierstore.core.config import TierStoreConfig
from tierstore.core.errors import ErrorCode, MigrationError, StorageError, TierStoreError
from tierstore.core.types import Clock, Err, Ok, Record, Result, Timestamp
from tierstore.migration.cursor import CursorStore, MigrationCursor
from tierstore.migration.events import EventKind, EventSink, LoggingEventSink, MigrationEvent
from tierstore.migration.lease import InMemoryJobLease, JobLease, LeaseHandle
from tierstore.migration.throttle import MigrationThrottle
from tierstore.observability.logging import StructuredLogger
from tierstore.reliability.retry import RetryPolicy, retry_result
from tierstore.storage.protocols import (
    ColdPutOutcome,
    ColdRecordStore,
    DeleteOutcome,
    HotRecordStore,
)
from tierstore.tiering.policy import TierDecision, TieringPolicy

logger = logging.getLogger(__name__)
slog = StructuredLogger(__name__)

T = TypeVar("T")


# =============================================================================
# OUTCOMES AND REPORTS
# =============================================================================
class RecordOutcome(Enum):
    """Outcome of one record's migration attempt."""
    MIGRATED = "migrated"                        # In cold, removed from hot
    VANISHED = "vanished"                        # Gone from hot before migration finished
    STALE = "stale"                              # Rewritten during migration; stays hot
    FAILED = "failed"                            # Transient failure; retried next cycle
    VERIFICATION_FAILED = "verification_failed"  # Cold copy not trusted; stays hot
    SKIPPED_HOT = "skipped_hot"                  # Policy still classifies it HOT

    @property
    def is_final(self) -> bool:
        """True when the record needs no further work this scan."""
        return self in (RecordOutcome.MIGRATED, RecordOutcome.VANISHED)


@dataclass
class CycleReport:
    """Summary of one migration cycle."""
    cycle_id: str
    job_id: str
    started_at: Timestamp
    finished_at: Optional[Timestamp] = None
    resumed: bool = False
    pages: int = 0
    scanned: int = 0
    migrated: int = 0
    vanished: int = 0
    stale: int = 0
    failed: int = 0
    skipped: int = 0
    verification_failures: list[str] = field(default_factory=list)
    completed: bool = False
    cursor: Optional[MigrationCursor] = None
    mutations: int = 0

    def count(self, outcome: RecordOutcome) -> None:
        if outcome is RecordOutcome.MIGRATED:
            self.migrated += 1
        elif outcome is RecordOutcome.VANISHED:
            self.vanished += 1
        elif outcome is RecordOutcome.STALE:
            self.stale += 1
        elif outcome is RecordOutcome.FAILED:
            self.failed += 1
        elif outcome is RecordOutcome.SKIPPED_HOT:
            self.skipped += 1

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at) / C.NS_PER_S

    def to_dict(self) -> dict[str, Any]:
        return {"cycle_id": self.cycle_id, "job_id": self.job_id, **self.counters()}

    def counters(self) -> dict[str, Any]:
        return {
            "resumed": self.resumed,
            "pages": self.pages,
            "scanned": self.scanned,
            "migrated": self.migrated,
            "vanished": self.vanished,
            "stale": self.stale,
            "failed": self.failed,
            "skipped": self.skipped,
            "verification_failures": list(self.verification_failures),
            "completed": self.completed,
            "mutations": self.mutations,
            "duration_seconds": self.duration_seconds,
        }


@dataclass(frozen=True)
class MigrationSettings:
    """Engine tuning knobs."""
    job_id: str = C.DEFAULT_JOB_ID
    page_size: int = C.DEFAULT_SCAN_PAGE_SIZE
    parallelism: int = C.DEFAULT_MIGRATION_PARALLELISM
    rate_limit: float = 0.0
    verify_timeout_s: float = C.DEFAULT_VERIFY_TIMEOUT_S
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy.default)

    def __post_init__(self) -> None:
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")
        if self.parallelism < 1:
            raise ValueError("parallelism must be >= 1")

    @classmethod
    def from_config(cls, config: TierStoreConfig) -> MigrationSettings:
        tiering = config.tiering
        return cls(
            job_id=tiering.job_id,
            page_size=tiering.scan_page_size,
            parallelism=tiering.migration_parallelism,
            rate_limit=tiering.migration_rate_limit,
            verify_timeout_s=tiering.verify_timeout_s,
            retry_policy=RetryPolicy.from_config(
                config.reliability, tiering.operation_timeout_s
            ),
        )


class _PageProgress:
    """
    Persists the cursor as the contiguous prefix of final outcomes grows.

    Records finish out of scan order; a record's advance is saved once every
    earlier record of the page has a final outcome. The first save failure
    stops further saves and is reported at the end of the page.
    """

    __slots__ = ("cursor", "pinned", "error", "_records", "_outcomes", "_next", "_lock", "_save")

    def __init__(
        self,
        cursor: MigrationCursor,
        pinned: bool,
        records: Sequence[Record],
        save: Callable[[MigrationCursor], Awaitable[Result[None, TierStoreError]]],
    ) -> None:
        self.cursor = cursor
        self.pinned = pinned
        self.error: Optional[TierStoreError] = None
        self._records = records
        self._outcomes: list[Optional[RecordOutcome]] = [None] * len(records)
        self._next = 0
        self._lock = asyncio.Lock()
        self._save = save

    async def record_done(self, index: int, outcome: RecordOutcome) -> None:
        async with self._lock:
            self._outcomes[index] = outcome
            advanced = False
            while not self.pinned and self._next < len(self._outcomes):
                done = self._outcomes[self._next]
                if done is None:
                    break
                if not done.is_final:
                    self.pinned = True
                    break
                migrated = 1 if done is RecordOutcome.MIGRATED else 0
                self.cursor = self.cursor.advance(
                    self._records[self._next].position, migrated=migrated
                )
                self._next += 1
                advanced = True

            if advanced and self.error is None:
                saved = await self._save(self.cursor)
                if saved.is_err():
                    self.error = saved.error


# =============================================================================
# MIGRATION ENGINE
# =============================================================================
class MigrationEngine:
    """
    Runs migration cycles for one job.

    The engine is the only writer of the job's cursor. A second run_cycle
    on the same engine while one is in progress is rejected, and so is a
    cycle while the job lease is held anywhere else. Without an explicit
    lease the process-wide in-memory lease is used.

    Usage:
        engine = MigrationEngine(hot, cold, AgeThresholdPolicy(timedelta(days=90)),
                                 FileCursorStore(Path("./cursors")))
        report = (await engine.run_cycle()).unwrap()
    """

    __slots__ = (
        "_hot", "_cold", "_policy", "_cursor_store", "_settings",
        "_events", "_clock", "_throttle", "_running", "_stop_requested",
        "_lease", "_lease_handle",
    )

    def __init__(
        self,
        hot: HotRecordStore,
        cold: ColdRecordStore,
        policy: TieringPolicy,
        cursor_store: CursorStore,
        settings: Optional[MigrationSettings] = None,
        events: Optional[EventSink] = None,
        clock: Clock = Timestamp.now,
        lease: Optional[JobLease] = None,
    ) -> None:
        self._hot = hot
        self._cold = cold
        self._policy = policy
        self._cursor_store = cursor_store
        self._settings = settings or MigrationSettings()
        self._events = events or LoggingEventSink()
        self._clock = clock
        self._throttle = MigrationThrottle(self._settings.rate_limit)
        self._running = False
        self._stop_requested = False
        self._lease = lease or InMemoryJobLease()
        self._lease_handle: Optional[LeaseHandle] = None

    @property
    def job_id(self) -> str:
        return self._settings.job_id

    @property
    def cycle_in_progress(self) -> bool:
        return self._running

    def request_stop(self) -> None:
        """Stop the running cycle after its current page."""
        self._stop_requested = True

    async def close(self) -> None:
        """Close the lease, both adapters and the cursor store."""
        await self._lease.close()
        await self._hot.close()
        await self._cold.close()
        await self._cursor_store.close()

    # -------------------------------------------------------------------------
    # HELPERS
    # -------------------------------------------------------------------------

    def _emit(
        self,
        kind: EventKind,
        cycle_id: str,
        storage_key: Optional[str] = None,
        error: Optional[TierStoreError] = None,
        **details: Any,
    ) -> None:
        self._events.emit(MigrationEvent(
            kind=kind,
            job_id=self.job_id,
            cycle_id=cycle_id,
            timestamp=self._clock(),
            storage_key=storage_key,
            error=error,
            details=details,
        ))

    async def _call(
        self,
        func: Callable[[], Awaitable[Result[T, StorageError]]],
        operation: str,
        policy: Optional[RetryPolicy] = None,
    ) -> Result[T, StorageError]:
        return await retry_result(func, policy or self._settings.retry_policy, operation)

    def _holds_lease(self) -> bool:
        """False once the running cycle's lease is lost; True outside a cycle."""
        return self._lease_handle is None or self._lease_handle.is_held

    # -------------------------------------------------------------------------
    # CYCLE
    # -------------------------------------------------------------------------

    async def run_cycle(
        self,
        cursor: Optional[MigrationCursor] = None,
    ) -> Result[CycleReport, TierStoreError]:
        """
        Run one migration cycle.

        Args:
            cursor: Explicit starting cursor; loaded from the cursor store
                when None.

        Returns:
            Ok(report) when the cycle completed or was stopped on request,
            Err when the scan or cursor persistence failed (progress made so
            far stays persisted), another cycle of the job is running here
            or elsewhere, or the job lease was lost mid-cycle.
        """
        if self._running:
            return Err(MigrationError.cycle_in_progress(self.job_id))
        self._running = True
        self._stop_requested = False
        try:
            acquired = await self._lease.try_acquire(self.job_id, on_lost=self.request_stop)
            if acquired.is_err():
                slog.warning("Migration cycle not started", job_id=self.job_id,
                             error=str(acquired.error))
                return acquired
            self._lease_handle = acquired.unwrap()
            try:
                return await self._run(cursor)
            finally:
                handle, self._lease_handle = self._lease_handle, None
                released = await self._lease.release(handle)
                if released.is_err():
                    # The TTL frees it; the next cycle waits at most that long.
                    logger.warning(f"Could not release job lease: {released.error}")
        finally:
            self._running = False

    async def _load_cursor(self) -> Result[Optional[MigrationCursor], TierStoreError]:
        loaded = await self._call(
            lambda: self._cursor_store.load(self.job_id), "cursor.load"
        )
        if loaded.is_ok():
            return loaded

        error = loaded.error
        if error.code is not ErrorCode.MIGRATION_CURSOR_CORRUPTION:
            return loaded

        self._emit(EventKind.CURSOR_CORRUPTED, cycle_id="", error=error)
        slog.warning("Discarding corrupt cursor, rescanning from the beginning",
                     job_id=self.job_id, error=str(error))
        cleared = await self._call(lambda: self._cursor_store.clear(self.job_id), "cursor.clear")
        if cleared.is_err():
            # The first save of the new cycle overwrites it anyway.
            logger.warning(f"Could not clear corrupt cursor: {cleared.error}")
        return Ok(None)

    async def _save_cursor(self, cursor: MigrationCursor) -> Result[None, TierStoreError]:
        # A lost lease means another holder may own the job's cursor now.
        if not self._holds_lease():
            return Err(MigrationError.lease_lost(self.job_id))
        return await self._call(lambda: self._cursor_store.save(cursor), "cursor.save")

    async def _run(
        self,
        cursor: Optional[MigrationCursor],
    ) -> Result[CycleReport, TierStoreError]:
        now = self._clock()

        if cursor is None:
            loaded = await self._load_cursor()
            if loaded.is_err():
                return loaded
            cursor = loaded.unwrap()

        resumed = cursor is not None
        if cursor is None:
            cursor = MigrationCursor.start(self.job_id, now)
        saved = await self._save_cursor(cursor)
        if saved.is_err():
            return saved

        report = CycleReport(
            cycle_id=cursor.cycle_id,
            job_id=self.job_id,
            started_at=now,
            resumed=resumed,
            cursor=cursor,
        )
        cutoff = self._policy.cutoff(now)

        with StructuredLogger.context(job_id=self.job_id, cycle_id=cursor.cycle_id):
            self._emit(
                EventKind.CYCLE_STARTED, cursor.cycle_id,
                resumed=resumed, cutoff_nanos=cutoff.nanos,
            )
            result = await self._scan(cursor, now, cutoff, report)
            report.finished_at = self._clock()
            if result.is_ok() and not self._holds_lease():
                result = Err(MigrationError.lease_lost(self.job_id))

            if result.is_err():
                self._emit(EventKind.CYCLE_FAILED, cursor.cycle_id,
                           error=result.error, **report.counters())
                return result

            if report.completed:
                cleared = await self._call(
                    lambda: self._cursor_store.clear(self.job_id), "cursor.clear"
                )
                if cleared.is_err():
                    # A stale cursor only narrows the next scan's start; the
                    # cycle after that starts fresh.
                    logger.warning(f"Could not reset cursor: {cleared.error}")
                self._emit(EventKind.CYCLE_COMPLETED, cursor.cycle_id, **report.counters())
            else:
                self._emit(EventKind.CYCLE_STOPPED, cursor.cycle_id, **report.counters())

            slog.info("Migration cycle finished", **report.to_dict())
        return Ok(report)

    async def _scan(
        self,
        cursor: MigrationCursor,
        now: Timestamp,
        cutoff: Timestamp,
        report: CycleReport,
    ) -> Result[None, TierStoreError]:
        position = cursor.last_processed
        pinned = False

        while True:
            if not self._holds_lease():
                return Err(MigrationError.lease_lost(self.job_id))
            if self._stop_requested:
                return Ok(None)

            page_result = await self._call(
                lambda: self._hot.scan_older_than(cutoff, position, self._settings.page_size),
                "hot.scan",
            )
            if page_result.is_err():
                return page_result
            page = page_result.unwrap()
            report.pages += 1

            if not page.records:
                report.completed = True
                return Ok(None)

            report.scanned += len(page.records)
            progress = _PageProgress(cursor, pinned, page.records, self._save_cursor)
            outcomes = await self._migrate_page(
                page.records, now, cursor.cycle_id, report, progress
            )
            cursor, pinned = progress.cursor, progress.pinned
            report.cursor = cursor
            if progress.error is not None:
                return Err(progress.error)

            failures = 0
            for outcome in outcomes:
                report.count(outcome)
                if outcome in (RecordOutcome.FAILED, RecordOutcome.VERIFICATION_FAILED):
                    failures += 1
            if failures:
                cursor = cursor.with_failures(failures)
                saved = await self._save_cursor(cursor)
                if saved.is_err():
                    return saved
                report.cursor = cursor

            position = page.records[-1].position
            if page.next_position is None:
                report.completed = True
                return Ok(None)

    async def _migrate_page(
        self,
        records: Sequence[Record],
        now: Timestamp,
        cycle_id: str,
        report: CycleReport,
        progress: _PageProgress,
    ) -> list[RecordOutcome]:
        semaphore = asyncio.Semaphore(self._settings.parallelism)

        async def migrate_one(index: int, record: Record) -> RecordOutcome:
            async with semaphore:
                await self._throttle.wait()
                outcome = await self.migrate_record(record, now, cycle_id, report)
            await progress.record_done(index, outcome)
            return outcome

        tasks = [asyncio.create_task(migrate_one(i, r)) for i, r in enumerate(records)]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            # An escaping exception ends the cycle; no record keeps running.
            for task in tasks:
                task.cancel()
            raise

    # -------------------------------------------------------------------------
    # PER-RECORD PROTOCOL
    # -------------------------------------------------------------------------

    async def migrate_record(
        self,
        candidate: Record,
        now: Timestamp,
        cycle_id: str = "",
        report: Optional[CycleReport] = None,
    ) -> RecordOutcome:
        """Copy-verify-delete for one record returned by the age scan."""
        storage_key = candidate.key.storage_key
        record_id, partition_key = candidate.record_id, candidate.partition_key

        if self._policy.decide(candidate.written_at, now) is TierDecision.HOT:
            return RecordOutcome.SKIPPED_HOT

        # a. Read the full record from hot
        read = await self._call(lambda: self._hot.get(record_id, partition_key), "hot.get")
        if read.is_err():
            self._emit(EventKind.RECORD_FAILED, cycle_id, storage_key, read.error, step="read")
            return RecordOutcome.FAILED
        record = read.unwrap()
        if record is None:
            self._emit(EventKind.RECORD_VANISHED, cycle_id, storage_key, step="read")
            return RecordOutcome.VANISHED
        if self._policy.decide(record.written_at, now) is TierDecision.HOT:
            self._emit(EventKind.RECORD_STALE, cycle_id, storage_key, step="read")
            return RecordOutcome.STALE

        # b. Idempotent put to cold
        put = await self._put_cold(record, report)
        if put.is_err():
            error = put.error
            if isinstance(error, MigrationError):
                return self._verification_failed(cycle_id, storage_key, error, report)
            self._emit(EventKind.RECORD_FAILED, cycle_id, storage_key, error, step="copy")
            return RecordOutcome.FAILED

        # c. Verify the cold copy
        verified = await self._verify(record)
        if verified.is_err():
            if not self._holds_lease():
                # The copy may be good and, after another holder's delete, the only one.
                return self._lease_lost_for(cycle_id, storage_key, "verify")
            await self._discard_cold(record_id, cycle_id, storage_key, report)
            # A caller's delete may have removed both tiers; that is not a fault.
            gone = await self._call(lambda: self._hot.get(record_id, partition_key), "hot.get")
            if gone.is_ok() and gone.unwrap() is None:
                self._emit(EventKind.RECORD_VANISHED, cycle_id, storage_key, step="verify")
                return RecordOutcome.VANISHED
            return self._verification_failed(cycle_id, storage_key, verified.error, report)

        # d. Re-check hot, then delete only the exact copy that was verified
        recheck = await self._call(lambda: self._hot.get(record_id, partition_key), "hot.get")
        if recheck.is_err():
            self._emit(EventKind.RECORD_FAILED, cycle_id, storage_key, recheck.error, step="recheck")
            return RecordOutcome.FAILED
        current = recheck.unwrap()

        outcome = DeleteOutcome.NOT_FOUND
        if current is not None:
            if not current.same_content(record):
                outcome = DeleteOutcome.CHANGED
            else:
                deleted = await self._call(
                    lambda: self._hot.delete(record_id, partition_key, expected=record),
                    "hot.delete",
                )
                if deleted.is_err():
                    self._emit(EventKind.RECORD_FAILED, cycle_id, storage_key,
                               deleted.error, step="delete")
                    return RecordOutcome.FAILED
                outcome = deleted.unwrap()

        if outcome is DeleteOutcome.DELETED:
            if report is not None:
                report.mutations += 1
            self._emit(EventKind.RECORD_MIGRATED, cycle_id, storage_key,
                       size_bytes=record.size_bytes)
            return RecordOutcome.MIGRATED

        if outcome is DeleteOutcome.NOT_FOUND and not self._holds_lease():
            # Another holder may have migrated it; this copy is then the only one.
            return self._lease_lost_for(cycle_id, storage_key, "delete")

        # The verified cold copy is now superseded (rewritten) or would
        # resurrect a caller's delete (vanished); either way it must go.
        await self._discard_cold(record_id, cycle_id, storage_key, report)
        if outcome is DeleteOutcome.CHANGED:
            self._emit(EventKind.RECORD_STALE, cycle_id, storage_key, step="delete")
            return RecordOutcome.STALE
        self._emit(EventKind.RECORD_VANISHED, cycle_id, storage_key, step="delete")
        return RecordOutcome.VANISHED

    async def _put_cold(
        self,
        record: Record,
        report: Optional[CycleReport],
    ) -> Result[ColdPutOutcome, TierStoreError]:
        """
        Idempotent put with conflict resolution.

        A conflicting cold copy that is older than hot (or unreadable) was
        left by an earlier migration of a since-rewritten record; it is
        replaced. A conflicting copy that is not older is never overwritten.
        """
        put = await self._call(lambda: self._cold.put_if_absent_or_identical(record), "cold.put")
        if put.is_err():
            return put
        if put.unwrap() is not ColdPutOutcome.CONFLICT:
            if put.unwrap() is ColdPutOutcome.WRITTEN and report is not None:
                report.mutations += 1
            return put

        existing = await self._call(lambda: self._cold.get(record.record_id), "cold.get")
        if existing.is_err() and existing.error.code is not ErrorCode.STORAGE_CORRUPTION:
            return existing
        if existing.is_ok() and existing.unwrap() is not None:
            copy = existing.unwrap()
            if copy.written_at >= record.written_at:
                return Err(MigrationError.conflict(
                    record.key.storage_key, copy.written_at.nanos, record.written_at.nanos
                ))

        removed = await self._call(lambda: self._cold.delete(record.record_id), "cold.delete")
        if removed.is_err():
            return removed
        if removed.unwrap() and report is not None:
            report.mutations += 1

        put = await self._call(lambda: self._cold.put_if_absent_or_identical(record), "cold.put")
        if put.is_err():
            return put
        if put.unwrap() is ColdPutOutcome.CONFLICT:
            return Err(MigrationError.conflict(
                record.key.storage_key, -1, record.written_at.nanos
            ))
        if put.unwrap() is ColdPutOutcome.WRITTEN and report is not None:
            report.mutations += 1
        return put

    async def _verify(self, record: Record) -> Result[None, MigrationError]:
        """
        Read the cold copy back under the verification timeout.

        An error or timeout is a verification failure, never a success.
        """
        storage_key = record.key.storage_key
        policy = RetryPolicy.no_retry(self._settings.verify_timeout_s)
        read = await self._call(lambda: self._cold.get(record.record_id), "cold.verify", policy)
        if read.is_err():
            return Err(MigrationError.verification_mismatch(
                storage_key, f"read-back failed: {read.error}"
            ))

        copy = read.unwrap()
        if copy is None:
            return Err(MigrationError.verification_mismatch(storage_key, "cold copy missing"))
        if copy.size_bytes != record.size_bytes:
            return Err(MigrationError.verification_mismatch(
                storage_key, f"size {copy.size_bytes} != {record.size_bytes}"
            ))
        if copy.content_hash != record.content_hash:
            return Err(MigrationError.verification_mismatch(storage_key, "sha256 differs"))
        if not copy.same_content(record):
            return Err(MigrationError.verification_mismatch(
                storage_key, "identity or written_at differs"
            ))
        return Ok(None)

    def _verification_failed(
        self,
        cycle_id: str,
        storage_key: str,
        error: TierStoreError,
        report: Optional[CycleReport],
    ) -> RecordOutcome:
        if report is not None:
            report.verification_failures.append(storage_key)
        self._emit(EventKind.VERIFICATION_FAILED, cycle_id, storage_key, error)
        slog.error("Cold copy failed verification; record kept in hot",
                   storage_key=storage_key, error=str(error))
        return RecordOutcome.VERIFICATION_FAILED

    def _lease_lost_for(self, cycle_id: str, storage_key: str, step: str) -> RecordOutcome:
        self._emit(EventKind.RECORD_FAILED, cycle_id, storage_key,
                   MigrationError.lease_lost(self.job_id), step=step)
        return RecordOutcome.FAILED

    async def _discard_cold(
        self,
        record_id: str,
        cycle_id: str,
        storage_key: str,
        report: Optional[CycleReport],
    ) -> None:
        """Best-effort removal of an untrusted or superseded cold copy."""
        removed = await self._call(lambda: self._cold.delete(record_id), "cold.delete")
        if removed.is_err():
            self._emit(EventKind.COLD_CLEANUP_FAILED, cycle_id, storage_key, removed.error)
            return
        if removed.unwrap() and report is not None:
            report.mutations += 1


__all__ = [
    "RecordOutcome",
    "CycleReport",
    "MigrationSettings",
    "MigrationEngine",
]
