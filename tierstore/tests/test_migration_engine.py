"""
Unit Tests: Migration Engine

Tests:
    - Copy-verify-delete moves aged records and stays read-transparent
    - Crash at every protocol step leaves the record in exactly one tier
    - Writes racing a migration keep the record hot with the new payload
    - Verification mismatches and timeouts keep hot untouched and alert
    - Cursor persistence: per-record progress, resume, pinning on failure,
      corruption recovery
    - Job lease: one cycle per job, no cold discard after the lease is lost
    - Empty cycles perform zero mutations
"""

import asyncio
import json
from datetime import timedelta
from types import SimpleNamespace

import pytest

from tierstore.core.errors import ErrorCode, StorageError
from tierstore.core.types import Record
from tierstore.facade import TieredRecordStore
from tierstore.migration.cursor import MigrationCursor
from tierstore.migration.engine import MigrationEngine, MigrationSettings, RecordOutcome
from tierstore.migration.events import EventKind, InMemoryEventSink
from tierstore.migration.lease import InMemoryJobLease, LeaseConfig
from tierstore.tiering.policy import AgeThresholdPolicy
from tierstore.tests.fakes import (
    FAST_RETRY,
    FakeClock,
    RecordingCursorStore,
    ScriptedColdStore,
    ScriptedHotStore,
    SimulatedCrash,
    T0,
    old_record,
    tiers_holding,
)


def build(page_size=100, parallelism=4, verify_timeout_s=0.5, clock=None):
    clock = clock or FakeClock()
    env = SimpleNamespace(
        clock=clock,
        hot=ScriptedHotStore(),
        cold=ScriptedColdStore(),
        cursors=RecordingCursorStore(),
        events=InMemoryEventSink(),
        policy=AgeThresholdPolicy(timedelta(days=90)),
        settings=MigrationSettings(
            page_size=page_size,
            parallelism=parallelism,
            verify_timeout_s=verify_timeout_s,
            retry_policy=FAST_RETRY,
        ),
    )
    env.engine = new_engine(env)
    env.facade = TieredRecordStore(env.hot, env.cold, clock=clock, retry_policy=FAST_RETRY)
    return env


def new_engine(env, lease=None):
    """A fresh engine over the same stores, as after a process restart."""
    return MigrationEngine(
        env.hot, env.cold, env.policy, env.cursors,
        settings=env.settings, events=env.events, clock=env.clock, lease=lease,
    )


async def seed(env, *records):
    for record in records:
        assert (await env.hot.put(record)).is_ok()


class TestCopyVerifyDelete:
    """Happy-path migration."""

    def test_migrates_aged_records_only(self):
        async def scenario():
            env = build()
            aged = [old_record(f"r{i}", offset_ns=i) for i in range(3)]
            young = old_record("fresh", age=timedelta(days=10))
            await seed(env, *aged, young)

            report = (await env.engine.run_cycle()).unwrap()

            assert report.completed
            assert report.migrated == 3
            assert await env.hot.count() == 1
            assert await env.cold.count() == 3
            for record in aged:
                tiers = await tiers_holding(env.hot, env.cold, record)
                assert tiers["hot"] is None
                assert tiers["cold"].same_content(record)

        asyncio.run(scenario())

    def test_migration_is_read_transparent(self):
        async def scenario():
            env = build()
            record = old_record("r1", payload=b"\x00\x01binary\xff" * 100)
            await seed(env, record)
            before = (await env.facade.read("r1", "tenant-a")).unwrap()

            (await env.engine.run_cycle()).unwrap()
            after = (await env.facade.read("r1", "tenant-a")).unwrap()

            assert after.payload == before.payload
            assert after.written_at == before.written_at

        asyncio.run(scenario())

    def test_ninety_day_threshold_scenario(self):
        async def scenario():
            clock = FakeClock(T0)
            env = build(clock=clock)
            stored = (await env.facade.write(Record("r1", "tenant-a", b"P"))).unwrap()

            clock.advance(timedelta(days=89))
            report = (await env.engine.run_cycle()).unwrap()
            assert report.migrated == 0
            assert await env.hot.count() == 1

            clock.advance(timedelta(days=2))
            report = (await env.engine.run_cycle()).unwrap()
            assert report.migrated == 1
            assert (await env.hot.get("r1", "tenant-a")).unwrap() is None
            read = (await env.facade.read("r1", "tenant-a")).unwrap()
            assert read.payload == b"P"
            assert read.written_at == stored.written_at

        asyncio.run(scenario())

    def test_many_records_across_pages(self):
        async def scenario():
            env = build(page_size=7, parallelism=3)
            records = [old_record(f"r{i:03d}", offset_ns=i * 1000) for i in range(40)]
            await seed(env, *records)

            report = (await env.engine.run_cycle()).unwrap()

            assert report.migrated == 40
            assert report.pages >= 6
            assert await env.hot.count() == 0
            assert await env.cold.count() == 40
            assert len(env.events.of_kind(EventKind.RECORD_MIGRATED)) == 40

        asyncio.run(scenario())

    def test_throttled_cycle_still_completes(self):
        async def scenario():
            env = build()
            env.settings = MigrationSettings(
                page_size=10, parallelism=2, rate_limit=500.0, retry_policy=FAST_RETRY
            )
            engine = new_engine(env)
            await seed(env, *(old_record(f"r{i}", offset_ns=i) for i in range(5)))

            report = (await engine.run_cycle()).unwrap()
            assert report.migrated == 5

        asyncio.run(scenario())

    def test_policy_hot_record_is_skipped(self):
        async def scenario():
            env = build()
            young = old_record("fresh", age=timedelta(days=1))
            await seed(env, young)

            outcome = await env.engine.migrate_record(young, env.clock())
            assert outcome is RecordOutcome.SKIPPED_HOT
            assert await env.cold.count() == 0

        asyncio.run(scenario())


class TestCrashSafety:
    """A crash anywhere in the protocol never loses or duplicates a record."""

    @pytest.mark.parametrize("crash_at", [
        "hot.get#1",          # during the initial read
        "cold.put.after",     # cold written, not verified
        "cold.get",           # during verification
        "hot.get#2",          # during the pre-delete re-check
        "hot.delete.before",  # delete not applied
        "hot.delete.after",   # delete applied, not acknowledged
    ])
    def test_crash_then_restart(self, crash_at):
        async def scenario():
            env = build()
            record = old_record("r1", payload=b"important")
            await seed(env, record)
            env.hot.gets = 0
            env.hot.crash_at = crash_at
            env.cold.crash_at = crash_at

            with pytest.raises(SimulatedCrash):
                await env.engine.run_cycle()

            env.hot.crash_at = None
            env.cold.crash_at = None
            tiers = await tiers_holding(env.hot, env.cold, record)
            assert tiers["hot"] is not None or tiers["cold"] is not None
            if tiers["hot"] is not None and tiers["cold"] is not None:
                assert tiers["hot"].same_content(tiers["cold"])

            report = (await new_engine(env).run_cycle()).unwrap()
            assert report.completed

            tiers = await tiers_holding(env.hot, env.cold, record)
            assert tiers["hot"] is None
            assert tiers["cold"].same_content(record)
            assert (await env.facade.read("r1", "tenant-a")).unwrap().payload == b"important"

        asyncio.run(scenario())


class TestWriteRaces:
    """Writes that race a record's migration win."""

    def test_write_after_read_before_delete(self):
        async def scenario():
            env = build()
            record = old_record("r1", payload=b"old")
            await seed(env, record)

            async def rewrite(_):
                env.cold.after_put = None
                (await env.facade.write(Record("r1", "tenant-a", b"new"))).unwrap()

            env.cold.after_put = rewrite
            report = (await env.engine.run_cycle()).unwrap()

            assert report.stale == 1
            assert report.migrated == 0
            assert (await env.facade.read("r1", "tenant-a")).unwrap().payload == b"new"
            assert (await env.cold.get("r1")).unwrap() is None
            assert env.events.of_kind(EventKind.RECORD_STALE)

        asyncio.run(scenario())

    def test_write_between_recheck_and_delete(self):
        async def scenario():
            env = build()
            record = old_record("r1", payload=b"old")
            await seed(env, record)

            async def rewrite(_):
                env.hot.before_delete = None
                (await env.facade.write(Record("r1", "tenant-a", b"new"))).unwrap()

            env.hot.before_delete = rewrite
            report = (await env.engine.run_cycle()).unwrap()

            assert report.stale == 1
            current = (await env.hot.get("r1", "tenant-a")).unwrap()
            assert current.payload == b"new"
            assert (await env.cold.get("r1")).unwrap() is None

        asyncio.run(scenario())

    def test_hot_delete_during_migration_is_not_undone(self):
        async def scenario():
            env = build()
            record = old_record("r1")
            await seed(env, record)

            async def remove(_):
                env.cold.after_put = None
                await env.hot.delete("r1", "tenant-a")

            env.cold.after_put = remove
            report = (await env.engine.run_cycle()).unwrap()

            assert report.vanished == 1
            assert (await env.cold.get("r1")).unwrap() is None
            assert (await env.facade.read("r1", "tenant-a")).is_err()

        asyncio.run(scenario())

    def test_facade_delete_during_migration(self):
        async def scenario():
            env = build()
            record = old_record("r1")
            await seed(env, record)

            async def remove(_):
                env.cold.after_put = None
                (await env.facade.delete("r1", "tenant-a")).unwrap()

            env.cold.after_put = remove
            report = (await env.engine.run_cycle()).unwrap()

            assert report.vanished == 1
            assert report.verification_failures == []
            assert await env.cold.count() == 0
            assert await env.hot.count() == 0

        asyncio.run(scenario())

    def test_failed_cleanup_is_reported(self):
        async def scenario():
            env = build()
            await seed(env, old_record("r1"))

            async def remove(_):
                env.cold.after_put = None
                env.cold.fail_deletes = True
                await env.hot.delete("r1", "tenant-a")

            env.cold.after_put = remove
            (await env.engine.run_cycle()).unwrap()

            assert env.events.of_kind(EventKind.COLD_CLEANUP_FAILED)

        asyncio.run(scenario())


class TestVerification:
    """Untrusted cold copies never cause a hot delete."""

    def test_mismatched_payload_keeps_hot(self):
        async def scenario():
            env = build()
            record = old_record("r1", payload=b"original")
            await seed(env, record)
            env.cold.tamper = True

            report = (await env.engine.run_cycle()).unwrap()

            assert report.verification_failures == ["tenant-a/r1"]
            assert report.migrated == 0
            hot_copy = (await env.hot.get("r1", "tenant-a")).unwrap()
            assert hot_copy.same_content(record)
            assert await env.cold.count() == 0

            events = env.events.of_kind(EventKind.VERIFICATION_FAILED)
            assert len(events) == 1
            assert events[0].is_error
            assert events[0].error.code is ErrorCode.MIGRATION_VERIFICATION_MISMATCH

        asyncio.run(scenario())

    def test_verification_timeout_is_failure(self):
        async def scenario():
            env = build(verify_timeout_s=0.05)
            record = old_record("r1")
            await seed(env, record)
            env.cold.get_delay = 0.2

            report = (await env.engine.run_cycle()).unwrap()

            assert report.verification_failures == ["tenant-a/r1"]
            assert (await env.hot.get("r1", "tenant-a")).unwrap() is not None

        asyncio.run(scenario())

    def test_older_cold_copy_is_replaced(self):
        async def scenario():
            env = build()
            stale_copy = old_record("r1", payload=b"v1", age=timedelta(days=200))
            current = old_record("r1", payload=b"v2", age=timedelta(days=120))
            await env.cold.put_if_absent_or_identical(stale_copy)
            await seed(env, current)

            report = (await env.engine.run_cycle()).unwrap()

            assert report.migrated == 1
            assert (await env.cold.get("r1")).unwrap().same_content(current)

        asyncio.run(scenario())

    def test_newer_cold_copy_is_never_overwritten(self):
        async def scenario():
            env = build()
            newer = old_record("r1", payload=b"newer", age=timedelta(days=100))
            older = old_record("r1", payload=b"older", age=timedelta(days=120))
            await env.cold.put_if_absent_or_identical(newer)
            await seed(env, older)

            report = (await env.engine.run_cycle()).unwrap()

            assert report.verification_failures == ["tenant-a/r1"]
            assert (await env.hot.get("r1", "tenant-a")).unwrap().same_content(older)
            assert (await env.cold.get("r1")).unwrap().same_content(newer)

        asyncio.run(scenario())

    def test_corrupt_cold_copy_is_replaced(self):
        async def scenario():
            env = build()
            record = old_record("r1")
            env.cold.corrupt("r1")
            await seed(env, record)

            report = (await env.engine.run_cycle()).unwrap()

            assert report.migrated == 1
            assert (await env.cold.get("r1")).unwrap().same_content(record)

        asyncio.run(scenario())

    def test_identical_cold_copy_is_reused(self):
        async def scenario():
            env = build()
            record = old_record("r1")
            await env.cold.put_if_absent_or_identical(record)
            await seed(env, record)

            report = (await env.engine.run_cycle()).unwrap()

            assert report.migrated == 1
            assert report.mutations == 1  # the hot delete only

        asyncio.run(scenario())


class TestFailures:
    """Transient errors skip the record, not the cycle."""

    def test_transient_read_is_retried(self):
        async def scenario():
            env = build()
            await seed(env, old_record("r1"))
            env.hot.fail_get_times = 1

            report = (await env.engine.run_cycle()).unwrap()
            assert report.migrated == 1

        asyncio.run(scenario())

    def test_persistent_failure_skips_only_that_record(self):
        async def scenario():
            env = build()
            await seed(env, *(old_record(f"r{i}", offset_ns=i) for i in range(3)))
            env.hot.fail_gets = {"tenant-a/r1"}

            report = (await env.engine.run_cycle()).unwrap()

            assert report.completed
            assert report.migrated == 2
            assert report.failed == 1
            assert (await env.hot.get("r1", "tenant-a")).is_err()
            assert env.events.of_kind(EventKind.RECORD_FAILED)

        asyncio.run(scenario())

    def test_scan_failure_aborts_cycle(self):
        async def scenario():
            env = build()
            await seed(env, old_record("r1"))
            env.hot.fail_scan = True

            result = await env.engine.run_cycle()

            assert result.is_err()
            assert isinstance(result.error, StorageError)
            assert env.events.of_kind(EventKind.CYCLE_FAILED)
            assert not env.engine.cycle_in_progress

        asyncio.run(scenario())

    def test_cursor_save_failure_aborts_cycle(self):
        async def scenario():
            env = build()
            await seed(env, old_record("r1"))
            env.cursors.fail_saves = True

            result = await env.engine.run_cycle()

            assert result.is_err()
            assert await env.hot.count() == 1

        asyncio.run(scenario())

    def test_concurrent_cycle_is_rejected(self):
        async def scenario():
            env = build()
            await seed(env, old_record("r1"))
            env.hot.scan_gate = asyncio.Event()

            first = asyncio.create_task(env.engine.run_cycle())
            await asyncio.sleep(0)
            assert env.engine.cycle_in_progress

            second = await env.engine.run_cycle()
            assert second.is_err()
            assert second.error.code is ErrorCode.MIGRATION_CYCLE_IN_PROGRESS

            env.hot.scan_gate.set()
            assert (await first).unwrap().migrated == 1

        asyncio.run(scenario())


class TestCursor:
    """Persisted progress and recovery."""

    def test_stop_and_resume(self):
        async def scenario():
            env = build(page_size=2, parallelism=1)
            records = [old_record(f"r{i}", offset_ns=i) for i in range(5)]
            await seed(env, *records)

            class StopOnFirstMigration(InMemoryEventSink):
                def emit(self, event):
                    super().emit(event)
                    if event.kind is EventKind.RECORD_MIGRATED:
                        env.engine.request_stop()

            env.events = StopOnFirstMigration()
            env.engine = new_engine(env)
            report = (await env.engine.run_cycle()).unwrap()

            assert not report.completed
            assert report.migrated == 2
            persisted = (await env.cursors.load("default")).unwrap()
            assert persisted.last_processed == records[1].position
            assert persisted.records_migrated == 2

            env.events = InMemoryEventSink()
            report = (await new_engine(env).run_cycle()).unwrap()

            assert report.resumed
            assert report.completed
            assert report.migrated == 3
            assert report.cycle_id == persisted.cycle_id
            assert (await env.cursors.load("default")).unwrap() is None
            assert await env.hot.count() == 0

        asyncio.run(scenario())

    def test_failure_pins_persisted_position(self):
        async def scenario():
            env = build(page_size=1)
            records = [old_record(f"r{i}", offset_ns=i) for i in range(3)]
            await seed(env, *records)
            env.hot.fail_gets = {"tenant-a/r1"}

            report = (await env.engine.run_cycle()).unwrap()

            assert report.completed
            assert report.migrated == 2
            last_saved = env.cursors.saved[-1]
            assert last_saved.last_processed == records[0].position
            assert last_saved.records_migrated == 1
            assert last_saved.records_failed == 1

            env.hot.fail_gets = set()
            report = (await env.engine.run_cycle()).unwrap()
            assert report.migrated == 1
            assert await env.hot.count() == 0

        asyncio.run(scenario())

    def test_explicit_cursor_is_honoured(self):
        async def scenario():
            env = build()
            records = [old_record(f"r{i}", offset_ns=i) for i in range(3)]
            await seed(env, *records)
            cursor = MigrationCursor.start("default", env.clock()).advance(records[1].position)

            report = (await env.engine.run_cycle(cursor)).unwrap()

            assert report.migrated == 1
            assert (await env.hot.get("r2", "tenant-a")).unwrap() is None
            assert (await env.hot.get("r0", "tenant-a")).unwrap() is not None

        asyncio.run(scenario())

    @pytest.mark.parametrize("raw", [
        b"{not json",
        b"[]",
        b'{"v": 99}',
    ])
    def test_corrupt_cursor_triggers_full_rescan(self, raw):
        async def scenario():
            env = build()
            records = [old_record(f"r{i}", offset_ns=i) for i in range(3)]
            await seed(env, *records)
            env.cursors.write_raw("default", raw)

            report = (await env.engine.run_cycle()).unwrap()

            assert report.completed
            assert not report.resumed
            assert report.migrated == 3
            assert len(env.events.of_kind(EventKind.CURSOR_CORRUPTED)) == 1
            for record in records:
                tiers = await tiers_holding(env.hot, env.cold, record)
                assert tiers["hot"] is None
                assert tiers["cold"].same_content(record)

        asyncio.run(scenario())

    def test_tampered_cursor_checksum_is_corruption(self):
        async def scenario():
            env = build()
            records = [old_record(f"r{i}", offset_ns=i) for i in range(2)]
            await seed(env, *records)
            cursor = MigrationCursor.start("default", env.clock()).advance(records[1].position)
            data = cursor.to_dict()
            data["m"] = 500
            env.cursors.write_raw("default", json.dumps(data).encode())

            report = (await env.engine.run_cycle()).unwrap()

            assert report.migrated == 2
            assert env.events.of_kind(EventKind.CURSOR_CORRUPTED)

        asyncio.run(scenario())

    def test_deleted_cursor_between_cycles(self):
        async def scenario():
            env = build(page_size=1, parallelism=1)
            records = [old_record(f"r{i}", offset_ns=i) for i in range(3)]
            await seed(env, *records)

            class StopAfterFirst(InMemoryEventSink):
                def emit(self, event):
                    super().emit(event)
                    if event.kind is EventKind.RECORD_MIGRATED:
                        env.engine.request_stop()

            env.events = StopAfterFirst()
            env.engine = new_engine(env)
            (await env.engine.run_cycle()).unwrap()
            await env.cursors.clear("default")

            env.events = InMemoryEventSink()
            report = (await new_engine(env).run_cycle()).unwrap()

            assert report.completed
            assert await env.hot.count() == 0
            assert await env.cold.count() == 3

        asyncio.run(scenario())

    def test_crash_mid_page_keeps_finished_records(self):
        async def scenario():
            env = build(page_size=5, parallelism=1)
            records = [old_record(f"r{i}", offset_ns=i) for i in range(5)]
            await seed(env, *records)
            env.hot.gets = 0
            env.hot.crash_at = "hot.get#5"  # r2's read; r0 and r1 each took two gets

            with pytest.raises(SimulatedCrash):
                await env.engine.run_cycle()

            persisted = (await env.cursors.load("default")).unwrap()
            assert persisted.last_processed == records[1].position
            assert persisted.records_migrated == 2

            env.hot.crash_at = None
            report = (await new_engine(env).run_cycle()).unwrap()

            assert report.resumed
            assert report.completed
            assert report.migrated == 3
            assert await env.hot.count() == 0
            assert await env.cold.count() == 5

        asyncio.run(scenario())

    def test_out_of_order_completion_waits_for_earlier_records(self):
        async def scenario():
            env = build(page_size=3, parallelism=3)
            records = [old_record(f"r{i}", offset_ns=i) for i in range(3)]
            await seed(env, *records)

            async def hold_first(expected):
                if expected.record_id == "r0":
                    await asyncio.sleep(0.05)

            env.hot.before_delete = hold_first
            report = (await env.engine.run_cycle()).unwrap()

            assert report.migrated == 3
            progress = env.cursors.saved[1:]
            assert [c.last_processed for c in progress] == [records[2].position]
            assert progress[0].records_migrated == 3

        asyncio.run(scenario())


class TestIdempotence:
    """Empty cycles change nothing."""

    def test_rerun_performs_zero_mutations(self):
        async def scenario():
            env = build()
            await seed(env, old_record("r1"), old_record("r2", offset_ns=1))
            await seed(env, old_record("young", age=timedelta(days=5)))

            first = (await env.engine.run_cycle()).unwrap()
            assert first.migrated == 2
            puts_before = len(env.cold.puts)

            second = (await env.engine.run_cycle()).unwrap()

            assert second.completed
            assert second.mutations == 0
            assert second.scanned == 0
            assert len(env.cold.puts) == puts_before
            assert await env.hot.count() == 1
            assert await env.cold.count() == 2

        asyncio.run(scenario())

    def test_completed_cycle_clears_cursor(self):
        async def scenario():
            env = build()
            await seed(env, old_record("r1"))

            report = (await env.engine.run_cycle()).unwrap()

            assert report.completed
            assert (await env.cursors.load("default")).unwrap() is None
            kinds = [e.kind for e in env.events.events]
            assert kinds[0] is EventKind.CYCLE_STARTED
            assert kinds[-1] is EventKind.CYCLE_COMPLETED

        asyncio.run(scenario())


class TestJobLease:
    """Only one process migrates a job at a time."""

    def test_second_engine_is_rejected_while_first_runs(self):
        async def scenario():
            env = build()
            record = old_record("r1")
            await seed(env, record)
            shared = {}
            first = new_engine(env, InMemoryJobLease(holder_id="worker-a", table=shared))
            second = new_engine(env, InMemoryJobLease(holder_id="worker-b", table=shared))
            rejected = []

            async def run_second(_):
                env.cold.after_put = None
                rejected.append(await second.run_cycle())

            env.cold.after_put = run_second
            report = (await first.run_cycle()).unwrap()

            assert rejected[0].error.code is ErrorCode.MIGRATION_CYCLE_IN_PROGRESS
            assert "worker-a" in rejected[0].error.message
            assert report.migrated == 1
            tiers = await tiers_holding(env.hot, env.cold, record)
            assert tiers["hot"] is None
            assert tiers["cold"].same_content(record)
            assert shared == {}

        asyncio.run(scenario())

    def test_engines_of_one_process_share_the_default_lease(self):
        async def scenario():
            env = build()
            await seed(env, old_record("r1"), old_record("r2", offset_ns=1))
            other = new_engine(env)
            rejected = []

            async def run_other(_):
                env.cold.after_put = None
                rejected.append(await other.run_cycle())

            env.cold.after_put = run_other
            report = (await env.engine.run_cycle()).unwrap()

            assert rejected[0].error.code is ErrorCode.MIGRATION_CYCLE_IN_PROGRESS
            assert report.migrated == 2
            assert (await other.run_cycle()).unwrap().completed

        asyncio.run(scenario())

    def test_crash_releases_lease(self):
        async def scenario():
            env = build()
            await seed(env, old_record("r1"))
            shared = {}
            env.hot.crash_at = "hot.delete.before"

            with pytest.raises(SimulatedCrash):
                await new_engine(env, InMemoryJobLease(table=shared)).run_cycle()

            assert shared == {}
            env.hot.crash_at = None
            report = (await new_engine(env, InMemoryJobLease(table=shared)).run_cycle()).unwrap()
            assert report.completed

        asyncio.run(scenario())

    def test_lost_lease_keeps_cold_copy(self):
        async def scenario():
            env = build()
            record = old_record("r1", payload=b"only copy")
            await seed(env, record)
            lease_clock = FakeClock()
            lease = InMemoryJobLease(
                LeaseConfig(ttl_ms=1000, renew_margin_ms=500, auto_renew=False),
                holder_id="worker-a",
                clock=lease_clock,
                table={},
            )
            engine = new_engine(env, lease)

            async def expire_and_take_over(_):
                # The lease runs out and another holder finishes the record.
                env.cold.after_put = None
                lease_clock.advance(timedelta(seconds=2))
                await env.hot.delete("r1", "tenant-a")

            env.cold.after_put = expire_and_take_over
            result = await engine.run_cycle()

            assert result.error.code is ErrorCode.MIGRATION_LEASE_LOST
            assert (await env.cold.get("r1")).unwrap().payload == b"only copy"
            assert (await env.facade.read("r1", "tenant-a")).unwrap().payload == b"only copy"
            failed = env.events.of_kind(EventKind.RECORD_FAILED)
            assert failed[0].error.code is ErrorCode.MIGRATION_LEASE_LOST

        asyncio.run(scenario())
