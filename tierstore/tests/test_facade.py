"""
Unit Tests: Tiered Record Store Facade

Tests:
    - Read-after-write and write stamping
    - Cold fallback, not-found and partition checks
    - Hot failures never fall back to cold
    - Cold failures trip the circuit breaker
    - Delete removes the record from both tiers, hot first
    - A migration cycle racing a delete never resurrects the record
"""

import asyncio
from datetime import timedelta

from tierstore.core.config import TierStoreConfig
from tierstore.core.errors import ErrorCode, RecordError, StorageError
from tierstore.core.types import Record
from tierstore.facade import TieredRecordStore
from tierstore.migration.cursor import InMemoryCursorStore
from tierstore.migration.engine import MigrationEngine, MigrationSettings
from tierstore.reliability.circuit_breaker import CircuitBreaker, CircuitState
from tierstore.tiering.policy import AgeThresholdPolicy

from tierstore.tests.fakes import (
    FAST_RETRY,
    T0,
    FakeClock,
    ScriptedColdStore,
    ScriptedHotStore,
    old_record,
    tiers_holding,
)


def make_store(clock=None, breaker=None):
    hot = ScriptedHotStore()
    cold = ScriptedColdStore()
    store = TieredRecordStore(
        hot,
        cold,
        clock=clock or FakeClock(),
        retry_policy=FAST_RETRY,
        cold_breaker=breaker,
    )
    return store, hot, cold


class TestWriteRead:
    """Writes and hot reads."""

    def test_read_after_write(self):
        async def scenario():
            store, _, _ = make_store()
            written = (await store.write(Record("r1", "tenant-a", b"hello"))).unwrap()
            read = (await store.read("r1", "tenant-a")).unwrap()
            return written, read

        written, read = asyncio.run(scenario())
        assert read.payload == b"hello"
        assert read.written_at == written.written_at == T0

    def test_write_stamps_with_clock(self):
        clock = FakeClock()

        async def scenario():
            store, hot, _ = make_store(clock=clock)
            await store.write(Record("r1", "tenant-a", b"v1"))
            clock.advance(timedelta(seconds=5))
            await store.write(Record("r1", "tenant-a", b"v2"))
            return (await hot.get("r1", "tenant-a")).unwrap()

        latest = asyncio.run(scenario())
        assert latest.payload == b"v2"
        assert latest.written_at == T0 + 5_000_000_000

    def test_write_failure_is_unavailable(self):
        async def scenario():
            store, hot, _ = make_store()
            hot.fail_puts = True
            return await store.write(Record("r1", "tenant-a", b"hello"))

        result = asyncio.run(scenario())
        assert isinstance(result.error, StorageError)
        assert result.error.code is ErrorCode.STORAGE_UNAVAILABLE

    def test_transient_hot_failure_is_retried(self):
        async def scenario():
            store, hot, _ = make_store()
            await store.write(Record("r1", "tenant-a", b"hello"))
            hot.fail_get_times = 2
            return await store.read("r1", "tenant-a")

        assert asyncio.run(scenario()).unwrap().payload == b"hello"


class TestColdFallback:
    """Reads that miss the hot tier."""

    def test_served_from_cold(self):
        record = old_record("r1", b"archived")

        async def scenario():
            store, _, cold = make_store()
            await cold.put_if_absent_or_identical(record)
            return await store.read("r1", "tenant-a")

        assert asyncio.run(scenario()).unwrap().same_content(record)

    def test_hot_wins_over_cold(self):
        async def scenario():
            store, hot, cold = make_store()
            await cold.put_if_absent_or_identical(old_record("r1", b"stale"))
            await store.write(Record("r1", "tenant-a", b"fresh"))
            read = (await store.read("r1", "tenant-a")).unwrap()
            return read, cold.gets

        read, cold_gets = asyncio.run(scenario())
        assert read.payload == b"fresh"
        assert cold_gets == 0

    def test_missing_everywhere(self):
        async def scenario():
            store, _, _ = make_store()
            return await store.read("ghost", "tenant-a")

        result = asyncio.run(scenario())
        assert isinstance(result.error, RecordError)
        assert result.error.code is ErrorCode.RECORD_NOT_FOUND

    def test_partition_mismatch_is_not_found(self):
        async def scenario():
            store, _, cold = make_store()
            await cold.put_if_absent_or_identical(old_record("r1", partition_key="tenant-a"))
            return await store.read("r1", "tenant-b")

        assert asyncio.run(scenario()).error.code is ErrorCode.RECORD_NOT_FOUND

    def test_hot_failure_never_falls_back(self):
        async def scenario():
            store, hot, cold = make_store()
            await cold.put_if_absent_or_identical(old_record("r1"))
            hot.fail_gets.add("tenant-a/r1")
            result = await store.read("r1", "tenant-a")
            return result, cold.gets

        result, cold_gets = asyncio.run(scenario())
        assert result.error.code is ErrorCode.STORAGE_UNAVAILABLE
        assert cold_gets == 0

    def test_cold_failure_is_unavailable(self):
        async def scenario():
            store, _, cold = make_store()
            cold.fail_gets = True
            return await store.read("r1", "tenant-a")

        result = asyncio.run(scenario())
        assert result.error.code is ErrorCode.STORAGE_UNAVAILABLE
        assert "cold" not in result.error.message


class TestColdBreaker:
    """Circuit breaker around the cold tier."""

    def test_opens_after_repeated_failures(self):
        breaker = CircuitBreaker("cold-store", failure_threshold=2, timeout_seconds=60)

        async def scenario():
            store, _, cold = make_store(breaker=breaker)
            cold.fail_gets = True
            for _ in range(2):
                await store.read("r1", "tenant-a")
            gets_before = cold.gets
            rejected = await store.read("r1", "tenant-a")
            return rejected, cold.gets - gets_before

        rejected, extra_gets = asyncio.run(scenario())
        assert breaker.state is CircuitState.OPEN
        assert rejected.error.code is ErrorCode.STORAGE_UNAVAILABLE
        assert rejected.error.cause.code is ErrorCode.RELIABILITY_CIRCUIT_OPEN
        assert extra_gets == 0

    def test_not_found_does_not_trip(self):
        breaker = CircuitBreaker("cold-store", failure_threshold=1)

        async def scenario():
            store, _, _ = make_store(breaker=breaker)
            for _ in range(3):
                await store.read("ghost", "tenant-a")

        asyncio.run(scenario())
        assert breaker.state is CircuitState.CLOSED

    def test_hot_reads_unaffected_by_open_breaker(self):
        breaker = CircuitBreaker("cold-store")
        breaker.force_open()

        async def scenario():
            store, _, _ = make_store(breaker=breaker)
            await store.write(Record("r1", "tenant-a", b"hot"))
            return await store.read("r1", "tenant-a")

        assert asyncio.run(scenario()).unwrap().payload == b"hot"


class TestDelete:
    """Deletes across tiers."""

    def test_removes_from_both_tiers(self):
        record = old_record("r1")

        async def scenario():
            store, hot, cold = make_store()
            await hot.put(record)
            await cold.put_if_absent_or_identical(record)
            result = await store.delete("r1", "tenant-a")
            return result, await tiers_holding(hot, cold, record)

        result, held = asyncio.run(scenario())
        assert result.is_ok()
        assert held == {"hot": None, "cold": None}

    def test_absent_record_is_success(self):
        async def scenario():
            store, _, _ = make_store()
            return await store.delete("ghost", "tenant-a")

        assert asyncio.run(scenario()).is_ok()

    def test_hot_failure_leaves_both_tiers(self):
        record = old_record("r1")

        async def scenario():
            store, hot, cold = make_store()
            await hot.put(record)
            await cold.put_if_absent_or_identical(record)
            hot.fail_deletes = True
            result = await store.delete("r1", "tenant-a")
            return result, await tiers_holding(hot, cold, record)

        result, held = asyncio.run(scenario())
        assert result.error.code is ErrorCode.STORAGE_UNAVAILABLE
        assert held["hot"] is not None
        assert held["cold"] is not None

    def test_cold_failure_is_retryable(self):
        record = old_record("r1")

        async def scenario():
            store, hot, cold = make_store()
            await hot.put(record)
            await cold.put_if_absent_or_identical(record)
            cold.fail_deletes = True
            failed = await store.delete("r1", "tenant-a")
            after_failure = await tiers_holding(hot, cold, record)

            cold.fail_deletes = False
            retried = await store.delete("r1", "tenant-a")
            return failed, after_failure, retried, await tiers_holding(hot, cold, record)

        failed, after_failure, retried, held = asyncio.run(scenario())
        assert failed.error.code is ErrorCode.STORAGE_UNAVAILABLE
        assert after_failure["hot"] is None
        assert after_failure["cold"] is not None
        assert retried.is_ok()
        assert held == {"hot": None, "cold": None}


class TestDeleteDuringMigration:
    """A whole migration cycle between the two tier deletes never resurrects the record."""

    def test_cycle_between_tier_deletes(self):
        clock = FakeClock()
        record = old_record("r1", payload=b"secret")

        async def scenario():
            store, hot, cold = make_store(clock=clock)
            engine = MigrationEngine(
                hot, cold, AgeThresholdPolicy(timedelta(days=90)), InMemoryCursorStore(),
                settings=MigrationSettings(retry_policy=FAST_RETRY), clock=clock,
            )
            await hot.put(record)
            reports = []

            async def run_cycle(_):
                hot.after_delete = None
                cold.after_delete = None
                reports.append((await engine.run_cycle()).unwrap())

            # Whichever tier the facade deletes first, the cycle runs right after it.
            hot.after_delete = run_cycle
            cold.after_delete = run_cycle
            deleted = await store.delete("r1", "tenant-a")
            read = await store.read("r1", "tenant-a")
            return deleted, read, reports, await tiers_holding(hot, cold, record)

        deleted, read, reports, held = asyncio.run(scenario())
        assert deleted.is_ok()
        assert len(reports) == 1
        assert read.error.code is ErrorCode.RECORD_NOT_FOUND
        assert held == {"hot": None, "cold": None}

    def test_cycle_after_migration_started(self):
        clock = FakeClock()
        record = old_record("r1", payload=b"secret")

        async def scenario():
            store, hot, cold = make_store(clock=clock)
            engine = MigrationEngine(
                hot, cold, AgeThresholdPolicy(timedelta(days=90)), InMemoryCursorStore(),
                settings=MigrationSettings(retry_policy=FAST_RETRY), clock=clock,
            )
            await hot.put(record)
            deletes = []

            async def delete_after_copy(_):
                cold.after_put = None
                deletes.append(await store.delete("r1", "tenant-a"))

            cold.after_put = delete_after_copy
            report = (await engine.run_cycle()).unwrap()
            return deletes, report, await tiers_holding(hot, cold, record)

        deletes, report, held = asyncio.run(scenario())
        assert deletes[0].is_ok()
        assert report.vanished == 1
        assert held == {"hot": None, "cold": None}


class TestFromConfig:
    """Construction from TierStoreConfig."""

    def test_uses_reliability_settings(self):
        store = TieredRecordStore.from_config(
            ScriptedHotStore(), ScriptedColdStore(), TierStoreConfig()
        )
        assert store.cold_breaker.name == "cold-store"
        assert store.cold_breaker.is_closed
