"""
Tiered Record Store: The Unified Access Facade

The only component external callers touch. Reads try hot then cold,
writes always go to hot, deletes remove the record from both tiers.

Contract:
    write(record)                  -> Ok(stored record) | Err(StorageUnavailable)
    read(record_id, partition_key) -> Ok(record) | Err(NotFound) | Err(StorageUnavailable)
    delete(record_id, partition_key) -> Ok(None) | Err(StorageUnavailable)

Ordering:
    Hot is always checked first. The migration engine never deletes from
    hot before the cold copy is verified, so there is no instant at which a
    record is absent from both tiers, and a record rewritten during its
    migration is served from hot (hot always wins).

Tiering internals never leak: callers see only RecordError.not_found and
StorageError.unavailable.
"""

from __future__ import annotations

import logging
from typing import Optional

from tierstore.core.config import TierStoreConfig
from tierstore.core.errors import RecordError, StorageError, TierStoreError
from tierstore.core.types import Clock, Err, Ok, Record, Result, Timestamp
from tierstore.reliability.circuit_breaker import CircuitBreaker
from tierstore.reliability.retry import RetryPolicy, retry_result
from tierstore.storage.protocols import ColdRecordStore, HotRecordStore

logger = logging.getLogger(__name__)


class TieredRecordStore:
    """
    Reads and writes records regardless of their current tier.

    Usage:
        store = TieredRecordStore(hot, cold)
        stored = (await store.write(Record("r1", "tenant-a", b"..."))).unwrap()
        record = (await store.read("r1", "tenant-a")).unwrap()
    """

    __slots__ = ("_hot", "_cold", "_clock", "_hot_policy", "_cold_policy", "_cold_breaker")

    def __init__(
        self,
        hot: HotRecordStore,
        cold: ColdRecordStore,
        clock: Clock = Timestamp.now,
        retry_policy: Optional[RetryPolicy] = None,
        cold_breaker: Optional[CircuitBreaker] = None,
        cold_retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        """
        Args:
            hot: Hot tier adapter.
            cold: Cold tier adapter.
            clock: Source of write timestamps.
            retry_policy: Retry and per-attempt timeout for hot calls.
            cold_breaker: Breaker guarding cold calls.
            cold_retry_policy: Retry policy for cold calls; defaults to
                retry_policy.
        """
        self._hot = hot
        self._cold = cold
        self._clock = clock
        self._hot_policy = retry_policy or RetryPolicy.default()
        self._cold_policy = cold_retry_policy or self._hot_policy
        self._cold_breaker = cold_breaker or CircuitBreaker("cold-store")

    @classmethod
    def from_config(
        cls,
        hot: HotRecordStore,
        cold: ColdRecordStore,
        config: TierStoreConfig,
    ) -> TieredRecordStore:
        policy = RetryPolicy.from_config(config.reliability, config.tiering.operation_timeout_s)
        return cls(
            hot,
            cold,
            retry_policy=policy,
            cold_breaker=CircuitBreaker.from_config("cold-store", config.reliability),
        )

    @property
    def cold_breaker(self) -> CircuitBreaker:
        return self._cold_breaker

    # -------------------------------------------------------------------------
    # OPERATIONS
    # -------------------------------------------------------------------------

    async def write(self, record: Record) -> Result[Record, TierStoreError]:
        """
        Store a record in hot, stamping written_at with the facade clock.

        Any cold copy from an earlier migration is left in place: hot wins
        on read, and the next migration of this record replaces it.
        """
        stored = record.stamped(self._clock())
        result = await retry_result(lambda: self._hot.put(stored), self._hot_policy, "hot.put")
        if result.is_err():
            logger.warning(
                f"Write failed for {stored.key}: {result.error}",
                extra={"storage_key": stored.key.storage_key},
            )
            return Err(StorageError.unavailable("write", cause=result.error))
        return Ok(stored)

    async def read(self, record_id: str, partition_key: str) -> Result[Record, TierStoreError]:
        """Hot first; on a hot miss, cold. A hot failure never falls back to cold."""
        hot = await retry_result(
            lambda: self._hot.get(record_id, partition_key), self._hot_policy, "hot.get"
        )
        if hot.is_err():
            return Err(StorageError.unavailable("read", cause=hot.error))
        record = hot.unwrap()
        if record is not None:
            return Ok(record)

        cold = await self._cold_breaker.call(
            lambda: retry_result(lambda: self._cold.get(record_id), self._cold_policy, "cold.get")
        )
        if cold.is_err():
            return Err(StorageError.unavailable("read", cause=cold.error))
        record = cold.unwrap()
        if record is None or record.partition_key != partition_key:
            return Err(RecordError.not_found(record_id, partition_key))

        logger.debug("Served from cold tier", extra={"storage_key": record.key.storage_key})
        return Ok(record)

    async def delete(self, record_id: str, partition_key: str) -> Result[None, TierStoreError]:
        """
        Remove the record from both tiers; absence from either is success.

        Hot goes first. A migration that has not yet deleted the hot copy
        re-checks hot after its cold write, finds the record gone and
        discards its own copy. A migration that already deleted hot left
        its copy in cold, where the second step removes it. On Err the
        caller retries; the hot copy may already be gone.
        """
        hot = await retry_result(
            lambda: self._hot.delete(record_id, partition_key), self._hot_policy, "hot.delete"
        )
        if hot.is_err():
            return Err(StorageError.unavailable("delete", cause=hot.error))

        cold = await self._cold_breaker.call(
            lambda: retry_result(lambda: self._cold.delete(record_id), self._cold_policy, "cold.delete")
        )
        if cold.is_err():
            return Err(StorageError.unavailable("delete", cause=cold.error))
        return Ok(None)

    async def close(self) -> None:
        await self._hot.close()
        await self._cold.close()


__all__ = ["TieredRecordStore"]
