"""
Job Lease: One Migration Cycle per Job Across Processes

Two engines migrating the same job would each read the other's hot delete
as a caller's delete and discard the only cold copy. A cycle therefore runs
under a per-job lease:

- try_acquire never waits: a held lease rejects the cycle
- The lease carries a TTL so a crashed holder frees it on its own
- A background task renews it before expiry; a refused or overdue renewal
  marks the handle lost and notifies the holder
- Renewal and release compare the holder token, so a stale holder never
  touches a lease that has since been re-acquired

Backends:
    InMemoryJobLease   process-wide table (default)
    RedisJobLease      SET NX PX plus compare-token Lua scripts
    PostgresJobLease   conditional upsert into a lease table
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple
from uuid import uuid4

from tierstore.core import constants as C
from tierstore.core.errors import MigrationError, StorageError, TierStoreError
from tierstore.core.types import Clock, Err, Ok, Result, Timestamp
from tierstore.migration.cursor import CursorStore, PostgresCursorStore
from tierstore.storage.protocols import HotRecordStore
from tierstore.storage.redis_store import RedisHotStore

logger = logging.getLogger(__name__)


# Compare-token scripts: only the holder that set the key may touch it.
LUA_EXTEND_SCRIPT: str = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('PEXPIRE', KEYS[1], ARGV[2])
end
return 0
"""

LUA_RELEASE_SCRIPT: str = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


def default_holder_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


# =============================================================================
# LEASE CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class LeaseConfig:
    """Lease timing."""
    ttl_ms: int = int(C.DEFAULT_LEASE_TTL_S * C.SECOND_MS)
    renew_margin_ms: int = 10_000  # Renew this long before expiry
    auto_renew: bool = True

    def __post_init__(self) -> None:
        if self.ttl_ms < C.MIN_LEASE_TTL_MS:
            raise ValueError(f"TTL must be >= {C.MIN_LEASE_TTL_MS}ms")
        if not (0 < self.renew_margin_ms < self.ttl_ms):
            raise ValueError("Renew margin must be in (0, TTL)")

    @classmethod
    def for_ttl(cls, ttl_ms: int) -> LeaseConfig:
        """Renew once a third of the TTL is left."""
        return cls(ttl_ms=ttl_ms, renew_margin_ms=max(1, ttl_ms // 3))


# =============================================================================
# LEASE HANDLE
# =============================================================================
@dataclass
class LeaseHandle:
    """
    Proof of holding a job's lease.

    is_held turns False once the lease is released, lost, or within the
    clock-drift allowance of its expiry.
    """
    job_id: str
    token: str
    acquired_at: Timestamp
    expires_at: Timestamp
    config: LeaseConfig
    clock: Clock = field(default=Timestamp.now, repr=False)
    on_lost: Optional[Callable[[], None]] = field(default=None, repr=False)
    released: bool = False
    lost: bool = False

    _renewal_task: Optional[asyncio.Task[None]] = field(default=None, repr=False)

    @property
    def is_held(self) -> bool:
        if self.released or self.lost:
            return False
        drift_ns = int(self.config.ttl_ms * C.LEASE_CLOCK_DRIFT_FACTOR) * C.NS_PER_MS
        return self.clock() < self.expires_at + (-drift_ns)

    @property
    def ttl_remaining_ms(self) -> int:
        return max(0, (self.expires_at - self.clock()) // C.NS_PER_MS)


# =============================================================================
# LEASE MANAGER
# =============================================================================
class JobLease(ABC):
    """
    Per-job lease manager.

    Subclasses implement three atomic primitives against a store every
    competing process can reach; handle bookkeeping and renewal live here.

    Usage:
        lease = RedisJobLease(client)
        acquired = await lease.try_acquire("default")
        if acquired.is_ok():
            handle = acquired.unwrap()
            try:
                ...
            finally:
                await lease.release(handle)
    """

    def __init__(
        self,
        config: Optional[LeaseConfig] = None,
        holder_id: Optional[str] = None,
        clock: Clock = Timestamp.now,
    ) -> None:
        self._config = config or LeaseConfig()
        self._holder_id = holder_id or default_holder_id()
        self._clock = clock

    @property
    def holder_id(self) -> str:
        return self._holder_id

    @property
    def config(self) -> LeaseConfig:
        return self._config

    # -------------------------------------------------------------------------
    # BACKEND PRIMITIVES
    # -------------------------------------------------------------------------

    @abstractmethod
    async def _claim(self, job_id: str, token: str, ttl_ms: int) -> Result[Optional[str], StorageError]:
        """Take the lease if free or expired: Ok(None), else Ok(current holder token)."""

    @abstractmethod
    async def _extend(self, job_id: str, token: str, ttl_ms: int) -> Result[bool, StorageError]:
        """Push expiry out by ttl_ms if `token` still holds the lease."""

    @abstractmethod
    async def _drop(self, job_id: str, token: str) -> Result[bool, StorageError]:
        """Remove the lease if `token` still holds it."""

    async def close(self) -> None:
        """Release resources the lease owns; borrowed clients stay open."""

    # -------------------------------------------------------------------------
    # ACQUIRE / RENEW / RELEASE
    # -------------------------------------------------------------------------

    async def try_acquire(
        self,
        job_id: str,
        on_lost: Optional[Callable[[], None]] = None,
    ) -> Result[LeaseHandle, TierStoreError]:
        """
        Acquire the job's lease without waiting.

        Returns Err(MigrationError.cycle_in_progress) naming the holder when
        the lease is held elsewhere, or the StorageError of the lease store.
        """
        token = f"{self._holder_id}/{uuid4().hex[:12]}"
        ttl_ms = self._config.ttl_ms
        started = self._clock()

        claimed = await self._claim(job_id, token, ttl_ms)
        if claimed.is_err():
            return Err(claimed.error)
        holder = claimed.unwrap()
        if holder is not None:
            return Err(MigrationError.cycle_in_progress(job_id, holder=holder))

        handle = LeaseHandle(
            job_id=job_id,
            token=token,
            acquired_at=started,
            expires_at=started + ttl_ms * C.NS_PER_MS,
            config=self._config,
            clock=self._clock,
            on_lost=on_lost,
        )
        if self._config.auto_renew:
            handle._renewal_task = asyncio.create_task(self._auto_renew(handle))
        logger.debug("Job lease acquired", extra={"job_id": job_id, "token": token})
        return Ok(handle)

    async def renew(self, handle: LeaseHandle) -> Result[bool, StorageError]:
        """
        Extend the lease by one TTL.

        Ok(False) means another holder owns the lease now; the handle is
        marked lost.
        """
        if handle.released or handle.lost:
            return Ok(False)
        started = self._clock()
        extended = await self._extend(handle.job_id, handle.token, handle.config.ttl_ms)
        if extended.is_err():
            return extended
        if extended.unwrap():
            handle.expires_at = started + handle.config.ttl_ms * C.NS_PER_MS
            return Ok(True)
        self._mark_lost(handle, "taken over by another holder")
        return Ok(False)

    async def release(self, handle: LeaseHandle) -> Result[None, StorageError]:
        """Stop renewing and drop the lease. Safe to call multiple times."""
        if handle.released:
            return Ok(None)
        handle.released = True

        if handle._renewal_task is not None:
            handle._renewal_task.cancel()
            try:
                await handle._renewal_task
            except asyncio.CancelledError:
                pass
            handle._renewal_task = None

        dropped = await self._drop(handle.job_id, handle.token)
        if dropped.is_err():
            return Err(dropped.error)
        return Ok(None)

    def _mark_lost(self, handle: LeaseHandle, reason: str) -> None:
        if handle.lost:
            return
        handle.lost = True
        logger.warning(
            f"Job lease lost: {reason}",
            extra={"job_id": handle.job_id, "token": handle.token},
        )
        if handle.on_lost is not None:
            handle.on_lost()

    async def _auto_renew(self, handle: LeaseHandle) -> None:
        """Background renewal until the handle is released or lost."""
        margin_ms = handle.config.renew_margin_ms
        while not handle.released and not handle.lost:
            wait_ms = handle.ttl_remaining_ms - margin_ms
            if wait_ms > 0:
                await asyncio.sleep(wait_ms / C.SECOND_MS)
                continue

            if handle.ttl_remaining_ms == 0:
                self._mark_lost(handle, "expired before renewal")
                return

            renewed = await self.renew(handle)
            if renewed.is_err():
                logger.warning(
                    f"Job lease renewal failed: {renewed.error}",
                    extra={"job_id": handle.job_id},
                )
                await asyncio.sleep(margin_ms / 4 / C.SECOND_MS)


# =============================================================================
# IN-MEMORY LEASES
# =============================================================================
_PROCESS_LEASES: Dict[str, Tuple[str, Timestamp]] = {}


class InMemoryJobLease(JobLease):
    """
    Leases in a dict of job_id -> (token, expires_at).

    The default table is shared by every instance in the process, so all
    engines of one process exclude each other. Pass `table` to isolate.
    """

    def __init__(
        self,
        config: Optional[LeaseConfig] = None,
        holder_id: Optional[str] = None,
        clock: Clock = Timestamp.now,
        table: Optional[Dict[str, Tuple[str, Timestamp]]] = None,
    ) -> None:
        super().__init__(config, holder_id, clock)
        self._table = _PROCESS_LEASES if table is None else table

    async def _claim(self, job_id: str, token: str, ttl_ms: int) -> Result[Optional[str], StorageError]:
        now = self._clock()
        current = self._table.get(job_id)
        if current is not None and current[1] > now:
            return Ok(current[0])
        self._table[job_id] = (token, now + ttl_ms * C.NS_PER_MS)
        return Ok(None)

    async def _extend(self, job_id: str, token: str, ttl_ms: int) -> Result[bool, StorageError]:
        current = self._table.get(job_id)
        if current is None or current[0] != token:
            return Ok(False)
        self._table[job_id] = (token, self._clock() + ttl_ms * C.NS_PER_MS)
        return Ok(True)

    async def _drop(self, job_id: str, token: str) -> Result[bool, StorageError]:
        current = self._table.get(job_id)
        if current is None or current[0] != token:
            return Ok(False)
        del self._table[job_id]
        return Ok(True)


# =============================================================================
# REDIS LEASES
# =============================================================================
class RedisJobLease(JobLease):
    """
    Lease key ``{prefix}:lease:{job_id}`` holding the holder token.

    Lives in the hot tier's Redis, which every migrating process already
    reaches. The client is borrowed and not closed here.
    """

    def __init__(
        self,
        client: Any,
        key_prefix: str = "tierstore",
        config: Optional[LeaseConfig] = None,
        holder_id: Optional[str] = None,
        clock: Clock = Timestamp.now,
    ) -> None:
        super().__init__(config, holder_id, clock)
        self._client = client
        self._key_prefix = key_prefix

    def _key(self, job_id: str) -> str:
        return f"{self._key_prefix}:lease:{job_id}"

    async def _claim(self, job_id: str, token: str, ttl_ms: int) -> Result[Optional[str], StorageError]:
        key = self._key(job_id)
        try:
            if await self._client.set(key, token, nx=True, px=ttl_ms):
                return Ok(None)
            current = await self._client.get(key)
        except Exception as e:
            return Err(StorageError.backend("redis", "lease.claim", cause=e))

        if current is None:
            # Expired between SET and GET; the next cycle claims it.
            return Ok("expired holder")
        return Ok(current.decode("utf-8") if isinstance(current, bytes) else str(current))

    async def _extend(self, job_id: str, token: str, ttl_ms: int) -> Result[bool, StorageError]:
        try:
            result = await self._client.eval(LUA_EXTEND_SCRIPT, 1, self._key(job_id), token, ttl_ms)
        except Exception as e:
            return Err(StorageError.backend("redis", "lease.extend", cause=e))
        return Ok(int(result) == 1)

    async def _drop(self, job_id: str, token: str) -> Result[bool, StorageError]:
        try:
            result = await self._client.eval(LUA_RELEASE_SCRIPT, 1, self._key(job_id), token)
        except Exception as e:
            return Err(StorageError.backend("redis", "lease.release", cause=e))
        return Ok(int(result) == 1)


# =============================================================================
# POSTGRES LEASES
# =============================================================================
class PostgresJobLease(JobLease):
    """
    Lease rows in PostgreSQL via the cursor store's asyncpg pool.

    Schema:
        CREATE TABLE migration_leases (
            job_id     TEXT PRIMARY KEY,
            holder     TEXT NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL
        )

    Expiry is judged by the database clock. The pool is borrowed and not
    closed here.
    """

    def __init__(
        self,
        pool: Any,
        table: str = "migration_leases",
        config: Optional[LeaseConfig] = None,
        holder_id: Optional[str] = None,
        clock: Clock = Timestamp.now,
    ) -> None:
        super().__init__(config, holder_id, clock)
        self._pool = pool
        self._table = table

    async def connect(self) -> Result[None, StorageError]:
        """Create the lease table."""
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(
                    f"CREATE TABLE IF NOT EXISTS {self._table} ("
                    "job_id TEXT PRIMARY KEY, "
                    "holder TEXT NOT NULL, "
                    "expires_at TIMESTAMPTZ NOT NULL)"
                )
        except Exception as e:
            return Err(StorageError.backend("postgres", "create_lease_table", cause=e))
        return Ok(None)

    async def _claim(self, job_id: str, token: str, ttl_ms: int) -> Result[Optional[str], StorageError]:
        try:
            async with self._pool.acquire() as conn:
                won = await conn.fetchval(
                    f"INSERT INTO {self._table} (job_id, holder, expires_at) "
                    "VALUES ($1, $2, now() + $3::bigint * interval '1 millisecond') "
                    "ON CONFLICT (job_id) DO UPDATE "
                    "SET holder = EXCLUDED.holder, expires_at = EXCLUDED.expires_at "
                    f"WHERE {self._table}.expires_at < now() "
                    "RETURNING holder",
                    job_id, token, ttl_ms,
                )
                if won is not None:
                    return Ok(None)
                current = await conn.fetchval(
                    f"SELECT holder FROM {self._table} WHERE job_id = $1",
                    job_id,
                )
        except Exception as e:
            return Err(StorageError.backend("postgres", "lease.claim", cause=e))
        return Ok(current or "expired holder")

    async def _extend(self, job_id: str, token: str, ttl_ms: int) -> Result[bool, StorageError]:
        try:
            async with self._pool.acquire() as conn:
                status = await conn.execute(
                    f"UPDATE {self._table} "
                    "SET expires_at = now() + $3::bigint * interval '1 millisecond' "
                    "WHERE job_id = $1 AND holder = $2",
                    job_id, token, ttl_ms,
                )
        except Exception as e:
            return Err(StorageError.backend("postgres", "lease.extend", cause=e))
        return Ok(status == "UPDATE 1")

    async def _drop(self, job_id: str, token: str) -> Result[bool, StorageError]:
        try:
            async with self._pool.acquire() as conn:
                status = await conn.execute(
                    f"DELETE FROM {self._table} WHERE job_id = $1 AND holder = $2",
                    job_id, token,
                )
        except Exception as e:
            return Err(StorageError.backend("postgres", "lease.release", cause=e))
        return Ok(status == "DELETE 1")


# =============================================================================
# FACTORY
# =============================================================================
def create_job_lease(
    hot: HotRecordStore,
    cursor_store: CursorStore,
    config: Optional[LeaseConfig] = None,
) -> JobLease:
    """
    Lease in the most widely shared store the job already uses.

    Redis when the hot tier is Redis, Postgres when the cursor lives there,
    otherwise the process-wide table (an in-memory hot tier is private to
    the process anyway).
    """
    if isinstance(hot, RedisHotStore) and hot.client is not None:
        return RedisJobLease(hot.client, hot.key_prefix, config)
    if isinstance(cursor_store, PostgresCursorStore) and cursor_store.pool is not None:
        return PostgresJobLease(cursor_store.pool, config=config)
    return InMemoryJobLease(config)


async def open_job_lease(
    hot: HotRecordStore,
    cursor_store: CursorStore,
    config: Optional[LeaseConfig] = None,
) -> Result[JobLease, StorageError]:
    lease = create_job_lease(hot, cursor_store, config)
    if isinstance(lease, PostgresJobLease):
        connected = await lease.connect()
        if connected.is_err():
            return Err(connected.error)
    return Ok(lease)


__all__ = [
    "LeaseConfig",
    "LeaseHandle",
    "JobLease",
    "InMemoryJobLease",
    "RedisJobLease",
    "PostgresJobLease",
    "create_job_lease",
    "open_job_lease",
]
