"""
Redis Hot Tier Store
====================

Redis/Valkey implementation of HotRecordStore.

Design Principles:
------------------
1. **Lock-Free**: Conditional delete via a Lua script, no Python-side locks
2. **Atomic Writes**: Record hash and age index updated in one MULTI/EXEC
3. **Result Monad**: No exceptions for control flow

Memory Model:
-------------
Each record is stored as a Redis Hash at ``{prefix}:rec:{partition}/{id}``:
- 'p': payload (raw bytes)
- 'w': written_at (nanoseconds, decimal)
- 'h': SHA-256 of payload (hex)
- 'r': record_id
- 'k': partition_key

A sorted set ``{prefix}:age`` indexes every record by written_at in
milliseconds (member = storage key). Scores have millisecond resolution,
so the scan resolves nanosecond order from the hashes themselves.

Algorithmic Complexity:
-----------------------
| Operation        | Time            | Notes                          |
|------------------|-----------------|--------------------------------|
| get              | O(1)            | HGETALL                        |
| put              | O(log N)        | HSET + ZADD                    |
| delete           | O(log N)        | Lua: HGET + DEL + ZREM         |
| scan_older_than  | O(log N + k)    | ZRANGEBYSCORE + pipelined HGETALL |
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from tierstore.core import constants as C
from tierstore.core.errors import StorageError
from tierstore.core.types import (
    ContentHash,
    Err,
    Ok,
    Record,
    RecordKey,
    Result,
    ScanPosition,
    Timestamp,
)
from tierstore.storage.config import RedisConfig, RedisMode
from tierstore.storage.protocols import DeleteOutcome, HotRecordStore, ScanPage

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Index entries fetched per ZRANGEBYSCORE round-trip, relative to page size
SCAN_FETCH_FACTOR: int = 2

# Lua script for atomic (optionally conditional) delete.
# Returns 0 = not found, 1 = deleted, 2 = changed.
LUA_DELETE_SCRIPT: str = """
local written_at = redis.call('HGET', KEYS[1], 'w')
if not written_at then
    return 0
end
if ARGV[1] ~= '' then
    if written_at ~= ARGV[1] or redis.call('HGET', KEYS[1], 'h') ~= ARGV[2] then
        return 2
    end
end
redis.call('DEL', KEYS[1])
redis.call('ZREM', KEYS[2], ARGV[3])
return 1
"""

_DELETE_OUTCOMES = {
    0: DeleteOutcome.NOT_FOUND,
    1: DeleteOutcome.DELETED,
    2: DeleteOutcome.CHANGED,
}


def _field(data: Dict[Any, Any], name: str) -> Any:
    """Hash fields arrive as bytes keys when responses are not decoded."""
    if name.encode() in data:
        return data[name.encode()]
    return data.get(name)


def _text(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, (bytes, bytearray)) else str(value)


# =============================================================================
# REDIS HOT STORE
# =============================================================================

class RedisHotStore(HotRecordStore):
    """
    Production Redis/Valkey hot tier.

    Thread Safety:
    -------------
    - Connection pool handles thread safety internally
    - All operations are async and non-blocking
    - Lua scripts execute atomically on Redis server

    Example:
        >>> store = RedisHotStore(RedisConfig(host="redis.example.com"))
        >>> await store.connect()
        >>> await store.put(record)
        >>> await store.close()
    """

    __slots__ = (
        "_config",
        "_client",
        "_delete_sha",
        "_connected",
    )

    def __init__(
        self,
        config: RedisConfig,
        client: Optional["aioredis.Redis"] = None,
    ) -> None:
        """
        Args:
            config: Redis connection configuration.
            client: Pre-built client; when given, connect() is not needed.
        """
        self._config = config
        self._client = client
        self._delete_sha: Optional[str] = None
        self._connected = client is not None

    # -------------------------------------------------------------------------
    # KEY LAYOUT
    # -------------------------------------------------------------------------

    def _record_key(self, storage_key: str) -> str:
        return f"{self._config.key_prefix}:rec:{storage_key}"

    @property
    def _index_key(self) -> str:
        return f"{self._config.key_prefix}:age"

    @property
    def key_prefix(self) -> str:
        return self._config.key_prefix

    @property
    def client(self) -> Optional["aioredis.Redis"]:
        """Underlying client, shared with the job lease."""
        return self._client

    # -------------------------------------------------------------------------
    # CONNECTION MANAGEMENT
    # -------------------------------------------------------------------------

    async def connect(self) -> Result[None, StorageError]:
        """
        Establish connection pool to Redis and load the delete script.

        Complexity: O(pool_size) for initial connections.
        """
        endpoint = f"{self._config.host}:{self._config.port}"
        try:
            import redis.asyncio as aioredis
        except ImportError as e:
            return Err(StorageError.connection_failed("redis", endpoint, cause=e))

        try:
            kwargs = self._config.get_connection_kwargs()

            if self._config.mode == RedisMode.SENTINEL:
                from redis.asyncio.sentinel import Sentinel
                sentinel = Sentinel(
                    list(self._config.sentinel_hosts),
                    socket_timeout=self._config.socket_timeout_ms / 1000,
                )
                kwargs.pop("host")
                kwargs.pop("port")
                self._client = sentinel.master_for(
                    self._config.sentinel_service,
                    redis_class=aioredis.Redis,
                    **kwargs,
                )
            else:
                self._client = aioredis.Redis(**kwargs)

            await self._client.ping()
            self._delete_sha = await self._client.script_load(LUA_DELETE_SCRIPT)
            self._connected = True
            logger.info("Redis hot store connected", extra={"endpoint": endpoint})
            return Ok(None)

        except Exception as e:
            return Err(StorageError.connection_failed("redis", endpoint, cause=e))

    async def close(self) -> None:
        """
        Close all connections. Safe to call multiple times.
        """
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._connected = False

    def _not_connected(self) -> StorageError:
        return StorageError.connection_failed(
            "redis", f"{self._config.host}:{self._config.port}"
        )

    def _failure(self, operation: str, e: Exception) -> StorageError:
        if isinstance(e, asyncio.TimeoutError):
            return StorageError.timeout(
                f"redis.{operation}", self._config.socket_timeout_ms, cause=e
            )
        return StorageError.backend("redis", operation, cause=e)

    # -------------------------------------------------------------------------
    # DECODING
    # -------------------------------------------------------------------------

    def _decode(self, storage_key: str, data: Dict[Any, Any]) -> Result[Record, StorageError]:
        location = self._record_key(storage_key)
        try:
            payload = _field(data, "p")
            written_at = int(_text(_field(data, "w")))
            digest = _text(_field(data, "h"))
            record = Record(
                record_id=_text(_field(data, "r")),
                partition_key=_text(_field(data, "k")),
                payload=bytes(payload),
                written_at=Timestamp(nanos=written_at),
            )
        except (TypeError, ValueError, AttributeError) as e:
            return Err(StorageError.corruption(location, f"malformed hash: {e}"))

        if record.content_hash.to_hex() != digest:
            return Err(StorageError.corruption(location, "payload digest mismatch"))
        return Ok(record)

    # -------------------------------------------------------------------------
    # CORE OPERATIONS
    # -------------------------------------------------------------------------

    async def get(
        self,
        record_id: str,
        partition_key: str,
    ) -> Result[Optional[Record], StorageError]:
        """
        Complexity: O(1) - Redis HGETALL on a fixed-size hash.
        """
        if not self._connected or self._client is None:
            return Err(self._not_connected())

        storage_key = RecordKey(partition_key=partition_key, record_id=record_id).storage_key
        try:
            data = await self._client.hgetall(self._record_key(storage_key))
        except Exception as e:
            return Err(self._failure("get", e))

        if not data:
            return Ok(None)
        decoded = self._decode(storage_key, data)
        if decoded.is_err():
            return decoded
        return Ok(decoded.unwrap())

    async def put(self, record: Record) -> Result[None, StorageError]:
        """
        Upsert the record hash and its age index entry in one transaction.
        """
        if not self._connected or self._client is None:
            return Err(self._not_connected())

        storage_key = record.key.storage_key
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.hset(self._record_key(storage_key), mapping={
                    "p": record.payload,
                    "w": str(record.written_at.nanos),
                    "h": record.content_hash.to_hex(),
                    "r": record.record_id,
                    "k": record.partition_key,
                })
                pipe.zadd(self._index_key, {storage_key: record.written_at.millis})
                await pipe.execute()
            return Ok(None)
        except Exception as e:
            return Err(self._failure("put", e))

    async def delete(
        self,
        record_id: str,
        partition_key: str,
        expected: Optional[Record] = None,
    ) -> Result[DeleteOutcome, StorageError]:
        """
        Atomic delete of hash and index entry, conditional when expected is given.
        """
        if not self._connected or self._client is None:
            return Err(self._not_connected())

        storage_key = RecordKey(partition_key=partition_key, record_id=record_id).storage_key
        args = ["", "", storage_key]
        if expected is not None:
            args = [str(expected.written_at.nanos), expected.content_hash.to_hex(), storage_key]

        try:
            if self._delete_sha is None:
                self._delete_sha = await self._client.script_load(LUA_DELETE_SCRIPT)
            code = await self._client.evalsha(
                self._delete_sha,
                2,
                self._record_key(storage_key),
                self._index_key,
                *args,
            )
        except Exception as e:
            return Err(self._failure("delete", e))

        outcome = _DELETE_OUTCOMES.get(int(code))
        if outcome is None:
            return Err(StorageError.backend(
                "redis", "delete", cause=ValueError(f"unexpected script result {code!r}")
            ))
        return Ok(outcome)

    async def _load_many(self, members: List[str]) -> List[Dict[Any, Any]]:
        async with self._client.pipeline(transaction=False) as pipe:
            for member in members:
                pipe.hgetall(self._record_key(member))
            return await pipe.execute()

    async def scan_older_than(
        self,
        cutoff: Timestamp,
        after: Optional[ScanPosition],
        page_size: int,
    ) -> Result[ScanPage, StorageError]:
        """
        Ordered page of records with written_at <= cutoff after a position.

        Index entries are fetched by millisecond score. Fetching stops only
        once the last fetched score is beyond the millisecond of the page's
        final record, so no unfetched entry can sort inside the page.
        """
        if not self._connected or self._client is None:
            return Err(self._not_connected())

        min_score: Any = "-inf" if after is None else after.written_at_nanos // C.NS_PER_MS
        max_score = cutoff.millis
        fetch = max(page_size * SCAN_FETCH_FACTOR, 16)

        candidates: List[Record] = []
        offset = 0
        exhausted = False
        try:
            while True:
                batch = await self._client.zrangebyscore(
                    self._index_key, min_score, max_score,
                    start=offset, num=fetch, withscores=True,
                )
                offset += len(batch)
                members = [_text(member) for member, _ in batch]
                hashes = await self._load_many(members) if members else []

                for member, data in zip(members, hashes):
                    if not data:
                        continue  # deleted since the index read
                    decoded = self._decode(member, data)
                    if decoded.is_err():
                        return decoded
                    record = decoded.unwrap()
                    if record.written_at > cutoff:
                        continue
                    if after is not None and record.position <= after:
                        continue
                    candidates.append(record)

                if len(batch) < fetch:
                    exhausted = True
                    break
                if len(candidates) >= page_size:
                    candidates.sort(key=lambda r: r.position)
                    boundary_ms = candidates[page_size - 1].written_at.millis
                    if int(batch[-1][1]) > boundary_ms:
                        break
        except Exception as e:
            return Err(self._failure("scan", e))

        candidates.sort(key=lambda r: r.position)
        page = candidates[:page_size]
        more = (not exhausted) or len(candidates) > page_size
        next_position = page[-1].position if page and more else None
        return Ok(ScanPage(records=tuple(page), next_position=next_position))


__all__ = ["RedisHotStore", "LUA_DELETE_SCRIPT"]
