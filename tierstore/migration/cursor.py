"""
Migration Cursor: Persisted Scan Progress

Provides:
- Immutable MigrationCursor value object passed into and returned from
  each migration cycle (never held as process-global state)
- Checksummed JSON encoding so a torn or hand-edited cursor is detected
- Pluggable persistence: in-memory, local file, PostgreSQL

Cursor Format:
    {
        "v": 1,                          // Version
        "j": "default",                  // Job ID
        "c": "9f1c...",                  // Cycle ID
        "t": 1704067200000000000,        // Scan started (nanos)
        "p": {"w": 1696..., "k": "pk/id"}, // Last processed position or null
        "m": 1200,                       // Records migrated
        "f": 3,                          // Records failed
        "h": "a1b2c3d4e5f60718"          // SHA-256 checksum, truncated
    }

A corrupt cursor is never fatal: restarting the scan from the beginning
is always safe and only costs extra work.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union
from uuid import uuid4

from tierstore.core import constants as C
from tierstore.core.config import CursorConfig
from tierstore.core.errors import MigrationError, StorageError
from tierstore.core.types import Err, Ok, Result, ScanPosition, Timestamp
from tierstore.storage.config import PostgresConfig

logger = logging.getLogger(__name__)

_JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]{1,128}$")

CursorLoadError = Union[MigrationError, StorageError]


# =============================================================================
# MIGRATION CURSOR
# =============================================================================
@dataclass(frozen=True, slots=True)
class MigrationCursor:
    """
    Progress marker for one migration job.

    last_processed is the position up to which every record has reached a
    final outcome (migrated or vanished). A resumed cycle scans strictly
    after it.
    """
    job_id: str
    cycle_id: str
    scan_started_at: Timestamp
    last_processed: Optional[ScanPosition] = None
    records_migrated: int = 0
    records_failed: int = 0

    @classmethod
    def start(cls, job_id: str, now: Timestamp) -> MigrationCursor:
        """Fresh cursor at the beginning of the hot scan."""
        return cls(job_id=job_id, cycle_id=uuid4().hex, scan_started_at=now)

    def advance(self, position: ScanPosition, migrated: int = 0) -> MigrationCursor:
        return replace(
            self,
            last_processed=position,
            records_migrated=self.records_migrated + migrated,
        )

    def with_failures(self, count: int) -> MigrationCursor:
        return replace(self, records_failed=self.records_failed + count)

    def _payload(self) -> Dict[str, Any]:
        return {
            "v": C.CURSOR_VERSION,
            "j": self.job_id,
            "c": self.cycle_id,
            "t": self.scan_started_at.nanos,
            "p": self.last_processed.to_dict() if self.last_processed else None,
            "m": self.records_migrated,
            "f": self.records_failed,
        }

    def checksum(self) -> str:
        canonical = json.dumps(self._payload(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(C.CURSOR_CHECKSUM_SECRET + canonical.encode()).hexdigest()[:16]

    def to_dict(self) -> Dict[str, Any]:
        data = self._payload()
        data["h"] = self.checksum()
        return data


# =============================================================================
# CURSOR CODEC
# =============================================================================
class CursorCodec:
    """Encodes/decodes cursors for persistence."""

    @staticmethod
    def encode(cursor: MigrationCursor) -> bytes:
        return json.dumps(cursor.to_dict(), separators=(",", ":")).encode("utf-8")

    @staticmethod
    def decode(data: Union[bytes, str], job_id: str) -> Result[MigrationCursor, MigrationError]:
        """
        Decode and validate a persisted cursor.

        Every failure mode maps to MigrationError.cursor_corruption.
        """
        try:
            raw = json.loads(data)
            if not isinstance(raw, dict):
                return Err(MigrationError.cursor_corruption(job_id, "not a JSON object"))
            if raw.get("v") != C.CURSOR_VERSION:
                return Err(MigrationError.cursor_corruption(
                    job_id, f"unsupported version {raw.get('v')!r}"
                ))

            position = raw["p"]
            counts = (raw["t"], raw["m"], raw["f"])
            if not all(isinstance(n, int) and n >= 0 for n in counts):
                return Err(MigrationError.cursor_corruption(job_id, "invalid counters"))

            cursor = MigrationCursor(
                job_id=str(raw["j"]),
                cycle_id=str(raw["c"]),
                scan_started_at=Timestamp(nanos=raw["t"]),
                last_processed=ScanPosition.from_dict(position) if position is not None else None,
                records_migrated=raw["m"],
                records_failed=raw["f"],
            )
            checksum = raw["h"]
        except (ValueError, KeyError, TypeError) as e:
            return Err(MigrationError.cursor_corruption(job_id, f"invalid cursor format: {e}"))

        if cursor.job_id != job_id:
            return Err(MigrationError.cursor_corruption(
                job_id, f"cursor belongs to job {cursor.job_id!r}"
            ))
        if checksum != cursor.checksum():
            return Err(MigrationError.cursor_corruption(job_id, "checksum mismatch"))
        return Ok(cursor)


# =============================================================================
# CURSOR STORES
# =============================================================================
class CursorStore(ABC):
    """Durable home of the migration cursor, keyed by job identity."""

    @abstractmethod
    async def load(self, job_id: str) -> Result[Optional[MigrationCursor], CursorLoadError]:
        """
        Ok(None) when no cursor is stored. A cursor that cannot be decoded
        is Err(MigrationError) with code MIGRATION_CURSOR_CORRUPTION.
        """
        ...

    @abstractmethod
    async def save(self, cursor: MigrationCursor) -> Result[None, StorageError]:
        ...

    @abstractmethod
    async def clear(self, job_id: str) -> Result[None, StorageError]:
        ...

    async def close(self) -> None:
        return None


class InMemoryCursorStore(CursorStore):
    """Cursor store for tests and single-process development."""

    __slots__ = ("_data",)

    def __init__(self) -> None:
        self._data: Dict[str, bytes] = {}

    async def load(self, job_id: str) -> Result[Optional[MigrationCursor], CursorLoadError]:
        data = self._data.get(job_id)
        if data is None:
            return Ok(None)
        decoded = CursorCodec.decode(data, job_id)
        if decoded.is_err():
            return decoded
        return Ok(decoded.unwrap())

    async def save(self, cursor: MigrationCursor) -> Result[None, StorageError]:
        self._data[cursor.job_id] = CursorCodec.encode(cursor)
        return Ok(None)

    async def clear(self, job_id: str) -> Result[None, StorageError]:
        self._data.pop(job_id, None)
        return Ok(None)

    def raw(self, job_id: str) -> Optional[bytes]:
        return self._data.get(job_id)

    def write_raw(self, job_id: str, data: bytes) -> None:
        """Store bytes verbatim, bypassing the codec."""
        self._data[job_id] = data


class FileCursorStore(CursorStore):
    """
    One JSON file per job under a directory.

    Saves write a temp file, fsync it and rename it into place, so a crash
    mid-save leaves either the previous cursor or the new one.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    def path_for(self, job_id: str) -> Path:
        if not _JOB_ID_PATTERN.match(job_id):
            raise ValueError(f"job_id {job_id!r} is not filesystem-safe")
        return self._directory / f"{job_id}.cursor.json"

    def _read(self, path: Path) -> Optional[bytes]:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)

    async def load(self, job_id: str) -> Result[Optional[MigrationCursor], CursorLoadError]:
        path = self.path_for(job_id)
        try:
            data = await asyncio.to_thread(self._read, path)
        except OSError as e:
            return Err(StorageError.backend("cursor-file", "load", cause=e))
        if data is None:
            return Ok(None)
        decoded = CursorCodec.decode(data, job_id)
        if decoded.is_err():
            return decoded
        return Ok(decoded.unwrap())

    async def save(self, cursor: MigrationCursor) -> Result[None, StorageError]:
        path = self.path_for(cursor.job_id)
        try:
            await asyncio.to_thread(self._write, path, CursorCodec.encode(cursor))
        except OSError as e:
            return Err(StorageError.backend("cursor-file", "save", cause=e))
        return Ok(None)

    async def clear(self, job_id: str) -> Result[None, StorageError]:
        try:
            self.path_for(job_id).unlink(missing_ok=True)
        except OSError as e:
            return Err(StorageError.backend("cursor-file", "clear", cause=e))
        return Ok(None)


class PostgresCursorStore(CursorStore):
    """
    Cursor rows in PostgreSQL via asyncpg.

    Schema:
        CREATE TABLE migration_cursors (
            job_id     TEXT PRIMARY KEY,
            payload    TEXT NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """

    __slots__ = ("_config", "_pool")

    def __init__(self, config: PostgresConfig, pool: Any = None) -> None:
        """
        Args:
            config: Connection settings.
            pool: Pre-built asyncpg pool; when given, connect() only
                ensures the table exists.
        """
        self._config = config
        self._pool = pool

    @property
    def pool(self) -> Any:
        """Connection pool, shared with the job lease."""
        return self._pool

    async def connect(self) -> Result[None, StorageError]:
        """Create the connection pool and the cursor table."""
        endpoint = f"{self._config.host}:{self._config.port}"
        if self._pool is None:
            try:
                import asyncpg
            except ImportError as e:
                return Err(StorageError.connection_failed("postgres", endpoint, cause=e))
            try:
                self._pool = await asyncpg.create_pool(
                    host=self._config.host,
                    port=self._config.port,
                    database=self._config.database,
                    user=self._config.user,
                    password=self._config.password,
                    min_size=self._config.pool_min,
                    max_size=self._config.pool_max,
                    command_timeout=self._config.query_timeout_ms / 1000,
                )
            except Exception as e:
                return Err(StorageError.connection_failed("postgres", endpoint, cause=e))

        try:
            async with self._pool.acquire() as conn:
                await conn.execute(
                    f"CREATE TABLE IF NOT EXISTS {self._config.table} ("
                    "job_id TEXT PRIMARY KEY, "
                    "payload TEXT NOT NULL, "
                    "updated_at TIMESTAMPTZ NOT NULL DEFAULT now())"
                )
        except Exception as e:
            return Err(StorageError.backend("postgres", "create_table", cause=e))

        logger.info("Postgres cursor store ready", extra={"endpoint": endpoint})
        return Ok(None)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def load(self, job_id: str) -> Result[Optional[MigrationCursor], CursorLoadError]:
        if self._pool is None:
            return Err(StorageError.connection_failed("postgres", self._config.host))
        try:
            async with self._pool.acquire() as conn:
                payload = await conn.fetchval(
                    f"SELECT payload FROM {self._config.table} WHERE job_id = $1",
                    job_id,
                )
        except Exception as e:
            return Err(StorageError.backend("postgres", "load", cause=e))

        if payload is None:
            return Ok(None)
        decoded = CursorCodec.decode(payload, job_id)
        if decoded.is_err():
            return decoded
        return Ok(decoded.unwrap())

    async def save(self, cursor: MigrationCursor) -> Result[None, StorageError]:
        if self._pool is None:
            return Err(StorageError.connection_failed("postgres", self._config.host))
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(
                    f"INSERT INTO {self._config.table} (job_id, payload, updated_at) "
                    "VALUES ($1, $2, now()) "
                    "ON CONFLICT (job_id) DO UPDATE "
                    "SET payload = EXCLUDED.payload, updated_at = now()",
                    cursor.job_id,
                    CursorCodec.encode(cursor).decode("utf-8"),
                )
        except Exception as e:
            return Err(StorageError.backend("postgres", "save", cause=e))
        return Ok(None)

    async def clear(self, job_id: str) -> Result[None, StorageError]:
        if self._pool is None:
            return Err(StorageError.connection_failed("postgres", self._config.host))
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(
                    f"DELETE FROM {self._config.table} WHERE job_id = $1",
                    job_id,
                )
        except Exception as e:
            return Err(StorageError.backend("postgres", "clear", cause=e))
        return Ok(None)


# =============================================================================
# FACTORY
# =============================================================================
def create_cursor_store(config: CursorConfig) -> CursorStore:
    """Cursor store selected by configuration (unconnected)."""
    if config.backend == "postgres":
        return PostgresCursorStore(config.postgres)
    if config.backend == "file":
        return FileCursorStore(config.directory)
    return InMemoryCursorStore()


async def open_cursor_store(config: CursorConfig) -> Result[CursorStore, StorageError]:
    store = create_cursor_store(config)
    if isinstance(store, PostgresCursorStore):
        result = await store.connect()
        if result.is_err():
            return Err(result.error)
    return Ok(store)


__all__ = [
    "MigrationCursor",
    "CursorCodec",
    "CursorStore",
    "InMemoryCursorStore",
    "FileCursorStore",
    "PostgresCursorStore",
    "create_cursor_store",
    "open_cursor_store",
]
