"""
In-Process Storage Backends: Development, Testing and Local Cold Tier

Provides implementations of the tier capability interfaces:
- InMemoryHotStore: hot tier with an ordered age index
- InMemoryColdStore: cold tier holding encoded frames in memory
- FileSystemColdStore: cold tier on local or mounted disk

Design Principles:
    - Full interface compliance for seamless production swap
    - Coroutine-safe operations via asyncio locks
    - Cold backends store the same LZ4 frame as the S3 backend, so the
      codec's integrity checks run in every environment

Performance Characteristics:
    - Get/Put/Delete: O(1) average case (hot put/delete O(N) index shift)
    - Scan: O(log N + k) where k is page size
"""

from __future__ import annotations

import asyncio
import bisect
import hashlib
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from tierstore.core.errors import StorageError
from tierstore.core.types import Err, Ok, Record, RecordKey, Result, ScanPosition, Timestamp
from tierstore.storage.codec import decode_record, encode_record
from tierstore.storage.protocols import (
    ColdPutOutcome,
    ColdRecordStore,
    DeleteOutcome,
    HotRecordStore,
    ScanPage,
    matches_expected,
)

logger = logging.getLogger(__name__)

_IndexEntry = Tuple[int, str]


# =============================================================================
# IN-MEMORY HOT STORE
# =============================================================================
class InMemoryHotStore(HotRecordStore):
    """
    In-memory hot tier.

    Records are held in a dict keyed by storage key; a sorted list of
    (written_at_nanos, storage_key) entries backs the age scan.

    Thread Safety:
        All operations are protected by asyncio.Lock for
        concurrent access safety within async context.
    """

    __slots__ = ("_records", "_index", "_lock")

    def __init__(self) -> None:
        self._records: Dict[str, Record] = {}
        self._index: List[_IndexEntry] = []
        self._lock = asyncio.Lock()

    def _unindex(self, record: Record) -> None:
        entry = (record.written_at.nanos, record.key.storage_key)
        pos = bisect.bisect_left(self._index, entry)
        if pos < len(self._index) and self._index[pos] == entry:
            del self._index[pos]

    async def get(
        self,
        record_id: str,
        partition_key: str,
    ) -> Result[Optional[Record], StorageError]:
        key = RecordKey(partition_key=partition_key, record_id=record_id).storage_key
        async with self._lock:
            return Ok(self._records.get(key))

    async def put(self, record: Record) -> Result[None, StorageError]:
        key = record.key.storage_key
        async with self._lock:
            previous = self._records.get(key)
            if previous is not None:
                self._unindex(previous)
            self._records[key] = record
            bisect.insort(self._index, (record.written_at.nanos, key))
        return Ok(None)

    async def delete(
        self,
        record_id: str,
        partition_key: str,
        expected: Optional[Record] = None,
    ) -> Result[DeleteOutcome, StorageError]:
        key = RecordKey(partition_key=partition_key, record_id=record_id).storage_key
        async with self._lock:
            current = self._records.get(key)
            if current is None:
                return Ok(DeleteOutcome.NOT_FOUND)
            if expected is not None and not matches_expected(current, expected):
                return Ok(DeleteOutcome.CHANGED)
            del self._records[key]
            self._unindex(current)
        return Ok(DeleteOutcome.DELETED)

    async def scan_older_than(
        self,
        cutoff: Timestamp,
        after: Optional[ScanPosition],
        page_size: int,
    ) -> Result[ScanPage, StorageError]:
        async with self._lock:
            start = 0
            if after is not None:
                start = bisect.bisect_right(
                    self._index, (after.written_at_nanos, after.storage_key)
                )
            records: List[Record] = []
            i = start
            while i < len(self._index) and len(records) < page_size:
                written_at, key = self._index[i]
                if written_at > cutoff.nanos:
                    break
                records.append(self._records[key])
                i += 1

            more = i < len(self._index) and self._index[i][0] <= cutoff.nanos
            next_position = records[-1].position if records and more else None
            return Ok(ScanPage(records=tuple(records), next_position=next_position))

    async def count(self) -> int:
        async with self._lock:
            return len(self._records)

    async def clear(self) -> None:
        async with self._lock:
            self._records.clear()
            self._index.clear()


# =============================================================================
# IN-MEMORY COLD STORE
# =============================================================================
def _resolve_put(
    existing: Optional[Record],
    incoming: Record,
) -> Optional[ColdPutOutcome]:
    """Outcome for an occupied slot, or None when the slot is free."""
    if existing is None:
        return None
    if existing.same_content(incoming):
        return ColdPutOutcome.ALREADY_PRESENT
    return ColdPutOutcome.CONFLICT


class InMemoryColdStore(ColdRecordStore):
    """
    In-memory cold tier.

    Stores encoded frames rather than Record objects so that reads pay
    the same decode/verify cost as a real object store.
    """

    __slots__ = ("_objects", "_lock")

    def __init__(self) -> None:
        self._objects: Dict[str, bytes] = {}
        self._lock = asyncio.Lock()

    async def get(self, record_id: str) -> Result[Optional[Record], StorageError]:
        async with self._lock:
            data = self._objects.get(record_id)
        if data is None:
            return Ok(None)
        result = decode_record(data, location=f"memory://{record_id}")
        if result.is_err():
            return result
        return Ok(result.unwrap())

    async def put_if_absent_or_identical(
        self,
        record: Record,
    ) -> Result[ColdPutOutcome, StorageError]:
        async with self._lock:
            data = self._objects.get(record.record_id)
            if data is not None:
                decoded = decode_record(data, location=f"memory://{record.record_id}")
                if decoded.is_err():
                    return Ok(ColdPutOutcome.CONFLICT)
                outcome = _resolve_put(decoded.unwrap(), record)
                if outcome is not None:
                    return Ok(outcome)
            self._objects[record.record_id] = encode_record(record)
        return Ok(ColdPutOutcome.WRITTEN)

    async def delete(self, record_id: str) -> Result[bool, StorageError]:
        async with self._lock:
            return Ok(self._objects.pop(record_id, None) is not None)

    async def exists(self, record_id: str) -> Result[bool, StorageError]:
        async with self._lock:
            return Ok(record_id in self._objects)

    async def count(self) -> int:
        async with self._lock:
            return len(self._objects)


# =============================================================================
# FILESYSTEM COLD STORE
# =============================================================================
class FileSystemColdStore(ColdRecordStore):
    """
    Local filesystem cold tier.

    Objects stored at: {root}/{h[:2]}/{h[2:4]}/{h}.tsr where h is the
    SHA-256 of the record id. Writes go to a temp file that is renamed
    into place, so readers never observe a partial object.
    """

    SUFFIX = ".tsr"

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _path(self, record_id: str) -> Path:
        digest = hashlib.sha256(record_id.encode("utf-8")).hexdigest()
        return self._root / digest[:2] / digest[2:4] / f"{digest}{self.SUFFIX}"

    def _read(self, path: Path) -> Optional[bytes]:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def _write_atomic(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(f"{self.SUFFIX}.tmp")
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)

    async def get(self, record_id: str) -> Result[Optional[Record], StorageError]:
        path = self._path(record_id)
        try:
            data = await asyncio.to_thread(self._read, path)
        except OSError as e:
            return Err(StorageError.backend("filesystem", "get", cause=e))
        if data is None:
            return Ok(None)
        result = decode_record(data, location=str(path))
        if result.is_err():
            return result
        return Ok(result.unwrap())

    async def put_if_absent_or_identical(
        self,
        record: Record,
    ) -> Result[ColdPutOutcome, StorageError]:
        path = self._path(record.record_id)
        async with self._lock:
            try:
                data = await asyncio.to_thread(self._read, path)
                if data is not None:
                    decoded = decode_record(data, location=str(path))
                    if decoded.is_err():
                        return Ok(ColdPutOutcome.CONFLICT)
                    outcome = _resolve_put(decoded.unwrap(), record)
                    if outcome is not None:
                        return Ok(outcome)
                await asyncio.to_thread(self._write_atomic, path, encode_record(record))
            except OSError as e:
                return Err(StorageError.backend("filesystem", "put", cause=e))

        logger.debug("Cold object written", extra={"path": str(path)})
        return Ok(ColdPutOutcome.WRITTEN)

    async def delete(self, record_id: str) -> Result[bool, StorageError]:
        path = self._path(record_id)
        async with self._lock:
            try:
                path.unlink()
                return Ok(True)
            except FileNotFoundError:
                return Ok(False)
            except OSError as e:
                return Err(StorageError.backend("filesystem", "delete", cause=e))

    async def exists(self, record_id: str) -> Result[bool, StorageError]:
        return Ok(self._path(record_id).exists())


__all__ = [
    "InMemoryHotStore",
    "InMemoryColdStore",
    "FileSystemColdStore",
]
