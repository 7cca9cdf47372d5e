"""
Storage Capability Interfaces: Hot and Cold Tiers

Two narrow capability interfaces that any concrete backend can satisfy:
- HotRecordStore: low-latency point get/put/delete plus an ordered age scan
- ColdRecordStore: high-latency, low-cost point get/put/delete/exists

The migration engine and the access facade depend only on these
interfaces, never on a concrete backend's specifics.

Design Principles:
    - Zero-exception control flow via Result[T, StorageError]
    - Async-first for non-blocking I/O
    - "Not found" is a value (Ok(None) / Ok(False)), never an error
    - Cold puts are idempotent: the same record always yields the same state
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from tierstore.core.errors import StorageError
from tierstore.core.types import Record, Result, ScanPosition, Timestamp


# =============================================================================
# OUTCOME ENUMERATIONS
# =============================================================================
class DeleteOutcome(Enum):
    """Result of a (possibly conditional) hot-tier delete."""
    DELETED = "deleted"
    NOT_FOUND = "not_found"
    CHANGED = "changed"        # Conditional delete refused: record was rewritten


class ColdPutOutcome(Enum):
    """Result of an idempotent cold-tier put."""
    WRITTEN = "written"                  # No prior object; record stored
    ALREADY_PRESENT = "already_present"  # Identical object already stored
    CONFLICT = "conflict"                # A different object holds this id


# =============================================================================
# SCAN PAGE
# =============================================================================
@dataclass(frozen=True, slots=True)
class ScanPage:
    """
    One ordered page of an age scan.

    next_position is None when the scan has reached its end.
    """
    records: tuple[Record, ...] = field(default_factory=tuple)
    next_position: Optional[ScanPosition] = None

    @property
    def is_last(self) -> bool:
        return self.next_position is None

    def __len__(self) -> int:
        return len(self.records)


def matches_expected(current: Record, expected: Record) -> bool:
    """True when a conditional delete guarded by expected may proceed."""
    return (
        current.written_at == expected.written_at
        and current.content_hash == expected.content_hash
    )


# =============================================================================
# HOT TIER
# =============================================================================
class HotRecordStore(ABC):
    """
    Low-latency store holding recently written records.

    Shared by live request traffic and the background migration path;
    implementations must be safe for concurrent use.
    """

    @abstractmethod
    async def get(
        self,
        record_id: str,
        partition_key: str,
    ) -> Result[Optional[Record], StorageError]:
        """
        Point read.

        Returns:
            Ok(record): Record found
            Ok(None): Record absent
            Err(error): Backend failure
        """
        ...

    @abstractmethod
    async def put(self, record: Record) -> Result[None, StorageError]:
        """
        Upsert a record. Ok only after the backend durably acknowledges.
        """
        ...

    @abstractmethod
    async def delete(
        self,
        record_id: str,
        partition_key: str,
        expected: Optional[Record] = None,
    ) -> Result[DeleteOutcome, StorageError]:
        """
        Delete a record.

        When expected is given the delete is conditional and atomic: it is
        applied only if the stored record still has the same written_at and
        payload hash; otherwise nothing is deleted and CHANGED is returned.
        """
        ...

    @abstractmethod
    async def scan_older_than(
        self,
        cutoff: Timestamp,
        after: Optional[ScanPosition],
        page_size: int,
    ) -> Result[ScanPage, StorageError]:
        """
        Ordered page of records with written_at <= cutoff.

        Records are ordered by (written_at, storage_key) and start strictly
        after the given position (from the beginning when after is None).

        Complexity: O(log N + page_size) for index-backed implementations
        """
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None


# =============================================================================
# COLD TIER
# =============================================================================
class ColdRecordStore(ABC):
    """
    High-latency, low-cost store for aged records, keyed by record_id.

    Seconds-level read latency is an accepted contract.
    """

    @abstractmethod
    async def get(self, record_id: str) -> Result[Optional[Record], StorageError]:
        """Point read. Ok(None) when absent."""
        ...

    @abstractmethod
    async def put_if_absent_or_identical(
        self,
        record: Record,
    ) -> Result[ColdPutOutcome, StorageError]:
        """
        Idempotent put.

        Writes when no object exists for record_id. When one exists with the
        same written_at and payload hash, nothing is written. Any other
        existing object is left untouched and CONFLICT is returned.
        """
        ...

    @abstractmethod
    async def delete(self, record_id: str) -> Result[bool, StorageError]:
        """Delete. Ok(False) when nothing was stored."""
        ...

    @abstractmethod
    async def exists(self, record_id: str) -> Result[bool, StorageError]:
        """Existence check without fetching the payload."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None


__all__ = [
    "DeleteOutcome",
    "ColdPutOutcome",
    "ScanPage",
    "matches_expected",
    "HotRecordStore",
    "ColdRecordStore",
]
