"""
Core Type Definitions for the Tiered Record Store

Implements Result/Either monads for zero-exception control flow and the
record data model shared by the hot tier, the cold tier, the migration
engine and the access facade.

Design Principles:
- Never use null for absence in error paths (use Result)
- Immutable value objects: records, keys and scan positions are frozen
- Identity (record_id, partition_key) never changes for a record's lifetime
- written_at is the only ordering signal; tier decisions derive from it

Complexity: O(1) for all type operations except content hashing (O(n))
"""

from __future__ import annotations

import hashlib
import struct
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import (
    Any,
    Callable,
    Generic,
    Literal,
    Optional,
    TypeVar,
    Union,
)

from tierstore.core import constants as C

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type
U = TypeVar("U")  # Transform result type


# =============================================================================
# RESULT MONAD: ZERO-EXCEPTION CONTROL FLOW
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result monad.

    Immutable, hashable container for successful computation results.
    """

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        """
        Extract value. Safe to call after is_ok() check.

        Returns:
            T: The wrapped success value
        """
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return value, ignoring default."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply transformation to success value."""
        return Ok(fn(self.value))

    def flat_map(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Monadic bind for chaining fallible operations."""
        return fn(self.value)

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result monad.

    Immutable container for error information.
    Carries full error context for exhaustive handling.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """
        Attempting to unwrap an error is a programming error.

        Raises:
            RuntimeError: Always, with error context
        """
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        """Return default value on error."""
        return default

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        """No-op on error variant - propagates error unchanged."""
        return self

    def flat_map(self, fn: Callable[[Any], Result[U, E]]) -> Err[E]:
        """Propagate error through monadic chain."""
        return self

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# TIMESTAMP WITH NANOSECOND PRECISION
# =============================================================================
@dataclass(frozen=True, slots=True, order=True)
class Timestamp:
    """
    High-precision timestamp for write ordering and age computation.

    Stores nanoseconds since Unix epoch. Supports comparison,
    arithmetic with nanosecond offsets and serialization.

    Range: ~292 years from epoch (sufficient for practical use)
    """

    nanos: int

    @classmethod
    def now(cls) -> Timestamp:
        """Capture current wall-clock time with nanosecond precision."""
        return cls(nanos=time.time_ns())

    @classmethod
    def from_seconds(cls, seconds: float) -> Timestamp:
        """Convert floating-point seconds to Timestamp."""
        return cls(nanos=int(seconds * C.NS_PER_S))

    @classmethod
    def from_millis(cls, millis: int) -> Timestamp:
        """Convert milliseconds to Timestamp."""
        return cls(nanos=millis * C.NS_PER_MS)

    @classmethod
    def from_datetime(cls, dt: datetime) -> Timestamp:
        """Convert aware datetime (naive is treated as UTC)."""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        delta = dt - datetime(1970, 1, 1, tzinfo=timezone.utc)
        micros = (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
        return cls(nanos=micros * 1_000)

    @property
    def seconds(self) -> float:
        return self.nanos / C.NS_PER_S

    @property
    def millis(self) -> int:
        """Milliseconds since epoch (truncating)."""
        return self.nanos // C.NS_PER_MS

    def to_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.nanos / C.NS_PER_S, tz=timezone.utc)

    def __sub__(self, other: Timestamp) -> int:
        """Subtract timestamps, returning difference in nanos."""
        return self.nanos - other.nanos

    def __add__(self, nanos: int) -> Timestamp:
        return Timestamp(nanos=self.nanos + nanos)

    def to_bytes(self) -> bytes:
        """Big-endian signed 64-bit encoding."""
        return struct.pack(">q", self.nanos)

    @classmethod
    def from_bytes(cls, data: bytes) -> Timestamp:
        return cls(nanos=struct.unpack(">q", data)[0])

    def __repr__(self) -> str:
        return f"Timestamp({self.to_datetime().isoformat()})"


# Clock abstraction: anything returning the current Timestamp
Clock = Callable[[], Timestamp]


# =============================================================================
# CONTENT-ADDRESSABLE HASH
# =============================================================================
@dataclass(frozen=True, slots=True)
class ContentHash:
    """
    SHA-256 content hash used for payload identity checks.

    The migration engine compares hot and cold copies by size and
    ContentHash before it is allowed to delete the hot copy.

    Memory: 32 bytes (SHA-256 digest)
    """

    digest: bytes

    def __post_init__(self) -> None:
        if len(self.digest) != 32:
            raise ValueError(f"SHA-256 digest must be 32 bytes, got {len(self.digest)}")

    @classmethod
    def compute(cls, data: bytes) -> ContentHash:
        """
        Compute SHA-256 hash of data.

        Complexity: O(n) where n is len(data)
        """
        return cls(digest=hashlib.sha256(data).digest())

    @classmethod
    def from_hex(cls, hex_str: str) -> Result[ContentHash, str]:
        """Parse from hexadecimal string representation."""
        try:
            return Ok(cls(digest=bytes.fromhex(hex_str)))
        except ValueError as e:
            return Err(f"Invalid hex string: {e}")

    def to_hex(self) -> str:
        return self.digest.hex()

    def __str__(self) -> str:
        return self.to_hex()

    def __hash__(self) -> int:
        return hash(self.digest)


# =============================================================================
# RECORD IDENTITY
# =============================================================================
def _validate_identifier(name: str, value: str) -> None:
    if not value:
        raise ValueError(f"{name} must be non-empty")
    if C.KEY_SEPARATOR in value:
        raise ValueError(f"{name} must not contain {C.KEY_SEPARATOR!r}: {value!r}")
    if len(value.encode("utf-8")) > C.MAX_IDENTIFIER_BYTES:
        raise ValueError(f"{name} exceeds {C.MAX_IDENTIFIER_BYTES} bytes")


@dataclass(frozen=True, slots=True, order=True)
class RecordKey:
    """
    Composite identity of a record.

    record_id is globally unique; partition_key is the co-location key
    used by the hot tier. Both are immutable for the record's lifetime.
    """

    partition_key: str
    record_id: str

    def __post_init__(self) -> None:
        _validate_identifier("partition_key", self.partition_key)
        _validate_identifier("record_id", self.record_id)

    @property
    def storage_key(self) -> str:
        """Stable string form, also the hot-tier tie-breaker."""
        return f"{self.partition_key}{C.KEY_SEPARATOR}{self.record_id}"

    @classmethod
    def from_storage_key(cls, storage_key: str) -> Result[RecordKey, str]:
        partition_key, sep, record_id = storage_key.partition(C.KEY_SEPARATOR)
        if not sep:
            return Err(f"Invalid storage key: {storage_key!r}")
        try:
            return Ok(cls(partition_key=partition_key, record_id=record_id))
        except ValueError as e:
            return Err(str(e))

    def __str__(self) -> str:
        return self.storage_key


# =============================================================================
# RECORD
# =============================================================================
@dataclass(frozen=True, slots=True)
class Record:
    """
    The unit of storage.

    Attributes:
        record_id: Opaque unique identifier, immutable.
        partition_key: Co-location/sharding key, immutable.
        payload: Opaque byte blob, at most MAX_PAYLOAD_BYTES.
        written_at: Timestamp of the last write; refreshed on every write.

    Raises:
        ValueError: On empty/invalid identifiers or oversize payload.
    """

    record_id: str
    partition_key: str
    payload: bytes
    written_at: Timestamp = field(default_factory=Timestamp.now)

    def __post_init__(self) -> None:
        _validate_identifier("record_id", self.record_id)
        _validate_identifier("partition_key", self.partition_key)
        if not isinstance(self.payload, (bytes, bytearray)):
            raise ValueError(f"payload must be bytes, got {type(self.payload).__name__}")
        if len(self.payload) > C.MAX_PAYLOAD_BYTES:
            raise ValueError(
                f"payload is {len(self.payload)} bytes, limit is {C.MAX_PAYLOAD_BYTES}"
            )
        if isinstance(self.payload, bytearray):
            object.__setattr__(self, "payload", bytes(self.payload))

    @property
    def key(self) -> RecordKey:
        return RecordKey(partition_key=self.partition_key, record_id=self.record_id)

    @property
    def size_bytes(self) -> int:
        return len(self.payload)

    @property
    def content_hash(self) -> ContentHash:
        return ContentHash.compute(self.payload)

    @property
    def position(self) -> ScanPosition:
        """Position of this record in hot-tier scan order."""
        return ScanPosition(
            written_at_nanos=self.written_at.nanos,
            storage_key=self.key.storage_key,
        )

    def stamped(self, written_at: Timestamp) -> Record:
        """Copy of this record with a new write timestamp."""
        return Record(
            record_id=self.record_id,
            partition_key=self.partition_key,
            payload=self.payload,
            written_at=written_at,
        )

    def same_content(self, other: Record) -> bool:
        """True when both copies are byte-identical and from the same write."""
        return (
            self.record_id == other.record_id
            and self.partition_key == other.partition_key
            and self.written_at == other.written_at
            and self.size_bytes == other.size_bytes
            and self.content_hash == other.content_hash
        )

    def __repr__(self) -> str:
        return (
            f"Record(key={self.key.storage_key!r}, "
            f"size={self.size_bytes}, written_at={self.written_at!r})"
        )


# =============================================================================
# SCAN POSITION
# =============================================================================
@dataclass(frozen=True, slots=True, order=True)
class ScanPosition:
    """
    Ordering token for the hot-tier age scan.

    Hot scans return records ordered by (written_at, storage_key);
    a position means "everything up to and including this record".
    """

    written_at_nanos: int
    storage_key: str

    def to_dict(self) -> dict[str, Any]:
        return {"w": self.written_at_nanos, "k": self.storage_key}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanPosition:
        written_at = data["w"]
        storage_key = data["k"]
        if not isinstance(written_at, int) or not isinstance(storage_key, str):
            raise ValueError("scan position fields have wrong types")
        return cls(written_at_nanos=written_at, storage_key=storage_key)
