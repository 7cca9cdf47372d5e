"""
Error Hierarchy for the Tiered Record Store

Design Principles:
- Forbid exceptions for control flow (errors travel inside Err)
- Carry full error context for debugging and audit trails
- Callers of the access facade only ever observe NotFound or
  StorageUnavailable; tiering internals stay behind the facade

Each error type includes:
- Unique error code for programmatic handling
- Human-readable message for logging
- Optional cause chain for root cause analysis
- Timestamp for correlation with migration events

Usage:
    result = await store.read(record_id, partition_key)
    match result:
        case Ok(record):
            serve(record)
        case Err(error) if error.code is ErrorCode.RECORD_NOT_FOUND:
            respond_404()
        case Err(error):
            respond_503(error)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from tierstore.core.types import Timestamp


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by subsystem:
    - 1xxx: Storage errors
    - 3xxx: Record errors
    - 4xxx: Migration errors
    - 6xxx: Reliability errors
    """

    # Storage errors (1xxx)
    STORAGE_CONNECTION_FAILED = 1001
    STORAGE_TIMEOUT = 1002
    STORAGE_CORRUPTION = 1006
    STORAGE_BACKEND_ERROR = 1007
    STORAGE_UNAVAILABLE = 1008

    # Record errors (3xxx)
    RECORD_NOT_FOUND = 3004

    # Migration errors (4xxx)
    MIGRATION_VERIFICATION_MISMATCH = 4001
    MIGRATION_CURSOR_CORRUPTION = 4002
    MIGRATION_CYCLE_IN_PROGRESS = 4003
    MIGRATION_COLD_CONFLICT = 4004
    MIGRATION_LEASE_LOST = 4005

    # Reliability errors (6xxx)
    RELIABILITY_CIRCUIT_OPEN = 6001


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class TierStoreError(Exception):
    """
    Base class for all tiered store errors.

    Provides common infrastructure for error handling:
    - Unique error ID for correlation
    - Error code for programmatic handling
    - Timestamp for correlation
    - Cause chain for root cause analysis
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    cause: Optional[Exception] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize error to dictionary for logging/event payloads.

        Note: Excludes cause stack trace to avoid leaking
        backend details to event consumers.
        """
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp_nanos": self.timestamp.nanos,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# STORAGE ERRORS (HOT / COLD / CURSOR BACKENDS)
# =============================================================================
_TRANSIENT_STORAGE_CODES = frozenset({
    ErrorCode.STORAGE_CONNECTION_FAILED,
    ErrorCode.STORAGE_TIMEOUT,
    ErrorCode.STORAGE_BACKEND_ERROR,
})


@dataclass
class StorageError(TierStoreError):
    """
    Errors from the hot store, the cold store and the cursor store.

    Connection failures, timeouts and generic backend errors are
    transient and retried with backoff; corruption is not.
    """

    @property
    def is_transient(self) -> bool:
        return self.code in _TRANSIENT_STORAGE_CODES

    @classmethod
    def connection_failed(
        cls,
        backend: str,
        endpoint: str,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        """Backend connection failed or was never established."""
        return cls(
            code=ErrorCode.STORAGE_CONNECTION_FAILED,
            message=f"Failed to connect to {backend} at {endpoint}",
            cause=cause,
            context={"backend": backend, "endpoint": endpoint},
        )

    @classmethod
    def timeout(
        cls,
        operation: str,
        duration_ms: int,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        """Storage operation exceeded its timeout."""
        return cls(
            code=ErrorCode.STORAGE_TIMEOUT,
            message=f"Operation '{operation}' timed out after {duration_ms}ms",
            cause=cause,
            context={"operation": operation, "duration_ms": duration_ms},
        )

    @classmethod
    def backend(
        cls,
        backend: str,
        operation: str,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        """Backend call failed for a reason the backend reported."""
        return cls(
            code=ErrorCode.STORAGE_BACKEND_ERROR,
            message=f"{backend} {operation} failed: {cause}",
            cause=cause,
            context={"backend": backend, "operation": operation},
        )

    @classmethod
    def corruption(
        cls,
        location: str,
        details: str,
    ) -> StorageError:
        """Stored bytes failed to decode or failed their checksum."""
        return cls(
            code=ErrorCode.STORAGE_CORRUPTION,
            message=f"Corrupt data at {location}: {details}",
            context={"location": location, "details": details},
        )

    @classmethod
    def unavailable(
        cls,
        operation: str,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        """
        Generic failure surfaced through the access facade.

        Deliberately carries no tier information.
        """
        return cls(
            code=ErrorCode.STORAGE_UNAVAILABLE,
            message=f"Storage unavailable during {operation}",
            cause=cause,
            context={"operation": operation},
        )


# =============================================================================
# RECORD ERRORS
# =============================================================================
@dataclass
class RecordError(TierStoreError):
    """Errors about a specific record, visible to facade callers."""

    @classmethod
    def not_found(
        cls,
        record_id: str,
        partition_key: str,
    ) -> RecordError:
        """Record is absent from both tiers."""
        return cls(
            code=ErrorCode.RECORD_NOT_FOUND,
            message=f"Record {partition_key}/{record_id} not found",
            context={"record_id": record_id, "partition_key": partition_key},
        )


# =============================================================================
# MIGRATION ERRORS
# =============================================================================
@dataclass
class MigrationError(TierStoreError):
    """
    Errors from the migration engine.

    VerificationMismatch never loses data: the hot copy is untouched.
    CursorCorruption is recovered by rescanning from the beginning.
    """

    @classmethod
    def verification_mismatch(
        cls,
        storage_key: str,
        reason: str,
    ) -> MigrationError:
        """Cold copy failed its post-write integrity check."""
        return cls(
            code=ErrorCode.MIGRATION_VERIFICATION_MISMATCH,
            message=f"Cold copy of {storage_key} failed verification: {reason}",
            context={"storage_key": storage_key, "reason": reason},
        )

    @classmethod
    def cursor_corruption(
        cls,
        job_id: str,
        details: str,
    ) -> MigrationError:
        """Persisted cursor is unreadable or invalid."""
        return cls(
            code=ErrorCode.MIGRATION_CURSOR_CORRUPTION,
            message=f"Cursor for job '{job_id}' is corrupt: {details}",
            context={"job_id": job_id, "details": details},
        )

    @classmethod
    def cycle_in_progress(
        cls,
        job_id: str,
        holder: Optional[str] = None,
    ) -> MigrationError:
        """A cycle for this job is already running, here or in another process."""
        message = f"Migration cycle for job '{job_id}' already running"
        if holder:
            message += f" (lease held by {holder})"
        return cls(
            code=ErrorCode.MIGRATION_CYCLE_IN_PROGRESS,
            message=message,
            context={"job_id": job_id, "holder": holder},
        )

    @classmethod
    def lease_lost(
        cls,
        job_id: str,
        cause: Optional[Exception] = None,
    ) -> MigrationError:
        """The job lease expired or was taken over while a cycle ran."""
        return cls(
            code=ErrorCode.MIGRATION_LEASE_LOST,
            message=f"Lease for job '{job_id}' lost during the cycle",
            cause=cause,
            context={"job_id": job_id},
        )

    @classmethod
    def conflict(
        cls,
        storage_key: str,
        existing_written_at: int,
        incoming_written_at: int,
    ) -> MigrationError:
        """Cold tier holds a different copy that is not older than hot."""
        return cls(
            code=ErrorCode.MIGRATION_COLD_CONFLICT,
            message=(
                f"Cold copy of {storage_key} conflicts with hot copy "
                f"(cold written_at={existing_written_at}, hot written_at={incoming_written_at})"
            ),
            context={
                "storage_key": storage_key,
                "existing_written_at": existing_written_at,
                "incoming_written_at": incoming_written_at,
            },
        )


# =============================================================================
# RELIABILITY ERRORS
# =============================================================================
@dataclass
class ReliabilityError(TierStoreError):
    """
    Errors from reliability subsystem (circuit breakers, retries).
    """

    @classmethod
    def circuit_open(
        cls,
        circuit_name: str,
        failure_count: int,
        retry_after_seconds: int,
    ) -> ReliabilityError:
        """Circuit breaker is open, failing fast."""
        return cls(
            code=ErrorCode.RELIABILITY_CIRCUIT_OPEN,
            message=f"Circuit '{circuit_name}' is OPEN after {failure_count} failures",
            context={
                "circuit_name": circuit_name,
                "failure_count": failure_count,
                "retry_after_seconds": retry_after_seconds,
            },
        )
