"""
Configuration Management for the Tiered Record Store

Provides validated configuration with sensible defaults.
Supports environment variable overrides (prefix TIERSTORE_).

Design:
- Immutable after validation
- Fail-fast on invalid configuration
- Type-safe with dataclasses
- The age threshold is configuration, never a code constant, so the
  cost/latency trade-off can be tuned without a release
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Optional

from tierstore.core import constants as C
from tierstore.core.types import Result, Ok, Err
from tierstore.storage.config import StorageConfig, PostgresConfig


def _env(name: str, default: str = "") -> str:
    return os.getenv(f"TIERSTORE_{name}", default)


def _env_bool(name: str, default: bool) -> bool:
    val = _env(name).lower()
    if val in ("true", "1", "yes"):
        return True
    if val in ("false", "0", "no"):
        return False
    return default


@dataclass(frozen=True)
class TieringConfig:
    """
    Tiering and migration settings.

    Attributes:
        age_threshold: Records at least this old belong to the cold tier.
        scan_page_size: Hot-store records fetched per scan page.
        cycle_interval: Delay between scheduled migration cycles.
        migration_parallelism: Records migrated concurrently within a page.
        migration_rate_limit: Records per second; 0 disables throttling.
        job_id: Identity under which the migration cursor is persisted.
        operation_timeout_s: Timeout applied to each adapter call.
        verify_timeout_s: Timeout for the cold read-back during verification.
        lease_ttl_s: Lifetime of the per-job lease between renewals.
    """

    age_threshold: timedelta = timedelta(days=C.DEFAULT_AGE_THRESHOLD_DAYS)
    scan_page_size: int = C.DEFAULT_SCAN_PAGE_SIZE
    cycle_interval: timedelta = timedelta(seconds=C.DEFAULT_CYCLE_INTERVAL_S)
    migration_parallelism: int = C.DEFAULT_MIGRATION_PARALLELISM
    migration_rate_limit: float = 0.0
    job_id: str = C.DEFAULT_JOB_ID
    operation_timeout_s: float = C.DEFAULT_OPERATION_TIMEOUT_S
    verify_timeout_s: float = C.DEFAULT_VERIFY_TIMEOUT_S
    lease_ttl_s: float = C.DEFAULT_LEASE_TTL_S

    def __post_init__(self) -> None:
        if self.age_threshold <= timedelta(0):
            raise ValueError(f"age_threshold must be positive, got {self.age_threshold}")
        if not (1 <= self.scan_page_size <= C.MAX_SCAN_PAGE_SIZE):
            raise ValueError(
                f"scan_page_size must be in [1, {C.MAX_SCAN_PAGE_SIZE}], "
                f"got {self.scan_page_size}"
            )
        if self.cycle_interval <= timedelta(0):
            raise ValueError(f"cycle_interval must be positive, got {self.cycle_interval}")
        if not (1 <= self.migration_parallelism <= C.MAX_MIGRATION_PARALLELISM):
            raise ValueError(
                f"migration_parallelism must be in [1, {C.MAX_MIGRATION_PARALLELISM}], "
                f"got {self.migration_parallelism}"
            )
        if self.migration_rate_limit < 0:
            raise ValueError("migration_rate_limit must be >= 0")
        if not self.job_id:
            raise ValueError("job_id must be non-empty")
        if self.operation_timeout_s <= 0 or self.verify_timeout_s <= 0:
            raise ValueError("timeouts must be > 0")
        if self.lease_ttl_s * C.SECOND_MS < C.MIN_LEASE_TTL_MS:
            raise ValueError(f"lease_ttl_s must be >= {C.MIN_LEASE_TTL_MS / C.SECOND_MS}")

    @property
    def lease_ttl_ms(self) -> int:
        return int(self.lease_ttl_s * C.SECOND_MS)

    @property
    def age_threshold_nanos(self) -> int:
        return int(self.age_threshold.total_seconds() * C.NS_PER_S)


@dataclass(frozen=True)
class ReliabilityConfig:
    """Retry and circuit breaker settings."""

    retry_max_attempts: int = C.RETRY_MAX_ATTEMPTS
    retry_base_ms: int = C.RETRY_BASE_MS
    retry_max_delay_ms: int = C.RETRY_MAX_DELAY_MS
    breaker_failure_threshold: int = C.CIRCUIT_BREAKER_FAILURE_THRESHOLD
    breaker_success_threshold: int = C.CIRCUIT_BREAKER_SUCCESS_THRESHOLD
    breaker_reset_s: float = C.CIRCUIT_BREAKER_RESET_S

    def __post_init__(self) -> None:
        if self.retry_max_attempts < 0:
            raise ValueError("retry_max_attempts must be >= 0")
        if self.retry_base_ms <= 0 or self.retry_max_delay_ms < self.retry_base_ms:
            raise ValueError("retry delays must satisfy 0 < base <= max")
        if self.breaker_failure_threshold < 1 or self.breaker_success_threshold < 1:
            raise ValueError("breaker thresholds must be >= 1")


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration."""

    log_level: str = "INFO"
    log_json: bool = True


@dataclass(frozen=True)
class CursorConfig:
    """
    Where the migration cursor is persisted.

    backend is one of "memory", "file" or "postgres".
    """

    backend: str = "file"
    directory: Path = field(default_factory=lambda: Path("./data/cursors"))
    postgres: Optional[PostgresConfig] = None

    def __post_init__(self) -> None:
        if self.backend not in ("memory", "file", "postgres"):
            raise ValueError(f"unknown cursor backend: {self.backend!r}")
        if self.backend == "postgres" and self.postgres is None:
            raise ValueError("postgres cursor backend requires postgres settings")


@dataclass(frozen=True)
class TierStoreConfig:
    """Root configuration for the tiered record store."""

    tiering: TieringConfig = field(default_factory=TieringConfig)
    reliability: ReliabilityConfig = field(default_factory=ReliabilityConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    cursor: CursorConfig = field(default_factory=CursorConfig)
    storage: StorageConfig = field(default_factory=StorageConfig.for_development)

    @classmethod
    def from_env(cls) -> Result[TierStoreConfig, str]:
        """
        Load configuration from environment variables.

        Environment variables are prefixed with TIERSTORE_.
        Example: TIERSTORE_AGE_THRESHOLD_DAYS=30, TIERSTORE_CURSOR_BACKEND=postgres
        Backend connection settings use the REDIS_*, S3_* and PG_* prefixes.
        """
        try:
            tiering = TieringConfig(
                age_threshold=timedelta(
                    days=float(_env("AGE_THRESHOLD_DAYS", str(C.DEFAULT_AGE_THRESHOLD_DAYS)))
                ),
                scan_page_size=int(_env("SCAN_PAGE_SIZE", str(C.DEFAULT_SCAN_PAGE_SIZE))),
                cycle_interval=timedelta(
                    seconds=float(_env("CYCLE_INTERVAL_S", str(C.DEFAULT_CYCLE_INTERVAL_S)))
                ),
                migration_parallelism=int(
                    _env("MIGRATION_PARALLELISM", str(C.DEFAULT_MIGRATION_PARALLELISM))
                ),
                migration_rate_limit=float(_env("MIGRATION_RATE_LIMIT", "0")),
                job_id=_env("JOB_ID", C.DEFAULT_JOB_ID),
                operation_timeout_s=float(
                    _env("OPERATION_TIMEOUT_S", str(C.DEFAULT_OPERATION_TIMEOUT_S))
                ),
                verify_timeout_s=float(_env("VERIFY_TIMEOUT_S", str(C.DEFAULT_VERIFY_TIMEOUT_S))),
                lease_ttl_s=float(_env("LEASE_TTL_S", str(C.DEFAULT_LEASE_TTL_S))),
            )

            reliability = ReliabilityConfig(
                retry_max_attempts=int(_env("RETRY_MAX_ATTEMPTS", str(C.RETRY_MAX_ATTEMPTS))),
                retry_base_ms=int(_env("RETRY_BASE_MS", str(C.RETRY_BASE_MS))),
            )

            observability = ObservabilityConfig(
                log_level=_env("LOG_LEVEL", "INFO").upper(),
                log_json=_env_bool("LOG_JSON", True),
            )

            cursor_backend = _env("CURSOR_BACKEND", "file")
            cursor = CursorConfig(
                backend=cursor_backend,
                directory=Path(_env("CURSOR_DIR", "./data/cursors")),
                postgres=PostgresConfig.from_env() if cursor_backend == "postgres" else None,
            )

            storage = StorageConfig.from_env()

            return Ok(cls(
                tiering=tiering,
                reliability=reliability,
                observability=observability,
                cursor=cursor,
                storage=storage,
            ))
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")

    def validate(self) -> Result[None, str]:
        """Validate cross-section invariants."""
        if self.tiering.operation_timeout_s > self.tiering.cycle_interval.total_seconds():
            return Err("operation_timeout_s cannot exceed cycle_interval")
        if self.observability.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return Err(f"Unknown log level {self.observability.log_level!r}")
        return Ok(None)
