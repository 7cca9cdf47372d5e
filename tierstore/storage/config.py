"""
Backend Configuration Module
============================

Type-safe, immutable configuration dataclasses for the hot tier, the cold
tier and the cursor database. All configurations use frozen dataclasses for
thread-safety and hash-ability.

Design Principles:
------------------
1. **Immutability**: All configs are frozen to prevent runtime mutation
2. **Validation**: Pre-conditions checked at construction time
3. **Defaults**: Sensible defaults for development; explicit for production
4. **Environment**: Supports loading from environment variables
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


# =============================================================================
# ENUMERATIONS
# =============================================================================

class BackendType(Enum):
    """
    Storage backend type enumeration.

    Used for factory pattern dispatch and configuration validation.
    """
    IN_MEMORY = auto()   # Development/testing only
    REDIS = auto()       # Hot tier
    VALKEY = auto()      # Redis-compatible OSS alternative
    FILESYSTEM = auto()  # Cold tier on local or mounted disk
    S3 = auto()          # Cold tier - AWS
    MINIO = auto()       # Cold tier - self-hosted S3-compatible


class RedisMode(Enum):
    """
    Redis deployment topology.

    Determines connection pooling and failover strategy.
    """
    STANDALONE = auto()  # Single node - development
    SENTINEL = auto()    # HA via Redis Sentinel


def _env_reader(prefix: str):
    def _get(key: str, default: str = "") -> str:
        return os.environ.get(f"{prefix}_{key}", default)

    def _get_int(key: str, default: int) -> int:
        val = _get(key)
        return int(val) if val else default

    def _get_bool(key: str, default: bool) -> bool:
        val = _get(key).lower()
        if val in ("true", "1", "yes"):
            return True
        if val in ("false", "0", "no"):
            return False
        return default

    return _get, _get_int, _get_bool


# =============================================================================
# REDIS CONFIGURATION (HOT TIER)
# =============================================================================

@dataclass(frozen=True, slots=True)
class RedisConfig:
    """
    Redis/Valkey connection configuration for the hot tier.

    Thread Safety:
    -------------
    Frozen dataclass - immutable after construction.
    Safe for concurrent access without synchronization.

    Attributes:
        host: Redis server hostname or IP address.
        port: Redis server port (1-65535).
        password: Optional authentication password.
        db: Logical database index (0-15 for single node).
        mode: Deployment topology (standalone/sentinel).
        sentinel_hosts: List of (host, port) tuples for Sentinel mode.
        sentinel_service: Master name registered with Sentinel.
        max_connections: Connection pool size. Must be > 0.
        connect_timeout_ms: TCP connection timeout in milliseconds.
        socket_timeout_ms: Socket read/write timeout in milliseconds.
        ssl: Enable TLS encryption for connections.
        key_prefix: Namespace for record hashes and the age index.

    Example:
        >>> config = RedisConfig.from_env()
        >>> config = RedisConfig(host="redis.example.com", password="secret")
    """
    sentinel_hosts: Tuple[Tuple[str, int], ...] = field(default_factory=tuple)
    password: Optional[str] = None
    host: str = "localhost"
    sentinel_service: str = "mymaster"
    key_prefix: str = "tierstore"

    socket_timeout_ms: int = 5000
    connect_timeout_ms: int = 2000
    max_connections: int = 50
    port: int = 6379
    db: int = 0
    mode: RedisMode = RedisMode.STANDALONE

    ssl: bool = False

    def __post_init__(self) -> None:
        """
        Validate configuration invariants.

        Raises:
            ValueError: If any invariant is violated.
        """
        if not (1 <= self.port <= 65535):
            raise ValueError(f"port must be in [1, 65535], got {self.port}")

        if self.mode == RedisMode.STANDALONE and not (0 <= self.db <= 15):
            raise ValueError(f"db must be in [0, 15] for standalone, got {self.db}")

        if self.max_connections <= 0:
            raise ValueError(f"max_connections must be > 0, got {self.max_connections}")

        if self.connect_timeout_ms <= 0:
            raise ValueError(f"connect_timeout_ms must be > 0, got {self.connect_timeout_ms}")
        if self.socket_timeout_ms <= 0:
            raise ValueError(f"socket_timeout_ms must be > 0, got {self.socket_timeout_ms}")

        if self.mode == RedisMode.SENTINEL and len(self.sentinel_hosts) == 0:
            raise ValueError("sentinel_hosts required when mode == SENTINEL")

        if not self.key_prefix:
            raise ValueError("key_prefix must be non-empty")

    @classmethod
    def from_env(cls, prefix: str = "REDIS") -> "RedisConfig":
        """
        Construct configuration from environment variables.

        Environment Variables:
        - {prefix}_HOST: Server hostname (default: localhost)
        - {prefix}_PORT: Server port (default: 6379)
        - {prefix}_PASSWORD: Authentication password
        - {prefix}_DB: Database index (default: 0)
        - {prefix}_SSL: Enable TLS (default: false)
        - {prefix}_MAX_CONNECTIONS: Pool size (default: 50)
        - {prefix}_MODE: standalone|sentinel
        - {prefix}_SENTINEL_HOSTS: Comma-separated host:port pairs
        - {prefix}_KEY_PREFIX: Key namespace (default: tierstore)
        """
        _get, _get_int, _get_bool = _env_reader(prefix)

        mode_map = {
            "standalone": RedisMode.STANDALONE,
            "sentinel": RedisMode.SENTINEL,
        }
        mode = mode_map.get(_get("MODE", "standalone").lower(), RedisMode.STANDALONE)

        sentinel_hosts: Tuple[Tuple[str, int], ...] = tuple()
        sentinel_str = _get("SENTINEL_HOSTS")
        if sentinel_str:
            parsed: List[Tuple[str, int]] = []
            for entry in sentinel_str.split(","):
                host_port = entry.strip().split(":")
                if len(host_port) == 2:
                    parsed.append((host_port[0], int(host_port[1])))
            sentinel_hosts = tuple(parsed)

        return cls(
            host=_get("HOST", "localhost"),
            port=_get_int("PORT", 6379),
            password=_get("PASSWORD") or None,
            db=_get_int("DB", 0),
            mode=mode,
            sentinel_hosts=sentinel_hosts,
            sentinel_service=_get("SENTINEL_SERVICE", "mymaster"),
            key_prefix=_get("KEY_PREFIX", "tierstore"),
            max_connections=_get_int("MAX_CONNECTIONS", 50),
            connect_timeout_ms=_get_int("CONNECT_TIMEOUT_MS", 2000),
            socket_timeout_ms=_get_int("SOCKET_TIMEOUT_MS", 5000),
            ssl=_get_bool("SSL", False),
        )

    def get_connection_kwargs(self) -> Dict[str, Any]:
        """
        Generate kwargs for redis-py connection.

        Payloads are binary, so responses are never decoded.
        """
        kwargs: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "db": self.db,
            "max_connections": self.max_connections,
            "socket_connect_timeout": self.connect_timeout_ms / 1000.0,
            "socket_timeout": self.socket_timeout_ms / 1000.0,
            "decode_responses": False,
            "ssl": self.ssl,
        }
        if self.password:
            kwargs["password"] = self.password
        return kwargs


# =============================================================================
# S3 CONFIGURATION (COLD TIER)
# =============================================================================

@dataclass(frozen=True, slots=True)
class S3Config:
    """
    S3-compatible object store configuration for the cold tier.

    Supports AWS S3, MinIO, Cloudflare R2, and other S3-compatible stores.
    Records are small (at most 300 KiB), so every object is a single PUT.

    Attributes:
        bucket_name: S3 bucket name (required).
        region: AWS region.
        endpoint_url: Custom endpoint for MinIO/R2 (None for AWS).
        access_key_id: AWS access key (None for IAM role auth).
        secret_access_key: AWS secret key (None for IAM role auth).
        session_token: Temporary session token for STS.
        key_prefix: Object key prefix under which records are stored.
        storage_class: S3 storage class for record objects.
        connect_timeout_seconds: TCP connect timeout.
        read_timeout_seconds: Read operation timeout.
        max_retries: Max botocore retry attempts for transient failures.
        use_ssl: Use HTTPS for connections.
        verify_ssl: Verify SSL certificates (disable for self-signed).
    """
    bucket_name: str
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    key_prefix: str = "records"
    storage_class: str = "STANDARD_IA"

    connect_timeout_seconds: int = 5
    read_timeout_seconds: int = 60
    max_retries: int = 3

    use_ssl: bool = True
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        if not self.bucket_name or len(self.bucket_name) < 3:
            raise ValueError("bucket_name must be at least 3 characters")
        if self.connect_timeout_seconds <= 0:
            raise ValueError("connect_timeout_seconds must be > 0")
        if self.read_timeout_seconds <= 0:
            raise ValueError("read_timeout_seconds must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    @classmethod
    def from_env(cls, prefix: str = "S3") -> "S3Config":
        """
        Construct configuration from environment variables.

        Environment Variables:
        - {prefix}_BUCKET: Bucket name (required)
        - {prefix}_REGION: AWS region (default: us-east-1)
        - {prefix}_ENDPOINT_URL: Custom endpoint URL
        - {prefix}_ACCESS_KEY_ID: AWS access key ID
        - {prefix}_SECRET_ACCESS_KEY: AWS secret access key
        - AWS_SESSION_TOKEN: STS session token
        - {prefix}_KEY_PREFIX: Object key prefix (default: records)
        - {prefix}_STORAGE_CLASS: Storage class (default: STANDARD_IA)

        Raises:
            ValueError: If required bucket_name is missing.
        """
        _get, _get_int, _get_bool = _env_reader(prefix)

        bucket = _get("BUCKET")
        if not bucket:
            raise ValueError(f"Environment variable {prefix}_BUCKET is required")

        return cls(
            bucket_name=bucket,
            region=_get("REGION", "us-east-1"),
            endpoint_url=_get("ENDPOINT_URL") or None,
            access_key_id=_get("ACCESS_KEY_ID") or os.environ.get("AWS_ACCESS_KEY_ID"),
            secret_access_key=_get("SECRET_ACCESS_KEY") or os.environ.get("AWS_SECRET_ACCESS_KEY"),
            session_token=os.environ.get("AWS_SESSION_TOKEN"),
            key_prefix=_get("KEY_PREFIX", "records"),
            storage_class=_get("STORAGE_CLASS", "STANDARD_IA"),
            connect_timeout_seconds=_get_int("CONNECT_TIMEOUT", 5),
            read_timeout_seconds=_get_int("READ_TIMEOUT", 60),
            max_retries=_get_int("MAX_RETRIES", 3),
            use_ssl=_get_bool("USE_SSL", True),
            verify_ssl=_get_bool("VERIFY_SSL", True),
        )

    def get_boto_config(self) -> Dict[str, Any]:
        """
        Generate configuration dict for aioboto3 clients.

        Returns:
            Dict suitable for session.client('s3', **config).
        """
        config: Dict[str, Any] = {
            "region_name": self.region,
            "use_ssl": self.use_ssl,
        }

        if self.endpoint_url:
            config["endpoint_url"] = self.endpoint_url

        if self.access_key_id and self.secret_access_key:
            config["aws_access_key_id"] = self.access_key_id
            config["aws_secret_access_key"] = self.secret_access_key

        if self.session_token:
            config["aws_session_token"] = self.session_token

        if not self.verify_ssl:
            config["verify"] = False

        return config


# =============================================================================
# POSTGRES CONFIGURATION (CURSOR STORE)
# =============================================================================

@dataclass(frozen=True)
class PostgresConfig:
    """PostgreSQL settings for the migration cursor table."""

    host: str = "localhost"
    port: int = 5432
    database: str = "tierstore"
    user: str = "tierstore"
    password: str = ""
    pool_min: int = 1
    pool_max: int = 4
    query_timeout_ms: int = 5000
    table: str = "migration_cursors"

    def __post_init__(self) -> None:
        if not (1 <= self.port <= 65535):
            raise ValueError(f"port must be in [1, 65535], got {self.port}")
        if not (1 <= self.pool_min <= self.pool_max):
            raise ValueError("pool bounds must satisfy 1 <= pool_min <= pool_max")
        if not self.table.replace("_", "").isalnum():
            raise ValueError(f"table must be a plain identifier, got {self.table!r}")

    @property
    def dsn(self) -> str:
        """PostgreSQL connection string."""
        return (
            f"postgresql://{self.user}:{self.password}@"
            f"{self.host}:{self.port}/{self.database}"
        )

    @classmethod
    def from_env(cls, prefix: str = "PG") -> "PostgresConfig":
        _get, _get_int, _ = _env_reader(prefix)
        return cls(
            host=_get("HOST", "localhost"),
            port=_get_int("PORT", 5432),
            database=_get("DATABASE", "tierstore"),
            user=_get("USER", "tierstore"),
            password=_get("PASSWORD"),
            pool_min=_get_int("POOL_MIN", 1),
            pool_max=_get_int("POOL_MAX", 4),
            query_timeout_ms=_get_int("QUERY_TIMEOUT_MS", 5000),
            table=_get("TABLE", "migration_cursors"),
        )


# =============================================================================
# UNIFIED STORAGE CONFIGURATION
# =============================================================================

_HOT_BACKENDS = frozenset({BackendType.IN_MEMORY, BackendType.REDIS, BackendType.VALKEY})
_COLD_BACKENDS = frozenset({
    BackendType.IN_MEMORY, BackendType.FILESYSTEM, BackendType.S3, BackendType.MINIO,
})


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """
    Unified configuration for both tiers.

    Attributes:
        hot_backend: Hot tier backend type.
        cold_backend: Cold tier backend type.
        redis_config: Redis configuration (if hot_backend == REDIS/VALKEY).
        s3_config: S3 configuration (if cold_backend == S3/MINIO).
        cold_directory: Root directory (if cold_backend == FILESYSTEM).
    """
    hot_backend: BackendType = BackendType.IN_MEMORY
    cold_backend: BackendType = BackendType.IN_MEMORY

    redis_config: Optional[RedisConfig] = None
    s3_config: Optional[S3Config] = None
    cold_directory: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.hot_backend not in _HOT_BACKENDS:
            raise ValueError(f"{self.hot_backend.name} cannot serve the hot tier")
        if self.cold_backend not in _COLD_BACKENDS:
            raise ValueError(f"{self.cold_backend.name} cannot serve the cold tier")

        if self.hot_backend in (BackendType.REDIS, BackendType.VALKEY):
            if self.redis_config is None:
                raise ValueError(
                    f"redis_config required when hot_backend={self.hot_backend.name}"
                )

        if self.cold_backend in (BackendType.S3, BackendType.MINIO):
            if self.s3_config is None:
                raise ValueError(
                    f"s3_config required when cold_backend={self.cold_backend.name}"
                )

        if self.cold_backend == BackendType.FILESYSTEM and self.cold_directory is None:
            raise ValueError("cold_directory required when cold_backend=FILESYSTEM")

    @classmethod
    def for_development(cls) -> "StorageConfig":
        """All in-memory backends for zero external dependencies."""
        return cls(
            hot_backend=BackendType.IN_MEMORY,
            cold_backend=BackendType.IN_MEMORY,
        )

    @classmethod
    def from_env(cls) -> "StorageConfig":
        """
        Construct full configuration from environment.

        Environment Variables:
        - STORAGE_HOT_BACKEND: in_memory|redis|valkey
        - STORAGE_COLD_BACKEND: in_memory|filesystem|s3|minio
        - STORAGE_COLD_DIRECTORY: root for the filesystem cold tier

        Plus backend-specific variables (REDIS_*, S3_*).
        """
        def _get(key: str, default: str = "") -> str:
            return os.environ.get(f"STORAGE_{key}", default)

        backend_map = {
            "in_memory": BackendType.IN_MEMORY,
            "redis": BackendType.REDIS,
            "valkey": BackendType.VALKEY,
            "filesystem": BackendType.FILESYSTEM,
            "s3": BackendType.S3,
            "minio": BackendType.MINIO,
        }

        hot_str = _get("HOT_BACKEND", "in_memory").lower()
        cold_str = _get("COLD_BACKEND", "in_memory").lower()
        if hot_str not in backend_map:
            raise ValueError(f"unknown hot backend {hot_str!r}")
        if cold_str not in backend_map:
            raise ValueError(f"unknown cold backend {cold_str!r}")
        hot_backend = backend_map[hot_str]
        cold_backend = backend_map[cold_str]

        redis_config = None
        if hot_backend in (BackendType.REDIS, BackendType.VALKEY):
            redis_config = RedisConfig.from_env()

        s3_config = None
        if cold_backend in (BackendType.S3, BackendType.MINIO):
            s3_config = S3Config.from_env()

        cold_dir = _get("COLD_DIRECTORY")

        return cls(
            hot_backend=hot_backend,
            cold_backend=cold_backend,
            redis_config=redis_config,
            s3_config=s3_config,
            cold_directory=Path(cold_dir) if cold_dir else None,
        )


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    "BackendType",
    "RedisMode",
    "RedisConfig",
    "S3Config",
    "PostgresConfig",
    "StorageConfig",
]
