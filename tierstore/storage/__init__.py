"""
Storage Module: Hot and Cold Tier Adapters
==========================================

Provides:
- Capability interfaces for the hot and cold tiers
- In-memory and filesystem implementations for development/testing
- Production backends (Redis hot tier, S3 cold tier)
- Factory functions for backend selection

Design Principles:
-----------------
1. **Backend Agnostic**: Same interface for in-memory and production
2. **Factory Pattern**: Runtime backend selection via configuration
3. **Lazy Loading**: Production dependencies loaded only when needed
4. **Result Monad**: No exceptions for control flow

Example:
    >>> # Development (in-memory)
    >>> hot = (await open_hot_store(StorageConfig.for_development())).unwrap()

    >>> # Production (configured)
    >>> hot = (await open_hot_store(StorageConfig.from_env())).unwrap()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from tierstore.core.errors import StorageError
from tierstore.core.types import Err, Ok, Result

from tierstore.storage.protocols import (
    ColdPutOutcome,
    ColdRecordStore,
    DeleteOutcome,
    HotRecordStore,
    ScanPage,
)
from tierstore.storage.backends import (
    FileSystemColdStore,
    InMemoryColdStore,
    InMemoryHotStore,
)
from tierstore.storage.codec import decode_record, encode_record
from tierstore.storage.config import (
    BackendType,
    PostgresConfig,
    RedisConfig,
    RedisMode,
    S3Config,
    StorageConfig,
)

if TYPE_CHECKING:
    from tierstore.storage.redis_store import RedisHotStore
    from tierstore.storage.s3_store import S3ColdStore


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================

def create_hot_store(config: StorageConfig) -> HotRecordStore:
    """
    Create the hot tier store selected by configuration.

    Production stores are returned unconnected; see open_hot_store.
    """
    if config.hot_backend in (BackendType.REDIS, BackendType.VALKEY):
        from tierstore.storage.redis_store import RedisHotStore
        return RedisHotStore(config.redis_config)
    return InMemoryHotStore()


def create_cold_store(config: StorageConfig) -> ColdRecordStore:
    """
    Create the cold tier store selected by configuration.

    Production stores are returned unconnected; see open_cold_store.
    """
    if config.cold_backend in (BackendType.S3, BackendType.MINIO):
        from tierstore.storage.s3_store import S3ColdStore
        return S3ColdStore(config.s3_config)
    if config.cold_backend == BackendType.FILESYSTEM:
        return FileSystemColdStore(config.cold_directory)
    return InMemoryColdStore()


async def open_hot_store(config: StorageConfig) -> Result[HotRecordStore, StorageError]:
    """Create and, for network backends, connect the hot store."""
    store = create_hot_store(config)
    connect = getattr(store, "connect", None)
    if connect is not None:
        result = await connect()
        if result.is_err():
            return Err(result.error)
    return Ok(store)


async def open_cold_store(config: StorageConfig) -> Result[ColdRecordStore, StorageError]:
    """Create and, for network backends, connect the cold store."""
    store = create_cold_store(config)
    connect = getattr(store, "connect", None)
    if connect is not None:
        result = await connect()
        if result.is_err():
            return Err(result.error)
    return Ok(store)


__all__ = [
    # Interfaces
    "HotRecordStore",
    "ColdRecordStore",
    "ScanPage",
    "DeleteOutcome",
    "ColdPutOutcome",
    # Backends
    "InMemoryHotStore",
    "InMemoryColdStore",
    "FileSystemColdStore",
    # Codec
    "encode_record",
    "decode_record",
    # Configuration
    "BackendType",
    "RedisMode",
    "RedisConfig",
    "S3Config",
    "PostgresConfig",
    "StorageConfig",
    # Factories
    "create_hot_store",
    "create_cold_store",
    "open_hot_store",
    "open_cold_store",
]
