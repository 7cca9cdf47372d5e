"""
S3-Compatible Cold Tier Store
=============================

ColdRecordStore backed by AWS S3, MinIO, Cloudflare R2, and other
S3-compatible services.

Design Principles:
------------------
1. **One Object Per Record**: ``{key_prefix}/{record_id}.tsr``, LZ4 frame
2. **Conditional Create**: ``IfNoneMatch="*"`` so a put never silently
   replaces a different copy
3. **Integrity Headers**: payload SHA-256 and written_at ride along as
   user metadata, so idempotency checks need only a HEAD
4. **Result Monad**: No exceptions for control flow

Algorithmic Complexity:
-----------------------
| Operation                   | Time | Notes                          |
|-----------------------------|------|--------------------------------|
| get                         | O(n) | n = object size                |
| put_if_absent_or_identical  | O(n) | HEAD + conditional PUT         |
| delete                      | O(1) | HEAD + DELETE                  |
| exists                      | O(1) | HEAD                           |

Thread Safety:
--------------
- aioboto3 clients are safe for concurrent async operations
- No shared mutable state in instance
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from tierstore.core.errors import StorageError
from tierstore.core.types import Err, Ok, Record, Result
from tierstore.storage.codec import decode_record, encode_record
from tierstore.storage.config import S3Config
from tierstore.storage.protocols import ColdPutOutcome, ColdRecordStore

if TYPE_CHECKING:
    from types_aiobotocore_s3 import S3Client

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

CONTENT_TYPE: str = "application/x-tierstore-record"
META_SHA256: str = "sha256"
META_WRITTEN_AT: str = "written-at"

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})
_PRECONDITION_CODES = frozenset({"412", "PreconditionFailed", "409", "ConditionalRequestConflict"})


def _error_code(e: Exception) -> str:
    """botocore ClientError carries the service error code in its response."""
    response = getattr(e, "response", None)
    if isinstance(response, dict):
        return str(response.get("Error", {}).get("Code", ""))
    return ""


# =============================================================================
# S3 COLD STORE
# =============================================================================

class S3ColdStore(ColdRecordStore):
    """
    Production S3 cold tier.

    Example:
        >>> store = S3ColdStore(S3Config(bucket_name="records-archive"))
        >>> await store.connect()
        >>> await store.put_if_absent_or_identical(record)
        >>> await store.close()
    """

    __slots__ = (
        "_config",
        "_client",
        "_client_cm",
        "_session",
        "_connected",
    )

    def __init__(
        self,
        config: S3Config,
        client: Optional["S3Client"] = None,
    ) -> None:
        """
        Args:
            config: S3 connection configuration.
            client: Pre-built client; when given, connect() is not needed.
        """
        self._config = config
        self._client = client
        self._client_cm: Any = None
        self._session: Any = None
        self._connected = client is not None

    def object_key(self, record_id: str) -> str:
        return f"{self._config.key_prefix}/{record_id}.tsr"

    # -------------------------------------------------------------------------
    # CONNECTION MANAGEMENT
    # -------------------------------------------------------------------------

    async def connect(self) -> Result[None, StorageError]:
        """
        Create the aioboto3 session and client, then check the bucket.
        """
        endpoint = self._config.endpoint_url or f"s3.{self._config.region}"
        try:
            import aioboto3
            from botocore.config import Config
        except ImportError as e:
            return Err(StorageError.connection_failed("s3", endpoint, cause=e))

        try:
            session_kwargs: Dict[str, Any] = {}
            if self._config.access_key_id and self._config.secret_access_key:
                session_kwargs["aws_access_key_id"] = self._config.access_key_id
                session_kwargs["aws_secret_access_key"] = self._config.secret_access_key
            if self._config.session_token:
                session_kwargs["aws_session_token"] = self._config.session_token

            self._session = aioboto3.Session(**session_kwargs)

            client_config = Config(
                connect_timeout=self._config.connect_timeout_seconds,
                read_timeout=self._config.read_timeout_seconds,
                retries={"max_attempts": self._config.max_retries},
            )

            client_kwargs: Dict[str, Any] = {
                "region_name": self._config.region,
                "config": client_config,
                "use_ssl": self._config.use_ssl,
            }
            if self._config.endpoint_url:
                client_kwargs["endpoint_url"] = self._config.endpoint_url
            if not self._config.verify_ssl:
                client_kwargs["verify"] = False

            self._client_cm = self._session.client("s3", **client_kwargs)
            self._client = await self._client_cm.__aenter__()

            await self._client.head_bucket(Bucket=self._config.bucket_name)

            self._connected = True
            logger.info("S3 cold store connected", extra={"bucket": self._config.bucket_name})
            return Ok(None)

        except Exception as e:
            return Err(StorageError.connection_failed("s3", endpoint, cause=e))

    async def close(self) -> None:
        """
        Close S3 client and release resources. Safe to call multiple times.
        """
        if self._client_cm is not None:
            await self._client_cm.__aexit__(None, None, None)
            self._client_cm = None
        self._client = None
        self._connected = False

    def _not_connected(self) -> StorageError:
        return StorageError.connection_failed(
            "s3", self._config.endpoint_url or self._config.bucket_name
        )

    def _failure(self, operation: str, e: Exception) -> StorageError:
        if isinstance(e, asyncio.TimeoutError):
            return StorageError.timeout(
                f"s3.{operation}", self._config.read_timeout_seconds * 1000, cause=e
            )
        return StorageError.backend("s3", operation, cause=e)

    # -------------------------------------------------------------------------
    # HELPERS
    # -------------------------------------------------------------------------

    async def _head(self, record_id: str) -> Result[Optional[Dict[str, str]], StorageError]:
        """User metadata of the object, Ok(None) when absent."""
        try:
            response = await self._client.head_object(
                Bucket=self._config.bucket_name,
                Key=self.object_key(record_id),
            )
        except Exception as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return Ok(None)
            return Err(self._failure("head", e))
        return Ok(dict(response.get("Metadata", {})))

    @staticmethod
    def _compare(metadata: Dict[str, str], record: Record) -> ColdPutOutcome:
        identical = (
            metadata.get(META_SHA256) == record.content_hash.to_hex()
            and metadata.get(META_WRITTEN_AT) == str(record.written_at.nanos)
        )
        return ColdPutOutcome.ALREADY_PRESENT if identical else ColdPutOutcome.CONFLICT

    # -------------------------------------------------------------------------
    # CORE OPERATIONS
    # -------------------------------------------------------------------------

    async def get(self, record_id: str) -> Result[Optional[Record], StorageError]:
        """
        Download and decode the record object.

        Complexity: O(n) where n = object size.
        """
        if not self._connected or self._client is None:
            return Err(self._not_connected())

        key = self.object_key(record_id)
        try:
            response = await self._client.get_object(
                Bucket=self._config.bucket_name,
                Key=key,
            )
            async with response["Body"] as stream:
                data = await stream.read()
        except Exception as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return Ok(None)
            return Err(self._failure("get", e))

        location = f"s3://{self._config.bucket_name}/{key}"
        decoded = decode_record(data, location=location)
        if decoded.is_err():
            return decoded
        record = decoded.unwrap()
        if record.record_id != record_id:
            return Err(StorageError.corruption(location, "record id does not match key"))
        return Ok(record)

    async def put_if_absent_or_identical(
        self,
        record: Record,
    ) -> Result[ColdPutOutcome, StorageError]:
        """
        Conditional create.

        A HEAD short-circuits the common retry case; the PUT itself is
        guarded by If-None-Match so a concurrent writer cannot be overwritten.
        """
        if not self._connected or self._client is None:
            return Err(self._not_connected())

        head = await self._head(record.record_id)
        if head.is_err():
            return head
        existing = head.unwrap()
        if existing is not None:
            return Ok(self._compare(existing, record))

        try:
            await self._client.put_object(
                Bucket=self._config.bucket_name,
                Key=self.object_key(record.record_id),
                Body=encode_record(record),
                ContentType=CONTENT_TYPE,
                StorageClass=self._config.storage_class,
                Metadata={
                    META_SHA256: record.content_hash.to_hex(),
                    META_WRITTEN_AT: str(record.written_at.nanos),
                },
                IfNoneMatch="*",
            )
        except Exception as e:
            if _error_code(e) not in _PRECONDITION_CODES:
                return Err(self._failure("put", e))
            # Lost a create race; judge the winner's copy.
            head = await self._head(record.record_id)
            if head.is_err():
                return head
            existing = head.unwrap()
            if existing is None:
                return Err(self._failure("put", e))
            return Ok(self._compare(existing, record))

        return Ok(ColdPutOutcome.WRITTEN)

    async def delete(self, record_id: str) -> Result[bool, StorageError]:
        """
        Ok(True) when an object was removed, Ok(False) if none existed.
        """
        if not self._connected or self._client is None:
            return Err(self._not_connected())

        head = await self._head(record_id)
        if head.is_err():
            return head
        if head.unwrap() is None:
            return Ok(False)

        try:
            await self._client.delete_object(
                Bucket=self._config.bucket_name,
                Key=self.object_key(record_id),
            )
        except Exception as e:
            return Err(self._failure("delete", e))
        return Ok(True)

    async def exists(self, record_id: str) -> Result[bool, StorageError]:
        if not self._connected or self._client is None:
            return Err(self._not_connected())

        head = await self._head(record_id)
        if head.is_err():
            return head
        return Ok(head.unwrap() is not None)


__all__ = ["S3ColdStore"]
