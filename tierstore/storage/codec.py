"""
Cold Record Codec: Versioned, Self-Verifying Binary Frame

Frame layout (before compression, big-endian):

    +-------+---------+------------+-----------+--------+--------+-------------+
    | magic | version | written_at | sha256    | pk_len | id_len | payload_len |
    | 4s    | B       | q (nanos)  | 32s       | H      | H      | I           |
    +-------+---------+------------+-----------+--------+--------+-------------+
    | partition_key (utf-8) | record_id (utf-8) | payload                      |
    +-----------------------+-------------------+------------------------------+

The whole frame is compressed with LZ4 frame format. The embedded digest
lets any reader detect a torn or bit-rotted object without consulting the
hot tier.

Complexity: O(n) in payload size for both directions
"""

from __future__ import annotations

import struct

import lz4.frame

from tierstore.core import constants as C
from tierstore.core.errors import StorageError
from tierstore.core.types import ContentHash, Err, Ok, Record, Result, Timestamp

_HEADER = struct.Struct(">4sBq32sHHI")


def encode_record(record: Record) -> bytes:
    """Serialize and compress a record for the cold tier."""
    pk = record.partition_key.encode("utf-8")
    rid = record.record_id.encode("utf-8")
    header = _HEADER.pack(
        C.COLD_FRAME_MAGIC,
        C.COLD_FRAME_VERSION,
        record.written_at.nanos,
        record.content_hash.digest,
        len(pk),
        len(rid),
        len(record.payload),
    )
    return lz4.frame.compress(header + pk + rid + record.payload)


def decode_record(data: bytes, location: str = "cold") -> Result[Record, StorageError]:
    """
    Decompress and validate a cold frame.

    Any structural problem or digest mismatch is reported as corruption.
    """
    try:
        raw = lz4.frame.decompress(data)
    except RuntimeError as e:
        return Err(StorageError.corruption(location, f"lz4 decode failed: {e}"))

    if len(raw) < _HEADER.size:
        return Err(StorageError.corruption(location, "truncated header"))

    magic, version, written_at, digest, pk_len, id_len, payload_len = _HEADER.unpack_from(raw)
    if magic != C.COLD_FRAME_MAGIC:
        return Err(StorageError.corruption(location, f"bad magic {magic!r}"))
    if version != C.COLD_FRAME_VERSION:
        return Err(StorageError.corruption(location, f"unsupported version {version}"))

    offset = _HEADER.size
    expected_len = offset + pk_len + id_len + payload_len
    if len(raw) != expected_len:
        return Err(StorageError.corruption(
            location, f"length mismatch: frame has {len(raw)} bytes, header says {expected_len}"
        ))

    pk_bytes = raw[offset:offset + pk_len]
    offset += pk_len
    id_bytes = raw[offset:offset + id_len]
    offset += id_len
    payload = raw[offset:]

    if ContentHash.compute(payload).digest != digest:
        return Err(StorageError.corruption(location, "payload digest mismatch"))

    try:
        record = Record(
            record_id=id_bytes.decode("utf-8"),
            partition_key=pk_bytes.decode("utf-8"),
            payload=payload,
            written_at=Timestamp(nanos=written_at),
        )
    except (UnicodeDecodeError, ValueError) as e:
        return Err(StorageError.corruption(location, f"invalid record fields: {e}"))

    return Ok(record)


__all__ = ["encode_record", "decode_record"]
