"""Compression adapter — LZ4 frame format behind compress/decompress."""

from __future__ import annotations

import lz4.frame

from .errors import ErrorCode, Ok, Result, fail

COMPRESSION_NONE = 0x00
COMPRESSION_LZ4 = 0x01
COMPRESSION_ZSTD = 0x02  # reserved


class Lz4Compressor:
    """Block-oriented LZ4 compression with a frame-level content checksum.

    Empty input maps to empty output in both directions.
    """

    compression_type = COMPRESSION_LZ4

    def __init__(self, compression_level: int = 0) -> None:
        self._level = compression_level

    def compress(self, data: bytes) -> Result[bytes]:
        if not data:
            return Ok(b"")
        try:
            return Ok(lz4.frame.compress(
                data, compression_level=self._level, content_checksum=True,
            ))
        except Exception as exc:  # noqa: BLE001
            return fail(ErrorCode.SERIALIZE_FAILED, "Failed to compress data", error=str(exc))

    def decompress(self, data: bytes) -> Result[bytes]:
        if not data:
            return Ok(b"")
        try:
            return Ok(lz4.frame.decompress(data))
        except Exception as exc:  # noqa: BLE001
            return fail(ErrorCode.DESERIALIZE_FAILED, "Failed to decompress data", error=str(exc))
