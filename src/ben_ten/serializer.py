"""Binary serializer — versioned, compressed container for ContextData.

Layout (little-endian)::

    0..3   b"BT10"                 magic
    4      0x01                    format version
    5      0x01                    compression type (LZ4)
    6..9   uint32                  uncompressed JSON length
    10..   compressed JSON payload

Decoding validates every header field before touching the payload and
fails fast on the first violation.
"""

from __future__ import annotations

import json
import struct
from enum import StrEnum

from .compression import Lz4Compressor
from .errors import ErrorCode, Err, Ok, Result, fail
from .models import ContextData, parse_context_data

MAGIC_HEADER = b"BT10"
FORMAT_VERSION = 0x01
HEADER_SIZE = 10

_HEADER = struct.Struct("<4sBBI")


class FormatType(StrEnum):
    COMPRESSED = "compressed"
    JSON = "json"
    UNKNOWN = "unknown"


class ContextSerializer:
    """Encode/decode :class:`ContextData` to and from the ``BT10`` container."""

    def __init__(self, compressor: Lz4Compressor | None = None) -> None:
        self._compressor = compressor if compressor is not None else Lz4Compressor()

    def serialize(self, data: ContextData) -> Result[bytes]:
        try:
            payload = json.dumps(
                data.to_wire(), ensure_ascii=False, separators=(",", ":")
            ).encode("utf-8")
        except (TypeError, ValueError) as exc:
            return fail(ErrorCode.SERIALIZE_FAILED, "Failed to serialize context data",
                        error=str(exc))

        compressed = self._compressor.compress(payload)
        if isinstance(compressed, Err):
            return compressed

        header = _HEADER.pack(
            MAGIC_HEADER, FORMAT_VERSION, self._compressor.compression_type, len(payload)
        )
        return Ok(header + compressed.value)

    def deserialize(self, buffer: bytes) -> Result[ContextData]:
        if len(buffer) < HEADER_SIZE:
            return fail(ErrorCode.DESERIALIZE_FAILED, "Data too short: missing header",
                        size=len(buffer), min_size=HEADER_SIZE)

        magic, version, compression_type, expected_size = _HEADER.unpack_from(buffer)
        if magic != MAGIC_HEADER:
            return fail(ErrorCode.DESERIALIZE_FAILED,
                        f"Invalid magic header: expected {MAGIC_HEADER!r}, got {magic!r}",
                        expected=MAGIC_HEADER.decode(), actual=magic.hex())
        if version != FORMAT_VERSION:
            return fail(ErrorCode.DESERIALIZE_FAILED, f"Unsupported format version: {version}",
                        expected=FORMAT_VERSION, actual=version)
        if compression_type != self._compressor.compression_type:
            return fail(ErrorCode.DESERIALIZE_FAILED,
                        f"Unsupported compression type: {compression_type}",
                        expected=self._compressor.compression_type, actual=compression_type)

        decompressed = self._compressor.decompress(buffer[HEADER_SIZE:])
        if isinstance(decompressed, Err):
            return fail(ErrorCode.DESERIALIZE_FAILED, "Failed to decompress data",
                        original_error=decompressed.error.details.get(
                            "error", decompressed.error.message))

        raw = decompressed.value
        if len(raw) != expected_size:
            return fail(ErrorCode.DESERIALIZE_FAILED, "Size mismatch after decompression",
                        expected=expected_size, actual=len(raw))

        return self._decode_json(raw, "Invalid JSON in decompressed data")

    def deserialize_json(self, buffer: bytes) -> Result[ContextData]:
        """Decode the legacy headerless JSON format."""
        return self._decode_json(buffer, "Invalid JSON format")

    def detect_format(self, buffer: bytes) -> FormatType:
        if not buffer:
            return FormatType.UNKNOWN
        if buffer[:4] == MAGIC_HEADER:
            return FormatType.COMPRESSED
        if buffer[0] == 0x7B:  # "{"
            return FormatType.JSON
        return FormatType.UNKNOWN

    @staticmethod
    def _decode_json(raw: bytes, message: str) -> Result[ContextData]:
        try:
            parsed = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            return fail(ErrorCode.DESERIALIZE_FAILED, message, error=str(exc))

        validated = parse_context_data(parsed)
        if isinstance(validated, Err):
            return fail(ErrorCode.DESERIALIZE_FAILED, "Invalid context data structure",
                        validation_errors=validated.error.details.get("errors", []))
        return validated
