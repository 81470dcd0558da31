"""Error taxonomy and the Ok/Err result channel used across ben-ten."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorCode(StrEnum):
    """Machine-readable failure kinds, grouped by layer."""

    # Filesystem
    FS_NOT_FOUND = "FS_NOT_FOUND"
    FS_PERMISSION_DENIED = "FS_PERMISSION_DENIED"
    FS_READ_ERROR = "FS_READ_ERROR"
    FS_WRITE_ERROR = "FS_WRITE_ERROR"

    # Context
    CONTEXT_NOT_FOUND = "CONTEXT_NOT_FOUND"
    CONTEXT_CORRUPTED = "CONTEXT_CORRUPTED"
    CONTEXT_VERSION_MISMATCH = "CONTEXT_VERSION_MISMATCH"

    # Serialization
    SERIALIZE_FAILED = "SERIALIZE_FAILED"
    DESERIALIZE_FAILED = "DESERIALIZE_FAILED"

    # Transcript
    TRANSCRIPT_NOT_FOUND = "TRANSCRIPT_NOT_FOUND"
    TRANSCRIPT_PARSE_ERROR = "TRANSCRIPT_PARSE_ERROR"

    # Input / surfaces
    HOOK_INVALID_INPUT = "HOOK_INVALID_INPUT"
    MCP_TOOL_ERROR = "MCP_TOOL_ERROR"
    MCP_RESOURCE_ERROR = "MCP_RESOURCE_ERROR"
    CONFIG_INVALID = "CONFIG_INVALID"
    VALIDATION_FAILED = "VALIDATION_FAILED"


@dataclass(frozen=True)
class BenTenError:
    """Structured failure: a code, a human message and optional details."""

    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result carrying ``value``."""

    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failed result carrying a :class:`BenTenError`."""

    error: BenTenError

    @property
    def ok(self) -> bool:
        return False


Result = Ok[T] | Err


def create_error(
    code: ErrorCode, message: str, **details: Any
) -> BenTenError:
    """Build a :class:`BenTenError`, dropping ``None`` detail values."""
    return BenTenError(
        code=code,
        message=message,
        details={k: v for k, v in details.items() if v is not None},
    )


def fail(code: ErrorCode, message: str, **details: Any) -> Err:
    """Shorthand for ``Err(create_error(...))``."""
    return Err(create_error(code, message, **details))
