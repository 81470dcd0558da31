"""Ben-Ten — persistent working context across assistant sessions."""

from __future__ import annotations

__version__ = "0.2.0"

from .compression import Lz4Compressor
from .config import BenTenConfig, build_config, load_config
from .context_store import ContextSource, ContextStore, SourceKind
from .errors import BenTenError, Err, ErrorCode, Ok, Result, create_error, fail
from .fs import FileStats, FileSystem, LocalFileSystem, MemoryFileSystem
from .hook_handler import (
    HookHandler,
    HookResult,
    PreCompactResult,
    SessionEndResult,
    SessionStartResult,
)
from .logger import create_logger
from .models import (
    CONTEXT_VERSION,
    ContextData,
    ContextMetadata,
    ConversationHistory,
    FileMetadata,
    HookEventName,
    HookInput,
    ReplayMetadata,
    SessionSource,
    StoppingPoint,
    StoppingPointType,
    ToolExecution,
    create_empty_context,
    migrate_context_data,
    parse_context_data,
    parse_hook_input,
)
from .replay import ReplayGenerator, ReplayResult
from .serializer import ContextSerializer, FormatType
from .telemetry import BenTenTracer, TelemetryConfig
from .transcript import TranscriptExtractor

__all__ = [
    "CONTEXT_VERSION",
    "BenTenConfig",
    "BenTenError",
    "BenTenTracer",
    "ContextData",
    "ContextMetadata",
    "ContextSerializer",
    "ContextSource",
    "ContextStore",
    "ConversationHistory",
    "Err",
    "ErrorCode",
    "FileMetadata",
    "FileStats",
    "FileSystem",
    "FormatType",
    "HookEventName",
    "HookHandler",
    "HookInput",
    "HookResult",
    "LocalFileSystem",
    "Lz4Compressor",
    "MemoryFileSystem",
    "Ok",
    "PreCompactResult",
    "ReplayGenerator",
    "ReplayMetadata",
    "ReplayResult",
    "Result",
    "SessionEndResult",
    "SessionSource",
    "SessionStartResult",
    "SourceKind",
    "StoppingPoint",
    "StoppingPointType",
    "TelemetryConfig",
    "ToolExecution",
    "TranscriptExtractor",
    "build_config",
    "create_empty_context",
    "create_error",
    "create_logger",
    "fail",
    "load_config",
    "migrate_context_data",
    "parse_context_data",
    "parse_hook_input",
]
