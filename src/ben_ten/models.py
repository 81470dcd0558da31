"""Data models — persisted context, hook input and transcript entries.

Field names on disk and on the wire are camelCase (``createdAt``) for
compatibility with existing context files; Python code uses snake_case.
Both spellings are accepted when validating.
"""

from __future__ import annotations

import time
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from .errors import ErrorCode, Err, Ok, Result, create_error

CONTEXT_VERSION = "2.0.0"


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump with camelCase keys, omitting unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ---------------------------------------------------------------------------
# Persisted context
# ---------------------------------------------------------------------------


class FileMetadata(_CamelModel):
    path: str
    last_accessed: int
    access_count: int
    content_hash: str | None = None


class ToolExecution(_CamelModel):
    """A tool call inferred from transcript text.

    Heuristic signal only: ``timestamp`` is the extraction time, not the time
    the tool actually ran, and ``success`` is always assumed.
    """

    tool_name: str
    timestamp: int
    success: bool
    duration_ms: int | None = None


class StoppingPointType(StrEnum):
    """Where a conversation replay starts, strongest first."""

    GIT_COMMIT = "git_commit"
    TASK_COMPLETION = "task_completion"
    SEMANTIC_MARKER = "semantic_marker"
    TOKEN_BUDGET = "token_budget"


class StoppingPoint(_CamelModel):
    index: int
    type: StoppingPointType


class ReplayMetadata(_CamelModel):
    token_count: int
    message_count: int
    stopping_point_type: StoppingPointType | None = None
    generated_at: int
    all_stopping_points: list[StoppingPoint] | None = None
    current_stop_index: int | None = None
    start_message_index: int | None = None


class ContextData(_CamelModel):
    """The persisted working context of one project.

    Keys this version does not know about are kept as extras and written
    back unchanged.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    version: str
    created_at: int
    updated_at: int
    session_id: str
    summary: str
    transcript_excerpt: str | None = None
    key_files: list[str] | None = None
    active_tasks: list[str] | None = None
    conversation: dict[str, Any] | None = None
    files: list[FileMetadata] | None = None
    tool_history: list[ToolExecution] | None = None
    preferences: dict[str, Any] | None = None
    is_pre_compaction_snapshot: bool | None = None
    compaction_trigger: str | None = None
    pre_compaction_token_count: int | None = None
    conversation_replay: str | None = None
    replay_metadata: ReplayMetadata | None = None

    def updated(self, **changes: Any) -> ContextData:
        """Return a copy with *changes* merged in and ``updated_at`` advanced.

        ``version`` and ``created_at`` are never overwritten. The new
        ``updated_at`` is strictly greater than the current one even when the
        clock has not moved.
        """
        changes.pop("version", None)
        changes.pop("created_at", None)
        changes["updated_at"] = max(now_ms(), self.updated_at + 1)
        return self.model_copy(update=changes)


class ContextMetadata(_CamelModel):
    """Side-channel record describing the stored context without decoding it."""

    directory: str
    directory_hash: str
    last_session_id: str
    session_count: int
    last_saved_at: int
    transcript_path: str | None = None


def create_empty_context(session_id: str) -> ContextData:
    now = now_ms()
    return ContextData(
        version=CONTEXT_VERSION,
        created_at=now,
        updated_at=now,
        session_id=session_id,
        summary="",
    )


def hash_directory(path: str) -> str:
    """Short stable hex hash of a directory path (31-multiplier string hash)."""
    h = 0
    for ch in path:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return format(abs(h), "x")


# ---------------------------------------------------------------------------
# Hook input
# ---------------------------------------------------------------------------


class HookEventName(StrEnum):
    SESSION_START = "SessionStart"
    SESSION_END = "SessionEnd"
    PRE_COMPACT = "PreCompact"


class SessionSource(StrEnum):
    STARTUP = "startup"
    RESUME = "resume"
    COMPACT = "compact"
    CLEAR = "clear"


class CompactTrigger(StrEnum):
    MANUAL = "manual"
    AUTO = "auto"


class HookInput(BaseModel):
    """Lifecycle event received from the host application on stdin."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    session_id: str
    transcript_path: str
    cwd: str
    hook_event_name: HookEventName
    source: SessionSource | None = None
    trigger: CompactTrigger | None = None
    permission_mode: str | None = None
    model: str | None = None
    custom_instructions: str | None = None


# ---------------------------------------------------------------------------
# Transcript entries
# ---------------------------------------------------------------------------


class TextBlock(BaseModel):
    type: Literal["text"]
    text: str


class ThinkingBlock(BaseModel):
    type: Literal["thinking"]
    thinking: str


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"]
    id: str
    name: str
    input: Any = None


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"]
    tool_use_id: str
    content: Any = None
    is_error: bool | None = None


ContentBlock = Annotated[
    TextBlock | ThinkingBlock | ToolUseBlock | ToolResultBlock,
    Field(discriminator="type"),
]
UserContentBlock = Annotated[TextBlock | ToolResultBlock, Field(discriminator="type")]


class AssistantMessage(BaseModel):
    role: Literal["assistant"]
    content: list[ContentBlock]


class UserMessage(BaseModel):
    role: Literal["user"]
    content: str | list[UserContentBlock]


class SummaryEntry(BaseModel):
    type: Literal["summary"]
    summary: str


class AssistantEntry(BaseModel):
    type: Literal["assistant"]
    message: AssistantMessage
    uuid: str | None = None
    timestamp: str | None = None

    def text(self) -> str:
        return "\n".join(b.text for b in self.message.content if isinstance(b, TextBlock))


class UserEntry(BaseModel):
    type: Literal["user"]
    message: UserMessage
    uuid: str | None = None
    timestamp: str | None = None

    def text(self) -> str:
        content = self.message.content
        if isinstance(content, str):
            return content
        return "\n".join(b.text for b in content if isinstance(b, TextBlock))


class ProgressEntry(BaseModel):
    type: Literal["progress"]
    data: Any = None


class FileHistorySnapshotEntry(BaseModel):
    type: Literal["file-history-snapshot"]
    snapshot: Any = None


TranscriptEntry = Annotated[
    SummaryEntry | AssistantEntry | UserEntry | ProgressEntry | FileHistorySnapshotEntry,
    Field(discriminator="type"),
]

transcript_entry_adapter: TypeAdapter[TranscriptEntry] = TypeAdapter(TranscriptEntry)


def entry_text(entry: Any) -> str:
    """Plain textual content of a transcript entry ('' when it has none)."""
    if isinstance(entry, SummaryEntry):
        return entry.summary
    if isinstance(entry, (AssistantEntry, UserEntry)):
        return entry.text()
    return ""


class ConversationHistory(BaseModel):
    messages: list[TranscriptEntry] = []
    message_count: int = 0


# ---------------------------------------------------------------------------
# Validation capabilities
# ---------------------------------------------------------------------------


def validation_details(exc: ValidationError) -> list[dict[str, Any]]:
    """JSON-safe summary of a pydantic validation failure."""
    return [
        {"loc": [str(p) for p in e["loc"]], "msg": e["msg"], "type": e["type"]}
        for e in exc.errors()
    ]


def parse_hook_input(raw: Any) -> Result[HookInput]:
    try:
        return Ok(HookInput.model_validate(raw))
    except ValidationError as exc:
        return Err(
            create_error(
                ErrorCode.HOOK_INVALID_INPUT,
                "Invalid hook input format",
                errors=validation_details(exc),
            )
        )


def parse_context_data(raw: Any) -> Result[ContextData]:
    try:
        return Ok(ContextData.model_validate(raw))
    except ValidationError as exc:
        return Err(
            create_error(
                ErrorCode.VALIDATION_FAILED,
                "Invalid context data format",
                errors=validation_details(exc),
            )
        )


def parse_context_metadata(raw: Any) -> Result[ContextMetadata]:
    try:
        return Ok(ContextMetadata.model_validate(raw))
    except ValidationError as exc:
        return Err(
            create_error(
                ErrorCode.VALIDATION_FAILED,
                "Invalid context metadata format",
                errors=validation_details(exc),
            )
        )


def migrate_context_data(raw: Any) -> Result[ContextData]:
    """Validate *raw* and bring it forward to :data:`CONTEXT_VERSION`.

    Every generation so far only added optional fields, so migration keeps
    all data and rewrites the version tag.
    """
    parsed = raw if isinstance(raw, ContextData) else None
    if parsed is None:
        result = parse_context_data(raw)
        if isinstance(result, Err):
            return result
        parsed = result.value
    if parsed.version == CONTEXT_VERSION:
        return Ok(parsed)
    return Ok(parsed.model_copy(update={"version": CONTEXT_VERSION}))
