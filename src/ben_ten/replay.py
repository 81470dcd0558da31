"""Conversation replay — a condensed, token-bounded tail of the transcript.

The replay starts right after the most recent *stopping point*: a
``git commit`` run through Bash, then a ``TaskUpdate`` marked completed,
and only when neither exists, an assistant message that reads like a
wrap-up ("done", "moving on"). Without any stopping point the replay is
the longest tail that fits the token budget.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .models import (
    AssistantEntry,
    ReplayMetadata,
    StoppingPoint,
    StoppingPointType,
    TextBlock,
    ToolUseBlock,
    UserEntry,
    entry_text,
    now_ms,
)

_log = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 50_000
MAX_MESSAGE_CHARS = 500
MAX_COMMAND_CHARS = 50
REPLAY_HEADING = "## Recent Conversation"

_GIT_COMMIT_RE = re.compile(r"git\s+commit\b")
_COMPLETION_PATTERNS = (
    re.compile(r"\b(?:done|complete|finished|completed)\b", re.IGNORECASE),
    re.compile(r"\b(?:moving on|let's work on|next up|now let's)\b", re.IGNORECASE),
)
_STRONG_STOPS = (StoppingPointType.GIT_COMMIT, StoppingPointType.TASK_COMPLETION)

# Tool name -> input key shown in the condensed line.
_TOOL_ARGUMENT = {
    "Read": "file_path",
    "Edit": "file_path",
    "Write": "file_path",
    "Glob": "pattern",
    "Grep": "pattern",
    "Task": "description",
}


def estimate_tokens(text: str) -> int:
    """Rough token count: four characters per token."""
    return len(text) // 4


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def _tool_uses(entry: Any) -> list[ToolUseBlock]:
    if not isinstance(entry, AssistantEntry):
        return []
    return [b for b in entry.message.content if isinstance(b, ToolUseBlock)]


def _tool_input(block: ToolUseBlock) -> dict[str, Any]:
    return block.input if isinstance(block.input, dict) else {}


def is_git_commit(entry: Any) -> bool:
    for block in _tool_uses(entry):
        command = _tool_input(block).get("command")
        if block.name == "Bash" and isinstance(command, str) and _GIT_COMMIT_RE.search(command):
            return True
    return False


def is_task_completion(entry: Any) -> bool:
    return any(
        block.name == "TaskUpdate" and _tool_input(block).get("status") == "completed"
        for block in _tool_uses(entry)
    )


def is_semantic_marker(entry: Any) -> bool:
    if not isinstance(entry, AssistantEntry):
        return False
    text = entry_text(entry)
    return any(p.search(text) for p in _COMPLETION_PATTERNS)


def classify_entry(entry: Any) -> StoppingPointType | None:
    """Strongest stopping-point kind *entry* represents, if any."""
    if is_git_commit(entry):
        return StoppingPointType.GIT_COMMIT
    if is_task_completion(entry):
        return StoppingPointType.TASK_COMPLETION
    if is_semantic_marker(entry):
        return StoppingPointType.SEMANTIC_MARKER
    return None


def find_stopping_points(messages: Sequence[Any]) -> list[StoppingPoint]:
    """Every stopping point in *messages*, most recent first."""
    points = []
    for index in range(len(messages) - 1, -1, -1):
        kind = classify_entry(messages[index])
        if kind is not None:
            points.append(StoppingPoint(index=index, type=kind))
    return points


def select_stopping_point(points: Sequence[StoppingPoint]) -> StoppingPoint | None:
    """Most recent strong stop; else the most recent semantic marker."""
    for point in points:
        if point.type in _STRONG_STOPS:
            return point
    return points[0] if points else None


def format_tool_use(block: ToolUseBlock) -> str:
    args = _tool_input(block)
    if block.name == "Bash":
        return f"[Bash: {_truncate(str(args.get('command') or ''), MAX_COMMAND_CHARS)}]"
    key = _TOOL_ARGUMENT.get(block.name)
    if key is None:
        return f"[{block.name}]"
    return f"[{block.name}: {args.get(key) or ''}]"


def format_entry(entry: Any) -> str:
    """One condensed replay line ('' for entries that are not shown)."""
    if isinstance(entry, UserEntry):
        content = entry.message.content
        text = content if isinstance(content, str) else "[tool results]"
        return f"**User:** {_truncate(text, MAX_MESSAGE_CHARS)}"
    if isinstance(entry, AssistantEntry):
        texts = [b.text for b in entry.message.content if isinstance(b, TextBlock)]
        tools = [format_tool_use(b) for b in _tool_uses(entry)]
        line = "**Assistant:**"
        if texts:
            line += " " + _truncate("\n".join(texts), MAX_MESSAGE_CHARS)
        if tools:
            line += "\n- " + "\n- ".join(tools)
        return line
    return ""


@dataclass
class ReplayResult:
    """A generated replay plus what it covers."""

    replay: str = ""
    token_count: int = 0
    message_count: int = 0
    stopping_point_type: StoppingPointType | None = None
    stopping_points: list[StoppingPoint] = field(default_factory=list)
    current_stop_index: int = -1
    start_message_index: int = 0

    def metadata(self, generated_at: int | None = None) -> ReplayMetadata:
        return ReplayMetadata(
            token_count=self.token_count,
            message_count=self.message_count,
            stopping_point_type=self.stopping_point_type,
            generated_at=generated_at if generated_at is not None else now_ms(),
            all_stopping_points=list(self.stopping_points),
            current_stop_index=self.current_stop_index,
            start_message_index=self.start_message_index,
        )


class ReplayGenerator:
    """Builds the replay shown at the next SessionStart."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger if logger is not None else _log

    def generate(self, messages: Sequence[Any], max_tokens: int = DEFAULT_MAX_TOKENS) -> ReplayResult:
        if not messages:
            return ReplayResult()

        points = find_stopping_points(messages)
        stop = select_stopping_point(points)
        kind = stop.type if stop is not None else None
        kept: list[Any] = []
        total = 0

        if stop is not None:
            start = stop.index + 1
            for entry in messages[start:]:
                cost = estimate_tokens(format_entry(entry))
                if total + cost > max_tokens:
                    break
                kept.append(entry)
                total += cost
        else:
            start = len(messages)
            for entry in reversed(messages):
                cost = estimate_tokens(format_entry(entry))
                if total + cost > max_tokens:
                    kind = StoppingPointType.TOKEN_BUDGET
                    break
                kept.append(entry)
                total += cost
                start -= 1
            kept.reverse()

        lines = [line for line in map(format_entry, kept) if line]
        replay = f"{REPLAY_HEADING}\n\n" + "\n\n".join(lines) if lines else ""
        result = ReplayResult(
            replay=replay,
            token_count=estimate_tokens(replay),
            message_count=len(kept),
            stopping_point_type=kind,
            stopping_points=points,
            current_stop_index=points.index(stop) if stop is not None else -1,
            start_message_index=start,
        )
        self._log.debug("Replay generated: %d messages, ~%d tokens, stop=%s",
                        result.message_count, result.token_count, kind)
        return result
