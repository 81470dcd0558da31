"""Transcript extractor — structured signal from JSONL conversation logs."""

from __future__ import annotations

import json
import logging
import os
import re

from pydantic import ValidationError

from .errors import ErrorCode, Err, Ok, Result, fail
from .fs import FileSystem
from .models import (
    AssistantEntry,
    ConversationHistory,
    SummaryEntry,
    ToolExecution,
    TranscriptEntry,
    entry_text,
    now_ms,
    transcript_entry_adapter,
)

_log = logging.getLogger(__name__)

KNOWN_TOOLS: tuple[str, ...] = (
    "Read",
    "Write",
    "Edit",
    "MultiEdit",
    "Bash",
    "Glob",
    "Grep",
    "LS",
    "WebFetch",
    "WebSearch",
    "Task",
    "TodoWrite",
    "NotebookEdit",
)

_BACKTICK_RE = re.compile(r"`([^`\n]+)`")
_TOOL_RE = re.compile(
    r"\bUsing\s+(" + "|".join(KNOWN_TOOLS) + r")\b", re.IGNORECASE
)
_CANONICAL_TOOL = {name.lower(): name for name in KNOWN_TOOLS}


def _looks_like_path(token: str) -> bool:
    if "/" in token or "\\" in token:
        return True
    return "." in token and not any(ch.isspace() for ch in token)


def claude_project_dir_name(project_dir: str) -> str:
    """``/home/me/repo`` -> ``-home-me-repo`` (the host's per-project folder)."""
    return project_dir.replace("\\", "/").replace("/", "-")


class TranscriptExtractor:
    """Parses transcripts and derives summaries, file references and tool calls."""

    def __init__(self, fs: FileSystem, logger: logging.Logger | None = None) -> None:
        self._fs = fs
        self._log = logger if logger is not None else _log

    def _parse_line(self, line: str) -> TranscriptEntry | None:
        try:
            return transcript_entry_adapter.validate_python(json.loads(line))
        except (json.JSONDecodeError, ValidationError):
            return None

    async def parse_transcript(self, path: str) -> Result[ConversationHistory]:
        self._log.debug("Parsing transcript %s", path)
        if not await self._fs.exists(path):
            return fail(ErrorCode.TRANSCRIPT_NOT_FOUND, "Transcript file not found", path=path)

        read = await self._fs.read_text(path)
        if isinstance(read, Err):
            return fail(ErrorCode.TRANSCRIPT_PARSE_ERROR, "Failed to read transcript",
                        path=path, original_error=read.error.message)

        messages: list[TranscriptEntry] = []
        for lineno, line in enumerate(read.value.splitlines(), start=1):
            if not line.strip():
                continue
            entry = self._parse_line(line)
            if entry is None:
                self._log.warning("Skipping malformed transcript line %d: %s",
                                  lineno, line[:100])
                continue
            messages.append(entry)

        self._log.info("Parsed transcript %s: %d entries", path, len(messages))
        return Ok(ConversationHistory(messages=messages, message_count=len(messages)))

    async def get_latest_summary(self, path: str) -> Result[str | None]:
        """Return the last ``summary`` entry's text; ``None`` if there is none."""
        parsed = await self.parse_transcript(path)
        if isinstance(parsed, Err):
            return parsed
        return Ok(self.latest_summary(parsed.value))

    @staticmethod
    def latest_summary(history: ConversationHistory) -> str | None:
        latest: str | None = None
        for entry in history.messages:
            if isinstance(entry, SummaryEntry):
                latest = entry.summary
        return latest

    @staticmethod
    def extract_file_references(history: ConversationHistory) -> list[str]:
        """Backtick-quoted tokens that look like file paths, first occurrence first."""
        seen: dict[str, None] = {}
        for entry in history.messages:
            text = entry_text(entry)
            if not text:
                continue
            for match in _BACKTICK_RE.finditer(text):
                token = match.group(1).strip()
                if token and _looks_like_path(token):
                    seen.setdefault(token, None)
        return list(seen)

    @staticmethod
    def extract_tool_calls(history: ConversationHistory) -> list[ToolExecution]:
        """Tool usage inferred from "Using <Tool>" phrasing in assistant text.

        This is a heuristic, not an execution log: every match is recorded as a
        success and stamped with the extraction time.
        """
        stamp = now_ms()
        calls: list[ToolExecution] = []
        for entry in history.messages:
            if not isinstance(entry, AssistantEntry):
                continue
            for match in _TOOL_RE.finditer(entry.text()):
                calls.append(ToolExecution(
                    tool_name=_CANONICAL_TOOL[match.group(1).lower()],
                    timestamp=stamp,
                    success=True,
                ))
        return calls

    @staticmethod
    def get_transcript_excerpt(history: ConversationHistory, max_chars: int) -> str | None:
        """Tail of the most recent assistant text, at most *max_chars* long."""
        if max_chars <= 0:
            return None
        for entry in reversed(history.messages):
            if isinstance(entry, AssistantEntry):
                text = entry.text().strip()
                if text:
                    return text[-max_chars:]
        return None

    async def discover_transcript_path(
        self, project_dir: str, projects_root: str | None = None
    ) -> Result[str | None]:
        """Most recently modified ``*.jsonl`` transcript for *project_dir*."""
        root = projects_root or os.path.join(os.path.expanduser("~"), ".claude", "projects")
        transcript_dir = os.path.join(root, claude_project_dir_name(project_dir))
        if not await self._fs.exists(transcript_dir):
            self._log.debug("No transcript directory at %s", transcript_dir)
            return Ok(None)

        listing = await self._fs.readdir(transcript_dir)
        if isinstance(listing, Err):
            return listing

        latest: str | None = None
        latest_mtime = -1.0
        for name in listing.value:
            if not name.endswith(".jsonl"):
                continue
            path = os.path.join(transcript_dir, name)
            st = await self._fs.stat(path)
            if st.ok and st.value.mtime > latest_mtime:
                latest, latest_mtime = path, st.value.mtime
        if latest:
            self._log.info("Discovered transcript %s", latest)
        return Ok(latest)
