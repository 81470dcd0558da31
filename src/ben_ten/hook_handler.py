"""Session lifecycle dispatcher — maps a hook event to load / save / clear / no-op.

==============  =======================  ======================================
Event           Source                   Action
==============  =======================  ======================================
SessionStart    startup, resume, (none)  record session metadata, load context
SessionStart    compact                  read transcript summary, load context
SessionStart    clear                    delete stored context
SessionEnd      --                       extract transcript, merge, save
PreCompact      --                       no-op
==============  =======================  ======================================

A missing stored context is not an error (``context_loaded=False``). A
missing transcript on the paths that exist to capture it (SessionEnd,
SessionStart/compact) is: it comes back as ``FS_NOT_FOUND`` and nothing is
written. A metadata write that fails after SessionEnd saved the context is
logged and the save still reports success. Every other store or extractor
failure is returned as ``Err``; nothing here raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .config import BenTenConfig
from .context_store import ContextStore
from .errors import BenTenError, ErrorCode, Err, Ok, Result, fail
from .fs import FileSystem
from .models import (
    ContextData,
    ContextMetadata,
    ConversationHistory,
    FileMetadata,
    HookEventName,
    HookInput,
    SessionSource,
    create_empty_context,
    hash_directory,
    now_ms,
)
from .replay import ReplayGenerator
from .telemetry import BenTenTracer, mark_result
from .transcript import TranscriptExtractor

_log = logging.getLogger(__name__)


@dataclass
class SessionStartResult:
    context_loaded: bool = False
    context_cleared: bool = False
    context: ContextData | None = None
    source: str | None = None
    transcript_summary: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.context_cleared:
            return {"contextCleared": True}
        out: dict[str, Any] = {"contextLoaded": self.context_loaded}
        if self.context is not None:
            out["context"] = self.context.to_wire()
        if self.source is not None:
            out["source"] = self.source
        if self.transcript_summary is not None:
            out["transcriptSummary"] = self.transcript_summary
        return out


@dataclass
class SessionEndResult:
    context_saved: bool
    session_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"contextSaved": self.context_saved, "sessionId": self.session_id}


@dataclass
class PreCompactResult:
    context_saved: bool = False
    session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"contextSaved": self.context_saved}
        if self.session_id is not None:
            out["sessionId"] = self.session_id
        return out


HookResult = SessionStartResult | SessionEndResult | PreCompactResult


def _transcript_failure(error: BenTenError) -> Err:
    if error.code is ErrorCode.TRANSCRIPT_NOT_FOUND:
        return fail(ErrorCode.FS_NOT_FOUND, error.message,
                    cause=error.code.value, **error.details)
    return Err(error)


def merge_key_files(existing: list[str] | None, extracted: list[str], limit: int) -> list[str] | None:
    """Stored files then new references, de-duplicated, newest *limit* kept."""
    merged = list(dict.fromkeys([*(existing or []), *extracted]))
    return merged[-limit:] if merged else None


def merge_file_metadata(
    existing: list[FileMetadata] | None, references: list[str], stamp: int, limit: int
) -> list[FileMetadata] | None:
    by_path = {f.path: f for f in existing or []}
    for ref in references:
        prev = by_path.get(ref)
        if prev is None:
            by_path[ref] = FileMetadata(path=ref, last_accessed=stamp, access_count=1)
        else:
            by_path[ref] = prev.model_copy(
                update={"last_accessed": stamp, "access_count": prev.access_count + 1}
            )
    if not by_path:
        return None
    return sorted(by_path.values(), key=lambda f: f.last_accessed)[-limit:]


class HookHandler:
    """Dispatches validated :class:`HookInput` events."""

    def __init__(
        self,
        fs: FileSystem,
        config: BenTenConfig | None = None,
        logger: logging.Logger | None = None,
        tracer: BenTenTracer | None = None,
    ) -> None:
        self._fs = fs
        self._config = config or BenTenConfig()
        self._log = logger if logger is not None else _log
        self._tracer = tracer if tracer is not None else BenTenTracer()
        self._extractor = TranscriptExtractor(fs, logger=self._log)
        self._replay = ReplayGenerator(logger=self._log)

    def store_for(self, project_dir: str) -> ContextStore:
        return ContextStore(self._fs, project_dir, logger=self._log)

    async def handle(self, hook_input: HookInput) -> Result[HookResult]:
        event = hook_input.hook_event_name
        attributes = {
            "session.id": hook_input.session_id,
            "hook.event": event.value,
            "hook.source": hook_input.source,
        }
        with self._tracer.span(f"hook/{event.value}", attributes) as span:
            if event is HookEventName.SESSION_START:
                result = await self.handle_session_start(hook_input)
            elif event is HookEventName.SESSION_END:
                result = await self.handle_session_end(hook_input)
            else:
                result = await self.handle_pre_compact(hook_input)
            mark_result(span, result)
            return result

    # ------------------------------------------------------------------
    # SessionStart
    # ------------------------------------------------------------------

    async def handle_session_start(self, hook_input: HookInput) -> Result[SessionStartResult]:
        store = self.store_for(hook_input.cwd)
        source = hook_input.source
        self._log.debug("SessionStart: session=%s source=%s project=%s",
                        hook_input.session_id, source, hook_input.cwd)

        if source is SessionSource.CLEAR:
            deleted = await store.delete_context()
            if isinstance(deleted, Err):
                return deleted
            self._log.info("Context cleared for %s", hook_input.cwd)
            return Ok(SessionStartResult(context_cleared=True))

        if source is SessionSource.COMPACT:
            summary = await self._extractor.get_latest_summary(hook_input.transcript_path)
            if isinstance(summary, Err):
                return _transcript_failure(summary.error)
            loaded = await self._load_existing(store)
            if isinstance(loaded, Err):
                return loaded
            context = loaded.value
            return Ok(SessionStartResult(
                context_loaded=context is not None,
                context=context,
                source="local" if context is not None else None,
                transcript_summary=summary.value,
            ))

        if source is None:
            self._log.debug("No SessionStart source given, treating as startup")

        recorded = await self._record_session(store, hook_input, new_session=True)
        if isinstance(recorded, Err):
            return recorded

        loaded = await self._load_existing(store)
        if isinstance(loaded, Err):
            return loaded
        context = loaded.value
        if context is None:
            return Ok(SessionStartResult(context_loaded=False))
        self._log.info("Context loaded from local storage (session=%s)", context.session_id)
        return Ok(SessionStartResult(context_loaded=True, context=context, source="local"))

    # ------------------------------------------------------------------
    # SessionEnd
    # ------------------------------------------------------------------

    async def handle_session_end(self, hook_input: HookInput) -> Result[SessionEndResult]:
        store = self.store_for(hook_input.cwd)
        parsed = await self._extractor.parse_transcript(hook_input.transcript_path)
        if isinstance(parsed, Err):
            return _transcript_failure(parsed.error)

        loaded = await self._load_existing(store)
        if isinstance(loaded, Err):
            return loaded
        base = loaded.value or create_empty_context(hook_input.session_id)

        merged = self.merge_transcript(base, parsed.value, hook_input.session_id)
        saved = await store.save_context(merged)
        if isinstance(saved, Err):
            return saved

        recorded = await self._record_session(store, hook_input, new_session=False)
        if isinstance(recorded, Err):
            # The context is already on disk; metadata is only a side channel.
            self._log.warning("Context saved but metadata update failed: %s",
                              recorded.error.message)

        self._log.info("Context saved at SessionEnd (session=%s, %d transcript entries)",
                       hook_input.session_id, parsed.value.message_count)
        return Ok(SessionEndResult(context_saved=True, session_id=hook_input.session_id))

    def merge_transcript(
        self, base: ContextData, history: ConversationHistory, session_id: str
    ) -> ContextData:
        """Fold transcript-derived fields over *base*; ``updated_at`` advances."""
        extractor = self._extractor
        references = extractor.extract_file_references(history)
        tool_calls = extractor.extract_tool_calls(history)
        summary = extractor.latest_summary(history)
        excerpt = extractor.get_transcript_excerpt(history, self._config.excerpt_max_chars)
        limit = self._config.max_key_files
        replay = self._replay.generate(history.messages, self._config.replay_max_tokens)

        return base.updated(
            session_id=session_id,
            summary=summary if summary is not None else base.summary,
            transcript_excerpt=excerpt if excerpt is not None else base.transcript_excerpt,
            key_files=merge_key_files(base.key_files, references, limit),
            files=merge_file_metadata(base.files, references, now_ms(), limit),
            tool_history=tool_calls or None,
            conversation_replay=replay.replay or base.conversation_replay,
            replay_metadata=replay.metadata() if replay.replay else base.replay_metadata,
        )

    # ------------------------------------------------------------------
    # PreCompact
    # ------------------------------------------------------------------

    async def handle_pre_compact(self, hook_input: HookInput) -> Result[PreCompactResult]:
        # Saving before compaction is driven by the MCP save tool, not the hook.
        self._log.debug("PreCompact ignored (trigger=%s)", hook_input.trigger)
        return Ok(PreCompactResult(context_saved=False, session_id=hook_input.session_id))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_existing(self, store: ContextStore) -> Result[ContextData | None]:
        loaded = await store.load_context()
        if isinstance(loaded, Err) and loaded.error.code is ErrorCode.CONTEXT_NOT_FOUND:
            return Ok(None)
        return loaded

    async def _record_session(
        self, store: ContextStore, hook_input: HookInput, new_session: bool
    ) -> Result[ContextMetadata]:
        count = 1 if new_session else 0
        if await store.has_metadata():
            previous = await store.load_metadata()
            if isinstance(previous, Ok):
                count = previous.value.session_count + (1 if new_session else 0)
            else:
                # Side-channel only; rebuild rather than block the session.
                self._log.warning("Rebuilding unreadable metadata: %s", previous.error.message)
        metadata = ContextMetadata(
            directory=hook_input.cwd,
            directory_hash=hash_directory(hook_input.cwd),
            last_session_id=hook_input.session_id,
            session_count=max(count, 1),
            last_saved_at=now_ms(),
            transcript_path=hook_input.transcript_path,
        )
        saved = await store.save_metadata(metadata)
        if isinstance(saved, Err):
            return saved
        return Ok(metadata)
