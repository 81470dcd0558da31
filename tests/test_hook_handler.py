"""Tests for HookHandler — the session lifecycle dispatcher."""

from __future__ import annotations

import json
import logging

import pytest

from ben_ten.config import BenTenConfig
from ben_ten.context_store import ContextStore
from ben_ten.errors import ErrorCode, Result, fail
from ben_ten.fs import MemoryFileSystem
from ben_ten.hook_handler import (
    HookHandler,
    PreCompactResult,
    SessionEndResult,
    SessionStartResult,
    merge_file_metadata,
    merge_key_files,
)
from ben_ten.models import CONTEXT_VERSION, ContextData, FileMetadata, HookInput

PROJECT = "/work/app"
TRANSCRIPT = "/transcripts/session.jsonl"
CTX_PATH = f"{PROJECT}/.ben10/context.ctx"


def _input(event: str, **extra) -> HookInput:
    return HookInput.model_validate({
        "session_id": extra.pop("session_id", "sess-new"),
        "transcript_path": extra.pop("transcript_path", TRANSCRIPT),
        "cwd": PROJECT,
        "hook_event_name": event,
        **extra,
    })


def _jsonl(*entries: dict) -> str:
    return "\n".join(json.dumps(e) for e in entries) + "\n"


def _assistant(text: str) -> dict:
    return {"type": "assistant",
            "message": {"role": "assistant", "content": [{"type": "text", "text": text}]}}


def _stored(summary: str = "X", updated_at: int = 1_000) -> ContextData:
    return ContextData(
        version=CONTEXT_VERSION, created_at=500, updated_at=updated_at,
        session_id="sess-old", summary=summary, key_files=["old.py"],
        active_tasks=["keep me"],
    )


async def _seed(fs: MemoryFileSystem, ctx: ContextData) -> None:
    assert (await ContextStore(fs, PROJECT).save_context(ctx)).ok


# ---------------------------------------------------------------------------
# SessionStart
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_startup_without_context():
    fs = MemoryFileSystem()
    result = await HookHandler(fs).handle(_input("SessionStart", source="startup"))
    assert result.ok
    assert isinstance(result.value, SessionStartResult)
    assert result.value.to_dict() == {"contextLoaded": False}


@pytest.mark.asyncio
async def test_startup_with_context_loads_it():
    fs = MemoryFileSystem()
    await _seed(fs, _stored(summary="X"))
    result = await HookHandler(fs).handle(_input("SessionStart", source="startup"))
    assert result.ok
    out = result.value.to_dict()
    assert out["contextLoaded"] is True
    assert out["context"]["summary"] == "X"
    assert out["source"] == "local"


@pytest.mark.asyncio
async def test_startup_records_session_metadata():
    fs = MemoryFileSystem()
    handler = HookHandler(fs)
    await handler.handle(_input("SessionStart", source="startup"))
    await handler.handle(_input("SessionStart", source="resume", session_id="sess-2"))
    meta = await ContextStore(fs, PROJECT).load_metadata()
    assert meta.ok
    assert meta.value.session_count == 2
    assert meta.value.last_session_id == "sess-2"
    assert meta.value.transcript_path == TRANSCRIPT


@pytest.mark.asyncio
async def test_missing_source_is_treated_as_startup():
    fs = MemoryFileSystem()
    await _seed(fs, _stored())
    result = await HookHandler(fs).handle(_input("SessionStart"))
    assert result.ok and result.value.context_loaded


@pytest.mark.asyncio
async def test_corrupted_metadata_is_rebuilt():
    fs = MemoryFileSystem({f"{PROJECT}/.ben10/metadata.json": "{garbage"})
    result = await HookHandler(fs).handle(_input("SessionStart", source="startup"))
    assert result.ok
    meta = await ContextStore(fs, PROJECT).load_metadata()
    assert meta.ok and meta.value.session_count == 1


@pytest.mark.asyncio
async def test_corrupted_context_is_an_error_at_startup():
    fs = MemoryFileSystem({CTX_PATH: b"BT10 broken"})
    result = await HookHandler(fs).handle(_input("SessionStart", source="startup"))
    assert not result.ok
    assert result.error.code is ErrorCode.CONTEXT_CORRUPTED


@pytest.mark.asyncio
async def test_clear_deletes_context():
    fs = MemoryFileSystem()
    await _seed(fs, _stored())
    result = await HookHandler(fs).handle(_input("SessionStart", source="clear"))
    assert result.ok
    assert result.value.to_dict() == {"contextCleared": True}
    assert not await ContextStore(fs, PROJECT).has_context()


@pytest.mark.asyncio
async def test_compact_returns_transcript_summary_and_context():
    fs = MemoryFileSystem({TRANSCRIPT: _jsonl({"type": "summary", "summary": "Compacted"})})
    await _seed(fs, _stored(summary="X"))
    result = await HookHandler(fs).handle(_input("SessionStart", source="compact"))
    assert result.ok
    out = result.value.to_dict()
    assert out["transcriptSummary"] == "Compacted"
    assert out["contextLoaded"] is True
    assert out["context"]["summary"] == "X"


@pytest.mark.asyncio
async def test_compact_with_missing_transcript_fails():
    fs = MemoryFileSystem()
    result = await HookHandler(fs).handle(_input("SessionStart", source="compact"))
    assert result.error.code is ErrorCode.FS_NOT_FOUND
    assert result.error.details["cause"] == "TRANSCRIPT_NOT_FOUND"


# ---------------------------------------------------------------------------
# SessionEnd
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_session_end_saves_summary_from_transcript():
    fs = MemoryFileSystem({TRANSCRIPT: _jsonl({"type": "summary", "summary": "Done"})})
    before = _stored(summary="before")
    await _seed(fs, before)

    result = await HookHandler(fs).handle(_input("SessionEnd"))
    assert result.ok
    assert isinstance(result.value, SessionEndResult)
    assert result.value.to_dict() == {"contextSaved": True, "sessionId": "sess-new"}

    saved = (await ContextStore(fs, PROJECT).load_context()).value
    assert saved.summary == "Done"
    assert saved.updated_at > before.updated_at
    assert saved.created_at == before.created_at
    assert saved.session_id == "sess-new"
    assert saved.active_tasks == ["keep me"]


@pytest.mark.asyncio
async def test_session_end_without_stored_context_creates_one():
    fs = MemoryFileSystem({TRANSCRIPT: _jsonl(
        {"type": "user", "message": {"role": "user", "content": "edit `src/main.py`"}},
        _assistant("Using Edit on `src/main.py` now. All done."),
    )})
    result = await HookHandler(fs).handle(_input("SessionEnd"))
    assert result.ok

    saved = (await ContextStore(fs, PROJECT).load_context()).value
    assert saved.summary == ""
    assert saved.key_files == ["src/main.py"]
    assert [f.path for f in saved.files] == ["src/main.py"]
    assert [t.tool_name for t in saved.tool_history] == ["Edit"]
    assert saved.transcript_excerpt.endswith("All done.")


@pytest.mark.asyncio
async def test_session_end_with_missing_transcript_writes_nothing():
    fs = MemoryFileSystem()
    await _seed(fs, _stored())
    before = fs.files()[CTX_PATH]

    result = await HookHandler(fs).handle(
        _input("SessionEnd", transcript_path="/does/not/exist.jsonl")
    )
    assert not result.ok
    assert result.error.code is ErrorCode.FS_NOT_FOUND
    assert fs.files()[CTX_PATH] == before


@pytest.mark.asyncio
async def test_session_end_with_missing_transcript_and_no_context():
    fs = MemoryFileSystem()
    result = await HookHandler(fs).handle(_input("SessionEnd"))
    assert result.error.code is ErrorCode.FS_NOT_FOUND
    assert CTX_PATH not in fs.files()


@pytest.mark.asyncio
async def test_session_end_respects_max_key_files():
    refs = " ".join(f"`src/f{i}.py`" for i in range(5))
    fs = MemoryFileSystem({TRANSCRIPT: _jsonl(_assistant(refs))})
    handler = HookHandler(fs, config=BenTenConfig(max_key_files=3))
    assert (await handler.handle(_input("SessionEnd"))).ok
    saved = (await ContextStore(fs, PROJECT).load_context()).value
    assert saved.key_files == ["src/f2.py", "src/f3.py", "src/f4.py"]


@pytest.mark.asyncio
async def test_session_end_keeps_fields_it_does_not_manage():
    legacy = {
        "version": "2.0.0", "createdAt": 1, "updatedAt": 2,
        "sessionId": "sess-old", "summary": "old",
        "conversation": {"messages": [], "messageCount": 0},
        "preferences": {"tabs": False},
        "isPreCompactionSnapshot": True,
        "compactionTrigger": "auto",
        "preCompactionTokenCount": 4096,
        "conversationReplay": "## Recent Conversation\n\n**User:** hi",
        "replayMetadata": {"tokenCount": 9, "messageCount": 1, "generatedAt": 3},
        "customField": "kept",
    }
    fs = MemoryFileSystem({
        f"{PROJECT}/.ben10/context.json": json.dumps(legacy),
        TRANSCRIPT: _jsonl({"type": "summary", "summary": "new"}),
    })
    assert (await HookHandler(fs).handle(_input("SessionEnd"))).ok

    wire = (await ContextStore(fs, PROJECT).load_context()).value.to_wire()
    assert wire["summary"] == "new"
    for key in ("conversation", "preferences", "isPreCompactionSnapshot", "compactionTrigger",
                "preCompactionTokenCount", "conversationReplay", "replayMetadata",
                "customField"):
        assert wire[key] == legacy[key]


@pytest.mark.asyncio
async def test_session_end_stores_replay_after_last_commit():
    commit = {"type": "assistant", "message": {"role": "assistant", "content": [
        {"type": "tool_use", "id": "t1", "name": "Bash",
         "input": {"command": "git commit -m wip"}},
    ]}}
    fs = MemoryFileSystem({TRANSCRIPT: _jsonl(
        {"type": "user", "message": {"role": "user", "content": "before"}},
        commit,
        {"type": "user", "message": {"role": "user", "content": "now add docs"}},
        _assistant("Writing the docs"),
    )})
    assert (await HookHandler(fs).handle(_input("SessionEnd"))).ok

    saved = (await ContextStore(fs, PROJECT).load_context()).value
    assert saved.conversation_replay == (
        "## Recent Conversation\n\n**User:** now add docs\n\n**Assistant:** Writing the docs"
    )
    meta = saved.replay_metadata
    assert meta.stopping_point_type == "git_commit"
    assert meta.message_count == 2
    assert meta.start_message_index == 2
    assert meta.current_stop_index == 0


class _MetadataWriteFails(MemoryFileSystem):
    async def write_bytes(self, path: str, data: bytes) -> Result[None]:
        if path.endswith("metadata.json"):
            return fail(ErrorCode.FS_PERMISSION_DENIED, f"Permission denied: {path}", path=path)
        return await super().write_bytes(path, data)


@pytest.mark.asyncio
async def test_session_end_reports_saved_when_only_metadata_fails(caplog):
    fs = _MetadataWriteFails({TRANSCRIPT: _jsonl({"type": "summary", "summary": "S"})})
    handler = HookHandler(fs, logger=logging.getLogger("ben_ten_tests.session_end"))
    with caplog.at_level(logging.WARNING):
        result = await handler.handle(_input("SessionEnd"))

    assert result.ok
    assert result.value.context_saved is True
    assert (await ContextStore(fs, PROJECT).load_context()).value.summary == "S"
    assert "metadata update failed" in caplog.text


# ---------------------------------------------------------------------------
# PreCompact
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_pre_compact_is_a_no_op():
    fs = MemoryFileSystem()
    result = await HookHandler(fs).handle(_input("PreCompact", trigger="auto"))
    assert result.ok
    assert isinstance(result.value, PreCompactResult)
    assert result.value.to_dict() == {"contextSaved": False, "sessionId": "sess-new"}
    assert fs.files() == {}


# ---------------------------------------------------------------------------
# Merge helpers
# ---------------------------------------------------------------------------


def test_merge_key_files_dedupes_and_limits():
    assert merge_key_files(["a", "b"], ["b", "c"], 10) == ["a", "b", "c"]
    assert merge_key_files(["a", "b"], ["c"], 2) == ["b", "c"]
    assert merge_key_files(None, [], 5) is None


def test_merge_file_metadata_counts_access():
    existing = [FileMetadata(path="a", last_accessed=1, access_count=2)]
    merged = merge_file_metadata(existing, ["a", "b"], 10, 50)
    by_path = {f.path: f for f in merged}
    assert by_path["a"].access_count == 3
    assert by_path["a"].last_accessed == 10
    assert by_path["b"].access_count == 1
    assert merge_file_metadata(None, [], 10, 50) is None
