#!/usr/bin/env python3
"""01_session_lifecycle.py — Ben-Ten session lifecycle demo.

Walks one project through a full cycle, entirely in memory:
  1. SessionStart (startup) with nothing stored yet
  2. SessionEnd: the transcript is mined and the context saved
  3. SessionStart (resume): the saved context comes back
  4. The same context through the MCP tool surface
  5. SessionStart (clear): the context is deleted

No files are touched: a MemoryFileSystem stands in for the disk.

Usage:
    python examples/01_session_lifecycle.py
"""

from __future__ import annotations

import asyncio
import json

from ben_ten import HookHandler, HookInput, MemoryFileSystem
from ben_ten.hook_command import format_hook_output
from ben_ten.mcp_server import McpContextServer

PROJECT = "/demo/project"
TRANSCRIPT = "/demo/transcripts/session-1.jsonl"

_TRANSCRIPT_LINES = [
    {"type": "user", "message": {"role": "user",
                                 "content": "The date parsing in `src/dates.py` is wrong"}},
    {"type": "assistant", "message": {"role": "assistant", "content": [
        {"type": "text", "text": "Using Read to open `src/dates.py`, then Using Edit to fix it."},
    ]}},
    {"type": "summary", "summary": "Fixed timezone handling in the date parser"},
]


def _event(name: str, **extra: str) -> HookInput:
    return HookInput(
        session_id=extra.pop("session_id", "session-1"),
        transcript_path=TRANSCRIPT,
        cwd=PROJECT,
        hook_event_name=name,
        **extra,
    )


async def main() -> None:
    print("=== Ben-Ten Session Lifecycle Demo ===")
    print()

    fs = MemoryFileSystem({
        TRANSCRIPT: "\n".join(json.dumps(line) for line in _TRANSCRIPT_LINES) + "\n",
    })
    handler = HookHandler(fs)

    # ------------------------------------------------------------------
    # 1. First session: nothing stored for this project yet.
    # ------------------------------------------------------------------
    start = await handler.handle(_event("SessionStart", source="startup"))
    print("[1] SessionStart(startup):", start.value.to_dict())
    print()

    # ------------------------------------------------------------------
    # 2. Session ends: summary, file references and tool usage are pulled
    #    out of the transcript and written to .ben10/context.ctx.
    # ------------------------------------------------------------------
    end = await handler.handle(_event("SessionEnd"))
    print("[2] SessionEnd:", end.value.to_dict())
    print()

    # ------------------------------------------------------------------
    # 3. Next session resumes and gets the context back.
    # ------------------------------------------------------------------
    resume = await handler.handle(_event("SessionStart", source="resume", session_id="session-2"))
    print("[3] SessionStart(resume) hook output:")
    print(format_hook_output(resume.value))
    print()

    # ------------------------------------------------------------------
    # 4. The MCP server reads the same store.
    # ------------------------------------------------------------------
    server = McpContextServer(PROJECT, fs=fs)
    request = {"jsonrpc": "2.0", "id": 1, "method": "tools/call",
               "params": {"name": "ben_ten_status", "arguments": {}}}
    response = json.loads(await server.handle_message(json.dumps(request)))
    status = response["result"]
    print(f"[4] ben_ten_status: hasContext={status['hasContext']} "
          f"sessionId={status.get('sessionId')}")
    print()

    # ------------------------------------------------------------------
    # 5. /clear removes the stored context.
    # ------------------------------------------------------------------
    cleared = await handler.handle(_event("SessionStart", source="clear"))
    print("[5] SessionStart(clear):", cleared.value.to_dict())
    print("    files left:", sorted(fs.files()))


if __name__ == "__main__":
    asyncio.run(main())
