"""Ben-Ten MCP Server — exposes context tools via JSON-RPC 2.0 over stdio.

Transport: stdio (line-delimited JSON-RPC). All logging goes to stderr.
Tool failures come back as structured ``isError`` results; only protocol
problems (bad JSON, malformed requests, unknown method) produce JSON-RPC
errors.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from datetime import UTC, datetime
from typing import Any

from . import __version__
from .config import BenTenConfig, load_config
from .context_store import ContextStore
from .errors import BenTenError, ErrorCode, Err, create_error
from .fs import FileSystem, LocalFileSystem
from .hook_handler import merge_file_metadata, merge_key_files
from .logger import create_logger
from .models import CONTEXT_VERSION, ContextData, now_ms
from .telemetry import BenTenTracer, TelemetryConfig
from .transcript import TranscriptExtractor

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Tool and resource schemas
# ---------------------------------------------------------------------------

_TOOLS = [
    {
        "name": "ben_ten_status",
        "description": "Get the status of Ben-Ten context for this project",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "ben_ten_save",
        "description": "Save context data to .ben10/context.ctx",
        "inputSchema": {
            "type": "object",
            "properties": {
                "sessionId": {"type": "string", "description": "Current session ID"},
                "summary": {"type": "string", "description": "Summary of the session context"},
                "keyFiles": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "List of key files in the project",
                },
                "activeTasks": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "List of active tasks",
                },
                "transcriptPath": {
                    "type": "string",
                    "description": "Transcript to enrich the context from (optional)",
                },
            },
            "required": ["sessionId", "summary"],
        },
    },
    {
        "name": "ben_ten_load",
        "description": "Load the saved context for this project",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "ben_ten_clear",
        "description": "Delete the saved context for this project",
        "inputSchema": {"type": "object", "properties": {}},
    },
]

CONTEXT_RESOURCE_URI = "ben-ten://context"

_RESOURCES = [
    {
        "uri": CONTEXT_RESOURCE_URI,
        "name": "Project Context",
        "description": "The persisted context for this project",
        "mimeType": "text/plain",
    },
]

_JSONRPC_PARSE_ERROR = -32700
_JSONRPC_INVALID_REQUEST = -32600
_JSONRPC_METHOD_NOT_FOUND = -32601
_JSONRPC_INVALID_PARAMS = -32602
_JSONRPC_INTERNAL_ERROR = -32603


def _error_response(req_id: Any, code: int, message: str) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": req_id,
        "error": {"code": code, "message": message},
    }


def _result_response(req_id: Any, result: Any) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": req_id,
        "result": result,
    }


def _text_result(payload: dict[str, Any]) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": json.dumps(payload)}], **payload}


def _tool_error(error: BenTenError) -> dict[str, Any]:
    return {
        "content": [{"type": "text", "text": f"Error: {error.message}"}],
        "isError": True,
        "error": error.to_dict(),
    }


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=UTC).isoformat().replace("+00:00", "Z")


def render_context_markdown(ctx: ContextData) -> str:
    lines = [
        "# Ben-Ten Project Context",
        "",
        f"**Session ID:** {ctx.session_id}",
        f"**Created:** {_iso(ctx.created_at)}",
        f"**Updated:** {_iso(ctx.updated_at)}",
        "",
        "## Summary",
        ctx.summary,
    ]
    if ctx.key_files:
        lines += ["", "## Key Files", *(f"- {f}" for f in ctx.key_files)]
    if ctx.active_tasks:
        lines += ["", "## Active Tasks", *(f"- {t}" for t in ctx.active_tasks)]
    if ctx.conversation_replay:
        lines += ["", ctx.conversation_replay]
    return "\n".join(lines)


def _string_list(value: Any, name: str) -> list[str] | None:
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"'{name}' must be an array of strings")
    return value


def decode_line(raw: bytes) -> str:
    """One stdio frame as text; undecodable bytes become U+FFFD."""
    return raw.decode("utf-8", errors="replace").strip()


class McpContextServer:
    """Serves the context tools of one project over JSON-RPC."""

    def __init__(
        self,
        project_dir: str,
        fs: FileSystem | None = None,
        config: BenTenConfig | None = None,
        logger: logging.Logger | None = None,
        tracer: BenTenTracer | None = None,
    ) -> None:
        self._fs = fs if fs is not None else LocalFileSystem()
        self._config = config or BenTenConfig()
        self._log = logger if logger is not None else _log
        self._tracer = tracer if tracer is not None else BenTenTracer()
        self._store = ContextStore(self._fs, project_dir, logger=self._log)
        self._transcripts = TranscriptExtractor(self._fs, logger=self._log)

    @property
    def store(self) -> ContextStore:
        return self._store

    async def handle_message(self, line: str) -> str | None:
        """Parse JSON-RPC request, route to handler, return JSON-RPC response.

        Notifications (no ``id``) get no response.
        """
        try:
            msg = json.loads(line)
        except json.JSONDecodeError:
            return json.dumps(_error_response(None, _JSONRPC_PARSE_ERROR, "Parse error"))
        if not isinstance(msg, dict):
            return json.dumps(_error_response(None, _JSONRPC_INVALID_REQUEST, "Invalid Request"))

        req_id = msg.get("id")
        method = msg.get("method")
        params = msg.get("params")
        if not isinstance(method, str):
            return json.dumps(_error_response(req_id, _JSONRPC_INVALID_REQUEST, "Invalid Request"))
        if method.startswith("notifications/"):
            return None
        if params is None:
            params = {}
        elif not isinstance(params, dict):
            return json.dumps(_error_response(
                req_id, _JSONRPC_INVALID_PARAMS, "Invalid params: expected an object"
            ))

        if method == "initialize":
            return json.dumps(self._handle_initialize(req_id))
        if method == "ping":
            return json.dumps(_result_response(req_id, {}))
        if method == "tools/list":
            return json.dumps(_result_response(req_id, {"tools": _TOOLS}))
        if method == "tools/call":
            return json.dumps(await self._handle_tools_call(req_id, params))
        if method == "resources/list":
            return json.dumps(_result_response(req_id, {"resources": _RESOURCES}))
        if method == "resources/read":
            return json.dumps(await self._handle_resources_read(req_id, params))

        return json.dumps(
            _error_response(req_id, _JSONRPC_METHOD_NOT_FOUND, f"Unknown method: {method}")
        )

    def _handle_initialize(self, req_id: Any) -> dict[str, Any]:
        return _result_response(req_id, {
            "protocolVersion": "2024-11-05",
            "capabilities": {
                "tools": {"listChanged": False},
                "resources": {"listChanged": False},
            },
            "serverInfo": {
                "name": "ben-ten",
                "version": __version__,
            },
        })

    async def _handle_tools_call(self, req_id: Any, params: dict[str, Any]) -> dict[str, Any]:
        tool_name = params.get("name")
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(tool_name, str) or not isinstance(arguments, dict):
            return _error_response(
                req_id, _JSONRPC_INVALID_PARAMS,
                "Invalid params: 'name' must be a string and 'arguments' an object",
            )
        tools = {
            "ben_ten_status": lambda: self.call_status(),
            "ben_ten_save": lambda: self.call_save(arguments),
            "ben_ten_load": lambda: self.call_load(),
            "ben_ten_clear": lambda: self.call_clear(),
        }

        with self._tracer.span("mcp/call", {"mcp.tool": tool_name}) as span:
            call = tools.get(tool_name)
            if call is None:
                result = _tool_error(create_error(
                    ErrorCode.MCP_TOOL_ERROR, f"Unknown tool: {tool_name}", tool_name=tool_name,
                ))
            else:
                try:
                    result = await call()
                except (KeyError, ValueError) as exc:
                    result = _tool_error(create_error(
                        ErrorCode.MCP_TOOL_ERROR, f"Invalid arguments: {exc}",
                        tool_name=tool_name,
                    ))
                except Exception as exc:  # noqa: BLE001
                    self._log.exception("Tool %s failed", tool_name)
                    return _error_response(req_id, _JSONRPC_INTERNAL_ERROR, str(exc))
            if span.is_recording():
                span.set_attribute("mcp.is_error", bool(result.get("isError")))
                if result.get("isError"):
                    span.set_attribute("ben_ten.error_code", result["error"]["code"])
        return _result_response(req_id, result)

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def call_status(self) -> dict[str, Any]:
        has_context = await self._store.has_context()
        status: dict[str, Any] = {
            "hasContext": has_context,
            "contextPath": self._store.context_path,
        }
        if has_context:
            loaded = await self._store.load_context()
            if loaded.ok:
                ctx = loaded.value
                status.update(
                    sessionId=ctx.session_id,
                    summaryLength=len(ctx.summary),
                    createdAt=ctx.created_at,
                    updatedAt=ctx.updated_at,
                )
        return _text_result(status)

    async def call_save(self, args: dict[str, Any]) -> dict[str, Any]:
        session_id = args["sessionId"]
        summary = args["summary"]
        if not isinstance(session_id, str) or not isinstance(summary, str):
            raise ValueError("'sessionId' and 'summary' must be strings")
        key_files = _string_list(args.get("keyFiles"), "keyFiles")
        active_tasks = _string_list(args.get("activeTasks"), "activeTasks")

        now = now_ms()
        created_at = now
        previous_updated = 0
        if await self._store.has_context():
            existing = await self._store.load_context()
            if existing.ok:
                created_at = existing.value.created_at
                previous_updated = existing.value.updated_at

        context = ContextData(
            version=CONTEXT_VERSION,
            created_at=created_at,
            updated_at=max(now, previous_updated + 1),
            session_id=session_id,
            summary=summary,
            key_files=key_files,
            active_tasks=active_tasks,
        )
        context = await self._enrich_from_transcript(context, args.get("transcriptPath"))

        saved = await self._store.save_context(context)
        if isinstance(saved, Err):
            return _tool_error(saved.error)
        return _text_result({"saved": True, "path": self._store.context_path})

    async def _enrich_from_transcript(
        self, context: ContextData, transcript_path: str | None
    ) -> ContextData:
        if not transcript_path and await self._store.has_metadata():
            meta = await self._store.load_metadata()
            if meta.ok:
                transcript_path = meta.value.transcript_path
        if not transcript_path:
            return context

        parsed = await self._transcripts.parse_transcript(transcript_path)
        if isinstance(parsed, Err):
            # Explicitly supplied fields are still saved; enrichment is best effort.
            self._log.warning("Transcript enrichment skipped: %s", parsed.error.message)
            return context

        history = parsed.value
        references = self._transcripts.extract_file_references(history)
        tool_calls = self._transcripts.extract_tool_calls(history)
        limit = self._config.max_key_files
        return context.model_copy(update={
            "key_files": context.key_files or merge_key_files(None, references, limit),
            "files": merge_file_metadata(None, references, now_ms(), limit),
            "tool_history": tool_calls or None,
            "transcript_excerpt": self._transcripts.get_transcript_excerpt(
                history, self._config.excerpt_max_chars
            ),
        })

    async def call_load(self) -> dict[str, Any]:
        loaded = await self._store.load_context()
        if isinstance(loaded, Err):
            return _tool_error(loaded.error)
        return _text_result(loaded.value.to_wire())

    async def call_clear(self) -> dict[str, Any]:
        deleted = await self._store.delete_context()
        if isinstance(deleted, Err):
            return _tool_error(deleted.error)
        return _text_result({"cleared": True})

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    async def _handle_resources_read(self, req_id: Any, params: dict[str, Any]) -> dict[str, Any]:
        uri = params.get("uri", "")
        if uri != CONTEXT_RESOURCE_URI:
            return _result_response(req_id, _tool_error(create_error(
                ErrorCode.MCP_RESOURCE_ERROR, f"Unknown resource: {uri}", uri=uri,
            )))

        loaded = await self._store.load_context()
        if loaded.ok:
            text = render_context_markdown(loaded.value)
        elif loaded.error.code is ErrorCode.CONTEXT_NOT_FOUND:
            text = "No context found for this project."
        else:
            text = f"Error loading context: {loaded.error.message}"
        return _result_response(req_id, {
            "contents": [{"uri": uri, "mimeType": "text/plain", "text": text}],
        })

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def run_stdio(self) -> None:
        """Read stdin line-by-line, handle, write to stdout."""
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, sys.stdin)

        while True:
            line = await reader.readline()
            if not line:
                break
            text = decode_line(line)
            if not text:
                continue
            response = await self.handle_message(text)
            if response is not None:
                sys.stdout.write(response + "\n")
                sys.stdout.flush()


async def serve(project_dir: str | None = None) -> None:
    """Build the server for *project_dir* (default: cwd) and serve stdio."""
    project_dir = project_dir or os.getcwd()
    fs = LocalFileSystem()
    loaded = await load_config(fs, project_dir)
    config = loaded.value if loaded.ok else BenTenConfig()
    logger = create_logger(config)
    if isinstance(loaded, Err):
        logger.warning("Using default config: %s", loaded.error.message)

    tracer = BenTenTracer(TelemetryConfig.from_config(config))
    tracer.init()
    try:
        server = McpContextServer(project_dir, fs=fs, config=config, logger=logger, tracer=tracer)
        await server.run_stdio()
    finally:
        tracer.shutdown()


def main() -> None:
    """Entry point for ben10-mcp CLI."""
    asyncio.run(serve())


if __name__ == "__main__":
    main()
