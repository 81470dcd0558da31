"""Hook command — stdin HookInput JSON in, Markdown status block out.

Exit code 0 on success, 1 with ``Error: <message>`` on stderr otherwise.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import dataclass

from .config import BenTenConfig, load_config
from .errors import ErrorCode, Err, Ok, Result, fail
from .fs import FileSystem, LocalFileSystem
from .hook_handler import (
    HookHandler,
    HookResult,
    SessionEndResult,
    SessionStartResult,
)
from .logger import create_logger
from .models import ContextData, HookInput, ReplayMetadata, now_ms, parse_hook_input
from .telemetry import BenTenTracer, TelemetryConfig


@dataclass
class HookCommandResult:
    """Outcome of one hook invocation: what to print and how to exit."""

    output: str
    exit_code: int = 0
    result: HookResult | None = None


def format_relative_time(timestamp_ms: int, now: int | None = None) -> str:
    diff = max((now if now is not None else now_ms()) - timestamp_ms, 0) // 1000
    if diff < 60:
        return "just now"
    minutes = diff // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''} ago"


def format_context(ctx: ContextData, now: int | None = None) -> str:
    lines = [
        "# Ben-Ten Context Loaded",
        "",
        f"**Session:** {ctx.session_id}",
        f"**Last updated:** {format_relative_time(ctx.updated_at, now)}",
        "",
        "## Summary",
        ctx.summary or "(no summary)",
    ]
    if ctx.key_files:
        lines += ["", "## Key Files", *(f"- {f}" for f in ctx.key_files)]
    if ctx.active_tasks:
        lines += ["", "## Active Tasks", *(f"- {t}" for t in ctx.active_tasks)]
    if ctx.conversation_replay:
        lines += ["", ctx.conversation_replay]
        if ctx.replay_metadata is not None:
            lines += ["", "---", format_replay_footer(ctx.replay_metadata)]
    return "\n".join(lines)


def format_replay_footer(meta: ReplayMetadata) -> str:
    total = len(meta.all_stopping_points or [])
    current = (meta.current_stop_index if meta.current_stop_index is not None else -1) + 1
    footer = f"*Replay: {meta.message_count} messages, ~{meta.token_count} tokens"
    if meta.stopping_point_type:
        footer += f" | Stopped at: {meta.stopping_point_type}"
    if total:
        footer += f" | Stopping point {current} of {total}"
    return footer + "*"


def format_hook_output(result: HookResult) -> str:
    if isinstance(result, SessionStartResult):
        if result.context_cleared:
            return "Ben-Ten context cleared."
        if result.context is not None:
            text = format_context(result.context)
            if result.transcript_summary:
                text += f"\n\n## Compaction Summary\n{result.transcript_summary}"
            return text
        if result.transcript_summary:
            return f"# Ben-Ten Compaction Summary\n\n{result.transcript_summary}"
        return "No Ben-Ten context found for this project."
    if isinstance(result, SessionEndResult):
        return f"Ben-Ten context saved (session {result.session_id})."
    # PreCompact prints nothing.
    return ""


async def run_hook_command(
    raw_input: str,
    fs: FileSystem | None = None,
    config: BenTenConfig | None = None,
    logger: logging.Logger | None = None,
    tracer: BenTenTracer | None = None,
) -> Result[HookCommandResult]:
    """Validate *raw_input*, dispatch it and render the outcome."""
    try:
        raw = json.loads(raw_input)
    except json.JSONDecodeError as exc:
        return fail(ErrorCode.HOOK_INVALID_INPUT, "Invalid JSON input", error=str(exc))

    parsed = parse_hook_input(raw)
    if isinstance(parsed, Err):
        return parsed
    hook_input: HookInput = parsed.value

    fs = fs if fs is not None else LocalFileSystem()
    handler = HookHandler(fs, config=config, logger=logger, tracer=tracer)
    handled = await handler.handle(hook_input)
    if isinstance(handled, Err):
        return handled
    return Ok(HookCommandResult(output=format_hook_output(handled.value), result=handled.value))


async def _main_async(raw_input: str) -> int:
    fs = LocalFileSystem()
    config = BenTenConfig()
    warning = None
    try:
        cwd = json.loads(raw_input).get("cwd")
    except (json.JSONDecodeError, AttributeError):
        cwd = None
    if isinstance(cwd, str):
        loaded = await load_config(fs, cwd)
        if isinstance(loaded, Ok):
            config = loaded.value
        else:
            warning = loaded.error.message

    logger = create_logger(config)
    if warning:
        logger.warning("Using default config: %s", warning)
    tracer = BenTenTracer(TelemetryConfig.from_config(config))
    tracer.init()
    try:
        result = await run_hook_command(raw_input, fs=fs, config=config,
                                        logger=logger, tracer=tracer)
    finally:
        tracer.shutdown()

    if isinstance(result, Err):
        logger.debug("Hook failed: %s", result.error)
        sys.stderr.write(f"Error: {result.error.message}\n")
        return 1
    if result.value.output:
        sys.stdout.write(result.value.output + "\n")
    return result.value.exit_code


def main() -> int:
    """Read one hook event from stdin and return the process exit code."""
    return asyncio.run(_main_async(sys.stdin.read()))


if __name__ == "__main__":
    sys.exit(main())
