"""``ben10`` command line: hook runner, MCP server and context housekeeping."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import TextIO

from . import __version__
from .config import CONFIG_FILE, BenTenConfig
from .context_store import ContextStore
from .errors import ErrorCode, Err
from .fs import FileSystem, LocalFileSystem
from .hook_command import main as hook_main
from .mcp_server import render_context_markdown, serve


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ben10", description="Persist and restore working context across sessions",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-C", "--project-dir", default=None,
        help="Project directory (default: current directory)",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("hook", help="Handle one lifecycle event read from stdin")
    sub.add_parser("serve", help="Run the MCP server on stdio")
    sub.add_parser("status", help="Show whether a context is stored")
    sub.add_parser("show", help="Print the stored context as Markdown")
    sub.add_parser("clear", help="Delete the stored context")
    sub.add_parser("init", help="Create .ben10/ with a default config.json")
    return parser


async def cmd_status(store: ContextStore, out: TextIO, err: TextIO) -> int:
    source = await store.resolve_format()
    if source is None:
        out.write(f"No context stored ({store.context_path})\n")
        return 0
    out.write(f"Context file: {source.path} ({source.kind.value})\n")
    loaded = await store.load_context()
    if isinstance(loaded, Err):
        err.write(f"Context is unreadable: {loaded.error.message}\n")
        return 1
    ctx = loaded.value
    out.write(f"Session: {ctx.session_id}\n")
    out.write(f"Summary length: {len(ctx.summary)}\n")
    meta = await store.load_metadata()
    if meta.ok:
        out.write(f"Sessions recorded: {meta.value.session_count}\n")
    return 0


async def cmd_show(store: ContextStore, out: TextIO, err: TextIO) -> int:
    loaded = await store.load_context()
    if isinstance(loaded, Err):
        if loaded.error.code is ErrorCode.CONTEXT_NOT_FOUND:
            out.write("No context stored.\n")
            return 0
        err.write(f"Error: {loaded.error.message}\n")
        return 1
    out.write(render_context_markdown(loaded.value) + "\n")
    return 0


async def cmd_clear(store: ContextStore, out: TextIO, err: TextIO) -> int:
    deleted = await store.delete_context()
    if isinstance(deleted, Err):
        err.write(f"Error: {deleted.error.message}\n")
        return 1
    out.write("Context cleared.\n")
    return 0


async def cmd_init(fs: FileSystem, store: ContextStore, out: TextIO, err: TextIO) -> int:
    config_path = os.path.join(store.ben10_dir, CONFIG_FILE)
    if await fs.exists(config_path):
        out.write(f"Already initialized: {config_path}\n")
        return 0
    made = await fs.mkdir(store.ben10_dir, recursive=True)
    if isinstance(made, Err):
        err.write(f"Error: {made.error.message}\n")
        return 1
    defaults = BenTenConfig()
    body = {
        "logLevel": defaults.log_level,
        "logJson": defaults.log_json,
        "excerptMaxChars": defaults.excerpt_max_chars,
        "maxKeyFiles": defaults.max_key_files,
        "telemetryExporter": defaults.telemetry_exporter,
        "maxReplayPercent": defaults.max_replay_percent,
        "contextWindowSize": defaults.context_window_size,
    }
    written = await fs.write_text(config_path, json.dumps(body, indent=2) + "\n")
    if isinstance(written, Err):
        err.write(f"Error: {written.error.message}\n")
        return 1
    out.write(f"Initialized {config_path}\n")
    return 0


async def run(
    argv: list[str] | None = None,
    fs: FileSystem | None = None,
    out: TextIO | None = None,
    err: TextIO | None = None,
) -> int:
    """Run the housekeeping subcommands; ``hook`` and ``serve`` go through :func:`main`."""
    args = build_parser().parse_args(argv)
    fs = fs if fs is not None else LocalFileSystem()
    out = out if out is not None else sys.stdout
    err = err if err is not None else sys.stderr
    store = ContextStore(fs, args.project_dir or os.getcwd())

    if args.command == "status":
        return await cmd_status(store, out, err)
    if args.command == "show":
        return await cmd_show(store, out, err)
    if args.command == "clear":
        return await cmd_clear(store, out, err)
    if args.command == "init":
        return await cmd_init(fs, store, out, err)
    raise ValueError(f"Unsupported command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    """Entry point for ``ben10``."""
    args = build_parser().parse_args(argv)
    if args.command == "hook":
        sys.exit(hook_main())
    if args.command == "serve":
        asyncio.run(serve(args.project_dir))
        return
    sys.exit(asyncio.run(run(argv)))


if __name__ == "__main__":
    main()
