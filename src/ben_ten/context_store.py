"""Context store — one ContextData per project directory, on disk.

Two on-disk generations exist under ``{project}/.ben10/``:

* ``context.ctx``: current binary container (see :mod:`ben_ten.serializer`)
* ``context.json``: legacy plain JSON, read-only fallback

Loads resolve the source first (binary wins), then decode. Saves always write
the binary file. Nothing here locks: concurrent writers race with
last-writer-wins semantics.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from enum import StrEnum

from .errors import ErrorCode, Err, Ok, Result, fail
from .fs import FileSystem
from .models import (
    ContextData,
    ContextMetadata,
    migrate_context_data,
    parse_context_metadata,
)
from .serializer import ContextSerializer

BEN10_DIR = ".ben10"
LEGACY_CONTEXT_FILE = "context.json"
CONTEXT_FILE = "context.ctx"
METADATA_FILE = "metadata.json"

_log = logging.getLogger(__name__)


class SourceKind(StrEnum):
    BINARY = "binary"
    LEGACY_JSON = "legacy_json"


@dataclass(frozen=True)
class ContextSource:
    """Where a stored context was found and how to decode it."""

    kind: SourceKind
    path: str


class ContextStore:
    """Persists, loads and deletes the context for ``project_dir``."""

    def __init__(
        self,
        fs: FileSystem,
        project_dir: str,
        serializer: ContextSerializer | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._fs = fs
        self._serializer = serializer if serializer is not None else ContextSerializer()
        self._log = logger if logger is not None else _log
        self.project_dir = project_dir
        self.ben10_dir = os.path.join(project_dir, BEN10_DIR)
        self.context_path = os.path.join(self.ben10_dir, CONTEXT_FILE)
        self.legacy_context_path = os.path.join(self.ben10_dir, LEGACY_CONTEXT_FILE)
        self.metadata_path = os.path.join(self.ben10_dir, METADATA_FILE)

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    async def has_context(self) -> bool:
        return await self._fs.exists(self.context_path)

    async def resolve_format(self) -> ContextSource | None:
        if await self._fs.exists(self.context_path):
            return ContextSource(SourceKind.BINARY, self.context_path)
        if await self._fs.exists(self.legacy_context_path):
            return ContextSource(SourceKind.LEGACY_JSON, self.legacy_context_path)
        return None

    async def load_context(self) -> Result[ContextData]:
        source = await self.resolve_format()
        if source is None:
            return fail(ErrorCode.CONTEXT_NOT_FOUND, "No context file found",
                        path=self.context_path, legacy_path=self.legacy_context_path)

        self._log.debug("Loading context from %s (%s)", source.path, source.kind)
        read = await self._fs.read_bytes(source.path)
        if isinstance(read, Err):
            return fail(ErrorCode.CONTEXT_CORRUPTED, "Failed to read context file",
                        path=source.path, original_error=read.error.message)

        if source.kind is SourceKind.BINARY:
            decoded = self._serializer.deserialize(read.value)
        else:
            decoded = self._serializer.deserialize_json(read.value)

        if isinstance(decoded, Err):
            self._log.warning("Context file %s is unreadable: %s", source.path,
                              decoded.error.message)
            return fail(ErrorCode.CONTEXT_CORRUPTED, decoded.error.message,
                        path=source.path, format=source.kind.value,
                        original_code=decoded.error.code.value, **decoded.error.details)

        migrated = migrate_context_data(decoded.value)
        if isinstance(migrated, Err):
            return fail(ErrorCode.CONTEXT_CORRUPTED, migrated.error.message,
                        path=source.path, **migrated.error.details)

        context = migrated.value
        self._log.info("Context loaded: session=%s summary_length=%d format=%s",
                       context.session_id, len(context.summary), source.kind.value)
        return Ok(context)

    async def save_context(self, context: ContextData) -> Result[None]:
        self._log.debug("Saving context to %s (session=%s)", self.context_path,
                        context.session_id)
        mkdir = await self._fs.mkdir(self.ben10_dir, recursive=True)
        if isinstance(mkdir, Err):
            return fail(ErrorCode.FS_WRITE_ERROR, "Failed to create .ben10 directory",
                        path=self.ben10_dir, original_error=mkdir.error.message)

        encoded = self._serializer.serialize(context)
        if isinstance(encoded, Err):
            return encoded

        write = await self._fs.write_bytes(self.context_path, encoded.value)
        if isinstance(write, Err):
            return fail(ErrorCode.FS_WRITE_ERROR, "Failed to write context file",
                        path=self.context_path, original_error=write.error.message)

        self._log.info("Context saved: path=%s session=%s size=%d", self.context_path,
                       context.session_id, len(encoded.value))
        return Ok(None)

    async def delete_context(self) -> Result[None]:
        for path in (self.context_path, self.legacy_context_path):
            if not await self._fs.exists(path):
                continue
            removed = await self._fs.rm(path)
            if isinstance(removed, Err):
                return fail(ErrorCode.FS_WRITE_ERROR, "Failed to delete context file",
                            path=path, original_error=removed.error.message)
            self._log.info("Context deleted: %s", path)
        return Ok(None)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def has_metadata(self) -> bool:
        return await self._fs.exists(self.metadata_path)

    async def load_metadata(self) -> Result[ContextMetadata]:
        if not await self._fs.exists(self.metadata_path):
            return fail(ErrorCode.CONTEXT_NOT_FOUND, "No metadata file found",
                        path=self.metadata_path)
        read = await self._fs.read_bytes(self.metadata_path)
        if isinstance(read, Err):
            return fail(ErrorCode.CONTEXT_CORRUPTED, "Failed to read metadata file",
                        path=self.metadata_path, original_error=read.error.message)
        try:
            raw = json.loads(read.value.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            return fail(ErrorCode.CONTEXT_CORRUPTED, "Metadata file contains invalid JSON",
                        path=self.metadata_path, error=str(exc))
        parsed = parse_context_metadata(raw)
        if isinstance(parsed, Err):
            return fail(ErrorCode.CONTEXT_CORRUPTED, "Metadata file has invalid structure",
                        path=self.metadata_path,
                        validation_errors=parsed.error.details.get("errors", []))
        return parsed

    async def save_metadata(self, metadata: ContextMetadata) -> Result[None]:
        mkdir = await self._fs.mkdir(self.ben10_dir, recursive=True)
        if isinstance(mkdir, Err):
            return fail(ErrorCode.FS_WRITE_ERROR, "Failed to create .ben10 directory",
                        path=self.ben10_dir, original_error=mkdir.error.message)
        content = json.dumps(metadata.to_wire(), indent=2)
        write = await self._fs.write_text(self.metadata_path, content)
        if isinstance(write, Err):
            return fail(ErrorCode.FS_WRITE_ERROR, "Failed to write metadata file",
                        path=self.metadata_path, original_error=write.error.message)
        self._log.debug("Metadata saved: %s", self.metadata_path)
        return Ok(None)
