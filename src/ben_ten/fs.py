"""Filesystem adapters — the async read/write/exists/mkdir/rm/stat contract.

The core only depends on :class:`FileSystem`. :class:`LocalFileSystem` backs
it with the real disk; :class:`MemoryFileSystem` keeps everything in a dict
(for tests and dry runs).
"""

from __future__ import annotations

import asyncio
import os
import posixpath
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from .errors import ErrorCode, Ok, Result, fail


@dataclass
class FileStats:
    is_file: bool
    is_directory: bool
    size: int
    mtime: float


class FileSystem(ABC):
    """Abstract async filesystem. Every fallible call returns a Result."""

    @abstractmethod
    async def read_bytes(self, path: str) -> Result[bytes]:
        ...

    @abstractmethod
    async def write_bytes(self, path: str, data: bytes) -> Result[None]:
        ...

    @abstractmethod
    async def exists(self, path: str) -> bool:
        ...

    @abstractmethod
    async def mkdir(self, path: str, recursive: bool = True) -> Result[None]:
        ...

    @abstractmethod
    async def readdir(self, path: str) -> Result[list[str]]:
        ...

    @abstractmethod
    async def rm(self, path: str) -> Result[None]:
        ...

    @abstractmethod
    async def stat(self, path: str) -> Result[FileStats]:
        ...

    async def read_text(self, path: str) -> Result[str]:
        result = await self.read_bytes(path)
        if not result.ok:
            return result
        try:
            return Ok(result.value.decode("utf-8"))
        except UnicodeDecodeError as exc:
            return fail(ErrorCode.FS_READ_ERROR, f"File is not valid UTF-8: {path}",
                        path=path, error=str(exc))

    async def write_text(self, path: str, content: str) -> Result[None]:
        return await self.write_bytes(path, content.encode("utf-8"))


def _os_error(exc: OSError, path: str, default: ErrorCode) -> Result:
    if isinstance(exc, FileNotFoundError):
        return fail(ErrorCode.FS_NOT_FOUND, f"File not found: {path}", path=path)
    if isinstance(exc, PermissionError):
        return fail(ErrorCode.FS_PERMISSION_DENIED, f"Permission denied: {path}", path=path)
    return fail(default, f"{exc.strerror or exc}: {path}", path=path, error=str(exc))


class LocalFileSystem(FileSystem):
    """Disk-backed filesystem; blocking calls run in a worker thread."""

    async def read_bytes(self, path: str) -> Result[bytes]:
        try:
            data = await asyncio.to_thread(Path(path).read_bytes)
        except IsADirectoryError:
            return fail(ErrorCode.FS_READ_ERROR, f"Path is a directory: {path}", path=path)
        except OSError as exc:
            return _os_error(exc, path, ErrorCode.FS_READ_ERROR)
        return Ok(data)

    async def write_bytes(self, path: str, data: bytes) -> Result[None]:
        try:
            await asyncio.to_thread(_atomic_write, path, data)
        except OSError as exc:
            return _os_error(exc, path, ErrorCode.FS_WRITE_ERROR)
        return Ok(None)

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(os.path.exists, path)

    async def mkdir(self, path: str, recursive: bool = True) -> Result[None]:
        try:
            if recursive:
                await asyncio.to_thread(os.makedirs, path, exist_ok=True)
            else:
                await asyncio.to_thread(os.mkdir, path)
        except OSError as exc:
            return _os_error(exc, path, ErrorCode.FS_WRITE_ERROR)
        return Ok(None)

    async def readdir(self, path: str) -> Result[list[str]]:
        try:
            names = await asyncio.to_thread(os.listdir, path)
        except OSError as exc:
            return _os_error(exc, path, ErrorCode.FS_READ_ERROR)
        return Ok(sorted(names))

    async def rm(self, path: str) -> Result[None]:
        try:
            await asyncio.to_thread(os.remove, path)
        except OSError as exc:
            return _os_error(exc, path, ErrorCode.FS_WRITE_ERROR)
        return Ok(None)

    async def stat(self, path: str) -> Result[FileStats]:
        try:
            st = await asyncio.to_thread(os.stat, path)
        except OSError as exc:
            return _os_error(exc, path, ErrorCode.FS_READ_ERROR)
        p = Path(path)
        return Ok(FileStats(
            is_file=p.is_file(), is_directory=p.is_dir(),
            size=st.st_size, mtime=st.st_mtime,
        ))


def _atomic_write(path: str, data: bytes) -> None:
    """Write via a sibling temp file + rename so readers never see a partial file."""
    directory = os.path.dirname(path) or "."
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=os.path.basename(path))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


class MemoryFileSystem(FileSystem):
    """Dict-based filesystem. Paths are normalized POSIX paths."""

    def __init__(self, files: dict[str, bytes | str] | None = None) -> None:
        self._files: dict[str, bytes] = {}
        self._mtimes: dict[str, float] = {}
        self._dirs: set[str] = {"/"}
        for path, content in (files or {}).items():
            data = content.encode("utf-8") if isinstance(content, str) else content
            self._put(self._norm(path), data)

    @staticmethod
    def _norm(path: str) -> str:
        p = posixpath.normpath(path if path.startswith("/") else "/" + path)
        return p

    def _put(self, path: str, data: bytes) -> None:
        parent = posixpath.dirname(path)
        while parent not in self._dirs:
            self._dirs.add(parent)
            parent = posixpath.dirname(parent)
        self._files[path] = data
        self._mtimes[path] = time.time()

    def files(self) -> dict[str, bytes]:
        """Snapshot of all stored files."""
        return dict(self._files)

    async def read_bytes(self, path: str) -> Result[bytes]:
        p = self._norm(path)
        if p in self._files:
            return Ok(self._files[p])
        if p in self._dirs:
            return fail(ErrorCode.FS_READ_ERROR, f"Path is a directory: {path}", path=path)
        return fail(ErrorCode.FS_NOT_FOUND, f"File not found: {path}", path=path)

    async def write_bytes(self, path: str, data: bytes) -> Result[None]:
        p = self._norm(path)
        if posixpath.dirname(p) not in self._dirs:
            return fail(ErrorCode.FS_NOT_FOUND, f"Parent directory not found: {path}", path=path)
        if p in self._dirs:
            return fail(ErrorCode.FS_WRITE_ERROR, f"Path is a directory: {path}", path=path)
        self._files[p] = bytes(data)
        self._mtimes[p] = time.time()
        return Ok(None)

    async def exists(self, path: str) -> bool:
        p = self._norm(path)
        return p in self._files or p in self._dirs

    async def mkdir(self, path: str, recursive: bool = True) -> Result[None]:
        p = self._norm(path)
        if p in self._files:
            return fail(ErrorCode.FS_WRITE_ERROR, f"A file exists at: {path}", path=path)
        parent = posixpath.dirname(p)
        if not recursive and parent not in self._dirs:
            return fail(ErrorCode.FS_NOT_FOUND, f"Parent directory not found: {path}", path=path)
        while p not in self._dirs:
            self._dirs.add(p)
            p = posixpath.dirname(p)
        return Ok(None)

    async def readdir(self, path: str) -> Result[list[str]]:
        p = self._norm(path)
        if p not in self._dirs:
            return fail(ErrorCode.FS_NOT_FOUND, f"Directory not found: {path}", path=path)
        children = {
            posixpath.basename(c)
            for c in (*self._files, *self._dirs)
            if c != p and posixpath.dirname(c) == p
        }
        return Ok(sorted(children))

    async def rm(self, path: str) -> Result[None]:
        p = self._norm(path)
        if p not in self._files:
            return fail(ErrorCode.FS_NOT_FOUND, f"File not found: {path}", path=path)
        del self._files[p]
        self._mtimes.pop(p, None)
        return Ok(None)

    async def stat(self, path: str) -> Result[FileStats]:
        p = self._norm(path)
        if p in self._files:
            return Ok(FileStats(True, False, len(self._files[p]), self._mtimes[p]))
        if p in self._dirs:
            return Ok(FileStats(False, True, 0, 0.0))
        return fail(ErrorCode.FS_NOT_FOUND, f"File not found: {path}", path=path)

    def set_mtime(self, path: str, mtime: float) -> None:
        self._mtimes[self._norm(path)] = mtime
