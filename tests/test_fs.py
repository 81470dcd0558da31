"""Tests for the filesystem adapters (memory and local disk)."""

from __future__ import annotations

import os

import pytest

from ben_ten.errors import ErrorCode
from ben_ten.fs import LocalFileSystem, MemoryFileSystem


@pytest.mark.asyncio
async def test_memory_fs_seeded_files_and_parents():
    fs = MemoryFileSystem({"/proj/.ben10/context.json": "{}"})
    assert await fs.exists("/proj/.ben10/context.json")
    assert await fs.exists("/proj/.ben10")
    assert await fs.exists("/proj")
    read = await fs.read_text("/proj/.ben10/context.json")
    assert read.ok and read.value == "{}"


@pytest.mark.asyncio
async def test_memory_fs_write_requires_parent():
    fs = MemoryFileSystem()
    result = await fs.write_bytes("/nope/file.bin", b"x")
    assert not result.ok
    assert result.error.code is ErrorCode.FS_NOT_FOUND

    assert (await fs.mkdir("/nope")).ok
    assert (await fs.write_bytes("/nope/file.bin", b"x")).ok
    assert fs.files()["/nope/file.bin"] == b"x"


@pytest.mark.asyncio
async def test_memory_fs_readdir_rm_stat():
    fs = MemoryFileSystem({"/d/a.jsonl": "1", "/d/b.txt": "22", "/d/sub/c": "3"})
    listing = await fs.readdir("/d")
    assert listing.ok and listing.value == ["a.jsonl", "b.txt", "sub"]

    st = await fs.stat("/d/b.txt")
    assert st.ok and st.value.is_file and st.value.size == 2
    assert (await fs.stat("/d/sub")).value.is_directory

    assert (await fs.rm("/d/a.jsonl")).ok
    assert not await fs.exists("/d/a.jsonl")
    missing = await fs.rm("/d/a.jsonl")
    assert missing.error.code is ErrorCode.FS_NOT_FOUND


@pytest.mark.asyncio
async def test_memory_fs_read_missing_and_directory():
    fs = MemoryFileSystem({"/d/f": "x"})
    assert (await fs.read_bytes("/d/g")).error.code is ErrorCode.FS_NOT_FOUND
    assert (await fs.read_bytes("/d")).error.code is ErrorCode.FS_READ_ERROR


@pytest.mark.asyncio
async def test_read_text_rejects_invalid_utf8():
    fs = MemoryFileSystem({"/bin": b"\xff\xfe\x00"})
    result = await fs.read_text("/bin")
    assert result.error.code is ErrorCode.FS_READ_ERROR


@pytest.mark.asyncio
async def test_local_fs_roundtrip(tmp_path):
    fs = LocalFileSystem()
    target = os.path.join(str(tmp_path), "a", "b")
    assert (await fs.mkdir(target)).ok
    path = os.path.join(target, "file.bin")
    assert (await fs.write_bytes(path, b"payload")).ok
    assert (await fs.read_bytes(path)).value == b"payload"
    assert await fs.exists(path)
    assert (await fs.readdir(target)).value == ["file.bin"]
    st = await fs.stat(path)
    assert st.value.is_file and st.value.size == 7

    # Atomic replace leaves no temp files behind.
    assert (await fs.write_bytes(path, b"second")).ok
    assert (await fs.readdir(target)).value == ["file.bin"]

    assert (await fs.rm(path)).ok
    assert not await fs.exists(path)


@pytest.mark.asyncio
async def test_local_fs_errors(tmp_path):
    fs = LocalFileSystem()
    missing = os.path.join(str(tmp_path), "missing")
    assert (await fs.read_bytes(missing)).error.code is ErrorCode.FS_NOT_FOUND
    assert (await fs.rm(missing)).error.code is ErrorCode.FS_NOT_FOUND
    assert (await fs.read_bytes(str(tmp_path))).error.code is ErrorCode.FS_READ_ERROR
    nested = os.path.join(missing, "x", "file")
    assert not (await fs.write_bytes(nested, b"x")).ok
