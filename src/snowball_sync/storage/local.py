"""Local filesystem storage using aiofiles for async I/O."""

import asyncio
import os
from typing import AsyncIterator, BinaryIO, Dict, List, Optional, Tuple

import aiofiles  # type: ignore[import-untyped]
import aiofiles.os  # type: ignore[import-untyped]

from snowball_sync.storage.base import FileInfo, StorageBackend, WriteData

# Streams are copied to disk in pieces this size
COPY_CHUNK_SIZE = 1024 * 1024


class LocalStorage(StorageBackend):
    """Storage backed by the local filesystem."""

    async def list(self, prefix: str) -> AsyncIterator[FileInfo]:
        async for info in self._walk(prefix, ""):
            yield info

    async def _walk(self, base: str, relative: str) -> AsyncIterator[FileInfo]:
        entries = await self._scan_dir(os.path.join(base, relative))
        for name, is_dir, size in entries:
            entry_path = f"{relative}/{name}" if relative else name
            if is_dir:
                async for info in self._walk(base, entry_path):
                    yield info
            else:
                yield FileInfo(path=entry_path, size=size)

    @staticmethod
    async def _scan_dir(directory: str) -> List[Tuple[str, bool, int]]:
        """Sorted (name, is_dir, size) of a directory's files and subdirectories."""
        entries = []
        with await aiofiles.os.scandir(directory) as it:
            for entry in it:
                if entry.is_dir(follow_symlinks=False):
                    entries.append((entry.name, True, 0))
                elif entry.is_file():
                    entries.append((entry.name, False, entry.stat().st_size))
        return sorted(entries)

    async def read(self, path: str) -> bytes:
        async with aiofiles.open(path, "rb") as f:
            data: bytes = await f.read()
            return data

    async def read_stream(self, path: str) -> BinaryIO:
        # boto3 transfers and HashingReader need a plain synchronous reader
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, open, path, "rb")

    async def write(self, path: str, data: WriteData, metadata: Optional[Dict[str, str]] = None) -> None:
        # Local files have nowhere to carry object metadata
        parent = os.path.dirname(path)
        if parent:
            await aiofiles.os.makedirs(parent, exist_ok=True)

        async with aiofiles.open(path, "wb") as f:
            if isinstance(data, (bytes, bytearray)):
                await f.write(data)
                return

            loop = asyncio.get_running_loop()
            while True:
                chunk = await loop.run_in_executor(None, data.read, COPY_CHUNK_SIZE)
                if not chunk:
                    break
                await f.write(chunk)

    async def head(self, path: str) -> Optional[FileInfo]:
        try:
            stat = await aiofiles.os.stat(path)
        except FileNotFoundError:
            return None
        return FileInfo(path=path, size=stat.st_size)

    async def rename(self, source: str, target: str) -> None:
        await aiofiles.os.replace(source, target)

    def join(self, *segments: str) -> str:
        return os.path.join(*segments)
