"""Backend-agnostic storage interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, BinaryIO, Dict, Optional, Union

WriteData = Union[bytes, BinaryIO]


@dataclass
class FileInfo:
    """A file or object found by ``list`` or ``head``."""

    path: str
    size: int
    metadata: Dict[str, str] = field(default_factory=dict)


class StorageBackend(ABC):
    """Storage capability used by the sync core.

    Implementations exist for the local filesystem and for S3 compatible
    object stores. All I/O methods are coroutines; blocking work is pushed
    to a worker thread so the event loop keeps serving other transfers.
    """

    @abstractmethod
    def list(self, prefix: str) -> AsyncIterator[FileInfo]:
        """Recursively list files under ``prefix``, paths relative to it."""

    @abstractmethod
    async def read(self, path: str) -> bytes:
        """Read a whole file."""

    @abstractmethod
    async def read_stream(self, path: str) -> BinaryIO:
        """Open a file for streaming reads. The caller closes it."""

    @abstractmethod
    async def write(self, path: str, data: WriteData, metadata: Optional[Dict[str, str]] = None) -> None:
        """Write bytes or the contents of a readable binary stream."""

    @abstractmethod
    async def head(self, path: str) -> Optional[FileInfo]:
        """Size and metadata of a file, None when it does not exist."""

    @abstractmethod
    async def rename(self, source: str, target: str) -> None:
        """Move ``source`` over ``target``, replacing it."""

    @abstractmethod
    def join(self, *segments: str) -> str:
        """Join path segments in the backend's path syntax."""

    async def exists(self, path: str) -> bool:
        return await self.head(path) is not None
