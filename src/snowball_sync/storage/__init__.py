"""Storage backends, selected by locator scheme."""

from typing import Optional

from snowball_sync.config import Config
from snowball_sync.storage.base import FileInfo, StorageBackend
from snowball_sync.storage.local import LocalStorage
from snowball_sync.storage.s3 import S3Storage, parse_s3_path


def get_storage(locator: str, config: Optional[Config] = None) -> StorageBackend:
    """Pick the backend for a locator, ``s3://`` or a local path."""
    if locator.startswith("s3://"):
        return S3Storage(config or Config())
    return LocalStorage()


__all__ = ["FileInfo", "StorageBackend", "LocalStorage", "S3Storage", "get_storage", "parse_s3_path"]
