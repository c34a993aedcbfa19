"""Checksum calculation for file integrity verification."""

import base64
import hashlib
from pathlib import Path
from typing import BinaryIO, Union

HASH_PREFIX = "sha256-"


def format_hash(digest: bytes) -> str:
    """Format a raw sha256 digest as a manifest hash token."""
    return HASH_PREFIX + base64.b64encode(digest).decode("ascii")


class HashingReader:
    """Readable wrapper that hashes every byte passing through it.

    Lets a single read of the source feed both the upload and the hash.
    """

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self._hash = hashlib.sha256()
        self.bytes_read = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self._stream.read(size)
        if chunk:
            self._hash.update(chunk)
            self.bytes_read += len(chunk)
        return chunk

    def seekable(self) -> bool:
        # Seeking back would hash bytes twice
        return False

    def close(self) -> None:
        self._stream.close()

    def digest(self) -> str:
        """Hash token of everything read so far."""
        return format_hash(self._hash.digest())


class ChecksumCalculator:
    """Calculate and verify SHA256 checksums."""

    def __init__(self, chunk_size: int = 8192):
        self.chunk_size = chunk_size

    def hash_bytes(self, data: bytes) -> str:
        return format_hash(hashlib.sha256(data).digest())

    def hash_stream(self, stream: BinaryIO) -> str:
        """Hash a byte stream, returning ``sha256-<base64 digest>``."""
        sha256_hash = hashlib.sha256()
        for chunk in iter(lambda: stream.read(self.chunk_size), b""):
            sha256_hash.update(chunk)
        return format_hash(sha256_hash.digest())

    def calculate_hash(self, file_path: Union[str, Path]) -> str:
        """Manifest hash token for a local file."""
        with open(file_path, "rb") as f:
            return self.hash_stream(f)

    def calculate_sha256(self, file_path: Union[str, Path]) -> str:
        """Hex SHA256 of a local file, read in chunks."""
        sha256_hash = hashlib.sha256()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(self.chunk_size), b""):
                sha256_hash.update(chunk)
        return sha256_hash.hexdigest()

    def verify_checksum(self, file_path: Union[str, Path], expected: str) -> bool:
        """Verify a file against a hex digest or a ``sha256-`` token."""
        if expected.startswith(HASH_PREFIX):
            return self.calculate_hash(file_path) == expected
        return self.calculate_sha256(file_path).lower() == expected.lower()
