"""Manifest of a file tree: every file's size and content hash."""

import json
import logging
import os
import uuid
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from snowball_sync.errors import FileNotInManifest

logger = logging.getLogger(__name__)

MANIFEST_FILE_NAME = "manifest.json"


def normalize_path(path: str) -> str:
    """Use ``/`` separators with no leading or trailing separator."""
    if os.sep != "/":
        path = path.replace(os.sep, "/")
    return path.strip("/")


def manifest_name_for(root: str) -> str:
    """Default manifest file name for a scanned root, eg ``media_RGBi.manifest.json``."""
    name = root.split("://", 1)[-1]
    name = normalize_path(name)
    name = name.replace("/", "_").replace(" ", "_")
    return name + ".manifest.json"


@dataclass(frozen=True)
class ManifestFile:
    """A single file in the manifest.

    Frozen so path and size never change; a new hash replaces the entry.
    """

    path: str
    size: int
    hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        output: Dict[str, Any] = {"path": self.path, "size": self.size}
        if self.hash is not None:
            output["hash"] = self.hash
        return output


class Manifest:
    """Ordered inventory of files relative to ``path``.

    Files are keyed by normalized path. Insertion order is kept so batching
    and resume searches see the same sequence on every run.
    """

    def __init__(
        self,
        path: str,
        files: Iterable[ManifestFile] = (),
        correlation_id: Optional[str] = None,
    ):
        self.path = path
        self.correlation_id = correlation_id or uuid.uuid4().hex
        self.files: Dict[str, ManifestFile] = {}
        for file in files:
            self.add(file.path, file.size, file.hash)

    def add(self, path: str, size: int, hash: Optional[str] = None) -> ManifestFile:
        file_path = normalize_path(path)
        if file_path in self.files:
            raise ValueError(f"Duplicate path in manifest: {file_path}")
        if not isinstance(size, int) or isinstance(size, bool) or size < 0:
            raise ValueError(f"Invalid size for {file_path}: {size!r}")
        file = ManifestFile(path=file_path, size=size, hash=hash)
        self.files[file_path] = file
        return file

    def get(self, path: str) -> Optional[ManifestFile]:
        return self.files.get(path)

    def set_hash(self, path: str, digest: str) -> bool:
        """Record a file's hash, returning False when it was already set to ``digest``."""
        file = self.files.get(path)
        if file is None:
            raise FileNotInManifest(path)
        if file.hash == digest:
            return False
        self.files[path] = replace(file, hash=digest)
        return True

    def filter(self, predicate: Callable[[ManifestFile], bool]) -> List[ManifestFile]:
        return [f for f in self.files.values() if predicate(f)]

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files.values())

    @property
    def is_complete(self) -> bool:
        """True when every file has a hash."""
        return all(f.hash is not None for f in self.files.values())

    def __len__(self) -> int:
        return len(self.files)

    def __iter__(self) -> Iterator[ManifestFile]:
        return iter(list(self.files.values()))

    def __contains__(self, path: object) -> bool:
        return path in self.files

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "size": self.total_size,
            "correlationId": self.correlation_id,
            "files": [f.to_dict() for f in self.files.values()],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: Any) -> "Manifest":
        """Build a manifest from its serialized form.

        Raises ValueError when the structure is not a manifest.
        """
        if not isinstance(data, dict):
            raise ValueError("Manifest must be a JSON object")
        root = data.get("path")
        files = data.get("files")
        if not isinstance(root, str):
            raise ValueError("Manifest is missing 'path'")
        if not isinstance(files, list):
            raise ValueError("Manifest is missing 'files'")

        manifest = cls(root, correlation_id=data.get("correlationId"))
        for entry in files:
            if not isinstance(entry, dict) or not isinstance(entry.get("path"), str):
                raise ValueError(f"Invalid manifest entry: {entry!r}")
            if entry.get("hash") is not None and not isinstance(entry["hash"], str):
                raise ValueError(f"Invalid hash for {entry['path']}: {entry['hash']!r}")
            manifest.add(entry["path"], entry.get("size"), entry.get("hash"))
        return manifest

    @classmethod
    def from_json(cls, text: str) -> "Manifest":
        return cls.from_dict(json.loads(text))


def is_manifests_different(candidate: Manifest, reference: Manifest) -> bool:
    """Check whether ``candidate`` is missing or contradicts anything in ``reference``.

    A reference file counts as different when the candidate lacks it, has a
    different size, or both sides carry a hash and the hashes differ. A hash
    missing on either side is never compared. Extra files in the candidate are
    allowed, so an incremental manifest that only adds files is not different.
    """
    for ref_file in reference.files.values():
        file = candidate.files.get(ref_file.path)
        if file is None:
            logger.debug("Manifest:Diff reason=missing path=%s", ref_file.path)
            return True
        if file.size != ref_file.size:
            logger.debug(
                "Manifest:Diff reason=size path=%s size=%d expected=%d", file.path, file.size, ref_file.size
            )
            return True
        if file.hash is not None and ref_file.hash is not None and file.hash != ref_file.hash:
            logger.debug("Manifest:Diff reason=hash path=%s", file.path)
            return True
    return False
