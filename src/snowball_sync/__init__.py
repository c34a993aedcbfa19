"""Snowball Sync - resumable, hash-verified sync of large file trees to S3 and Snowball."""

__version__ = "0.3.0"

from snowball_sync.config import Config
from snowball_sync.manifest import Manifest, ManifestFile, is_manifests_different
from snowball_sync.manifest_store import ManifestStore, create_manifest, load_manifest
from snowball_sync.sync_engine import SmartSync

__all__ = [
    "Config",
    "Manifest",
    "ManifestFile",
    "ManifestStore",
    "SmartSync",
    "create_manifest",
    "is_manifests_different",
    "load_manifest",
    "__version__",
]
