"""Loading, scanning and crash-safe persistence of manifests."""

import asyncio
import enum
import json
import logging
import time
from typing import List, Optional

from snowball_sync.config import ManifestConfig
from snowball_sync.errors import InvalidManifestLocator, ManifestCorrupt, ManifestFlushFailed
from snowball_sync.manifest import MANIFEST_FILE_NAME, Manifest, normalize_path
from snowball_sync.storage import StorageBackend, get_storage

logger = logging.getLogger(__name__)


def validate_locator(locator: str) -> None:
    if not locator or not locator.endswith(".json"):
        raise InvalidManifestLocator(f"Manifest must be a .json file: {locator!r}")


async def load_manifest(
    locator: str,
    storage: Optional[StorageBackend] = None,
    backup_suffix: str = ManifestConfig.backup_suffix,
) -> Manifest:
    """Load a manifest, falling back to its backup copy if the primary is unusable."""
    validate_locator(locator)
    storage = storage or get_storage(locator)

    problems: List[str] = []
    for source in (locator, locator + backup_suffix):
        try:
            raw = await storage.read(source)
            manifest = Manifest.from_json(raw.decode("utf-8"))
        except FileNotFoundError:
            problems.append(f"{source}: not found")
            continue
        except (UnicodeDecodeError, ValueError) as e:
            # json.JSONDecodeError is a ValueError
            logger.warning("Manifest:ParseFailed path=%s error=%s", source, e)
            problems.append(f"{source}: {e}")
            continue

        logger.info(
            "Manifest:Loaded path=%s files=%d correlationId=%s",
            source,
            len(manifest),
            manifest.correlation_id,
        )
        return manifest

    raise ManifestCorrupt(f"Unable to load manifest {locator}: " + "; ".join(problems))


async def create_manifest(
    root: str,
    storage: Optional[StorageBackend] = None,
    progress_every: int = ManifestConfig.progress_every,
) -> Manifest:
    """Scan a directory or bucket prefix into a new manifest."""
    storage = storage or get_storage(root)
    manifest = Manifest(root)
    start_time = time.monotonic()

    async for info in storage.list(root):
        # Zero length keys ending in / are folder markers in object stores
        if info.size == 0 and (not info.path or info.path.endswith("/")):
            continue
        path = normalize_path(info.path)
        if not path or path == MANIFEST_FILE_NAME:
            continue
        manifest.add(path, info.size)
        if len(manifest) % progress_every == 0:
            logger.info("Manifest:Progress count=%d path=%s", len(manifest), path)

    logger.info(
        "Manifest:Created path=%s count=%d size=%d duration=%.2f",
        root,
        len(manifest),
        manifest.total_size,
        time.monotonic() - start_time,
    )
    return manifest


class FlushState(enum.Enum):
    CLEAN = "clean"
    PENDING = "pending"
    FLUSHING = "flushing"


class ManifestStore:
    """Debounced, strictly serialized persistence of a manifest.

    The first change after a flush arms a timer; changes made before it fires
    ride along with the same flush. Each flush writes the backup location and
    renames it over the primary. Flushes never overlap and run in the order
    they were requested.

    Must be used from inside a running event loop.
    """

    def __init__(
        self,
        manifest: Manifest,
        locator: str,
        storage: Optional[StorageBackend] = None,
        config: Optional[ManifestConfig] = None,
    ):
        validate_locator(locator)
        self.manifest = manifest
        self.locator = locator
        self.storage = storage or get_storage(locator)
        self.config = config or ManifestConfig()

        self.state = FlushState.CLEAN
        self.flush_count = 0
        self._dirty = False
        self._failures = 0
        self._error: Optional[ManifestFlushFailed] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._flush_task: Optional[asyncio.Task] = None
        self._flush_lock = asyncio.Lock()

    @classmethod
    async def open(
        cls,
        locator: str,
        storage: Optional[StorageBackend] = None,
        config: Optional[ManifestConfig] = None,
    ) -> "ManifestStore":
        config = config or ManifestConfig()
        storage = storage or get_storage(locator)
        manifest = await load_manifest(locator, storage, config.backup_suffix)
        return cls(manifest, locator, storage, config)

    @property
    def backup_locator(self) -> str:
        return self.locator + self.config.backup_suffix

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def set_hash(self, path: str, digest: str) -> None:
        self.raise_for_flush_error()
        if self.manifest.set_hash(path, digest):
            self.mark_dirty()

    def mark_dirty(self) -> None:
        self._dirty = True
        if self._timer is None and self.state is not FlushState.FLUSHING:
            self._arm()

    def _arm(self) -> None:
        loop = asyncio.get_running_loop()
        self.state = FlushState.PENDING
        self._timer = loop.call_later(self.config.flush_delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._flush_task = asyncio.ensure_future(self._scheduled_flush())

    async def _scheduled_flush(self) -> None:
        try:
            await self.flush()
        except ManifestFlushFailed as e:
            self._error = e
            logger.error("Manifest:FlushFailed path=%s error=%s", self.locator, e)

    def raise_for_flush_error(self) -> None:
        """Re-raise a flush failure that happened in the background."""
        if self._error is not None:
            raise self._error

    async def flush(self) -> None:
        """Persist the manifest as it is now, if anything changed."""
        async with self._flush_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if not self._dirty:
                if self.state is FlushState.PENDING:
                    self.state = FlushState.CLEAN
                return

            self.state = FlushState.FLUSHING
            self._dirty = False
            start_time = time.monotonic()
            payload = self.manifest.to_json().encode("utf-8")
            try:
                await self.storage.write(self.backup_locator, payload)
                await self.storage.rename(self.backup_locator, self.locator)
            except Exception as e:
                self._dirty = True
                self._failures += 1
                self.state = FlushState.CLEAN
                if self._failures >= self.config.max_flush_failures:
                    raise ManifestFlushFailed(
                        f"Failed to write manifest {self.locator} after {self._failures} attempts: {e}"
                    ) from e
                logger.warning(
                    "Manifest:UpdateFailed path=%s failures=%d error=%s", self.locator, self._failures, e
                )
                self._arm()
                return

            self._failures = 0
            self.flush_count += 1
            self.state = FlushState.CLEAN
            logger.info(
                "Manifest:Update path=%s files=%d duration=%.3f",
                self.locator,
                len(self.manifest),
                time.monotonic() - start_time,
            )
            if self._dirty:
                self._arm()

    async def save(self) -> None:
        """Write the manifest now, whether or not it changed."""
        self._dirty = True
        await self.flush()

    async def close(self) -> None:
        """Cancel the timer and flush any outstanding changes."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._flush_task is not None and not self._flush_task.done():
            await self._flush_task
        self.raise_for_flush_error()
        # A failed flush re-arms itself, keep going until it succeeds or gives up
        while self._dirty:
            await self.flush()
