"""Smart sync engine: manifest in, verified upload out."""

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence

from snowball_sync import manifest_store
from snowball_sync.batch import UploadPlan, plan_upload
from snowball_sync.checksum import ChecksumCalculator
from snowball_sync.config import Config
from snowball_sync.errors import DestinationManifestDiffers
from snowball_sync.log import bind_correlation
from snowball_sync.manifest import MANIFEST_FILE_NAME, Manifest, ManifestFile, is_manifests_different, manifest_name_for
from snowball_sync.manifest_store import ManifestStore
from snowball_sync.progress import ProgressReporter, UploadStats
from snowball_sync.storage import LocalStorage, S3Storage, StorageBackend
from snowball_sync.upload import UploadCoordinator

logger = logging.getLogger(__name__)

VERIFY_GROUP = 1_000


class SmartSync:
    """Composition root wiring manifest, planner, resume search and uploads."""

    def __init__(self, config: Config):
        self.config = config
        self.checksum_calculator = ChecksumCalculator()

    def _storage_for(self, locator: str, target: bool = False) -> StorageBackend:
        """Storage for a locator; only the sync target talks to the Snowball endpoint."""
        if not locator.startswith("s3://"):
            return LocalStorage()
        config = self.config
        if not target and config.aws.endpoint:
            config = replace(config, aws=replace(config.aws, endpoint=None))
        return S3Storage(config)

    async def sync(
        self,
        manifest_path: str,
        target: str,
        dry_run: bool = False,
        use_resume: bool = True,
    ) -> Dict[str, Any]:
        """
        Upload every file in a manifest to ``target``.

        Args:
            manifest_path: Manifest file to sync, updated with hashes as files upload
            target: Destination, ``s3://bucket/prefix`` or a local directory
            dry_run: Stop after planning the upload
            use_resume: Search for where a previous run stopped instead of starting at the first big file

        Returns:
            Dictionary with sync results
        """
        upload_config = self.config.upload
        store = await ManifestStore.open(manifest_path, self._storage_for(manifest_path), self.config.manifest)
        manifest = store.manifest
        log = bind_correlation(logger, manifest.correlation_id)
        target_storage = self._storage_for(target, target=True)

        log.info(
            "Sync:Start manifest=%s source=%s target=%s files=%d size=%d concurrency=%d",
            manifest_path,
            manifest.path,
            target,
            len(manifest),
            manifest.total_size,
            upload_config.concurrency,
        )

        # Pre-flight, nothing is transferred if the target holds unrelated content
        await self._check_destination(manifest, target_storage, target)

        plan = plan_upload(
            list(manifest),
            upload_config.small_file_threshold,
            upload_config.max_batch_files,
            upload_config.max_batch_bytes,
        )
        log.info(
            "FilterFiles bigFiles=%d smallFiles=%d batches=%d threshold=%d",
            len(plan.big_files),
            plan.small_file_count,
            len(plan.batches),
            plan.threshold,
        )

        if dry_run:
            return {
                "files_uploaded": 0,
                "plan": plan,
                "big_files": len(plan.big_files),
                "small_files": plan.small_file_count,
                "batches": len(plan.batches),
                "dry_run": True,
            }

        stats = UploadStats(total_files=len(manifest), total_size=manifest.total_size)
        coordinator = UploadCoordinator(
            store,
            self._storage_for(manifest.path),
            target_storage,
            target,
            config=upload_config,
            resume=self.config.resume,
            stats=stats,
        )

        start_time = time.monotonic()
        try:
            async with ProgressReporter(stats):
                await coordinator.upload_big_files(plan.big_files, use_resume=use_resume)
                await coordinator.upload_small_files(plan.batches)
        finally:
            await store.close()

        result = coordinator.result
        if not result.failures:
            await target_storage.write(
                target_storage.join(target, MANIFEST_FILE_NAME), manifest.to_json(indent=None).encode("utf-8")
            )
        else:
            log.warning("Sync:ManifestNotUploaded failures=%d", len(result.failures))

        problems = await self._verify_target(plan, coordinator)
        log.info(
            "Sync:Done count=%d sizeMb=%.2f duration=%.1f failures=%d problems=%d",
            result.files_uploaded,
            result.bytes_uploaded / 1024 / 1024,
            time.monotonic() - start_time,
            len(result.failures),
            len(problems),
        )

        return {
            "files_uploaded": result.files_uploaded,
            "bytes_uploaded": result.bytes_uploaded,
            "batches_uploaded": result.batches_uploaded,
            "batches_skipped": result.batches_skipped,
            "resume_index": result.resume_index,
            "failures": [f.label for f in result.failures],
            "problems": problems,
            "manifest_path": manifest_path,
        }

    async def _check_destination(self, manifest: Manifest, storage: StorageBackend, target: str) -> None:
        """Refuse to sync onto a target whose manifest describes other files."""
        remote_path = storage.join(target, MANIFEST_FILE_NAME)
        if not await storage.exists(remote_path):
            return

        try:
            remote = Manifest.from_json((await storage.read(remote_path)).decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise DestinationManifestDiffers(f"Target manifest {remote_path} is unreadable: {e}") from e

        if is_manifests_different(manifest, remote):
            raise DestinationManifestDiffers(
                f"Target {target} already holds a manifest with different files, refusing to sync"
            )
        logger.info("Sync:TargetManifestMatches path=%s files=%d", remote_path, len(remote))

    async def _verify_target(self, plan: UploadPlan, coordinator: UploadCoordinator) -> List[str]:
        """Check every big file and batch object made it to the target."""
        gate = asyncio.Semaphore(self.config.upload.concurrency)
        problems: List[str] = []

        async def check_file(file: ManifestFile) -> None:
            async with gate:
                info = await coordinator.head_target(file)
            if info is None:
                problems.append(f"missing: {file.path}")
            elif info.size != file.size:
                problems.append(f"size mismatch: {file.path} expected {file.size} got {info.size}")

        async def check_batch(index: int) -> None:
            async with gate:
                exists = await coordinator.target.exists(coordinator.batch_path(index))
            if not exists:
                problems.append(f"missing: batch-{index}.tar.gz")

        for offset in range(0, len(plan.big_files), VERIFY_GROUP):
            await asyncio.gather(*(check_file(f) for f in plan.big_files[offset:offset + VERIFY_GROUP]))
        await asyncio.gather(*(check_batch(i) for i in range(len(plan.batches))))

        for problem in problems:
            logger.warning("Verify:Problem %s", problem)
        return problems

    async def create_manifest(self, root: str, output: Optional[str] = None) -> Dict[str, Any]:
        """Scan ``root`` and write a new manifest."""
        manifest = await manifest_store.create_manifest(
            root, self._storage_for(root), self.config.manifest.progress_every
        )
        output = output or manifest_name_for(root)
        store = ManifestStore(manifest, output, self._storage_for(output), self.config.manifest)
        await store.save()
        return {"manifest_path": output, "files": len(manifest), "size": manifest.total_size}

    async def hash_manifest(self, manifest_path: str) -> Dict[str, Any]:
        """Hash every file that does not have a hash yet."""
        store = await ManifestStore.open(manifest_path, self._storage_for(manifest_path), self.config.manifest)
        manifest = store.manifest
        to_hash = manifest.filter(lambda f: f.hash is None)
        if not to_hash:
            logger.info("AllFilesHashed path=%s", manifest_path)
            return {"hashed": 0, "total": len(manifest)}

        source = self._storage_for(manifest.path)
        gate = asyncio.Semaphore(self.config.upload.concurrency)
        count = 0

        async def hash_file(file: ManifestFile) -> None:
            nonlocal count
            async with gate:
                logger.debug("Hash:File path=%s", file.path)
                digest = await self._hash_source(source, manifest, file)
            store.set_hash(file.path, digest)
            count += 1
            if count % 1_000 == 0:
                logger.info("Hash:Progress count=%d total=%d", count, len(to_hash))

        try:
            await self._in_groups(hash_file, to_hash)
        finally:
            await store.close()

        logger.info("Manifest:Hashed path=%s count=%d", manifest_path, count)
        return {"hashed": count, "total": len(manifest)}

    async def validate(self, manifest_path: str) -> Dict[str, Any]:
        """Re-hash files from the manifest root and compare against recorded hashes."""
        manifest = await manifest_store.load_manifest(
            manifest_path, self._storage_for(manifest_path), self.config.manifest.backup_suffix
        )
        source = self._storage_for(manifest.path)
        gate = asyncio.Semaphore(self.config.upload.concurrency)
        stats = {"hash_missing": 0, "hash_mismatch": 0, "count": 0}
        mismatched: List[str] = []

        async def check_file(file: ManifestFile) -> None:
            async with gate:
                digest = await self._hash_source(source, manifest, file)
            if digest != file.hash:
                stats["hash_mismatch"] += 1
                mismatched.append(file.path)
                logger.warning("Hash:Mismatch path=%s expected=%s got=%s", file.path, file.hash, digest)
            stats["count"] += 1
            if stats["count"] % 1_000 == 0:
                logger.info("Hash:Progress count=%d total=%d", stats["count"], len(manifest))

        stats["hash_missing"] = len(manifest.filter(lambda f: f.hash is None))
        if stats["hash_missing"]:
            logger.error("Hash:Missing count=%d", stats["hash_missing"])

        await self._in_groups(check_file, manifest.filter(lambda f: f.hash is not None))

        if stats["hash_mismatch"] or stats["hash_missing"]:
            logger.warning("Validate:Done count=%d missing=%d mismatch=%d", stats["count"], stats["hash_missing"], stats["hash_mismatch"])
        else:
            logger.info("Validate:Done count=%d", stats["count"])
        return {**stats, "mismatched": mismatched, "valid": not (stats["hash_mismatch"] or stats["hash_missing"])}

    async def _hash_source(self, source: StorageBackend, manifest: Manifest, file: ManifestFile) -> str:
        stream = await source.read_stream(source.join(manifest.path, file.path))
        try:
            return await asyncio.to_thread(self.checksum_calculator.hash_stream, stream)
        finally:
            stream.close()

    @staticmethod
    async def _in_groups(func, files: Sequence[ManifestFile]) -> None:
        for offset in range(0, len(files), VERIFY_GROUP):
            await asyncio.gather(*(func(f) for f in files[offset:offset + VERIFY_GROUP]))
