"""Bounded concurrency upload of big files and tar batches of small files."""

import asyncio
import enum
import io
import logging
import tarfile
import tempfile
import time
from collections import deque
from dataclasses import dataclass, field
from typing import IO, Awaitable, Callable, Deque, List, Optional, Sequence, Tuple, TypeVar

from snowball_sync.checksum import ChecksumCalculator, HashingReader
from snowball_sync.config import OneMb, ResumeConfig, UploadConfig
from snowball_sync.errors import UploadRetriesExhausted
from snowball_sync.log import bind_correlation
from snowball_sync.manifest import ManifestFile
from snowball_sync.manifest_store import ManifestStore
from snowball_sync.progress import UploadStats
from snowball_sync.resume import find_resume_index
from snowball_sync.storage import FileInfo, StorageBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")

AUTO_EXTRACT_METADATA = {"snowball-auto-extract": "true"}

# Tar archives stay in memory up to this size, then spill to a temp file
SPOOL_MAX_SIZE = 64 * OneMb

# Big file uploads are awaited in groups so millions of files do not all become tasks at once
JOIN_EVERY = 1_000


@dataclass
class BackOff:
    """Upload retry settings."""

    # Number of upload attempts
    count: int = 3
    # Seconds, multiplied by the number of failures so far
    delay: float = 0.5


class FailurePolicy(str, enum.Enum):
    """What to do when a file or batch exhausts its retries."""

    ABORT = "abort"
    CONTINUE = "continue"


@dataclass
class UploadFailure:
    label: str
    error: UploadRetriesExhausted


@dataclass
class UploadResult:
    files_uploaded: int = 0
    bytes_uploaded: int = 0
    batches_uploaded: int = 0
    batches_skipped: int = 0
    resume_index: int = 0
    failures: List[UploadFailure] = field(default_factory=list)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    backoff: BackOff,
    label: str,
) -> T:
    """Run ``operation`` up to ``backoff.count`` times.

    Sleeps ``n * backoff.delay`` after the n-th failure. When every attempt
    fails, raises ``UploadRetriesExhausted`` holding all of the failures.
    """
    errors: List[BaseException] = []
    while len(errors) < backoff.count:
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            errors.append(e)
            logger.warning(
                "Upload:Retry label=%s attempt=%d of=%d error=%s", label, len(errors), backoff.count, e
            )
            if len(errors) < backoff.count:
                await asyncio.sleep(backoff.delay * len(errors))
    raise UploadRetriesExhausted(label, errors)


class UploadCoordinator:
    """Upload a manifest's files from ``source`` to ``target``.

    At most ``concurrency`` file reads or uploads run at once. Every uploaded
    file's hash is recorded in the manifest store.
    """

    def __init__(
        self,
        store: ManifestStore,
        source: StorageBackend,
        target: StorageBackend,
        target_root: str,
        config: Optional[UploadConfig] = None,
        resume: Optional[ResumeConfig] = None,
        stats: Optional[UploadStats] = None,
    ):
        self.store = store
        self.source = source
        self.target = target
        self.target_root = target_root
        self.config = config or UploadConfig()
        self.resume = resume or ResumeConfig()
        self.stats = stats or UploadStats()
        self.backoff = BackOff(count=self.config.retry_count, delay=self.config.retry_delay)
        self.policy = FailurePolicy(self.config.failure_policy)
        self.checksum = ChecksumCalculator()
        self.result = UploadResult()
        self.log = bind_correlation(logger, store.manifest.correlation_id)
        self._gate = asyncio.Semaphore(self.config.concurrency)

    @property
    def source_root(self) -> str:
        return self.store.manifest.path

    def target_path(self, file: ManifestFile) -> str:
        return self.target.join(self.target_root, file.path)

    def batch_path(self, index: int) -> str:
        return self.target.join(self.target_root, f"batch-{index}.tar.gz")

    async def head_target(self, file: ManifestFile) -> Optional[FileInfo]:
        return await self.target.head(self.target_path(file))

    async def _guard(self, operation: Awaitable[None], label: str) -> None:
        """Apply the failure policy to one file or batch."""
        try:
            await operation
        except UploadRetriesExhausted as e:
            self.log.error(
                "Upload:Failed label=%s attempts=%d policy=%s errors=%s",
                label,
                len(e.errors),
                self.policy.value,
                "; ".join(f"{type(err).__name__}: {err}" for err in e.errors),
            )
            if self.policy is FailurePolicy.ABORT:
                raise
            self.result.failures.append(UploadFailure(label=label, error=e))

    async def _run_all(self, operations: Sequence[Tuple[Awaitable[None], str]]) -> None:
        tasks = [asyncio.ensure_future(self._guard(op, label)) for op, label in operations]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def upload_big_files(self, files: Sequence[ManifestFile], use_resume: bool = True) -> int:
        """Stream each file to the target, resuming after files a previous run finished."""
        log = bind_correlation(logging.getLogger(__name__ + ".big"), self.store.manifest.correlation_id)
        start_index = 0
        if use_resume and files:
            start_index = await find_resume_index(
                files, self.head_target, max_probes=self.resume.max_probes, margin=self.resume.margin
            )
        self.result.resume_index = start_index
        self.stats.record_resumed(start_index, sum(f.size for f in files[:start_index]))

        log.info(
            "Upload:Start startOffset=%d files=%d concurrency=%d policy=%s",
            start_index,
            len(files),
            self.config.concurrency,
            self.policy.value,
        )
        for offset in range(start_index, len(files), JOIN_EVERY):
            group = files[offset:offset + JOIN_EVERY]
            await self._run_all(
                [
                    (self._upload_big_file(file, offset + i, len(files)), file.path)
                    for i, file in enumerate(group)
                ]
            )
            log.debug("Upload:Join index=%d", offset + len(group))
        return start_index

    async def _upload_big_file(self, file: ManifestFile, index: int, total: int) -> None:
        source_path = self.source.join(self.source_root, file.path)
        target_path = self.target_path(file)

        async def attempt() -> str:
            stream = await self.source.read_stream(source_path)
            reader = HashingReader(stream)
            try:
                await self.target.write(target_path, reader)
            finally:
                reader.close()
            return reader.digest()

        async with self._gate:
            self.log.debug(
                "Upload:Start bigCount=%d bigTotal=%d path=%s size=%d target=%s",
                index,
                total,
                file.path,
                file.size,
                target_path,
            )
            start_time = time.monotonic()
            digest = await retry_with_backoff(attempt, self.backoff, file.path)

        self.store.set_hash(file.path, digest)
        self.stats.record_uploaded(1, file.size)
        self.result.files_uploaded += 1
        self.result.bytes_uploaded += file.size
        self.log.debug("Upload:Done path=%s duration=%.2f", file.path, time.monotonic() - start_time)

    async def upload_small_files(self, batches: Sequence[Sequence[ManifestFile]]) -> None:
        """Tar each batch and upload it unless the target already has it."""
        for index, batch in enumerate(batches):
            await self._run_all([(self._upload_batch(index, batch), f"batch-{index}")])

    async def _upload_batch(self, index: int, batch: Sequence[ManifestFile]) -> None:
        log = bind_correlation(logging.getLogger(__name__ + ".tar"), self.store.manifest.correlation_id)
        target_path = self.batch_path(index)
        batch_size = sum(f.size for f in batch)

        if await self.target.exists(target_path):
            log.info("Tar:Exists target=%s files=%d", target_path, len(batch))
            self.stats.record_resumed(len(batch), batch_size)
            self.result.batches_skipped += 1
            return

        async def attempt() -> List[str]:
            archive = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE)
            try:
                log.info("Tar:Start target=%s files=%d", target_path, len(batch))
                hashes = await self._pack_batch(batch, archive, log)
                archive.seek(0)
                log.info("Upload:Start target=%s count=%d total=%d", target_path, self.stats.count, self.stats.total_files)
                async with self._gate:
                    await self.target.write(target_path, archive, metadata=dict(AUTO_EXTRACT_METADATA))
                return hashes
            finally:
                archive.close()

        hashes = await retry_with_backoff(attempt, self.backoff, f"batch-{index}")

        for file, digest in zip(batch, hashes):
            self.store.set_hash(file.path, digest)
        self.stats.record_uploaded(len(batch), batch_size)
        self.result.files_uploaded += len(batch)
        self.result.bytes_uploaded += batch_size
        self.result.batches_uploaded += 1
        log.info("Tar:Done target=%s files=%d size=%d", target_path, len(batch), batch_size)

    async def _read_small_file(self, file: ManifestFile) -> Tuple[bytes, str]:
        async with self._gate:
            data = await self.source.read(self.source.join(self.source_root, file.path))
        return data, self.checksum.hash_bytes(data)

    async def _pack_batch(self, batch: Sequence[ManifestFile], archive: IO[bytes], log: logging.LoggerAdapter) -> List[str]:
        """Read files concurrently but add them to the tar strictly in batch order."""
        hashes: List[str] = []
        window = max(1, self.config.concurrency * 2)
        reads: Deque[Tuple[ManifestFile, asyncio.Future]] = deque()

        tar = tarfile.open(fileobj=archive, mode="w:gz")
        try:
            for file in batch:
                reads.append((file, asyncio.ensure_future(self._read_small_file(file))))
                if len(reads) >= window:
                    await self._append_next(tar, reads, hashes)
                    if len(hashes) % 1_000 == 0:
                        log.debug("Tar:Progress tarCount=%d tarTotal=%d", len(hashes), len(batch))
            while reads:
                await self._append_next(tar, reads, hashes)
        except BaseException:
            for _, future in reads:
                future.cancel()
            await asyncio.gather(*(future for _, future in reads), return_exceptions=True)
            raise
        finally:
            await asyncio.to_thread(tar.close)

        return hashes

    async def _append_next(
        self,
        tar: tarfile.TarFile,
        reads: Deque[Tuple[ManifestFile, asyncio.Future]],
        hashes: List[str],
    ) -> None:
        file, future = reads.popleft()
        data, digest = await future
        info = tarfile.TarInfo(name=file.path)
        info.size = len(data)
        info.mtime = int(time.time())
        await asyncio.to_thread(tar.addfile, info, io.BytesIO(data))
        hashes.append(digest)
