"""Split manifest files into individually uploaded and tar batched sets."""

from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Sequence, Tuple

from snowball_sync.config import OneGb
from snowball_sync.manifest import ManifestFile

# Snowball allows up to 100,000 files and 100GB per tar, stay well under
MAX_BATCH_FILES = 10_000
MAX_BATCH_BYTES = 5 * OneGb


def split_by_size(files: Iterable[ManifestFile], threshold: int) -> Tuple[List[ManifestFile], List[ManifestFile]]:
    """Split files into (big, small); big files are strictly larger than ``threshold``.

    A negative threshold sends every file, empty ones included, down the big path.
    """
    big: List[ManifestFile] = []
    small: List[ManifestFile] = []
    for file in files:
        if file.size > threshold:
            big.append(file)
        else:
            small.append(file)
    return big, small


def chunk_batches(
    files: Iterable[ManifestFile],
    max_count: int = MAX_BATCH_FILES,
    max_bytes: int = MAX_BATCH_BYTES,
) -> Iterator[List[ManifestFile]]:
    """Group files into batches of at most ``max_count`` files and ``max_bytes`` bytes.

    Files keep their original order. A file that would push the current
    batch over ``max_bytes`` starts a new batch, so only a single file that
    is itself larger than ``max_bytes`` can produce an oversized batch.
    """
    if max_count < 1 or max_bytes < 1:
        raise ValueError("Batch limits must be positive")

    output: List[ManifestFile] = []
    current_size = 0
    for file in files:
        if output and current_size + file.size > max_bytes:
            yield output
            output = []
            current_size = 0

        output.append(file)
        current_size += file.size
        if len(output) >= max_count:
            yield output
            output = []
            current_size = 0

    if output:
        yield output


@dataclass
class UploadPlan:
    """Files to stream one by one and batches of small files to tar."""

    big_files: List[ManifestFile] = field(default_factory=list)
    batches: List[List[ManifestFile]] = field(default_factory=list)
    threshold: int = 0

    @property
    def small_file_count(self) -> int:
        return sum(len(b) for b in self.batches)

    @property
    def total_files(self) -> int:
        return len(self.big_files) + self.small_file_count

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.big_files) + sum(f.size for b in self.batches for f in b)


def plan_upload(
    files: Sequence[ManifestFile],
    threshold: int,
    max_count: int = MAX_BATCH_FILES,
    max_bytes: int = MAX_BATCH_BYTES,
) -> UploadPlan:
    big, small = split_by_size(files, threshold)
    return UploadPlan(
        big_files=big,
        batches=list(chunk_batches(small, max_count, max_bytes)),
        threshold=threshold,
    )
