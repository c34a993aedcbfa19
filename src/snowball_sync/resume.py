"""Find where a previous, possibly concurrent, upload run stopped."""

import logging
from typing import Awaitable, Callable, Optional, Sequence

from snowball_sync.errors import ResumeSearchAmbiguous
from snowball_sync.manifest import ManifestFile
from snowball_sync.storage import FileInfo

logger = logging.getLogger(__name__)

MAX_PROBES = 50
CHECK_RANGE = 5

HeadProbe = Callable[[ManifestFile], Awaitable[Optional[FileInfo]]]


async def find_resume_index(
    files: Sequence[ManifestFile],
    head: HeadProbe,
    max_probes: int = MAX_PROBES,
    margin: int = CHECK_RANGE,
) -> int:
    """Index of the first file that still needs uploading.

    Uploads run concurrently so they do not finish in strict order. A
    bounded binary search finds the rough boundary between uploaded and
    missing files, then every file within ``margin`` of that boundary is
    checked for existence and an exact size match.

    Probes run one at a time, each depends on the previous answer.
    """
    found_uploaded = -1
    found_not_uploaded = -1
    low = 0
    high = len(files) - 1
    probes = 0

    while low <= high and probes < max_probes:
        mid = (low + high) // 2
        exists = await head(files[mid]) is not None
        probes += 1
        if exists:
            found_uploaded = max(found_uploaded, mid)
            low = mid + 1
        else:
            if found_not_uploaded == -1 or mid < found_not_uploaded:
                found_not_uploaded = mid
            high = mid - 1

        logger.info(
            "LastUpload:Search index=%d path=%s exists=%s foundUploaded=%d foundNotUploaded=%d low=%d high=%d",
            mid,
            files[mid].path,
            exists,
            found_uploaded,
            found_not_uploaded,
            low,
            high,
        )

    if found_not_uploaded < 0:
        return len(files)
    if found_uploaded < 0:
        return 0

    start_index = max(0, found_uploaded - margin)
    end_index = min(len(files) - 1, found_not_uploaded + margin)
    for index in range(start_index, end_index + 1):
        file = files[index]
        info = await head(file)
        logger.debug(
            "LastUpload:SearchForComplete index=%d path=%s exists=%s sizeRemote=%s sizeLocal=%d",
            index,
            file.path,
            info is not None,
            info.size if info is not None else None,
            file.size,
        )
        if info is None or info.size != file.size:
            return index

    raise ResumeSearchAmbiguous(
        f"Every file between index {start_index} and {end_index} is already uploaded, "
        "unable to tell where the previous run stopped"
    )
