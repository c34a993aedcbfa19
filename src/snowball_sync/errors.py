"""Error types raised by snowball-sync."""

import traceback
from typing import List, Sequence


class SnowballSyncError(Exception):
    """Base class for every failure the sync tool reports."""


class InvalidManifestLocator(SnowballSyncError):
    """Locator does not look like a manifest file reference."""


class ManifestCorrupt(SnowballSyncError):
    """Neither the manifest nor its backup could be parsed."""


class FileNotInManifest(SnowballSyncError):
    """A hash was recorded for a path the manifest does not contain."""

    def __init__(self, path: str):
        super().__init__(f"File not found in manifest: {path}")
        self.path = path


class ManifestFlushFailed(SnowballSyncError):
    """Writing the manifest kept failing past the allowed retries."""


class ResumeSearchAmbiguous(SnowballSyncError):
    """Every file around the resume boundary is already uploaded."""


class DestinationManifestDiffers(SnowballSyncError):
    """Target already holds a manifest describing different content."""


class UploadRetriesExhausted(SnowballSyncError):
    """All upload attempts failed.

    Carries every attempt's exception in ``errors``, oldest first, so the
    pattern of failures (transient vs. persistent) is visible.
    """

    def __init__(self, message: str, errors: Sequence[BaseException]):
        self.errors: List[BaseException] = list(errors)
        details = ", ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        super().__init__(f"{message}: {details}")
        self.label = message

    def format_errors(self) -> str:
        """Tracebacks of every underlying failure."""
        return "\n\n".join(
            "".join(traceback.format_exception(type(e), e, e.__traceback__))
            for e in self.errors
        )
