"""Upload progress counters and the periodic reporter that logs them."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

from snowball_sync.config import OneMb

logger = logging.getLogger(__name__)


@dataclass
class UploadStats:
    """Running totals, read by ``ProgressReporter``."""

    # Files uploaded over all runs
    count: int = 0
    # Bytes uploaded this run
    size: int = 0
    # Bytes uploaded over all runs, including what earlier runs finished
    progress_size: int = 0
    total_files: int = 0
    total_size: int = 0

    def record_resumed(self, count: int, size: int) -> None:
        """Account for work a previous run already finished."""
        self.count += count
        self.progress_size += size

    def record_uploaded(self, count: int, size: int) -> None:
        self.count += count
        self.size += size
        self.progress_size += size

    @property
    def percent(self) -> float:
        if self.total_size == 0:
            return 100.0
        return self.progress_size / self.total_size * 100


class ProgressReporter:
    """Log ``Upload:Progress`` every ``interval`` seconds while active."""

    def __init__(self, stats: UploadStats, interval: float = 5.0):
        self.stats = stats
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self._start_time = 0.0

    async def __aenter__(self) -> "ProgressReporter":
        self._start_time = time.monotonic()
        self._task = asyncio.create_task(self._run())
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.report()

    def report(self) -> None:
        moved_mb = self.stats.size / OneMb
        total_time = max(time.monotonic() - self._start_time, 1e-9)
        logger.info(
            "Upload:Progress count=%d total=%d percent=%.3f movedMb=%.2f speed=%.2f",
            self.stats.count,
            self.stats.total_files,
            self.stats.percent,
            moved_mb,
            moved_mb / total_time,
        )
