"""
Retention sweep for uploaded and converted files.

Files older than the configured maximum age are deleted from the upload and
output directories on a fixed interval. Deleted outputs are evicted from the
download registry so the download route reports them as gone.
"""

import asyncio
import os
import time
from pathlib import Path
from typing import Callable, List, Optional, Union

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .download_registry import DownloadRegistry
from .logging_config import get_logger

logger = get_logger(__name__)

SWEEP_JOB_ID = "retention_sweep"


def sweep_directory(
    directory: Union[str, Path],
    max_age_seconds: float,
    now: Optional[float] = None,
    on_delete: Optional[Callable[[str], object]] = None,
) -> List[str]:
    """
    Delete regular files in a directory whose mtime is older than max_age_seconds.

    Files that disappear mid-sweep are skipped; other errors are logged and
    the sweep moves on to the next file.

    Args:
        directory: Directory to sweep (not recursed into)
        max_age_seconds: Age beyond which a file is deleted
        now: Reference timestamp, defaults to the current time
        on_delete: Called with the name of every deleted file

    Returns:
        Names of the deleted files
    """
    directory = Path(directory)
    reference = time.time() if now is None else now
    deleted: List[str] = []

    try:
        entries = list(os.scandir(directory))
    except FileNotFoundError:
        logger.debug(f"Retention sweep skipped missing directory {directory}")
        return deleted
    except OSError as e:
        logger.error(f"Error reading directory {directory} for cleanup: {e}")
        return deleted

    for entry in entries:
        try:
            if not entry.is_file(follow_symlinks=False):
                continue
            if reference - entry.stat(follow_symlinks=False).st_mtime <= max_age_seconds:
                continue
            os.remove(entry.path)
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.error(f"Error deleting old file {entry.path}: {e}")
            continue

        logger.info(f"Deleted old file: {entry.path}")
        deleted.append(entry.name)
        if on_delete is not None:
            on_delete(entry.name)

    return deleted


class RetentionScheduler:
    """
    Periodic sweep of the upload and output directories.

    Args:
        upload_dir: Directory uploads are stored in
        output_dir: Directory converted outputs are stored in
        registry: Registry to evict swept outputs from
        max_age_hours: Files older than this are deleted
        interval_hours: Time between sweeps
    """

    def __init__(
        self,
        upload_dir: Union[str, Path],
        output_dir: Union[str, Path],
        registry: Optional[DownloadRegistry] = None,
        max_age_hours: float = 6.0,
        interval_hours: float = 6.0,
    ):
        self.upload_dir = Path(upload_dir)
        self.output_dir = Path(output_dir)
        self.registry = registry
        self.max_age_seconds = max_age_hours * 3600
        self.interval_seconds = max(interval_hours * 3600, 1)

        self._scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
            timezone="UTC",
        )
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    def sweep(self, now: Optional[float] = None) -> List[str]:
        """Run one sweep synchronously. Returns the names of deleted files."""
        logger.info("Running scheduled cleanup of old files...")
        on_delete = self.registry.evict if self.registry is not None else None
        deleted = sweep_directory(self.upload_dir, self.max_age_seconds, now=now)
        deleted += sweep_directory(self.output_dir, self.max_age_seconds, now=now, on_delete=on_delete)
        logger.info(f"Cleanup finished, {len(deleted)} file(s) removed")
        return deleted

    async def _sweep_job(self) -> None:
        await asyncio.to_thread(self.sweep)

    def start(self) -> None:
        """Register the interval job and start the scheduler on the running loop."""
        if self._started:
            return
        self._scheduler.add_job(
            self._sweep_job,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=SWEEP_JOB_ID,
            name=SWEEP_JOB_ID,
            replace_existing=True,
        )
        self._scheduler.start()
        self._started = True
        logger.info(
            f"Retention sweep scheduled every {self.interval_seconds:g}s "
            f"(max age {self.max_age_seconds:g}s)"
        )

    def shutdown(self, wait: bool = False) -> None:
        if self._started:
            self._scheduler.shutdown(wait=wait)
            self._started = False
            logger.info("Retention sweep stopped")

