"""
Per-file conversion jobs.

A job carries one uploaded file through type resolution, rule resolution and
execution, and always ends in a JobResult. Failures are reported, never
raised, so one bad file in a batch cannot take its siblings down with it.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..config import ConversionRule
from .conversion_core import ConversionExecutor
from .conversion_lookup import find_rule, is_archive_target
from .error_handling import (
    ConversionError,
    ErrorCode,
    UndeterminedInputTypeError,
    UnsupportedConversionError,
    log_conversion_error,
)
from .logging_config import get_logger
from .mime_detector import MimeTypeDetector, get_mime_detector
from .upload_storage import discard_file

logger = get_logger(__name__)


@dataclass
class JobResult:
    """Outcome of one job, in the shape returned to the client."""
    original_name: str
    success: bool
    download_id: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def succeeded(cls, original_name: str, download_id: str) -> "JobResult":
        return cls(
            original_name=original_name,
            success=True,
            download_id=download_id,
            message="Conversion successful",
        )

    @classmethod
    def failed(cls, original_name: str, error: str, error_code: ErrorCode) -> "JobResult":
        return cls(
            original_name=original_name,
            success=False,
            error=error,
            error_code=error_code.value,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "originalName": self.original_name,
            "success": self.success,
            "downloadId": self.download_id,
        }
        if self.success:
            data["message"] = self.message
        else:
            data["error"] = self.error
            data["errorCode"] = self.error_code
        return data


@dataclass
class ConversionJob:
    """One uploaded file and everything learned about it along the way."""
    input_path: Path
    original_name: str
    declared_type: Optional[str]
    target_format: str
    sniffed_type: Optional[str] = None
    canonical_type: Optional[str] = None
    rule: Optional[ConversionRule] = None
    output_id: Optional[str] = None
    output_path: Optional[Path] = None
    result: Optional[JobResult] = None


class ConversionJobRunner:
    """
    Runs conversion jobs, singly or as a batch on a bounded thread pool.

    Args:
        executor: ConversionExecutor that performs the tool invocation
        detector: MimeTypeDetector, defaults to the global instance
        max_workers: Upper bound on jobs converting at the same time
    """

    def __init__(
        self,
        executor: ConversionExecutor,
        detector: Optional[MimeTypeDetector] = None,
        max_workers: int = 4,
    ):
        self.executor = executor
        self.detector = detector or get_mime_detector()
        self.max_workers = max(1, max_workers)
        self._pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="convert")

    def run(self, job: ConversionJob) -> JobResult:
        """Run a job to completion. Always returns a result."""
        try:
            job.result = self._process(job)
        except ConversionError as e:
            log_conversion_error(e, job.original_name)
            job.result = JobResult.failed(job.original_name, e.reason, e.error_code)
        except Exception as e:
            logger.exception(f"Unexpected error converting '{job.original_name}': {e}")
            job.result = JobResult.failed(
                job.original_name,
                "Internal server error during conversion.",
                ErrorCode.INTERNAL_ERROR,
            )
        finally:
            discard_file(job.input_path, "input file")
        return job.result

    def _process(self, job: ConversionJob) -> JobResult:
        target = job.target_format.strip().lower()
        logger.info(f"Processing '{job.original_name}' -> {target}")

        job.sniffed_type = self.detector.detect_from_file(job.input_path)
        job.canonical_type = self.detector.resolve_input_type(
            job.declared_type, job.sniffed_type, job.original_name
        )

        if not is_archive_target(target) and not self.detector.is_usable(job.canonical_type, job.original_name):
            raise UndeterminedInputTypeError(job.original_name)

        job.rule = find_rule(job.canonical_type, target, job.original_name)
        if job.rule is None:
            raise UnsupportedConversionError(job.canonical_type, target)
        logger.info(f"Using rule {job.rule.kind.value} for {job.canonical_type} -> {target}")

        outcome = self.executor.execute(job.rule, job.input_path, target, job.original_name)
        job.output_id = outcome.output_id
        job.output_path = outcome.output_path
        return JobResult.succeeded(job.original_name, outcome.output_id)

    async def run_batch(self, jobs: Sequence[ConversionJob]) -> List[JobResult]:
        """Run jobs concurrently off the event loop; results keep submission order."""
        if not jobs:
            return []
        loop = asyncio.get_running_loop()
        futures = [loop.run_in_executor(self._pool, self.run, job) for job in jobs]
        return list(await asyncio.gather(*futures))

    def shutdown(self) -> None:
        self._pool.shutdown(wait=True)
