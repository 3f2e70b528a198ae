"""
Upload storage for incoming conversion requests.

Uploaded files are written to the upload directory under an opaque name that
keeps only a sanitized copy of the original extension (external converters
use it to recognise the input format). Helpers for best-effort file removal
live here as well; a failed cleanup is logged and never escalated.
"""

import os
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union

from fastapi import UploadFile

from .logging_config import get_logger

logger = get_logger(__name__)

CHUNK_SIZE = 1024 * 1024

_SAFE_SUFFIX = re.compile(r"^\.[a-z0-9]{1,10}$")


class UploadTooLargeError(Exception):
    """Raised when an upload exceeds the configured size limit."""

    def __init__(self, filename: Optional[str], max_bytes: int):
        super().__init__(f"File '{filename}' exceeds the maximum size of {max_bytes} bytes")
        self.filename = filename
        self.max_bytes = max_bytes


@dataclass
class StoredUpload:
    """An upload materialized on disk."""
    path: Path
    original_name: str
    declared_type: Optional[str]
    size: int


def discard_file(file_path: Union[str, Path, None], label: str = "file") -> bool:
    """Remove a file if present. Returns True if something was deleted."""
    if not file_path:
        return False
    try:
        os.remove(file_path)
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Failed to clean up {label} {file_path}: {e}")
        return False
    logger.debug(f"Cleaned up {label}: {file_path}")
    return True


def discard_files(file_paths: Iterable[Union[str, Path]], label: str = "file") -> None:
    for path in file_paths:
        discard_file(path, label)


class UploadStorage:
    """Writes uploads into the upload directory under opaque names."""

    def __init__(self, upload_dir: Union[str, Path]):
        self.upload_dir = Path(upload_dir)

    def generate_filename(self, original_filename: Optional[str] = None) -> str:
        """Random name carrying the original extension when it is safe to reuse."""
        suffix = ""
        if original_filename:
            candidate = Path(original_filename.replace("\\", "/")).suffix.lower()
            if _SAFE_SUFFIX.match(candidate):
                suffix = candidate
        return f"{uuid.uuid4()}{suffix}"

    async def save_upload(self, upload: UploadFile, max_bytes: int) -> StoredUpload:
        """
        Stream an upload to disk, enforcing the size limit while copying.

        Raises:
            UploadTooLargeError: If the upload is larger than max_bytes
        """
        original_name = upload.filename or "upload"
        target = self.upload_dir / self.generate_filename(original_name)
        written = 0

        try:
            with open(target, "wb") as handle:
                while True:
                    chunk = await upload.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > max_bytes:
                        raise UploadTooLargeError(original_name, max_bytes)
                    handle.write(chunk)
        except BaseException:
            discard_file(target, "partial upload")
            raise
        finally:
            await upload.close()

        logger.debug(f"Stored upload '{original_name}' at {target} ({written} bytes)")
        return StoredUpload(
            path=target,
            original_name=original_name,
            declared_type=upload.content_type,
            size=written,
        )
