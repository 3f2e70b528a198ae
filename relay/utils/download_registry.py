"""
Registry of finished conversions offered for download.

Maps an opaque output identifier to the filename the user should receive.
Shared between conversion workers, the download route and the retention
sweep, so every access goes through a lock.
"""

import threading
from pathlib import Path
from typing import Dict, Optional

from .logging_config import get_logger

logger = get_logger(__name__)


def build_download_name(original_name: Optional[str], extension: str, keep_source_name: bool = False) -> Optional[str]:
    """
    Derive the human-readable name a converted file is offered under.

    ``report.docx`` converted to ``pdf`` becomes ``report.pdf``; with
    ``keep_source_name`` (archives) packing it into ``zip`` gives
    ``report.docx.zip``.
    """
    if not original_name:
        return None
    name = Path(original_name.replace("\\", "/")).name
    if not name:
        return None
    if keep_source_name:
        return f"{name}.{extension}"
    stem = Path(name).stem or name
    return f"{stem}.{extension}"


class DownloadRegistry:
    """Thread-safe output id -> download name store."""

    def __init__(self):
        self._entries: Dict[str, str] = {}
        self._lock = threading.Lock()

    def register(self, output_id: str, download_name: Optional[str]) -> None:
        with self._lock:
            self._entries[output_id] = download_name or output_id
        logger.debug(f"Registered download {output_id} as '{download_name}'")

    def lookup(self, output_id: str) -> Optional[str]:
        with self._lock:
            return self._entries.get(output_id)

    def evict(self, output_id: str) -> bool:
        """Drop an entry; returns True if it existed. Used as the sweep hook."""
        with self._lock:
            removed = self._entries.pop(output_id, None) is not None
        if removed:
            logger.debug(f"Evicted download registration {output_id}")
        return removed

    def __contains__(self, output_id: str) -> bool:
        with self._lock:
            return output_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
