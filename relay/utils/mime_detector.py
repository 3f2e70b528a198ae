"""
Input type detection for uploaded files.

This module turns the three signals available for an upload (the
content-type the client declared, a content sniff, the filename extension)
into one canonical MIME type, with a fixed precedence and a set of
extension overrides for formats whose upload metadata is routinely wrong.
"""

import logging
import mimetypes
from pathlib import Path
from typing import Optional, Union

from ..config import EXTENSION_RULES

# Try to import python-magic for content-based detection
try:
    import magic
    MAGIC_AVAILABLE = True
except ImportError:
    magic = None
    MAGIC_AVAILABLE = False

logger = logging.getLogger(__name__)

UNKNOWN_TYPE = "unknown"

SNIFF_BYTES = 2048

# Extensions mimetypes does not know, or knows under a different name
MIME_TYPE_MAPPINGS = {
    # Document formats
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "odt": "application/vnd.oasis.opendocument.text",
    "ods": "application/vnd.oasis.opendocument.spreadsheet",
    "odp": "application/vnd.oasis.opendocument.presentation",
    "rtf": "application/rtf",

    # Text formats
    "txt": "text/plain",
    "html": "text/html",
    "htm": "text/html",
    "md": "text/markdown",
    "markdown": "text/markdown",

    # E-book formats
    "epub": "application/epub+zip",
    "mobi": "application/x-mobipocket-ebook",
    "azw": "application/x-mobipocket-ebook",
    "azw3": "application/x-mobipocket-ebook",

    # Image formats
    "svg": "image/svg+xml",
    "webp": "image/webp",
    "heic": "image/heic",
    "heif": "image/heif",
    "avif": "image/avif",

    # Audio / video formats
    "m4a": "audio/mp4",
    "flac": "audio/flac",
    "opus": "audio/ogg",
    "mkv": "video/x-matroska",
    "webm": "video/webm",

    # Archive formats
    "7z": "application/x-7z-compressed",
    "rar": "application/x-rar-compressed",
}

# Extensions that decide the type whenever the other signals disagree
EXTENSION_OVERRIDES = {
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".html": "text/html",
    ".htm": "text/html",
    ".txt": "text/plain",
    ".epub": "application/epub+zip",
    ".mobi": "application/x-mobipocket-ebook",
    ".azw3": "application/x-mobipocket-ebook",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".doc": "application/msword",
    ".odt": "application/vnd.oasis.opendocument.text",
}

GENERIC_MIME_TYPES = frozenset({
    "",
    UNKNOWN_TYPE,
    "application/octet-stream",
    "binary/octet-stream",
    "application/unknown",
    "application/x-unknown",
})


def normalize_mime_type(mime_type: Optional[str]) -> str:
    """Lower-case a MIME type and drop parameters such as charset."""
    if not mime_type:
        return ""
    return mime_type.split(";", 1)[0].strip().lower()


def is_generic_type(mime_type: Optional[str]) -> bool:
    return normalize_mime_type(mime_type) in GENERIC_MIME_TYPES


def file_extension(filename: Optional[str]) -> str:
    """Return the lower-cased final suffix of a filename, with its dot."""
    if not filename:
        return ""
    return Path(filename.replace("\\", "/")).suffix.lower()


class MimeTypeDetector:
    """
    Canonical input type resolution.

    Precedence:
    1. Declared content-type, unless generic
    2. Sniffed content signature (python-magic), unless generic
    3. Filename extension (mimetypes plus custom mappings)
    4. "unknown"

    Extension overrides are applied to the result of that chain.
    """

    def __init__(self):
        mimetypes.init()
        for ext, mime_type in MIME_TYPE_MAPPINGS.items():
            mimetypes.add_type(mime_type, f".{ext}")

    def detect_from_content(self, content: bytes) -> Optional[str]:
        """
        Detect MIME type from raw bytes using python-magic.

        Returns:
            Detected MIME type, or None when magic is unavailable or fails
        """
        if not MAGIC_AVAILABLE or not content:
            return None

        try:
            detected_mime = magic.from_buffer(content, mime=True)
        except Exception as e:
            logger.debug(f"Content-based detection failed: {e}")
            return None

        if detected_mime:
            logger.debug(f"Content-based detection: {detected_mime}")
            return normalize_mime_type(detected_mime)
        return None

    def detect_from_file(self, path: Union[str, Path]) -> Optional[str]:
        """Sniff the leading bytes of a file on disk."""
        if not MAGIC_AVAILABLE:
            return None
        try:
            with open(path, "rb") as handle:
                head = handle.read(SNIFF_BYTES)
        except OSError as e:
            logger.warning(f"Could not read {path} for type sniffing: {e}")
            return None
        return self.detect_from_content(head)

    def detect_from_extension(self, filename: Optional[str]) -> Optional[str]:
        """
        Detect MIME type from the filename extension.

        Returns:
            MIME type string or None
        """
        extension = file_extension(filename)
        if not extension:
            return None

        mime_type, _ = mimetypes.guess_type(f"file{extension}")
        if mime_type:
            logger.debug(f"Extension-based detection: {extension} -> {mime_type}")
            return normalize_mime_type(mime_type)
        return None

    def resolve_input_type(
        self,
        declared_type: Optional[str],
        sniffed_type: Optional[str],
        filename: Optional[str],
    ) -> str:
        """
        Resolve the canonical input type for an upload.

        Args:
            declared_type: Content-type sent by the client
            sniffed_type: Type detected from the file content, if any
            filename: Name the user uploaded the file under

        Returns:
            Canonical MIME type, possibly still generic or "unknown"
        """
        declared = normalize_mime_type(declared_type)
        sniffed = normalize_mime_type(sniffed_type)

        if declared and declared not in GENERIC_MIME_TYPES:
            resolved = declared
        elif sniffed and sniffed not in GENERIC_MIME_TYPES:
            resolved = sniffed
        else:
            resolved = self.detect_from_extension(filename) or UNKNOWN_TYPE

        override = EXTENSION_OVERRIDES.get(file_extension(filename))
        if override and override != resolved:
            logger.warning(
                f"Overriding MIME type {resolved} -> {override} based on extension of '{filename}'"
            )
            resolved = override

        logger.debug(
            f"Resolved input type {resolved} (declared: {declared_type}, sniffed: {sniffed_type}, name: {filename})"
        )
        return resolved

    def is_usable(self, mime_type: str, filename: Optional[str]) -> bool:
        """
        Whether a resolved type is specific enough to pick a rule from.

        Generic types still count when the extension names a known container.
        """
        if not is_generic_type(mime_type):
            return True
        return file_extension(filename) in EXTENSION_RULES


# Global detector instance
_detector_instance = None


def get_mime_detector() -> MimeTypeDetector:
    """Get the global MIME type detector instance."""
    global _detector_instance
    if _detector_instance is None:
        _detector_instance = MimeTypeDetector()
    return _detector_instance


def resolve_input_type(
    declared_type: Optional[str],
    sniffed_type: Optional[str],
    filename: Optional[str],
) -> str:
    """Convenience function resolving an input type with the global detector."""
    return get_mime_detector().resolve_input_type(declared_type, sniffed_type, filename)
