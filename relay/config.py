"""
Conversion configuration for the /convert endpoint.

This module defines the rule table: for every input kind, which target
formats it can be turned into, which external program does the work, how that
program is invoked and what extension the result carries. The builders are
pure functions; they only describe the invocation.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Union


# External programs whose output name is derived from the input's base name
# inside an output directory, ignoring any explicit target filename.
BATCH_CONVERTER_TOOLS = frozenset({"soffice", "libreoffice"})

ARCHIVE_TARGETS = ("zip", "tar", "tar.gz", "tar.bz2", "7z")

PANDOC_PDF_ENGINE = "xelatex"

ArgsBuilder = Callable[[str, str, str, Optional[str]], List[str]]
ToolSelector = Union[str, Callable[[str], str]]


class InputKind(str, Enum):
    """Canonical input kinds the rule table is keyed on."""
    IMAGE = "image"
    SVG = "image/svg+xml"
    AUDIO = "audio"
    VIDEO = "video"
    PDF = "application/pdf"
    DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    ODT = "application/vnd.oasis.opendocument.text"
    RTF = "application/rtf"
    MSWORD = "application/msword"
    PLAIN_TEXT = "text/plain"
    MARKDOWN = "text/markdown"
    HTML = "text/html"
    EPUB = "application/epub+zip"
    MOBI = "application/x-mobipocket-ebook"
    SPREADSHEET = "spreadsheet"
    PRESENTATION = "presentation"
    ARCHIVE_CREATE = "archive-create"


def _same_ext(target: str) -> str:
    return target


def _fixed_ext(ext: str) -> Callable[[str], str]:
    def resolve(target: str) -> str:
        return ext
    return resolve


@dataclass(frozen=True)
class ConversionRule:
    """One entry of the rule table."""

    kind: InputKind
    valid_targets: FrozenSet[str]
    tool: ToolSelector
    build_args: ArgsBuilder
    output_ext: Callable[[str], str] = _same_ext
    keeps_source_name: bool = False
    description: str = ""

    def supports(self, target_format: str) -> bool:
        return target_format in self.valid_targets

    def tool_for(self, target_format: str) -> str:
        if callable(self.tool):
            return self.tool(target_format)
        return self.tool

    def extension_for(self, target_format: str) -> str:
        return self.output_ext(target_format)

    def is_batch_converter(self, target_format: str) -> bool:
        return self.tool_for(target_format) in BATCH_CONVERTER_TOOLS


# ===== ARGUMENT BUILDERS =====

def _magick_args(input_path, output_path, target, original_name=None):
    return ["convert", input_path, output_path]


def _magick_vector_args(input_path, output_path, target, original_name=None):
    return ["convert", "-density", "150", input_path, output_path]


def _ffmpeg_audio_args(input_path, output_path, target, original_name=None):
    return ["-i", input_path, "-vn", "-ar", "44100", "-ac", "2", output_path]


_H264_AAC = ["-c:v", "libx264", "-preset", "medium", "-crf", "23", "-c:a", "aac", "-b:a", "128k"]

_VIDEO_TARGET_ARGS = {
    "gif-anim": ["-vf", "fps=15,scale=480:-1:flags=lanczos", "-loop", "0"],
    "mp3-extract": ["-vn", "-q:a", "0", "-map", "a"],
    "mp4-basic": _H264_AAC + ["-movflags", "+faststart"],
    "mkv": _H264_AAC,
    "mov": _H264_AAC + ["-movflags", "+faststart"],
    "avi": ["-c:v", "libxvid", "-q:v", "4", "-c:a", "libmp3lame", "-q:a", "4"],
    "webm": ["-c:v", "libvpx-vp9", "-crf", "30", "-b:v", "0", "-c:a", "libopus", "-b:a", "128k"],
}

_VIDEO_EXT_OVERRIDES = {"gif-anim": "gif", "mp3-extract": "mp3", "mp4-basic": "mp4"}


def _ffmpeg_video_args(input_path, output_path, target, original_name=None):
    codec_args = _VIDEO_TARGET_ARGS.get(target)
    if codec_args is None:
        return []
    return ["-i", input_path] + list(codec_args) + [output_path]


def _video_ext(target: str) -> str:
    return _VIDEO_EXT_OVERRIDES.get(target, target)


def _pdf_tool(target: str) -> str:
    return "pdftotext" if target == "txt" else "magick"


def _pdf_args(input_path, output_path, target, original_name=None):
    if target == "txt":
        return [input_path, output_path]
    if target in ("png", "jpg"):
        # First page only
        return ["convert", "-density", "150", f"{input_path}[0]", "-quality", "90", output_path]
    return []


def _soffice_args(input_path, output_dir, target, original_name=None):
    return ["--headless", "--convert-to", target, "--outdir", output_dir, input_path]


def _soffice_pdf_args(input_path, output_dir, target, original_name=None):
    return ["--headless", "--convert-to", "pdf", "--outdir", output_dir, input_path]


def _pandoc_args(input_path, output_path, target, original_name=None):
    args = ["-s", input_path, "-o", output_path]
    if target == "pdf":
        args.append(f"--pdf-engine={PANDOC_PDF_ENGINE}")
    elif target == "txt":
        args.extend(["-t", "plain"])
    return args


def _pandoc_markdown_args(input_path, output_path, target, original_name=None):
    return ["-s", input_path, "--to=markdown-raw_html", "-o", output_path]


def _word_tool(target: str) -> str:
    return "pandoc" if target == "md" else "soffice"


def _word_args(input_path, output_path_or_dir, target, original_name=None):
    if target == "md":
        return _pandoc_markdown_args(input_path, output_path_or_dir, target, original_name)
    return _soffice_args(input_path, output_path_or_dir, target, original_name)


_RTF_PANDOC_TARGETS = frozenset({"md", "html", "epub", "txt"})


def _rtf_tool(target: str) -> str:
    return "pandoc" if target in _RTF_PANDOC_TARGETS else "soffice"


def _rtf_args(input_path, output_path_or_dir, target, original_name=None):
    if target in _RTF_PANDOC_TARGETS:
        return _pandoc_args(input_path, output_path_or_dir, target, original_name)
    return _soffice_args(input_path, output_path_or_dir, target, original_name)


def _ebook_args(input_path, output_path, target, original_name=None):
    return [input_path, output_path]


def _archive_tool(target: str) -> str:
    if target.startswith("tar"):
        return "tar"
    if target == "7z":
        return "7z"
    return "zip"


_TAR_FLAGS = {"tar": "-cvf", "tar.gz": "-czvf", "tar.bz2": "-cjvf"}


def _archive_args(input_path, output_path, target, original_name=None):
    if target == "zip":
        return ["-j", output_path, input_path]
    if target in _TAR_FLAGS:
        return [
            _TAR_FLAGS[target], output_path,
            "-C", os.path.dirname(input_path) or ".", os.path.basename(input_path),
        ]
    if target == "7z":
        return ["a", output_path, input_path]
    return []


# ===== RULE TABLE =====

_WORD_TARGETS = {"pdf", "txt", "html", "rtf", "md", "epub"}

CONVERSION_RULES: Dict[InputKind, ConversionRule] = {
    # Images
    InputKind.IMAGE: ConversionRule(
        kind=InputKind.IMAGE,
        valid_targets=frozenset({"png", "jpg", "webp", "gif", "bmp", "tiff", "ico", "pdf"}),
        tool="magick",
        build_args=_magick_args,
        description="Raster image conversion with ImageMagick",
    ),
    InputKind.SVG: ConversionRule(
        kind=InputKind.SVG,
        valid_targets=frozenset({"png", "jpg", "webp", "pdf"}),
        tool="magick",
        build_args=_magick_vector_args,
        description="Vector image rasterization with ImageMagick",
    ),

    # Audio / video
    InputKind.AUDIO: ConversionRule(
        kind=InputKind.AUDIO,
        valid_targets=frozenset({"mp3", "wav", "ogg", "m4a", "flac", "aac", "wma", "aiff"}),
        tool="ffmpeg",
        build_args=_ffmpeg_audio_args,
        description="Audio transcoding with ffmpeg",
    ),
    InputKind.VIDEO: ConversionRule(
        kind=InputKind.VIDEO,
        valid_targets=frozenset(_VIDEO_TARGET_ARGS),
        tool="ffmpeg",
        build_args=_ffmpeg_video_args,
        output_ext=_video_ext,
        description="Video transcoding, GIF rendering and audio extraction with ffmpeg",
    ),

    # Documents
    InputKind.PDF: ConversionRule(
        kind=InputKind.PDF,
        valid_targets=frozenset({"txt", "png", "jpg"}),
        tool=_pdf_tool,
        build_args=_pdf_args,
        description="PDF text extraction (pdftotext) or first-page render (ImageMagick)",
    ),
    InputKind.DOCX: ConversionRule(
        kind=InputKind.DOCX,
        valid_targets=frozenset(_WORD_TARGETS | {"odt"}),
        tool=_word_tool,
        build_args=_word_args,
        description="Word document via LibreOffice, Markdown via Pandoc",
    ),
    InputKind.ODT: ConversionRule(
        kind=InputKind.ODT,
        valid_targets=frozenset(_WORD_TARGETS | {"docx"}),
        tool=_word_tool,
        build_args=_word_args,
        description="OpenDocument text via LibreOffice, Markdown via Pandoc",
    ),
    InputKind.MSWORD: ConversionRule(
        kind=InputKind.MSWORD,
        valid_targets=frozenset(_WORD_TARGETS | {"odt", "docx"}),
        tool=_word_tool,
        build_args=_word_args,
        description="Legacy Word document via LibreOffice, Markdown via Pandoc",
    ),
    InputKind.RTF: ConversionRule(
        kind=InputKind.RTF,
        valid_targets=frozenset({"pdf", "txt", "html", "docx", "odt", "md", "epub"}),
        tool=_rtf_tool,
        build_args=_rtf_args,
        description="Rich text via Pandoc (text formats) or LibreOffice (office formats)",
    ),
    InputKind.PLAIN_TEXT: ConversionRule(
        kind=InputKind.PLAIN_TEXT,
        valid_targets=frozenset({"pdf", "html", "md", "epub", "docx"}),
        tool="pandoc",
        build_args=_pandoc_args,
        description="Plain text via Pandoc",
    ),
    InputKind.MARKDOWN: ConversionRule(
        kind=InputKind.MARKDOWN,
        valid_targets=frozenset({"html", "pdf", "epub", "docx", "odt", "rtf", "txt"}),
        tool="pandoc",
        build_args=_pandoc_args,
        description="Markdown via Pandoc",
    ),
    InputKind.HTML: ConversionRule(
        kind=InputKind.HTML,
        valid_targets=frozenset({"pdf", "md", "docx", "odt", "epub", "rtf", "txt"}),
        tool="pandoc",
        build_args=_pandoc_args,
        description="HTML via Pandoc",
    ),

    # E-books
    InputKind.EPUB: ConversionRule(
        kind=InputKind.EPUB,
        valid_targets=frozenset({"mobi", "azw3", "pdf", "docx", "txt", "html", "fb2"}),
        tool="ebook-convert",
        build_args=_ebook_args,
        description="EPUB via calibre ebook-convert",
    ),
    InputKind.MOBI: ConversionRule(
        kind=InputKind.MOBI,
        valid_targets=frozenset({"epub", "azw3", "pdf", "docx", "txt", "html"}),
        tool="ebook-convert",
        build_args=_ebook_args,
        description="MOBI/AZW3 via calibre ebook-convert",
    ),

    # Office families, PDF only
    InputKind.SPREADSHEET: ConversionRule(
        kind=InputKind.SPREADSHEET,
        valid_targets=frozenset({"pdf"}),
        tool="soffice",
        build_args=_soffice_pdf_args,
        output_ext=_fixed_ext("pdf"),
        description="Spreadsheets to PDF via LibreOffice",
    ),
    InputKind.PRESENTATION: ConversionRule(
        kind=InputKind.PRESENTATION,
        valid_targets=frozenset({"pdf"}),
        tool="soffice",
        build_args=_soffice_pdf_args,
        output_ext=_fixed_ext("pdf"),
        description="Presentations to PDF via LibreOffice",
    ),

    # Archive creation, selected by target rather than source
    InputKind.ARCHIVE_CREATE: ConversionRule(
        kind=InputKind.ARCHIVE_CREATE,
        valid_targets=frozenset(ARCHIVE_TARGETS),
        tool=_archive_tool,
        build_args=_archive_args,
        keeps_source_name=True,
        description="Single-file archive creation with zip, tar or 7z",
    ),
}


# ===== FALLBACK TABLES =====

# Known aliases for types that have no rule of their own
MIME_ALIASES: Dict[str, InputKind] = {
    "text/rtf": InputKind.RTF,
    "text/x-markdown": InputKind.MARKDOWN,
    "text/x-md": InputKind.MARKDOWN,
    "image/jpeg": InputKind.IMAGE,
    "image/tiff": InputKind.IMAGE,
    "application/xhtml+xml": InputKind.HTML,
    "application/x-mobi8-ebook": InputKind.MOBI,
    "application/vnd.amazon.ebook": InputKind.MOBI,
    "application/vnd.amazon.mobi8-ebook": InputKind.MOBI,
}

# Main-type prefixes that alias every subtype
MIME_PREFIX_ALIASES: Dict[str, InputKind] = {
    "audio/": InputKind.AUDIO,
    "video/": InputKind.VIDEO,
}

# Types too vague to pick a rule from without looking at the extension
AMBIGUOUS_MIME_TYPES = frozenset({
    "application/octet-stream",
    "binary/octet-stream",
    "application/unknown",
    "application/x-unknown",
    "unknown",
    "application/zip",
    "application/x-zip",
    "application/x-zip-compressed",
})

# Extensions naming a container format precisely enough to pick a rule
EXTENSION_RULES: Dict[str, InputKind] = {
    ".epub": InputKind.EPUB,
    ".mobi": InputKind.MOBI,
    ".azw": InputKind.MOBI,
    ".azw3": InputKind.MOBI,
    ".docx": InputKind.DOCX,
    ".odt": InputKind.ODT,
    ".doc": InputKind.MSWORD,
    ".rtf": InputKind.RTF,
    ".xlsx": InputKind.SPREADSHEET,
    ".xls": InputKind.SPREADSHEET,
    ".ods": InputKind.SPREADSHEET,
    ".pptx": InputKind.PRESENTATION,
    ".ppt": InputKind.PRESENTATION,
    ".odp": InputKind.PRESENTATION,
}

CATEGORY_RULES: Dict[str, InputKind] = {
    "image": InputKind.IMAGE,
    "audio": InputKind.AUDIO,
    "video": InputKind.VIDEO,
    "text": InputKind.PLAIN_TEXT,
}

# Substring markers identifying office-suite families, checked in order
OFFICE_FAMILY_MARKERS = (
    (("opendocument.text", "wordprocessingml", "msword"), InputKind.DOCX),
    (("spreadsheet", "excel", "sheet"), InputKind.SPREADSHEET),
    (("presentation", "powerpoint", "slides"), InputKind.PRESENTATION),
)

# Application types whose content is text despite the main type
TEXTUAL_APPLICATION_TYPES = frozenset({
    "application/json",
    "application/xml",
    "application/javascript",
    "application/x-yaml",
    "application/yaml",
    "application/x-sh",
    "application/x-tex",
    "application/x-latex",
})
