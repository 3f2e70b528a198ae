"""
Conversion execution for a resolved rule.

Builds the exact argument vector, runs the external program without a
shell, interprets its exit status and makes sure the result ends up under an
opaque name in the output directory. LibreOffice-style batch converters
ignore the output filename they are given and name their output after the
input instead, so for them execution is two-phase: run, then locate. Each
batch run also gets its own throwaway user profile, since LibreOffice allows
only one running instance per profile.
"""

import logging
import os
import re
import shutil
import subprocess
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

from ..config import BATCH_CONVERTER_TOOLS, ConversionRule
from .download_registry import DownloadRegistry, build_download_name
from .error_handling import (
    ConversionConfigurationError,
    ConversionTimeoutError,
    OutputReconciliationError,
    ToolExecutionError,
    ToolLaunchError,
)
from .logging_config import get_logger, log_performance
from .upload_storage import discard_file

logger = get_logger(__name__)

STDERR_EXCERPT_LIMIT = 500

_SAFE_EXTENSION = re.compile(r"^[a-z0-9]+(?:\.[a-z0-9]+)*$")

# Diagnostics that mean the source is password protected or DRM locked
PROTECTED_SIGNATURES = re.compile(
    r"password|encrypt|\bdrm\b|copy[- ]?protect|protected document|permission to (?:copy|extract)",
    re.IGNORECASE,
)


def profile_flag(profile_dir: Union[str, Path]) -> str:
    """LibreOffice option pointing the instance at a private user profile."""
    return f"-env:UserInstallation={Path(profile_dir).as_uri()}"


@dataclass
class ConversionOutcome:
    """A successful run: the artifact and how it was produced."""
    output_id: str
    output_path: Path
    download_name: Optional[str]
    tool: str
    args: List[str] = field(default_factory=list)
    located_via_scan: bool = False
    stdout: str = ""
    stderr: str = ""


class ConversionExecutor:
    """
    Runs external converters for resolved rules.

    Args:
        output_dir: Directory converted artifacts are placed in
        registry: Optional registry successful outputs are recorded in
        timeout: Seconds to wait for a tool before killing it (None waits forever)
    """

    def __init__(
        self,
        output_dir: Union[str, Path],
        registry: Optional[DownloadRegistry] = None,
        timeout: Optional[float] = None,
    ):
        self.output_dir = Path(output_dir)
        self.registry = registry
        self.timeout = timeout

    @log_performance(logger, level=logging.DEBUG)
    def execute(
        self,
        rule: ConversionRule,
        input_path: Union[str, Path],
        target_format: str,
        original_name: Optional[str] = None,
    ) -> ConversionOutcome:
        """
        Convert one input file according to a rule.

        The input file is deleted once the tool has finished or failed to start.

        Raises:
            ConversionError subclasses describing why the conversion failed
        """
        input_path = Path(input_path)
        profile_dir = None
        try:
            extension = self._resolve_extension(rule, target_format)
            output_id = f"{uuid.uuid4()}.{extension}"
            output_path = self.output_dir / output_id

            tool = rule.tool_for(target_format)
            if not tool:
                raise ConversionConfigurationError(
                    f"Rule {rule.kind.value} selected no tool for '{target_format}'"
                )
            batch = tool in BATCH_CONVERTER_TOOLS

            destination = str(self.output_dir) if batch else str(output_path)
            args = rule.build_args(str(input_path), destination, target_format, original_name)
            if not args:
                raise ConversionConfigurationError(
                    f"Rule {rule.kind.value} built no arguments for '{target_format}'"
                )

            predicted_path = self.output_dir / f"{input_path.stem}.{extension}" if batch else None
            if batch:
                profile_dir = tempfile.mkdtemp(prefix="filerelay-lo-profile-")
                args = [profile_flag(profile_dir), *args]
            try:
                completed = self._run_tool(tool, args)
            except ConversionTimeoutError:
                self._discard_partial_output(output_path, predicted_path)
                raise
        finally:
            discard_file(input_path, "input file")
            if profile_dir is not None:
                shutil.rmtree(profile_dir, ignore_errors=True)

        self._log_streams(tool, completed)

        if completed.returncode != 0:
            self._discard_partial_output(output_path, predicted_path)
            raise self._execution_error(tool, completed)

        located_via_scan = False
        if batch:
            located, located_via_scan = self._locate_batch_output(input_path, extension)
            self._move_into_place(located, output_path)
        elif not output_path.is_file():
            raise OutputReconciliationError(
                f"{tool} exited successfully but wrote no output to {output_id}"
            )

        download_name = build_download_name(original_name, extension, rule.keeps_source_name)
        if self.registry is not None:
            self.registry.register(output_id, download_name)

        logger.info(f"Conversion successful: {output_id}")
        return ConversionOutcome(
            output_id=output_id,
            output_path=output_path,
            download_name=download_name,
            tool=tool,
            args=args,
            located_via_scan=located_via_scan,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

    def _resolve_extension(self, rule: ConversionRule, target_format: str) -> str:
        extension = (rule.extension_for(target_format) or "").strip().lower()
        if not extension or extension == "unknown" or not _SAFE_EXTENSION.match(extension):
            raise ConversionConfigurationError(
                f"Invalid output extension '{extension}' for format '{target_format}'"
            )
        return extension

    def _run_tool(self, tool: str, args: List[str]) -> subprocess.CompletedProcess:
        logger.info(f"Executing: {tool} {' '.join(args)}")
        try:
            return subprocess.run(
                [tool, *args],
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            logger.error(f"Conversion tool '{tool}' timed out after {self.timeout}s")
            raise ConversionTimeoutError(tool, self.timeout) from e
        except OSError as e:
            logger.error(f"Failed to start subprocess '{tool}'. Is it installed and on PATH? {e}")
            raise ToolLaunchError(tool, e) from e

    def _log_streams(self, tool: str, completed: subprocess.CompletedProcess) -> None:
        logger.info(f"{tool} exited with code {completed.returncode}")
        if completed.stdout:
            logger.debug(f"{tool} stdout: {completed.stdout}")
        if completed.stderr:
            logger.debug(f"{tool} stderr: {completed.stderr}")

    def _execution_error(self, tool: str, completed: subprocess.CompletedProcess) -> ToolExecutionError:
        stderr = (completed.stderr or "").strip()
        protected = bool(PROTECTED_SIGNATURES.search(stderr))
        logger.warning(f"Conversion failed with code {completed.returncode}. Stderr: {stderr[:STDERR_EXCERPT_LIMIT]}")
        return ToolExecutionError(
            tool,
            completed.returncode,
            stderr_excerpt=stderr[:STDERR_EXCERPT_LIMIT],
            protected=protected,
        )

    def _locate_batch_output(self, input_path: Path, extension: str) -> Tuple[Path, bool]:
        """
        Find the file a batch converter produced for an input.

        Returns:
            (path, located_via_scan)
        """
        stem = input_path.stem
        predicted = self.output_dir / f"{stem}.{extension}"
        if predicted.is_file():
            return predicted, False

        suffix = f".{extension}"
        matches = sorted(
            entry for entry in self.output_dir.iterdir()
            if entry.is_file()
            and entry.name.startswith(stem)
            and entry.name.lower().endswith(suffix)
        )
        if not matches:
            raise OutputReconciliationError(
                f"Conversion tool exited successfully but no output named like '{predicted.name}' was found"
            )
        if len(matches) > 1:
            for match in matches:
                discard_file(match, "ambiguous output")
            raise OutputReconciliationError(
                f"Conversion tool produced {len(matches)} candidate outputs for '{stem}'"
            )

        logger.warning(f"Predicted output {predicted.name} missing, using {matches[0].name}")
        return matches[0], True

    def _move_into_place(self, source: Path, destination: Path) -> None:
        try:
            os.replace(source, destination)
        except OSError as e:
            logger.error(f"Error renaming output from {source} to {destination}: {e}")
            discard_file(source, "unmovable output")
            raise OutputReconciliationError(f"Could not move converted output into place: {e}") from e
        logger.debug(f"Renamed output to {destination}")

    def _discard_partial_output(self, output_path: Path, predicted_path: Optional[Path]) -> None:
        discard_file(output_path, "failed output")
        if predicted_path is not None:
            discard_file(predicted_path, "failed output")
