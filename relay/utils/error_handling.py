"""
Centralized error handling for the filerelay API.

This module provides standardized error codes, the conversion exception
hierarchy raised by the dispatch engine, and helpers that turn either into
consistent HTTP responses or log lines.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Union

from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes for consistent error handling."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    NOT_FOUND = "NOT_FOUND"

    # Request validation errors
    MISSING_PARAMETER = "MISSING_PARAMETER"
    INVALID_PARAMETER = "INVALID_PARAMETER"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    TOO_MANY_FILES = "TOO_MANY_FILES"

    # Conversion-specific errors
    CONVERSION_NOT_SUPPORTED = "CONVERSION_NOT_SUPPORTED"
    UNDETERMINED_INPUT_TYPE = "UNDETERMINED_INPUT_TYPE"
    TOOL_LAUNCH_FAILED = "TOOL_LAUNCH_FAILED"
    TOOL_EXECUTION_FAILED = "TOOL_EXECUTION_FAILED"
    SOURCE_PROTECTED = "SOURCE_PROTECTED"
    OUTPUT_RECONCILIATION_FAILED = "OUTPUT_RECONCILIATION_FAILED"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    CONVERSION_TIMEOUT = "CONVERSION_TIMEOUT"


class ErrorSeverity(str, Enum):
    """Error severity levels for logging and response handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Error code to HTTP status code mapping
ERROR_STATUS_MAP: Dict[ErrorCode, int] = {
    # 4xx Client Errors
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.MISSING_PARAMETER: 400,
    ErrorCode.INVALID_PARAMETER: 400,
    ErrorCode.CONVERSION_NOT_SUPPORTED: 400,
    ErrorCode.UNDETERMINED_INPUT_TYPE: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.FILE_TOO_LARGE: 413,
    ErrorCode.TOO_MANY_FILES: 413,
    ErrorCode.SOURCE_PROTECTED: 422,

    # 5xx Server Errors
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.TOOL_LAUNCH_FAILED: 500,
    ErrorCode.OUTPUT_RECONCILIATION_FAILED: 500,
    ErrorCode.CONFIGURATION_ERROR: 500,
    ErrorCode.TOOL_EXECUTION_FAILED: 502,
    ErrorCode.CONVERSION_TIMEOUT: 504,
}

# Error code to severity mapping
ERROR_SEVERITY_MAP: Dict[ErrorCode, ErrorSeverity] = {
    ErrorCode.INTERNAL_ERROR: ErrorSeverity.CRITICAL,
    ErrorCode.CONFIGURATION_ERROR: ErrorSeverity.CRITICAL,
    ErrorCode.TOOL_LAUNCH_FAILED: ErrorSeverity.HIGH,
    ErrorCode.OUTPUT_RECONCILIATION_FAILED: ErrorSeverity.HIGH,
    ErrorCode.TOOL_EXECUTION_FAILED: ErrorSeverity.MEDIUM,
    ErrorCode.CONVERSION_TIMEOUT: ErrorSeverity.MEDIUM,
    ErrorCode.INVALID_REQUEST: ErrorSeverity.MEDIUM,
    ErrorCode.SOURCE_PROTECTED: ErrorSeverity.LOW,
    ErrorCode.CONVERSION_NOT_SUPPORTED: ErrorSeverity.LOW,
    ErrorCode.UNDETERMINED_INPUT_TYPE: ErrorSeverity.LOW,
    ErrorCode.MISSING_PARAMETER: ErrorSeverity.LOW,
    ErrorCode.INVALID_PARAMETER: ErrorSeverity.LOW,
    ErrorCode.FILE_TOO_LARGE: ErrorSeverity.LOW,
    ErrorCode.TOO_MANY_FILES: ErrorSeverity.LOW,
    ErrorCode.NOT_FOUND: ErrorSeverity.LOW,
}

_SEVERITY_LOG_LEVELS = {
    ErrorSeverity.CRITICAL: logging.CRITICAL,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.LOW: logging.INFO,
}


# ===== CONVERSION EXCEPTIONS =====

class ConversionError(Exception):
    """Base class for failures of a single conversion job."""

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    @property
    def status_code(self) -> int:
        return ERROR_STATUS_MAP.get(self.error_code, 500)

    @property
    def severity(self) -> ErrorSeverity:
        return ERROR_SEVERITY_MAP.get(self.error_code, ErrorSeverity.MEDIUM)


class UnsupportedConversionError(ConversionError):
    """No rule matches the (input type, target format) pair."""

    error_code = ErrorCode.CONVERSION_NOT_SUPPORTED

    def __init__(self, input_type: str, target_format: str):
        super().__init__(f"Conversion from '{input_type}' to '{target_format}' is not supported.")
        self.input_type = input_type
        self.target_format = target_format


class UndeterminedInputTypeError(ConversionError):
    """Every detection signal was generic or absent."""

    error_code = ErrorCode.UNDETERMINED_INPUT_TYPE

    def __init__(self, filename: Optional[str] = None):
        super().__init__("Could not determine a usable input file type.")
        self.filename = filename


class ToolLaunchError(ConversionError):
    """The external program is missing or not executable."""

    error_code = ErrorCode.TOOL_LAUNCH_FAILED

    def __init__(self, tool: str, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to start conversion tool ('{tool}').")
        self.tool = tool
        self.cause = cause


class ToolExecutionError(ConversionError):
    """The external program exited with a non-zero status."""

    error_code = ErrorCode.TOOL_EXECUTION_FAILED

    def __init__(self, tool: str, returncode: int, stderr_excerpt: str = "", protected: bool = False):
        if protected:
            reason = "The source file appears to be protected (password or DRM) and cannot be converted."
        elif stderr_excerpt:
            reason = f"Conversion failed ({tool} exited with code {returncode}): {stderr_excerpt}"
        else:
            reason = f"Conversion failed ({tool} exited with code {returncode})."
        super().__init__(reason)
        self.tool = tool
        self.returncode = returncode
        self.stderr_excerpt = stderr_excerpt
        self.protected = protected
        if protected:
            self.error_code = ErrorCode.SOURCE_PROTECTED


class OutputReconciliationError(ConversionError):
    """The tool reported success but its output could not be located or moved."""

    error_code = ErrorCode.OUTPUT_RECONCILIATION_FAILED


class ConversionConfigurationError(ConversionError):
    """A matched rule yielded no tool, no extension or no arguments."""

    error_code = ErrorCode.CONFIGURATION_ERROR


class ConversionTimeoutError(ConversionError):
    """The external program did not finish within the configured limit."""

    error_code = ErrorCode.CONVERSION_TIMEOUT

    def __init__(self, tool: str, timeout: float):
        super().__init__(f"Conversion tool '{tool}' did not finish within {timeout:g} seconds.")
        self.tool = tool
        self.timeout = timeout


# ===== RESPONSE HELPERS =====

def create_error_response(
    error_code: Union[ErrorCode, str],
    details: Optional[str] = None,
    status_code: Optional[int] = None,
    **kwargs
) -> JSONResponse:
    """
    Create a consistent JSON error response for request-level failures.

    Args:
        error_code: Error code from ErrorCode enum or custom string
        details: Additional error details (will be truncated to 1000 chars)
        status_code: Override the default HTTP status code
        **kwargs: Additional fields to include in the error response

    Returns:
        JSONResponse with standardized error format
    """
    if isinstance(error_code, ErrorCode):
        error_type = error_code.value
        if status_code is None:
            status_code = ERROR_STATUS_MAP.get(error_code, 500)
        severity = ERROR_SEVERITY_MAP.get(error_code, ErrorSeverity.MEDIUM)
    else:
        error_type = str(error_code)
        if status_code is None:
            status_code = 500
        severity = ErrorSeverity.MEDIUM

    error_data = {
        "error": error_type,
        "timestamp": datetime.now().isoformat() + "Z",
        "status_code": status_code,
        "severity": severity.value
    }

    if details:
        error_data["details"] = str(details)[:1000]

    error_data.update(kwargs)

    logger.log(_SEVERITY_LOG_LEVELS[severity], f"Error response: {error_data}")

    return JSONResponse(status_code=status_code, content=error_data)


def log_conversion_error(error: ConversionError, filename: Optional[str] = None) -> None:
    """Log a job failure at the level matching its severity."""
    level = _SEVERITY_LOG_LEVELS[error.severity]
    subject = f" for '{filename}'" if filename else ""
    logger.log(level, f"Conversion failed{subject} [{error.error_code.value}]: {error.reason}")
