"""
HTTP routes for the conversion relay.

POST /convert accepts one or more uploads plus a target format and returns a
result record per file. GET /download/{file_id} serves a finished conversion
under its human-readable name.
"""

import re
from typing import List, Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse

from .settings import Settings
from .utils.conversion_jobs import ConversionJob, ConversionJobRunner
from .utils.conversion_lookup import get_supported_conversions
from .utils.download_registry import DownloadRegistry
from .utils.error_handling import ErrorCode, create_error_response
from .utils.logging_config import get_logger
from .utils.upload_storage import StoredUpload, UploadStorage, UploadTooLargeError, discard_files

logger = get_logger(__name__)

router = APIRouter(tags=["conversions"])

SAFE_FILE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.-]*$")


# ===== DEPENDENCIES =====

def _app_state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail=f"Service not ready: {name} unavailable")
    return value


def get_runner(request: Request) -> ConversionJobRunner:
    return _app_state(request, "job_runner")


def get_registry(request: Request) -> DownloadRegistry:
    return _app_state(request, "registry")


def get_storage(request: Request) -> UploadStorage:
    return _app_state(request, "upload_storage")


def get_app_settings(request: Request) -> Settings:
    return _app_state(request, "settings")


# ===== ROUTES =====

@router.post("/convert")
async def convert_files(
    request: Request,
    files: Optional[List[UploadFile]] = File(None),
    input_file: Optional[UploadFile] = File(None, alias="inputFile"),
    target_format: Optional[str] = Form(None, alias="targetFormat"),
):
    """
    Convert uploaded files to the requested target format.

    Every file gets its own result record; a failed file never fails the
    request. Request-level problems (no files, no target, limits exceeded)
    are reported with the standard error body.
    """
    uploads = [upload for upload in (files or []) if upload is not None and upload.filename]
    if input_file is not None and input_file.filename:
        uploads.append(input_file)

    if not uploads:
        return create_error_response(ErrorCode.MISSING_PARAMETER, "No files uploaded.")

    target = (target_format or "").strip()
    if not target:
        return create_error_response(ErrorCode.MISSING_PARAMETER, "No target format specified.")

    settings = get_app_settings(request)
    if len(uploads) > settings.max_files_per_request:
        return create_error_response(
            ErrorCode.TOO_MANY_FILES,
            f"At most {settings.max_files_per_request} files may be converted per request.",
        )

    storage = get_storage(request)
    stored: List[StoredUpload] = []
    try:
        for upload in uploads:
            stored.append(await storage.save_upload(upload, settings.max_file_size_bytes))
    except UploadTooLargeError as e:
        discard_files([item.path for item in stored], "upload")
        return create_error_response(ErrorCode.FILE_TOO_LARGE, str(e))
    except OSError as e:
        discard_files([item.path for item in stored], "upload")
        logger.error(f"Failed to store upload: {e}")
        return create_error_response(ErrorCode.INTERNAL_ERROR, "Failed to store uploaded file.")

    logger.info(f"Received {len(stored)} file(s) for conversion to {target}")

    jobs = [
        ConversionJob(
            input_path=item.path,
            original_name=item.original_name,
            declared_type=item.declared_type,
            target_format=target,
        )
        for item in stored
    ]
    results = await get_runner(request).run_batch(jobs)
    return [result.to_dict() for result in results]


@router.get("/download/{file_id}")
async def download_file(request: Request, file_id: str):
    """Serve a converted file under the name registered for it."""
    if not SAFE_FILE_ID.match(file_id):
        return create_error_response(ErrorCode.INVALID_PARAMETER, "Invalid file ID format.")

    settings = get_app_settings(request)
    registry = get_registry(request)
    file_path = settings.output_dir / file_id

    if not file_path.is_file():
        registry.evict(file_id)
        return create_error_response(ErrorCode.NOT_FOUND, "File not found or has expired.")

    download_name = registry.lookup(file_id) or file_id
    logger.info(f"Serving download {file_id} as '{download_name}'")
    return FileResponse(file_path, filename=download_name)


@router.get("/formats")
async def supported_formats():
    """List every input kind and the target formats it can be converted to."""
    return {"success": True, "data": get_supported_conversions()}
