"""Root level routes: direct upload, download and health check.

These keep the `{"error": ...}` body shape the frontend expects instead of
FastAPI's `{"detail": ...}`.
"""

import io
import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

from cv_validator.api.dependencies import get_object_store
from cv_validator.core.config import settings
from cv_validator.core.errors import InputError, NotFoundError, StorageError
from cv_validator.db.checkdb import check_database_connection
from cv_validator.db.database import engine
from cv_validator.schemas.files import PDF_CONTENT_TYPE, UploadResponse
from cv_validator.storage.s3 import ObjectStore, generate_object_key

logger = logging.getLogger(__name__)

router = APIRouter(tags=["files"])


def error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    body = {"error": error}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def check_upload_size(size: Optional[int]) -> None:
    """Raises InputError when a known size is over MAX_FILE_SIZE. An unknown size passes."""
    if size is not None and size > settings.MAX_FILE_SIZE:
        raise InputError(f"File size exceeds {settings.MAX_FILE_SIZE // (1024 * 1024)}MB limit")


def validate_pdf_upload(content_type: Optional[str], content: bytes) -> None:
    """Raises InputError for anything other than a non-empty PDF within the size limit."""
    if content_type != PDF_CONTENT_TYPE:
        raise InputError("Only PDF files are allowed")
    check_upload_size(len(content))
    if not content:
        raise InputError("Cannot upload an empty file")


@router.post("/upload", response_model=UploadResponse)
async def upload_file_endpoint(
    file: Optional[UploadFile] = File(None),
    object_store: ObjectStore = Depends(get_object_store),
):
    """Receives a PDF through the backend and stores it in the bucket."""
    if file is None:
        return error_response(status.HTTP_400_BAD_REQUEST, "No file provided")

    try:
        # Multipart parsing already counted the bytes, so oversize uploads stop here unread.
        check_upload_size(file.size)
        file_content = await file.read()
        validate_pdf_upload(file.content_type, file_content)
    except InputError as e:
        return error_response(status.HTTP_400_BAD_REQUEST, str(e))

    file_name = generate_object_key(file.filename or "upload.pdf")
    try:
        await run_in_threadpool(object_store.put, file_name, file_content, PDF_CONTENT_TYPE)
    except StorageError as e:
        logger.error(f"Error uploading file {file.filename}: {e}")
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to upload file", str(e))

    logger.info(f"File uploaded through API route: {file_name}")
    return UploadResponse(
        success=True,
        file_name=file_name,
        original_name=file.filename or "",
        file_size=len(file_content),
        message="File uploaded successfully through backend API",
    )


@router.get("/upload")
async def upload_info_endpoint():
    return {
        "message": "File upload endpoint is ready",
        "maxFileSize": f"{settings.MAX_FILE_SIZE // (1024 * 1024)}MB",
        "allowedTypes": [PDF_CONTENT_TYPE],
    }


def content_disposition(file_name: str) -> str:
    """
    Attachment header for any object key (RFC 6266). Header values must be
    latin-1, so the plain `filename` gets an ASCII copy and the real name goes
    into the percent-encoded `filename*`.
    """
    ascii_name = "".join(c if c.isascii() and c.isprintable() else "_" for c in file_name)
    ascii_name = ascii_name.replace("\\", "\\\\").replace('"', '\\"')
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(file_name, safe='')}"


@router.get("/download/{file_name}")
async def download_file_endpoint(file_name: str, object_store: ObjectStore = Depends(get_object_store)):
    """Streams a stored PDF back as an attachment."""
    try:
        content = await run_in_threadpool(object_store.get, file_name)
    except NotFoundError:
        return error_response(status.HTTP_404_NOT_FOUND, "File not found")
    except StorageError as e:
        logger.error(f"Error downloading file {file_name}: {e}")
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to download file", str(e))

    logger.info(f"File downloaded through API route: {file_name}")
    return StreamingResponse(
        io.BytesIO(content),
        media_type=PDF_CONTENT_TYPE,
        headers={
            "Content-Disposition": content_disposition(file_name),
            "Content-Length": str(len(content)),
        },
    )


@router.get("/health")
def health_endpoint():
    timestamp = datetime.now(timezone.utc).isoformat()
    if check_database_connection(engine):
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={
                "status": "healthy",
                "timestamp": timestamp,
                "services": {"database": "connected", "api": "running"},
            },
        )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "unhealthy",
            "timestamp": timestamp,
            "error": "Database connection failed",
        },
    )
