from fastapi import APIRouter, Depends, HTTPException, Query, status
from starlette.concurrency import run_in_threadpool
from typing import List

# --- Local Imports ---
from cv_validator.api.dependencies import get_extraction_pipeline, get_object_store
from cv_validator.core.config import settings
from cv_validator.core.errors import NotFoundError, StorageError
from cv_validator.schemas.files import (
    DownloadUrlResponse, ExtractionResult, FileActionResponse, FileExistsResponse,
    FileNameRequest, StoredFileInfo, UploadUrlRequest, UploadUrlResponse
)
from cv_validator.services.ai.extraction import TextExtractionPipeline
from cv_validator.services.verification import extract_stored_file_text
from cv_validator.storage.s3 import ObjectStore, generate_object_key

router = APIRouter(prefix="/files", tags=["files"])


def storage_failure(action: str, error: Exception) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}: {error}",
    )


@router.post("/upload-url", response_model=UploadUrlResponse)
async def get_upload_url_endpoint(
    request: UploadUrlRequest,
    object_store: ObjectStore = Depends(get_object_store),
):
    """Issues a presigned PUT URL so the browser can upload the PDF directly."""
    file_name = generate_object_key(request.file_name)
    try:
        upload_url = await run_in_threadpool(
            object_store.presign_put, file_name, settings.PRESIGNED_URL_EXPIRY_SECONDS
        )
    except StorageError as e:
        raise storage_failure("generate upload URL", e)
    return UploadUrlResponse(
        success=True,
        upload_url=upload_url,
        file_name=file_name,
        message="Upload URL generated successfully",
    )


@router.post("/download-url", response_model=DownloadUrlResponse)
async def get_download_url_endpoint(
    request: FileNameRequest,
    object_store: ObjectStore = Depends(get_object_store),
):
    try:
        download_url = await run_in_threadpool(
            object_store.presign_get, request.file_name, settings.PRESIGNED_URL_EXPIRY_SECONDS
        )
    except StorageError as e:
        raise storage_failure("generate download URL", e)
    return DownloadUrlResponse(
        success=True,
        download_url=download_url,
        message="Download URL generated successfully",
    )


@router.get("/", response_model=List[StoredFileInfo])
async def list_files_endpoint(
    prefix: str = "",
    limit: int = Query(20, ge=1, le=100),
    object_store: ObjectStore = Depends(get_object_store),
):
    try:
        objects = await run_in_threadpool(object_store.list_objects, prefix, limit)
    except StorageError as e:
        raise storage_failure("list files", e)
    return [
        StoredFileInfo(name=obj.key, size=obj.size, last_modified=obj.modified_at)
        for obj in objects
    ]


@router.get("/{file_name}/exists", response_model=FileExistsResponse)
async def file_exists_endpoint(file_name: str, object_store: ObjectStore = Depends(get_object_store)):
    try:
        exists = await run_in_threadpool(object_store.exists, file_name)
    except StorageError as e:
        raise storage_failure("check file", e)
    return FileExistsResponse(exists=exists)


@router.delete("/{file_name}", response_model=FileActionResponse)
async def delete_file_endpoint(file_name: str, object_store: ObjectStore = Depends(get_object_store)):
    try:
        await run_in_threadpool(object_store.remove, file_name)
    except StorageError as e:
        raise storage_failure("delete file", e)
    return FileActionResponse(success=True, message="File deleted successfully")


@router.post("/extract-text", response_model=ExtractionResult)
async def extract_pdf_text_endpoint(
    request: FileNameRequest,
    object_store: ObjectStore = Depends(get_object_store),
    pipeline: TextExtractionPipeline = Depends(get_extraction_pipeline),
):
    """
    Extracts text from a stored PDF. A PDF without readable text is not an
    HTTP error: the response carries success=false and an empty text.
    """
    try:
        return await extract_stored_file_text(object_store, pipeline, request.file_name)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    except StorageError as e:
        raise storage_failure("read file", e)
