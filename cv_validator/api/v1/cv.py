from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from typing import List

# --- Local Imports ---
from cv_validator.api.dependencies import get_cv_validator, get_extraction_pipeline, get_object_store
from cv_validator.core.errors import NotFoundError, StorageError
from cv_validator.db.database import get_db
from cv_validator.schemas.cv import (
    AttachFileRequest, CVCreate, CVDetailResponse, CVResponse, CVSubmitResponse, CVWithLatestValidation
)
from cv_validator.schemas.validation import (
    ValidationRequest, ValidationResponse, ValidationResultResponse
)
from cv_validator.services import crud_cv
from cv_validator.services.ai.extraction import TextExtractionPipeline
from cv_validator.services.ai.validation import CVValidator
from cv_validator.services.verification import validate_cv
from cv_validator.storage.s3 import ObjectStore

router = APIRouter(prefix="/cv", tags=["cv"])


def get_cv_or_404(db: Session, cv_id: int):
    cv = crud_cv.get_cv_by_id(db, cv_id)
    if not cv:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="CV not found")
    return cv


@router.post("/", response_model=CVSubmitResponse, status_code=status.HTTP_201_CREATED)
def submit_cv_endpoint(cv_create: CVCreate, db: Session = Depends(get_db)):
    """Stores the submitted CV form."""
    cv = crud_cv.create_cv(db, cv_create)
    return CVSubmitResponse(
        success=True,
        cv=CVResponse.model_validate(cv),
        message="CV submitted successfully",
    )


@router.get("/", response_model=List[CVWithLatestValidation])
def list_cvs_endpoint(db: Session = Depends(get_db)):
    """Lists all CVs, newest first, each with its most recent verdict."""
    return [
        CVWithLatestValidation(
            **CVResponse.model_validate(cv).model_dump(),
            latest_validation=ValidationResultResponse.model_validate(latest) if latest else None,
        )
        for cv, latest in crud_cv.get_all_cvs_with_latest(db)
    ]


@router.get("/{cv_id}", response_model=CVDetailResponse)
def get_cv_endpoint(cv_id: int, db: Session = Depends(get_db)):
    """Retrieves a CV with its full validation history."""
    return get_cv_or_404(db, cv_id)


@router.patch("/{cv_id}/file", response_model=CVResponse)
async def attach_file_endpoint(
    cv_id: int,
    request: AttachFileRequest,
    db: Session = Depends(get_db),
    object_store: ObjectStore = Depends(get_object_store),
):
    """Attaches an uploaded file (by object key) to the CV."""
    cv = get_cv_or_404(db, cv_id)
    try:
        exists = await run_in_threadpool(object_store.exists, request.file_name)
    except StorageError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Failed to check file: {e}")
    if not exists:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return crud_cv.attach_file_to_cv(db, cv, request.file_name)


@router.post("/{cv_id}/validate", response_model=ValidationResponse)
async def validate_cv_endpoint(
    cv_id: int,
    request: ValidationRequest,
    db: Session = Depends(get_db),
    validator: CVValidator = Depends(get_cv_validator),
    pipeline: TextExtractionPipeline = Depends(get_extraction_pipeline),
    object_store: ObjectStore = Depends(get_object_store),
):
    """
    Compares the CV's form fields with its PDF text and stores the verdict.

    The text comes from the request body when given, otherwise from the
    attached file. A verdict row is written even when extraction or the
    AI comparison fails (with a sentinel mismatch).
    """
    cv = get_cv_or_404(db, cv_id)
    try:
        result = await validate_cv(db, cv, validator, pipeline, object_store, pdf_text=request.pdf_text)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attached file not found")
    except StorageError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Failed to read file: {e}")

    return ValidationResponse(
        success=True,
        validation_result=ValidationResultResponse.model_validate(result),
        message=result.message,
    )


@router.get("/{cv_id}/validations", response_model=List[ValidationResultResponse])
def get_validation_history_endpoint(cv_id: int, db: Session = Depends(get_db)):
    """All verdicts for a CV, newest first."""
    get_cv_or_404(db, cv_id)
    return crud_cv.get_validation_history(db, cv_id)
