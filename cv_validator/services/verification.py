"""Submission workflow glue: stored file → extracted text → verdict → history."""

import logging
from typing import Optional

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from cv_validator.db.models import CV, ValidationResult
from cv_validator.schemas.cv import CVFields
from cv_validator.schemas.files import ExtractionResult
from cv_validator.services import crud_cv
from cv_validator.services.ai.extraction import TextExtractionPipeline
from cv_validator.services.ai.validation import CVValidator
from cv_validator.storage.s3 import ObjectStore

logger = logging.getLogger(__name__)


async def extract_stored_file_text(
    object_store: ObjectStore,
    pipeline: TextExtractionPipeline,
    file_name: str,
) -> ExtractionResult:
    """
    Downloads a stored PDF and runs it through the extraction pipeline.
    NotFoundError and StorageError from the download propagate; extraction
    problems come back as an unsuccessful result.
    """
    pdf_bytes = await run_in_threadpool(object_store.get, file_name)
    logger.info(f"Extracting text from '{file_name}' ({len(pdf_bytes)} bytes).")
    return await pipeline.extract_text(pdf_bytes)


async def validate_cv(
    db: Session,
    cv: CV,
    validator: CVValidator,
    pipeline: TextExtractionPipeline,
    object_store: ObjectStore,
    pdf_text: Optional[str] = None,
) -> ValidationResult:
    """
    Validates a CV and appends the verdict to its history.

    `pdf_text` is used as given when supplied. Otherwise the CV's attached
    file is extracted first; without a file the text is empty and the
    validator reports `pdf_text_extraction_failed`.
    """
    if pdf_text is None:
        if cv.pdf_url:
            extraction = await extract_stored_file_text(object_store, pipeline, cv.pdf_url)
            pdf_text = extraction.text
            if not extraction.success:
                logger.warning(f"CV {cv.id}: {extraction.message}")
        else:
            logger.warning(f"CV {cv.id} has no attached file and no text was supplied.")
            pdf_text = ""

    fields = CVFields.model_validate(cv)
    verdict = await validator.validate(fields, pdf_text)
    result = crud_cv.create_validation_result(db, cv, verdict)
    logger.info(f"Stored verdict {result.id} for CV {cv.id} (valid={result.is_valid}).")
    return result
