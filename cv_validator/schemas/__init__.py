# cv-validator/cv_validator/schemas/__init__.py

from .cv import (
    CVFields, CVCreate, CVResponse, CVWithLatestValidation, CVDetailResponse,
    CVSubmitResponse, AttachFileRequest
)
from .validation import (
    FieldDetail, ValidationVerdict, ValidationRequest, ValidationResultResponse,
    ValidationResponse, CV_FIELDS, API_ERROR, PDF_TEXT_EXTRACTION_FAILED, SENTINEL_MISMATCHES
)
from .files import (
    UploadResponse, UploadUrlRequest, UploadUrlResponse, FileNameRequest,
    DownloadUrlResponse, FileActionResponse, StoredFileInfo, FileExistsResponse,
    ExtractionResult, PDF_CONTENT_TYPE
)
