# cv-validator/cv_validator/schemas/files.py

from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from cv_validator.schemas.base import CamelModel

PDF_CONTENT_TYPE = "application/pdf"


class UploadResponse(CamelModel):
    success: bool
    file_name: str # Generated object key
    original_name: str
    file_size: int
    message: str


class UploadUrlRequest(CamelModel):
    file_name: str = Field(min_length=1)
    file_type: str

    @field_validator("file_type")
    @classmethod
    def only_pdf(cls, value: str) -> str:
        if value != PDF_CONTENT_TYPE:
            raise ValueError("Only PDF files are allowed")
        return value


class UploadUrlResponse(CamelModel):
    success: bool
    upload_url: str
    file_name: str
    message: str


class FileNameRequest(CamelModel):
    file_name: str = Field(min_length=1)


class DownloadUrlResponse(CamelModel):
    success: bool
    download_url: str
    message: str


class FileActionResponse(CamelModel):
    success: bool
    message: str


class StoredFileInfo(CamelModel):
    name: str
    size: int
    last_modified: datetime


class FileExistsResponse(CamelModel):
    exists: bool


class ExtractionResult(CamelModel):
    """Outcome of running the PDF text extraction pipeline. Never persisted."""
    success: bool
    text: str = ""
    message: str
    # Stage that produced the text: "pypdf", "pdfplumber" or "gemini"
    method: Optional[str] = None
