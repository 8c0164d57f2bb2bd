# cv-validator/cv_validator/schemas/cv.py

from datetime import datetime
from typing import List, Optional

from pydantic import EmailStr, Field

from cv_validator.schemas.base import CamelModel
from cv_validator.schemas.validation import ValidationResultResponse


# The five fields the validator compares against the PDF text
class CVFields(CamelModel):
    full_name: str
    email: str
    phone: str
    skills: str
    experience: str


# Schema for submitting a CV (used in POST requests)
class CVCreate(CVFields):
    full_name: str = Field(min_length=1)
    email: EmailStr # Pydantic validates this as an email format
    phone: str = Field(min_length=1)
    skills: str = Field(min_length=1)
    experience: str = Field(min_length=1)
    pdf_url: Optional[str] = None


class CVResponse(CamelModel):
    id: int
    full_name: str
    email: str
    phone: str
    skills: str
    experience: str
    pdf_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CVWithLatestValidation(CVResponse):
    latest_validation: Optional[ValidationResultResponse] = None


class CVDetailResponse(CVResponse):
    # Newest first
    validation_results: List[ValidationResultResponse] = Field(default_factory=list)


class CVSubmitResponse(CamelModel):
    success: bool
    cv: CVResponse
    message: str


class AttachFileRequest(CamelModel):
    file_name: str = Field(min_length=1)
