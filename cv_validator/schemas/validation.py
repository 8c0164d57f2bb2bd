# cv-validator/cv_validator/schemas/validation.py

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from cv_validator.schemas.base import CamelModel

# Form fields a verdict can report as mismatched, in display order
CV_FIELDS = ("fullName", "email", "phone", "skills", "experience")

# Sentinel mismatches: infrastructure failures, not field disagreements
PDF_TEXT_EXTRACTION_FAILED = "pdf_text_extraction_failed"
API_ERROR = "api_error"
SENTINEL_MISMATCHES = (PDF_TEXT_EXTRACTION_FAILED, API_ERROR)


class FieldDetail(CamelModel):
    """How a single form field compared against the PDF text."""
    field: str
    form_value: Optional[str] = None
    pdf_value: Optional[str] = None # What was found in the PDF, if anything
    match: bool
    reason: Optional[str] = None


class ValidationVerdict(CamelModel):
    """Outcome of comparing a CV's form fields with its PDF text."""
    is_valid: bool
    mismatches: List[str] = Field(default_factory=list)
    message: str
    confidence: float = Field(ge=0.0, le=1.0)
    details: List[FieldDetail] = Field(default_factory=list)

    @property
    def is_sentinel(self) -> bool:
        return any(m in SENTINEL_MISMATCHES for m in self.mismatches)


class ValidationRequest(CamelModel):
    # When omitted, the text is extracted from the CV's attached file.
    pdf_text: Optional[str] = None


# Schema for a persisted verdict
class ValidationResultResponse(CamelModel):
    id: int
    cv_id: int
    is_valid: bool
    mismatches: List[str]
    message: str
    confidence: float
    details: List[FieldDetail] = Field(default_factory=list)
    created_at: datetime


class ValidationResponse(CamelModel):
    success: bool
    validation_result: ValidationResultResponse
    message: str
