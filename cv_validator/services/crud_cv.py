# cv-validator/cv_validator/services/crud_cv.py

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload
from typing import List, Optional, Tuple

from cv_validator.db.models import CV, ValidationResult
from cv_validator.schemas.cv import CVCreate
from cv_validator.schemas.validation import ValidationVerdict

# --- CV records ---

def create_cv(db: Session, cv_create: CVCreate) -> CV:
    """Creates a new CV record from the submitted form."""
    db_cv = CV(
        full_name=cv_create.full_name,
        email=str(cv_create.email),
        phone=cv_create.phone,
        skills=cv_create.skills,
        experience=cv_create.experience,
        pdf_url=cv_create.pdf_url,
    )
    db.add(db_cv)
    db.commit()
    db.refresh(db_cv)
    return db_cv

def get_cv_by_id(db: Session, cv_id: int) -> Optional[CV]:
    """Fetches a CV by its ID together with its verdicts (newest first)."""
    return db.query(CV).options(
        selectinload(CV.validation_results)
    ).filter(CV.id == cv_id).first()

def attach_file_to_cv(db: Session, cv: CV, file_name: str) -> CV:
    """Points the CV at an uploaded object key. The only mutation a CV allows."""
    cv.pdf_url = file_name
    db.commit()
    db.refresh(cv)
    return cv

def get_all_cvs_with_latest(db: Session) -> List[Tuple[CV, Optional[ValidationResult]]]:
    """Every CV (newest first) paired with its most recent verdict, or None."""
    cvs = db.query(CV).order_by(CV.created_at.desc(), CV.id.desc()).all()
    if not cvs:
        return []

    # Highest verdict id per CV; ids grow with insertion so this is the latest row.
    latest_ids = select(func.max(ValidationResult.id)).group_by(ValidationResult.cv_id)
    latest_rows = db.query(ValidationResult).filter(ValidationResult.id.in_(latest_ids)).all()
    latest_by_cv = {row.cv_id: row for row in latest_rows}
    return [(cv, latest_by_cv.get(cv.id)) for cv in cvs]

# --- Validation history (append only) ---

def create_validation_result(db: Session, cv: CV, verdict: ValidationVerdict) -> ValidationResult:
    """Appends a verdict for the CV. Earlier verdicts are never touched."""
    db_result = ValidationResult(
        cv_id=cv.id,
        is_valid=verdict.is_valid,
        mismatches=list(verdict.mismatches),
        message=verdict.message,
        confidence=verdict.confidence,
        details=[d.model_dump(by_alias=True) for d in verdict.details],
    )
    db.add(db_result)
    db.commit()
    db.refresh(db_result)
    return db_result

def get_validation_history(db: Session, cv_id: int) -> List[ValidationResult]:
    """All verdicts for a CV, newest first."""
    return db.query(ValidationResult).filter(
        ValidationResult.cv_id == cv_id
    ).order_by(ValidationResult.created_at.desc(), ValidationResult.id.desc()).all()
