"""Seeds the database with a sample CV and one passing verdict. Safe to run twice."""

import sys
import logging

from sqlalchemy.orm import Session

from cv_validator.db.database import SessionLocal, init_db
from cv_validator.db.models import CV, ValidationResult

logger = logging.getLogger(__name__)

SAMPLE_CV = {
    "full_name": "John Doe",
    "email": "john.doe@example.com",
    "phone": "+1234567890",
    "skills": "JavaScript, React, Node.js, TypeScript",
    "experience": "5 years of full-stack development experience",
    "pdf_url": "sample-cv.pdf",
}


def seed(db: Session) -> CV:
    sample_cv = db.query(CV).filter(CV.email == SAMPLE_CV["email"]).first()
    if sample_cv:
        print(f"Sample CV already exists: {sample_cv.full_name}")
    else:
        sample_cv = CV(**SAMPLE_CV)
        db.add(sample_cv)
        db.commit()
        db.refresh(sample_cv)
        print(f"Sample CV created: {sample_cv.full_name}")

    existing = db.query(ValidationResult).filter(ValidationResult.cv_id == sample_cv.id).first()
    if existing:
        print("Sample validation result already exists")
    else:
        db.add(ValidationResult(
            cv_id=sample_cv.id,
            is_valid=True,
            mismatches=[],
            message="All fields match the PDF content",
            confidence=1.0,
            details=[],
        ))
        db.commit()
        print("Sample validation result created")
    return sample_cv


if __name__ == "__main__":
    init_db()
    db = SessionLocal()
    try:
        seed(db)
        print("Database seeded successfully!")
    except Exception as e:
        db.rollback()
        logger.error(f"Error seeding database: {e}", exc_info=True)
        sys.exit(1)
    finally:
        db.close()
