# cv-validator/cv_validator/db/models.py

from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Float, DateTime, ForeignKey, JSON
)
from sqlalchemy.orm import relationship, declarative_base
from datetime import datetime

# Base class for declarative models
Base = declarative_base()

class CV(Base):
    """
    A submitted CV form. Only `pdf_url` changes after creation, when the
    uploaded file is attached.
    """
    __tablename__ = "cvs"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=False)
    email = Column(String, nullable=False, index=True)
    phone = Column(String, nullable=False)
    skills = Column(Text, nullable=False)
    experience = Column(Text, nullable=False)
    # Object key of the uploaded PDF in the bucket
    pdf_url = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Newest first; id breaks ties between rows written within the same clock tick.
    validation_results = relationship(
        "ValidationResult",
        back_populates="cv",
        order_by="[ValidationResult.created_at.desc(), ValidationResult.id.desc()]",
    )

class ValidationResult(Base):
    """Append-only verdict row. A re-validation adds a new row, nothing is updated."""
    __tablename__ = "validation_results"

    id = Column(Integer, primary_key=True, index=True)
    cv_id = Column(Integer, ForeignKey("cvs.id"), nullable=False, index=True)
    is_valid = Column(Boolean, nullable=False)
    mismatches = Column(JSON, nullable=False, default=list)
    message = Column(Text, nullable=False)
    confidence = Column(Float, nullable=False, default=0.0)
    details = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    cv = relationship("CV", back_populates="validation_results")
