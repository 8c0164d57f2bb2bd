# cv-validator/cv_validator/api/dependencies.py

from fastapi import Request

from cv_validator.services.ai.extraction import TextExtractionPipeline
from cv_validator.services.ai.validation import CVValidator
from cv_validator.storage.s3 import ObjectStore

# The objects below are built once in the application lifespan (see main.py)
# and handed to endpoints through these dependencies. Tests override them
# with app.dependency_overrides.


def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.object_store


def get_extraction_pipeline(request: Request) -> TextExtractionPipeline:
    return request.app.state.extraction_pipeline


def get_cv_validator(request: Request) -> CVValidator:
    return request.app.state.cv_validator
