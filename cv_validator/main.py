# cv-validator/cv_validator/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool

from cv_validator.api import public
from cv_validator.api.v1 import cv, files
from cv_validator.core.config import settings
from cv_validator.core.logging import setup_logging
from cv_validator.db.checkdb import mask_database_url
from cv_validator.db.database import init_db
from cv_validator.services.ai.extraction import TextExtractionPipeline
from cv_validator.services.ai.llm import get_optional_chat_model
from cv_validator.services.ai.validation import build_cv_validator
from cv_validator.storage.s3 import build_object_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Builds the shared clients once and makes sure the bucket exists."""
    setup_logging()
    logger.info(f"Using database {mask_database_url(settings.DATABASE_URL)}")
    init_db()

    object_store = build_object_store(settings)
    await run_in_threadpool(object_store.ensure_bucket)

    llm = get_optional_chat_model(settings)
    app.state.object_store = object_store
    app.state.extraction_pipeline = TextExtractionPipeline.from_settings(settings, llm=llm)
    app.state.cv_validator = build_cv_validator(settings, llm=llm)
    logger.info(f"CV validator ready (backend: {settings.VALIDATION_BACKEND}).")
    yield


# Create a FastAPI instance
app = FastAPI(
    title="CV Validator",
    description="Checks submitted CV form data against the text of the uploaded PDF",
    version="0.1.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(public.router)
app.include_router(cv.router, prefix="/api/v1")
app.include_router(files.router, prefix="/api/v1")

# Basic root endpoint
@app.get("/")
async def read_root():
    return RedirectResponse(url="/docs")



if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
