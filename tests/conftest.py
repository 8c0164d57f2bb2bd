import os

# Must be set before cv_validator is imported: settings and the engine are built at import time.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GOOGLE_API_KEY"] = ""
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from langchain_core.runnables import RunnableLambda

from cv_validator.api.dependencies import get_cv_validator, get_extraction_pipeline, get_object_store
from cv_validator.core.errors import NotFoundError
from cv_validator.db.database import SessionLocal, engine
from cv_validator.db.models import Base
from cv_validator.main import app
from cv_validator.schemas.cv import CVFields
from cv_validator.schemas.files import ExtractionResult
from cv_validator.services.ai.validation import CVValidator, KeywordComparator
from cv_validator.storage.s3 import StoredObject


JOHN_DOE = {
    "fullName": "John Doe",
    "email": "john.doe@example.com",
    "phone": "+1234567890",
    "skills": "JavaScript, React",
    "experience": "5 years",
}

MATCHING_CV_TEXT = """John Doe
Email: john.doe@example.com
Phone: +1234567890
Skills: JavaScript, React, Node.js
Experience: 5 years building web applications"""

CV_TEXT_WITHOUT_EMAIL = """John Doe
Phone: +1234567890
Skills: JavaScript, React, Node.js
Experience: 5 years building web applications"""


def build_pdf(lines):
    """Builds a minimal one-page PDF with a Helvetica text layer."""
    ops = ["BT", "/F1 12 Tf", "14 TL", "72 720 Td"]
    for line in lines:
        escaped = line.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        ops.append(f"({escaped}) Tj T*")
    ops.append("ET")
    stream = "\n".join(ops).encode("latin-1")

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Contents 4 0 R /Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref_offset = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (
        len(objects) + 1, xref_offset
    )
    return bytes(out)


class ScriptedModel:
    """
    Stand-in chat model. Plays back `responses` in order (the last one
    repeats); an Exception instance is raised instead of returned.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def _respond(self, prompt_input):
        self.calls.append(prompt_input)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item

    def as_runnable(self):
        def invoke(prompt_input):
            return self._respond(prompt_input)
        return RunnableLambda(invoke)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class InMemoryObjectStore:
    """Same surface as ObjectStore, backed by a dict."""

    bucket_name = "test-bucket"

    def __init__(self):
        self.objects = {}

    def ensure_bucket(self):
        pass

    def put(self, key, data, content_type="application/octet-stream"):
        self.objects[key] = (data, datetime.now(timezone.utc))

    def get(self, key):
        if key not in self.objects:
            raise NotFoundError(f"File not found: {key}")
        return self.objects[key][0]

    def remove(self, key):
        self.objects.pop(key, None)

    def exists(self, key):
        return key in self.objects

    def list_objects(self, prefix="", limit=20):
        found = [
            StoredObject(key=key, size=len(data), modified_at=modified)
            for key, (data, modified) in sorted(self.objects.items())
            if key.startswith(prefix)
        ]
        return found[:limit]

    def presign_put(self, key, expires_in_seconds):
        return f"http://localhost:9000/{self.bucket_name}/{key}?X-Amz-Expires={expires_in_seconds}&op=put"

    def presign_get(self, key, expires_in_seconds):
        return f"http://localhost:9000/{self.bucket_name}/{key}?X-Amz-Expires={expires_in_seconds}&op=get"


class StubPipeline:
    """Extraction pipeline returning a fixed text, recording what it was given."""

    def __init__(self, text):
        self.text = text
        self.received = []

    async def extract_text(self, pdf_bytes):
        self.received.append(pdf_bytes)
        if self.text:
            return ExtractionResult(success=True, text=self.text, message="stub", method="stub")
        return ExtractionResult(success=False, text="", message="no text")


@pytest.fixture
def john_doe_fields():
    return CVFields.model_validate(JOHN_DOE)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def db_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(db_tables):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def object_store():
    return InMemoryObjectStore()


@pytest.fixture
def pipeline():
    return StubPipeline(MATCHING_CV_TEXT)


@pytest.fixture
def client(db_tables, object_store, pipeline):
    validator = CVValidator(KeywordComparator(), retry_delay_seconds=0)
    app.dependency_overrides[get_object_store] = lambda: object_store
    app.dependency_overrides[get_extraction_pipeline] = lambda: pipeline
    app.dependency_overrides[get_cv_validator] = lambda: validator
    # Not used as a context manager: the lifespan (real S3 and Gemini) does not run.
    yield TestClient(app)
    app.dependency_overrides.clear()
