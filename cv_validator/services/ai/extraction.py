"""PDF text extraction with fallbacks.

PDFs vary a lot internally (scanned pages, unusual fonts, broken streams), so
no single parser handles all of them. The pipeline tries progressively more
general and more expensive strategies until one yields usable text:

1. pypdf, through LangChain's PyPDFLoader
2. pdfplumber, page by page
3. Gemini, reading the whole PDF as a base64 media part

Extraction never raises. Every failure is logged and the stage is treated
as having produced nothing.
"""

from __future__ import annotations

import os
import io
import base64
import asyncio
import logging
import shutil
import tempfile
from typing import Awaitable, Callable, List, Optional, Tuple

import aiofiles
import pdfplumber
from langchain_community.document_loaders import PyPDFLoader
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage
from langchain_core.output_parsers import StrOutputParser
from starlette.concurrency import run_in_threadpool

from cv_validator.core.config import Settings
from cv_validator.schemas.files import ExtractionResult

logger = logging.getLogger(__name__)

NO_TEXT_FOUND = "NO_TEXT_FOUND"
DEFAULT_MIN_TEXT_LENGTH = 10

EXTRACTION_PROMPT = f"""You are a PDF text extraction expert. The attached file is a PDF document, most likely a CV.
Extract all readable text from it, removing formatting artifacts, and keep the reading order.
Return only the extracted text, with no commentary.
If the document contains no readable text at all, return exactly: {NO_TEXT_FOUND}"""


def is_usable_text(text: Optional[str], min_length: int = DEFAULT_MIN_TEXT_LENGTH) -> bool:
    """Text is usable when its trimmed length reaches the threshold and it is not the sentinel."""
    if not text:
        return False
    stripped = text.strip()
    return len(stripped) >= min_length and stripped != NO_TEXT_FOUND


# --- Parser stages ---

async def extract_with_pypdf(pdf_bytes: bytes) -> str:
    """Stage 1: text layer via PyPDFLoader. The loader needs a path, so the bytes go to a temp file."""
    temp_dir = tempfile.mkdtemp()
    temp_file_path = os.path.join(temp_dir, "upload.pdf")
    try:
        async with aiofiles.open(temp_file_path, 'wb') as temp_f:
            await temp_f.write(pdf_bytes)
        logger.debug(f"Wrote {len(pdf_bytes)} bytes to temporary file {temp_file_path}")

        loader = PyPDFLoader(temp_file_path)
        documents = await loader.aload()
        return "\n".join(doc.page_content for doc in documents)
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


def _read_pages_with_pdfplumber(pdf_bytes: bytes) -> str:
    with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
        return "\n".join((page.extract_text() or "") for page in pdf.pages)


async def extract_with_pdfplumber(pdf_bytes: bytes) -> str:
    """Stage 2: pdfplumber over every page, joined with newlines."""
    return await run_in_threadpool(_read_pages_with_pdfplumber, pdf_bytes)


StageFn = Callable[[bytes], Awaitable[str]]


class TextExtractionPipeline:
    """Turns raw PDF bytes into plain text, trying each stage in order."""

    def __init__(
        self,
        llm: Optional[BaseChatModel] = None,
        min_text_length: int = DEFAULT_MIN_TEXT_LENGTH,
        max_attempts: int = 3,
        retry_delay_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.llm = llm
        self.min_text_length = min_text_length
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, llm: Optional[BaseChatModel] = None) -> "TextExtractionPipeline":
        return cls(
            llm=llm,
            min_text_length=settings.MIN_TEXT_LENGTH,
            max_attempts=settings.AI_MAX_ATTEMPTS,
            retry_delay_seconds=settings.AI_RETRY_DELAY_SECONDS,
        )

    def _stages(self) -> List[Tuple[str, StageFn]]:
        return [
            ("pypdf", extract_with_pypdf),
            ("pdfplumber", extract_with_pdfplumber),
            ("gemini", self.extract_with_gemini),
        ]

    async def extract_with_gemini(self, pdf_bytes: bytes) -> str:
        """Stage 3: ask the model to read the PDF. Last resort, costly and nondeterministic."""
        if self.llm is None:
            logger.warning("Gemini extraction skipped: no model configured (GOOGLE_API_KEY missing).")
            return ""

        encoded = base64.b64encode(pdf_bytes).decode("ascii")
        message = HumanMessage(content=[
            {"type": "text", "text": EXTRACTION_PROMPT},
            {"type": "media", "mime_type": "application/pdf", "data": encoded},
        ])
        chain = self.llm | StrOutputParser()

        for attempt in range(1, self.max_attempts + 1):
            try:
                text = await chain.ainvoke([message])
                text = (text or "").strip()
                if text == NO_TEXT_FOUND:
                    logger.info("Gemini reported no readable text in the PDF.")
                    return ""
                return text
            except Exception as e:
                if attempt == self.max_attempts:
                    logger.error(f"Gemini extraction failed after {attempt} attempts: {e}", exc_info=True)
                    return ""
                logger.warning(
                    f"Gemini extraction attempt {attempt}/{self.max_attempts} failed, "
                    f"retrying in {self.retry_delay_seconds}s: {e}"
                )
                await self._sleep(self.retry_delay_seconds)
        return ""

    async def extract_text(self, pdf_bytes: bytes) -> ExtractionResult:
        if not pdf_bytes:
            logger.warning("Text extraction requested for an empty buffer.")
            return ExtractionResult(success=False, text="", message="The file is empty.")

        for name, stage in self._stages():
            try:
                text = await stage(pdf_bytes)
            except Exception as e:
                logger.warning(f"Extraction stage '{name}' failed: {e}")
                continue

            if is_usable_text(text, self.min_text_length):
                text = text.strip()
                logger.info(f"Extraction stage '{name}' succeeded (length: {len(text)}).")
                return ExtractionResult(
                    success=True,
                    text=text,
                    message=f"Text extracted with {name}.",
                    method=name,
                )
            logger.info(f"Extraction stage '{name}' produced no usable text, trying next stage.")

        logger.error("All text extraction stages failed.")
        return ExtractionResult(
            success=False,
            text="",
            message="Could not extract readable text from the PDF.",
        )


async def extract_text_from_pdf(pipeline: TextExtractionPipeline, pdf_bytes: bytes) -> Tuple[str, bool]:
    """Tuple form of TextExtractionPipeline.extract_text: (text, succeeded)."""
    result = await pipeline.extract_text(pdf_bytes)
    return result.text, result.success
