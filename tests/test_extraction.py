import asyncio
import base64

import pytest

from cv_validator.services.ai import extraction
from cv_validator.services.ai.extraction import (
    NO_TEXT_FOUND, TextExtractionPipeline, extract_text_from_pdf, is_usable_text
)
from tests.conftest import ScriptedModel, build_pdf

CORRUPTED_PDF = b"%PDF-1.4\n\x00\x01garbage that is not a pdf\x02\x03"
GOOD_TEXT = "John Doe\njohn.doe@example.com\n+1234567890"


def run(coro):
    return asyncio.run(coro)


@pytest.mark.parametrize("text, usable", [
    (None, False),
    ("", False),
    ("   short   ", False),
    ("123456789", False),
    ("1234567890", True),
    ("  " + NO_TEXT_FOUND + "\n", False),
    (GOOD_TEXT, True),
])
def test_is_usable_text(text, usable):
    assert is_usable_text(text) is usable


def test_extracts_text_layer_from_real_pdf():
    pdf_bytes = build_pdf(["John Doe", "john.doe@example.com", "Skills: JavaScript, React"])
    pipeline = TextExtractionPipeline(llm=None)

    result = run(pipeline.extract_text(pdf_bytes))

    assert result.success is True
    assert result.method in ("pypdf", "pdfplumber")
    assert "John Doe" in result.text
    assert "JavaScript" in result.text


def test_empty_buffer_fails_without_running_stages(monkeypatch):
    async def must_not_run(pdf_bytes):
        raise AssertionError("stage should not run")

    monkeypatch.setattr(extraction, "extract_with_pypdf", must_not_run)
    monkeypatch.setattr(extraction, "extract_with_pdfplumber", must_not_run)
    model = ScriptedModel(GOOD_TEXT)
    pipeline = TextExtractionPipeline(llm=model.as_runnable())

    assert run(extract_text_from_pdf(pipeline, b"")) == ("", False)
    assert model.calls == []


def test_corrupted_file_without_model_returns_empty_failure():
    pipeline = TextExtractionPipeline(llm=None)

    text, succeeded = run(extract_text_from_pdf(pipeline, CORRUPTED_PDF))

    assert text == ""
    assert succeeded is False


def test_corrupted_file_with_failing_model_retries_three_times(sleep_recorder):
    model = ScriptedModel(TimeoutError("deadline exceeded"))
    pipeline = TextExtractionPipeline(llm=model.as_runnable(), sleep=sleep_recorder)

    text, succeeded = run(extract_text_from_pdf(pipeline, CORRUPTED_PDF))

    assert (text, succeeded) == ("", False)
    assert len(model.calls) == 3
    assert sleep_recorder.delays == [2.0, 2.0]


def test_stages_run_in_order_until_usable_text(monkeypatch):
    calls = []

    async def broken_pypdf(pdf_bytes):
        calls.append("pypdf")
        raise ValueError("bad xref")

    async def thin_pdfplumber(pdf_bytes):
        calls.append("pdfplumber")
        return "  Doe  "

    monkeypatch.setattr(extraction, "extract_with_pypdf", broken_pypdf)
    monkeypatch.setattr(extraction, "extract_with_pdfplumber", thin_pdfplumber)
    model = ScriptedModel("  " + GOOD_TEXT + "  ")
    pipeline = TextExtractionPipeline(llm=model.as_runnable())

    result = run(pipeline.extract_text(b"%PDF-1.4 whatever"))

    assert calls == ["pypdf", "pdfplumber"]
    assert result.success is True
    assert result.method == "gemini"
    assert result.text == GOOD_TEXT


def test_later_stages_skipped_once_text_is_usable(monkeypatch):
    async def good_pypdf(pdf_bytes):
        return GOOD_TEXT

    async def must_not_run(pdf_bytes):
        raise AssertionError("pdfplumber should not run")

    monkeypatch.setattr(extraction, "extract_with_pypdf", good_pypdf)
    monkeypatch.setattr(extraction, "extract_with_pdfplumber", must_not_run)
    model = ScriptedModel(GOOD_TEXT)
    pipeline = TextExtractionPipeline(llm=model.as_runnable())

    result = run(pipeline.extract_text(b"%PDF-1.4 whatever"))

    assert result.method == "pypdf"
    assert model.calls == []


def test_model_receives_whole_pdf_as_base64(monkeypatch):
    async def nothing(pdf_bytes):
        return ""

    monkeypatch.setattr(extraction, "extract_with_pypdf", nothing)
    monkeypatch.setattr(extraction, "extract_with_pdfplumber", nothing)
    model = ScriptedModel(GOOD_TEXT)
    pipeline = TextExtractionPipeline(llm=model.as_runnable())
    pdf_bytes = b"%PDF-1.4 scanned image only"

    run(pipeline.extract_text(pdf_bytes))

    [messages] = model.calls
    content = messages[0].content
    assert NO_TEXT_FOUND in content[0]["text"]
    assert content[1]["mime_type"] == "application/pdf"
    assert content[1]["data"] == base64.b64encode(pdf_bytes).decode("ascii")


def test_no_text_found_sentinel_is_a_failure_and_not_retried(monkeypatch, sleep_recorder):
    async def nothing(pdf_bytes):
        return ""

    monkeypatch.setattr(extraction, "extract_with_pypdf", nothing)
    monkeypatch.setattr(extraction, "extract_with_pdfplumber", nothing)
    model = ScriptedModel(NO_TEXT_FOUND)
    pipeline = TextExtractionPipeline(llm=model.as_runnable(), sleep=sleep_recorder)

    assert run(extract_text_from_pdf(pipeline, CORRUPTED_PDF)) == ("", False)
    assert len(model.calls) == 1
    assert sleep_recorder.delays == []


def test_model_recovers_on_second_attempt(monkeypatch, sleep_recorder):
    async def nothing(pdf_bytes):
        return ""

    monkeypatch.setattr(extraction, "extract_with_pypdf", nothing)
    monkeypatch.setattr(extraction, "extract_with_pdfplumber", nothing)
    model = ScriptedModel(ConnectionError("reset by peer"), GOOD_TEXT)
    pipeline = TextExtractionPipeline(llm=model.as_runnable(), sleep=sleep_recorder)

    assert run(extract_text_from_pdf(pipeline, CORRUPTED_PDF)) == (GOOD_TEXT, True)
    assert len(model.calls) == 2
    assert sleep_recorder.delays == [2.0]
