"""Compares submitted CV form fields with the text of the uploaded PDF.

The comparison itself sits behind a comparator with one method,
`compare(fields, pdf_text) -> ValidationVerdict`:

* GeminiComparator asks the remote model and parses its JSON answer.
* KeywordComparator is a deterministic local matcher.

CVValidator adds what both share: the unusable-text short circuit, the
retry policy, and the `api_error` fallback verdict. `validate` never raises.
"""

from __future__ import annotations

import re
import json
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from langchain_core.language_models import BaseChatModel
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from pydantic import StrictBool, ValidationError

from cv_validator.core.config import Settings
from cv_validator.core.errors import ConfigurationError, ContractViolation
from cv_validator.schemas.base import CamelModel
from cv_validator.schemas.cv import CVFields
from cv_validator.schemas.validation import (
    API_ERROR, CV_FIELDS, PDF_TEXT_EXTRACTION_FAILED, FieldDetail, ValidationVerdict
)
from cv_validator.services.ai.extraction import DEFAULT_MIN_TEXT_LENGTH, is_usable_text

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Validation completed"
DEFAULT_CONFIDENCE = 0.8
KEYWORD_CONFIDENCE = 0.7


# --- Fallback verdicts ---

def extraction_failed_verdict() -> ValidationVerdict:
    return ValidationVerdict(
        is_valid=False,
        mismatches=[PDF_TEXT_EXTRACTION_FAILED],
        message=(
            "Could not read enough text from the PDF to validate the CV. "
            "Please upload a PDF with selectable text."
        ),
        confidence=0.0,
        details=[],
    )


def api_error_verdict() -> ValidationVerdict:
    return ValidationVerdict(
        is_valid=False,
        mismatches=[API_ERROR],
        message="AI validation failed. Please try again or contact support.",
        confidence=0.0,
        details=[],
    )


def form_values(fields: CVFields) -> Dict[str, str]:
    """Form values keyed by their wire names, in CV_FIELDS order."""
    return {
        "fullName": fields.full_name,
        "email": fields.email,
        "phone": fields.phone,
        "skills": fields.skills,
        "experience": fields.experience,
    }


# --- Model output parsing ---

def find_json_object(text: str) -> Optional[str]:
    """
    Returns the first balanced {...} block in `text`, or None.

    Braces inside JSON strings are skipped, so prose before the object,
    code fences, and trailing commentary after it do not confuse the scan.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:index + 1]
        # Unbalanced from this brace on; try the next opening brace.
        start = text.find("{", start + 1)
    return None


_FIELD_LOOKUP = {re.sub(r"[^a-z]", "", name.lower()): name for name in CV_FIELDS}
_FIELD_LOOKUP.update({"name": "fullName", "emailaddress": "email", "phonenumber": "phone"})


def normalize_field_name(name: Any) -> Optional[str]:
    """Maps 'full_name', 'Full Name', 'fullname' ... onto the canonical field name."""
    if not isinstance(name, str):
        return None
    return _FIELD_LOOKUP.get(re.sub(r"[^a-z]", "", name.lower()))


class ModelVerdictPayload(CamelModel):
    """The JSON object the model is asked to return. Only isValid is mandatory."""
    is_valid: StrictBool
    mismatches: Optional[List[Any]] = None
    message: Optional[str] = None
    confidence: Optional[float] = None
    details: Optional[List[Any]] = None


def _parse_details(raw_details: List[Any]) -> List[FieldDetail]:
    details = []
    for raw in raw_details:
        if not isinstance(raw, dict):
            continue
        record = dict(raw)
        for key in ("formValue", "pdfValue", "reason"):
            value = record.get(key)
            if value is not None and not isinstance(value, str):
                record[key] = json.dumps(value) if isinstance(value, (list, dict)) else str(value)
        field = normalize_field_name(record.get("field"))
        if field:
            record["field"] = field
        try:
            details.append(FieldDetail.model_validate(record))
        except ValidationError as e:
            logger.debug(f"Dropping malformed detail record {raw!r}: {e}")
    return details


def parse_verdict_response(response_text: str) -> ValidationVerdict:
    """
    Parses the model's free-text answer into a verdict.

    Raises:
        ContractViolation: no JSON object, invalid JSON, non-boolean isValid,
            or a verdict whose mismatches contradict isValid.
    """
    json_text = find_json_object(response_text or "")
    if json_text is None:
        raise ContractViolation("No JSON found in model response")

    try:
        raw = json.loads(json_text)
    except json.JSONDecodeError as e:
        raise ContractViolation(f"Model response is not valid JSON: {e}") from e

    try:
        payload = ModelVerdictPayload.model_validate(raw)
    except ValidationError as e:
        raise ContractViolation(f"Invalid response: {e.errors()[0].get('msg', e)}") from e

    details = _parse_details(payload.details or [])

    mismatches: List[str] = []
    for name in payload.mismatches or []:
        field = normalize_field_name(name)
        if field and field not in mismatches:
            mismatches.append(field)

    if not payload.is_valid and not mismatches:
        mismatches = [d.field for d in details if not d.match and d.field in CV_FIELDS]
        mismatches = list(dict.fromkeys(mismatches))
    if not payload.is_valid and not mismatches:
        raise ContractViolation("Invalid response: isValid is false but no mismatched field was named")
    if payload.is_valid and mismatches:
        raise ContractViolation("Invalid response: isValid is true but mismatches were reported")

    confidence = DEFAULT_CONFIDENCE if payload.confidence is None else payload.confidence
    confidence = min(1.0, max(0.0, confidence))

    return ValidationVerdict(
        is_valid=payload.is_valid,
        mismatches=mismatches,
        message=payload.message or DEFAULT_MESSAGE,
        confidence=confidence,
        details=details,
    )


# --- Comparators ---

VALIDATION_SYSTEM_PROMPT = """You are an expert CV validator. Your task is to compare the information provided in a form with the text content of a PDF CV document.

INSTRUCTIONS:
1. Compare each form field with the PDF content.
2. Ignore differences in case, whitespace and punctuation.
3. Names may be abbreviated (initials) or written in a different order.
4. Phone numbers match when their digits match; a missing country code is acceptable.
5. For skills, every skill listed in the form must appear in the PDF, as written or as a recognizable variant.
6. For experience, check that the form's description is consistent with the PDF, not that it appears verbatim.

Respond with a JSON object in this exact format and nothing else:
{{
  "isValid": boolean,
  "mismatches": ["field1", "field2"],
  "message": "Human readable summary",
  "confidence": 0.95,
  "details": [
    {{
      "field": "fullName",
      "formValue": "John Doe",
      "pdfValue": "John Doe",
      "match": true,
      "reason": "Exact match"
    }}
  ]
}}

"isValid" must be true only when every field matches; "mismatches" lists every field that does not.
Fields to check: fullName, email, phone, skills, experience"""

VALIDATION_HUMAN_PROMPT = """FORM DATA:
- Full Name: {full_name}
- Email: {email}
- Phone: {phone}
- Skills: {skills}
- Experience: {experience}

PDF CONTENT:
{pdf_text}"""


def build_validation_prompt() -> ChatPromptTemplate:
    return ChatPromptTemplate.from_messages([
        ("system", VALIDATION_SYSTEM_PROMPT),
        ("human", VALIDATION_HUMAN_PROMPT),
    ])


class GeminiComparator:
    """Delegates the comparison to the chat model and enforces the JSON contract."""

    def __init__(self, llm: Optional[BaseChatModel]):
        self.llm = llm
        self.prompt = build_validation_prompt()

    async def compare(self, fields: CVFields, pdf_text: str) -> ValidationVerdict:
        if self.llm is None:
            raise ConfigurationError("GOOGLE_API_KEY is not set in environment variables or .env")

        chain = self.prompt | self.llm | StrOutputParser()
        response_text = await chain.ainvoke({
            "full_name": fields.full_name,
            "email": fields.email,
            "phone": fields.phone,
            "skills": fields.skills,
            "experience": fields.experience,
            "pdf_text": pdf_text,
        })
        return parse_verdict_response(response_text)


def _words(text: str) -> List[str]:
    return re.sub(r"[^a-z0-9]+", " ", text.lower()).split()


_STOPWORDS = {
    "with", "from", "that", "this", "have", "were", "been", "into", "over",
    "than", "also", "their", "they", "about", "within",
}
_YEARS_PATTERN = re.compile(r"(\d+)\s*\+?\s*(?:years?|yrs?)", re.IGNORECASE)


class KeywordComparator:
    """
    Deterministic stand-in for the remote model. Matching is done on
    normalized text (lowercase, punctuation and extra whitespace removed).
    """

    async def compare(self, fields: CVFields, pdf_text: str) -> ValidationVerdict:
        text_words = _words(pdf_text)
        padded_text = f" {' '.join(text_words)} "

        checks = {
            "fullName": self._match_name(fields.full_name, pdf_text),
            "email": self._match_email(fields.email, pdf_text),
            "phone": self._match_phone(fields.phone, pdf_text),
            "skills": self._match_skills(fields.skills, padded_text),
            "experience": self._match_experience(fields.experience, padded_text),
        }

        values = form_values(fields)
        details = []
        mismatches = []
        for field in CV_FIELDS:
            matched, pdf_value, reason = checks[field]
            if not matched:
                mismatches.append(field)
            details.append(FieldDetail(
                field=field,
                form_value=values[field],
                pdf_value=pdf_value,
                match=matched,
                reason=reason,
            ))

        is_valid = not mismatches
        message = (
            "All fields match the PDF content"
            if is_valid
            else f"Validation failed. Mismatches found in: {', '.join(mismatches)}"
        )
        return ValidationVerdict(
            is_valid=is_valid,
            mismatches=mismatches,
            message=message,
            confidence=KEYWORD_CONFIDENCE,
            details=details,
        )

    @staticmethod
    def _match_name(full_name: str, pdf_text: str):
        tokens = _words(full_name)
        if not tokens:
            return False, None, "Name is empty"

        # The trailing "." is kept so "J." can be told apart from words like "I" or "a"
        raw_words = re.findall(r"[a-z0-9]+\.?", pdf_text.lower())
        words = [w.rstrip(".") for w in raw_words]
        word_set = set(words)
        full_hits = {t for t in tokens if len(t) > 1 and t in word_set}
        if not full_hits:
            return False, None, "No part of the name found in the PDF"

        # Initials only count right before or after a matched part of the name
        neighbours = set()
        dotted_initials = set()
        for index, word in enumerate(words):
            if word not in full_hits:
                continue
            for pos in (index - 1, index + 1):
                if 0 <= pos < len(words):
                    neighbours.add(words[pos])
                    if len(words[pos]) == 1 and raw_words[pos].endswith("."):
                        dotted_initials.add(words[pos])

        for token in tokens:
            if token in full_hits:
                continue
            if len(token) == 1:
                # Initial on the form: the PDF spells that part out, or abbreviates it too
                if any(w.startswith(token) for w in neighbours):
                    continue
            elif token[0] in dotted_initials:
                continue
            return False, None, f"'{token}' not found in the PDF"
        return True, full_name, "All name parts found (order and initials ignored)"

    @staticmethod
    def _match_email(email: str, pdf_text: str):
        needle = email.strip().lower()
        haystack = pdf_text.lower()
        if needle and (needle in haystack or needle in re.sub(r"\s+", "", haystack)):
            return True, email.strip(), "Email found"
        return False, None, "Email not found in the PDF"

    @staticmethod
    def _match_phone(phone: str, pdf_text: str):
        digits = re.sub(r"\D", "", phone)
        if not digits:
            return False, None, "Phone number has no digits"
        for candidate in re.findall(r"\+?[\d][\d\s().\-/]{4,}\d", pdf_text):
            candidate_digits = re.sub(r"\D", "", candidate)
            if digits in candidate_digits:
                return True, candidate.strip(), "Phone digits match"
            # The PDF may omit the country code the form includes
            if len(candidate_digits) >= 7 and digits.endswith(candidate_digits):
                return True, candidate.strip(), "Phone digits match without country code"
        return False, None, "Phone number not found in the PDF"

    @staticmethod
    def _match_skills(skills: str, padded_text: str):
        listed = [s.strip() for s in re.split(r"[,;\n]", skills) if s.strip()]
        compact_text = padded_text.replace(" ", "")
        missing = []
        for skill in listed:
            normalized = " ".join(_words(skill))
            if not normalized:
                continue
            if f" {normalized} " in padded_text or normalized.replace(" ", "") in compact_text:
                continue
            missing.append(skill)
        if not listed:
            return False, None, "No skills listed"
        if missing:
            return False, None, f"Missing skills: {', '.join(missing)}"
        return True, skills, "All listed skills found"

    @staticmethod
    def _match_experience(experience: str, padded_text: str):
        years = _YEARS_PATTERN.findall(experience)
        for number in years:
            if f" {number} " not in padded_text:
                return False, None, f"'{number} years' not found in the PDF"

        significant = [w for w in _words(experience) if len(w) >= 4 and w not in _STOPWORDS]
        if not significant:
            normalized = " ".join(_words(experience))
            if normalized and f" {normalized} " in padded_text:
                return True, experience, "Experience found"
            return bool(years), None, "Experience consistent" if years else "Experience not found"

        found = [w for w in significant if f" {w} " in padded_text]
        if len(found) * 2 >= len(significant):
            return True, experience, f"{len(found)}/{len(significant)} key terms found"
        return False, None, f"Only {len(found)}/{len(significant)} key terms found"


# --- Validator ---

class Comparator(Protocol):
    async def compare(self, fields: CVFields, pdf_text: str) -> ValidationVerdict: ...


class CVValidator:
    """Runs a comparator with the short circuit, retry and fallback rules applied."""

    def __init__(
        self,
        comparator: Comparator,
        min_text_length: int = DEFAULT_MIN_TEXT_LENGTH,
        max_attempts: int = 3,
        retry_delay_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.comparator = comparator
        self.min_text_length = min_text_length
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    async def validate(self, fields: CVFields, pdf_text: Optional[str]) -> ValidationVerdict:
        if not is_usable_text(pdf_text, self.min_text_length):
            logger.warning("PDF text missing or too short, skipping comparison.")
            return extraction_failed_verdict()

        for attempt in range(1, self.max_attempts + 1):
            try:
                verdict = await self.comparator.compare(fields, pdf_text)
                logger.info(
                    f"Validation finished on attempt {attempt}: valid={verdict.is_valid}, "
                    f"mismatches={verdict.mismatches}"
                )
                return verdict
            except ConfigurationError as ce:
                logger.error(f"Configuration issue during CV validation: {ce}")
                return api_error_verdict()
            except Exception as e:
                if attempt == self.max_attempts:
                    logger.error(f"CV validation failed after {attempt} attempts: {e}", exc_info=True)
                    return api_error_verdict()
                logger.warning(
                    f"CV validation attempt {attempt}/{self.max_attempts} failed, "
                    f"retrying in {self.retry_delay_seconds}s: {e}"
                )
                await self._sleep(self.retry_delay_seconds)
        return api_error_verdict()


def build_cv_validator(settings: Settings, llm: Optional[BaseChatModel] = None) -> CVValidator:
    """Picks the comparator named by VALIDATION_BACKEND."""
    backend = settings.VALIDATION_BACKEND.lower()
    if backend == "keyword":
        comparator = KeywordComparator()
    elif backend == "gemini":
        comparator = GeminiComparator(llm)
    else:
        raise ConfigurationError(f"Unknown VALIDATION_BACKEND: {settings.VALIDATION_BACKEND}")
    return CVValidator(
        comparator,
        min_text_length=settings.MIN_TEXT_LENGTH,
        max_attempts=settings.AI_MAX_ATTEMPTS,
        retry_delay_seconds=settings.AI_RETRY_DELAY_SECONDS,
    )
