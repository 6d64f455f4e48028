from __future__ import annotations

import io
import json
import logging
import os
import re
import string
import zipfile
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union
from xml.etree import ElementTree as ET

from pydantic import ValidationError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from travel_timeline.config import (
    DEFAULT_GEMINI_MODEL,
    DEFAULT_OPENAI_MODEL,
    load_parse_max_bytes,
)
from travel_timeline.llm_provider import (
    LlmJsonResult,
    extract_json_from_document_with_gemini,
    extract_json_from_document_with_openai,
    extract_json_with_gemini,
    extract_json_with_openai,
)
from travel_timeline.parse_schemas import (
    TRAVEL_DOCUMENT_TYPES,
    ParsedDocumentModel,
    TravelDocumentModel,
    simple_response_json_schema,
    travel_response_json_schema,
)

logger = logging.getLogger(__name__)

DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_PARSE_TYPES = frozenset(
    {
        "text/plain",
        "text/csv",
        "application/json",
        "application/pdf",
        "application/msword",
        DOCX_MIME_TYPE,
    }
)
IMAGE_PARSE_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png"})
PARSE_SUPPORTED_TYPES = TEXT_PARSE_TYPES | IMAGE_PARSE_TYPES

MAX_TEXT_CHARS = 50_000
TRUNCATION_MARKER = "\n\n[Content truncated due to length]"

OPENAI_PROVIDERS = {"openai", "chatgpt"}
GEMINI_PROVIDERS = {"gemini"}

SYSTEM_INSTRUCTIONS = (
    "You are a travel document parser that extracts ONLY information explicitly stated in the "
    "document content. NEVER use file metadata, creation dates, or modification dates. Only "
    "extract dates/times that are clearly mentioned in the document text itself."
)

EXTRACTION_RULES = """Rules:
- ONLY extract dates/times that are explicitly mentioned in the document content (NOT file metadata)
- For hotel bookings: ONLY extract check-in and check-out dates/times mentioned in the document
- For flight, train and bus tickets: ONLY extract departure/arrival dates/times mentioned in the document
- For visas: ONLY extract visa issue date, expiry date, or travel dates mentioned in the document
- For passports: ONLY extract issue date or expiry date mentioned in the document
- If no relevant dates are found in the document content, leave the date fields null
- Use descriptive names that include the person's name if available
- For tickets, include the destination in the name
- For visas, include the country and person's name
- For hotel bookings, include the city/location
- Be specific but concise
- For timestamps, include both date and time when available (e.g. "2024-12-25T14:30:00")
- IGNORE any file creation dates, modification dates, or other metadata"""


class ParseFailureReason(str, Enum):
    UNSUPPORTED_TYPE_FOR_PARSING = "unsupported_type_for_parsing"
    TOO_LARGE = "too_large"
    MISSING_CREDENTIALS = "missing_credentials"
    SERVICE_ERROR = "service_error"
    RESPONSE_VALIDATION_ERROR = "response_validation_error"


@dataclass(frozen=True)
class ParseSuccess:
    document_name: str
    document_type: str
    timestamp: datetime | None
    confidence: str | None
    additional_fields: dict[str, Any] = field(default_factory=dict)
    schema: str = "simple"
    warnings: list[str] = field(default_factory=list)

    status = "success"

    def record_updates(self) -> dict[str, Any]:
        """Fields a timeline record takes from a parse: the name and, when stated, the timestamp."""

        updates: dict[str, Any] = {"display_name": self.document_name}
        if self.timestamp is not None:
            updates["scheduled_at"] = self.timestamp
        return updates

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["status"] = self.status
        payload["timestamp"] = self.timestamp.isoformat() if self.timestamp else None
        payload["additional_fields"] = {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in self.additional_fields.items()
        }
        return payload


@dataclass(frozen=True)
class ParseFailure:
    reason: ParseFailureReason
    message: str
    warnings: list[str] = field(default_factory=list)

    status = "error"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "reason": self.reason.value,
            "message": self.message,
            "warnings": self.warnings,
        }


ParseResult = Union[ParseSuccess, ParseFailure]


@dataclass(frozen=True)
class _ProviderSettings:
    name: str
    api_key: str
    model: str


def is_parse_supported(content_type: str | None) -> bool:
    return (content_type or "").strip().lower() in PARSE_SUPPORTED_TYPES


def truncate_text(text: str, max_chars: int = MAX_TEXT_CHARS) -> str:
    if len(text) <= max_chars:
        return text
    logger.info("Document text truncated from %d to %d characters", len(text), max_chars)
    return text[:max_chars] + TRUNCATION_MARKER


def _whole_megabytes(size_bytes: int) -> int:
    return round(size_bytes / (1024 * 1024))


def _resolve_provider(provider: str | None, api_key: str | None) -> _ProviderSettings | ParseFailure:
    selected = (provider or os.getenv("TIMELINE_PARSE_PROVIDER") or "openai").strip().lower()

    if selected in OPENAI_PROVIDERS:
        resolved_key = (api_key or os.getenv("OPENAI_API_KEY") or "").strip()
        if not resolved_key:
            return ParseFailure(
                reason=ParseFailureReason.MISSING_CREDENTIALS,
                message="OpenAI API key not configured. Please set OPENAI_API_KEY.",
            )
        model = (os.getenv("TIMELINE_OPENAI_MODEL") or DEFAULT_OPENAI_MODEL).strip()
        return _ProviderSettings(name="openai", api_key=resolved_key, model=model)

    if selected in GEMINI_PROVIDERS:
        resolved_key = (api_key or os.getenv("GEMINI_API_KEY") or "").strip()
        if not resolved_key:
            return ParseFailure(
                reason=ParseFailureReason.MISSING_CREDENTIALS,
                message="Gemini API key not configured. Please set GEMINI_API_KEY.",
            )
        model = (os.getenv("TIMELINE_GEMINI_MODEL") or DEFAULT_GEMINI_MODEL).strip()
        return _ProviderSettings(name="gemini", api_key=resolved_key, model=model)

    return ParseFailure(
        reason=ParseFailureReason.SERVICE_ERROR,
        message=f"Unknown parsing provider '{selected}'.",
    )


def _decode_text(content_bytes: bytes) -> str:
    decoded = content_bytes.decode("utf-8", errors="replace")
    return re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", " ", decoded)


def _looks_like_unreadable_text(text: str) -> bool:
    normalized = (text or "").strip()
    if not normalized:
        return True

    printable = sum(1 for char in normalized if char in string.printable or char.isalpha())
    printable_ratio = printable / max(1, len(normalized))
    replacement_char_ratio = normalized.count("�") / max(1, len(normalized))
    return printable_ratio < 0.75 or replacement_char_ratio > 0.05


def _extract_pdf_text(content_bytes: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(content_bytes))
        pages = [(page.extract_text() or "").strip() for page in reader.pages]
    except (PdfReadError, ValueError, KeyError) as exc:
        logger.info("PDF text extraction failed, sending the document itself: %s", exc)
        return ""

    extracted = "\n\n".join(page for page in pages if page).strip()
    if _looks_like_unreadable_text(extracted):
        return ""
    return extracted


def _extract_docx_text(content_bytes: bytes) -> str:
    with zipfile.ZipFile(io.BytesIO(content_bytes)) as archive:
        with archive.open("word/document.xml") as document_xml:
            xml_content = document_xml.read()

    root = ET.fromstring(xml_content)
    namespace = {"w": "http://schemas.openxmlformats.org/wordprocessingml/2006/main"}
    paragraphs: list[str] = []

    for paragraph in root.findall(".//w:p", namespace):
        runs = [node.text or "" for node in paragraph.findall(".//w:t", namespace)]
        line = "".join(runs).strip()
        if line:
            paragraphs.append(line)

    return "\n\n".join(paragraphs)


def extract_document_text(content_type: str, content_bytes: bytes) -> str:
    """Readable text of a text-path document, or "" when it has no usable text layer."""

    if content_type == "application/pdf":
        return _extract_pdf_text(content_bytes)
    if content_type == DOCX_MIME_TYPE:
        try:
            return _extract_docx_text(content_bytes)
        except (zipfile.BadZipFile, KeyError, ET.ParseError, NotImplementedError, RuntimeError) as exc:
            logger.info("DOCX text extraction failed, reading raw bytes instead: %s", exc)
            return _decode_text(content_bytes)
    return _decode_text(content_bytes)


def build_text_prompt(filename: str, content_type: str, size: int, document_text: str) -> str:
    return f"""You are a travel document parser. Analyze the following file content and extract key information.

File name: {filename}
File type: {content_type}
File size: {size} bytes

File content:
{document_text}

Please extract the following information from the document content ONLY and return it as JSON:
1. documentName: A clear, descriptive name for the document (e.g. "Passport of John Doe", "VISA for Singapore of Jane Smith", "Flight Ticket to Tokyo", "Hotel Booking in Paris")
2. timestamp: ONLY relevant dates/times explicitly mentioned in the document content (e.g. check-in date, flight departure time, visa expiry date) in ISO datetime format (YYYY-MM-DDTHH:mm:ss), or null
3. documentType: The type of document (e.g. "Passport", "Visa", "Flight Ticket", "Hotel Booking", "Travel Insurance", "Other")
4. confidence: Your confidence level in the parsing (high/medium/low)

{EXTRACTION_RULES}
"""


def build_document_prompt(filename: str, content_type: str) -> str:
    return f"""You are a travel document parser. The attached file "{filename}" ({content_type}) is a travel document.
Read it and return JSON with:
- name: a short descriptive name (e.g. "Flight Ticket to Tokyo", "Hotel Booking in Paris")
- document_type: one of {", ".join(TRAVEL_DOCUMENT_TYPES)}
- origin and destination for tickets, otherwise null
- place_name: the venue, hotel or city the document is about, or null
- start_date and end_date: ISO dates or datetimes stated in the document, or null
- traveler_names: names of the travelers stated in the document
- booking_reference: booking, reservation or ticket number, or null

{EXTRACTION_RULES}
"""


def _request_text_extraction(settings: _ProviderSettings, prompt: str) -> LlmJsonResult:
    request_args = {
        "api_key": settings.api_key,
        "model": settings.model,
        "instructions": SYSTEM_INSTRUCTIONS,
        "prompt": prompt,
        "schema_name": "parsed_document",
        "json_schema": simple_response_json_schema(),
    }
    if settings.name == "gemini":
        return extract_json_with_gemini(**request_args)
    return extract_json_with_openai(**request_args)


def _request_document_extraction(
    settings: _ProviderSettings,
    prompt: str,
    filename: str,
    content_type: str,
    content_bytes: bytes,
) -> LlmJsonResult:
    request_args = {
        "api_key": settings.api_key,
        "model": settings.model,
        "instructions": SYSTEM_INSTRUCTIONS,
        "prompt": prompt,
        "document_bytes": content_bytes,
        "filename": filename,
        "schema_name": "travel_document",
        "json_schema": travel_response_json_schema(),
        "mime_type": "image/jpeg" if content_type == "image/jpg" else content_type,
    }
    if settings.name == "gemini":
        return extract_json_from_document_with_gemini(**request_args)
    return extract_json_from_document_with_openai(**request_args)


def _load_json_reply(response: LlmJsonResult) -> Any | ParseFailure:
    if response.status != "success" or not (response.raw_response or "").strip():
        return ParseFailure(
            reason=ParseFailureReason.SERVICE_ERROR,
            message="No usable response received from the parsing service.",
            warnings=list(response.warnings),
        )
    try:
        return json.loads(response.raw_response)
    except json.JSONDecodeError as exc:
        return ParseFailure(
            reason=ParseFailureReason.SERVICE_ERROR,
            message=f"Parsing service response was not valid JSON: {exc}",
            warnings=list(response.warnings),
        )


def _validation_failure(exc: ValidationError, warnings: list[str]) -> ParseFailure:
    problems = [
        f"{'.'.join(str(part) for part in item['loc']) or 'response'}: {item['msg']}"
        for item in exc.errors()
    ]
    return ParseFailure(
        reason=ParseFailureReason.RESPONSE_VALIDATION_ERROR,
        message="Parsing service response did not match the expected schema.",
        warnings=warnings + problems,
    )


def _simple_success(payload: Any, warnings: list[str]) -> ParseResult:
    try:
        parsed = ParsedDocumentModel.model_validate(payload)
    except ValidationError as exc:
        return _validation_failure(exc, warnings)
    return ParseSuccess(
        document_name=parsed.documentName,
        document_type=parsed.documentType,
        timestamp=parsed.timestamp,
        confidence=parsed.confidence,
        schema="simple",
        warnings=warnings,
    )


def _travel_success(payload: Any, warnings: list[str]) -> ParseResult:
    try:
        parsed = TravelDocumentModel.model_validate(payload)
    except ValidationError as exc:
        return _validation_failure(exc, warnings)
    additional = parsed.model_dump(exclude={"name", "document_type"})
    return ParseSuccess(
        document_name=parsed.name,
        document_type=parsed.document_type,
        timestamp=parsed.start_date,
        confidence=None,
        additional_fields=additional,
        schema="travel",
        warnings=warnings,
    )


def parse_document(
    filename: str,
    content_type: str | None,
    content_bytes: bytes,
    *,
    provider: str | None = None,
    api_key: str | None = None,
) -> ParseResult:
    """Ask the configured LLM for a display name and timestamp of a travel document.

    Type and size are checked before credentials, and credentials before any
    network call. Failures are returned, never raised, and never retried.
    """

    declared_type = (content_type or "").strip().lower()
    if declared_type not in PARSE_SUPPORTED_TYPES:
        return ParseFailure(
            reason=ParseFailureReason.UNSUPPORTED_TYPE_FOR_PARSING,
            message=(
                f"File type {declared_type or 'unknown'} is not supported for parsing. "
                "Supported types: text, PDF, Word documents, CSV, JSON, JPEG and PNG images"
            ),
        )

    max_bytes = load_parse_max_bytes()
    if len(content_bytes) > max_bytes:
        return ParseFailure(
            reason=ParseFailureReason.TOO_LARGE,
            message=(
                f"File is too large for AI parsing ({_whole_megabytes(len(content_bytes))}MB). "
                f"Maximum size for parsing is {_whole_megabytes(max_bytes)}MB."
            ),
        )

    settings = _resolve_provider(provider, api_key)
    if isinstance(settings, ParseFailure):
        return settings

    document_text = ""
    if declared_type in TEXT_PARSE_TYPES:
        document_text = extract_document_text(declared_type, content_bytes)
    # Images and PDFs without a text layer go to the service as files.
    send_as_file = declared_type in IMAGE_PARSE_TYPES or (
        declared_type == "application/pdf" and not document_text.strip()
    )

    logger.info("Parsing %s (%s) with %s/%s", filename, declared_type, settings.name, settings.model)
    if not send_as_file:
        prompt = build_text_prompt(filename, declared_type, len(content_bytes), truncate_text(document_text))
        response = _request_text_extraction(settings, prompt)
        build_success = _simple_success
    else:
        prompt = build_document_prompt(filename, declared_type)
        response = _request_document_extraction(settings, prompt, filename, declared_type, content_bytes)
        build_success = _travel_success

    payload = _load_json_reply(response)
    if isinstance(payload, ParseFailure):
        logger.warning("Parse of %s failed: %s", filename, payload.message)
        return payload

    result = build_success(payload, list(response.warnings))
    if isinstance(result, ParseFailure):
        logger.warning("Parse of %s returned an invalid payload: %s", filename, "; ".join(result.warnings))
    return result
