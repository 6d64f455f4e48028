from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib import error, request

from travel_timeline.config import load_llm_timeout_seconds

logger = logging.getLogger(__name__)

OPENAI_RESPONSES_URL = "https://api.openai.com/v1/responses"
GEMINI_GENERATE_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent?key={api_key}"
MAX_OUTPUT_TOKENS = 500
TEMPERATURE = 0.1


@dataclass(frozen=True)
class LlmJsonResult:
    status: str
    raw_response: str | None
    warnings: list[str]


def _post_json(url: str, payload: dict[str, Any], headers: dict[str, str], timeout: float) -> dict[str, Any]:
    body = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=body, headers=headers, method="POST")
    with request.urlopen(req, timeout=timeout) as response:
        response_body = response.read().decode("utf-8")
    return json.loads(response_body)


def _http_error_warning(provider_name: str, exc: error.HTTPError) -> str:
    response_excerpt = ""
    try:
        response_body = exc.read().decode("utf-8", errors="replace").strip()
    except OSError:
        response_body = ""

    if response_body:
        try:
            parsed = json.loads(response_body)
            if isinstance(parsed, dict):
                error_payload = parsed.get("error")
                if isinstance(error_payload, dict):
                    message = error_payload.get("message")
                    if isinstance(message, str) and message.strip():
                        response_excerpt = message.strip()
        except json.JSONDecodeError:
            response_excerpt = response_body[:200]

    if response_excerpt:
        return f"{provider_name} request failed with HTTP {exc.code}: {response_excerpt}"

    return f"{provider_name} request failed with HTTP {exc.code}."


def _collect_gemini_text(response_payload: dict[str, Any]) -> str | None:
    candidates = response_payload.get("candidates") or []
    if not candidates:
        return None

    candidate = candidates[0] if isinstance(candidates, list) else None
    content = candidate.get("content") if isinstance(candidate, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return None

    extracted: list[str] = []
    for part in parts:
        text = part.get("text") if isinstance(part, dict) else None
        if isinstance(text, str) and text.strip():
            extracted.append(text.strip())

    if extracted:
        return "\n".join(extracted)
    return None


def _unexpected_payload(provider_label: str, response_payload: Any) -> LlmJsonResult:
    logger.warning("%s returned a %s instead of a JSON object", provider_label, type(response_payload).__name__)
    return LlmJsonResult(
        status="error",
        raw_response=json.dumps(response_payload),
        warnings=[f"{provider_label} response was not a JSON object."],
    )


def _collect_openai_text(content: Any) -> list[str]:
    if not isinstance(content, list):
        return []

    collected: list[str] = []
    for part in content:
        if not isinstance(part, dict):
            continue

        direct_text = part.get("text")
        if isinstance(direct_text, str) and direct_text.strip():
            collected.append(direct_text.strip())
            continue

        value = part.get("value")
        if isinstance(value, str) and value.strip():
            collected.append(value.strip())

    return collected


def _extract_openai_text(response_payload: dict[str, Any]) -> str | None:
    output_text = response_payload.get("output_text")
    if isinstance(output_text, str) and output_text.strip():
        return output_text.strip()

    output = response_payload.get("output")
    if isinstance(output, list):
        extracted: list[str] = []
        for item in output:
            if not isinstance(item, dict):
                continue
            extracted.extend(_collect_openai_text(item.get("content")))

        if extracted:
            return "\n".join(extracted)

    return None


def _detect_document_mime_type(document_bytes: bytes) -> str:
    if document_bytes.startswith(b"%PDF"):
        return "application/pdf"
    if document_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if document_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    return "application/octet-stream"


def _openai_headers(api_key: str) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {api_key}",
    }


def _openai_text_format(schema_name: str, json_schema: dict[str, Any]) -> dict[str, Any]:
    return {
        "format": {
            "type": "json_schema",
            "name": schema_name,
            "schema": json_schema,
            "strict": True,
        }
    }


def _gemini_schema_hint(json_schema: dict[str, Any]) -> str:
    return "Respond with a single JSON object matching this JSON schema:\n" + json.dumps(json_schema)


def _openai_document_part(document_bytes: bytes, mime_type: str, filename: str) -> dict[str, Any]:
    encoded = base64.b64encode(document_bytes).decode("ascii")
    data_url = f"data:{mime_type};base64,{encoded}"
    if mime_type.startswith("image/"):
        return {"type": "input_image", "image_url": data_url}
    return {"type": "input_file", "filename": filename, "file_data": data_url}


def _send_openai(provider_label: str, payload: dict[str, Any], api_key: str, timeout: float | None) -> LlmJsonResult:
    try:
        response_payload = _post_json(
            OPENAI_RESPONSES_URL,
            payload,
            _openai_headers(api_key),
            timeout or load_llm_timeout_seconds(),
        )
    except error.HTTPError as exc:
        warning = _http_error_warning("OpenAI", exc)
        logger.warning(warning)
        return LlmJsonResult(status="error", raw_response=None, warnings=[warning])
    except (OSError, ValueError) as exc:
        logger.warning("%s request failed: %s", provider_label, exc)
        return LlmJsonResult(
            status="error",
            raw_response=None,
            warnings=[f"{provider_label} request failed before receiving a response."],
        )

    if not isinstance(response_payload, dict):
        return _unexpected_payload(provider_label, response_payload)

    extracted_text = _extract_openai_text(response_payload)
    if extracted_text:
        return LlmJsonResult(status="success", raw_response=extracted_text, warnings=[])

    return LlmJsonResult(
        status="error",
        raw_response=json.dumps(response_payload),
        warnings=[f"{provider_label} response did not contain extractable text content."],
    )


def _send_gemini(provider_label: str, model: str, payload: dict[str, Any], api_key: str, timeout: float | None) -> LlmJsonResult:
    endpoint = GEMINI_GENERATE_URL.format(model=model, api_key=api_key)
    try:
        response_payload = _post_json(
            endpoint,
            payload,
            {"Content-Type": "application/json"},
            timeout or load_llm_timeout_seconds(),
        )
    except error.HTTPError as exc:
        warning = _http_error_warning("Gemini", exc)
        logger.warning(warning)
        return LlmJsonResult(status="error", raw_response=None, warnings=[warning])
    except (OSError, ValueError) as exc:
        # The endpoint URL carries the key, so only the exception type is logged.
        logger.warning("%s request failed: %s", provider_label, type(exc).__name__)
        return LlmJsonResult(
            status="error",
            raw_response=None,
            warnings=[f"{provider_label} request failed before receiving a response."],
        )

    if not isinstance(response_payload, dict):
        return _unexpected_payload(provider_label, response_payload)

    extracted_text = _collect_gemini_text(response_payload)
    if extracted_text:
        return LlmJsonResult(status="success", raw_response=extracted_text, warnings=[])

    return LlmJsonResult(
        status="error",
        raw_response=json.dumps(response_payload),
        warnings=[f"{provider_label} response did not contain JSON text content."],
    )


def _gemini_payload(instructions: str, parts: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "systemInstruction": {"parts": [{"text": instructions}]},
        "contents": [{"parts": parts}],
        "generationConfig": {
            "responseMimeType": "application/json",
            "temperature": TEMPERATURE,
            "maxOutputTokens": MAX_OUTPUT_TOKENS,
        },
    }


def extract_json_with_openai(
    api_key: str,
    model: str,
    instructions: str,
    prompt: str,
    schema_name: str,
    json_schema: dict[str, Any],
    timeout: float | None = None,
) -> LlmJsonResult:
    payload = {
        "model": model,
        "instructions": instructions,
        "input": prompt,
        "temperature": TEMPERATURE,
        "max_output_tokens": MAX_OUTPUT_TOKENS,
        "text": _openai_text_format(schema_name, json_schema),
    }
    return _send_openai("OpenAI", payload, api_key, timeout)


def extract_json_with_gemini(
    api_key: str,
    model: str,
    instructions: str,
    prompt: str,
    schema_name: str,
    json_schema: dict[str, Any],
    timeout: float | None = None,
) -> LlmJsonResult:
    parts = [{"text": prompt}, {"text": _gemini_schema_hint(json_schema)}]
    return _send_gemini("Gemini", model, _gemini_payload(instructions, parts), api_key, timeout)


def extract_json_from_document_with_openai(
    api_key: str,
    model: str,
    instructions: str,
    prompt: str,
    document_bytes: bytes,
    filename: str,
    schema_name: str,
    json_schema: dict[str, Any],
    mime_type: str | None = None,
    timeout: float | None = None,
) -> LlmJsonResult:
    document_mime_type = mime_type or _detect_document_mime_type(document_bytes)
    payload = {
        "model": model,
        "instructions": instructions,
        "input": [
            {
                "role": "user",
                "content": [
                    {"type": "input_text", "text": prompt},
                    _openai_document_part(document_bytes, document_mime_type, filename),
                ],
            }
        ],
        "temperature": TEMPERATURE,
        "max_output_tokens": MAX_OUTPUT_TOKENS,
        "text": _openai_text_format(schema_name, json_schema),
    }
    return _send_openai("OpenAI document", payload, api_key, timeout)


def extract_json_from_document_with_gemini(
    api_key: str,
    model: str,
    instructions: str,
    prompt: str,
    document_bytes: bytes,
    filename: str,
    schema_name: str,
    json_schema: dict[str, Any],
    mime_type: str | None = None,
    timeout: float | None = None,
) -> LlmJsonResult:
    document_mime_type = mime_type or _detect_document_mime_type(document_bytes)
    parts = [
        {"text": prompt},
        {"text": _gemini_schema_hint(json_schema)},
        {
            "inline_data": {
                "mime_type": document_mime_type,
                "data": base64.b64encode(document_bytes).decode("ascii"),
            }
        },
    ]
    return _send_gemini("Gemini document", model, _gemini_payload(instructions, parts), api_key, timeout)
