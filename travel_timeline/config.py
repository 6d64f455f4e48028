from __future__ import annotations

import os

DEFAULT_ALLOWED_UPLOAD_TYPES = (
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/jpg",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
)
DEFAULT_MAX_UPLOAD_BYTES = 25 * 1024 * 1024
DEFAULT_PARSE_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_GEMINI_MODEL = "gemini-1.5-flash"
DEFAULT_LLM_TIMEOUT_SECONDS = 30.0


def _int_from_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _csv_from_env(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def load_allowed_upload_types() -> frozenset[str]:
    configured = _csv_from_env("TIMELINE_ALLOWED_UPLOAD_TYPES", ",".join(DEFAULT_ALLOWED_UPLOAD_TYPES))
    return frozenset(item.lower() for item in (configured or DEFAULT_ALLOWED_UPLOAD_TYPES))


def load_max_upload_bytes() -> int:
    return _int_from_env("TIMELINE_MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES)


def load_parse_max_bytes() -> int:
    return _int_from_env("TIMELINE_PARSE_MAX_BYTES", DEFAULT_PARSE_MAX_BYTES)


def load_cors_origins() -> list[str]:
    return _csv_from_env("TIMELINE_CORS_ALLOWED_ORIGINS", DEFAULT_CORS_ORIGINS)


def load_llm_timeout_seconds() -> float:
    raw = (os.getenv("TIMELINE_LLM_TIMEOUT_SECONDS") or "").strip()
    try:
        value = float(raw) if raw else DEFAULT_LLM_TIMEOUT_SECONDS
    except ValueError:
        return DEFAULT_LLM_TIMEOUT_SECONDS
    return value if value > 0 else DEFAULT_LLM_TIMEOUT_SECONDS


def load_log_level() -> str:
    return (os.getenv("TIMELINE_LOG_LEVEL") or "INFO").strip().upper() or "INFO"
