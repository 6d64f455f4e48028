from __future__ import annotations

import logging
import threading
from datetime import datetime

from travel_timeline.document_parser import ParseResult, ParseSuccess
from travel_timeline.document_store import DocumentNotFoundError, DocumentRecord, DocumentStore

logger = logging.getLogger(__name__)

SIZE_UNITS = ["Bytes", "KB", "MB", "GB"]


class ParseTracker:
    """Per-record "parsing in progress" flags.

    Advisory only: the store accepts updates whether or not a parse is tracked.
    """

    def __init__(self) -> None:
        self._in_progress: set[str] = set()
        self._lock = threading.Lock()

    def begin(self, document_id: str) -> bool:
        with self._lock:
            if document_id in self._in_progress:
                return False
            self._in_progress.add(document_id)
            return True

    def finish(self, document_id: str) -> None:
        with self._lock:
            self._in_progress.discard(document_id)

    def is_parsing(self, document_id: str) -> bool:
        with self._lock:
            return document_id in self._in_progress


def format_file_size(size_bytes: int) -> str:
    if size_bytes <= 0:
        return "0 Bytes"
    exponent = 0
    while exponent < len(SIZE_UNITS) - 1 and size_bytes >= 1024 ** (exponent + 1):
        exponent += 1
    value = round(size_bytes / (1024**exponent), 2)
    return f"{value:g} {SIZE_UNITS[exponent]}"


def format_scheduled_label(value: datetime) -> str:
    return f"{value:%b} {value.day}, {value:%Y, %I:%M %p}"


def file_kind(content_type: str) -> str:
    if "pdf" in content_type:
        return "pdf"
    if "image" in content_type:
        return "image"
    if "word" in content_type or "document" in content_type:
        return "word"
    return "other"


def preview_mode(content_type: str) -> str:
    """How a front end shows the file: an image modal, a PDF tab, or a download."""

    if "image" in content_type:
        return "image"
    if "pdf" in content_type:
        return "pdf"
    return "download"


def record_view(record: DocumentRecord, tracker: ParseTracker | None = None) -> dict:
    return {
        "id": record.id,
        "display_name": record.display_name,
        "filename": record.filename,
        "content_type": record.content_type,
        "size": record.size,
        "size_label": format_file_size(record.size),
        "scheduled_at": record.scheduled_at.isoformat(),
        "scheduled_label": format_scheduled_label(record.scheduled_at),
        "created_at": record.created_at.isoformat(),
        "file_kind": file_kind(record.content_type),
        "preview_mode": preview_mode(record.content_type),
        "parsing": tracker.is_parsing(record.id) if tracker else False,
    }


def build_timeline(store: DocumentStore, tracker: ParseTracker | None = None) -> dict:
    records = store.list()
    return {
        "count": len(records),
        "documents": [record_view(record, tracker) for record in records],
    }


def apply_parse_result(store: DocumentStore, document_id: str, result: ParseResult) -> DocumentRecord | None:
    """Copy a successful parse onto its record.

    Returns None when there is nothing to apply, including the case of a record
    deleted while its parse call was outstanding.
    """

    if not isinstance(result, ParseSuccess):
        return None

    try:
        return store.update(document_id, **result.record_updates())
    except DocumentNotFoundError:
        logger.info("Dropping parse result for deleted document %s", document_id)
        return None
