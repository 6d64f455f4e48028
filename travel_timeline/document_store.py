from __future__ import annotations

import logging
import tempfile
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, time
from pathlib import Path
from typing import Callable
from uuid import uuid4

from travel_timeline.upload_validation import UploadLimits, ValidationResult, validate_upload

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULED_TIME = time(10, 0)


class UploadRejectedError(ValueError):
    """Raised by `DocumentStore.add` when the upload fails validation."""

    def __init__(self, result: ValidationResult):
        super().__init__(result.message)
        self.result = result


class DocumentNotFoundError(LookupError):
    def __init__(self, document_id: str):
        super().__init__(f"Document '{document_id}' not found.")
        self.document_id = document_id


@dataclass(frozen=True)
class DocumentRecord:
    id: str
    filename: str
    content_type: str
    content: bytes = field(repr=False)
    display_name: str
    scheduled_at: datetime
    created_at: datetime
    preview_path: Path | None = None

    @property
    def size(self) -> int:
        return len(self.content)


def _normalize_scheduled_at(value: datetime) -> datetime:
    # Records are ordered on naive local time.
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


class DocumentStore:
    """In-memory timeline of uploaded documents, kept sorted by `scheduled_at`.

    Every mutation re-sorts under the same lock, so readers never observe an
    unsorted sequence. Ties keep insertion order (`sorted` is stable).
    """

    def __init__(self, limits: UploadLimits, clock: Callable[[], datetime] = datetime.now):
        self.limits = limits
        self._clock = clock
        self._records: list[DocumentRecord] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _resort(self) -> None:
        self._records = sorted(self._records, key=lambda record: record.scheduled_at)

    def _index_of(self, document_id: str) -> int:
        for index, record in enumerate(self._records):
            if record.id == document_id:
                return index
        raise DocumentNotFoundError(document_id)

    def add(self, filename: str, content_type: str | None, content: bytes) -> str:
        result = validate_upload(filename, content_type, len(content), self.limits)
        if not result.accepted:
            logger.info("Upload rejected for %s: %s", filename, result.message)
            raise UploadRejectedError(result)

        now = self._clock()
        record = DocumentRecord(
            id=f"doc_{uuid4().hex}",
            filename=filename,
            content_type=(content_type or "").strip().lower(),
            content=bytes(content),
            display_name=filename,
            scheduled_at=_normalize_scheduled_at(datetime.combine(now.date(), DEFAULT_SCHEDULED_TIME)),
            created_at=now,
        )
        with self._lock:
            self._records.append(record)
            self._resort()
        logger.info("Added document %s (%s, %d bytes)", record.id, filename, record.size)
        return record.id

    def get(self, document_id: str) -> DocumentRecord:
        with self._lock:
            return self._records[self._index_of(document_id)]

    def list(self) -> list[DocumentRecord]:
        with self._lock:
            return list(self._records)

    def update(
        self,
        document_id: str,
        *,
        display_name: str | None = None,
        scheduled_at: datetime | None = None,
    ) -> DocumentRecord:
        changes: dict = {}
        if scheduled_at is not None:
            changes["scheduled_at"] = _normalize_scheduled_at(scheduled_at)

        with self._lock:
            index = self._index_of(document_id)
            current = self._records[index]
            if display_name is not None:
                cleaned = display_name.strip()
                if not cleaned:
                    raise ValueError("Display name must not be empty.")
                changes["display_name"] = cleaned
            if not changes:
                return current
            updated = replace(current, **changes)
            self._records[index] = updated
            if updated.scheduled_at != current.scheduled_at:
                self._resort()
        return updated

    def remove(self, document_id: str) -> None:
        with self._lock:
            index = self._index_of(document_id)
            record = self._records.pop(index)
        _release_preview(record)
        logger.info("Removed document %s", document_id)

    def open_preview(self, document_id: str) -> Path:
        """Materialize the record's bytes as a temporary file for previews.

        The file is created once per record and deleted by `remove`.
        """

        with self._lock:
            index = self._index_of(document_id)
            record = self._records[index]
            if record.preview_path is not None and record.preview_path.exists():
                return record.preview_path

            suffix = Path(record.filename).suffix
            with tempfile.NamedTemporaryFile(
                prefix="timeline-preview-",
                suffix=suffix,
                delete=False,
            ) as handle:
                handle.write(record.content)
                preview_path = Path(handle.name)
            self._records[index] = replace(record, preview_path=preview_path)
        return preview_path

    def clear(self) -> None:
        with self._lock:
            records, self._records = self._records, []
        for record in records:
            _release_preview(record)


def _release_preview(record: DocumentRecord) -> None:
    if record.preview_path is None:
        return
    try:
        record.preview_path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not release preview file %s: %s", record.preview_path, exc)
