from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum

from travel_timeline.config import load_allowed_upload_types, load_max_upload_bytes

WILDCARD_TYPE = "*"


class RejectReason(str, Enum):
    SIZE_EXCEEDED = "size_exceeded"
    UNSUPPORTED_TYPE = "unsupported_type"


@dataclass(frozen=True)
class UploadLimits:
    allowed_types: frozenset[str]
    max_size_bytes: int

    @property
    def accepts_all_types(self) -> bool:
        return WILDCARD_TYPE in self.allowed_types

    def to_dict(self) -> dict:
        return {
            "allowed_types": sorted(self.allowed_types),
            "max_size_bytes": self.max_size_bytes,
            "max_size_mb": _whole_megabytes(self.max_size_bytes),
        }


@dataclass(frozen=True)
class ValidationResult:
    status: str
    message: str
    warnings: list[str] = field(default_factory=list)
    reason: RejectReason | None = None

    @property
    def accepted(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["reason"] = self.reason.value if self.reason else None
        return payload


def _whole_megabytes(size_bytes: int) -> int:
    return round(size_bytes / (1024 * 1024))


def load_upload_limits() -> UploadLimits:
    return UploadLimits(
        allowed_types=load_allowed_upload_types(),
        max_size_bytes=load_max_upload_bytes(),
    )


def validate_upload(filename: str, content_type: str | None, size: int, limits: UploadLimits) -> ValidationResult:
    """Admission check for a candidate upload: size first, then declared MIME type."""

    declared_type = (content_type or "").strip().lower()

    if size > limits.max_size_bytes:
        return ValidationResult(
            status="error",
            message=f"File size exceeds {_whole_megabytes(limits.max_size_bytes)}MB limit",
            warnings=[f"'{filename}' is {size} bytes; the limit is {limits.max_size_bytes} bytes."],
            reason=RejectReason.SIZE_EXCEEDED,
        )

    if not limits.accepts_all_types and declared_type not in limits.allowed_types:
        return ValidationResult(
            status="error",
            message=f"File type {declared_type or 'unknown'} is not supported",
            warnings=[f"Supported types: {', '.join(sorted(limits.allowed_types))}."],
            reason=RejectReason.UNSUPPORTED_TYPE,
        )

    return ValidationResult(status="success", message="File accepted for the timeline.")
