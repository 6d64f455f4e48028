from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

TRAVEL_DOCUMENT_TYPES = (
    "flight_ticket",
    "train_ticket",
    "bus_ticket",
    "hotel_booking",
    "entry_ticket",
    "visa",
    "passport",
    "itinerary",
    "other",
)

TravelDocumentType = Literal[
    "flight_ticket",
    "train_ticket",
    "bus_ticket",
    "hotel_booking",
    "entry_ticket",
    "visa",
    "passport",
    "itinerary",
    "other",
]


def _require_text(value: str) -> str:
    cleaned = value.strip()
    if not cleaned:
        raise ValueError("must not be empty")
    return cleaned


class ParsedDocumentModel(BaseModel):
    """Reply shape of the text path: name, optional timestamp, type tag and confidence."""

    model_config = ConfigDict(extra="ignore")

    documentName: str
    timestamp: datetime | None = None
    documentType: str
    confidence: Literal["high", "medium", "low"]

    @field_validator("documentName", "documentType")
    @classmethod
    def check_not_blank(cls, value: str) -> str:
        return _require_text(value)

    @field_validator("timestamp", mode="before")
    @classmethod
    def blank_timestamp_is_missing(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class TravelDocumentModel(BaseModel):
    """Reply shape of the document-payload path (images and scanned PDFs)."""

    model_config = ConfigDict(extra="ignore")

    name: str
    document_type: TravelDocumentType
    origin: str | None = None
    destination: str | None = None
    place_name: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    traveler_names: list[str] = Field(default_factory=list)
    booking_reference: str | None = None

    @field_validator("name")
    @classmethod
    def check_name_not_blank(cls, value: str) -> str:
        return _require_text(value)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def accept_plain_dates(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
            # A bare date means the start of that day.
            if len(value) == 10:
                return datetime.combine(date.fromisoformat(value), datetime.min.time())
        return value

    @field_validator("traveler_names", mode="before")
    @classmethod
    def null_travelers_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


def simple_response_json_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "documentName": {"type": "string"},
            "timestamp": {"type": ["string", "null"], "description": "ISO datetime YYYY-MM-DDTHH:mm:ss"},
            "documentType": {"type": "string"},
            "confidence": {"type": "string", "enum": ["high", "medium", "low"]},
        },
        "required": ["documentName", "timestamp", "documentType", "confidence"],
        "additionalProperties": False,
    }


def travel_response_json_schema() -> dict[str, Any]:
    nullable_text = {"type": ["string", "null"]}
    return {
        "type": "object",
        "properties": {
            "name": {"type": "string"},
            "document_type": {"type": "string", "enum": list(TRAVEL_DOCUMENT_TYPES)},
            "origin": nullable_text,
            "destination": nullable_text,
            "place_name": nullable_text,
            "start_date": {"type": ["string", "null"], "description": "ISO date or datetime"},
            "end_date": {"type": ["string", "null"], "description": "ISO date or datetime"},
            "traveler_names": {"type": "array", "items": {"type": "string"}},
            "booking_reference": nullable_text,
        },
        "required": [
            "name",
            "document_type",
            "origin",
            "destination",
            "place_name",
            "start_date",
            "end_date",
            "traveler_names",
            "booking_reference",
        ],
        "additionalProperties": False,
    }
