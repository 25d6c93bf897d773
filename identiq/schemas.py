"""Schemas (Pydantic models) for detection payloads and turn responses.

Detection payloads come from an upstream model and are validated here, at the
registry boundary, before anything is merged. Both models forbid extra
fields: an unexpected key in either direction is treated as a malformed
payload / leaked structure rather than passed through.
"""

import json
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .constants import STATUS_ERROR, STATUS_SUCCESS
from .exceptions import MalformedDetectionError

__all__ = [
    "PersonDetection",
    "DetectionPayload",
    "TurnResponse",
    "parse_detection",
]


def _clean_strings(values: Any) -> Any:
    """Strip entries and drop blanks; non-list input is left for pydantic."""
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, list):
        return values
    cleaned = []
    for value in values:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        cleaned.append(value)
    return cleaned


# --- INBOUND (DETECTION) ---
class PersonDetection(BaseModel):
    """One person extracted from a turn by the upstream detector."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    matched_name: str = Field(..., min_length=1, max_length=512)
    aliases: List[str] = Field(default_factory=list)
    emails: List[str] = Field(default_factory=list)
    phones: List[str] = Field(default_factory=list)
    addresses: List[str] = Field(default_factory=list)
    ids: List[str] = Field(default_factory=list)
    # kind -> names of the other persons ("spouse": ["Jane Smith"])
    relationships: Dict[str, List[str]] = Field(default_factory=dict)
    confidence: float = Field(..., ge=0.0, le=1.0)
    # Explicit primary-name correction; applied only above stored confidence
    corrected_name: Optional[str] = Field(default=None, max_length=512)

    @field_validator("matched_name", "corrected_name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        if isinstance(value, str):
            return " ".join(value.split())
        return value

    @field_validator("aliases", "emails", "phones", "addresses", "ids", mode="before")
    @classmethod
    def _clean_lists(cls, value: Any) -> Any:
        return _clean_strings(value)

    @field_validator("relationships", mode="before")
    @classmethod
    def _clean_relationships(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, dict):
            return value
        cleaned = {}
        for kind, targets in value.items():
            if isinstance(kind, str):
                kind = kind.strip().lower()
            if not kind:
                continue
            cleaned[kind] = _clean_strings(targets)
        return cleaned

    @field_validator("corrected_name")
    @classmethod
    def _blank_correction_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None


class DetectionPayload(BaseModel):
    """Detection result for one turn of one session."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    persons: List[PersonDetection]
    chat_response: Optional[str] = None
    raw_text: str


# --- OUTBOUND (RESPONSE) ---
class TurnResponse(BaseModel):
    """
    Response for one processed turn.

    The field set is closed. Conversation-only fields are None in single-shot
    mode and dropped on serialization.
    """

    model_config = ConfigDict(extra="forbid")

    status: str = Field(..., pattern=f"^({STATUS_SUCCESS}|{STATUS_ERROR})$")
    sanitized_text: str
    session_id: str
    persons: Dict[str, Dict[str, Any]]
    token_map: Dict[str, str]
    pii_mapping: Dict[str, str]
    original_input: str
    timestamp: str
    chat_response: Optional[str] = None
    conversation_turn: Optional[int] = Field(default=None, ge=0)
    conversation_length: Optional[int] = Field(default=None, ge=0)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


def parse_detection(data: Union[DetectionPayload, Dict[str, Any], str, bytes]) -> DetectionPayload:
    """
    Validate an upstream detection payload.

    Accepts a model instance, a mapping, or JSON text (models often return
    their extraction as a string).

    Raises:
        MalformedDetectionError: on any shape or type failure
    """
    if isinstance(data, DetectionPayload):
        return data

    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise MalformedDetectionError(
                f"Detection payload is not valid JSON: {e.__class__.__name__}",
                raw_payload=data,
            ) from e

    if not isinstance(data, dict):
        raise MalformedDetectionError(
            f"Detection payload must be an object, got {type(data).__name__}",
            raw_payload=data,
        )

    try:
        return DetectionPayload.model_validate(data)
    except ValidationError as e:
        # Locations and error types only - input values may be PII
        locations = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        kinds = sorted({err["type"] for err in e.errors()})
        raise MalformedDetectionError(
            f"Detection payload failed validation ({len(locations)} error(s): "
            f"{', '.join(kinds)})",
            raw_payload=data,
            locations=locations,
        ) from e
