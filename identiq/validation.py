"""Response validation.

Checks a turn response against the expectations of a scenario case. Used by
`identiq replay` and by tests; callable on responses that came from any
transport.

Checks:
1. Closed field set: unexpected top-level fields suggest injected structure
2. Required fields, status and original input
3. Expected tokens / persons / attributes / token_map entries / pii_mapping values
4. Exact sanitized text
5. Timestamp (ISO 8601) and session id format (scoped or legacy)
6. Round trip: token_map and pii_mapping keys equal the tokens in the text

Returns a list of human-readable error strings; empty means valid. Error
strings name tokens and fields, never attribute values from the response.
"""

import re
from typing import Any, Dict, List, Mapping, Optional

from .pipeline.tokens import find_tokens
from .services.session_registry import is_legacy_session_id, is_scoped_session_id

__all__ = [
    "BASE_FIELDS",
    "CONVERSATION_FIELDS",
    "validate_response",
    "check_round_trip",
]

BASE_FIELDS = frozenset([
    "status", "sanitized_text", "session_id", "pii_mapping",
    "persons", "token_map", "original_input", "timestamp",
])
CONVERSATION_FIELDS = frozenset([
    "chat_response", "conversation_turn", "conversation_length",
])

_ISO_TIMESTAMP = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")


def check_round_trip(response: Mapping[str, Any]) -> List[str]:
    """Every token in sanitized_text is mapped, and nothing else is."""
    errors: List[str] = []
    text = response.get("sanitized_text")
    if not isinstance(text, str):
        return errors

    in_text = {ref.token for ref in find_tokens(text)}
    for field in ("token_map", "pii_mapping"):
        mapping = response.get(field)
        if not isinstance(mapping, Mapping):
            continue
        missing = sorted(in_text - set(mapping))
        extra = sorted(set(mapping) - in_text)
        if missing:
            errors.append(f"Tokens in sanitized text missing from {field}: {', '.join(missing)}")
        if extra:
            errors.append(f"Tokens in {field} not present in sanitized text: {', '.join(extra)}")
    return errors


def validate_response(
    response: Mapping[str, Any],
    expected: Mapping[str, Any],
    original_input: str,
    checks: Optional[Mapping[str, Any]] = None,
    conversational: bool = True,
) -> List[str]:
    """
    Validate one turn response.

    Args:
        response: Response dict as serialized for the transport
        expected: Expected values (status, sanitized_text, and optionally
            pii_mapping, persons, token_map)
        original_input: Message the turn was sent with
        checks: Optional structural checks (required_fields, pii_tokens,
            person_tokens, pii_attributes)
        conversational: Allow the conversation-only fields

    Returns:
        List of error strings (empty if the response is valid)
    """
    errors: List[str] = []
    checks = checks or {}

    allowed = BASE_FIELDS | CONVERSATION_FIELDS if conversational else BASE_FIELDS
    unexpected = [field for field in response if field not in allowed]
    if unexpected:
        errors.append(f"Unexpected fields detected (possible injection): {', '.join(unexpected)}")

    for field in checks.get("required_fields", []):
        if field not in response:
            errors.append(f"Missing required field: {field}")

    if "status" in expected and response.get("status") != expected["status"]:
        errors.append(f"Expected status {expected['status']!r}, got {response.get('status')!r}")

    if response.get("original_input") != original_input:
        errors.append("Original input mismatch")

    sanitized = response.get("sanitized_text") or ""
    pii_mapping: Dict[str, Any] = response.get("pii_mapping") or {}
    persons: Dict[str, Any] = response.get("persons") or {}
    token_map: Dict[str, Any] = response.get("token_map") or {}

    for token in checks.get("pii_tokens", []):
        if token not in sanitized:
            errors.append(f"Expected PII token {token!r} not found in sanitized text")
        if token not in pii_mapping:
            errors.append(f"Expected PII token {token!r} not found in mapping")

    for person_key in checks.get("person_tokens", []):
        if person_key not in persons:
            errors.append(f"Expected person {person_key!r} not found in persons")

    for person_key in (expected.get("persons") or {}):
        actual = persons.get(person_key)
        if actual is None:
            errors.append(f"Expected person {person_key!r} not found in response")
            continue
        for attr in checks.get("pii_attributes", []):
            if attr not in actual:
                errors.append(f"Person {person_key!r} missing required attribute {attr!r}")

    for token, path in (expected.get("token_map") or {}).items():
        if token not in token_map:
            errors.append(f"Expected token {token!r} not found in token_map")
        elif token_map[token] != path:
            errors.append(f"token_map path mismatch for {token}: expected {path!r}, got {token_map[token]!r}")

    for token, value in (expected.get("pii_mapping") or {}).items():
        if pii_mapping.get(token) != value:
            # Values are test fixtures, not live PII, so they may be shown
            errors.append(
                f"PII mapping mismatch for {token}: expected {value!r}, got {pii_mapping.get(token)!r}"
            )

    if "sanitized_text" in expected and sanitized != expected["sanitized_text"]:
        errors.append(
            f"Sanitized text mismatch:\n  Expected: {expected['sanitized_text']!r}\n"
            f"  Actual:   {sanitized!r}"
        )

    timestamp = response.get("timestamp")
    if timestamp and not _ISO_TIMESTAMP.match(timestamp):
        errors.append(f"Invalid timestamp format: {timestamp}")

    session_id = response.get("session_id")
    if session_id and not (is_scoped_session_id(session_id) or is_legacy_session_id(session_id)):
        errors.append(f"Invalid session_id format: {session_id}")

    errors.extend(check_round_trip(response))
    return errors
