"""Text tokenization - replace known PII values with tokens, and back.

sanitize() runs one regex pass over the text. Each match is either:
    - a token already present in the text: kept if it resolves against the
      session's persons, masked otherwise, so every token left in the output
      is resolvable
    - a known literal value (name, alias, attribute): replaced by its token

Values are matched case-insensitively, with flexible inner whitespace and on
word boundaries ("Jon" never matches inside "Jonas"). Longer values are tried
first so "John Smith" wins over a "John" alias and an email wins over a name
it contains.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Pattern, Tuple

from ..constants import ATTRIBUTE_FIELDS, REDACTED_MASK
from ..types import PersonRecord
from .merger import normalize_value
from .tokens import TOKEN_PATTERN, TokenRef, parse, token_for

logger = logging.getLogger(__name__)

__all__ = [
    "RestoreResult",
    "resolve_token",
    "build_value_tokens",
    "sanitize",
    "restore",
]


def _match_key(text: str) -> str:
    """Lookup key for a matched span; mirrors re.IGNORECASE folding."""
    return " ".join(text.split()).lower()


def resolve_token(ref: TokenRef, persons: Mapping[int, PersonRecord]) -> Optional[str]:
    """Literal value a token stands for, or None if it does not resolve."""
    record = persons.get(ref.person_id)
    if record is None:
        return None
    if ref.kind is None:
        return record.primary_name
    return record.attribute(ref.kind, ref.ordinal)


def build_value_tokens(
    persons: Mapping[int, PersonRecord],
    resolutions: Optional[Mapping[str, int]] = None,
) -> Dict[str, Tuple[str, str]]:
    """
    Map every known literal to its token.

    Args:
        persons: Person records of the session
        resolutions: {normalized name: person_id} decided for this turn

    Returns:
        {match_key: (value, token)}. A name shared by several persons goes
        to the person this turn resolved it to, else to the person holding
        it as primary name, else to the lowest person_id. Shared attribute
        values go to the lowest person_id.
    """
    value_tokens: Dict[str, Tuple[str, str]] = {}

    for person_id in sorted(persons):
        record = persons[person_id]
        value_tokens.setdefault(
            _match_key(record.primary_name), (record.primary_name, token_for(person_id))
        )

    for person_id in sorted(persons):
        record = persons[person_id]
        name_token = token_for(person_id)
        for name in record.aliases:
            value_tokens.setdefault(_match_key(name), (name, name_token))

        for kind in ATTRIBUTE_FIELDS:
            for ordinal, value in enumerate(record.attributes(kind), start=1):
                value_tokens.setdefault(
                    _match_key(value), (value, token_for(person_id, kind, ordinal))
                )

    for key, person_id in (resolutions or {}).items():
        record = persons.get(person_id)
        if record is None:
            continue
        for name in (record.primary_name, *record.aliases):
            if normalize_value(name) == key:
                value_tokens[_match_key(name)] = (name, token_for(person_id))

    value_tokens.pop("", None)
    return value_tokens


def _value_regex(value: str) -> str:
    return r"\s+".join(re.escape(part) for part in value.split())


def _build_pattern(value_tokens: Mapping[str, Tuple[str, str]]) -> Pattern:
    token_alt = f"(?P<token>{TOKEN_PATTERN.pattern})"
    if not value_tokens:
        return re.compile(token_alt)

    ordered = sorted(value_tokens, key=len, reverse=True)
    values_alt = "|".join(_value_regex(value_tokens[key][0]) for key in ordered)
    return re.compile(
        f"{token_alt}|(?<!\\w)(?P<value>{values_alt})(?!\\w)",
        re.IGNORECASE,
    )


def sanitize(
    text: str,
    persons: Mapping[int, PersonRecord],
    resolutions: Optional[Mapping[str, int]] = None,
) -> str:
    """
    Replace every known PII value in text with its token.

    Args:
        text: Raw text of the turn
        persons: Person records of the session (already merged for this turn)
        resolutions: {normalized name: person_id} of this turn's detections;
            decides which token a name shared by several persons gets

    Returns:
        Sanitized text in which every grammar-valid token resolves
    """
    if not text:
        return ""

    value_tokens = build_value_tokens(persons, resolutions)
    pattern = _build_pattern(value_tokens)
    masked = 0

    def replace(match: re.Match) -> str:
        nonlocal masked
        if match.group("token") is not None:
            ref = parse(match.group("token"))
            if ref is None:
                # Case variant like "[person1]": not a token, leave as text
                return match.group(0)
            if resolve_token(ref, persons) is not None:
                return ref.token
            masked += 1
            return REDACTED_MASK

        entry = value_tokens.get(_match_key(match.group("value")))
        if entry is None:
            # Folding mismatch on exotic characters; never leak the span
            masked += 1
            return REDACTED_MASK
        return entry[1]

    result = pattern.sub(replace, text)

    if masked:
        logger.warning(f"Masked {masked} unresolvable token-shaped span(s) in input")

    return result


@dataclass
class RestoreResult:
    """Result of token restoration."""
    restored: str
    tokens_found: List[str]
    tokens_unknown: List[str]


def restore(text: str, persons: Mapping[int, PersonRecord]) -> RestoreResult:
    """
    Replace tokens with the values they stand for.

    Unknown tokens are masked so that a stale token does not disclose which
    persons or attributes once existed.
    """
    tokens_found: List[str] = []
    tokens_unknown: List[str] = []

    def replace(match: re.Match) -> str:
        token = match.group(0)
        ref = parse(token)
        value = resolve_token(ref, persons) if ref is not None else None
        if value is None:
            tokens_unknown.append(token)
            return REDACTED_MASK
        tokens_found.append(token)
        return value

    restored = TOKEN_PATTERN.sub(replace, text or "")
    return RestoreResult(
        restored=restored,
        tokens_found=tokens_found,
        tokens_unknown=tokens_unknown,
    )
