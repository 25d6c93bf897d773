"""Token allocation - canonical person/attribute tokens and their parsing.

Grammar:
    [Person<N>]              bare name reference for person N
    [Person<N>:<kind><M>]    M-th attribute of that kind for person N

kind is one of email, phone, address, id. N and M are 1-based and written
without leading zeros, so every (person, kind, ordinal) triple has exactly one
spelling. Everything here is a pure function.
"""

import re
from dataclasses import dataclass
from typing import Iterator, Optional

from ..constants import ATTRIBUTE_FIELDS, ATTRIBUTE_KINDS, PERSON_TOKEN_PREFIX

__all__ = [
    "TokenRef",
    "TOKEN_PATTERN",
    "token_for",
    "person_key",
    "parse",
    "find_tokens",
    "attribute_path",
]


_KIND_ALTERNATION = "|".join(sorted(ATTRIBUTE_KINDS, key=len, reverse=True))

# Grammar-valid tokens only. Used both for full matching and for scanning text.
TOKEN_PATTERN = re.compile(
    r"\[" + PERSON_TOKEN_PREFIX + r"([1-9]\d*)"
    r"(?::(" + _KIND_ALTERNATION + r")([1-9]\d*))?\]"
)


@dataclass(frozen=True)
class TokenRef:
    """Parsed token: a person, optionally narrowed to one attribute."""
    person_id: int
    kind: Optional[str] = None
    ordinal: Optional[int] = None

    @property
    def is_name(self) -> bool:
        return self.kind is None

    @property
    def token(self) -> str:
        return token_for(self.person_id, self.kind, self.ordinal)


def person_key(person_id: int) -> str:
    """Key of a person in the structured view ("Person1")."""
    return f"{PERSON_TOKEN_PREFIX}{person_id}"


def token_for(
    person_id: int,
    attribute_kind: Optional[str] = None,
    ordinal: Optional[int] = None,
) -> str:
    """
    Build the canonical token for a person or one of its attributes.

    Args:
        person_id: 1-based person ordinal within the session
        attribute_kind: None for the name reference, else a token kind
        ordinal: 1-based position in that person's attribute list

    Raises:
        ValueError: on arguments no valid token can represent
    """
    if isinstance(person_id, bool) or not isinstance(person_id, int) or person_id < 1:
        raise ValueError(f"person_id must be a positive integer, got {person_id!r}")

    if attribute_kind is None:
        if ordinal is not None:
            raise ValueError("ordinal given without attribute_kind")
        return f"[{person_key(person_id)}]"

    if attribute_kind not in ATTRIBUTE_KINDS:
        raise ValueError(f"Unknown attribute kind {attribute_kind!r}")
    if isinstance(ordinal, bool) or not isinstance(ordinal, int) or ordinal < 1:
        raise ValueError(f"ordinal must be a positive integer, got {ordinal!r}")

    return f"[{person_key(person_id)}:{attribute_kind}{ordinal}]"


def parse(token: str) -> Optional[TokenRef]:
    """
    Parse a token string.

    Returns None when the string is not a token (unknown kind, non-numeric
    or zero-padded ordinal, missing brackets, surrounding text). Token-shaped
    substrings occur in ordinary text, so this never raises.
    """
    if not isinstance(token, str):
        return None

    match = TOKEN_PATTERN.fullmatch(token)
    if match is None:
        return None

    person_id = int(match.group(1))
    kind = match.group(2)
    if kind is None:
        return TokenRef(person_id=person_id)
    return TokenRef(person_id=person_id, kind=kind, ordinal=int(match.group(3)))


def find_tokens(text: str) -> Iterator[TokenRef]:
    """Yield every grammar-valid token in text, in order of appearance."""
    for match in TOKEN_PATTERN.finditer(text or ""):
        ref = parse(match.group(0))
        if ref is not None:
            yield ref


def attribute_path(ref: TokenRef) -> str:
    """
    Semantic path of the value a token stands for.

    "primary_name" for name tokens, "<field>[<index>]" for attributes, where
    index is 0-based (ordinal - 1).
    """
    if ref.kind is None:
        return "primary_name"
    return f"{ATTRIBUTE_FIELDS[ref.kind]}[{ref.ordinal - 1}]"
