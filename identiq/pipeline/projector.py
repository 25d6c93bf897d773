"""Output projection - render the response views from the person records.

Both the structured `persons` view and the flat legacy maps are derived from
the same PersonRecord set at projection time. Nothing here is stored, so the
two views cannot drift apart.

    token_map    token -> semantic path ("primary_name", "emails[0]")
    pii_mapping  token -> literal value

Both maps are keyed by exactly the tokens present in the sanitized text.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from ..types import PersonRecord
from .tokenizer import resolve_token
from .tokens import attribute_path, find_tokens, person_key

logger = logging.getLogger(__name__)

__all__ = [
    "Projection",
    "render_person",
    "render_persons",
    "project",
]


@dataclass
class Projection:
    """Response views for one turn."""
    persons: Dict[str, Dict[str, Any]]
    token_map: Dict[str, str]
    pii_mapping: Dict[str, str]
    sanitized_text: str


def render_person(record: PersonRecord) -> Dict[str, Any]:
    """Structured view of one person; relationship targets as person keys."""
    data = record.to_dict()
    data.pop("person_id")
    data["relationships"] = {
        kind: [person_key(pid) for pid in targets]
        for kind, targets in data["relationships"].items()
    }
    return data


def render_persons(persons: Mapping[int, PersonRecord]) -> Dict[str, Dict[str, Any]]:
    """Full person registry keyed "Person<N>", in id order."""
    return {person_key(pid): render_person(persons[pid]) for pid in sorted(persons)}


def project(persons: Mapping[int, PersonRecord], sanitized_text: str) -> Projection:
    """
    Build the response views for a sanitized turn.

    Args:
        persons: Person records of the session at projection time
        sanitized_text: Output of sanitize() for this turn

    Returns:
        Projection whose token_map and pii_mapping cover exactly the tokens
        in sanitized_text
    """
    token_map: Dict[str, str] = {}
    pii_mapping: Dict[str, str] = {}

    for ref in find_tokens(sanitized_text):
        token = ref.token
        if token in token_map:
            continue
        value = resolve_token(ref, persons)
        if value is None:
            # sanitize() masks these; reaching here means the text was not
            # produced from the same person records
            logger.error(f"Unresolvable token {token} in sanitized text")
            continue
        token_map[token] = attribute_path(ref)
        pii_mapping[token] = value

    return Projection(
        persons=render_persons(persons),
        token_map=token_map,
        pii_mapping=pii_mapping,
        sanitized_text=sanitized_text,
    )
