"""Person resolution: which existing person (if any) a detection refers to.

Matching is exact on the normalized form of the primary name and aliases.
There is no partial or fuzzy matching: a wrong merge corrupts another
person's record for good, while a wrong split only costs a duplicate entry.

Resolution order:
    1. matched_name against primary names; exactly one hit wins outright
    2. matched_name against primary names and aliases
    3. if nothing matched, the detection's own aliases
More than one distinct candidate at steps 2 or 3 is ambiguous. Step 1 keeps a
person split off from a shared alias resolvable by its own name.
"""

import logging
from typing import Dict, Iterable, Mapping, Optional, Set

from ..exceptions import AmbiguousPersonResolutionError
from ..schemas import PersonDetection
from ..types import PersonRecord
from .merger import normalize_value

logger = logging.getLogger(__name__)

__all__ = [
    "build_name_index",
    "resolve_person",
    "resolve_name",
]


def build_name_index(persons: Mapping[int, PersonRecord]) -> Dict[str, Set[int]]:
    """normalized name -> person ids carrying it as primary name or alias."""
    index: Dict[str, Set[int]] = {}
    for person_id, record in persons.items():
        for name in (record.primary_name, *record.aliases):
            index.setdefault(normalize_value(name), set()).add(person_id)
    return index


def _candidates(names: Iterable[str], index: Mapping[str, Set[int]]) -> Set[int]:
    found: Set[int] = set()
    for name in names:
        found.update(index.get(normalize_value(name), ()))
    return found


def resolve_person(
    detection: PersonDetection,
    persons: Mapping[int, PersonRecord],
    index: Optional[Mapping[str, Set[int]]] = None,
) -> Optional[int]:
    """
    Find the existing person a detection refers to.

    Args:
        detection: Validated detection
        persons: Current person records of the session
        index: Prebuilt name index (rebuilt from persons when omitted)

    Returns:
        person_id, or None when the detection is a new person

    Raises:
        AmbiguousPersonResolutionError: several persons match
    """
    key = normalize_value(detection.matched_name)
    primary = [
        person_id for person_id, record in persons.items()
        if normalize_value(record.primary_name) == key
    ]
    if len(primary) == 1:
        return primary[0]

    if index is None:
        index = build_name_index(persons)

    for names in ([detection.matched_name], detection.aliases):
        found = _candidates(names, index)
        if len(found) == 1:
            return next(iter(found))
        if len(found) > 1:
            # Ids only: the name itself is PII
            raise AmbiguousPersonResolutionError(
                f"Detection matches {len(found)} existing persons",
                candidate_ids=found,
            )
    return None


def resolve_name(
    name: str,
    persons: Mapping[int, PersonRecord],
    index: Optional[Mapping[str, Set[int]]] = None,
) -> Optional[int]:
    """
    Resolve a bare name (e.g. a relationship target) to one person id.

    Returns None when the name is unknown or ambiguous.
    """
    if index is None:
        index = build_name_index(persons)
    found = index.get(normalize_value(name), set())
    if len(found) == 1:
        return next(iter(found))
    if len(found) > 1:
        logger.debug(f"Name resolves to {len(found)} persons, not linking")
    return None
