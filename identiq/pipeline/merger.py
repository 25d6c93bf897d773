"""Person record merging - fold a detection into a person record.

Merge Policy:
    - Attributes: compared on a normalized form (trimmed, whitespace
      collapsed, case-folded), stored in their original casing. New values
      are appended, so an existing value keeps its position (and its token
      ordinal) forever. Duplicates are no-ops.
    - Names: a name equal to the primary name or to a known alias is a no-op.
      Any other name becomes an alias. Detection never replaces the primary
      name; rename_primary() does, and only when explicitly asked.
    - Confidence only goes up. last_seen follows the detection, first_seen
      never moves, session_count grows once per turn.
    - Relationships are unions of person ids, mirrored on both records.

Every function here is pure: inputs are never mutated, a new record is
returned. Given a well-formed detection, merge_person() cannot fail.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from ..constants import ASYMMETRIC_RELATIONSHIPS, ATTRIBUTE_FIELDS
from ..schemas import PersonDetection
from ..types import PersonMetadata, PersonRecord

logger = logging.getLogger(__name__)

__all__ = [
    "normalize_value",
    "merge_person",
    "link_persons",
    "rename_primary",
]


def normalize_value(text: str) -> str:
    """Comparison form of a name or attribute value."""
    return " ".join(text.split()).casefold()


def _append_unique(existing: Tuple[str, ...], incoming: Iterable[str]) -> Tuple[str, ...]:
    """Append values not already present (normalized), keeping order."""
    seen = {normalize_value(v) for v in existing}
    result = list(existing)
    for value in incoming:
        value = value.strip()
        norm = normalize_value(value)
        if not norm or norm in seen:
            continue
        seen.add(norm)
        result.append(value)
    return tuple(result)


def _merge_aliases(
    primary_name: str,
    aliases: Tuple[str, ...],
    names: Iterable[str],
) -> Tuple[str, ...]:
    """Add distinct names as aliases; the primary name is never an alias."""
    primary_norm = normalize_value(primary_name)
    candidates = [n for n in names if normalize_value(n) != primary_norm]
    return _append_unique(aliases, candidates)


def _new_record(
    detection: PersonDetection,
    person_id: int,
    observed_at: datetime,
) -> PersonRecord:
    name = detection.corrected_name or detection.matched_name
    names = [detection.matched_name, *detection.aliases]

    fields = {
        field_name: _append_unique((), getattr(detection, field_name))
        for field_name in ATTRIBUTE_FIELDS.values()
    }

    return PersonRecord(
        person_id=person_id,
        primary_name=name,
        aliases=_merge_aliases(name, (), names),
        metadata=PersonMetadata(
            confidence_score=detection.confidence,
            first_seen=observed_at,
            last_seen=observed_at,
            session_count=1,
        ),
        **fields,
    )


def merge_person(
    existing: Optional[PersonRecord],
    detection: PersonDetection,
    *,
    person_id: int,
    observed_at: datetime,
    new_turn: bool = True,
) -> PersonRecord:
    """
    Fold one detection into a person record.

    Args:
        existing: Current record, or None for a first sighting
        detection: Validated detection for this person
        person_id: Id for a new record (next session ordinal). Ignored when
            existing is given.
        observed_at: Timestamp of the turn
        new_turn: False when this person was already merged earlier in the
            same turn, so session_count is not counted twice

    Returns:
        New PersonRecord. Relationship names are not resolved here; see
        link_persons().
    """
    if existing is None:
        return _new_record(detection, person_id, observed_at)

    record = existing
    if (
        detection.corrected_name
        and detection.confidence > record.metadata.confidence_score
        and normalize_value(detection.corrected_name) != normalize_value(record.primary_name)
    ):
        record = rename_primary(record, detection.corrected_name)
        logger.debug(f"Applied primary name correction to person {record.person_id}")

    aliases = _merge_aliases(
        record.primary_name,
        record.aliases,
        [detection.matched_name, *detection.aliases],
    )

    fields = {
        field_name: _append_unique(getattr(record, field_name), getattr(detection, field_name))
        for field_name in ATTRIBUTE_FIELDS.values()
    }

    meta = record.metadata
    metadata = PersonMetadata(
        confidence_score=max(meta.confidence_score, detection.confidence),
        first_seen=meta.first_seen,
        last_seen=observed_at,
        session_count=meta.session_count + (1 if new_turn else 0),
    )

    return replace(record, aliases=aliases, metadata=metadata, **fields)


def rename_primary(record: PersonRecord, new_name: str) -> PersonRecord:
    """
    Replace the primary name explicitly.

    The previous primary name is kept as an alias so earlier text still
    resolves to this person. The new name is removed from the aliases.
    """
    new_name = " ".join(new_name.split())
    if not new_name:
        raise ValueError("new_name must not be blank")
    new_norm = normalize_value(new_name)
    if new_norm == normalize_value(record.primary_name):
        return record

    aliases = tuple(a for a in record.aliases if normalize_value(a) != new_norm)
    aliases = _append_unique(aliases, [record.primary_name])
    return replace(record, primary_name=new_name, aliases=aliases)


def _with_relationship(
    relationships: Mapping[str, FrozenSet[int]],
    kind: str,
    target_id: int,
) -> Dict[str, FrozenSet[int]]:
    updated = dict(relationships)
    updated[kind] = frozenset(updated.get(kind, frozenset())) | {target_id}
    return updated


def link_persons(
    source: PersonRecord,
    target: PersonRecord,
    kind: str,
) -> Tuple[PersonRecord, PersonRecord]:
    """
    Record that source relates to target with the given kind.

    Symmetric kinds (all of them unless listed in ASYMMETRIC_RELATIONSHIPS)
    are mirrored on the target. A person never relates to itself.

    Returns:
        (updated_source, updated_target)
    """
    if source.person_id == target.person_id:
        return source, target

    kind = kind.strip().lower()
    source = replace(
        source,
        relationships=_with_relationship(source.relationships, kind, target.person_id),
    )
    if kind not in ASYMMETRIC_RELATIONSHIPS:
        target = replace(
            target,
            relationships=_with_relationship(target.relationships, kind, source.person_id),
        )
    return source, target
