"""Core data types for identiq."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from .constants import ATTRIBUTE_FIELDS

__all__ = [
    "PersonMetadata",
    "PersonRecord",
    "Turn",
]


@dataclass(frozen=True)
class PersonMetadata:
    """Bookkeeping for one person. Reflects full history, not the window."""
    confidence_score: float
    first_seen: datetime
    last_seen: datetime
    session_count: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confidence_score": self.confidence_score,
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
            "session_count": self.session_count,
        }


@dataclass(frozen=True)
class PersonRecord:
    """
    Accumulated identity of one detected individual within a session.

    Records are immutable: the merger returns a new record for every change.
    Attribute tuples are append-only so that a value's position (its token
    ordinal) never changes once assigned.
    """
    person_id: int
    primary_name: str
    metadata: PersonMetadata
    aliases: Tuple[str, ...] = ()
    emails: Tuple[str, ...] = ()
    phones: Tuple[str, ...] = ()
    addresses: Tuple[str, ...] = ()
    ids: Tuple[str, ...] = ()
    relationships: Mapping[str, FrozenSet[int]] = field(default_factory=dict)

    def attributes(self, kind: str) -> Tuple[str, ...]:
        """Attribute list for a token kind ("email", "phone", ...)."""
        return getattr(self, ATTRIBUTE_FIELDS[kind])

    def attribute(self, kind: str, ordinal: int) -> Optional[str]:
        """Value at a 1-based ordinal, or None if out of range."""
        values = self.attributes(kind)
        if 1 <= ordinal <= len(values):
            return values[ordinal - 1]
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with relationship targets as raw person ids."""
        return {
            "person_id": self.person_id,
            "primary_name": self.primary_name,
            "aliases": list(self.aliases),
            "emails": list(self.emails),
            "phones": list(self.phones),
            "addresses": list(self.addresses),
            "ids": list(self.ids),
            "relationships": {
                kind: sorted(targets)
                for kind, targets in sorted(self.relationships.items())
            },
            "metadata": self.metadata.to_dict(),
        }


@dataclass(frozen=True)
class Turn:
    """One conversation turn. Text is always the sanitized form."""
    role: str
    text: str
    timestamp: datetime
    turn_number: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "turn_number": self.turn_number,
        }
