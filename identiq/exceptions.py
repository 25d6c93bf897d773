"""
identiq Exceptions.

Provides a clear hierarchy of exceptions for error handling.

Usage:
    from identiq.exceptions import (
        IdentiqError,
        MalformedDetectionError,
        AmbiguousPersonResolutionError,
        SessionBusyError,
    )

Exception Hierarchy:
    IdentiqError (base)
    ├── ConfigurationError
    ├── MalformedDetectionError
    ├── AmbiguousPersonResolutionError
    └── SessionBusyError

Token parse failures are not exceptions: parse() returns None.
"""

from typing import Any, List, Optional, Sequence

__all__ = [
    "IdentiqError",
    "ConfigurationError",
    "MalformedDetectionError",
    "AmbiguousPersonResolutionError",
    "SessionBusyError",
]


# --- BASE EXCEPTION ---
class IdentiqError(Exception):
    """Base exception for all identiq errors."""
    pass


# --- CATEGORY EXCEPTIONS ---
class ConfigurationError(IdentiqError):
    """Configuration or initialization error."""
    pass


class MalformedDetectionError(IdentiqError):
    """Detection payload does not match the expected schema.

    Carries the raw payload for diagnostics and the locations of the failing
    fields. Field values are never included in the message.
    """

    def __init__(
        self,
        message: str,
        raw_payload: Any = None,
        locations: Optional[Sequence[str]] = None,
    ):
        self.raw_payload = raw_payload
        self.locations: List[str] = list(locations or [])
        super().__init__(message)


class AmbiguousPersonResolutionError(IdentiqError):
    """A detection matches more than one existing person."""

    def __init__(self, message: str, candidate_ids: Sequence[int] = ()):
        self.candidate_ids = sorted(candidate_ids)
        super().__init__(message)


class SessionBusyError(IdentiqError):
    """Timed out waiting for another mutation of the same session."""

    def __init__(self, session_id: str, timeout: float):
        self.session_id = session_id
        self.timeout = timeout
        super().__init__(
            f"Session {session_id} is busy (waited {timeout:.1f}s)"
        )
