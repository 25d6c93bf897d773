"""
identiq Services Layer.

Services own state shared across requests. The orchestrator (identiq.core)
sits on top; the pure pipeline stages sit below.
"""

from .session_registry import (
    SessionLookup,
    SessionRegistry,
    SessionState,
    generate_session_id,
    is_legacy_session_id,
    is_scoped_session_id,
)

__all__ = [
    "SessionRegistry",
    "SessionState",
    "SessionLookup",
    "generate_session_id",
    "is_scoped_session_id",
    "is_legacy_session_id",
]
