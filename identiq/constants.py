"""
Central constants for identiq.

All limits, token grammar pieces and session id scopes are defined here.
Import from this module rather than hardcoding values.
"""

__all__ = [
    # Registry limits
    "DEFAULT_MAX_SESSIONS",
    "DEFAULT_HISTORY_WINDOW",
    "SESSION_LOCK_TIMEOUT",
    # Session ids
    "SCOPE_CONVERSATION",
    "SCOPE_ONESHOT",
    "SESSION_SCOPES",
    "SESSION_ID_RANDOM_BYTES",
    # Tokens
    "PERSON_TOKEN_PREFIX",
    "ATTRIBUTE_KINDS",
    "ATTRIBUTE_FIELDS",
    "REDACTED_MASK",
    # Relationships
    "ASYMMETRIC_RELATIONSHIPS",
    # Response
    "STATUS_SUCCESS",
    "STATUS_ERROR",
    "ROLE_USER",
    "ROLE_ASSISTANT",
]

# --- REGISTRY LIMITS ---
DEFAULT_MAX_SESSIONS = 100  # Live sessions before LRU eviction
DEFAULT_HISTORY_WINDOW = 10  # Turns kept for model context
SESSION_LOCK_TIMEOUT = 5.0  # Seconds to wait for a busy session

# --- SESSION IDS ---
# <scope>_<timestamp-ms>_<random-hex>. Legacy ids are <digits>_<digits>,
# so an alphabetic scope never collides with them.
SCOPE_CONVERSATION = "conv"
SCOPE_ONESHOT = "oneshot"
SESSION_SCOPES = frozenset([SCOPE_CONVERSATION, SCOPE_ONESHOT])
SESSION_ID_RANDOM_BYTES = 4

# --- TOKENS ---
PERSON_TOKEN_PREFIX = "Person"

# Token kind -> PersonRecord field holding that attribute list.
# Order here is the order attributes are rendered in.
ATTRIBUTE_FIELDS = {
    "email": "emails",
    "phone": "phones",
    "address": "addresses",
    "id": "ids",
}
ATTRIBUTE_KINDS = frozenset(ATTRIBUTE_FIELDS)

# Replacement for token-shaped text that does not resolve in the session
REDACTED_MASK = "[REDACTED]"

# --- RELATIONSHIPS ---
# Kinds recorded only on the declaring person. Empty: every kind is mirrored.
ASYMMETRIC_RELATIONSHIPS: frozenset = frozenset()

# --- RESPONSE ---
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
