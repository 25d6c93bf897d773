"""
identiq - Session & Identity Registry for PII tokenization.

Turns per-turn person detections into stable, reversible tokens scoped to a
session:

    from identiq import Identiq

    engine = Identiq()
    result = engine.process_turn({
        "raw_text": "Email John Smith at john@example.com",
        "persons": [{"matched_name": "John Smith",
                     "emails": ["john@example.com"], "confidence": 0.9}],
    })
    result.response["sanitized_text"]
    # -> "Email [Person1] at [Person1:email1]"

    engine.delete_session(result.session_id)  # erasure
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Orchestrator
    "Identiq",
    "TurnResult",
    # Registry
    "SessionRegistry",
    # Config
    "Settings",
    "get_settings",
    # Types
    "PersonRecord",
    "PersonMetadata",
    "Turn",
    # Exceptions
    "IdentiqError",
    "ConfigurationError",
    "MalformedDetectionError",
    "AmbiguousPersonResolutionError",
    "SessionBusyError",
]


def __getattr__(name):
    """Lazy import for submodules."""
    if name in ("Identiq", "TurnResult"):
        from .core import Identiq, TurnResult
        return {"Identiq": Identiq, "TurnResult": TurnResult}[name]

    if name == "SessionRegistry":
        from .services.session_registry import SessionRegistry
        return SessionRegistry

    if name in ("Settings", "get_settings"):
        from . import config
        return getattr(config, name)

    if name in ("PersonRecord", "PersonMetadata", "Turn"):
        from . import types
        return getattr(types, name)

    if name in ("IdentiqError", "ConfigurationError", "MalformedDetectionError",
                "AmbiguousPersonResolutionError", "SessionBusyError"):
        from . import exceptions
        return getattr(exceptions, name)

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
