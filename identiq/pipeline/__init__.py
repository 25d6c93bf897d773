"""Per-turn processing stages."""

__all__ = [
    "token_for",
    "parse",
    "merge_person",
    "link_persons",
    "rename_primary",
    "resolve_person",
    "sanitize",
    "restore",
    "project",
    "ConversationMemory",
]


def __getattr__(name):
    """Lazy import to avoid circular dependencies."""
    if name in ("token_for", "parse"):
        from . import tokens
        return getattr(tokens, name)
    elif name in ("merge_person", "link_persons", "rename_primary"):
        from . import merger
        return getattr(merger, name)
    elif name == "resolve_person":
        from .resolver import resolve_person
        return resolve_person
    elif name in ("sanitize", "restore"):
        from . import tokenizer
        return getattr(tokenizer, name)
    elif name == "project":
        from .projector import project
        return project
    elif name == "ConversationMemory":
        from .conversation_memory import ConversationMemory
        return ConversationMemory
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
