"""
PII-Safe Logging Utilities

Provides logging wrappers that redact potential PII before logging, a JSON
formatter with correlation ids, and an audit logger for session lifecycle
events. NEVER log raw user input, detection payloads or restored text.

Usage:
    from .logging_utils import get_pii_safe_logger, setup_logging, correlation_id

    setup_logging(level="INFO")

    logger = get_pii_safe_logger(__name__)
    logger.info("Processing message", text=user_input)  # Auto-redacted
    logger.debug_safe("Turn done", tokens=["[Person1]"], count=5)  # Safe data only

    with correlation_id(session_id):
        ...  # every JSON log line carries the id
"""

import json
import logging
import re
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Generator, Optional


# --- PII PATTERNS FOR LOG SANITIZATION ---
_PII_PATTERNS = [
    # SSN patterns
    (r'\b\d{3}-\d{2}-\d{4}\b', '[SSN-REDACTED]'),
    (r'\b\d{3}\s\d{2}\s\d{4}\b', '[SSN-REDACTED]'),

    # Email
    (r'\b[\w.+-]+@[\w.-]+\.\w+\b', '[EMAIL-REDACTED]'),

    # Phone patterns
    (r'\(\d{3}\)\s*\d{3}-\d{4}', '[PHONE-REDACTED]'),
    (r'\b\d{3}-\d{3}-\d{4}\b', '[PHONE-REDACTED]'),
    (r'\b\d{3}\.\d{3}\.\d{4}\b', '[PHONE-REDACTED]'),
    (r'\b\d{3}-\d{4}\b', '[PHONE-REDACTED]'),

    # Street addresses ("123 Main Street")
    (r'\b\d{1,6}\s+(?:[A-Z][a-z]+\s+){1,3}(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Lane|Ln|Drive|Dr)\b',
     '[ADDRESS-REDACTED]'),

    # Credit card (16 digits with optional separators)
    (r'\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b', '[CC-REDACTED]'),

    # Long digit runs (account / id numbers)
    (r'\b\d{7,}\b', '[ID-REDACTED]'),
]

# Compile patterns for efficiency
_COMPILED_PATTERNS = [(re.compile(p, re.IGNORECASE), r) for p, r in _PII_PATTERNS]


def sanitize_for_logging(text: str, max_length: int = 200) -> str:
    """
    Sanitize text for safe logging by redacting potential PII patterns.

    Names cannot be caught by patterns; callers log tokens or counts instead.

    Args:
        text: Input text that may contain PII
        max_length: Truncate to this length (0 for no truncation)

    Returns:
        Sanitized string safe for logging
    """
    if not text:
        return ""

    result = text
    for pattern, replacement in _COMPILED_PATTERNS:
        result = pattern.sub(replacement, result)

    if max_length > 0 and len(result) > max_length:
        result = result[:max_length] + "...[truncated]"

    return result


def safe_repr(obj: Any, max_length: int = 100) -> str:
    """
    Create a safe string representation of an object for logging.

    - Strings are sanitized for PII
    - Lists/dicts show length / keys only
    - Other types show type name
    """
    if obj is None:
        return "None"
    elif isinstance(obj, bool) or isinstance(obj, (int, float)):
        return str(obj)
    elif isinstance(obj, str):
        return f'"{sanitize_for_logging(obj, max_length)}"'
    elif isinstance(obj, (list, tuple, set, frozenset)):
        return f"[{type(obj).__name__} len={len(obj)}]"
    elif isinstance(obj, dict):
        return f"{{dict keys={list(obj.keys())}}}"
    else:
        return f"<{type(obj).__name__}>"


class PIISafeLogger:
    """
    Logger wrapper that provides PII-safe logging methods.

    Usage:
        logger = PIISafeLogger(__name__)

        # For potentially unsafe data - auto-sanitized
        logger.info("Processing", text=user_input)

        # For known-safe data (tokens, counts, session ids)
        logger.debug_safe("Stats", tokens=["[Person1]"], persons=2)
    """

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _format_safe_message(self, message: str, **kwargs) -> str:
        """Format message with sanitized kwargs."""
        sanitized_message = sanitize_for_logging(message, max_length=0)

        if not kwargs:
            return sanitized_message

        parts = [sanitized_message]
        for key, value in kwargs.items():
            parts.append(f"{key}={safe_repr(value)}")

        return " | ".join(parts)

    def debug(self, message: str, **kwargs):
        self._logger.debug(self._format_safe_message(message, **kwargs))

    def info(self, message: str, **kwargs):
        self._logger.info(self._format_safe_message(message, **kwargs))

    def warning(self, message: str, **kwargs):
        self._logger.warning(self._format_safe_message(message, **kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs):
        self._logger.error(self._format_safe_message(message, **kwargs), exc_info=exc_info)

    def debug_safe(self, message: str, **kwargs):
        """
        Debug log for known-safe data (no sanitization).

        Use this for:
        - Token strings like [Person1]
        - Session ids, counts and timing
        - Processing status
        """
        parts = [message]
        for key, value in kwargs.items():
            parts.append(f"{key}={value}")
        self._logger.debug(" | ".join(parts))

    def info_safe(self, message: str, **kwargs):
        """Info log for known-safe data (no sanitization)."""
        parts = [message]
        for key, value in kwargs.items():
            parts.append(f"{key}={value}")
        self._logger.info(" | ".join(parts))


def get_pii_safe_logger(name: str) -> PIISafeLogger:
    """
    Get a PII-safe logger for the given module name.

    Args:
        name: Usually __name__ from the calling module
    """
    return PIISafeLogger(name)


# --- CORRELATION IDS ---
_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID, if set."""
    return _correlation_id.get()


@contextmanager
def correlation_id(cid: Optional[str] = None) -> Generator[str, None, None]:
    """
    Context manager for setting correlation ID.

    Args:
        cid: Correlation ID to use. If None, generates a new one.

    Yields:
        The correlation ID being used.
    """
    if cid is None:
        cid = str(uuid.uuid4())[:12]
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


# Attributes every LogRecord carries; anything else arrived via `extra=`
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line.

    Keys: timestamp (record time, UTC), level, logger, message, source
    ("module:function:line"), correlation_id inside a turn, exception when
    present, plus every `extra=` field (audit events land here).
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        cid = get_correlation_id()
        if cid:
            entry["correlation_id"] = cid

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry.update(
            (key, value) for key, value in vars(record).items()
            if key not in _RECORD_ATTRS
        )
        return json.dumps(entry, default=str)


class AuditLogger:
    """
    Structured audit logger for session lifecycle events.

    Audit events carry session ids and counts only, never person data.

    Usage:
        audit = get_audit_logger()
        audit.session_erased(session_id="conv_1700000000000_a1b2c3d4")
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def log(self, event: str, **kwargs: Any) -> None:
        """Log an audit event with structured data."""
        extra = {
            "audit_event": event,
            "audit_data": kwargs,
            "audit_timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self._logger.info(f"AUDIT: {event}", extra=extra)

    def session_created(self, session_id: str, **kwargs) -> None:
        self.log("session_created", session_id=session_id, **kwargs)

    def session_evicted(self, session_id: str, reason: str, **kwargs) -> None:
        self.log("session_evicted", session_id=session_id, reason=reason, **kwargs)

    def session_erased(self, session_id: str, **kwargs) -> None:
        """Right-to-erasure deletion of a session."""
        self.log("session_erased", session_id=session_id, **kwargs)


_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get the audit logger instance."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger(logging.getLogger("audit.identiq"))
    return _audit_logger


def setup_logging(level: str = "INFO", json_format: bool = True) -> None:
    """
    Configure the "identiq" and "audit.identiq" loggers.

    Args:
        level: Handler level name (DEBUG, INFO, WARNING, ERROR)
        json_format: One JSON object per line; plain text otherwise
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    for name in ("identiq", "audit.identiq"):
        target = logging.getLogger(name)
        target.setLevel(logging.DEBUG)  # Capture all, filter at handler level
        target.handlers.clear()
        target.addHandler(handler)
        target.propagate = False
