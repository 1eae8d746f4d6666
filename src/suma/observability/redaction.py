"""Redaction helpers for safe logging. All external data must pass through these.

Sender phone numbers and message text never reach the logs. When a stable
handle is needed to correlate log lines for one sender, use hash_identifier().
"""

import hashlib
import re
from typing import Any

_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

_REDACTED = "[REDACTED]"

# Upper bound for any single string value written to a log line
MAX_LOG_STRING = 200


def redact_string(value: str) -> str:
    """Redact PII patterns from a string and cap its length."""
    result = _PHONE_PATTERN.sub(_REDACTED, value)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    if len(result) > MAX_LOG_STRING:
        result = result[:MAX_LOG_STRING] + "..."
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, (bytes, bytearray)):
        return f"bytes(len={len(value)})"
    if isinstance(value, dict):
        # Structure only, never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}


def hash_identifier(value: str) -> str:
    """Non-reversible short handle for a sender. First 12 hex chars of sha256."""
    return hashlib.sha256(value.encode()).hexdigest()[:12]


def id_prefix(value: str, length: int = 16) -> str:
    """Shorten a provider message id for log lines."""
    return value[:length] if len(value) >= length else value
