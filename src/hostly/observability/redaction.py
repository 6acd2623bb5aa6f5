"""Redaction helpers for safe logging. All external data must pass through these."""

import re
from datetime import date, datetime
from typing import Any

# Patterns that should never appear in logs
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

_REDACTED = "[REDACTED]"

# Identity-bearing keys: only a short prefix is logged
_IDENTITY_KEYS = frozenset({"guest_id", "host_id", "actor_id", "payment_method_id"})

# System-generated identifiers: logged verbatim so records can be correlated
_ID_KEYS = frozenset({"booking_id", "property_id", "record_id", "intent_id", "event_id"})


def redact_string(value: str) -> str:
    """Redact PII patterns from a string."""
    result = _PHONE_PATTERN.sub(_REDACTED, value)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def mask_identifier(value: str, keep: int = 6) -> str:
    """Keep only the first ``keep`` characters of an identifier."""
    if len(value) <= keep:
        return "*" * len(value)
    return value[:keep] + "..."


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # For dicts, only log keys (structure), never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple, set, frozenset)):
        return f"list(len={len(value)})"
    # For any other type, only log type name
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging.

    Identity keys are masked, system ids pass through, anything else is redacted.
    """
    context = {}
    for key, value in kwargs.items():
        if key in _IDENTITY_KEYS and isinstance(value, str):
            context[key] = mask_identifier(value)
        elif key in _ID_KEYS and isinstance(value, str):
            context[key] = value
        else:
            context[key] = redact_value(value)
    return context
