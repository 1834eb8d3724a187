"""Redaction helpers for safe logging. All external data must pass through these.

Phone numbers, carrier identities ("whatsapp:+1555...") and message bodies are
PII. Log a hash (see infra.hashing.hash_identifier) or a length instead.
"""

import re
from typing import Any

# Patterns that should never appear in logs
_CARRIER_ADDRESS_PATTERN = re.compile(r"whatsapp:\+?\d+", re.IGNORECASE)
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_SIGNED_URL_PATTERN = re.compile(r"(https?://[^\s?]+)\?\S+")

_REDACTED = "[REDACTED]"


def redact_string(value: str) -> str:
    """Redact PII patterns from a string."""
    result = _CARRIER_ADDRESS_PATTERN.sub(_REDACTED, value)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    # Signed URLs carry credentials in the query string
    result = _SIGNED_URL_PATTERN.sub(r"\1?" + _REDACTED, result)
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
    if isinstance(value, dict):
        # For dicts, only log keys (structure), never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    # For any other type, only log type name
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}


def describe_error(exc: BaseException) -> str:
    """Return a PII-free one-line description of an exception."""
    message = redact_string(str(exc))
    if len(message) > 200:
        message = message[:197] + "..."
    name = type(exc).__name__
    return f"{name}: {message}" if message else name
