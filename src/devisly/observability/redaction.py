"""Redaction helpers for safe logging.

Chat text, phone numbers, emails and tool arguments come from end users and
must pass through these helpers before reaching a log line.
"""

import hashlib
import re
from typing import Any

_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-().]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
# WhatsApp JIDs as relayed by Unipile (e.g. 33612345678@s.whatsapp.net)
_JID_PATTERN = re.compile(r"\d{6,}@[a-z.]+")
# French SIRET (14 digits, optionally grouped)
_SIRET_PATTERN = re.compile(r"\b\d{3}\s?\d{3}\s?\d{3}\s?\d{5}\b")

_REDACTED = "[REDACTED]"


def redact_string(value: str) -> str:
    """Redact PII patterns from a string."""
    result = _JID_PATTERN.sub(_REDACTED, value)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    result = _SIRET_PATTERN.sub(_REDACTED, result)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
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
        # Structure only, never values
        return f"dict(keys={sorted(str(k) for k in value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}


def hash_identifier(value: str) -> str:
    """Non-reversible short hash for correlating an identifier across log lines."""
    return hashlib.sha256(value.encode()).hexdigest()[:12]


def id_prefix(value: str | None, length: int = 8) -> str | None:
    """Leading characters of a provider ID, enough to grep without logging it whole."""
    if not value:
        return None
    return value[:length] if len(value) >= length else value
