"""Redaction helpers for safe logging. All external data must pass through these.

Message text, sender handles and access tokens must never reach a log line.
Identifiers (account, sender, URL) are logged as short hashes only.
"""

import hashlib
import hmac
import os
import re
from typing import Any

# Patterns that should never appear in logs
_PATTERNS = (
    re.compile(r"\+?\d[\d\s\-()]{8,}\d"),  # phone numbers
    re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"),  # emails
    re.compile(r"(?<![\w.])@[A-Za-z0-9_.]{2,30}"),  # @handles
    re.compile(r"(?i)bearer\s+[A-Za-z0-9._~+/=-]+"),
    re.compile(r"(?i)access_token=[^&\s]+"),
)

_REDACTED = "[REDACTED]"

HASH_LENGTH = 12


def hash_identifier(value: str) -> str:
    """Non-reversible short hash for log correlation.

    Keyed (HMAC-SHA256) when LOG_HASH_SECRET is set, so hashes of low-entropy
    ids such as sender ids cannot be brute-forced from the logs alone.
    """
    secret = os.environ.get("LOG_HASH_SECRET", "")
    if secret:
        digest = hmac.new(secret.encode(), value.encode(), hashlib.sha256).hexdigest()
    else:
        digest = hashlib.sha256(value.encode()).hexdigest()
    return digest[:HASH_LENGTH]


def redact_string(value: str) -> str:
    """Redact PII and credential patterns from a string."""
    for pattern in _PATTERNS:
        value = pattern.sub(_REDACTED, value)
    return value


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # Structure only, never values
        return f"dict(keys={sorted(str(k) for k in value)})"
    if isinstance(value, (list, tuple, set, frozenset)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}
