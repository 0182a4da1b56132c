"""Redaction helpers for safe logging.

Phone numbers and message bodies are PII. They never reach a log line:
senders and recipients are logged as short hashes, message IDs as a
prefix, text as a length. Anything else passes through safe_log_context,
which keeps only scalars and the shape of containers.
"""

import hashlib
import re
from typing import Any

REDACTED = "[REDACTED]"

ID_PREFIX_LEN = 12
HASH_LEN = 12

# Applied in order; the bearer rule must run before the phone rule
_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"Bearer\s+[A-Za-z0-9._\-]+"), f"Bearer {REDACTED}"),
    (re.compile(r"\+?\d[\d\s\-()]{8,}\d"), REDACTED),
    (re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"), REDACTED),
)


def hash_identifier(value: str) -> str:
    """Stable, non-reversible short form of a phone number or user ID."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:HASH_LEN]


def id_prefix(message_id: str) -> str:
    """Shorten a provider message ID (wamid.*) for log correlation."""
    return message_id[:ID_PREFIX_LEN]


def redact_string(value: str) -> str:
    for pattern, replacement in _RULES:
        value = pattern.sub(replacement, value)
    return value


def redact_value(value: Any) -> str:
    """Render any value as a log-safe string.

    Containers are reduced to their shape (dict keys, sequence length);
    their contents are never rendered.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, (bytes, bytearray)):
        return f"bytes(len={len(value)})"
    if isinstance(value, dict):
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple, set)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build the extra_fields dict for a log call, every value redacted."""
    return {key: redact_value(value) for key, value in kwargs.items()}
