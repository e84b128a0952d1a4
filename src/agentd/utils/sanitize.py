"""Error message sanitization to prevent credential leakage."""

from __future__ import annotations

import os
import re

MAX_ERROR_LENGTH = 500


def sanitize_error(message: str) -> str:
    """Sanitize error messages to prevent API key and path leakage."""
    if not message:
        return message

    sanitized = message
    # Redact API key patterns
    sanitized = re.sub(r"sk-ant-[a-zA-Z0-9_-]+", "[REDACTED_KEY]", sanitized)
    sanitized = re.sub(r"sk-[a-zA-Z0-9_-]{20,}", "[REDACTED_KEY]", sanitized)
    sanitized = re.sub(r"Bearer\s+\S+", "Bearer [REDACTED]", sanitized)
    sanitized = re.sub(r"x-api-key:\s*\S+", "x-api-key: [REDACTED]", sanitized, flags=re.IGNORECASE)
    sanitized = re.sub(r"Authorization:\s*\S+", "Authorization: [REDACTED]", sanitized)

    # Redact user home paths
    home = os.environ.get("USERPROFILE") or os.environ.get("HOME") or ""
    if home and home != "/":
        sanitized = sanitized.replace(home, "[USER_HOME]")

    return sanitized


def short_error(exc: BaseException) -> str:
    """First line of an exception's message, sanitized and bounded; never a traceback."""
    text = str(exc).strip()
    if not text:
        return type(exc).__name__
    first_line = text.splitlines()[0]
    first_line = sanitize_error(first_line)
    if len(first_line) > MAX_ERROR_LENGTH:
        first_line = first_line[: MAX_ERROR_LENGTH - 3] + "..."
    return first_line
