"""Blocklist for sensitive environment variables that must not reach tool subprocesses."""

from __future__ import annotations

import os
from typing import Mapping, Optional

BLOCKED_ENV_EXACT = frozenset({
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "GITHUB_TOKEN",
})

BLOCKED_ENV_SUFFIXES = ("_TOKEN", "_SECRET", "_PASSWORD", "_API_KEY")


def is_blocked_env_var(name: str) -> bool:
    if name in BLOCKED_ENV_EXACT:
        return True
    return name.upper().endswith(BLOCKED_ENV_SUFFIXES)


def filter_env(env: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """Return a copy of ``env`` (default: ``os.environ``) with sensitive variables removed."""
    source = os.environ if env is None else env
    return {
        key: value
        for key, value in source.items()
        if value is not None and not is_blocked_env_var(key)
    }
