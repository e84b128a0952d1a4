"""3-layer configuration system for agentd.

Loads and merges configuration from:
1. Default settings (built-in)
2. Daemon config (<AGENTD_HOME>/config.yaml)
3. Caller overrides (CLI flags, tests)
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Optional

import yaml

from ..errors import ConfigError

DEFAULT_CONFIG: dict = {
    "storage": {
        "db_path": "",
    },
    "runner": {
        "max_iterations": 20,
        "max_retries": 3,
        "retry_delay_seconds": 5,
        "rate_limit_delay_seconds": 60,
        "result_preview_chars": 200,
    },
    "anthropic": {
        "api_url": "https://api.anthropic.com/v1/messages",
        "api_key_env": "ANTHROPIC_API_KEY",
        "api_key": "",
        "max_tokens": 4096,
        "timeout_seconds": 120,
    },
    "ollama": {
        "host": "",
        "max_tokens": 4096,
        "timeout_seconds": 600,
    },
    "tools": {
        "builtin": True,
        "disconnect_timeout_seconds": 5,
        "filesystem": {"enabled": True, "directories": []},
        "servers": {},
    },
    "logging": {
        "level": "INFO",
        "file": "",
    },
}


def agentd_home() -> Path:
    """Directory holding config.yaml and the database (``AGENTD_HOME`` or ~/.agentd)."""
    override = os.environ.get("AGENTD_HOME")
    return Path(override).expanduser() if override else Path.home() / ".agentd"


def ensure_agentd_home() -> Path:
    home = agentd_home()
    home.mkdir(parents=True, exist_ok=True)
    return home


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dicts. Arrays are replaced, not merged."""
    result = {}
    for key in base:
        result[key] = base[key]
    for key, value in override.items():
        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            result[key] = deep_merge(base_value, value)
        else:
            result[key] = value
    return result


def load_config_file(config_path: Path) -> dict:
    """Load a YAML config file. Missing or empty files contribute nothing."""
    if not config_path.exists():
        return {}
    try:
        content = config_path.read_text(encoding="utf-8-sig")  # utf-8-sig strips BOM
        loaded = yaml.safe_load(content) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read config at {config_path}: {e}") from e
    if not isinstance(loaded, dict):
        raise ConfigError(f"Invalid config at {config_path}: expected a mapping")
    return loaded


def get_effective_config(
    config_path: Optional[Path] = None,
    overrides: Optional[dict] = None,
) -> dict:
    """Get the fully resolved daemon configuration."""
    config = copy.deepcopy(DEFAULT_CONFIG)

    file_config = load_config_file(config_path or agentd_home() / "config.yaml")
    if file_config:
        config = deep_merge(config, file_config)

    if overrides:
        config = deep_merge(config, overrides)

    if not config["storage"].get("db_path"):
        config["storage"]["db_path"] = str(agentd_home() / "agentd.db")
    if not config["ollama"].get("host"):
        config["ollama"]["host"] = os.environ.get("OLLAMA_HOST", "http://localhost:11434")

    return config


def load_api_key(config: dict) -> Optional[str]:
    """Anthropic API key: environment variable first, then the literal in config."""
    section = config.get("anthropic", {})
    env_var = section.get("api_key_env", "ANTHROPIC_API_KEY")
    return os.environ.get(env_var) or section.get("api_key") or None
