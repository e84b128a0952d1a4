"""Tests for core/config.py."""

from __future__ import annotations

from pathlib import Path

import pytest

from agentd.core.config import (
    agentd_home,
    deep_merge,
    get_effective_config,
    load_api_key,
    load_config_file,
)
from agentd.errors import ConfigError


class TestDeepMerge:
    def test_simple_merge(self):
        result = deep_merge({"a": 1, "b": 2}, {"b": 3, "c": 4})
        assert result == {"a": 1, "b": 3, "c": 4}

    def test_nested_merge(self):
        base = {"runner": {"max_retries": 3, "max_iterations": 20}}
        result = deep_merge(base, {"runner": {"max_retries": 5}})
        assert result["runner"]["max_retries"] == 5
        assert result["runner"]["max_iterations"] == 20

    def test_arrays_replaced(self):
        base = {"filesystem": {"directories": ["/a", "/b"]}}
        result = deep_merge(base, {"filesystem": {"directories": ["/c"]}})
        assert result["filesystem"]["directories"] == ["/c"]

    def test_base_not_mutated(self):
        base = {"a": {"b": 1}}
        deep_merge(base, {"a": {"b": 2}})
        assert base["a"]["b"] == 1


class TestLoadConfigFile:
    def test_missing_file_returns_empty(self, tmp_path: Path):
        assert load_config_file(tmp_path / "nope.yaml") == {}

    def test_empty_file_returns_empty(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config_file(path) == {}

    def test_invalid_yaml_raises(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("runner: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigError, match="Failed to read config"):
            load_config_file(path)

    def test_non_mapping_raises(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="expected a mapping"):
            load_config_file(path)


class TestGetEffectiveConfig:
    def test_defaults_applied(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("AGENTD_HOME", str(tmp_path))
        monkeypatch.delenv("OLLAMA_HOST", raising=False)
        config = get_effective_config()
        assert config["runner"]["max_iterations"] == 20
        assert config["runner"]["max_retries"] == 3
        assert config["storage"]["db_path"] == str(tmp_path / "agentd.db")
        assert config["ollama"]["host"] == "http://localhost:11434"

    def test_file_overrides_defaults(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("AGENTD_HOME", str(tmp_path))
        (tmp_path / "config.yaml").write_text(
            "runner:\n  max_iterations: 5\nollama:\n  host: http://gpu-box:11434\n",
            encoding="utf-8",
        )
        config = get_effective_config()
        assert config["runner"]["max_iterations"] == 5
        assert config["runner"]["max_retries"] == 3
        assert config["ollama"]["host"] == "http://gpu-box:11434"

    def test_overrides_win_over_file(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("AGENTD_HOME", str(tmp_path))
        (tmp_path / "config.yaml").write_text("runner:\n  max_iterations: 5\n", encoding="utf-8")
        config = get_effective_config(overrides={"runner": {"max_iterations": 7}})
        assert config["runner"]["max_iterations"] == 7

    def test_ollama_host_from_env(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("AGENTD_HOME", str(tmp_path))
        monkeypatch.setenv("OLLAMA_HOST", "http://other:11434")
        assert get_effective_config()["ollama"]["host"] == "http://other:11434"


def test_agentd_home_defaults_to_dot_dir(monkeypatch):
    monkeypatch.delenv("AGENTD_HOME", raising=False)
    assert agentd_home() == Path.home() / ".agentd"


class TestLoadApiKey:
    def test_env_var_first(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")
        config = {"anthropic": {"api_key_env": "ANTHROPIC_API_KEY", "api_key": "literal"}}
        assert load_api_key(config) == "from-env"

    def test_falls_back_to_literal(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        config = {"anthropic": {"api_key_env": "ANTHROPIC_API_KEY", "api_key": "literal"}}
        assert load_api_key(config) == "literal"

    def test_none_when_unset(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        assert load_api_key({"anthropic": {}}) is None
