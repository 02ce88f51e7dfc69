"""Tests for YAML configuration loading."""

import pytest

from agentloop.config import (
    AgentDefaults,
    EngineSettings,
    expand_env,
    load_raw_config,
    load_settings,
    settings_from_dict,
)
from agentloop.errors import ConfigurationError
from agentloop.memory import BufferMemory, WindowMemory


def test_expand_env(monkeypatch):
    monkeypatch.setenv("TEAM", "blue")
    assert expand_env({"a": ["${TEAM}", "x-${MISSING}"], "n": 3}) == {"a": ["blue", "x-"], "n": 3}


def test_local_overrides_are_deep_merged(tmp_path):
    local = tmp_path / "config.local.yaml"
    local.write_text("model:\n  model: gpt-4o\nagent:\n  max_iterations: 4\n")

    raw = load_raw_config(str(local))

    assert raw["model"]["model"] == "gpt-4o"
    assert raw["model"]["provider"] == "openai"
    assert raw["agent"]["max_iterations"] == 4
    assert raw["agent"]["tool_choice"] == "auto"


def test_explicit_file_is_loaded_as_is(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text("model:\n  provider: ollama\n")
    assert load_raw_config(str(path)) == {"model": {"provider": "ollama"}}


def test_missing_explicit_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_raw_config(str(tmp_path / "nope.yaml"))


def test_non_mapping_file_is_rejected(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_raw_config(str(path))


def test_settings_from_dict(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    settings = settings_from_dict(
        {
            "log_level": "debug",
            "model": {"api_key": "${OPENAI_API_KEY}", "temperature": 0.2},
            "agent": {"memory": "window", "window_size": 4},
            "pause": {"human_timeout_seconds": 60},
            "retry": {"max_retries": 0},
        }
    )

    assert settings.model.api_key == "sk-env"
    assert settings.model.temperature == 0.2
    assert settings.pause.human_timeout_seconds == 60
    assert settings.retry.max_retries == 0
    assert settings.log_level == "DEBUG"
    memory = settings.agent.build_memory()
    assert isinstance(memory, WindowMemory)
    assert memory.max_messages == 4


def test_api_key_env_indirection(monkeypatch):
    monkeypatch.setenv("TEAM_KEY", "sk-team")
    settings = settings_from_dict({"model": {"api_key_env": "TEAM_KEY"}})
    assert settings.model.api_key == "sk-team"


def test_load_settings_from_file(tmp_path, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-file")
    path = tmp_path / "engine.yaml"
    path.write_text("model:\n  api_key: ${OPENAI_API_KEY}\nagent:\n  memory: none\n")
    settings = load_settings(str(path))
    assert settings.model.api_key == "sk-file"
    assert settings.agent.build_memory() is None


def test_agent_defaults_build_run_options():
    defaults = AgentDefaults(max_iterations=3, tool_choice="required")
    options = defaults.run_options("Hi", session_id="s1")
    assert options.max_iterations == 3
    assert options.tool_choice == "required"
    assert options.session_id == "s1"
    assert isinstance(AgentDefaults().build_memory(), BufferMemory)


def test_agent_defaults_validate_overrides():
    with pytest.raises(ConfigurationError):
        EngineSettings().agent.run_options("Hi", tool_choice="sometimes")
