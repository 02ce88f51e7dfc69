"""Engine configuration loaded from YAML files."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .core.options import DEFAULT_SYSTEM_PROMPT, RunOptions
from .memory import BufferMemory, WindowMemory
from .pause import DEFAULT_HUMAN_TIMEOUT_SECONDS, DEFAULT_MAX_PAUSED_AGE_SECONDS
from .providers import ChatModel, MemoryStore, create_model
from .retry import RetryConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/config.local.yaml"
BASE_CONFIG_PATH = "config/config.yaml"
MEMORY_KINDS = ("buffer", "window", "none")

_ENV_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_REPO_ROOT = Path(__file__).resolve().parents[1]


def _deep_merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(base_value, value)
        else:
            merged[key] = value
    return merged


def expand_env(value: Any) -> Any:
    """Replace ``${VAR}`` placeholders with environment values (empty if unset)."""
    if isinstance(value, str):
        return _ENV_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def _resolve(candidate: str) -> Path:
    path = Path(candidate)
    if path.exists():
        return path
    alt = _REPO_ROOT / candidate
    if alt.exists():
        return alt
    return path


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must be a mapping: {path}")
    return data


def load_raw_config(config_path: str = DEFAULT_CONFIG_PATH) -> dict:
    """Load the raw configuration mapping.

    Priority order:
    1. config.local.yaml (local overrides and secrets)
    2. config.yaml (defaults)

    An explicit path other than ``config.local.yaml`` is loaded as-is.
    """
    target = _resolve(config_path)

    if Path(config_path).name == "config.local.yaml":
        base = _load_yaml(_resolve(BASE_CONFIG_PATH))
        local = _load_yaml(target)
        merged = _deep_merge(base, local)
        if not merged:
            raise FileNotFoundError(f"Config file not found: {config_path} (also missing fallback {BASE_CONFIG_PATH})")
        return merged

    data = _load_yaml(target)
    if not data:
        raise FileNotFoundError(f"Config file not found: {config_path}")
    return data


@dataclass
class ModelSettings:
    provider: str = "openai"
    model: str = "gpt-4o-mini"
    api_key: str = ""
    api_base: str = ""
    temperature: float = 0.7
    max_tokens: int = 4096

    def create(self) -> ChatModel:
        return create_model(
            self.provider,
            self.api_key,
            self.model,
            api_base=self.api_base,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )


@dataclass
class AgentDefaults:
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_iterations: int = 10
    tool_choice: str = "auto"
    timeout_ms: int = 300000
    memory: str = "buffer"
    window_size: int = 10

    def build_memory(self) -> Optional[MemoryStore]:
        if self.memory == "window":
            return WindowMemory(max_messages=self.window_size)
        if self.memory == "buffer":
            return BufferMemory()
        return None

    def run_options(self, user_message: str, **overrides: Any) -> RunOptions:
        values: Dict[str, Any] = {
            "system_prompt": self.system_prompt,
            "max_iterations": self.max_iterations,
            "tool_choice": self.tool_choice,
            "timeout_ms": self.timeout_ms,
        }
        values.update(overrides)
        return RunOptions(user_message=user_message, **values)


@dataclass
class PauseSettings:
    human_timeout_seconds: float = DEFAULT_HUMAN_TIMEOUT_SECONDS
    max_paused_age_seconds: float = DEFAULT_MAX_PAUSED_AGE_SECONDS
    sweep_interval_seconds: float = 3600


@dataclass
class EngineSettings:
    model: ModelSettings = field(default_factory=ModelSettings)
    agent: AgentDefaults = field(default_factory=AgentDefaults)
    pause: PauseSettings = field(default_factory=PauseSettings)
    retry: RetryConfig = field(default_factory=RetryConfig)
    log_level: str = "INFO"


def _section(data: dict, key: str) -> dict:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{key}' must be a mapping")
    return value


def settings_from_dict(raw: Dict[str, Any]) -> EngineSettings:
    """Build EngineSettings from an already-loaded mapping."""
    data = expand_env(raw)
    model = _section(data, "model")
    agent = _section(data, "agent")
    pause = _section(data, "pause")
    retry = _section(data, "retry")

    api_key = model.get("api_key", "")
    if not api_key and model.get("api_key_env"):
        api_key = os.environ.get(model["api_key_env"], "")

    defaults = AgentDefaults()
    return EngineSettings(
        model=ModelSettings(
            provider=model.get("provider", "openai"),
            model=model.get("model", "gpt-4o-mini"),
            api_key=api_key,
            api_base=model.get("api_base", ""),
            temperature=model.get("temperature", 0.7),
            max_tokens=model.get("max_tokens", 4096),
        ),
        agent=AgentDefaults(
            system_prompt=agent.get("system_prompt", defaults.system_prompt),
            max_iterations=agent.get("max_iterations", defaults.max_iterations),
            tool_choice=agent.get("tool_choice", defaults.tool_choice),
            timeout_ms=agent.get("timeout_ms", defaults.timeout_ms),
            memory=agent.get("memory", defaults.memory),
            window_size=agent.get("window_size", defaults.window_size),
        ),
        pause=PauseSettings(
            human_timeout_seconds=pause.get("human_timeout_seconds", DEFAULT_HUMAN_TIMEOUT_SECONDS),
            max_paused_age_seconds=pause.get("max_paused_age_seconds", DEFAULT_MAX_PAUSED_AGE_SECONDS),
            sweep_interval_seconds=pause.get("sweep_interval_seconds", 3600),
        ),
        retry=RetryConfig(
            max_retries=retry.get("max_retries", 2),
            base_delay=retry.get("base_delay", 1.0),
            max_delay=retry.get("max_delay", 30.0),
            exponential_base=retry.get("exponential_base", 2.0),
        ),
        log_level=str(data.get("log_level", "INFO")).upper(),
    )


def load_settings(config_path: str = DEFAULT_CONFIG_PATH) -> EngineSettings:
    """Load and parse the engine configuration."""
    settings = settings_from_dict(load_raw_config(config_path))
    logger.debug(f"Loaded settings for provider '{settings.model.provider}' model '{settings.model.model}'")
    return settings
