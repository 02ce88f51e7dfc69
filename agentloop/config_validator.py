"""Configuration validator for startup checks."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List

from .config import MEMORY_KINDS
from .core.options import MAX_ITERATIONS_LIMIT, MAX_TIMEOUT_MS, MIN_TIMEOUT_MS, TOOL_CHOICES
from .providers import PROVIDER_DEFAULTS


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass
class ConfigError:
    """A single configuration issue."""
    field: str
    message: str
    severity: Severity


def validate_config(raw_config: Dict[str, Any]) -> List[ConfigError]:
    """Validate raw configuration and return a list of issues.

    Args:
        raw_config: Raw config dict from YAML

    Returns:
        List of ConfigError (empty = valid)
    """
    errors: List[ConfigError] = []
    model = raw_config.get("model") or {}
    agent = raw_config.get("agent") or {}
    pause = raw_config.get("pause") or {}
    retry = raw_config.get("retry") or {}

    for name, section in (("model", model), ("agent", agent), ("pause", pause), ("retry", retry)):
        if not isinstance(section, dict):
            errors.append(ConfigError(name, f"{name} must be a mapping", Severity.ERROR))
    if errors:
        return errors

    # --- Provider / API key ---
    provider = str(model.get("provider", "openai")).lower()
    if provider not in PROVIDER_DEFAULTS:
        errors.append(ConfigError(
            field="model.provider",
            message=f"Unknown provider {provider!r}; expected one of {', '.join(PROVIDER_DEFAULTS)}",
            severity=Severity.WARNING,
        ))

    if provider != "ollama" and not _resolve_api_key_value(provider, model):
        env_key = PROVIDER_DEFAULTS.get(provider, {}).get("env_key") or "the provider API key"
        errors.append(ConfigError(
            field="model.api_key",
            message=f"{env_key} not set. Set the env var or add model.api_key to config/config.local.yaml",
            severity=Severity.ERROR,
        ))

    # --- Model ---
    name = model.get("model", "gpt-4o-mini")
    if not name or not isinstance(name, str):
        errors.append(ConfigError("model.model", "model.model must be a non-empty string", Severity.ERROR))

    temperature = model.get("temperature", 0.7)
    if not _is_number(temperature) or temperature < 0 or temperature > 2:
        errors.append(ConfigError(
            field="model.temperature",
            message=f"temperature must be a number between 0 and 2, got {temperature}",
            severity=Severity.ERROR,
        ))

    max_tokens = model.get("max_tokens", 4096)
    if not _is_int(max_tokens) or max_tokens <= 0:
        errors.append(ConfigError(
            field="model.max_tokens",
            message=f"max_tokens must be a positive integer, got {max_tokens}",
            severity=Severity.ERROR,
        ))

    # --- Agent defaults ---
    max_iterations = agent.get("max_iterations", 10)
    if not _is_int(max_iterations) or not 1 <= max_iterations <= MAX_ITERATIONS_LIMIT:
        errors.append(ConfigError(
            field="agent.max_iterations",
            message=f"max_iterations must be between 1 and {MAX_ITERATIONS_LIMIT}, got {max_iterations}",
            severity=Severity.ERROR,
        ))

    tool_choice = agent.get("tool_choice", "auto")
    if tool_choice not in TOOL_CHOICES:
        errors.append(ConfigError(
            field="agent.tool_choice",
            message=f"tool_choice must be one of {', '.join(TOOL_CHOICES)}, got {tool_choice!r}",
            severity=Severity.ERROR,
        ))

    timeout_ms = agent.get("timeout_ms", 300000)
    if not _is_int(timeout_ms) or not MIN_TIMEOUT_MS <= timeout_ms <= MAX_TIMEOUT_MS:
        errors.append(ConfigError(
            field="agent.timeout_ms",
            message=f"timeout_ms must be between {MIN_TIMEOUT_MS} and {MAX_TIMEOUT_MS}, got {timeout_ms}",
            severity=Severity.ERROR,
        ))

    memory = agent.get("memory", "buffer")
    if memory not in MEMORY_KINDS:
        errors.append(ConfigError(
            field="agent.memory",
            message=f"memory must be one of {', '.join(MEMORY_KINDS)}, got {memory!r}",
            severity=Severity.ERROR,
        ))
    window_size = agent.get("window_size", 10)
    if memory == "window" and (not _is_int(window_size) or window_size < 1):
        errors.append(ConfigError(
            field="agent.window_size",
            message=f"window_size must be a positive integer, got {window_size}",
            severity=Severity.ERROR,
        ))

    # --- Pause ---
    human_timeout = pause.get("human_timeout_seconds", 300)
    if not _is_number(human_timeout) or human_timeout < 0:
        errors.append(ConfigError(
            field="pause.human_timeout_seconds",
            message=f"human_timeout_seconds must be a non-negative number, got {human_timeout}",
            severity=Severity.ERROR,
        ))
    elif human_timeout == 0:
        errors.append(ConfigError(
            field="pause.human_timeout_seconds",
            message="human_timeout_seconds is 0; paused runs will wait indefinitely",
            severity=Severity.WARNING,
        ))

    # --- Retry ---
    max_retries = retry.get("max_retries", 2)
    if not _is_int(max_retries) or max_retries < 0:
        errors.append(ConfigError(
            field="retry.max_retries",
            message=f"max_retries must be a non-negative integer, got {max_retries}",
            severity=Severity.ERROR,
        ))

    return errors


def has_errors(issues: List[ConfigError]) -> bool:
    return any(issue.severity is Severity.ERROR for issue in issues)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _resolve_api_key_value(provider: str, model: Dict[str, Any]) -> str:
    """Resolve the API key from env or config without side effects.

    Returns the resolved key string, or empty string if unresolvable.
    """
    env_key = PROVIDER_DEFAULTS.get(provider, {}).get("env_key", "")
    if env_key and os.environ.get(env_key):
        return os.environ[env_key]

    if model.get("api_key_env"):
        value = os.environ.get(model["api_key_env"], "")
        if value:
            return value

    config_api_key = str(model.get("api_key") or "")
    if not config_api_key:
        return ""
    if not config_api_key.startswith("${"):
        return config_api_key
    if config_api_key.endswith("}"):
        return os.environ.get(config_api_key[2:-1], "")
    return ""
