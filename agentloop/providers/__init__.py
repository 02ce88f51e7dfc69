"""Model collaborator factory and defaults."""

from __future__ import annotations

import os
from typing import Any, Dict

from .base import ChatModel, MemoryStore, SubAgent, Tool
from .openai_compat import OpenAICompatibleModel
from .types import Message, ModelResponse, ResponseFormat, ToolCall, ToolDefinition

PROVIDER_DEFAULTS: Dict[str, Dict[str, str]] = {
    "openai": {"api_base": "", "env_key": "OPENAI_API_KEY"},
    "deepseek": {"api_base": "https://api.deepseek.com", "env_key": "DEEPSEEK_API_KEY"},
    "kimi": {"api_base": "https://api.moonshot.cn/v1", "env_key": "KIMI_API_KEY"},
    "glm": {"api_base": "https://open.bigmodel.cn/api/paas/v4", "env_key": "GLM_API_KEY"},
    "ollama": {"api_base": "http://localhost:11434/v1", "env_key": ""},
}


def create_model(
    provider: str,
    api_key: str,
    model: str,
    api_base: str = "",
    **kwargs: Any,
) -> ChatModel:
    provider_name = (provider or "openai").lower()
    api_key = _resolve_api_key(provider_name, api_key)
    defaults = PROVIDER_DEFAULTS.get(provider_name, {})
    base = api_base or defaults.get("api_base", "")
    return OpenAICompatibleModel(
        api_key=api_key,
        model=model,
        api_base=base,
        temperature=kwargs.get("temperature", 0.7),
        max_tokens=kwargs.get("max_tokens", 4096),
    )


def _resolve_api_key(provider: str, api_key: str) -> str:
    defaults = PROVIDER_DEFAULTS.get(provider, {})
    env_key = defaults.get("env_key", "")
    api_key = api_key or ""

    if env_key:
        env_value = os.environ.get(env_key, "")
        if env_value:
            return env_value

    if api_key and not api_key.startswith("${"):
        return api_key

    if api_key.startswith("${") and api_key.endswith("}"):
        resolved = os.environ.get(api_key[2:-1], "")
        if resolved:
            return resolved

    if provider == "ollama":
        return "ollama"

    if env_key:
        raise ValueError(f"{env_key} not set. Please set the env var or add api_key to config/config.local.yaml")

    raise ValueError("API key not set. Please set the env var or add api_key to config/config.local.yaml")


__all__ = [
    "ChatModel",
    "MemoryStore",
    "Message",
    "ModelResponse",
    "OpenAICompatibleModel",
    "PROVIDER_DEFAULTS",
    "ResponseFormat",
    "SubAgent",
    "Tool",
    "ToolCall",
    "ToolDefinition",
    "create_model",
]
