"""Global pytest fixtures for deterministic test environment."""

from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _isolate_runtime_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear provider keys that can leak into tests on developer machines."""
    for key in (
        "OPENAI_API_KEY",
        "DEEPSEEK_API_KEY",
        "KIMI_API_KEY",
        "GLM_API_KEY",
    ):
        monkeypatch.delenv(key, raising=False)
