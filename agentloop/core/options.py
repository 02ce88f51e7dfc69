"""Validated options for agent and coordinator runs."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from ..errors import ConfigurationError

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."
DEFAULT_SESSION_ID = "default"
TOOL_CHOICES = ("auto", "required", "none")
OUTPUT_FORMATS = ("text", "json", "structured", "full")
ROUTING_STRATEGIES = ("auto", "broadcast", "sequential")
AGGREGATION_MODES = ("synthesize", "concatenate", "best", "structured")

MAX_ITERATIONS_LIMIT = 50
MAX_DELEGATIONS_LIMIT = 50
MIN_TIMEOUT_MS = 1000
MAX_TIMEOUT_MS = 600000

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


def _normalize_keys(cls, raw: Dict[str, Any]) -> Dict[str, Any]:
    known = {f.name for f in fields(cls)}
    normalized: Dict[str, Any] = {}
    for key, value in raw.items():
        name = _snake(key)
        if name not in known:
            raise ConfigurationError(f"Unknown option '{key}'")
        normalized[name] = value
    return normalized


def _require_int(name: str, value: Any, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{name} must be an integer between {low} and {high}, got {value!r}")
    if value < low or value > high:
        raise ConfigurationError(f"{name} must be between {low} and {high}, got {value}")
    return value


def _require_choice(name: str, value: Any, choices) -> str:
    if value not in choices:
        raise ConfigurationError(f"{name} must be one of {', '.join(choices)}, got {value!r}")
    return value


def _normalize_session_id(value: Any) -> str:
    if value is None:
        return DEFAULT_SESSION_ID
    text = str(value).strip()
    return text or DEFAULT_SESSION_ID


def _require_message(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError("User message is required")
    return value


@dataclass
class RunOptions:
    """Options for one single-agent run."""

    user_message: str
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_iterations: int = 10
    tool_choice: str = "auto"
    output_format: str = "text"
    output_schema: Optional[Dict[str, Any]] = None
    schema_name: str = "response"
    schema_description: Optional[str] = None
    session_id: str = DEFAULT_SESSION_ID
    timeout_ms: int = 300000
    clear_memory: bool = False
    human_timeout_seconds: float = 300

    def __post_init__(self):
        self.user_message = _require_message(self.user_message)
        self.max_iterations = _require_int("max_iterations", self.max_iterations, 1, MAX_ITERATIONS_LIMIT)
        self.tool_choice = _require_choice("tool_choice", self.tool_choice, TOOL_CHOICES)
        self.output_format = _require_choice("output_format", self.output_format, OUTPUT_FORMATS)
        self.session_id = _normalize_session_id(self.session_id)
        self.timeout_ms = _require_int("timeout_ms", self.timeout_ms, MIN_TIMEOUT_MS, MAX_TIMEOUT_MS)
        if self.system_prompt is None:
            self.system_prompt = ""
        if isinstance(self.human_timeout_seconds, bool) or not isinstance(self.human_timeout_seconds, (int, float)):
            raise ConfigurationError("human_timeout_seconds must be a number")
        if self.human_timeout_seconds < 0:
            raise ConfigurationError("human_timeout_seconds must not be negative")

        if self.output_format == "structured":
            self.output_schema = self._parse_schema(self.output_schema)
        else:
            self.output_schema = None

    @staticmethod
    def _parse_schema(schema: Any) -> Dict[str, Any]:
        if schema is None or schema == "":
            raise ConfigurationError("Output schema is required when output format is 'structured'")
        if isinstance(schema, str):
            try:
                schema = json.loads(schema)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Output schema must be valid JSON: {e}") from e
        if not isinstance(schema, dict) or schema.get("type") != "object":
            raise ConfigurationError("Output schema must be a JSON schema with type 'object'")
        return schema

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "RunOptions":
        """Build options from camelCase or snake_case keys."""
        data = _normalize_keys(cls, raw)
        if "user_message" not in data:
            raise ConfigurationError("User message is required")
        return cls(**data)


@dataclass
class CoordinatorOptions:
    """Options for one coordinator run."""

    user_message: str
    system_prompt: str = (
        "You are a supervisor coordinating a team of specialist agents. "
        "Delegate focused tasks to the right agents and combine their findings."
    )
    routing_strategy: str = "auto"
    max_iterations: int = 5
    max_delegations: int = 10
    aggregation_mode: str = "synthesize"
    parallel_execution: bool = True
    share_context: bool = True
    session_id: str = DEFAULT_SESSION_ID
    timeout_ms: int = 600000

    def __post_init__(self):
        self.user_message = _require_message(self.user_message)
        self.routing_strategy = _require_choice("routing_strategy", self.routing_strategy, ROUTING_STRATEGIES)
        self.max_iterations = _require_int("max_iterations", self.max_iterations, 1, MAX_ITERATIONS_LIMIT)
        self.max_delegations = _require_int("max_delegations", self.max_delegations, 1, MAX_DELEGATIONS_LIMIT)
        self.aggregation_mode = _require_choice("aggregation_mode", self.aggregation_mode, AGGREGATION_MODES)
        self.session_id = _normalize_session_id(self.session_id)
        self.timeout_ms = _require_int("timeout_ms", self.timeout_ms, MIN_TIMEOUT_MS, MAX_TIMEOUT_MS)
        self.parallel_execution = bool(self.parallel_execution)
        self.share_context = bool(self.share_context)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "CoordinatorOptions":
        data = _normalize_keys(cls, raw)
        if "user_message" not in data:
            raise ConfigurationError("User message is required")
        return cls(**data)
