"""Provider-agnostic message, tool and response types."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

ROLES = ("system", "user", "assistant", "tool")


def utc_now_iso() -> str:
    """Return current UTC time in ISO-8601 format."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def generate_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolCall":
        return cls(name=data.get("name", ""), arguments=dict(data.get("arguments") or {}), id=data.get("id"))


@dataclass
class Message:
    """Provider-agnostic chat message."""

    role: str  # "system" | "user" | "assistant" | "tool"
    content: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    timestamp: str = field(default_factory=utc_now_iso)

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")
        if self.role == "tool" and not self.tool_call_id:
            raise ValueError("Tool messages must carry the tool_call_id they answer")

    @classmethod
    def system(cls, text: str) -> "Message":
        return cls(role="system", content=text)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role="user", content=text)

    @classmethod
    def assistant(cls, text: Optional[str], tool_calls: Optional[List[ToolCall]] = None) -> "Message":
        return cls(role="assistant", content=text, tool_calls=list(tool_calls or []))

    @classmethod
    def tool_result(cls, call_id: str, payload: Any) -> "Message":
        content = payload if isinstance(payload, str) else json.dumps(payload, default=str)
        return cls(role="tool", content=content, tool_call_id=call_id)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"role": self.role, "content": self.content, "timestamp": self.timestamp}
        if self.tool_calls:
            data["tool_calls"] = [call.to_dict() for call in self.tool_calls]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            role=data["role"],
            content=data.get("content"),
            tool_calls=[ToolCall.from_dict(c) for c in data.get("tool_calls") or []],
            tool_call_id=data.get("tool_call_id"),
            timestamp=data.get("timestamp") or utc_now_iso(),
        )


@dataclass
class ToolDefinition:
    """Tool schema in OpenAI-compatible JSON Schema format."""

    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ResponseFormat:
    """Structured-output request attached to a model call."""

    schema: Dict[str, Any]
    name: str = "response"
    description: Optional[str] = None
    strict: bool = False


@dataclass
class ModelResponse:
    """Normalized response from a model collaborator."""

    content: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, int]] = None
    raw: Any = None

    @property
    def total_tokens(self) -> int:
        if not self.usage:
            return 0
        return int(self.usage.get("total_tokens", 0) or 0)
