"""Base tool class and result type for agent tools."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..providers.types import ToolDefinition

_HUMAN_KEYS = ("question", "original_question", "context", "options", "timeout_seconds")


@dataclass
class ToolResult:
    """Result from a tool execution."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    requires_human_input: bool = False
    human_request: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, kind: Optional[str] = None) -> "ToolResult":
        return cls(success=False, error=error, error_kind=kind)

    @classmethod
    def coerce(cls, value: Any) -> "ToolResult":
        """Normalize whatever a tool returned into a ToolResult."""
        if isinstance(value, ToolResult):
            return value
        if isinstance(value, dict) and "success" in value:
            requires_human = bool(value.get("requires_human_input") or value.get("_pause_execution"))
            return cls(
                success=bool(value["success"]),
                data=value.get("data"),
                error=value.get("error"),
                requires_human_input=requires_human,
                human_request={k: value[k] for k in _HUMAN_KEYS if k in value} if requires_human else {},
            )
        return cls(success=True, data=value)

    @property
    def question(self) -> Optional[str]:
        return self.human_request.get("question")

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        if self.requires_human_input:
            payload["requires_human_input"] = True
            payload.update(self.human_request)
        return payload


class BaseTool(ABC):
    """Base class for all tools."""

    name: str
    description: str
    parameters: Dict[str, Any]

    @abstractmethod
    async def execute_tool(self, arguments: Dict[str, Any]) -> ToolResult:
        """Execute the tool with validated arguments."""

    def get_definition(self) -> ToolDefinition:
        return ToolDefinition(name=self.name, description=self.description, parameters=self.parameters)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
