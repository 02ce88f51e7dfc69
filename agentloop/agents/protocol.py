"""Result types exchanged between a coordinator and its sub-agents."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class SubAgentResult:
    """What a sub-agent hands back from ``execute_task``.

    Attributes:
        success: Whether the sub-agent produced an answer
        response: The answer text (empty on failure)
        agent_name: Display name of the sub-agent
        error: Failure description, if any
        metadata: Iterations, tools used, duration and similar details
    """

    success: bool
    response: str = ""
    agent_name: str = ""
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Any, agent_name: str = "") -> "SubAgentResult":
        """Normalize a sub-agent's return value.

        Sub-agents may return a SubAgentResult, a dict with ``success`` /
        ``response`` / ``error`` keys, or a bare string (taken as success).
        """
        if isinstance(value, SubAgentResult):
            if not value.agent_name:
                value.agent_name = agent_name
            return value
        if isinstance(value, dict):
            return cls(
                success=bool(value.get("success", False)),
                response=str(value.get("response") or ""),
                agent_name=str(value.get("agent_name") or value.get("agentName") or agent_name),
                error=value.get("error"),
                metadata=dict(value.get("metadata") or {}),
            )
        if isinstance(value, str):
            return cls(success=True, response=value, agent_name=agent_name)
        return cls(
            success=False,
            agent_name=agent_name,
            error=f"Unexpected result type from sub-agent: {type(value).__name__}",
        )


@dataclass
class DelegationOutcome:
    """Result of one delegation as seen by the coordinator."""

    agent_name: str
    tool_name: str
    success: bool
    response: str = ""
    error: Optional[str] = None
    error_kind: Optional[str] = None
    delegation_id: Optional[str] = None
    duration_ms: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Shape sent back to the coordinating model as a tool result."""
        payload: Dict[str, Any] = {"success": self.success, "agent_name": self.agent_name}
        if self.success:
            payload["response"] = self.response
        else:
            payload["error"] = self.error
            if self.error_kind:
                payload["error_kind"] = self.error_kind
        if self.delegation_id:
            payload["delegation_id"] = self.delegation_id
        return payload

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_payload()
        data["response"] = self.response
        data["tool_name"] = self.tool_name
        data["duration_ms"] = round(self.duration_ms, 2)
        data["metadata"] = self.metadata
        return data
