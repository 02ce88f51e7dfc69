"""Sub-agents exposed to the coordinating model as tools."""

from __future__ import annotations

import re
from typing import Any, Awaitable, Callable, Dict

from ..providers.base import SubAgent
from ..tools.base import BaseTool, ToolResult
from .protocol import DelegationOutcome

DELEGATE_PREFIX = "delegate_to_"
FINAL_ANSWER_TOOL = "final_answer"
MAX_TOOL_NAME_LENGTH = 50

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

DelegateFn = Callable[[SubAgent, Dict[str, Any]], Awaitable[DelegationOutcome]]


def sanitize_tool_name(name: str) -> str:
    """Lower-case ``name``, collapse non-alphanumeric runs to ``_``, trim, cap at 50 chars.

    Example:
        sanitize_tool_name("Research  Agent #1")  # "research_agent_1"
    """
    collapsed = _NON_ALNUM_RE.sub("_", (name or "").lower()).strip("_")
    return collapsed[:MAX_TOOL_NAME_LENGTH]


def delegation_tool_name(agent_name: str) -> str:
    sanitized = sanitize_tool_name(agent_name)
    if not sanitized:
        raise ValueError(f"Cannot derive a tool name from agent name {agent_name!r}")
    return f"{DELEGATE_PREFIX}{sanitized}"


class DelegationTool(BaseTool):
    """Wraps a sub-agent as a tool the coordinator's model can call.

    The tool does not run the sub-agent itself; it forwards the validated
    arguments to ``delegate``, which the delegation engine binds to the
    current coordinator run (delegation ledger and shared context).

    Example:
        tool = DelegationTool(researcher, delegate=engine_bound_delegate)
        tool.name  # "delegate_to_researcher"
    """

    def __init__(self, agent: SubAgent, delegate: DelegateFn):
        self.agent = agent
        self._delegate = delegate
        self.name = delegation_tool_name(agent.name)
        description = (getattr(agent, "description", "") or "").strip()
        self.description = f"Delegate a task to {agent.name}. {description}".strip()
        self.parameters = {
            "type": "object",
            "properties": {
                "task": {
                    "type": "string",
                    "description": "Clear, self-contained description of the task for this agent",
                },
                "context": {
                    "type": "string",
                    "description": "Background information the agent needs",
                },
                "expectedOutput": {
                    "type": "string",
                    "description": "What the agent should return",
                },
            },
            "required": ["task"],
        }

    async def execute_tool(self, arguments: Dict[str, Any]) -> ToolResult:
        outcome = await self._delegate(self.agent, arguments)
        if outcome.success:
            return ToolResult.ok(outcome.to_payload())
        return ToolResult(
            success=False,
            data=outcome.to_payload(),
            error=outcome.error,
            error_kind=outcome.error_kind,
        )


class FinalAnswerTool(BaseTool):
    """Reserved tool the coordinator calls to end its run with an answer."""

    name = FINAL_ANSWER_TOOL
    description = (
        "Provide the final answer to the user's request once the team's findings are sufficient. "
        "Calling this ends the coordination."
    )
    parameters = {
        "type": "object",
        "properties": {
            "answer": {"type": "string", "description": "The complete final answer"},
            "summary": {"type": "string", "description": "Short summary of how the answer was reached"},
        },
        "required": ["answer"],
    }

    async def execute_tool(self, arguments: Dict[str, Any]) -> ToolResult:
        return ToolResult.ok({"answer": arguments["answer"], "summary": arguments.get("summary")})
