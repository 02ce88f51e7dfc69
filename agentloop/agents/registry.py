"""Roster of sub-agents available to a coordinator."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Optional

from ..providers.base import SubAgent
from .agent_tool import FINAL_ANSWER_TOOL, delegation_tool_name

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Ordered roster of sub-agents, keyed by their delegation tool name.

    Registration order is roster order, which the sequential strategy
    follows. Agents are checked against the SubAgent protocol when they
    are registered, not when they are called.

    Example:
        registry = AgentRegistry([researcher, writer])
        registry.tool_names            # ["delegate_to_researcher", "delegate_to_writer"]
        registry.get("delegate_to_writer")
    """

    def __init__(self, agents: Iterable[SubAgent] = ()):
        self._agents: Dict[str, SubAgent] = {}
        for agent in agents:
            self.register(agent)

    def register(self, agent: SubAgent) -> str:
        """Add ``agent`` to the roster.

        Returns:
            The delegation tool name derived from the agent's display name

        Raises:
            TypeError: If the agent does not implement the SubAgent protocol
            ValueError: If another agent already maps to the same tool name
        """
        if not isinstance(agent, SubAgent):
            raise TypeError(f"{agent!r} does not implement name/description/execute_task()")
        tool_name = delegation_tool_name(agent.name)
        if tool_name == FINAL_ANSWER_TOOL:
            raise ValueError(f"Agent name {agent.name!r} collides with the reserved final_answer tool")
        if tool_name in self._agents:
            existing = self._agents[tool_name].name
            raise ValueError(f"Agent {agent.name!r} and {existing!r} both map to tool '{tool_name}'")
        self._agents[tool_name] = agent
        logger.info(f"Registered sub-agent '{agent.name}' as '{tool_name}'")
        return tool_name

    def get(self, tool_name: str) -> Optional[SubAgent]:
        return self._agents.get(tool_name)

    @property
    def agents(self) -> List[SubAgent]:
        return list(self._agents.values())

    @property
    def tool_names(self) -> List[str]:
        return list(self._agents)

    def describe(self) -> str:
        """Markdown roster used in the coordinator's system prompt."""
        lines = []
        for tool_name, agent in self._agents.items():
            description = (getattr(agent, "description", "") or "").strip()[:150] or "General-purpose agent"
            lines.append(f"- **{agent.name}** (`{tool_name}`): {description}")
        return "\n".join(lines)

    def __iter__(self) -> Iterator[SubAgent]:
        return iter(self._agents.values())

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, tool_name: str) -> bool:
        return tool_name in self._agents
