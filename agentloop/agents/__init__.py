"""Multi-agent coordination.

A coordinator exposes each sub-agent to its model as a ``delegate_to_*``
tool (auto routing), or fans a request out to every sub-agent (broadcast)
or through them in order (sequential), then aggregates the results.
"""

from .agent_tool import DELEGATE_PREFIX, FINAL_ANSWER_TOOL, DelegationTool, FinalAnswerTool, sanitize_tool_name
from .aggregator import AggregationResult, ResultAggregator
from .context import CoordinatorState, DelegationRecord, SharedContext
from .coordinator import CoordinatorResult, run_coordinator
from .delegation import DelegationEngine
from .protocol import DelegationOutcome, SubAgentResult
from .registry import AgentRegistry
from .worker import WorkerAgent

__all__ = [
    "DELEGATE_PREFIX",
    "FINAL_ANSWER_TOOL",
    "AgentRegistry",
    "AggregationResult",
    "CoordinatorResult",
    "CoordinatorState",
    "DelegationEngine",
    "DelegationOutcome",
    "DelegationRecord",
    "DelegationTool",
    "FinalAnswerTool",
    "ResultAggregator",
    "SharedContext",
    "SubAgentResult",
    "WorkerAgent",
    "run_coordinator",
    "sanitize_tool_name",
]
