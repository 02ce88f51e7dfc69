"""Coordinator entry point: route a request across sub-agents and aggregate."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from ..core.invoker import ModelInvoker
from ..core.options import CoordinatorOptions
from ..errors import ConfigurationError, ExecutionTimeoutError
from ..observability import AgentObserver
from ..providers.base import ChatModel, SubAgent
from ..retry import RetryConfig
from .aggregator import ResultAggregator
from .context import CoordinatorState
from .delegation import COORDINATOR_AGENT_ID, DelegationEngine
from .protocol import DelegationOutcome
from .registry import AgentRegistry

logger = logging.getLogger(__name__)


@dataclass
class CoordinatorResult:
    """Final outcome of a coordinator run."""

    response: str
    success: bool
    summary: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"response": self.response, "success": self.success, "metadata": self.metadata}
        if self.summary:
            data["summary"] = self.summary
        return data


def _agent_results(outcomes: List[DelegationOutcome]) -> Dict[str, Any]:
    results: Dict[str, Any] = {}
    for outcome in outcomes:
        entry: Dict[str, Any] = {"success": outcome.success}
        if outcome.success:
            entry["response"] = outcome.response[:500]
        else:
            entry["error"] = outcome.error
        results[outcome.agent_name] = entry
    return results


async def run_coordinator(
    config: Union[CoordinatorOptions, Dict[str, Any]],
    model: ChatModel,
    agents: Union[AgentRegistry, Iterable[SubAgent]],
    observer: Optional[AgentObserver] = None,
    retry_config: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> CoordinatorResult:
    """Run one coordinated request.

    Args:
        config: CoordinatorOptions or a dict of camelCase/snake_case options
        model: The coordinator's model; also the fallback for sub-agents without one
        agents: Roster of sub-agents, in pipeline order
        observer: Optional observer for model calls and delegations
        retry_config: Retry policy for the coordinator's own model calls
        sleep: Backoff sleeper, injectable for tests

    Returns:
        CoordinatorResult with the aggregated (or final_answer) response

    Raises:
        ConfigurationError: Invalid options or an empty roster
        MaxIterationsError: Auto routing used all turns without answering
        ExecutionTimeoutError: The whole run exceeded ``timeout_ms``
        ModelCallError: The coordinator's model failed permanently
    """
    options = config if isinstance(config, CoordinatorOptions) else CoordinatorOptions.from_dict(config)
    engine = DelegationEngine(agents, model=model, observer=observer)
    if not len(engine.registry):
        raise ConfigurationError("At least one sub-agent is required for coordination")

    state = CoordinatorState(
        session_id=options.session_id,
        max_iterations=options.max_iterations,
        max_delegations=options.max_delegations,
    )
    invoker = ModelInvoker(
        model,
        retry_config=retry_config,
        observer=observer,
        agent_id=COORDINATOR_AGENT_ID,
        sleep=sleep,
    )

    logger.info(
        f"Coordinating {len(engine.registry)} agent(s) with '{options.routing_strategy}' routing "
        f"(max {options.max_delegations} delegations)"
    )
    try:
        result = await asyncio.wait_for(
            _coordinate(engine, state, options, invoker),
            timeout=options.timeout_ms / 1000,
        )
    except asyncio.TimeoutError:
        if state.is_running:
            state.mark_failed()
        raise ExecutionTimeoutError(
            f"Coordinator execution exceeded timeout of {options.timeout_ms}ms",
            details={"timeout_ms": options.timeout_ms, **state.get_delegation_metadata()},
        ) from None

    logger.info(
        f"Coordination finished in {result.metadata['duration_ms']}ms "
        f"with {state.delegation_count} delegation(s)"
    )
    return result


async def _coordinate(
    engine: DelegationEngine,
    state: CoordinatorState,
    options: CoordinatorOptions,
    invoker: ModelInvoker,
) -> CoordinatorResult:
    summary = None
    extra: Dict[str, Any] = {}

    if options.routing_strategy == "auto":
        auto = await engine.run_auto(state, options, invoker)
        response, success, summary, outcomes = auto.response, True, auto.summary, auto.outcomes
        extra["finished_with_final_answer"] = auto.finished_with_tool
    else:
        if options.routing_strategy == "broadcast":
            outcomes = await engine.broadcast(
                state,
                options.user_message,
                parallel=options.parallel_execution,
                share_context=options.share_context,
            )
        else:
            outcomes = await engine.sequential(state, options.user_message, share_context=options.share_context)
        aggregated = await ResultAggregator(invoker).aggregate(
            outcomes, options.aggregation_mode, options.user_message
        )
        response, success = aggregated.response, aggregated.success
        if aggregated.fell_back:
            extra["aggregation_fallback"] = "concatenate"

    if state.is_running:
        if success:
            state.mark_completed()
        else:
            state.mark_failed()

    delegation_meta = state.get_delegation_metadata()
    metadata = {
        "routing_strategy": options.routing_strategy,
        "aggregation_mode": options.aggregation_mode,
        "duration_ms": state.elapsed_ms(),
        "iterations": state.current_iteration,
        "total_tokens": state.total_tokens,
        **delegation_meta,
        "agent_results": _agent_results(outcomes),
        **extra,
    }
    return CoordinatorResult(response=response, success=success, summary=summary, metadata=metadata)
