"""Delegation engine: routes a coordinator's work to its sub-agents."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from ..core.dispatcher import ToolDispatcher
from ..core.invoker import ModelInvoker
from ..core.options import CoordinatorOptions
from ..errors import ErrorKind, MaxIterationsError
from ..observability import AgentObserver
from ..providers.base import ChatModel, SubAgent
from ..providers.types import Message, ToolCall, generate_call_id
from ..tools.base import ToolResult
from .agent_tool import FINAL_ANSWER_TOOL, DelegationTool, FinalAnswerTool, delegation_tool_name
from .context import CoordinatorState, SharedContext
from .protocol import DelegationOutcome, SubAgentResult
from .registry import AgentRegistry

logger = logging.getLogger(__name__)

COORDINATOR_AGENT_ID = "coordinator"


def build_coordinator_prompt(base_prompt: str, registry: AgentRegistry) -> str:
    """System prompt for auto routing: base prompt plus the team roster."""
    return f"""{base_prompt}

## Your Team
You have access to the following worker agents:
{registry.describe()}

## Delegation Guidelines
- Analyze the user's request to identify what expertise is needed
- Delegate specific, well-defined tasks to appropriate agents
- You can delegate to multiple agents for complex tasks
- Review agent responses and ask follow-up questions if needed
- When you have enough information, use the {FINAL_ANSWER_TOOL} tool to respond

## Available Actions
- delegate_to_[agent_name]: Send a task to a specific worker agent
- {FINAL_ANSWER_TOOL}: Provide your final response to the user""".strip()


def _as_text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


@dataclass
class AutoRunResult:
    """Outcome of an auto-routed coordination."""

    response: str
    summary: Optional[str] = None
    outcomes: List[DelegationOutcome] = field(default_factory=list)
    finished_with_tool: bool = False


class DelegationEngine:
    """Runs delegations for one coordinator.

    Every delegation goes through ``delegate``: it enforces the delegation
    cap before the sub-agent is touched, records the delegation on the
    coordinator's state, and converts sub-agent failures (returned or
    raised) into unsuccessful DelegationOutcomes.

    Example:
        engine = DelegationEngine([researcher, writer], model=coordinator_model)
        outcomes = await engine.broadcast(state, "Summarize the report", parallel=True)
    """

    def __init__(
        self,
        agents: Union[AgentRegistry, Iterable[SubAgent]],
        model: Optional[ChatModel] = None,
        observer: Optional[AgentObserver] = None,
        agent_id: str = COORDINATOR_AGENT_ID,
    ):
        self.registry = agents if isinstance(agents, AgentRegistry) else AgentRegistry(agents)
        self.model = model
        self.observer = observer
        self.agent_id = agent_id

    async def delegate(
        self,
        state: CoordinatorState,
        agent: SubAgent,
        arguments: Dict[str, Any],
        findings: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> DelegationOutcome:
        """Invoke one sub-agent with ``arguments`` (task, context, expectedOutput).

        Args:
            state: Coordinator state holding the delegation ledger
            agent: Target sub-agent
            arguments: Delegation arguments; ``task`` is required
            findings: Read-only snapshot of shared context for this call

        Returns:
            DelegationOutcome; never raises for sub-agent failures
        """
        tool_name = delegation_tool_name(agent.name)
        task = str(arguments.get("task") or "")

        if state.has_reached_max_delegations():
            error = f"Maximum delegations ({state.max_delegations}) reached"
            logger.warning(f"Refusing delegation to '{agent.name}': {error}")
            return DelegationOutcome(
                agent_name=agent.name,
                tool_name=tool_name,
                success=False,
                error=error,
                error_kind=ErrorKind.MAX_DELEGATIONS.value,
            )

        record = state.record_delegation(agent_id=tool_name, agent_name=agent.name, task=task)
        expected = arguments.get("expectedOutput") or arguments.get("expected_output")
        message = f"{task}\n\nExpected output: {expected}" if expected else task
        logger.info(f"Delegating {record.delegation_id} to '{agent.name}': {task[:100]}")

        started = time.perf_counter()
        try:
            raw = await agent.execute_task(
                message,
                context=_as_text(arguments.get("context")),
                shared_context=list(findings) if findings else None,
                session_id=f"{state.session_id}_{record.delegation_id}",
                fallback_model=self.model,
            )
            result = SubAgentResult.coerce(raw, agent.name)
        except Exception as e:
            logger.error(f"Sub-agent '{agent.name}' raised during delegation: {e}")
            result = SubAgentResult(success=False, agent_name=agent.name, error=str(e) or type(e).__name__)
        duration_ms = (time.perf_counter() - started) * 1000

        if result.success:
            state.complete_delegation(record, success=True, result=result.response)
            error = None
        else:
            error = f"Agent {agent.name} failed: {result.error or 'unknown error'}"
            state.complete_delegation(record, success=False, error=error)

        if self.observer:
            self.observer.log_delegation(agent.name, task, result.success, duration_ms, agent_id=self.agent_id)

        return DelegationOutcome(
            agent_name=agent.name,
            tool_name=tool_name,
            success=result.success,
            response=result.response if result.success else "",
            error=error,
            delegation_id=record.delegation_id,
            duration_ms=duration_ms,
            metadata=result.metadata,
        )

    async def broadcast(
        self,
        state: CoordinatorState,
        message: str,
        parallel: bool = True,
        share_context: bool = True,
    ) -> List[DelegationOutcome]:
        """Send ``message`` to every sub-agent.

        In parallel mode all delegations start together and each outcome is
        captured independently. In sequential mode earlier successes are
        shared with later agents when ``share_context`` is set.
        """
        agents = self.registry.agents
        if parallel:
            settled = await asyncio.gather(
                *(self.delegate(state, agent, {"task": message}) for agent in agents),
                return_exceptions=True,
            )
            outcomes = []
            for agent, item in zip(agents, settled):
                if isinstance(item, BaseException):
                    logger.error(f"Broadcast to '{agent.name}' failed: {item}")
                    item = DelegationOutcome(
                        agent_name=agent.name,
                        tool_name=delegation_tool_name(agent.name),
                        success=False,
                        error=f"Agent {agent.name} failed: {item}",
                    )
                outcomes.append(item)
            return outcomes

        shared = SharedContext()
        outcomes = []
        for agent in agents:
            findings = shared.as_dicts() if share_context else None
            outcome = await self.delegate(state, agent, {"task": message}, findings)
            outcomes.append(outcome)
            if outcome.success:
                shared.add(outcome.agent_name, outcome.response)
        return outcomes

    async def sequential(
        self,
        state: CoordinatorState,
        message: str,
        share_context: bool = True,
    ) -> List[DelegationOutcome]:
        """Pipe ``message`` through the sub-agents in roster order.

        Each successful output becomes the input of the next agent; a
        failed agent leaves the pipeline input unchanged.
        """
        shared = SharedContext()
        outcomes: List[DelegationOutcome] = []
        current = message
        last_output: Optional[str] = None

        for agent in self.registry.agents:
            arguments: Dict[str, Any] = {"task": current}
            if last_output is not None:
                arguments["context"] = f"Previous agent output: {last_output}"
            findings = shared.as_dicts() if share_context else None
            outcome = await self.delegate(state, agent, arguments, findings)
            outcomes.append(outcome)
            if outcome.success:
                shared.add(outcome.agent_name, outcome.response)
                last_output = outcome.response
                current = f'Based on this input: "{outcome.response}"\n\nContinue the task: {message}'
        return outcomes

    async def run_auto(
        self,
        state: CoordinatorState,
        options: CoordinatorOptions,
        invoker: ModelInvoker,
    ) -> AutoRunResult:
        """Let the coordinating model choose delegations until it answers.

        Sub-agents are offered as ``delegate_to_*`` tools next to the
        reserved ``final_answer`` tool. Delegation results are folded into
        shared context after each call (sequential) or after each turn's
        batch (parallel), so concurrent delegations see the same snapshot.

        Raises:
            MaxIterationsError: The coordinator used all its turns without answering
        """
        shared = SharedContext()
        outcomes: List[DelegationOutcome] = []

        async def delegate(agent: SubAgent, arguments: Dict[str, Any]) -> DelegationOutcome:
            findings = shared.as_dicts() if options.share_context else None
            outcome = await self.delegate(state, agent, arguments, findings)
            outcomes.append(outcome)
            return outcome

        tools = [DelegationTool(agent, delegate) for agent in self.registry]
        tools.append(FinalAnswerTool())
        dispatcher = ToolDispatcher(tools, observer=self.observer, agent_id=self.agent_id)
        definitions = dispatcher.definitions()

        state.set_messages(
            [
                Message.system(build_coordinator_prompt(options.system_prompt, self.registry)),
                Message.user(options.user_message),
            ]
        )

        while not state.has_reached_max_iterations():
            state.increment_iteration()
            response = await invoker.invoke(state, definitions, "auto")

            if not response.tool_calls:
                content = response.content or ""
                state.add_message(Message.assistant(content))
                return AutoRunResult(response=content, outcomes=outcomes)

            calls = [
                ToolCall(name=c.name, arguments=dict(c.arguments or {}), id=c.id or generate_call_id())
                for c in response.tool_calls
            ]
            state.add_message(Message.assistant(response.content or None, calls))

            batch: List[ToolCall] = []
            for call in calls:
                if call.name != FINAL_ANSWER_TOOL:
                    batch.append(call)
                    continue
                await self._run_batch(batch, dispatcher, state, shared, options.parallel_execution)
                batch = []
                result = await dispatcher.dispatch(call, state)
                if result.success:
                    logger.info(f"Coordinator finished via {FINAL_ANSWER_TOOL} after {state.current_iteration} turn(s)")
                    return AutoRunResult(
                        response=str(result.data["answer"]),
                        summary=result.data.get("summary"),
                        outcomes=outcomes,
                        finished_with_tool=True,
                    )
                state.add_message(Message.tool_result(call.id, result.to_payload()))
            await self._run_batch(batch, dispatcher, state, shared, options.parallel_execution)

        state.mark_max_iterations()
        raise MaxIterationsError(
            f"Coordinator reached maximum iterations ({state.max_iterations}) without a final answer",
            details={
                "iterations": state.current_iteration,
                "partial_results": [o.to_dict() for o in outcomes if o.success],
                **state.get_delegation_metadata(),
            },
        )

    async def _run_batch(
        self,
        calls: List[ToolCall],
        dispatcher: ToolDispatcher,
        state: CoordinatorState,
        shared: SharedContext,
        parallel: bool,
    ) -> None:
        if not calls:
            return
        if parallel and len(calls) > 1:
            results = await asyncio.gather(*(dispatcher.dispatch(call, state) for call in calls))
            for call, result in zip(calls, results):
                state.add_message(Message.tool_result(call.id, result.to_payload()))
                self._fold(shared, result)
            return
        for call in calls:
            result = await dispatcher.dispatch(call, state)
            state.add_message(Message.tool_result(call.id, result.to_payload()))
            self._fold(shared, result)

    @staticmethod
    def _fold(shared: SharedContext, result: ToolResult) -> None:
        if result.success and isinstance(result.data, dict) and result.data.get("response"):
            shared.add(result.data.get("agent_name", "agent"), result.data["response"])
