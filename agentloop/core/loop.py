"""Single-agent reason/act/observe loop."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Union

from ..errors import ErrorClassifier, ExecutionTimeoutError, MaxIterationsError
from ..observability import AgentObserver
from ..providers.base import ChatModel, MemoryStore, Tool
from ..providers.types import Message, ResponseFormat, ToolCall, generate_call_id
from ..retry import RetryConfig
from ..tools.base import ToolResult
from .dispatcher import ToolDispatcher
from .history import new_messages_since, sanitize_history
from .invoker import ModelInvoker
from .ledger import ToolCallLedger
from .options import RunOptions
from .state import RunState, RunStatus

if TYPE_CHECKING:
    from ..pause import PauseResumeRegistry

logger = logging.getLogger(__name__)


@dataclass
class AgentRunResult:
    """Outcome of one agent run (final answer or a pause descriptor)."""

    response: str
    status: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    structured_data: Any = None
    messages: List[Message] = field(default_factory=list, repr=False)
    pending_tool_call: Optional[Dict[str, Any]] = None
    human_response: Optional[asyncio.Future] = field(default=None, repr=False)

    @property
    def success(self) -> bool:
        return self.status == RunStatus.COMPLETED.value

    @property
    def waiting_for_human_input(self) -> bool:
        return self.status == RunStatus.WAITING_FOR_HUMAN_INPUT.value

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"response": self.response, "metadata": self.metadata}
        if self.structured_data is not None:
            data["structured_data"] = self.structured_data
        if self.waiting_for_human_input:
            data["waiting_for_human_input"] = True
            data["pending_tool_call"] = self.pending_tool_call
        return data


def format_output(result: AgentRunResult, output_format: str = "text") -> Any:
    """Shape a run result for the caller according to ``output_format``."""
    if output_format == "text":
        return result.response
    if output_format == "json":
        return {"response": result.response, "success": result.success}
    if output_format == "structured":
        return result.structured_data if result.structured_data is not None else result.response
    if output_format == "full":
        meta = result.metadata
        output = {
            "response": result.response,
            "success": result.success,
            "metadata": {
                "iterations": meta.get("iterations"),
                "tools_used": meta.get("tools_used", []),
                "tool_calls": meta.get("tool_calls", []),
                "total_tokens": meta.get("total_tokens", 0),
                "duration_ms": meta.get("duration_ms"),
                "finish_reason": meta.get("finish_reason"),
                "status": result.status,
            },
        }
        if result.structured_data is not None:
            output["structured_data"] = result.structured_data
        if result.waiting_for_human_input:
            output["pending_tool_call"] = result.pending_tool_call
        return output
    raise ValueError(f"Unknown output format: {output_format}")


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


class AgentLoop:
    """Drive the reason -> act -> observe cycle for one agent.

    Collaborators are injected once; every ``run`` gets its own RunState,
    ToolCallLedger and dispatcher, so one loop may serve concurrent runs.

    Example:
        loop = AgentLoop(model, tools=[CalculatorTool()], memory=BufferMemory())
        result = await loop.run(RunOptions(user_message="What is 2 + 2?"))
    """

    def __init__(
        self,
        model: ChatModel,
        tools: Iterable[Tool] = (),
        memory: Optional[MemoryStore] = None,
        observer: Optional[AgentObserver] = None,
        retry_config: Optional[RetryConfig] = None,
        pause_registry: Optional["PauseResumeRegistry"] = None,
        agent_id: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.model = model
        self.tools: List[Tool] = list(tools)
        self.memory = memory
        self.observer = observer
        self.retry_config = retry_config or RetryConfig()
        self.pause_registry = pause_registry
        self.agent_id = agent_id
        self.classifier = ErrorClassifier()
        self._sleep = sleep
        # Checks protocol conformance and duplicate names up front
        self.tool_names = ToolDispatcher(self.tools).tool_names

    async def run(
        self,
        options: RunOptions,
        execution_id: Optional[str] = None,
        history: Optional[Sequence[Message]] = None,
    ) -> AgentRunResult:
        """Run until a final answer, a pause request, or a limit.

        Args:
            options: Validated run options
            execution_id: Key used to register a pause with the registry
            history: Checkpointed messages to continue from instead of memory

        Returns:
            AgentRunResult with status ``completed`` or ``waiting_for_human_input``

        Raises:
            MaxIterationsError: The iteration cap was hit without a final answer
            ExecutionTimeoutError: The run exceeded ``options.timeout_ms``
            ModelCallError: A model call failed permanently or exhausted retries
        """
        state = RunState(session_id=options.session_id, max_iterations=options.max_iterations)
        try:
            return await asyncio.wait_for(
                self._run(state, options, execution_id, history),
                timeout=options.timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            if state.is_running:
                state.mark_failed()
            raise ExecutionTimeoutError(
                f"Agent execution exceeded timeout of {options.timeout_ms}ms",
                details={"timeout_ms": options.timeout_ms, **state.get_metadata()},
            ) from None

    async def _run(
        self,
        state: RunState,
        options: RunOptions,
        execution_id: Optional[str],
        history: Optional[Sequence[Message]],
    ) -> AgentRunResult:
        ledger = ToolCallLedger()
        dispatcher = ToolDispatcher(self.tools, ledger=ledger, observer=self.observer, agent_id=self.agent_id)
        invoker = ModelInvoker(
            self.model,
            retry_config=self.retry_config,
            observer=self.observer,
            classifier=self.classifier,
            agent_id=self.agent_id,
            sleep=self._sleep,
        )

        try:
            persist_from = await self._prepare_history(state, options, history)
            state.add_message(Message.user(options.user_message))

            tools = dispatcher.definitions() if options.tool_choice != "none" else []
            response_format = None
            if options.output_format == "structured":
                response_format = ResponseFormat(
                    schema=options.output_schema,
                    name=options.schema_name,
                    description=options.schema_description,
                )

            while not state.has_reached_max_iterations():
                step = state.increment_iteration()
                step_started = time.perf_counter()
                if self.observer:
                    self.observer.log_step_start(
                        step, options.user_message if step == 1 else None, agent_id=self.agent_id
                    )

                response = await invoker.invoke(state, tools, options.tool_choice, response_format)

                if response.tool_calls:
                    calls = [
                        ToolCall(name=c.name, arguments=dict(c.arguments or {}), id=c.id or generate_call_id())
                        for c in response.tool_calls
                    ]
                    state.add_message(Message.assistant(response.content or None, calls))

                    # Tool calls of one turn run sequentially, in order
                    for call in calls:
                        result = await dispatcher.dispatch(call, state)
                        if result.requires_human_input:
                            return await self._pause(
                                state, options, call, result, ledger, persist_from, execution_id
                            )
                        state.add_message(Message.tool_result(call.id, result.to_payload()))

                    if self.observer:
                        self.observer.log_step_end(
                            step, (time.perf_counter() - step_started) * 1000, agent_id=self.agent_id
                        )
                    continue

                content = response.content or ""
                state.add_message(Message.assistant(content))
                structured = self._parse_structured(content) if response_format else None
                await self._persist(state, persist_from)
                state.mark_completed()
                if self.observer:
                    self.observer.log_step_end(
                        step, (time.perf_counter() - step_started) * 1000, agent_id=self.agent_id
                    )
                return AgentRunResult(
                    response=content,
                    status=state.status.value,
                    metadata=self._metadata(state, ledger, execution_id),
                    structured_data=structured,
                    messages=sanitize_history(state.messages),
                )

            state.mark_max_iterations()
            raise MaxIterationsError(
                f"Agent reached maximum iterations ({state.max_iterations}) without completing",
                details={
                    **self._metadata(state, ledger, execution_id),
                    "last_response": self._last_assistant_text(state),
                },
            )
        except BaseException:
            if state.is_running:
                state.mark_failed()
            raise

    async def _prepare_history(
        self,
        state: RunState,
        options: RunOptions,
        history: Optional[Sequence[Message]],
    ) -> int:
        """Seed state with prior messages; returns the index new messages start at."""
        if history is not None:
            loaded = sanitize_history(list(history))
        else:
            if options.clear_memory:
                await self._clear_memory(state.session_id)
            loaded = await self._load_history(state.session_id)

        if not loaded:
            if options.system_prompt:
                state.set_messages([Message.system(options.system_prompt)])
            # The system message is stored together with the first exchange
            return 0

        if loaded[0].role != "system" and options.system_prompt:
            loaded = [Message.system(options.system_prompt)] + loaded
        state.set_messages(loaded)
        return len(loaded)

    async def _load_history(self, session_id: str) -> List[Message]:
        if self.memory is None:
            return []
        try:
            raw = await self.memory.get_messages(session_id)
        except Exception as e:
            self._memory_failure("load", e)
            return []
        messages = [m if isinstance(m, Message) else Message.from_dict(m) for m in raw or []]
        cleaned = sanitize_history(messages)
        if len(cleaned) != len(messages):
            logger.info(f"Dropped {len(messages) - len(cleaned)} incomplete tool message(s) from history")
        return cleaned

    async def _clear_memory(self, session_id: str) -> None:
        if self.memory is None:
            return
        try:
            await self.memory.clear(session_id)
        except Exception as e:
            self._memory_failure("clear", e)

    async def _persist(self, state: RunState, persist_from: int) -> None:
        if self.memory is None:
            return
        try:
            for message in new_messages_since(state.messages, persist_from):
                await self.memory.add_message(state.session_id, message)
        except Exception as e:
            self._memory_failure("save", e)

    def _memory_failure(self, operation: str, error: Exception) -> None:
        info = self.classifier.classify_memory_error(error)
        logger.warning(f"Memory {operation} failed ({info.kind.value}): {info.message}")
        if self.observer:
            self.observer.log_error("memory", info.message, {"operation": operation, "kind": info.kind.value})

    async def _pause(
        self,
        state: RunState,
        options: RunOptions,
        call: ToolCall,
        result: ToolResult,
        ledger: ToolCallLedger,
        persist_from: int,
        execution_id: Optional[str],
    ) -> AgentRunResult:
        question = result.question or "The agent needs more information to continue."
        state.add_message(Message.assistant(question))
        await self._persist(state, persist_from)
        state.mark_waiting_for_human_input()

        pending = {
            "tool_name": call.name,
            "tool_call_id": call.id,
            "question": question,
            "original_question": result.human_request.get("original_question", question),
            "context": result.human_request.get("context"),
            "options": result.human_request.get("options"),
        }
        messages = sanitize_history(state.messages)
        metadata = self._metadata(state, ledger, execution_id)
        metadata["pending_tool_call"] = pending

        future = None
        if self.pause_registry is not None and execution_id:
            timeout = result.human_request.get("timeout_seconds")
            if timeout is None:
                timeout = options.human_timeout_seconds
            snapshot = {
                "session_id": state.session_id,
                "messages": [m.to_dict() for m in messages],
                "metadata": metadata,
                "pending_tool_call": pending,
            }
            future = self.pause_registry.pause_for_human_input(execution_id, snapshot, timeout)
            if self.observer:
                self.observer.log_pause(execution_id, question, agent_id=self.agent_id)
        else:
            logger.info("Run is waiting for human input; no pause registry configured")

        return AgentRunResult(
            response=question,
            status=state.status.value,
            metadata=metadata,
            messages=messages,
            pending_tool_call=pending,
            human_response=future,
        )

    def _parse_structured(self, content: str) -> Optional[Any]:
        try:
            return json.loads(_strip_code_fence(content))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Structured output could not be parsed as JSON, keeping raw content: {e}")
            return None

    @staticmethod
    def _last_assistant_text(state: RunState) -> Optional[str]:
        for message in reversed(state.messages):
            if message.role == "assistant" and message.content:
                return message.content
        return None

    @staticmethod
    def _metadata(state: RunState, ledger: ToolCallLedger, execution_id: Optional[str]) -> Dict[str, Any]:
        metadata = state.get_metadata()
        metadata["tool_calls"] = ledger.summary()
        if execution_id:
            metadata["execution_id"] = execution_id
        return metadata


async def run_agent(
    config: Union[RunOptions, Dict[str, Any]],
    model: ChatModel,
    tools: Iterable[Tool] = (),
    memory: Optional[MemoryStore] = None,
    observer: Optional[AgentObserver] = None,
    retry_config: Optional[RetryConfig] = None,
    pause_registry: Optional["PauseResumeRegistry"] = None,
    execution_id: Optional[str] = None,
) -> AgentRunResult:
    """Validate ``config`` and run a single agent once."""
    options = config if isinstance(config, RunOptions) else RunOptions.from_dict(config)
    loop = AgentLoop(
        model,
        tools=tools,
        memory=memory,
        observer=observer,
        retry_config=retry_config,
        pause_registry=pause_registry,
    )
    return await loop.run(options, execution_id=execution_id)
