"""Worker agent: a sub-agent that runs its own agent loop for each task."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from ..core.dispatcher import ToolDispatcher
from ..core.loop import AgentLoop
from ..core.options import DEFAULT_SYSTEM_PROMPT, RunOptions
from ..errors import AgentError, ConfigurationError, describe_failure
from ..observability import AgentObserver
from ..providers.base import ChatModel, MemoryStore, Tool
from ..retry import RetryConfig
from .protocol import SubAgentResult

logger = logging.getLogger(__name__)

WORKER_FINDINGS = 3
WORKER_FINDING_CHARS = 300


def compose_task_message(
    task: str,
    context: Optional[str] = None,
    shared_context: Optional[List[Dict[str, Any]]] = None,
) -> str:
    """Build the user turn a worker receives for a delegated task."""
    message = f"Context: {context}\n\nTask: {task}" if context else task

    findings = [f for f in (shared_context or [])[-WORKER_FINDINGS:] if f.get("result") is not None]
    if findings:
        rendered = "\n\n".join(
            f"[{f.get('agent_name', 'agent')}]: {str(f['result'])[:WORKER_FINDING_CHARS]}" for f in findings
        )
        message += f"\n\n---\nRelevant findings from team members:\n{rendered}"
    return message


class WorkerAgent:
    """A named, specialised agent a coordinator can delegate to.

    Each task runs in a fresh AgentLoop under its own session. Failures,
    limits and timeouts come back as unsuccessful SubAgentResults rather
    than exceptions, so one failing worker never aborts a batch.

    When the worker has no model of its own it may borrow the
    coordinator's (``fallback_model``), but only if ``allow_fallback_model``
    is set; every such use is logged as a warning.
    """

    def __init__(
        self,
        name: str,
        description: str = "",
        model: Optional[ChatModel] = None,
        tools: Iterable[Tool] = (),
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_iterations: int = 10,
        tool_choice: str = "auto",
        timeout_ms: int = 120000,
        include_shared_context: bool = True,
        memory: Optional[MemoryStore] = None,
        observer: Optional[AgentObserver] = None,
        retry_config: Optional[RetryConfig] = None,
        allow_fallback_model: bool = True,
    ):
        if not name or not name.strip():
            raise ValueError("Worker agent name is required")
        self.name = name
        self.description = description
        self.model = model
        self.tools: List[Tool] = list(tools)
        self.system_prompt = system_prompt
        self.max_iterations = max_iterations
        self.tool_choice = tool_choice
        self.timeout_ms = timeout_ms
        self.include_shared_context = include_shared_context
        self.memory = memory
        self.observer = observer
        self.retry_config = retry_config
        self.allow_fallback_model = allow_fallback_model
        self.tasks_executed = 0
        ToolDispatcher(self.tools)

    def _resolve_model(self, fallback_model: Optional[ChatModel]) -> ChatModel:
        if self.model is not None:
            return self.model
        if fallback_model is not None and self.allow_fallback_model:
            logger.warning(f"Worker '{self.name}' has no model configured; using the coordinator's model")
            return fallback_model
        raise ConfigurationError(f"Model not configured for worker agent '{self.name}'")

    async def execute_task(
        self,
        task: str,
        context: Optional[str] = None,
        shared_context: Optional[List[Dict[str, Any]]] = None,
        session_id: Optional[str] = None,
        fallback_model: Optional[ChatModel] = None,
    ) -> SubAgentResult:
        """Run one delegated task to completion.

        Args:
            task: What the worker should do
            context: Background supplied by the coordinator
            shared_context: Recent findings of other workers (agent_name/result dicts)
            session_id: Memory session for this task
            fallback_model: Coordinator's model, used when this worker has none

        Returns:
            SubAgentResult; never raises for run failures
        """
        self.tasks_executed += 1
        started = time.perf_counter()
        logger.info(f"Worker '{self.name}' executing task: {task[:100]}")

        try:
            model = self._resolve_model(fallback_model)
            message = compose_task_message(
                task, context, shared_context if self.include_shared_context else None
            )
            options = RunOptions(
                user_message=message,
                system_prompt=self.system_prompt,
                max_iterations=self.max_iterations,
                tool_choice=self.tool_choice,
                session_id=session_id or f"worker_{self.name}",
                timeout_ms=self.timeout_ms,
            )
            loop = AgentLoop(
                model,
                tools=self.tools,
                memory=self.memory,
                observer=self.observer,
                retry_config=self.retry_config,
                agent_id=self.name,
            )
            result = await loop.run(options)
        except Exception as e:
            duration_ms = (time.perf_counter() - started) * 1000
            error = describe_failure(e) if isinstance(e, AgentError) else str(e) or type(e).__name__
            logger.error(f"Worker '{self.name}' failed after {duration_ms:.0f}ms: {error}")
            return SubAgentResult(
                success=False,
                agent_name=self.name,
                error=error,
                metadata={"duration_ms": round(duration_ms, 2)},
            )

        duration_ms = (time.perf_counter() - started) * 1000
        if result.waiting_for_human_input:
            logger.warning(f"Worker '{self.name}' asked for human input, which sub-agents cannot receive")
            return SubAgentResult(
                success=False,
                agent_name=self.name,
                error=f"Worker '{self.name}' requested human input: {result.response}",
                metadata={"duration_ms": round(duration_ms, 2)},
            )

        logger.info(f"Worker '{self.name}' completed in {duration_ms:.0f}ms")
        return SubAgentResult(
            success=True,
            response=result.response,
            agent_name=self.name,
            metadata={
                "iterations": result.metadata.get("iterations"),
                "tools_used": result.metadata.get("tools_used", []),
                "total_tokens": result.metadata.get("total_tokens", 0),
                "duration_ms": round(duration_ms, 2),
            },
        )

    def __repr__(self) -> str:
        return f"WorkerAgent(name={self.name!r})"
