"""Model invocation with classified retries."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional

from ..errors import ErrorClassifier, ModelCallError
from ..observability import AgentObserver
from ..providers.base import ChatModel
from ..providers.types import Message, ModelResponse, ResponseFormat, ToolDefinition
from ..retry import RetryConfig, retry_with_backoff
from .state import RunState

logger = logging.getLogger(__name__)

TOOL_CHOICES = ("auto", "required", "none")


class ModelInvoker:
    """Calls the model collaborator, retrying recoverable failures.

    Idle -> Calling -> Success | Retrying -> Calling | Fatal. A fatal failure
    raises ModelCallError, which ends the enclosing loop.
    """

    def __init__(
        self,
        model: ChatModel,
        retry_config: Optional[RetryConfig] = None,
        observer: Optional[AgentObserver] = None,
        classifier: Optional[ErrorClassifier] = None,
        agent_id: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.model = model
        self.retry_config = retry_config or RetryConfig()
        self.observer = observer
        self.classifier = classifier or ErrorClassifier()
        self.agent_id = agent_id
        self._sleep = sleep

    async def invoke(
        self,
        state: RunState,
        tools: Optional[List[ToolDefinition]] = None,
        tool_choice: str = "auto",
        response_format: Optional[ResponseFormat] = None,
    ) -> ModelResponse:
        return await self.invoke_messages(
            list(state.messages),
            tools=tools,
            tool_choice=tool_choice,
            response_format=response_format,
            step=state.current_iteration,
            state=state,
        )

    async def invoke_messages(
        self,
        messages: List[Message],
        tools: Optional[List[ToolDefinition]] = None,
        tool_choice: str = "auto",
        response_format: Optional[ResponseFormat] = None,
        step: int = 0,
        state: Optional[RunState] = None,
    ) -> ModelResponse:
        if tool_choice not in TOOL_CHOICES:
            raise ValueError(f"tool_choice must be one of {', '.join(TOOL_CHOICES)}")

        offered = tools if tools and tool_choice != "none" else None
        handle = self.observer.start_model_call(step, agent_id=self.agent_id) if self.observer else None
        started = time.perf_counter()

        try:
            response = await retry_with_backoff(
                self.model.chat,
                self.retry_config,
                messages,
                tools=offered,
                tool_choice=tool_choice if offered else None,
                response_format=response_format,
                classifier=self.classifier,
                sleep=self._sleep,
            )
        except ModelCallError as e:
            if self.observer and handle:
                self.observer.log_model_failure(
                    handle,
                    kind=e.kind.value,
                    message=e.message,
                    duration_ms=(time.perf_counter() - started) * 1000,
                    attempts=e.attempts,
                )
            raise

        if state is not None:
            state.record_usage(response.total_tokens, response.finish_reason)
        if self.observer and handle:
            self.observer.log_model_success(
                handle,
                tokens=response.total_tokens,
                duration_ms=(time.perf_counter() - started) * 1000,
                tool_calls=len(response.tool_calls),
                finish_reason=response.finish_reason,
            )
        return response
