"""Drive an agent through pause/resume cycles until it finishes."""

from __future__ import annotations

import dataclasses
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from .core.loop import AgentLoop, AgentRunResult
from .core.options import RunOptions
from .pause import make_execution_id

logger = logging.getLogger(__name__)

QuestionHandler = Callable[[str, AgentRunResult], Union[None, Awaitable[None]]]


async def run_with_human_input(
    loop: AgentLoop,
    options: RunOptions,
    execution_id: Optional[str] = None,
    on_question: Optional[QuestionHandler] = None,
) -> AgentRunResult:
    """Run ``loop`` and keep resuming it each time it asks a human a question.

    Each pause is registered with the loop's pause registry; the human's
    answer becomes the next user turn, continuing from the checkpointed
    messages. The execution is checkpointed COMPLETED when a final answer
    arrives.

    Args:
        loop: Agent loop wired with a PauseResumeRegistry
        options: Options for the first turn
        execution_id: Execution key (generated when omitted)
        on_question: Called with (execution_id, paused result) after each pause

    Returns:
        The final, completed AgentRunResult

    Raises:
        HumanResponseTimeoutError: No answer arrived before the pause timeout
        HumanInputCancelledError: The paused execution was cancelled
    """
    registry = loop.pause_registry
    if registry is None:
        raise ValueError("run_with_human_input requires an AgentLoop with a pause registry")

    execution_id = execution_id or make_execution_id()
    current = options
    history = None

    while True:
        result = await loop.run(current, execution_id=execution_id, history=history)
        if not result.waiting_for_human_input:
            registry.complete_execution(
                execution_id,
                {
                    "session_id": current.session_id,
                    "messages": [m.to_dict() for m in result.messages],
                    "metadata": result.metadata,
                },
            )
            return result

        if on_question is not None:
            outcome: Any = on_question(execution_id, result)
            if inspect.isawaitable(outcome):
                await outcome

        answer = await result.human_response
        logger.info(f"Continuing execution '{execution_id}' with human response")
        history = result.messages
        current = dataclasses.replace(current, user_message=answer, clear_memory=False)
