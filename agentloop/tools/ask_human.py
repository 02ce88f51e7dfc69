"""Ask-human tool - requests input from a person and pauses the run."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from .base import BaseTool, ToolResult

DEFAULT_TIMEOUT_SECONDS = 300


def format_question(question: str, context: Optional[str] = None, options: Optional[List[Any]] = None) -> str:
    parts = []
    if context:
        parts.append(f"Context: {context}")
    parts.append(question)
    if options:
        parts.append("Options:\n" + "\n".join(f"{i}. {opt}" for i, opt in enumerate(options, start=1)))
    return "\n\n".join(parts)


class AskHumanTool(BaseTool):
    """Lets the model ask a human a question when it lacks information.

    The result is flagged ``requires_human_input``; the loop stops there and
    hands the question to the pause registry.
    """

    name = "ask_human"
    description = (
        "Ask the user a question when you need clarification, a decision or information "
        "you cannot obtain with other tools. The conversation pauses until they answer."
    )

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        self.timeout_seconds = timeout_seconds
        self.parameters: Dict[str, Any] = {
            "type": "object",
            "properties": {
                "question": {"type": "string", "description": "The question to ask the user"},
                "context": {"type": "string", "description": "Why the information is needed"},
                "options": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Optional list of suggested answers",
                },
                "timeout_seconds": {
                    "type": "number",
                    "description": "Seconds to wait for an answer (0 waits indefinitely)",
                },
            },
            "required": ["question"],
        }

    async def execute_tool(self, arguments: Dict[str, Any]) -> ToolResult:
        question = str(arguments.get("question", "")).strip()
        if not question:
            return ToolResult.fail("Question is required")
        context = arguments.get("context")
        options = arguments.get("options") or None
        timeout = arguments.get("timeout_seconds")
        if timeout is None or timeout < 0:
            timeout = self.timeout_seconds
        return ToolResult(
            success=True,
            requires_human_input=True,
            human_request={
                "question": format_question(question, context, options),
                "original_question": question,
                "context": context,
                "options": options,
                "timeout_seconds": timeout,
            },
        )
