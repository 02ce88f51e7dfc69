"""Tool call validation and routing."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, Iterable, List, Optional

from ..errors import ErrorClassifier, ErrorKind
from ..observability import AgentObserver
from ..providers.base import Tool
from ..providers.types import ToolCall, ToolDefinition
from ..tools.base import ToolResult
from .ledger import ToolCallLedger
from .state import RunState
from .validation import validate_arguments

logger = logging.getLogger(__name__)


class ToolDispatcher:
    """Route model-requested tool calls to the matching tool.

    Tools are checked for protocol conformance and unique names when the
    dispatcher is built. Dispatch never raises for tool problems: unknown
    tools, invalid arguments and tool exceptions all come back as failed
    ToolResults so the model can react on its next turn.
    """

    def __init__(
        self,
        tools: Iterable[Tool] = (),
        ledger: Optional[ToolCallLedger] = None,
        observer: Optional[AgentObserver] = None,
        classifier: Optional[ErrorClassifier] = None,
        agent_id: Optional[str] = None,
    ):
        self.ledger = ledger if ledger is not None else ToolCallLedger()
        self.observer = observer
        self.classifier = classifier or ErrorClassifier()
        self.agent_id = agent_id
        self._tools: Dict[str, Tool] = {}
        self._definitions: Dict[str, ToolDefinition] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if not isinstance(tool, Tool):
            raise TypeError(f"{tool!r} does not implement get_definition()/execute_tool()")
        definition = tool.get_definition()
        if definition.name in self._tools:
            raise ValueError(f"Tool '{definition.name}' is already registered")
        self._tools[definition.name] = tool
        self._definitions[definition.name] = definition

    @property
    def tool_names(self) -> List[str]:
        return list(self._tools)

    def definitions(self) -> List[ToolDefinition]:
        return list(self._definitions.values())

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def dispatch(self, call: ToolCall, state: RunState) -> ToolResult:
        tracking_id = self.ledger.start(call.name, call.arguments or {})
        started = time.perf_counter()
        result = await self._dispatch(call, state)
        self.ledger.complete(tracking_id, result)
        if self.observer:
            self.observer.log_tool_call(
                call.name,
                call.arguments or {},
                success=result.success,
                duration_ms=(time.perf_counter() - started) * 1000,
                error=result.error,
                agent_id=self.agent_id,
            )
        return result

    async def _dispatch(self, call: ToolCall, state: RunState) -> ToolResult:
        tool = self._tools.get(call.name)
        if tool is None:
            available = ", ".join(self._tools) or "none"
            return ToolResult.fail(
                f"Tool '{call.name}' not found. Available tools: {available}",
                kind=ErrorKind.TOOL_NOT_FOUND.value,
            )

        validation = validate_arguments(call.arguments, self._definitions[call.name].parameters)
        if not validation.valid:
            return ToolResult.fail(
                f"Invalid arguments for tool '{call.name}': {validation.message}",
                kind=ErrorKind.TOOL_VALIDATION_FAILED.value,
            )

        state.record_tool_usage(call.name)
        try:
            raw = await tool.execute_tool(dict(call.arguments or {}))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            info = self.classifier.classify_tool_error(call.name, e)
            logger.warning(info.message)
            return ToolResult.fail(info.message, kind=info.kind.value)

        result = ToolResult.coerce(raw)
        if not result.success and result.error_kind is None:
            result.error_kind = ErrorKind.TOOL_EXECUTION_ERROR.value
        return result
