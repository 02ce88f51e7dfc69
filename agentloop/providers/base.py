"""Collaborator protocols consumed by the execution engine."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from .types import Message, ModelResponse, ResponseFormat, ToolDefinition


@runtime_checkable
class ChatModel(Protocol):
    """Protocol for model implementations."""

    async def chat(
        self,
        messages: List[Message],
        tools: Optional[List[ToolDefinition]] = None,
        tool_choice: Optional[str] = None,
        response_format: Optional[ResponseFormat] = None,
    ) -> ModelResponse: ...


@runtime_checkable
class MemoryStore(Protocol):
    """Persistent conversation history, keyed by session id."""

    async def get_messages(self, session_id: str) -> List[Message]: ...

    async def add_message(self, session_id: str, message: Message) -> None: ...

    async def clear(self, session_id: str) -> None: ...


@runtime_checkable
class Tool(Protocol):
    """A callable capability offered to the model."""

    def get_definition(self) -> ToolDefinition: ...

    async def execute_tool(self, arguments: Dict[str, Any]) -> Any: ...


@runtime_checkable
class SubAgent(Protocol):
    """An agent a coordinator can delegate work to."""

    name: str
    description: str

    async def execute_task(
        self,
        task: str,
        context: Optional[str] = None,
        shared_context: Optional[List[Dict[str, Any]]] = None,
        session_id: Optional[str] = None,
        fallback_model: Optional[ChatModel] = None,
    ) -> Any: ...
