"""In-process conversation memory."""

from __future__ import annotations

import logging
from typing import Dict, List

from ..providers.types import Message

logger = logging.getLogger(__name__)


class BufferMemory:
    """Keeps every message of every session in process memory."""

    def __init__(self) -> None:
        self._sessions: Dict[str, List[Message]] = {}

    async def get_messages(self, session_id: str) -> List[Message]:
        return list(self._sessions.get(session_id, []))

    async def add_message(self, session_id: str, message: Message) -> None:
        self._sessions.setdefault(session_id, []).append(message)

    async def clear(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        logger.info(f"Cleared memory for session '{session_id}'")

    def sessions(self) -> List[str]:
        return list(self._sessions)


class WindowMemory(BufferMemory):
    """Buffer memory that keeps only the most recent ``max_messages`` per session."""

    def __init__(self, max_messages: int = 10) -> None:
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        super().__init__()
        self.max_messages = max_messages

    async def get_messages(self, session_id: str) -> List[Message]:
        return list(self._sessions.get(session_id, [])[-self.max_messages:])

    async def add_message(self, session_id: str, message: Message) -> None:
        messages = self._sessions.setdefault(session_id, [])
        messages.append(message)
        if len(messages) > self.max_messages:
            removed = len(messages) - self.max_messages
            del messages[:removed]
            logger.debug(f"Window trimmed {removed} message(s) from session '{session_id}'")
