"""Mutable state of a single agent run."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, List, Optional

from ..providers.types import Message


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    MAX_ITERATIONS = "max_iterations"
    WAITING_FOR_HUMAN_INPUT = "waiting_for_human_input"


class InvalidStateTransition(RuntimeError):
    """Raised when a finished run is moved to another status."""


class RunState:
    """State of one agent invocation.

    Owned by exactly one loop invocation. Messages are append-only during a
    run; ``set_messages`` is only used to seed loaded history.
    """

    def __init__(self, session_id: str = "default", max_iterations: int = 10):
        if max_iterations < 1:
            raise ValueError("max_iterations must be a positive integer")
        self.session_id = session_id
        self.max_iterations = max_iterations
        self.current_iteration = 0
        self.messages: List[Message] = []
        self.tools_used: Dict[str, None] = {}
        self.status = RunStatus.RUNNING
        self.start_time = time.monotonic()
        self.total_tokens = 0
        self.last_finish_reason: Optional[str] = None

    def increment_iteration(self) -> int:
        if self.current_iteration >= self.max_iterations:
            raise InvalidStateTransition(
                f"Iteration cap reached ({self.max_iterations}); cannot start another pass"
            )
        self.current_iteration += 1
        return self.current_iteration

    def has_reached_max_iterations(self) -> bool:
        return self.current_iteration >= self.max_iterations

    def add_message(self, message: Message) -> None:
        self.messages.append(message)

    def set_messages(self, messages: List[Message]) -> None:
        self.messages = list(messages)

    def record_tool_usage(self, tool_name: str) -> None:
        self.tools_used.setdefault(tool_name, None)

    def record_usage(self, total_tokens: int, finish_reason: Optional[str] = None) -> None:
        self.total_tokens += total_tokens
        self.last_finish_reason = finish_reason

    @property
    def is_running(self) -> bool:
        return self.status is RunStatus.RUNNING

    def _transition(self, status: RunStatus) -> None:
        if self.status is not RunStatus.RUNNING:
            raise InvalidStateTransition(f"Cannot move run from {self.status.value} to {status.value}")
        self.status = status

    def mark_completed(self) -> None:
        self._transition(RunStatus.COMPLETED)

    def mark_failed(self) -> None:
        self._transition(RunStatus.FAILED)

    def mark_max_iterations(self) -> None:
        self._transition(RunStatus.MAX_ITERATIONS)

    def mark_waiting_for_human_input(self) -> None:
        self._transition(RunStatus.WAITING_FOR_HUMAN_INPUT)

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.start_time) * 1000)

    def get_metadata(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "iterations": self.current_iteration,
            "max_iterations": self.max_iterations,
            "tools_used": list(self.tools_used),
            "duration_ms": self.elapsed_ms(),
            "status": self.status.value,
            "total_tokens": self.total_tokens,
            "finish_reason": self.last_finish_reason,
        }
