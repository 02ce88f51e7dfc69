"""Observability for agent runs - event log, metrics and console logging."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class AgentEvent:
    """A single event in an agent's execution."""

    timestamp: datetime
    event_type: str  # "model_call", "tool_call", "delegation", "pause", "error", "step_start", "step_end"
    data: Dict[str, Any]
    duration_ms: Optional[float] = None
    tokens_used: Optional[int] = None


class AgentObserver:
    """
    Observability layer for tracking agent execution.

    Collects events and logs them through the ``agentloop`` logger. Model
    calls are tracked by an opaque handle returned from ``start_model_call``.
    """

    def __init__(self, agent_id: Optional[str] = None, verbose: bool = False):
        self.events: List[AgentEvent] = []
        self.logger = logging.getLogger("agentloop")
        self.agent_id = agent_id
        self.verbose = verbose
        self._open_calls: Dict[str, Dict[str, Any]] = {}
        self._setup_logging()

    def _format_agent_prefix(self, agent_id: Optional[str]) -> str:
        use_id = agent_id or self.agent_id
        return f"[{use_id}] " if use_id else ""

    def _setup_logging(self):
        """Configure logging format and handlers."""
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
            self.logger.addHandler(handler)
        if self.verbose:
            self.logger.setLevel(logging.INFO)
        elif self.logger.level == logging.NOTSET:
            self.logger.setLevel(logging.WARNING)

    def _record(self, event_type: str, data: Dict[str, Any], **kwargs: Any) -> AgentEvent:
        event = AgentEvent(timestamp=datetime.now(), event_type=event_type, data=data, **kwargs)
        self.events.append(event)
        return event

    def start_model_call(self, step: int, model: str = "", agent_id: Optional[str] = None) -> str:
        """Register the start of a model call and return its handle."""
        handle = f"call_{uuid.uuid4().hex[:10]}"
        self._open_calls[handle] = {"step": step, "model": model, "agent_id": agent_id}
        prefix = self._format_agent_prefix(agent_id)
        self.logger.debug(f"{prefix}Model call {handle} started | Step {step}")
        return handle

    def log_model_success(
        self,
        handle: str,
        tokens: int,
        duration_ms: float,
        tool_calls: int = 0,
        finish_reason: Optional[str] = None,
    ):
        """
        Log a successful model call.

        Args:
            handle: Handle returned by start_model_call
            tokens: Total tokens used (input + output)
            duration_ms: Request duration in milliseconds, retries included
            tool_calls: Number of tool calls requested
            finish_reason: Finish reason reported by the model
        """
        call = self._open_calls.pop(handle, {})
        self._record(
            "model_call",
            {
                "handle": handle,
                "step": call.get("step"),
                "model": call.get("model"),
                "success": True,
                "tool_calls": tool_calls,
                "finish_reason": finish_reason,
            },
            duration_ms=duration_ms,
            tokens_used=tokens,
        )
        prefix = self._format_agent_prefix(call.get("agent_id"))
        self.logger.info(
            f"{prefix}Model: Step {call.get('step')} | {tokens} tokens | "
            f"{tool_calls} tool call(s) | {duration_ms:.2f}ms"
        )

    def log_model_failure(self, handle: str, kind: str, message: str, duration_ms: float, attempts: int = 1):
        """Log a model call that failed after ``attempts`` attempts."""
        call = self._open_calls.pop(handle, {})
        self._record(
            "model_call",
            {
                "handle": handle,
                "step": call.get("step"),
                "success": False,
                "kind": kind,
                "message": message,
                "attempts": attempts,
            },
            duration_ms=duration_ms,
        )
        self.log_error("model_call", message, {"kind": kind, "attempts": attempts}, agent_id=call.get("agent_id"))

    def log_tool_call(
        self,
        tool_name: str,
        args: Dict[str, Any],
        success: bool,
        duration_ms: float,
        error: Optional[str] = None,
        agent_id: Optional[str] = None,
    ):
        """
        Log a tool execution.

        Args:
            tool_name: Name of the tool executed
            args: Arguments passed to the tool
            success: Whether execution succeeded
            duration_ms: Execution time in milliseconds
            error: Error message for failed calls
        """
        self._record(
            "tool_call",
            {"tool": tool_name, "args": args, "success": success, "error": error},
            duration_ms=duration_ms,
        )
        prefix = self._format_agent_prefix(agent_id)
        status = "✓" if success else "✗"
        suffix = f" - {error}" if error else ""
        self.logger.info(f"{prefix}{status} Tool: {tool_name} ({duration_ms:.2f}ms){suffix}")

    def log_delegation(
        self,
        agent_name: str,
        task: str,
        success: bool,
        duration_ms: float,
        agent_id: Optional[str] = None,
    ):
        """Log a delegation to a sub-agent."""
        self._record(
            "delegation",
            {"agent": agent_name, "task": task[:100], "success": success},
            duration_ms=duration_ms,
        )
        prefix = self._format_agent_prefix(agent_id)
        status = "✓" if success else "✗"
        self.logger.info(f"{prefix}{status} Delegation: {agent_name} ({duration_ms:.2f}ms)")

    def log_pause(self, execution_id: str, question: str, agent_id: Optional[str] = None):
        self._record("pause", {"execution_id": execution_id, "question": question[:200]})
        prefix = self._format_agent_prefix(agent_id)
        self.logger.info(f"{prefix}Paused {execution_id} waiting for human input")

    def log_error(
        self,
        error_type: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        agent_id: Optional[str] = None,
    ):
        """
        Log an error event.

        Args:
            error_type: Type of error (e.g., "model_call", "memory", "tool_execution")
            message: Error message
            context: Additional context about the error
        """
        self._record("error", {"error_type": error_type, "message": message, "context": context or {}})
        prefix = self._format_agent_prefix(agent_id)
        self.logger.error(f"{prefix}Error ({error_type}): {message}")

    def log_step_start(self, step: int, user_input: Optional[str] = None, agent_id: Optional[str] = None):
        self._record("step_start", {"step": step, "user_input": user_input[:100] if user_input else None})
        prefix = self._format_agent_prefix(agent_id)
        if step == 1 and user_input:
            self.logger.info(f"{prefix}User: {user_input[:100]}...")
        self.logger.info(f"{prefix}Step {step} started")

    def log_step_end(self, step: int, duration_ms: float, agent_id: Optional[str] = None):
        self._record("step_end", {"step": step}, duration_ms=duration_ms)
        prefix = self._format_agent_prefix(agent_id)
        self.logger.info(f"{prefix}Step {step} completed ({duration_ms:.2f}ms)")

    def get_session_stats(self) -> Dict[str, Any]:
        """
        Get aggregated statistics for the current session.

        Returns:
            Dictionary with session statistics
        """
        model_calls = [e for e in self.events if e.event_type == "model_call"]
        tool_calls = [e for e in self.events if e.event_type == "tool_call"]
        delegations = [e for e in self.events if e.event_type == "delegation"]
        errors = [e for e in self.events if e.event_type == "error"]

        return {
            "total_tokens": sum(e.tokens_used or 0 for e in self.events),
            "total_duration_ms": sum(e.duration_ms or 0 for e in model_calls + tool_calls + delegations),
            "event_count": len(self.events),
            "model_calls": len(model_calls),
            "failed_model_calls": sum(1 for e in model_calls if not e.data.get("success")),
            "tool_calls": len(tool_calls),
            "failed_tool_calls": sum(1 for e in tool_calls if not e.data.get("success")),
            "delegations": len(delegations),
            "errors": len(errors),
        }

    def clear(self):
        """Clear all recorded events."""
        self.events.clear()
        self._open_calls.clear()
        self.logger.info("Observer events cleared")
