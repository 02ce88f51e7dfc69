"""Single-agent execution engine."""

from .dispatcher import ToolDispatcher
from .history import new_messages_since, sanitize_history
from .invoker import ModelInvoker
from .ledger import ToolCallLedger, ToolCallRecord
from .loop import AgentLoop, AgentRunResult, format_output, run_agent
from .options import CoordinatorOptions, RunOptions
from .state import RunState, RunStatus
from .validation import ValidationResult, validate_arguments

__all__ = [
    "AgentLoop",
    "AgentRunResult",
    "CoordinatorOptions",
    "ModelInvoker",
    "RunOptions",
    "RunState",
    "RunStatus",
    "ToolCallLedger",
    "ToolCallRecord",
    "ToolDispatcher",
    "ValidationResult",
    "format_output",
    "new_messages_since",
    "run_agent",
    "sanitize_history",
    "validate_arguments",
]
