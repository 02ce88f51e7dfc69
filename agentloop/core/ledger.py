"""Ledger of tool invocations made during a run."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..tools.base import ToolResult


def generate_tracking_id() -> str:
    return f"tool_{uuid.uuid4().hex[:12]}"


@dataclass
class ToolCallRecord:
    """Start and finish of one tool invocation."""

    tracking_id: str
    tool_name: str
    arguments: Dict[str, Any]
    started_at: float = field(default_factory=time.time)
    status: str = "pending"  # "pending" | "success" | "failed"
    result: Optional[ToolResult] = None
    duration_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tracking_id": self.tracking_id,
            "name": self.tool_name,
            "arguments": self.arguments,
            "status": self.status,
            "success": self.status == "success",
            "duration_ms": self.duration_ms,
            "error": self.result.error if self.result else None,
        }


class ToolCallLedger:
    """Append-only record of tool calls.

    Each record is completed exactly once; completed records are never
    modified again.
    """

    def __init__(self) -> None:
        self._records: Dict[str, ToolCallRecord] = {}
        self._started: Dict[str, float] = {}

    def start(self, tool_name: str, arguments: Dict[str, Any]) -> str:
        tracking_id = generate_tracking_id()
        self._records[tracking_id] = ToolCallRecord(
            tracking_id=tracking_id,
            tool_name=tool_name,
            arguments=dict(arguments),
        )
        self._started[tracking_id] = time.perf_counter()
        return tracking_id

    def complete(self, tracking_id: str, result: ToolResult) -> ToolCallRecord:
        record = self._records.get(tracking_id)
        if record is None:
            raise KeyError(f"Unknown tool call tracking id: {tracking_id}")
        if record.status != "pending":
            raise ValueError(f"Tool call {tracking_id} was already completed")
        record.result = result
        record.status = "success" if result.success else "failed"
        record.duration_ms = (time.perf_counter() - self._started.pop(tracking_id)) * 1000
        return record

    @property
    def records(self) -> List[ToolCallRecord]:
        return list(self._records.values())

    def pending(self) -> List[ToolCallRecord]:
        return [r for r in self._records.values() if r.status == "pending"]

    def summary(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": r.tool_name,
                "success": r.status == "success",
                "duration_ms": round(r.duration_ms, 2) if r.duration_ms is not None else None,
            }
            for r in self._records.values()
        ]

    def __len__(self) -> int:
        return len(self._records)
