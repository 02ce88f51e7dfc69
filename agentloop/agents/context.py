"""Coordinator state: delegation ledger and shared context between sub-agents."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..core.state import RunState

SHARED_CONTEXT_SIZE = 3
SHARED_CONTEXT_CHARS = 200


def generate_delegation_id() -> str:
    """Generate a unique delegation ID."""
    return f"deleg_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class SharedFinding:
    """A successful sub-agent result made visible to later delegations."""

    agent_name: str
    result: str


class SharedContext:
    """Rolling record of recent successful sub-agent results.

    Only the coordinator appends, and only between delegation rounds.
    Sub-agents receive ``snapshot()`` tuples, never the live list.

    Example:
        context = SharedContext()
        context.add("Researcher", "Found three sources")
        findings = context.snapshot()           # immutable
        text = context.render(findings)         # "[Researcher]: Found three sources"
    """

    def __init__(self, size: int = SHARED_CONTEXT_SIZE, max_chars: int = SHARED_CONTEXT_CHARS):
        self.size = size
        self.max_chars = max_chars
        self._findings: List[SharedFinding] = []

    def add(self, agent_name: str, result: Optional[str]) -> None:
        if result:
            self._findings.append(SharedFinding(agent_name=agent_name, result=result))

    def snapshot(self) -> Tuple[SharedFinding, ...]:
        return tuple(self._findings[-self.size:])

    def render(self, findings: Optional[Tuple[SharedFinding, ...]] = None) -> str:
        findings = self.snapshot() if findings is None else findings
        return "\n".join(f"[{f.agent_name}]: {f.result[: self.max_chars]}" for f in findings)

    def as_dicts(self, findings: Optional[Tuple[SharedFinding, ...]] = None) -> List[Dict[str, str]]:
        findings = self.snapshot() if findings is None else findings
        return [{"agent_name": f.agent_name, "result": f.result[: self.max_chars]} for f in findings]

    def __len__(self) -> int:
        return len(self._findings)


@dataclass
class DelegationRecord:
    """Record of a single delegation."""

    delegation_id: str
    agent_id: str
    agent_name: str
    task: str
    started_at: float = field(default_factory=time.time)
    status: str = "pending"  # "pending" | "completed" | "failed"
    result: Optional[str] = None
    error: Optional[str] = None
    duration_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delegation_id": self.delegation_id,
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "task": self.task[:100],
            "status": self.status,
            "duration_ms": round(self.duration_ms, 2) if self.duration_ms is not None else None,
            "error": self.error,
        }


class CoordinatorState(RunState):
    """RunState of a coordinator, extended with a capped delegation ledger."""

    def __init__(self, session_id: str = "default", max_iterations: int = 5, max_delegations: int = 10):
        super().__init__(session_id=session_id, max_iterations=max_iterations)
        if max_delegations < 1:
            raise ValueError("max_delegations must be a positive integer")
        self.max_delegations = max_delegations
        self.delegation_count = 0
        self.delegations: List[DelegationRecord] = []
        self._started: Dict[str, float] = {}

    def has_reached_max_delegations(self) -> bool:
        return self.delegation_count >= self.max_delegations

    def record_delegation(self, agent_id: str, agent_name: str, task: str) -> DelegationRecord:
        if self.has_reached_max_delegations():
            raise RuntimeError(f"Maximum delegations ({self.max_delegations}) reached")
        self.delegation_count += 1
        record = DelegationRecord(
            delegation_id=generate_delegation_id(),
            agent_id=agent_id,
            agent_name=agent_name,
            task=task,
        )
        self.delegations.append(record)
        self._started[record.delegation_id] = time.perf_counter()
        return record

    def complete_delegation(
        self,
        record: DelegationRecord,
        success: bool,
        result: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        if record.status != "pending":
            raise ValueError(f"Delegation {record.delegation_id} was already completed")
        record.status = "completed" if success else "failed"
        record.result = result
        record.error = error
        record.duration_ms = (time.perf_counter() - self._started.pop(record.delegation_id)) * 1000

    def get_delegation_metadata(self) -> Dict[str, Any]:
        return {
            "total_delegations": self.delegation_count,
            "max_delegations": self.max_delegations,
            "successful": sum(1 for r in self.delegations if r.status == "completed"),
            "failed": sum(1 for r in self.delegations if r.status == "failed"),
            "delegations": [r.to_dict() for r in self.delegations],
        }
