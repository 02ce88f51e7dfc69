"""Pause/resume registry for runs waiting on human input."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from .errors import AlreadyPausedError, HumanInputCancelledError, HumanResponseTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_HUMAN_TIMEOUT_SECONDS = 300
DEFAULT_MAX_PAUSED_AGE_SECONDS = 24 * 60 * 60


class ExecutionStatus(str, Enum):
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


def make_execution_id() -> str:
    """Create an opaque execution id."""
    return f"exec_{uuid.uuid4().hex[:10]}"


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ExecutionCheckpoint:
    """Persisted view of an execution, written on every pause-state change."""

    execution_id: str
    status: ExecutionStatus
    state: Optional[Dict[str, Any]] = None
    paused_at: Optional[float] = None
    resumed_at: Optional[float] = None
    reason: Optional[str] = None
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "status": self.status.value,
            "state": self.state,
            "paused_at": _iso(self.paused_at),
            "resumed_at": _iso(self.resumed_at),
            "reason": self.reason,
            "updated_at": _iso(self.updated_at),
        }


CheckpointCallback = Callable[[ExecutionCheckpoint], Union[None, Awaitable[None]]]


class InMemoryCheckpointStore:
    """Keeps the latest checkpoint per execution, plus the full write history."""

    def __init__(self) -> None:
        self._latest: Dict[str, ExecutionCheckpoint] = {}
        self.history: List[ExecutionCheckpoint] = []

    async def save(self, checkpoint: ExecutionCheckpoint) -> None:
        previous = self._latest.get(checkpoint.execution_id)
        if previous is not None:
            if checkpoint.state is None:
                checkpoint.state = previous.state
            if checkpoint.paused_at is None:
                checkpoint.paused_at = previous.paused_at
        self._latest[checkpoint.execution_id] = checkpoint
        self.history.append(checkpoint)

    def get(self, execution_id: str) -> Optional[ExecutionCheckpoint]:
        return self._latest.get(execution_id)

    def list(self, status: Optional[ExecutionStatus] = None) -> List[ExecutionCheckpoint]:
        return [c for c in self._latest.values() if status is None or c.status is status]


@dataclass
class PausedRun:
    execution_id: str
    state: Dict[str, Any]
    future: asyncio.Future
    loop: asyncio.AbstractEventLoop
    paused_at: float
    timeout_seconds: Optional[float]
    timer: Optional[asyncio.TimerHandle] = None

    def describe(self, now: Optional[float] = None) -> Dict[str, Any]:
        now = now if now is not None else time.time()
        return {
            "execution_id": self.execution_id,
            "state": self.state,
            "paused_at": _iso(self.paused_at),
            "waiting_seconds": round(now - self.paused_at, 3),
            "timeout_seconds": self.timeout_seconds,
            "has_timeout": self.timer is not None,
        }


class PauseResumeRegistry:
    """Suspends executions until a human answers, from any call site.

    Each execution id has at most one pending continuation. The index is
    guarded by a lock because resume and cancel arrive from other requests
    (and possibly other threads) than the one awaiting the answer. Futures
    are always settled on the event loop that created them.

    Example:
        registry = PauseResumeRegistry(checkpoint=store.save)
        answer = registry.pause_for_human_input("exec_1", snapshot, timeout_seconds=300)
        ...
        registry.resume_with_response("exec_1", "Blue")   # elsewhere
        text = await answer
    """

    def __init__(self, checkpoint: Optional[CheckpointCallback] = None):
        self._paused: Dict[str, PausedRun] = {}
        self._lock = threading.Lock()
        self._checkpoint = checkpoint
        self._writes: Set[asyncio.Future] = set()

    def pause_for_human_input(
        self,
        execution_id: str,
        state: Dict[str, Any],
        timeout_seconds: Optional[float] = DEFAULT_HUMAN_TIMEOUT_SECONDS,
    ) -> asyncio.Future:
        """Register a pending continuation and return the future it settles.

        Args:
            execution_id: Key of the paused execution
            state: Snapshot of the run (sanitized messages and metadata)
            timeout_seconds: Seconds to wait; 0 or None waits indefinitely

        Returns:
            Future resolving to the human's response text

        Raises:
            AlreadyPausedError: A continuation is already pending for the id
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        paused_at = time.time()
        timeout = timeout_seconds if timeout_seconds and timeout_seconds > 0 else None

        with self._lock:
            if execution_id in self._paused:
                raise AlreadyPausedError(f"Execution '{execution_id}' is already waiting for human input")
            entry = PausedRun(
                execution_id=execution_id,
                state=state,
                future=future,
                loop=loop,
                paused_at=paused_at,
                timeout_seconds=timeout,
            )
            if timeout is not None:
                entry.timer = loop.call_later(timeout, self._expire, entry)
            self._paused[execution_id] = entry

        logger.info(
            f"Execution '{execution_id}' paused for human input"
            + (f" (timeout {timeout}s)" if timeout else " (no timeout)")
        )
        self._save(ExecutionCheckpoint(execution_id, ExecutionStatus.PAUSED, state=state, paused_at=paused_at))
        return future

    def resume_with_response(self, execution_id: str, response: str) -> bool:
        """Deliver the human's answer. Returns False if nothing is pending."""
        entry = self._pop(execution_id)
        if entry is None:
            logger.warning(f"Cannot resume '{execution_id}': no paused execution found")
            return False

        self._settle(entry, result=response)
        logger.info(f"Execution '{execution_id}' resumed after {time.time() - entry.paused_at:.1f}s")
        self._save(
            ExecutionCheckpoint(
                execution_id,
                ExecutionStatus.RUNNING,
                state=entry.state,
                paused_at=entry.paused_at,
                resumed_at=time.time(),
            ),
            loop=entry.loop,
        )
        return True

    def cancel_execution(self, execution_id: str, reason: str = "Cancelled by user") -> bool:
        """Reject the pending continuation with ``reason``. Returns False if nothing is pending."""
        entry = self._pop(execution_id)
        if entry is None:
            logger.warning(f"Cannot cancel '{execution_id}': no paused execution found")
            return False

        self._settle(
            entry,
            error=HumanInputCancelledError(reason, details={"execution_id": execution_id}),
        )
        logger.info(f"Execution '{execution_id}' cancelled: {reason}")
        self._save(
            ExecutionCheckpoint(
                execution_id,
                ExecutionStatus.CANCELLED,
                state=entry.state,
                paused_at=entry.paused_at,
                reason=reason,
            ),
            loop=entry.loop,
        )
        return True

    def complete_execution(self, execution_id: str, state: Optional[Dict[str, Any]] = None) -> None:
        """Record that an execution finished."""
        self._save(ExecutionCheckpoint(execution_id, ExecutionStatus.COMPLETED, state=state))

    def is_paused(self, execution_id: str) -> bool:
        with self._lock:
            return execution_id in self._paused

    def get_paused_execution(self, execution_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._paused.get(execution_id)
        return entry.describe() if entry else None

    def get_all_paused_executions(self) -> List[Dict[str, Any]]:
        now = time.time()
        with self._lock:
            entries = list(self._paused.values())
        return [entry.describe(now) for entry in entries]

    def cleanup_old_executions(self, max_age_seconds: float = DEFAULT_MAX_PAUSED_AGE_SECONDS) -> int:
        """Cancel executions paused longer than ``max_age_seconds``."""
        cutoff = time.time() - max_age_seconds
        with self._lock:
            expired = [eid for eid, entry in self._paused.items() if entry.paused_at <= cutoff]
        cleaned = sum(1 for eid in expired if self.cancel_execution(eid, "Execution expired"))
        if cleaned:
            logger.info(f"Cleaned up {cleaned} expired paused execution(s)")
        return cleaned

    async def run_sweeper(
        self,
        interval_seconds: float = 3600,
        max_age_seconds: float = DEFAULT_MAX_PAUSED_AGE_SECONDS,
    ) -> None:
        """Periodically cancel stale executions until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            self.cleanup_old_executions(max_age_seconds)

    async def flush(self) -> None:
        """Wait for scheduled checkpoint writes to finish."""
        if self._writes:
            await asyncio.gather(*list(self._writes), return_exceptions=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._paused)

    def _pop(self, execution_id: str) -> Optional[PausedRun]:
        with self._lock:
            return self._paused.pop(execution_id, None)

    def _expire(self, entry: PausedRun) -> None:
        with self._lock:
            if self._paused.get(entry.execution_id) is not entry:
                return
            del self._paused[entry.execution_id]

        logger.warning(
            f"Execution '{entry.execution_id}' timed out after {entry.timeout_seconds}s waiting for human input"
        )
        self._settle(
            entry,
            error=HumanResponseTimeoutError(
                f"Human response timeout after {entry.timeout_seconds} seconds",
                details={"execution_id": entry.execution_id, "timeout_seconds": entry.timeout_seconds},
            ),
        )
        self._save(
            ExecutionCheckpoint(
                entry.execution_id,
                ExecutionStatus.CANCELLED,
                state=entry.state,
                paused_at=entry.paused_at,
                reason="Human response timeout",
            ),
            loop=entry.loop,
        )

    def _settle(self, entry: PausedRun, result: Any = None, error: Optional[BaseException] = None) -> None:
        def apply() -> None:
            if entry.timer is not None:
                entry.timer.cancel()
            if entry.future.done():
                return
            if error is not None:
                entry.future.set_exception(error)
            else:
                entry.future.set_result(result)

        if self._on_loop(entry.loop):
            apply()
        else:
            entry.loop.call_soon_threadsafe(apply)

    @staticmethod
    def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
        try:
            return asyncio.get_running_loop() is loop
        except RuntimeError:
            return False

    def _save(self, checkpoint: ExecutionCheckpoint, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        if self._checkpoint is None:
            return
        try:
            outcome = self._checkpoint(checkpoint)
        except Exception as e:
            logger.error(f"Checkpoint write failed for '{checkpoint.execution_id}': {e}")
            return
        if not inspect.isawaitable(outcome):
            return

        execution_id = checkpoint.execution_id
        if loop is None or self._on_loop(loop):
            task = asyncio.ensure_future(outcome)
            self._writes.add(task)
            task.add_done_callback(lambda t: self._write_done(t, execution_id))
        else:
            pending = asyncio.run_coroutine_threadsafe(outcome, loop)
            pending.add_done_callback(lambda f: self._write_done(f, execution_id))

    def _write_done(self, task: Any, execution_id: str) -> None:
        self._writes.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Checkpoint write failed for '{execution_id}': {error}")
