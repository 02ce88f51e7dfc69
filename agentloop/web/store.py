"""In-memory execution store for Web API v1."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Set

from ..config import AgentDefaults, PauseSettings
from ..core.loop import AgentLoop, AgentRunResult, format_output
from ..core.options import RunOptions
from ..errors import AgentError, HumanInputCancelledError, describe_failure
from ..pause import InMemoryCheckpointStore, PauseResumeRegistry, make_execution_id
from ..providers.types import utc_now_iso
from ..runner import run_with_human_input
from .errors import APIError

logger = logging.getLogger(__name__)

TERMINAL_RUN_STATES = {"completed", "failed", "cancelled"}
DEFAULT_MAX_FINISHED_RUNS = 1000


@dataclass
class RunRecord:
    run_id: str
    session_id: str
    message: str
    output_format: str
    status: str
    created_at: str
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    result: Any = None
    error: Optional[Dict[str, Any]] = None
    pending_tool_call: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATES


class ExecutionStore:
    """Runs agent executions in the background and tracks their status.

    Each run uses its run id as the execution id, so paused runs can be
    resumed or cancelled through the pause registry by that id.
    """

    def __init__(
        self,
        loop: AgentLoop,
        defaults: Optional[AgentDefaults] = None,
        pause: Optional[PauseSettings] = None,
        checkpoints: Optional[InMemoryCheckpointStore] = None,
        max_finished_runs: int = DEFAULT_MAX_FINISHED_RUNS,
    ) -> None:
        self.defaults = defaults or AgentDefaults()
        self.pause = pause or PauseSettings()
        self.checkpoints = checkpoints or InMemoryCheckpointStore()
        if loop.pause_registry is None:
            loop.pause_registry = PauseResumeRegistry(checkpoint=self.checkpoints.save)
        self.loop = loop
        self.registry: PauseResumeRegistry = loop.pause_registry
        self._runs: Dict[str, RunRecord] = {}
        self._active_by_session: Dict[str, str] = {}
        # Oldest first; records beyond max_finished_runs are evicted
        self._finished: Deque[str] = deque()
        self.max_finished_runs = max_finished_runs
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self._sweeper: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the paused-execution sweeper."""
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(
                self.registry.run_sweeper(self.pause.sweep_interval_seconds, self.pause.max_paused_age_seconds)
            )

    def build_options(self, user_message: str, **overrides: Any) -> RunOptions:
        """Apply configured agent defaults, then per-request overrides."""
        overrides.setdefault("human_timeout_seconds", self.pause.human_timeout_seconds)
        return self.defaults.run_options(user_message, **overrides)

    async def stop(self) -> None:
        """Stop the sweeper and cancel in-flight runs."""
        tasks = list(self._tasks)
        if self._sweeper is not None:
            tasks.append(self._sweeper)
            self._sweeper = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.registry.flush()

    async def create_run(self, options: RunOptions) -> RunRecord:
        async with self._lock:
            active_id = self._active_by_session.get(options.session_id)
            if active_id:
                active = self._runs[active_id]
                raise APIError(
                    409,
                    "ACTIVE_RUN_EXISTS",
                    "Session already has an active run",
                    {"run_id": active.run_id, "status": active.status},
                )
            run = RunRecord(
                run_id=make_execution_id(),
                session_id=options.session_id,
                message=options.user_message,
                output_format=options.output_format,
                status="queued",
                created_at=utc_now_iso(),
            )
            self._runs[run.run_id] = run
            self._active_by_session[options.session_id] = run.run_id

        task = asyncio.create_task(self._execute(run.run_id, options))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"run_created run_id={run.run_id} session_id={run.session_id}")
        return run

    async def get_run(self, run_id: str) -> RunRecord:
        async with self._lock:
            run = self._runs.get(run_id)
            if not run:
                raise APIError.not_found("RUN_NOT_FOUND", "Run", run_id)
            return run

    def list_paused(self) -> List[Dict[str, Any]]:
        return self.registry.get_all_paused_executions()

    def get_checkpoint(self, execution_id: str) -> Dict[str, Any]:
        checkpoint = self.checkpoints.get(execution_id)
        if checkpoint is None:
            raise APIError.not_found("EXECUTION_NOT_FOUND", "Execution", execution_id)
        return checkpoint.to_dict()

    async def resume(self, execution_id: str, response: str) -> RunRecord:
        if not self.registry.resume_with_response(execution_id, response):
            raise APIError.not_paused(execution_id)
        async with self._lock:
            run = self._runs.get(execution_id)
            if run and run.status == "waiting_for_human_input":
                run.status = "running"
                run.pending_tool_call = None
        return await self.get_run(execution_id)

    async def cancel(self, execution_id: str, reason: str) -> RunRecord:
        if not self.registry.cancel_execution(execution_id, reason):
            raise APIError.not_paused(execution_id)
        # The run task records the error and end time when it unwinds
        await self._update(execution_id, status="cancelled", pending_tool_call=None)
        return await self.get_run(execution_id)

    async def _execute(self, run_id: str, options: RunOptions) -> None:
        await self._update(run_id, status="running", started_at=utc_now_iso())
        try:
            result = await run_with_human_input(
                self.loop, options, execution_id=run_id, on_question=self._on_question
            )
        except HumanInputCancelledError as e:
            await self._finish(run_id, "cancelled", error=e.to_dict())
        except AgentError as e:
            logger.warning(f"Run {run_id} failed: {e.message}")
            error = e.to_dict()
            error["description"] = describe_failure(e)
            await self._finish(run_id, "failed", error=error)
        except asyncio.CancelledError:
            await self._finish(run_id, "cancelled", error={"kind": "CANCELLED", "message": "Server shutting down"})
            raise
        except Exception as e:
            logger.exception(f"Run {run_id} crashed")
            await self._finish(run_id, "failed", error={"kind": "INTERNAL_ERROR", "message": str(e)})
        else:
            await self._finish(run_id, "completed", result=format_output(result, options.output_format))

    async def _on_question(self, execution_id: str, result: AgentRunResult) -> None:
        async with self._lock:
            run = self._runs.get(execution_id)
            # A resume or cancel may have settled the pause before the lock was acquired
            if not run or run.status != "running" or not self.registry.is_paused(execution_id):
                return
            run.status = "waiting_for_human_input"
            run.pending_tool_call = result.pending_tool_call

    async def _update(self, run_id: str, **changes: Any) -> None:
        async with self._lock:
            run = self._runs.get(run_id)
            if not run:
                return
            for key, value in changes.items():
                setattr(run, key, value)

    async def _finish(
        self,
        run_id: str,
        status: str,
        result: Any = None,
        error: Optional[Dict[str, Any]] = None,
    ) -> None:
        async with self._lock:
            run = self._runs.get(run_id)
            if not run:
                return
            run.status = status
            run.result = result
            run.error = error
            run.pending_tool_call = None
            run.ended_at = utc_now_iso()
            if self._active_by_session.get(run.session_id) == run_id:
                del self._active_by_session[run.session_id]
            self._finished.append(run_id)
            while len(self._finished) > self.max_finished_runs:
                self._runs.pop(self._finished.popleft(), None)
        logger.info(f"run_finished run_id={run_id} status={status}")
