"""FastAPI app entrypoint for the agent execution API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from time import perf_counter
from typing import Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from ..config import EngineSettings, load_settings
from ..core.loop import AgentLoop
from ..errors import ConfigurationError
from ..observability import AgentObserver
from ..pause import InMemoryCheckpointStore, PauseResumeRegistry
from ..providers.base import ChatModel, Tool
from ..tools import AskHumanTool, CalculatorTool
from .api.v1.router import api_v1_router
from .errors import APIError, api_error_handler, configuration_error_handler, validation_error_handler
from .store import ExecutionStore

logger = logging.getLogger("agentloop.web.api")


def create_app(
    model: Optional[ChatModel] = None,
    settings: Optional[EngineSettings] = None,
    tools: Optional[Iterable[Tool]] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        model: Chat model for every run; built from ``settings`` when omitted
        settings: Engine settings; loaded from the config files when omitted
        tools: Tools offered to the agent; defaults to calculator and ask_human
    """
    settings = settings or load_settings()
    if tools is None:
        tools = [CalculatorTool(), AskHumanTool(timeout_seconds=settings.pause.human_timeout_seconds)]

    checkpoints = InMemoryCheckpointStore()
    loop = AgentLoop(
        model or settings.model.create(),
        tools=tools,
        memory=settings.agent.build_memory(),
        observer=AgentObserver(agent_id="api"),
        retry_config=settings.retry,
        pause_registry=PauseResumeRegistry(checkpoint=checkpoints.save),
    )
    store = ExecutionStore(loop, defaults=settings.agent, pause=settings.pause, checkpoints=checkpoints)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await store.start()
        try:
            yield
        finally:
            await store.stop()

    app = FastAPI(title="Agent Loop API", version="0.1.0", lifespan=lifespan)
    app.state.execution_store = store
    app.include_router(api_v1_router)

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        start = perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            path_params = request.scope.get("path_params", {})
            logger.info(
                "api_request method=%s path=%s status=%s duration_ms=%.2f run_id=%s",
                request.method,
                request.url.path,
                status_code,
                (perf_counter() - start) * 1000,
                path_params.get("run_id") or path_params.get("execution_id") or "-",
            )

    @app.get("/healthz", tags=["system"])
    async def healthz() -> dict:
        return {"status": "ok", "paused_executions": len(store.registry)}

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(ConfigurationError, configuration_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    return app


def main() -> None:
    """Run development API server."""
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run("agentloop.web.app:create_app", factory=True, host="127.0.0.1", port=8000)
