"""Run endpoints for Web API v1."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from ..deps import get_store
from ....store import ExecutionStore, RunRecord

router = APIRouter(prefix="/runs", tags=["runs"])
logger = logging.getLogger("agentloop.web.api")


class CreateRunRequest(BaseModel):
    message: str = Field(min_length=1)
    session_id: Optional[str] = None
    system_prompt: Optional[str] = None
    max_iterations: Optional[int] = None
    tool_choice: Optional[str] = None
    output_format: Optional[str] = None
    output_schema: Optional[Union[Dict[str, Any], str]] = None
    schema_name: Optional[str] = None
    schema_description: Optional[str] = None
    timeout_ms: Optional[int] = None
    human_timeout_seconds: Optional[float] = None
    clear_memory: bool = False


class CreateRunResponse(BaseModel):
    run_id: str
    status: str


class GetRunResponse(BaseModel):
    run_id: str
    session_id: str
    status: str
    created_at: str
    started_at: Optional[str]
    ended_at: Optional[str]
    result: Any = None
    error: Optional[dict]
    pending_tool_call: Optional[dict]


@router.post("", response_model=CreateRunResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_run(
    request: CreateRunRequest,
    store: ExecutionStore = Depends(get_store),
) -> CreateRunResponse:
    overrides = request.model_dump(exclude={"message"}, exclude_none=True)
    options = store.build_options(request.message, **overrides)
    run = await store.create_run(options)
    logger.info(
        "run_accepted session_id=%s run_id=%s output_format=%s",
        run.session_id,
        run.run_id,
        run.output_format,
    )
    return CreateRunResponse(run_id=run.run_id, status=run.status)


@router.get("/{run_id}", response_model=GetRunResponse)
async def get_run(
    run_id: str,
    store: ExecutionStore = Depends(get_store),
) -> GetRunResponse:
    run = await store.get_run(run_id)
    return _to_response(run)


def _to_response(run: RunRecord) -> GetRunResponse:
    return GetRunResponse(
        run_id=run.run_id,
        session_id=run.session_id,
        status=run.status,
        created_at=run.created_at,
        started_at=run.started_at,
        ended_at=run.ended_at,
        result=run.result,
        error=run.error,
        pending_tool_call=run.pending_tool_call,
    )
