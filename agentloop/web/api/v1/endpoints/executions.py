"""Endpoints for executions paused on human input."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import get_store
from ....store import ExecutionStore

router = APIRouter(prefix="/executions", tags=["executions"])


class PausedExecutionItem(BaseModel):
    execution_id: str
    state: dict
    paused_at: Optional[str]
    waiting_seconds: float
    timeout_seconds: Optional[float]
    has_timeout: bool


class ListPausedResponse(BaseModel):
    items: list[PausedExecutionItem]


class ResumeRequest(BaseModel):
    response: str = Field(min_length=1)


class CancelRequest(BaseModel):
    reason: str = Field(default="Cancelled by user")


class ExecutionActionResponse(BaseModel):
    execution_id: str
    status: str


@router.get("/paused", response_model=ListPausedResponse)
async def list_paused(store: ExecutionStore = Depends(get_store)) -> ListPausedResponse:
    return ListPausedResponse(items=[PausedExecutionItem(**item) for item in store.list_paused()])


@router.get("/{execution_id}")
async def get_checkpoint(execution_id: str, store: ExecutionStore = Depends(get_store)) -> dict:
    return store.get_checkpoint(execution_id)


@router.post("/{execution_id}/resume", response_model=ExecutionActionResponse)
async def resume(
    execution_id: str,
    request: ResumeRequest,
    store: ExecutionStore = Depends(get_store),
) -> ExecutionActionResponse:
    run = await store.resume(execution_id, request.response)
    return ExecutionActionResponse(execution_id=execution_id, status=run.status)


@router.post("/{execution_id}/cancel", response_model=ExecutionActionResponse)
async def cancel(
    execution_id: str,
    request: CancelRequest,
    store: ExecutionStore = Depends(get_store),
) -> ExecutionActionResponse:
    run = await store.cancel(execution_id, request.reason)
    return ExecutionActionResponse(execution_id=execution_id, status=run.status)
