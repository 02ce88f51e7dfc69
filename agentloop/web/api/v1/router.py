"""Top-level v1 API router."""

from __future__ import annotations

from fastapi import APIRouter

from .endpoints.executions import router as executions_router
from .endpoints.runs import router as runs_router

api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(runs_router)
api_v1_router.include_router(executions_router)
