"""Dependency providers for v1 API."""

from __future__ import annotations

from fastapi import Request

from ...store import ExecutionStore


def get_store(request: Request) -> ExecutionStore:
    """Access shared execution store from app state."""
    return request.app.state.execution_store
