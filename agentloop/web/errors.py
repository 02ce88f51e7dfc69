"""Error envelope for the runs API: ``{"error": {"code", "message", "details"}}``."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..errors import ConfigurationError


class APIError(Exception):
    """Raised by the execution store; rendered by ``api_error_handler``."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}

    @classmethod
    def not_found(cls, code: str, kind: str, identifier: str) -> "APIError":
        return cls(404, code, f"{kind} '{identifier}' not found", {"id": identifier})

    @classmethod
    def not_paused(cls, execution_id: str) -> "APIError":
        return cls(
            404,
            "EXECUTION_NOT_PAUSED",
            f"Execution '{execution_id}' is not waiting for input",
            {"execution_id": execution_id},
        )

    def envelope(self) -> Dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message, "details": self.details}}

    def response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=jsonable_encoder(self.envelope()))


def _field_errors(exc: RequestValidationError) -> List[Dict[str, Any]]:
    fields = []
    for error in exc.errors():
        # Drop the leading "body"/"query" segment
        location = [str(part) for part in error.get("loc", ())[1:]]
        fields.append({"field": ".".join(location) or None, "message": error.get("msg", "invalid value")})
    return fields


async def api_error_handler(_: Request, exc: APIError) -> JSONResponse:
    return exc.response()


async def configuration_error_handler(_: Request, exc: ConfigurationError) -> JSONResponse:
    """Run options that parse but fail engine validation."""
    return APIError(400, "INVALID_OPTIONS", exc.message, exc.details).response()


async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    return APIError(400, "BAD_REQUEST", "Invalid request payload", {"errors": _field_errors(exc)}).response()
