"""Error taxonomy, classification and backoff policy for agent runs."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

DEFAULT_RATE_LIMIT_RETRY_SECONDS = 60
BACKOFF_BASE_MS = 1000
BACKOFF_MAX_MS = 30000


class ErrorKind(str, Enum):
    # Model layer
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    INVALID_REQUEST = "INVALID_REQUEST"
    MODEL_ERROR = "MODEL_ERROR"
    # Memory layer (degrade, never fatal)
    MEMORY_CONNECTION_ERROR = "MEMORY_CONNECTION_ERROR"
    MEMORY_ERROR = "MEMORY_ERROR"
    # Tools (absorbed into the conversation)
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    TOOL_VALIDATION_FAILED = "TOOL_VALIDATION_FAILED"
    TOOL_EXECUTION_ERROR = "TOOL_EXECUTION_ERROR"
    # Terminal
    EXECUTION_TIMEOUT = "EXECUTION_TIMEOUT"
    MAX_ITERATIONS = "MAX_ITERATIONS"
    MAX_DELEGATIONS = "MAX_DELEGATIONS"
    # Pause
    HUMAN_RESPONSE_TIMEOUT = "HUMAN_RESPONSE_TIMEOUT"
    HUMAN_CANCELLED = "HUMAN_CANCELLED"
    # Run configuration
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"


@dataclass
class ErrorInfo:
    """Classified failure with its retry policy hints."""

    kind: ErrorKind
    message: str
    recoverable: bool
    retry_after_seconds: Optional[float] = None
    original: Optional[BaseException] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
            "recoverable": self.recoverable,
        }
        if self.retry_after_seconds is not None:
            data["retry_after_seconds"] = self.retry_after_seconds
        return data


class AgentError(Exception):
    """Base class for errors that escape an agent run."""

    kind: ErrorKind = ErrorKind.MODEL_ERROR

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "details": self.details}


class ModelCallError(AgentError):
    """Model call failed and retries are exhausted or the failure is permanent."""

    def __init__(self, info: ErrorInfo, attempts: int = 1) -> None:
        super().__init__(info.message, kind=info.kind, details={"attempts": attempts, **info.to_dict()})
        self.info = info
        self.attempts = attempts


class MaxIterationsError(AgentError):
    kind = ErrorKind.MAX_ITERATIONS


class ExecutionTimeoutError(AgentError):
    kind = ErrorKind.EXECUTION_TIMEOUT


class HumanResponseTimeoutError(AgentError):
    kind = ErrorKind.HUMAN_RESPONSE_TIMEOUT


class HumanInputCancelledError(AgentError):
    kind = ErrorKind.HUMAN_CANCELLED


class ConfigurationError(AgentError, ValueError):
    kind = ErrorKind.INVALID_CONFIGURATION


class AlreadyPausedError(RuntimeError):
    """A continuation is already pending for this execution id."""


_AUTH_PATTERNS = ("invalid api key", "incorrect api key", "unauthorized", "authentication", "permission denied")
_RATE_LIMIT_PATTERNS = ("rate limit", "rate_limit", "too many requests", "quota")
_TIMEOUT_PATTERNS = ("timeout", "timed out", "etimedout", "econnreset", "connection reset")
_INVALID_REQUEST_PATTERNS = ("invalid request", "bad request", "invalid_request", "malformed")
_MEMORY_CONNECTION_PATTERNS = ("connection refused", "econnrefused", "could not connect", "connection closed")


def _status_code(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "status", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _retry_after(error: BaseException) -> Optional[float]:
    value = getattr(error, "retry_after", None)
    if value is None:
        response = getattr(error, "response", None)
        headers = getattr(response, "headers", None)
        if headers is not None:
            try:
                value = headers.get("retry-after")
            except AttributeError:
                value = None
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _is_timeout(error: BaseException) -> bool:
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return True
    if type(error).__name__ in ("APITimeoutError", "ReadTimeout", "ConnectTimeout", "TimeoutException"):
        return True
    message = str(error).lower()
    return any(pattern in message for pattern in _TIMEOUT_PATTERNS)


class ErrorClassifier:
    """Map raw failures from model, memory and tool calls into ErrorInfo.

    Rules apply in order and the first match wins: authentication, rate
    limiting, timeouts, malformed requests, then the call-site default.
    """

    def classify_model_error(self, error: BaseException) -> ErrorInfo:
        if isinstance(error, AgentError):
            return ErrorInfo(error.kind, error.message, recoverable=False, original=error)

        message = str(error) or type(error).__name__
        lowered = message.lower()
        status = _status_code(error)

        if status in (401, 403) or any(p in lowered for p in _AUTH_PATTERNS):
            return ErrorInfo(
                ErrorKind.INVALID_CREDENTIALS,
                f"Invalid credentials: {message}",
                recoverable=False,
                original=error,
            )

        if status == 429 or any(p in lowered for p in _RATE_LIMIT_PATTERNS):
            retry_after = _retry_after(error)
            return ErrorInfo(
                ErrorKind.RATE_LIMIT,
                f"Rate limit exceeded: {message}",
                recoverable=True,
                retry_after_seconds=retry_after if retry_after is not None else DEFAULT_RATE_LIMIT_RETRY_SECONDS,
                original=error,
            )

        if status in (408, 504) or _is_timeout(error):
            return ErrorInfo(ErrorKind.TIMEOUT, f"Model request timed out: {message}", recoverable=True, original=error)

        if status in (400, 404, 422) or any(p in lowered for p in _INVALID_REQUEST_PATTERNS):
            return ErrorInfo(
                ErrorKind.INVALID_REQUEST,
                f"Invalid request: {message}",
                recoverable=False,
                original=error,
            )

        return ErrorInfo(ErrorKind.MODEL_ERROR, f"Model error: {message}", recoverable=True, original=error)

    def classify_memory_error(self, error: BaseException) -> ErrorInfo:
        message = str(error) or type(error).__name__
        lowered = message.lower()
        if isinstance(error, ConnectionError) or any(p in lowered for p in _MEMORY_CONNECTION_PATTERNS):
            return ErrorInfo(
                ErrorKind.MEMORY_CONNECTION_ERROR,
                f"Memory store unreachable: {message}",
                recoverable=True,
                original=error,
            )
        return ErrorInfo(ErrorKind.MEMORY_ERROR, f"Memory error: {message}", recoverable=True, original=error)

    def classify_tool_error(self, tool_name: str, error: BaseException) -> ErrorInfo:
        message = str(error) or type(error).__name__
        return ErrorInfo(
            ErrorKind.TOOL_EXECUTION_ERROR,
            f"Tool '{tool_name}' failed: {message}",
            recoverable=True,
            original=error,
        )


def backoff_delay_seconds(
    attempt: int,
    retry_after_seconds: Optional[float] = None,
    base_ms: float = BACKOFF_BASE_MS,
    max_ms: float = BACKOFF_MAX_MS,
    exponential_base: float = 2.0,
) -> float:
    """Delay before retry number ``attempt`` (1-based)."""
    if retry_after_seconds is not None:
        return float(retry_after_seconds)
    delay_ms = min(base_ms * (exponential_base ** (attempt - 1)), max_ms)
    return delay_ms / 1000.0


def describe_failure(error: BaseException) -> str:
    """Render a terminal failure as a user-facing message naming the limiting factor."""
    if isinstance(error, AgentError):
        kind = error.kind
        message = error.message
    else:
        info = ErrorClassifier().classify_model_error(error)
        kind = info.kind
        message = info.message

    hints = {
        ErrorKind.MAX_ITERATIONS: "Increase max_iterations or simplify the request.",
        ErrorKind.EXECUTION_TIMEOUT: "Increase timeout_ms or reduce the work per request.",
        ErrorKind.MAX_DELEGATIONS: "Increase max_delegations or narrow the task.",
        ErrorKind.INVALID_CREDENTIALS: "Check the model API key in config/config.local.yaml or the environment.",
        ErrorKind.RATE_LIMIT: "The model provider is rate limiting requests; wait and try again.",
        ErrorKind.TIMEOUT: "The model provider did not respond in time; try again later.",
        ErrorKind.INVALID_REQUEST: "The model rejected the request; check the model name and tool schemas.",
        ErrorKind.HUMAN_RESPONSE_TIMEOUT: "No human response arrived before the pause timeout.",
        ErrorKind.HUMAN_CANCELLED: "The paused execution was cancelled.",
        ErrorKind.INVALID_CONFIGURATION: "Fix the run options and try again.",
    }
    hint = hints.get(kind)
    if hint is None and "model" in message.lower() and "not configured" in message.lower():
        hint = "Configure a model for this agent."
    label = kind.value.replace("_", " ").lower()
    text = f"Agent failed ({label}): {message}"
    return f"{text}\n{hint}" if hint else text
