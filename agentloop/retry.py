"""Retry logic with exponential backoff for model calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .errors import ErrorClassifier, ErrorInfo, ModelCallError, backoff_delay_seconds

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 2  # extra attempts after the first call
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0

    def delay_for(self, attempt: int, info: ErrorInfo) -> float:
        return backoff_delay_seconds(
            attempt,
            retry_after_seconds=info.retry_after_seconds,
            base_ms=self.base_delay * 1000,
            max_ms=self.max_delay * 1000,
            exponential_base=self.exponential_base,
        )


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    config: RetryConfig,
    *args: Any,
    classifier: Optional[ErrorClassifier] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    on_retry: Optional[Callable[[int, ErrorInfo, float], None]] = None,
    **kwargs: Any,
) -> T:
    """
    Execute an async function, retrying recoverable failures.

    Args:
        func: Async function to execute
        config: Retry configuration
        *args: Positional arguments for func
        classifier: Classifier deciding whether a failure is recoverable
        sleep: Coroutine used to wait between attempts
        on_retry: Called with (attempt, info, delay) before each wait
        **kwargs: Keyword arguments for func

    Returns:
        Result from the first successful call

    Raises:
        ModelCallError: If the failure is permanent or all attempts fail
    """
    classifier = classifier or ErrorClassifier()
    total_attempts = config.max_retries + 1

    for attempt in range(1, total_attempts + 1):
        try:
            result = await func(*args, **kwargs)
            if attempt > 1:
                logger.info(f"Retry succeeded on attempt {attempt}")
            return result

        except asyncio.CancelledError:
            raise

        except Exception as e:
            info = classifier.classify_model_error(e)

            if not info.recoverable:
                logger.error(f"Permanent error encountered ({info.kind.value}), not retrying")
                raise ModelCallError(info, attempts=attempt) from e

            if attempt == total_attempts:
                logger.error(f"All {total_attempts} attempts failed: {info.message}")
                raise ModelCallError(info, attempts=attempt) from e

            delay = config.delay_for(attempt, info)
            logger.warning(
                f"Attempt {attempt}/{total_attempts} failed ({info.kind.value}): {info.message}. "
                f"Retrying in {delay:.2f}s..."
            )
            if on_retry:
                on_retry(attempt, info, delay)
            await sleep(delay)

    raise RuntimeError("retry loop exited without a result")
