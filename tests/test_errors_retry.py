"""Tests for error classification and retry with backoff."""

import pytest

from agentloop.errors import (
    ErrorClassifier,
    ErrorKind,
    MaxIterationsError,
    ModelCallError,
    backoff_delay_seconds,
    describe_failure,
)
from agentloop.retry import RetryConfig, retry_with_backoff


class HTTPError(Exception):
    def __init__(self, message, status_code=None, retry_after=None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class TestClassifyModelError:
    def setup_method(self):
        self.classifier = ErrorClassifier()

    def test_unauthorized_is_permanent(self):
        info = self.classifier.classify_model_error(HTTPError("nope", status_code=401))
        assert info.kind is ErrorKind.INVALID_CREDENTIALS
        assert info.recoverable is False

    def test_auth_message_without_status(self):
        info = self.classifier.classify_model_error(Exception("Incorrect API key provided"))
        assert info.kind is ErrorKind.INVALID_CREDENTIALS

    def test_rate_limit_uses_retry_after(self):
        info = self.classifier.classify_model_error(HTTPError("slow down", status_code=429, retry_after=7))
        assert info.kind is ErrorKind.RATE_LIMIT
        assert info.recoverable is True
        assert info.retry_after_seconds == 7.0

    def test_rate_limit_defaults_to_sixty_seconds(self):
        info = self.classifier.classify_model_error(Exception("Rate limit reached"))
        assert info.retry_after_seconds == 60

    def test_timeout_is_recoverable(self):
        info = self.classifier.classify_model_error(TimeoutError())
        assert info.kind is ErrorKind.TIMEOUT
        assert info.recoverable is True

    def test_bad_request_is_permanent(self):
        info = self.classifier.classify_model_error(HTTPError("bad", status_code=400))
        assert info.kind is ErrorKind.INVALID_REQUEST
        assert info.recoverable is False

    def test_auth_wins_over_rate_limit_text(self):
        info = self.classifier.classify_model_error(HTTPError("quota exceeded", status_code=401))
        assert info.kind is ErrorKind.INVALID_CREDENTIALS

    def test_unknown_error_is_recoverable_model_error(self):
        info = self.classifier.classify_model_error(RuntimeError("boom"))
        assert info.kind is ErrorKind.MODEL_ERROR
        assert info.recoverable is True

    def test_memory_connection_error(self):
        info = self.classifier.classify_memory_error(ConnectionError("ECONNREFUSED"))
        assert info.kind is ErrorKind.MEMORY_CONNECTION_ERROR


class TestBackoff:
    def test_exponential_and_capped(self):
        assert backoff_delay_seconds(1) == 1.0
        assert backoff_delay_seconds(2) == 2.0
        assert backoff_delay_seconds(3) == 4.0
        assert backoff_delay_seconds(10) == 30.0

    def test_retry_after_overrides(self):
        assert backoff_delay_seconds(3, retry_after_seconds=5) == 5.0


class TestRetryWithBackoff:
    @pytest.mark.asyncio
    async def test_succeeds_after_recoverable_failures(self):
        attempts = []
        delays = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise TimeoutError("timed out")
            return "ok"

        async def fake_sleep(seconds):
            delays.append(seconds)

        result = await retry_with_backoff(flaky, RetryConfig(max_retries=2), sleep=fake_sleep)
        assert result == "ok"
        assert len(attempts) == 3
        assert delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self):
        attempts = []

        async def denied():
            attempts.append(1)
            raise HTTPError("denied", status_code=403)

        with pytest.raises(ModelCallError) as exc_info:
            await retry_with_backoff(denied, RetryConfig(max_retries=3))

        assert len(attempts) == 1
        assert exc_info.value.kind is ErrorKind.INVALID_CREDENTIALS
        assert exc_info.value.attempts == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error(self):
        async def always_down():
            raise RuntimeError("upstream 500")

        async def no_sleep(_):
            return None

        with pytest.raises(ModelCallError) as exc_info:
            await retry_with_backoff(always_down, RetryConfig(max_retries=1), sleep=no_sleep)

        assert exc_info.value.attempts == 2
        assert exc_info.value.kind is ErrorKind.MODEL_ERROR


def test_describe_failure_names_the_limit():
    text = describe_failure(MaxIterationsError("Agent reached maximum iterations (3) without completing"))
    assert "max iterations" in text
    assert "Increase max_iterations" in text
