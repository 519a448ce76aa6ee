"""Unit tests for RetryPolicy and the error classifier."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from ragindex.utils.errors import (
    ExternalApiError,
    NotFoundError,
    OperationTimeoutError,
    PermissionDeniedError,
    RateLimitError,
    ValidationError,
    is_retryable,
)
from ragindex.utils.retry import ErrorClass, RetryPolicy, classify_error, retry_all


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://example.com")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError("boom", request=request, response=response)


class TestClassifyError:
    @pytest.mark.parametrize(
        ("exc", "expected"),
        [
            (RateLimitError(), ErrorClass.RATE_LIMIT),
            (ExternalApiError(), ErrorClass.TRANSIENT),
            (OperationTimeoutError(), ErrorClass.TRANSIENT),
            (asyncio.TimeoutError(), ErrorClass.TRANSIENT),
            (ConnectionError(), ErrorClass.TRANSIENT),
            (httpx.ConnectError("refused"), ErrorClass.TRANSIENT),
            (ValidationError(), ErrorClass.FATAL),
            (NotFoundError(), ErrorClass.FATAL),
            (PermissionDeniedError(), ErrorClass.FATAL),
            (ExternalApiError(status_code=400), ErrorClass.FATAL),
            (ExternalApiError(status_code=408), ErrorClass.TRANSIENT),
            (ExternalApiError(status_code=502), ErrorClass.TRANSIENT),
            (KeyError("x"), ErrorClass.TRANSIENT),
            (IndexError("list index out of range"), ErrorClass.TRANSIENT),
            (RuntimeError("provider glitch"), ErrorClass.TRANSIENT),
        ],
    )
    def test_classes(self, exc: BaseException, expected: ErrorClass) -> None:
        assert classify_error(exc) is expected

    def test_http_status_codes(self) -> None:
        assert classify_error(_status_error(429)) is ErrorClass.RATE_LIMIT
        assert classify_error(_status_error(503)) is ErrorClass.TRANSIENT
        assert classify_error(_status_error(404)) is ErrorClass.FATAL

    def test_retry_all_keeps_rate_limit(self) -> None:
        assert retry_all(RateLimitError()) is ErrorClass.RATE_LIMIT
        assert retry_all(KeyError("x")) is ErrorClass.TRANSIENT

    def test_is_retryable_mirrors_classifier(self) -> None:
        assert is_retryable(ExternalApiError())
        assert not is_retryable(ValidationError())


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_returns_first_success(self, no_sleep) -> None:
        fn = AsyncMock(return_value="ok")
        policy = RetryPolicy(max_attempts=3, sleep=no_sleep)

        assert await policy.run(fn, operation="test") == "ok"
        assert fn.await_count == 1
        assert no_sleep.delays == []

    @pytest.mark.asyncio
    async def test_linear_backoff_then_success(self, no_sleep) -> None:
        fn = AsyncMock(side_effect=[ExternalApiError(), ExternalApiError(), "ok"])
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, sleep=no_sleep)

        assert await policy.run(fn, operation="test") == "ok"
        assert no_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_rate_limit_delay(self, no_sleep) -> None:
        fn = AsyncMock(side_effect=[RateLimitError(), RateLimitError(retry_after=12.0), "ok"])
        policy = RetryPolicy(max_attempts=3, rate_limit_delay=5.0, sleep=no_sleep)

        await policy.run(fn, operation="test")
        assert no_sleep.delays == [5.0, 12.0]

    @pytest.mark.asyncio
    async def test_reraises_last_error(self, no_sleep) -> None:
        errors = [ExternalApiError(message="first"), ExternalApiError(message="last")]
        fn = AsyncMock(side_effect=errors)
        policy = RetryPolicy(max_attempts=2, sleep=no_sleep)

        with pytest.raises(ExternalApiError, match="last"):
            await policy.run(fn, operation="test")
        assert fn.await_count == 2

    @pytest.mark.asyncio
    async def test_fatal_errors_not_retried(self, no_sleep) -> None:
        fn = AsyncMock(side_effect=ValidationError(message="bad input"))
        policy = RetryPolicy(max_attempts=5, sleep=no_sleep)

        with pytest.raises(ValidationError):
            await policy.run(fn, operation="test")
        assert fn.await_count == 1
        assert no_sleep.delays == []

    @pytest.mark.asyncio
    async def test_logs_retry_events(self, no_sleep) -> None:
        logger = MagicMock()
        fn = AsyncMock(side_effect=[ExternalApiError(), ExternalApiError()])
        policy = RetryPolicy(max_attempts=2, sleep=no_sleep)

        with pytest.raises(ExternalApiError):
            await policy.run(fn, operation="embed", logger=logger, chunk_id="c1")

        logger.info.assert_called_once()
        assert logger.info.call_args.args[0] == "retry_scheduled"
        assert logger.info.call_args.kwargs["chunk_id"] == "c1"
        assert logger.warning.call_args.args[0] == "retry_giving_up"

    def test_invalid_attempts(self) -> None:
        with pytest.raises(ValidationError):
            RetryPolicy(max_attempts=0)
