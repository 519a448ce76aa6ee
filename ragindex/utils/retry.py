"""Retry policy shared by every external call in the pipeline.

Each call site used to carry its own ``for attempt in range(...)`` loop
with slightly different delays.  :class:`RetryPolicy` keeps that loop in
one place; call sites only choose the attempt count and delays:

- semantic chunking: 2 attempts, then the paragraph fallback
- per-chunk embedding: 3 attempts, 1s x attempt, 5s after a rate limit
- keyword candidate generation: 3 attempts, 2s x attempt

Errors are sorted into three classes by :func:`classify_error`.  Fatal
errors (bad input, missing records, rejected credentials, other 4xx
responses) are raised on the first attempt; everything else is retried.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

import httpx
import structlog

from ragindex.utils.errors import (
    ConfigurationError,
    ExternalApiError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ValidationError,
)
from ragindex.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


class ErrorClass(str, Enum):  # noqa: UP042
    """How the retry loop should react to an error."""

    RATE_LIMIT = "rate_limit"
    TRANSIENT = "transient"
    FATAL = "fatal"


def _is_client_status(status: int | None) -> bool:
    return status is not None and 400 <= status < 500 and status not in (408, 429)


def classify_error(exc: BaseException) -> ErrorClass:
    """Sort an exception into :class:`ErrorClass`.

    Caller errors are checked first so a ``ValidationError`` raised from
    inside a provider is never retried.  A 4xx response other than 408 or
    429 is fatal too.  Anything else (including a provider's stray
    ``IndexError`` on an empty response) is treated as transient.
    """
    if isinstance(exc, (ValidationError, PermissionDeniedError, NotFoundError, ConfigurationError)):
        return ErrorClass.FATAL
    if isinstance(exc, RateLimitError):
        return ErrorClass.RATE_LIMIT
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return ErrorClass.RATE_LIMIT
        return ErrorClass.FATAL if _is_client_status(status) else ErrorClass.TRANSIENT
    if isinstance(exc, ExternalApiError) and _is_client_status(exc.status_code):
        return ErrorClass.FATAL
    if isinstance(exc, Exception):
        return ErrorClass.TRANSIENT
    return ErrorClass.FATAL


def retry_all(exc: BaseException) -> ErrorClass:
    """Classifier for call sites that treat every ``Exception`` as retryable.

    Rate limits still get the longer delay.
    """
    if isinstance(exc, RateLimitError):
        return ErrorClass.RATE_LIMIT
    if isinstance(exc, Exception):
        return ErrorClass.TRANSIENT
    return ErrorClass.FATAL


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with linear backoff.

    Parameters
    ----------
    max_attempts:
        Total attempts including the first one.
    base_delay:
        Seconds to wait after attempt *n* is ``base_delay * n``.
    rate_limit_delay:
        Seconds to wait after a rate-limit error, unless the error carries
        its own ``retry_after``.
    classifier:
        Maps an exception to :class:`ErrorClass`.
    sleep:
        Awaitable sleep; tests inject a recorder instead of waiting.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    rate_limit_delay: float = 5.0
    classifier: Callable[[BaseException], ErrorClass] = classify_error
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValidationError(
                message=f"max_attempts must be >= 1, got {self.max_attempts}",
                field="max_attempts",
            )
        if self.base_delay < 0 or self.rate_limit_delay < 0:
            raise ValidationError(message="Retry delays must be non-negative", field="delay")

    def delay_for(self, attempt: int, exc: BaseException, error_class: ErrorClass) -> float:
        """Return how long to wait after failed attempt number ``attempt``."""
        if error_class is ErrorClass.RATE_LIMIT:
            retry_after = getattr(exc, "retry_after", None)
            if isinstance(retry_after, (int, float)) and retry_after > 0:
                return float(retry_after)
            return self.rate_limit_delay
        return self.base_delay * attempt

    async def run(
        self,
        fn: Callable[[], Awaitable[_T]],
        operation: str,
        logger: structlog.BoundLogger | None = None,
        **log_context: object,
    ) -> _T:
        """Call ``fn`` until it succeeds or the policy gives up.

        Returns the first successful result.  Re-raises the last error once
        attempts are exhausted, or immediately for fatal errors.
        """
        log = logger or _logger
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn()
            except Exception as exc:
                error_class = self.classifier(exc)
                if error_class is ErrorClass.FATAL or attempt == self.max_attempts:
                    log.warning(
                        "retry_giving_up",
                        operation=operation,
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                        error_class=error_class.value,
                        error=str(exc),
                        **log_context,
                    )
                    raise
                delay = self.delay_for(attempt, exc, error_class)
                log.info(
                    "retry_scheduled",
                    operation=operation,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    error_class=error_class.value,
                    delay_s=delay,
                    error=str(exc),
                    **log_context,
                )
                await self.sleep(delay)
        # Unreachable: the loop either returns or raises on the last attempt.
        raise RuntimeError(f"{operation}: retry loop exited without a result")
