"""Custom exception hierarchy for ragindex.

All application exceptions inherit from :class:`RagIndexError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "sqlite", "ollama") caused the failure.

The hierarchy is organized by how callers are expected to react:

    RagIndexError  (base -- catch-all for any ragindex error)
    +-- ConfigurationError       (startup / invalid settings)
    +-- ValidationError          (bad caller input, never retried)
    |   +-- JobAlreadyRunningError
    |   +-- InvalidTransitionError
    +-- PermissionDeniedError    (initiator not allowed, never retried)
    +-- NotFoundError            (missing job / chunk, never retried)
    +-- ExternalApiError         (LLM / embedding / content API failure)
    |   +-- RateLimitError       (provider rate-limit exceeded)
    |   +-- LLMResponseParseError
    +-- OperationTimeoutError    (a bounded wait expired)
    +-- DatabaseError            (store read/write failure)

Validation, permission and not-found errors surface immediately.  External
and timeout errors are retried by :mod:`ragindex.utils.retry` and then
degrade inside one unit of work; anything escaping a pipeline phase fails
the ingestion job.
"""

from __future__ import annotations


class RagIndexError(Exception):
    """Base exception for all ragindex errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai] Rate limit exceeded``.
    """

    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Startup errors
# ---------------------------------------------------------------------------

class ConfigurationError(RagIndexError):
    """Raised when configuration is invalid or missing at startup.

    ``violations`` lists every offending setting so an operator can fix
    them in one pass instead of one restart per error.
    """

    code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
        violations: list[str] | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._violations = list(violations or [])

    @property
    def violations(self) -> list[str]:
        return list(self._violations)


# ---------------------------------------------------------------------------
# Caller errors -- never retried
# ---------------------------------------------------------------------------

class ValidationError(RagIndexError):
    """Raised when caller input is malformed or violates an invariant."""

    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str = "Invalid input",
        provider_name: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._field = field

    @property
    def field(self) -> str | None:
        return self._field


class JobAlreadyRunningError(ValidationError):
    """Raised when a scope already has a job in the ``running`` state."""

    def __init__(self, scope_id: str, running_job_id: str | None = None) -> None:
        super().__init__(
            message=f"An ingestion job is already running for scope {scope_id}",
            field="scope_id",
        )
        self._scope_id = scope_id
        self._running_job_id = running_job_id

    @property
    def scope_id(self) -> str:
        return self._scope_id

    @property
    def running_job_id(self) -> str | None:
        return self._running_job_id


class InvalidTransitionError(ValidationError):
    """Raised when a job status change would move backwards or skip a state."""

    def __init__(self, job_id: str, current: str, target: str) -> None:
        super().__init__(
            message=f"Job {job_id} cannot move from {current} to {target}",
            field="status",
        )


class PermissionDeniedError(RagIndexError):
    """Raised when the initiator is not allowed to perform the operation."""

    code = "PERMISSION_ERROR"

    def __init__(
        self,
        message: str = "Insufficient permissions",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class NotFoundError(RagIndexError):
    """Raised when a referenced job, document or chunk does not exist."""

    code = "NOT_FOUND"

    def __init__(
        self,
        message: str = "Resource not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# External service / provider errors -- retried, then degraded
# ---------------------------------------------------------------------------

class ExternalApiError(RagIndexError):
    """Raised when an LLM, embedding or content API call fails."""

    code = "EXTERNAL_API_ERROR"

    def __init__(
        self,
        message: str = "External API call failed",
        provider_name: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._status_code = status_code

    @property
    def status_code(self) -> int | None:
        return self._status_code


class RateLimitError(ExternalApiError):
    """Raised when an API rate limit is exceeded.

    The retry policy waits its longer rate-limit delay (or ``retry_after``
    when the provider supplied one) before the next attempt.
    """

    code = "RATE_LIMIT_ERROR"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, status_code=429)
        self._retry_after = retry_after

    @property
    def retry_after(self) -> float | None:
        return self._retry_after


class LLMResponseParseError(ExternalApiError):
    """Raised when an LLM response cannot be turned into the expected JSON shape."""

    code = "LLM_PARSE_ERROR"

    def __init__(
        self,
        message: str = "LLM response could not be parsed",
        provider_name: str | None = None,
        reasons: list[str] | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._reasons = list(reasons or [])

    @property
    def reasons(self) -> list[str]:
        return list(self._reasons)


class OperationTimeoutError(RagIndexError):
    """Raised when an external call or lock wait exceeds its time budget."""

    code = "TIMEOUT_ERROR"

    def __init__(
        self,
        message: str = "Operation timed out",
        provider_name: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._timeout_seconds = timeout_seconds

    @property
    def timeout_seconds(self) -> float | None:
        return self._timeout_seconds


# ---------------------------------------------------------------------------
# Persistence errors
# ---------------------------------------------------------------------------

class DatabaseError(RagIndexError):
    """Raised when the hybrid store or job store fails a read or write."""

    code = "DATABASE_ERROR"

    def __init__(
        self,
        message: str = "Database operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_GENERIC_USER_MESSAGE = "An unexpected error occurred. Please try again later."


def get_user_message(exc: BaseException) -> str:
    """Map an exception to a message that is safe to show an end user.

    Caller errors echo their own message because it describes what the
    caller did wrong.  Rate limits and timeouts get a retry hint; every
    other failure collapses to a generic message so internal details do
    not leak into status updates.
    """
    if isinstance(exc, (ValidationError, PermissionDeniedError, NotFoundError)):
        return exc.message
    if isinstance(exc, RateLimitError):
        return "Rate limit exceeded. Please wait a moment and try again."
    if isinstance(exc, (OperationTimeoutError, TimeoutError)):
        return "The operation timed out. Please try again."
    if isinstance(exc, ExternalApiError):
        return "An external service is unavailable. Please try again later."
    return _GENERIC_USER_MESSAGE


def is_retryable(exc: BaseException) -> bool:
    """Return ``True`` when retrying the failed call could succeed."""
    from ragindex.utils.retry import ErrorClass, classify_error

    return classify_error(exc) is not ErrorClass.FATAL
