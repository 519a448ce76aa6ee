"""Utility modules for ragindex.

- **errors** -- Domain exception hierarchy rooted at RagIndexError, plus
  ``get_user_message`` / ``is_retryable`` helpers.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **concurrency** -- semaphore-bounded gather and a fan-out helper that
  collects per-item failures instead of aborting the batch.
- **retry** -- the single retry policy used for every external call.
- **llm_json** -- tolerant JSON extraction from LLM responses.
"""

# -- Domain exception hierarchy --------------------------------------------
from ragindex.utils.errors import (
    ConfigurationError,
    DatabaseError,
    ExternalApiError,
    InvalidTransitionError,
    JobAlreadyRunningError,
    LLMResponseParseError,
    NotFoundError,
    OperationTimeoutError,
    PermissionDeniedError,
    RagIndexError,
    RateLimitError,
    ValidationError,
    get_user_message,
    is_retryable,
)

# -- Structured logging setup ----------------------------------------------
from ragindex.utils.logging import configure_logging, get_logger, job_context

# -- Async concurrency helpers ---------------------------------------------
from ragindex.utils.concurrency import PoolResult, bounded_map, throttled_gather

# -- Retry policy ------------------------------------------------------------
from ragindex.utils.retry import ErrorClass, RetryPolicy, classify_error

# -- LLM response parsing ----------------------------------------------------
from ragindex.utils.llm_json import ParseResult, parse_llm_json

__all__ = [
    "ConfigurationError",
    "DatabaseError",
    "ErrorClass",
    "ExternalApiError",
    "InvalidTransitionError",
    "JobAlreadyRunningError",
    "LLMResponseParseError",
    "NotFoundError",
    "OperationTimeoutError",
    "ParseResult",
    "PermissionDeniedError",
    "PoolResult",
    "RagIndexError",
    "RateLimitError",
    "RetryPolicy",
    "ValidationError",
    "bounded_map",
    "classify_error",
    "configure_logging",
    "get_logger",
    "get_user_message",
    "is_retryable",
    "job_context",
    "parse_llm_json",
    "throttled_gather",
]
