"""Translate ``openai`` SDK exceptions into ragindex errors.

Every provider in this package talks to an OpenAI-compatible endpoint
(OpenAI itself, or Ollama's ``/v1`` API), so they share one mapping.
Callers above the provider layer never see an SDK exception type.
"""

from __future__ import annotations

import openai

from ragindex.utils.errors import (
    ExternalApiError,
    NotFoundError,
    OperationTimeoutError,
    PermissionDeniedError,
    RagIndexError,
    RateLimitError,
)


def _retry_after_seconds(exc: openai.RateLimitError) -> float | None:
    response = getattr(exc, "response", None)
    if response is None:
        return None
    value = response.headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def translate_openai_error(
    exc: openai.OpenAIError,
    provider_name: str,
    timeout_seconds: float | None = None,
) -> RagIndexError:
    """Map an SDK exception to the matching :class:`RagIndexError`."""
    if isinstance(exc, openai.APITimeoutError):
        return OperationTimeoutError(
            message=f"{provider_name} timed out after {timeout_seconds}s",
            provider_name=provider_name,
            timeout_seconds=timeout_seconds,
        )
    if isinstance(exc, openai.RateLimitError):
        return RateLimitError(
            message=f"{provider_name} rate limit exceeded: {exc}",
            provider_name=provider_name,
            retry_after=_retry_after_seconds(exc),
        )
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return PermissionDeniedError(
            message=f"{provider_name} rejected the credentials: {exc}",
            provider_name=provider_name,
        )
    if isinstance(exc, openai.NotFoundError):
        return NotFoundError(
            message=f"{provider_name} resource not found: {exc}",
            provider_name=provider_name,
        )
    status_code = exc.status_code if isinstance(exc, openai.APIStatusError) else None
    return ExternalApiError(
        message=f"{provider_name} API error: {exc}",
        provider_name=provider_name,
        status_code=status_code,
    )
