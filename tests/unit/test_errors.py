"""Unit tests for the ragindex exception hierarchy."""

from __future__ import annotations

import pytest

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
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "exc_type",
        [
            ConfigurationError,
            ValidationError,
            PermissionDeniedError,
            NotFoundError,
            ExternalApiError,
            OperationTimeoutError,
            DatabaseError,
        ],
    )
    def test_all_inherit_base(self, exc_type: type[RagIndexError]) -> None:
        assert issubclass(exc_type, RagIndexError)

    def test_job_errors_are_validation_errors(self) -> None:
        running = JobAlreadyRunningError("scope-1", running_job_id="job-9")
        assert isinstance(running, ValidationError)
        assert running.scope_id == "scope-1"
        assert running.running_job_id == "job-9"
        assert "scope-1" in running.message

        transition = InvalidTransitionError("job-1", "completed", "running")
        assert isinstance(transition, ValidationError)
        assert "completed" in transition.message

    def test_provider_errors_are_external(self) -> None:
        assert RateLimitError().status_code == 429
        assert RateLimitError(retry_after=3.0).retry_after == 3.0
        assert isinstance(LLMResponseParseError(reasons=["x"]), ExternalApiError)

    def test_str_includes_provider(self) -> None:
        assert str(ExternalApiError(message="down", provider_name="openai")) == "[openai] down"
        assert str(ValidationError(message="bad")) == "bad"

    def test_configuration_violations(self) -> None:
        exc = ConfigurationError(violations=["a: bad", "b: worse"])
        assert exc.violations == ["a: bad", "b: worse"]
        assert exc.code == "CONFIGURATION_ERROR"


class TestUserMessages:
    def test_caller_errors_echo_message(self) -> None:
        assert get_user_message(ValidationError(message="scope_id must not be empty")) == (
            "scope_id must not be empty"
        )
        assert get_user_message(NotFoundError(message="no such job")) == "no such job"

    def test_rate_limit_and_timeout_hints(self) -> None:
        assert "Rate limit" in get_user_message(RateLimitError())
        assert "timed out" in get_user_message(OperationTimeoutError())
        assert "timed out" in get_user_message(TimeoutError())

    def test_internal_details_hidden(self) -> None:
        message = get_user_message(DatabaseError(message="disk I/O error at /var/db"))
        assert "/var/db" not in message
        assert "unavailable" in get_user_message(ExternalApiError(message="secret"))
