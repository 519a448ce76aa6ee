"""Unit tests for the OpenAI-compatible provider adapters."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from ragindex.config.settings import Settings
from ragindex.main import build_embedding_provider, build_llm_provider
from ragindex.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from ragindex.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from ragindex.providers.llm.ollama_provider import OllamaLLMProvider
from ragindex.providers.llm.openai_provider import OpenAILLMProvider
from ragindex.providers.openai_errors import translate_openai_error
from ragindex.utils.errors import (
    ExternalApiError,
    NotFoundError,
    OperationTimeoutError,
    PermissionDeniedError,
    RateLimitError,
)
from ragindex.utils.retry import ErrorClass, classify_error

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _completion(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=42),
    )


def _embedding_response(*vectors_by_index: tuple[int, list[float]]) -> SimpleNamespace:
    return SimpleNamespace(
        data=[SimpleNamespace(index=i, embedding=v) for i, v in vectors_by_index],
        usage=None,
    )


@pytest.fixture
def openai_settings() -> Settings:
    return Settings(openai_api_key="sk-test")


class TestTranslateOpenAIError:
    def test_timeout(self) -> None:
        error = translate_openai_error(openai.APITimeoutError(request=_REQUEST), "openai", 30.0)
        assert isinstance(error, OperationTimeoutError)
        assert error.timeout_seconds == 30.0

    def test_rate_limit_with_retry_after(self) -> None:
        response = httpx.Response(429, headers={"retry-after": "7"}, request=_REQUEST)
        exc = openai.RateLimitError("slow down", response=response, body=None)

        error = translate_openai_error(exc, "openai")

        assert isinstance(error, RateLimitError)
        assert error.retry_after == 7.0
        assert error.provider_name == "openai"

    def test_status_error(self) -> None:
        response = httpx.Response(500, request=_REQUEST)
        exc = openai.InternalServerError("boom", response=response, body=None)

        error = translate_openai_error(exc, "openai")

        assert type(error) is ExternalApiError
        assert error.status_code == 500

    def test_connection_error(self) -> None:
        error = translate_openai_error(openai.APIConnectionError(request=_REQUEST), "ollama")
        assert type(error) is ExternalApiError
        assert error.status_code is None

    @pytest.mark.parametrize(
        ("status", "exc_type"),
        [(401, openai.AuthenticationError), (403, openai.PermissionDeniedError)],
    )
    def test_rejected_credentials_are_not_retried(self, status: int, exc_type: type) -> None:
        response = httpx.Response(status, request=_REQUEST)
        exc = exc_type("bad key", response=response, body=None)

        error = translate_openai_error(exc, "openai")

        assert isinstance(error, PermissionDeniedError)
        assert error.provider_name == "openai"
        assert classify_error(error) is ErrorClass.FATAL

    def test_not_found(self) -> None:
        response = httpx.Response(404, request=_REQUEST)
        exc = openai.NotFoundError("no such model", response=response, body=None)

        error = translate_openai_error(exc, "openai")

        assert isinstance(error, NotFoundError)
        assert classify_error(error) is ErrorClass.FATAL

    def test_other_client_error_is_fatal(self) -> None:
        response = httpx.Response(400, request=_REQUEST)
        exc = openai.BadRequestError("bad input", response=response, body=None)

        error = translate_openai_error(exc, "openai")

        assert type(error) is ExternalApiError
        assert error.status_code == 400
        assert classify_error(error) is ErrorClass.FATAL


class TestOpenAILLMProvider:
    @pytest.mark.asyncio
    async def test_generate(self, openai_settings) -> None:
        with patch("ragindex.providers.llm.openai_provider.openai.AsyncOpenAI") as client_cls:
            client = client_cls.return_value
            client.chat.completions.create = AsyncMock(return_value=_completion("hello"))
            provider = OpenAILLMProvider(openai_settings)

            assert await provider.generate("prompt", temperature=0.1, max_tokens=10) == "hello"

        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]
        assert kwargs["max_tokens"] == 10
        assert client_cls.call_args.kwargs["max_retries"] == 0
        assert provider.get_provider_name() == "openai"

    @pytest.mark.asyncio
    async def test_empty_response(self, openai_settings) -> None:
        with patch("ragindex.providers.llm.openai_provider.openai.AsyncOpenAI") as client_cls:
            client_cls.return_value.chat.completions.create = AsyncMock(
                return_value=_completion("")
            )
            provider = OpenAILLMProvider(openai_settings)

            with pytest.raises(ExternalApiError, match="empty"):
                await provider.generate("prompt")

    @pytest.mark.asyncio
    async def test_sdk_errors_translated(self, openai_settings) -> None:
        with patch("ragindex.providers.llm.openai_provider.openai.AsyncOpenAI") as client_cls:
            client_cls.return_value.chat.completions.create = AsyncMock(
                side_effect=openai.APITimeoutError(request=_REQUEST)
            )
            provider = OpenAILLMProvider(openai_settings)

            with pytest.raises(OperationTimeoutError):
                await provider.generate("prompt")

    def test_compatible_endpoint_label(self) -> None:
        settings = Settings(openai_api_key="k", openai_base_url="https://api.together.xyz/v1")
        with patch("ragindex.providers.llm.openai_provider.openai.AsyncOpenAI") as client_cls:
            provider = OpenAILLMProvider(settings)
        assert provider.get_provider_name() == "openai-compatible"
        assert client_cls.call_args.kwargs["base_url"] == "https://api.together.xyz/v1"


class TestEmbeddingProviders:
    @pytest.mark.asyncio
    async def test_openai_orders_by_index(self, openai_settings) -> None:
        with patch(
            "ragindex.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI"
        ) as client_cls:
            client_cls.return_value.embeddings.create = AsyncMock(
                return_value=_embedding_response((1, [0.0, 1.0]), (0, [1.0, 0.0]))
            )
            provider = OpenAIEmbeddingProvider(openai_settings)

            vectors = await provider.embed_batch(["first", "second"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        assert provider.get_dimension() == 1536
        assert await provider.embed_batch([]) == []

    def test_dimension_override(self) -> None:
        settings = Settings(openai_api_key="k", embedding_dimension=256)
        with patch("ragindex.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI"):
            assert OpenAIEmbeddingProvider(settings).get_dimension() == 256

    @pytest.mark.asyncio
    async def test_nomic_embed_single(self) -> None:
        with patch(
            "ragindex.providers.embedding.nomic_embedding_provider.openai.AsyncOpenAI"
        ) as client_cls:
            client_cls.return_value.embeddings.create = AsyncMock(
                return_value=_embedding_response((0, [0.5] * 768))
            )
            provider = NomicEmbeddingProvider(Settings())

            vector = await provider.embed("hello")

        assert len(vector) == 768
        assert client_cls.call_args.kwargs["base_url"] == "http://localhost:11434/v1"
        assert provider.get_provider_name() == "nomic_embedding"


class TestProviderSelection:
    def test_openai_when_key_set(self, openai_settings) -> None:
        with patch("ragindex.providers.llm.openai_provider.openai.AsyncOpenAI"), patch(
            "ragindex.providers.embedding.openai_embedding_provider.openai.AsyncOpenAI"
        ):
            assert isinstance(build_llm_provider(openai_settings), OpenAILLMProvider)
            assert isinstance(
                build_embedding_provider(openai_settings), OpenAIEmbeddingProvider
            )

    def test_ollama_without_key(self, monkeypatch) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        settings = Settings(openai_api_key="")
        with patch("ragindex.providers.llm.ollama_provider.openai.AsyncOpenAI"), patch(
            "ragindex.providers.embedding.nomic_embedding_provider.openai.AsyncOpenAI"
        ):
            assert isinstance(build_llm_provider(settings), OllamaLLMProvider)
            assert isinstance(build_embedding_provider(settings), NomicEmbeddingProvider)


class TestOllamaHealth:
    @pytest.mark.asyncio
    async def test_validate_credentials_unreachable(self) -> None:
        provider = OllamaLLMProvider(Settings(ollama_base_url="http://127.0.0.1:9"))
        client = MagicMock()
        client.__aenter__ = AsyncMock(return_value=client)
        client.__aexit__ = AsyncMock(return_value=False)
        client.get = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("ragindex.providers.llm.ollama_provider.httpx.AsyncClient", return_value=client):
            assert await provider.validate_credentials() is False
