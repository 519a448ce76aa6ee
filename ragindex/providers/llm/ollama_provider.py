"""Ollama LLM provider adapter.

Talks to a local Ollama server through its OpenAI-compatible ``/v1`` API,
reusing the ``openai`` client.  Lets the pipeline run offline with no API
costs, at the price of weaker chunking and keyword suggestions.

Setup: install Ollama, ``ollama pull llama3.1``, and point
``OLLAMA_BASE_URL`` at the server (default ``http://localhost:11434``).
"""

from __future__ import annotations

import httpx
import openai
import structlog

from ragindex.config.settings import Settings
from ragindex.interfaces.llm_provider import ILLMProvider
from ragindex.providers.openai_errors import translate_openai_error
from ragindex.utils.errors import ExternalApiError

logger = structlog.get_logger(logger_name=__name__)

_PROVIDER_NAME = "ollama"
_HEALTH_TIMEOUT_SECONDS = 5.0


class OllamaLLMProvider(ILLMProvider):
    """LLM provider backed by a local Ollama server."""

    def __init__(self, settings: Settings) -> None:
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._timeout = settings.llm_timeout_seconds
        self._client = openai.AsyncOpenAI(
            base_url=f"{self._base_url}/v1",
            # The SDK insists on a key; Ollama ignores it.
            api_key="ollama",
            timeout=self._timeout,
            max_retries=0,
        )
        self._model = settings.ollama_text_model

    async def generate(
        self,
        prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
    ) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.OpenAIError as exc:
            raise translate_openai_error(exc, _PROVIDER_NAME, self._timeout) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ExternalApiError(
                message="Ollama returned empty response",
                provider_name=_PROVIDER_NAME,
            )
        logger.info("llm_completion", model=self._model, provider=_PROVIDER_NAME)
        return content

    def is_available(self) -> bool:
        return bool(self._base_url)

    async def validate_credentials(self) -> bool:
        """Check the server is up by listing installed models (``/api/tags``)."""
        if not self.is_available():
            return False
        try:
            async with httpx.AsyncClient(timeout=_HEALTH_TIMEOUT_SECONDS) as client:
                response = await client.get(f"{self._base_url}/api/tags")
                return response.status_code == 200
        except httpx.HTTPError:
            return False

    def get_provider_name(self) -> str:
        return _PROVIDER_NAME
