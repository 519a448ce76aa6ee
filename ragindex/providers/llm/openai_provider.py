"""OpenAI-compatible LLM provider adapter.

Wraps the ``openai`` async client to implement :class:`ILLMProvider`.
When ``openai_base_url`` is configured (TogetherAI, Fireworks, Groq, a
vLLM server...) the client points at that URL instead of the default
OpenAI endpoint, so one adapter covers every compatible vendor.
"""

from __future__ import annotations

import openai
import structlog

from ragindex.config.settings import Settings
from ragindex.interfaces.llm_provider import ILLMProvider
from ragindex.providers.openai_errors import translate_openai_error
from ragindex.utils.errors import ExternalApiError

logger = structlog.get_logger(logger_name=__name__)

_CONNECT_TIMEOUT_SECONDS = 5.0


class OpenAILLMProvider(ILLMProvider):
    """LLM provider backed by an OpenAI-compatible chat completions API.

    The prompt is sent as a single user message; chunking and keyword
    prompts carry their own instructions.
    """

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key
        self._timeout = settings.llm_timeout_seconds

        client_kwargs: dict = {
            "api_key": self._api_key,
            "timeout": openai.Timeout(self._timeout, connect=_CONNECT_TIMEOUT_SECONDS),
            # Retries are owned by RetryPolicy at the call sites.
            "max_retries": 0,
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = settings.openai_text_model or "gpt-4o-mini"
        self._provider_label = "openai-compatible" if settings.openai_base_url else "openai"

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
            raise translate_openai_error(exc, self._provider_label, self._timeout) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ExternalApiError(
                message=f"{self._provider_label} returned empty response",
                provider_name=self._provider_label,
            )
        logger.info(
            "llm_completion",
            model=self._model,
            provider=self._provider_label,
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return content

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured (doesn't verify it works)."""
        return bool(self._api_key)

    async def validate_credentials(self) -> bool:
        """List models to check the key is accepted without paying for inference."""
        if not self.is_available():
            return False
        try:
            await self._client.models.list()
            return True
        except openai.APIError:
            return False

    def get_provider_name(self) -> str:
        return self._provider_label
