"""Nomic embedding provider adapter (local and free via Ollama).

Uses ``nomic-embed-text`` (768 dimensions) through the OpenAI-compatible
``/v1`` endpoint that Ollama exposes.  No API key required.
"""

from __future__ import annotations

import httpx
import openai
import structlog

from ragindex.config.settings import Settings
from ragindex.interfaces.embedding_provider import IEmbeddingProvider
from ragindex.providers.openai_errors import translate_openai_error

logger = structlog.get_logger(logger_name=__name__)

_PROVIDER_NAME = "nomic_embedding"
_OLLAMA_BATCH_LIMIT = 512
_NOMIC_DIMENSION = 768


class NomicEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an embedding model served by Ollama."""

    def __init__(self, settings: Settings) -> None:
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._timeout = settings.embedding_timeout_seconds
        self._client = openai.AsyncOpenAI(
            base_url=f"{self._base_url}/v1",
            api_key="ollama",
            timeout=self._timeout,
            max_retries=0,
        )
        self._model = settings.ollama_embedding_model
        self._dimension = settings.embedding_dimension or _NOMIC_DIMENSION

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed ``texts`` in calls of at most 512 inputs."""
        if not texts:
            return []

        vectors: list[list[float]] = []
        for start in range(0, len(texts), _OLLAMA_BATCH_LIMIT):
            batch = texts[start : start + _OLLAMA_BATCH_LIMIT]
            try:
                response = await self._client.embeddings.create(input=batch, model=self._model)
            except openai.OpenAIError as exc:
                raise translate_openai_error(exc, _PROVIDER_NAME, self._timeout) from exc
            vectors.extend(item.embedding for item in sorted(response.data, key=lambda i: i.index))
            logger.debug("embedding_batch", model=self._model, batch_size=len(batch))
        return vectors

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return _PROVIDER_NAME

    async def is_available(self) -> bool:
        """Return ``True`` if the Ollama server answers ``/api/tags``."""
        if not self._base_url:
            return False
        try:
            async with httpx.AsyncClient(timeout=3.0) as client:
                response = await client.get(f"{self._base_url}/api/tags")
                return response.status_code == 200
        except httpx.HTTPError:
            return False
