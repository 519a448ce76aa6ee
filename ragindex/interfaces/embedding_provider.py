"""Abstract base class for text-embedding service providers.

Defines the contract for generating embedding vectors from text.  Chunk
vectors and keyword vectors must come from the same provider so they live
in one vector space; the hybrid store compares them directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider  -- text-embedding-3-small (requires API key)
#   NomicEmbeddingProvider   -- nomic-embed-text via Ollama (local)
# Located in: ragindex/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by the pipeline and search."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string.

        Parameters
        ----------
        text:
            The text string to embed.

        Returns
        -------
        list[float]
            The embedding vector with length equal to :meth:`get_dimension`.

        Raises
        ------
        ragindex.utils.errors.RateLimitError
            If the provider rejected the call for exceeding its rate limit.
        ragindex.utils.errors.ExternalApiError
            If the embedding API call fails.
        """

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for several texts in one call.

        Parameters
        ----------
        texts:
            Texts to embed.

        Returns
        -------
        list[list[float]]
            Vectors corresponding positionally to *texts*.  Callers treat a
            result whose length differs from ``len(texts)`` as a failure.
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        Must stay constant for the lifetime of the provider and match the
        dimension configured on the hybrid store.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider."""
