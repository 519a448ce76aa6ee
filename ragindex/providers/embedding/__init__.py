"""Embedding provider adapters."""

from ragindex.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from ragindex.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["NomicEmbeddingProvider", "OpenAIEmbeddingProvider"]
