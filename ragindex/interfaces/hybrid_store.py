"""Abstract base class for the hybrid vector + keyword store.

The store persists documents, chunks, embeddings and keywords, and answers
three kinds of query over them:

- **vector_search** -- cosine similarity between the query vector and each
  chunk vector.
- **keyword_search** -- cosine similarity between the query vector and
  each keyword vector, multiplied by that keyword's BM25 score.
- **hybrid_search** -- both of the above merged per chunk with a keyword
  weight ``w``: vector-only hits score ``sim * (1 - w)``, keyword-only hits
  ``combined * w``, and chunks found by both score the sum, tagged
  ``hybrid``.

It is also the single source of truth for :class:`CorpusStats`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ragindex.models.rag import (
    Chunk,
    CorpusStats,
    QueryResult,
    ScoredKeyword,
    SourceDocument,
)


# Concrete implementations: SQLiteHybridStore (ragindex/providers/store/)
class IHybridStore(ABC):
    """Contract for corpus persistence and hybrid retrieval."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indices if they do not exist.  Idempotent."""

    # -- Writes -----------------------------------------------------------

    @abstractmethod
    async def insert_source_document(self, document: SourceDocument) -> None:
        """Persist a source document."""

    @abstractmethod
    async def insert_chunk(self, chunk: Chunk) -> None:
        """Persist a chunk.

        Raises
        ------
        ragindex.utils.errors.ValidationError
            If the owning document does not exist or the index is taken.
        """

    @abstractmethod
    async def insert_embedding(self, chunk_id: str, vector: list[float]) -> None:
        """Store the vector for ``chunk_id``, replacing any previous one."""

    @abstractmethod
    async def insert_keywords(self, chunk_id: str, keywords: list[ScoredKeyword]) -> int:
        """Store keyword rows for ``chunk_id``; returns the number stored."""

    @abstractmethod
    async def delete_chunk(self, chunk_id: str) -> bool:
        """Delete a chunk with its embedding and keywords.

        Returns ``True`` when a chunk was deleted.
        """

    # -- Reads --------------------------------------------------------------

    @abstractmethod
    async def get_chunk(self, chunk_id: str) -> Chunk | None:
        """Return one chunk, or ``None`` when it does not exist."""

    @abstractmethod
    async def list_chunks(self, source_document_id: str) -> list[Chunk]:
        """Return a document's chunks in index order."""

    @abstractmethod
    async def count_chunks(self) -> int:
        """Return the number of stored chunks."""

    @abstractmethod
    async def count_keywords(self, chunk_id: str | None = None) -> int:
        """Return the number of keyword rows, optionally for one chunk."""

    @abstractmethod
    async def get_corpus_stats(self) -> CorpusStats:
        """Return corpus statistics for BM25 scoring.

        ``total_documents`` is the chunk count, ``average_document_length``
        approximates words as ``len(content) / 5`` (100 for an empty
        corpus), and ``term_document_frequency`` counts distinct chunks per
        keyword term.
        """

    # -- Search -------------------------------------------------------------

    @abstractmethod
    async def vector_search(
        self,
        query_vector: list[float],
        limit: int = 5,
        threshold: float = 0.7,
    ) -> list[QueryResult]:
        """Return chunks with cosine similarity above ``threshold``, best first."""

    @abstractmethod
    async def keyword_search(
        self,
        query_vector: list[float],
        limit: int = 5,
        vector_threshold: float = 0.7,
        bm25_threshold: float = 0.1,
    ) -> list[QueryResult]:
        """Return keyword hits ranked by ``cos(keyword, query) * bm25``."""

    @abstractmethod
    async def hybrid_search(
        self,
        query_vector: list[float],
        limit: int = 5,
        vector_threshold: float = 0.7,
        keyword_weight: float = 0.7,
        bm25_threshold: float = 0.1,
    ) -> list[QueryResult]:
        """Merge vector and keyword search per chunk and rank the union."""
