"""Corpus data models for the ragindex hybrid store.

Defines Pydantic v2 models for source documents, chunks, embeddings,
keywords, search results and corpus statistics.  All models are frozen:
a chunk's content and position never change once persisted, and search
results are transient values.

Ownership, leaf to root:

    SourceDocument 1──N Chunk 1──0..1 Embedding
                           └──0..N Keyword

Deleting a chunk deletes its embedding and keywords; deleting a source
document deletes its chunks.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# ---------------------------------------------------------------------------
# Source documents and chunks
# ---------------------------------------------------------------------------
class SourceDocument(BaseModel):
    """Extracted content of one link, attributed to the item it came from."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique identifier (UUID) of the document.")
    url: str = Field(description="Link the content was extracted from.")
    title: str = Field(default="", description="Page title reported by the extractor.")
    full_text: str = Field(description="Full extracted text.")
    scope_id: str = Field(description="Tenant/channel scope the document belongs to.")
    description: str | None = Field(default=None, description="Page description, if any.")
    domain: str | None = Field(default=None, description="Host name of the link.")
    collected_item_id: str | None = Field(
        default=None,
        description="Identifier of the collected item (message) that carried the link.",
    )
    created_at: datetime = Field(default_factory=_utcnow)


class TextChunk(BaseModel):
    """Chunker output: content plus its position, before persistence."""

    model_config = ConfigDict(frozen=True)

    content: str = Field(min_length=1, description="Trimmed, non-empty chunk text.")
    index: int = Field(ge=0, description="Zero-based position within the document.")


class Chunk(BaseModel):
    """A persisted chunk of a source document."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique identifier (UUID) of the chunk.")
    source_document_id: str = Field(description="Owning SourceDocument id.")
    content: str = Field(min_length=1, description="Chunk text.")
    index: int = Field(ge=0, description="Contiguous position within the document.")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


class ChunkingStats(BaseModel):
    """Summary of one chunking pass over a set of documents."""

    model_config = ConfigDict(frozen=True)

    documents_chunked: int = Field(default=0, ge=0)
    documents_failed: int = Field(default=0, ge=0)
    total_chunks: int = Field(default=0, ge=0)
    average_chunk_length: float = Field(default=0.0, ge=0)
    min_chunk_length: int = Field(default=0, ge=0)
    max_chunk_length: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------------
class Embedding(BaseModel):
    """Dense vector for one chunk (at most one per chunk)."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    vector: list[float] = Field(min_length=1)


class EmbeddingResult(BaseModel):
    """Per-chunk outcome of the embedding service."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    vector: list[float] = Field(default_factory=list)
    success: bool
    error: str | None = None


class EmbeddingStats(BaseModel):
    """Aggregate view over a list of :class:`EmbeddingResult`."""

    model_config = ConfigDict(frozen=True)

    total_processed: int = Field(default=0, ge=0)
    successful: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    success_rate: float = Field(default=0.0, ge=0, le=1)
    average_dimensions: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Keywords and BM25
# ---------------------------------------------------------------------------
class CorpusStats(BaseModel):
    """Corpus-wide statistics consumed by the BM25 scorer.

    ``total_documents`` counts chunks, because each chunk is the unit a
    keyword is scored against.
    """

    model_config = ConfigDict(frozen=True)

    total_documents: int = Field(default=1, ge=0)
    average_document_length: float = Field(default=100.0, ge=0)
    term_document_frequency: dict[str, int] = Field(default_factory=dict)


class BM25Score(BaseModel):
    """BM25 relevance of one term for one document, with its components."""

    model_config = ConfigDict(frozen=True)

    term: str
    score: float = Field(ge=0)
    idf: float
    normalized_tf: float = Field(ge=0)
    term_frequency: int = Field(ge=0)
    document_frequency: int = Field(ge=0)


class KeywordCandidate(BaseModel):
    """A term proposed by the LLM with its self-reported confidence."""

    model_config = ConfigDict(frozen=True)

    term: str = Field(min_length=1, max_length=50)
    confidence: float = Field(ge=0, le=1)


class ScoredKeyword(BaseModel):
    """A keyword that survived filtering, ready for persistence."""

    model_config = ConfigDict(frozen=True)

    term: str
    bm25_score: float = Field(ge=0)
    term_frequency: int = Field(ge=0)
    document_frequency: int = Field(ge=0)
    confidence: float = Field(ge=0, le=1)
    vector: list[float] = Field(default_factory=list)

    @property
    def rank_score(self) -> float:
        return self.bm25_score * self.confidence


class Keyword(BaseModel):
    """A persisted keyword row attached to a chunk."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    term: str
    bm25_score: float = Field(ge=0)
    term_frequency: int = Field(ge=0)
    document_frequency: int = Field(ge=0)
    vector: list[float] = Field(min_length=1)


class KeywordResult(BaseModel):
    """Per-chunk outcome of the keyword extraction service."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    keywords: list[ScoredKeyword] = Field(default_factory=list)
    success: bool
    error: str | None = None


class KeywordStats(BaseModel):
    """Aggregate view over a list of :class:`KeywordResult`."""

    model_config = ConfigDict(frozen=True)

    chunks_processed: int = Field(default=0, ge=0)
    successful: int = Field(default=0, ge=0)
    total_keywords: int = Field(default=0, ge=0)
    average_keywords_per_chunk: float = Field(default=0.0, ge=0)
    success_rate: float = Field(default=0.0, ge=0, le=1)
    top_keywords: list[tuple[str, int]] = Field(
        default_factory=list,
        description="Most frequent terms with the number of chunks they appear in.",
    )


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------
class SearchMethod(str, Enum):  # noqa: UP042
    """Which search produced a :class:`QueryResult`."""

    VECTOR = "vector"
    KEYWORD = "keyword"
    HYBRID = "hybrid"


class QueryResult(BaseModel):
    """One ranked chunk returned by the hybrid store."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    similarity_score: float
    search_method: SearchMethod
