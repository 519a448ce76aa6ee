"""Pydantic models shared across ragindex."""

from ragindex.models.job import (
    DEFAULT_PHASE_WEIGHTS,
    IngestionJob,
    IngestionPhase,
    IngestionReport,
    JobCounters,
    JobStatus,
    ProgressUpdate,
    StepProgressCallback,
)
from ragindex.models.rag import (
    BM25Score,
    Chunk,
    ChunkingStats,
    CorpusStats,
    Embedding,
    EmbeddingResult,
    EmbeddingStats,
    Keyword,
    KeywordCandidate,
    KeywordResult,
    KeywordStats,
    QueryResult,
    ScoredKeyword,
    SearchMethod,
    SourceDocument,
    TextChunk,
)

__all__ = [
    "BM25Score",
    "Chunk",
    "ChunkingStats",
    "CorpusStats",
    "DEFAULT_PHASE_WEIGHTS",
    "Embedding",
    "EmbeddingResult",
    "EmbeddingStats",
    "IngestionJob",
    "IngestionPhase",
    "IngestionReport",
    "JobCounters",
    "JobStatus",
    "Keyword",
    "KeywordCandidate",
    "KeywordResult",
    "KeywordStats",
    "ProgressUpdate",
    "QueryResult",
    "ScoredKeyword",
    "SearchMethod",
    "SourceDocument",
    "StepProgressCallback",
    "TextChunk",
]
