"""Ingestion and retrieval services."""

from ragindex.services.bm25_scorer import BM25Scorer
from ragindex.services.chunking_service import ChunkingService
from ragindex.services.embedding_service import EmbeddingService
from ragindex.services.keyword_extractor import KeywordExtractionService, KeywordExtractor
from ragindex.services.retrieval_service import RetrievalService
from ragindex.services.semantic_chunker import SemanticChunker

__all__ = [
    "BM25Scorer",
    "ChunkingService",
    "EmbeddingService",
    "KeywordExtractionService",
    "KeywordExtractor",
    "RetrievalService",
    "SemanticChunker",
]
