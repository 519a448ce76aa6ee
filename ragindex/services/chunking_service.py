"""Chunk source documents and persist the chunks.

Wraps :class:`~ragindex.services.semantic_chunker.SemanticChunker` for
the ingestion pipeline: each document is chunked, its chunks are written
to the hybrid store in index order, and a document that fails is logged
and skipped so the rest of the batch still lands.
"""

from __future__ import annotations

import uuid

import structlog

from ragindex.interfaces.hybrid_store import IHybridStore
from ragindex.models.job import StepProgressCallback
from ragindex.models.rag import Chunk, ChunkingStats, SourceDocument
from ragindex.services.semantic_chunker import SemanticChunker

logger = structlog.get_logger(logger_name=__name__)


class ChunkingService:
    """Turn source documents into persisted :class:`Chunk` rows."""

    def __init__(
        self,
        chunker: SemanticChunker,
        store: IHybridStore,
        max_chunk_size: int = 1000,
        language: str = "English",
    ) -> None:
        self._chunker = chunker
        self._store = store
        self._max_chunk_size = max_chunk_size
        self._language = language

    async def process_documents(
        self,
        documents: list[SourceDocument],
        on_progress: StepProgressCallback | None = None,
    ) -> tuple[list[Chunk], ChunkingStats]:
        """Chunk and persist every document.

        Returns the persisted chunks (document order, then index order)
        and a summary of the pass.
        """
        logger.info(
            "chunking_start",
            documents=len(documents),
            max_chunk_size=self._max_chunk_size,
        )
        all_chunks: list[Chunk] = []
        failed = 0

        for position, document in enumerate(documents, start=1):
            try:
                await self._chunk_document(document, all_chunks)
            except Exception as exc:
                failed += 1
                logger.warning(
                    "chunking_document_failed",
                    source_document_id=document.id,
                    content_length=len(document.full_text),
                    error=str(exc),
                )
            if on_progress is not None:
                await on_progress(position, len(documents))

        stats = self.get_stats(all_chunks, documents_chunked=len(documents) - failed, failed=failed)
        logger.info(
            "chunking_complete",
            documents=len(documents),
            documents_failed=failed,
            total_chunks=stats.total_chunks,
        )
        return all_chunks, stats

    async def _chunk_document(self, document: SourceDocument, persisted: list[Chunk]) -> None:
        # Chunks written before a failure stay in ``persisted`` so they
        # still get embeddings and keywords.
        pieces = await self._chunker.chunk(
            document.full_text,
            max_chunk_size=self._max_chunk_size,
            language=self._language,
        )
        for piece in pieces:
            chunk = Chunk(
                id=str(uuid.uuid4()),
                source_document_id=document.id,
                content=piece.content,
                index=piece.index,
                metadata={
                    "chunk_length": len(piece.content),
                    "total_chunks": len(pieces),
                    "url": document.url,
                    "title": document.title,
                },
            )
            await self._store.insert_chunk(chunk)
            persisted.append(chunk)

        logger.debug(
            "document_chunked",
            source_document_id=document.id,
            chunks=len(pieces),
        )

    @staticmethod
    def get_stats(
        chunks: list[Chunk],
        documents_chunked: int = 0,
        failed: int = 0,
    ) -> ChunkingStats:
        """Summarise chunk lengths for logging and job reports."""
        if not chunks:
            return ChunkingStats(documents_chunked=documents_chunked, documents_failed=failed)
        lengths = [len(c.content) for c in chunks]
        return ChunkingStats(
            documents_chunked=documents_chunked,
            documents_failed=failed,
            total_chunks=len(chunks),
            average_chunk_length=round(sum(lengths) / len(lengths), 1),
            min_chunk_length=min(lengths),
            max_chunk_length=max(lengths),
        )
