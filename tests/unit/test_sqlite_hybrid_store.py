"""Unit tests for SQLiteHybridStore: corpus tables, search and job records."""

from __future__ import annotations

import asyncio
import os
import tempfile

import pytest

from ragindex.models.job import IngestionJob, JobStatus
from ragindex.models.rag import Chunk, ScoredKeyword, SearchMethod, SourceDocument
from ragindex.providers.store.sqlite_hybrid_store import SQLiteHybridStore
from ragindex.utils.errors import (
    InvalidTransitionError,
    JobAlreadyRunningError,
    NotFoundError,
    ValidationError,
)


def _document(doc_id: str = "doc-1") -> SourceDocument:
    return SourceDocument(
        id=doc_id,
        url=f"https://example.com/{doc_id}",
        title="Example",
        full_text="full text",
        scope_id="scope-1",
    )


def _chunk(chunk_id: str, index: int, content: str = "chunk content", doc_id: str = "doc-1"):
    return Chunk(id=chunk_id, source_document_id=doc_id, content=content, index=index)


def _keyword(term: str, bm25: float, vector: list[float]) -> ScoredKeyword:
    return ScoredKeyword(
        term=term,
        bm25_score=bm25,
        term_frequency=1,
        document_frequency=1,
        confidence=0.9,
        vector=vector,
    )


def _job(job_id: str, scope_id: str = "scope-1", status: JobStatus = JobStatus.PENDING):
    return IngestionJob(
        id=job_id, scope_id=scope_id, scope_name="General", initiator="user-1", status=status
    )


@pytest.fixture
async def seeded(store: SQLiteHybridStore) -> SQLiteHybridStore:
    """Two chunks: A points along x, B along y."""
    await store.insert_source_document(_document())
    await store.insert_chunk(_chunk("A", 0, "vector databases store embeddings"))
    await store.insert_chunk(_chunk("B", 1, "lexical ranking"))
    await store.insert_embedding("A", [1.0, 0.0, 0.0])
    await store.insert_embedding("B", [0.0, 1.0, 0.0])
    return store


class TestCorpusWrites:
    @pytest.mark.asyncio
    async def test_chunk_roundtrip(self, store) -> None:
        await store.insert_source_document(_document())
        chunk = Chunk(
            id="c1",
            source_document_id="doc-1",
            content="hello",
            index=0,
            metadata={"url": "https://example.com/doc-1"},
        )
        await store.insert_chunk(chunk)

        loaded = await store.get_chunk("c1")
        assert loaded is not None
        assert loaded.content == "hello"
        assert loaded.metadata == {"url": "https://example.com/doc-1"}
        assert await store.get_chunk("missing") is None

    @pytest.mark.asyncio
    async def test_chunk_requires_document(self, store) -> None:
        with pytest.raises(ValidationError):
            await store.insert_chunk(_chunk("c1", 0, doc_id="nope"))

    @pytest.mark.asyncio
    async def test_duplicate_index_rejected(self, store) -> None:
        await store.insert_source_document(_document())
        await store.insert_chunk(_chunk("c1", 0))
        with pytest.raises(ValidationError):
            await store.insert_chunk(_chunk("c2", 0))

    @pytest.mark.asyncio
    async def test_embedding_upsert_and_unknown_chunk(self, seeded) -> None:
        await seeded.insert_embedding("A", [0.0, 0.0, 1.0])
        assert await seeded.count_embeddings() == 2
        with pytest.raises(ValidationError):
            await seeded.insert_embedding("ghost", [1.0, 0.0, 0.0])

    @pytest.mark.asyncio
    async def test_dimension_enforced(self) -> None:
        tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
        tmp.close()
        try:
            store = SQLiteHybridStore(db_path=tmp.name, dimension=3)
            await store.initialize()
            await store.insert_source_document(_document())
            await store.insert_chunk(_chunk("c1", 0))
            with pytest.raises(ValidationError, match="expected 3"):
                await store.insert_embedding("c1", [1.0, 0.0])
            with pytest.raises(ValidationError):
                await store.insert_keywords("c1", [_keyword("x", 1.0, [1.0])])
        finally:
            for suffix in ("", "-wal", "-shm"):
                if os.path.exists(tmp.name + suffix):
                    os.unlink(tmp.name + suffix)

    @pytest.mark.asyncio
    async def test_delete_cascades(self, seeded) -> None:
        await seeded.insert_keywords("A", [_keyword("vector", 1.0, [1.0, 0.0, 0.0])])

        assert await seeded.delete_chunk("A") is True
        assert await seeded.get_chunk("A") is None
        assert await seeded.count_embeddings() == 1
        assert await seeded.count_keywords() == 0
        assert await seeded.delete_chunk("A") is False

    @pytest.mark.asyncio
    async def test_list_chunks_in_order(self, seeded) -> None:
        chunks = await seeded.list_chunks("doc-1")
        assert [c.index for c in chunks] == [0, 1]


class TestCorpusStats:
    @pytest.mark.asyncio
    async def test_empty_corpus(self, store) -> None:
        stats = await store.get_corpus_stats()
        assert stats.total_documents == 0
        assert stats.average_document_length == 100.0
        assert stats.term_document_frequency == {}

    @pytest.mark.asyncio
    async def test_counts_chunks_and_keyword_frequencies(self, store) -> None:
        await store.insert_source_document(_document())
        await store.insert_chunk(_chunk("c1", 0, "a" * 50))
        await store.insert_chunk(_chunk("c2", 1, "b" * 100))
        vector = [1.0, 0.0]
        await store.insert_keywords("c1", [_keyword("qdrant", 1.0, vector)])
        await store.insert_keywords(
            "c2", [_keyword("qdrant", 1.0, vector), _keyword("bm25", 1.0, vector)]
        )

        stats = await store.get_corpus_stats()

        assert stats.total_documents == 2
        assert stats.average_document_length == pytest.approx(15.0)
        assert stats.term_document_frequency == {"qdrant": 2, "bm25": 1}
        assert await store.count_keywords("c2") == 2


class TestSearch:
    @pytest.mark.asyncio
    async def test_vector_search_threshold_is_strict(self, seeded) -> None:
        results = await seeded.vector_search([1.0, 0.0, 0.0], limit=5, threshold=0.0)
        assert [r.chunk_id for r in results] == ["A"]
        assert results[0].similarity_score == pytest.approx(1.0)
        assert results[0].search_method is SearchMethod.VECTOR
        assert results[0].metadata["chunk_index"] == 0

    @pytest.mark.asyncio
    async def test_vector_search_empty_store(self, store) -> None:
        assert await store.vector_search([1.0, 0.0], limit=5, threshold=0.0) == []

    @pytest.mark.asyncio
    async def test_vector_search_rejects_bad_query(self, seeded) -> None:
        with pytest.raises(ValidationError):
            await seeded.vector_search([0.0, 0.0, 0.0])
        with pytest.raises(ValidationError):
            await seeded.vector_search([1.0, 0.0, 0.0], limit=0)

    @pytest.mark.asyncio
    async def test_keyword_search_best_keyword_per_chunk(self, seeded) -> None:
        await seeded.insert_keywords(
            "A",
            [
                _keyword("vector", 2.0, [1.0, 0.0, 0.0]),
                _keyword("databases", 1.0, [1.0, 0.1, 0.0]),
                _keyword("rare", 0.05, [1.0, 0.0, 0.0]),
            ],
        )
        await seeded.insert_keywords("B", [_keyword("lexical", 3.0, [0.0, 1.0, 0.0])])

        results = await seeded.keyword_search([1.0, 0.0, 0.0], limit=5, vector_threshold=0.5)

        assert [r.chunk_id for r in results] == ["A"]
        hit = results[0]
        assert hit.search_method is SearchMethod.KEYWORD
        assert hit.metadata["matched_keyword"] == "vector"
        assert hit.similarity_score == pytest.approx(2.0)
        assert hit.metadata["combined_score"] == pytest.approx(2.0)

    @pytest.mark.asyncio
    async def test_hybrid_search_tags_overlap(self, seeded) -> None:
        await seeded.insert_keywords("A", [_keyword("vector", 0.5, [1.0, 0.0, 0.0])])

        results = await seeded.hybrid_search(
            [1.0, 0.0, 0.0], limit=5, vector_threshold=0.7, keyword_weight=0.5
        )

        assert len(results) == 1
        assert results[0].search_method is SearchMethod.HYBRID
        assert results[0].similarity_score == pytest.approx(1.0 * 0.5 + 0.5 * 0.5)

    @pytest.mark.asyncio
    async def test_hybrid_search_honours_bm25_threshold(self, seeded) -> None:
        await seeded.insert_keywords("A", [_keyword("vector", 0.5, [1.0, 0.0, 0.0])])

        results = await seeded.hybrid_search(
            [1.0, 0.0, 0.0],
            limit=5,
            vector_threshold=0.7,
            keyword_weight=0.5,
            bm25_threshold=1.0,
        )

        assert len(results) == 1
        assert results[0].search_method is SearchMethod.VECTOR
        assert results[0].similarity_score == pytest.approx(1.0 * 0.5)


class TestJobs:
    @pytest.mark.asyncio
    async def test_create_and_get(self, store) -> None:
        await store.create_job_if_idle(_job("j1"))
        loaded = await store.get_job("j1")
        assert loaded is not None
        assert loaded.status is JobStatus.PENDING
        assert await store.get_job("missing") is None

    @pytest.mark.asyncio
    async def test_create_rejected_while_running(self, store) -> None:
        job = _job("j1")
        await store.create_job_if_idle(job)
        running = job.model_copy(update={"status": JobStatus.RUNNING})
        await store.update_job(running, expected_status=JobStatus.PENDING)

        with pytest.raises(JobAlreadyRunningError) as exc_info:
            await store.create_job_if_idle(_job("j2"))
        assert exc_info.value.running_job_id == "j1"

        # Other scopes are unaffected.
        await store.create_job_if_idle(_job("j3", scope_id="scope-2"))

    @pytest.mark.asyncio
    async def test_unique_index_blocks_second_running(self, store) -> None:
        await store.create_job_if_idle(_job("j1"))
        await store.create_job_if_idle(_job("j2"))
        await store.update_job(
            (await store.get_job("j1")).model_copy(update={"status": JobStatus.RUNNING}),
            expected_status=JobStatus.PENDING,
        )

        with pytest.raises(JobAlreadyRunningError):
            await store.update_job(
                (await store.get_job("j2")).model_copy(update={"status": JobStatus.RUNNING}),
                expected_status=JobStatus.PENDING,
            )
        assert (await store.get_running_job("scope-1")).id == "j1"

    @pytest.mark.asyncio
    async def test_concurrent_creates_leave_one_running(self, store) -> None:
        results = await asyncio.gather(
            *(
                store.create_job_if_idle(_job(f"j{i}", status=JobStatus.RUNNING))
                for i in range(5)
            ),
            return_exceptions=True,
        )

        created = [r for r in results if isinstance(r, IngestionJob)]
        rejected = [r for r in results if isinstance(r, JobAlreadyRunningError)]
        assert len(created) == 1
        assert len(rejected) == 4

    @pytest.mark.asyncio
    async def test_update_is_compare_and_set(self, store) -> None:
        job = _job("j1")
        await store.create_job_if_idle(job)

        with pytest.raises(InvalidTransitionError):
            await store.update_job(
                job.model_copy(update={"status": JobStatus.COMPLETED}),
                expected_status=JobStatus.RUNNING,
            )
        with pytest.raises(NotFoundError):
            await store.update_job(_job("ghost"), expected_status=JobStatus.PENDING)

    @pytest.mark.asyncio
    async def test_list_jobs_newest_first(self, store) -> None:
        for i in range(3):
            await store.create_job_if_idle(_job(f"j{i}"))
        jobs = await store.list_jobs("scope-1", limit=2)
        assert [j.id for j in jobs] == ["j2", "j1"]
