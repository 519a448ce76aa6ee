"""Unit tests for EmbeddingService and the batch-then-single fallback."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from ragindex.interfaces.hybrid_store import IHybridStore
from ragindex.models.rag import Chunk, EmbeddingResult
from ragindex.services.embedding_service import EmbeddingService, embed_texts_with_fallback
from ragindex.utils.errors import DatabaseError
from ragindex.utils.retry import RetryPolicy
from tests.conftest import FakeEmbeddingProvider


def _chunks(count: int) -> list[Chunk]:
    return [
        Chunk(id=f"c{i}", source_document_id="doc", content=f"chunk text {i}", index=i)
        for i in range(count)
    ]


@pytest.fixture
def mock_store() -> IHybridStore:
    store = MagicMock(spec=IHybridStore)
    store.insert_embedding = AsyncMock(return_value=None)
    return store


class TestEmbedTextsWithFallback:
    @pytest.mark.asyncio
    async def test_batch_path(self, no_sleep) -> None:
        provider = FakeEmbeddingProvider()
        vectors = await embed_texts_with_fallback(
            provider, ["a", "b"], RetryPolicy(sleep=no_sleep)
        )
        assert len(vectors) == 2
        assert provider.single_calls == []

    @pytest.mark.asyncio
    async def test_batch_failure_degrades_to_singles(self, no_sleep) -> None:
        provider = FakeEmbeddingProvider(fail_batch=True, fail_texts={"bad"})
        vectors = await embed_texts_with_fallback(
            provider, ["good", "bad"], RetryPolicy(max_attempts=3, sleep=no_sleep)
        )

        assert vectors[0] is not None
        assert vectors[1] is None
        assert provider.single_calls.count("bad") == 3
        assert provider.single_calls.count("good") == 1

    @pytest.mark.asyncio
    async def test_generic_error_on_single_call_is_retried(self, no_sleep) -> None:
        provider = FakeEmbeddingProvider(fail_batch=True)
        provider.embed = AsyncMock(side_effect=[RuntimeError("empty response"), [0.1, 0.2, 0.3]])

        vectors = await embed_texts_with_fallback(
            provider, ["flaky"], RetryPolicy(max_attempts=3, base_delay=1.0, sleep=no_sleep)
        )

        assert vectors == [[0.1, 0.2, 0.3]]
        assert provider.embed.await_count == 2
        assert no_sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_empty_input(self, no_sleep) -> None:
        provider = FakeEmbeddingProvider()
        assert await embed_texts_with_fallback(provider, [], RetryPolicy(sleep=no_sleep)) == []
        assert provider.batch_calls == []


class TestEmbedMany:
    @pytest.mark.asyncio
    async def test_batches_and_delay_between_only(self, mock_store, no_sleep) -> None:
        provider = FakeEmbeddingProvider()
        service = EmbeddingService(
            provider, mock_store, batch_size=2, batch_delay=0.5, sleep=no_sleep
        )
        progress: list[tuple[int, int]] = []

        async def _on_progress(done: int, total: int) -> None:
            progress.append((done, total))

        results = await service.embed_many(_chunks(5), on_progress=_on_progress)

        assert [len(b) for b in provider.batch_calls] == [2, 2, 1]
        assert no_sleep.delays == [0.5, 0.5]
        assert [r.chunk_id for r in results] == ["c0", "c1", "c2", "c3", "c4"]
        assert all(r.success for r in results)
        assert mock_store.insert_embedding.await_count == 5
        assert progress == [(2, 5), (4, 5), (5, 5)]

    @pytest.mark.asyncio
    async def test_single_failure_isolated(self, mock_store, no_sleep) -> None:
        provider = FakeEmbeddingProvider(fail_batch=True, fail_texts={"chunk text 1"})
        service = EmbeddingService(
            provider,
            mock_store,
            batch_size=10,
            batch_delay=0,
            retry_policy=RetryPolicy(max_attempts=2, base_delay=1.0, sleep=no_sleep),
        )

        results = await service.embed_many(_chunks(3))

        assert [r.success for r in results] == [True, False, True]
        assert results[1].error == "embedding failed"
        assert mock_store.insert_embedding.await_count == 2

    @pytest.mark.asyncio
    async def test_persist_failure_reported(self, mock_store, no_sleep) -> None:
        mock_store.insert_embedding = AsyncMock(
            side_effect=[None, DatabaseError(message="disk full")]
        )
        service = EmbeddingService(FakeEmbeddingProvider(), mock_store, sleep=no_sleep)

        results = await service.embed_many(_chunks(2))

        assert results[0].success
        assert not results[1].success
        assert "disk full" in results[1].error

    @pytest.mark.asyncio
    async def test_no_chunks(self, mock_store) -> None:
        service = EmbeddingService(FakeEmbeddingProvider(), mock_store)
        assert await service.embed_many([]) == []

    def test_invalid_batch_size(self, mock_store) -> None:
        with pytest.raises(ValueError):
            EmbeddingService(FakeEmbeddingProvider(), mock_store, batch_size=0)


class TestGetStats:
    def test_rates_and_dimensions(self) -> None:
        results = [
            EmbeddingResult(chunk_id="a", vector=[0.1] * 4, success=True),
            EmbeddingResult(chunk_id="b", vector=[0.1] * 4, success=True),
            EmbeddingResult(chunk_id="c", success=False, error="x"),
        ]
        stats = EmbeddingService.get_stats(results)
        assert stats.successful == 2
        assert stats.failed == 1
        assert stats.success_rate == 0.6667
        assert stats.average_dimensions == 4

    def test_empty(self) -> None:
        assert EmbeddingService.get_stats([]).success_rate == 0.0
