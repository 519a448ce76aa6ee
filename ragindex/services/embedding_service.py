"""Batched chunk embedding with per-item fallback.

Chunks are embedded in fixed-size batches, one batch call at a time with
a short pause between batches to stay under provider rate limits.  When a
batch call fails, or returns the wrong number of vectors, every text of
that batch is retried on its own under the retry policy.  Each vector is
persisted as soon as it exists, so one bad chunk never costs the others
their embeddings.

:meth:`EmbeddingService.embed_many` never raises for the batch as a
whole; per-chunk outcomes come back as :class:`EmbeddingResult`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from ragindex.interfaces.embedding_provider import IEmbeddingProvider
from ragindex.interfaces.hybrid_store import IHybridStore
from ragindex.models.job import StepProgressCallback
from ragindex.models.rag import Chunk, EmbeddingResult, EmbeddingStats
from ragindex.utils.concurrency import throttled_gather
from ragindex.utils.retry import RetryPolicy

logger = structlog.get_logger(logger_name=__name__)


def default_embedding_retry() -> RetryPolicy:
    """3 attempts, 1s x attempt between tries, 5s after a rate limit."""
    return RetryPolicy(max_attempts=3, base_delay=1.0, rate_limit_delay=5.0)


async def embed_texts_with_fallback(
    provider: IEmbeddingProvider,
    texts: list[str],
    retry_policy: RetryPolicy,
    fallback_concurrency: int = 3,
) -> list[list[float] | None]:
    """Embed ``texts`` with one batch call, falling back to one call per text.

    Returns a list aligned with ``texts``; an entry is ``None`` when that
    text could not be embedded even after retries.
    """
    if not texts:
        return []

    try:
        vectors = await provider.embed_batch(texts)
        if len(vectors) == len(texts) and all(vectors):
            return list(vectors)
        logger.warning(
            "embedding_batch_size_mismatch",
            expected=len(texts),
            received=len(vectors),
        )
    except Exception as exc:
        logger.warning("embedding_batch_failed", batch_size=len(texts), error=str(exc))

    async def _one(text: str) -> list[float]:
        return await retry_policy.run(
            lambda: provider.embed(text),
            operation="embed_single",
            logger=logger,
            text_length=len(text),
        )

    outcomes = await throttled_gather([_one(t) for t in texts], limit=fallback_concurrency)
    results: list[list[float] | None] = []
    for text, outcome in zip(texts, outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException) or not outcome:
            logger.warning(
                "embedding_single_failed",
                text_preview=text[:80],
                error=str(outcome) if isinstance(outcome, BaseException) else "empty vector",
            )
            results.append(None)
        else:
            results.append(list(outcome))
    return results


class EmbeddingService:
    """Embed chunks and persist their vectors.

    Parameters
    ----------
    provider:
        Embedding backend.
    store:
        Where vectors are persisted (``insert_embedding``).
    batch_size:
        Chunks per batch call.
    batch_delay:
        Seconds to wait between batches (not after the last one).
    retry_policy:
        Policy for individual fallback calls.
    fallback_concurrency:
        Individual calls in flight while a failed batch is retried.
    sleep:
        Awaitable sleep used for the inter-batch delay; tests inject a stub.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        store: IHybridStore,
        batch_size: int = 10,
        batch_delay: float = 0.5,
        retry_policy: RetryPolicy | None = None,
        fallback_concurrency: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._provider = provider
        self._store = store
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._retry = retry_policy or default_embedding_retry()
        self._fallback_concurrency = fallback_concurrency
        self._sleep = sleep

    async def embed_many(
        self,
        chunks: list[Chunk],
        on_progress: StepProgressCallback | None = None,
    ) -> list[EmbeddingResult]:
        """Embed and persist every chunk; one result per chunk, input order."""
        total = len(chunks)
        batches = [chunks[i : i + self._batch_size] for i in range(0, total, self._batch_size)]
        logger.info(
            "embedding_start",
            chunks=total,
            batches=len(batches),
            batch_size=self._batch_size,
            provider=self._provider.get_provider_name(),
        )

        results: list[EmbeddingResult] = []
        for batch_number, batch in enumerate(batches, start=1):
            results.extend(await self._embed_batch(batch))
            if on_progress is not None:
                await on_progress(len(results), total)
            if batch_number < len(batches) and self._batch_delay > 0:
                await self._sleep(self._batch_delay)

        stats = self.get_stats(results)
        logger.info(
            "embedding_complete",
            successful=stats.successful,
            failed=stats.failed,
            success_rate=stats.success_rate,
        )
        return results

    async def _embed_batch(self, batch: list[Chunk]) -> list[EmbeddingResult]:
        vectors = await embed_texts_with_fallback(
            self._provider,
            [c.content for c in batch],
            self._retry,
            self._fallback_concurrency,
        )
        results: list[EmbeddingResult] = []
        for chunk, vector in zip(batch, vectors):
            if vector is None:
                results.append(
                    EmbeddingResult(chunk_id=chunk.id, success=False, error="embedding failed")
                )
                continue
            results.append(await self._persist(chunk.id, vector))
        return results

    async def _persist(self, chunk_id: str, vector: list[float]) -> EmbeddingResult:
        try:
            await self._store.insert_embedding(chunk_id, vector)
        except Exception as exc:
            logger.warning("embedding_persist_failed", chunk_id=chunk_id, error=str(exc))
            return EmbeddingResult(chunk_id=chunk_id, success=False, error=str(exc))
        return EmbeddingResult(chunk_id=chunk_id, vector=vector, success=True)

    @staticmethod
    def get_stats(results: list[EmbeddingResult]) -> EmbeddingStats:
        """Summarise a list of results; dimensions averaged over successes."""
        total = len(results)
        successes = [r for r in results if r.success]
        average_dimensions = (
            round(sum(len(r.vector) for r in successes) / len(successes)) if successes else 0
        )
        return EmbeddingStats(
            total_processed=total,
            successful=len(successes),
            failed=total - len(successes),
            success_rate=round(len(successes) / total, 4) if total else 0.0,
            average_dimensions=average_dimensions,
        )
