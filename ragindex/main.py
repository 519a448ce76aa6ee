"""Composition root.

Builds every provider and service from :class:`Settings` with explicit
constructor injection.  The platform-specific pieces (the collector that
walks a scope and the extractor that fetches a link) are supplied by the
caller, since they depend on which chat platform and scraper are in use.

Typical use::

    settings = load_settings()
    configure_logging(settings.log_level, app_env=settings.app_env)
    components = build_components(settings, collector, extractor)
    await components.initialize()
    job = await components.orchestrator.submit(scope_id, scope_name, user_id, sink)
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from ragindex.config.settings import Settings
from ragindex.interfaces.content_collector import IContentCollector
from ragindex.interfaces.content_extractor import IContentExtractor
from ragindex.interfaces.embedding_provider import IEmbeddingProvider
from ragindex.interfaces.llm_provider import ILLMProvider
from ragindex.interfaces.status_sink import IStatusSink
from ragindex.models.job import IngestionPhase
from ragindex.pipeline.job_manager import JobManager
from ragindex.pipeline.orchestrator import IngestionOrchestrator
from ragindex.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from ragindex.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from ragindex.providers.llm.ollama_provider import OllamaLLMProvider
from ragindex.providers.llm.openai_provider import OpenAILLMProvider
from ragindex.providers.sink.logging_sink import LoggingStatusSink
from ragindex.providers.store.sqlite_hybrid_store import SQLiteHybridStore
from ragindex.services.bm25_scorer import BM25Scorer
from ragindex.services.chunking_service import ChunkingService
from ragindex.services.embedding_service import EmbeddingService
from ragindex.services.keyword_extractor import KeywordExtractionService, KeywordExtractor
from ragindex.services.retrieval_service import RetrievalService
from ragindex.services.semantic_chunker import SemanticChunker
from ragindex.utils.logging import get_logger
from ragindex.utils.retry import RetryPolicy, retry_all

logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def build_llm_provider(settings: Settings) -> ILLMProvider:
    """OpenAI (or a compatible endpoint) when a key is set, else local Ollama."""
    if settings.uses_openai():
        return OpenAILLMProvider(settings=settings)
    return OllamaLLMProvider(settings=settings)


def build_embedding_provider(settings: Settings) -> IEmbeddingProvider:
    """Same selection rule as the LLM, so both come from one backend."""
    if settings.uses_openai():
        return OpenAIEmbeddingProvider(settings=settings)
    return NomicEmbeddingProvider(settings=settings)


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


@dataclass
class Components:
    """Everything a host application needs, already wired."""

    settings: Settings
    store: SQLiteHybridStore
    llm: ILLMProvider
    embedding_provider: IEmbeddingProvider
    job_manager: JobManager
    orchestrator: IngestionOrchestrator
    retrieval: RetrievalService

    async def initialize(self) -> None:
        """Create the database schema; safe to call on every start."""
        await self.store.initialize()


def build_components(
    settings: Settings,
    collector: IContentCollector,
    extractor: IContentExtractor,
    llm: ILLMProvider | None = None,
    embedding_provider: IEmbeddingProvider | None = None,
    status_sink: IStatusSink | None = None,
) -> Components:
    """Wire providers and services from ``settings``.

    ``llm`` and ``embedding_provider`` override the settings-based
    selection (tests pass fakes here).  ``status_sink`` receives progress of
    jobs submitted without a sink of their own; it defaults to
    :class:`LoggingStatusSink`.
    """
    llm = llm or build_llm_provider(settings)
    embedding_provider = embedding_provider or build_embedding_provider(settings)
    dimension = settings.embedding_dimension or embedding_provider.get_dimension()

    store = SQLiteHybridStore(db_path=settings.database_path, dimension=dimension)

    embedding_retry = RetryPolicy(
        max_attempts=settings.embedding_max_attempts,
        base_delay=settings.embedding_retry_delay,
        rate_limit_delay=settings.embedding_rate_limit_delay,
    )

    chunking = ChunkingService(
        chunker=SemanticChunker(
            llm,
            retry_policy=RetryPolicy(
                max_attempts=settings.chunk_llm_attempts,
                base_delay=1.0,
                classifier=retry_all,
            ),
        ),
        store=store,
        max_chunk_size=settings.chunk_max_size,
        language=settings.chunk_language,
    )
    embedding = EmbeddingService(
        provider=embedding_provider,
        store=store,
        batch_size=settings.embedding_batch_size,
        batch_delay=settings.embedding_batch_delay,
        retry_policy=embedding_retry,
        fallback_concurrency=settings.embedding_fallback_concurrency,
    )
    keywords = KeywordExtractionService(
        extractor=KeywordExtractor(
            llm=llm,
            scorer=BM25Scorer(k1=settings.bm25_k1, b=settings.bm25_b),
            embedding_provider=embedding_provider,
            max_keywords=settings.keyword_max_keywords,
            min_confidence=settings.keyword_min_confidence,
            min_bm25_score=settings.keyword_min_bm25,
            llm_retry=RetryPolicy(
                max_attempts=settings.keyword_llm_attempts,
                base_delay=settings.keyword_retry_delay,
                classifier=retry_all,
            ),
            embedding_retry=embedding_retry,
            fallback_concurrency=settings.embedding_fallback_concurrency,
        ),
        store=store,
        concurrency=settings.keyword_concurrency,
    )

    job_manager = JobManager(store)
    orchestrator = IngestionOrchestrator(
        job_manager=job_manager,
        store=store,
        collector=collector,
        extractor=extractor,
        chunking_service=chunking,
        embedding_service=embedding,
        keyword_service=keywords,
        phase_weights={
            IngestionPhase(name): weight for name, weight in settings.phase_weights().items()
        },
        extract_concurrency=settings.extract_concurrency,
        extract_timeout=settings.extract_timeout_seconds,
        status_update_interval=settings.status_update_interval,
        default_status_sink=status_sink or LoggingStatusSink(),
    )
    retrieval = RetrievalService(
        embedding_provider=embedding_provider,
        store=store,
        default_limit=settings.search_limit,
        vector_threshold=settings.search_threshold,
        keyword_weight=settings.search_keyword_weight,
        bm25_threshold=settings.search_bm25_threshold,
    )

    logger.info(
        "components_built",
        llm=llm.get_provider_name(),
        embedding=embedding_provider.get_provider_name(),
        dimension=dimension,
        database=str(settings.database_path),
    )
    return Components(
        settings=settings,
        store=store,
        llm=llm,
        embedding_provider=embedding_provider,
        job_manager=job_manager,
        orchestrator=orchestrator,
        retrieval=retrieval,
    )
