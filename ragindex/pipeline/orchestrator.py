"""Ingestion orchestrator: one scope in, chunks, embeddings and keywords out.

Phases run in order and each owns a share of the progress bar:

    fetch (30) → extract (25) → chunk (15) → ┬ embed   (15)
                                             └ keyword (15)

Embedding and keyword extraction both read the chunk list and nothing
else, so they run side by side.  Corpus statistics for BM25 are read once
when the job starts; chunks written by this job do not shift the scores
of its own keywords.

Failure handling follows the job record, not the call stack: a link, a
document or a chunk that fails is logged and counted, and the phase goes
on.  Anything that escapes a phase fails the job with its message and
posts a final status update; :meth:`IngestionOrchestrator.run_job` itself
does not raise.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from urllib.parse import urlparse

import structlog

from ragindex.interfaces.content_collector import (
    CollectedItem,
    FetchProgress,
    IContentCollector,
)
from ragindex.interfaces.content_extractor import IContentExtractor
from ragindex.interfaces.hybrid_store import IHybridStore
from ragindex.interfaces.status_sink import IStatusSink
from ragindex.models.job import (
    IngestionJob,
    IngestionPhase,
    IngestionReport,
    JobStatus,
)
from ragindex.models.rag import Chunk, CorpusStats, SourceDocument
from ragindex.pipeline.job_manager import JobManager
from ragindex.pipeline.progress_tracker import (
    ThrottledStatusReporter,
    WeightedProgressTracker,
)
from ragindex.services.chunking_service import ChunkingService
from ragindex.services.embedding_service import EmbeddingService
from ragindex.services.keyword_extractor import KeywordExtractionService
from ragindex.utils.concurrency import bounded_map
from ragindex.utils.errors import JobAlreadyRunningError, get_user_message
from ragindex.utils.logging import get_logger, job_context


@dataclass
class _RunState:
    """Mutable bookkeeping for one run; folded into the report at the end."""

    phase: IngestionPhase = IngestionPhase.FETCH
    links_found: int = 0
    documents_created: int = 0
    extraction_failures: int = 0
    chunks_created: int = 0
    embedding_failures: int = 0
    keywords_extracted: int = 0
    keyword_failures: int = 0
    link_sources: dict[str, str] = field(default_factory=dict)


class IngestionOrchestrator:
    """Runs ingestion jobs end to end.

    All collaborators are injected; see ``ragindex.main.build_components``
    for the production wiring.
    """

    def __init__(
        self,
        job_manager: JobManager,
        store: IHybridStore,
        collector: IContentCollector,
        extractor: IContentExtractor,
        chunking_service: ChunkingService,
        embedding_service: EmbeddingService,
        keyword_service: KeywordExtractionService,
        phase_weights: Mapping[IngestionPhase, float] | None = None,
        extract_concurrency: int = 5,
        extract_timeout: float = 30.0,
        status_update_interval: float = 2.0,
        default_status_sink: IStatusSink | None = None,
    ) -> None:
        self._jobs = job_manager
        self._store = store
        self._collector = collector
        self._extractor = extractor
        self._chunking = chunking_service
        self._embedding = embedding_service
        self._keywords = keyword_service
        self._phase_weights = phase_weights
        self._extract_concurrency = extract_concurrency
        self._extract_timeout = extract_timeout
        self._status_update_interval = status_update_interval
        self._default_status_sink = default_status_sink
        self._tasks: dict[str, asyncio.Task[IngestionReport]] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def submit(
        self,
        scope_id: str,
        scope_name: str,
        initiator: str,
        status_sink: IStatusSink | None = None,
    ) -> IngestionJob:
        """Create a job, mark it running and run it in the background.

        Validation and the one-running-job check happen before this returns,
        so a rejected request raises here and never reaches the background.
        The job is already ``running`` when it is returned, which makes a
        second ``submit`` for the same scope fail straight away.
        """
        job = await self._jobs.create_job(scope_id, scope_name, initiator)
        try:
            job = await self._jobs.start_job(job.id)
        except JobAlreadyRunningError as exc:
            await self._jobs.fail_job(job.id, str(exc))
            raise
        task = asyncio.create_task(self.run_job(job, status_sink), name=f"ingest-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._tasks.pop(job_id, None))
        return job

    def get_task(self, job_id: str) -> asyncio.Task[IngestionReport] | None:
        """Return the background task of a submitted job still in flight."""
        return self._tasks.get(job_id)

    async def run_job(
        self,
        job: IngestionJob,
        status_sink: IStatusSink | None = None,
    ) -> IngestionReport:
        """Run every phase for ``job`` and return what it produced."""
        status_sink = status_sink or self._default_status_sink
        tracker = WeightedProgressTracker(self._phase_weights)
        if status_sink is not None:
            tracker.register_listener(
                ThrottledStatusReporter(status_sink, interval=self._status_update_interval)
            )
        state = _RunState()
        started = time.monotonic()

        with job_context(job.id, job.scope_id):
            try:
                if job.status is JobStatus.PENDING:
                    job = await self._jobs.start_job(job.id)
                corpus_stats = await self._store.get_corpus_stats()
                self._logger.info(
                    "ingestion_started",
                    corpus_chunks=corpus_stats.total_documents,
                    known_terms=len(corpus_stats.term_document_frequency),
                )

                await self._fetch_phase(job, tracker, state)
                documents = await self._extract_phase(job, tracker, state)
                chunks = await self._chunk_phase(job, documents, tracker, state)
                await asyncio.gather(
                    self._embed_phase(chunks, tracker, state),
                    self._keyword_phase(chunks, corpus_stats, tracker, state),
                )
                await self._jobs.update_job_progress(
                    job.id, keywords_extracted=state.keywords_extracted
                )

                final_job = await self._jobs.complete_job(
                    job.id,
                    links_found=state.links_found,
                    chunks_created=state.chunks_created,
                    keywords_extracted=state.keywords_extracted,
                )
            except Exception as exc:
                self._logger.exception("ingestion_failed", phase=state.phase.value)
                failed_job = await self._jobs.fail_job(job.id, str(exc) or type(exc).__name__)
                await tracker.finish(
                    f"Ingestion failed: {get_user_message(exc)}",
                    phase=state.phase,
                )
                return self._report(
                    failed_job or job, JobStatus.FAILED, state, started, str(exc)
                )

            await tracker.finish(
                "Ingestion complete",
                metadata={
                    "documents": state.documents_created,
                    "chunks": state.chunks_created,
                    "keywords": state.keywords_extracted,
                },
            )
            report = self._report(final_job, JobStatus.COMPLETED, state, started)
            self._logger.info(
                "ingestion_complete",
                links_found=state.links_found,
                documents_created=state.documents_created,
                chunks_created=state.chunks_created,
                keywords_extracted=state.keywords_extracted,
                duration_seconds=report.duration_seconds,
            )
            return report

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _fetch_phase(
        self,
        job: IngestionJob,
        tracker: WeightedProgressTracker,
        state: _RunState,
    ) -> list[CollectedItem]:
        state.phase = IngestionPhase.FETCH
        await tracker.start_phase(IngestionPhase.FETCH, "collecting messages")
        latest = FetchProgress()

        async def _on_fetch(progress: FetchProgress) -> None:
            nonlocal latest
            latest = progress
            if progress.total_messages:
                fraction = progress.processed_messages / progress.total_messages
            elif progress.total_channels:
                fraction = progress.processed_channels / progress.total_channels
            else:
                fraction = 0.0
            await tracker.update_phase(
                IngestionPhase.FETCH,
                fraction,
                f"{progress.processed_channels}/{progress.total_channels} channels",
                {"messages": progress.processed_messages},
            )

        items = await self._collector.fetch(job.scope_id, on_progress=_on_fetch)

        for item in items:
            for link in item.links:
                state.link_sources.setdefault(link, item.id)
        state.links_found = len(state.link_sources)

        await self._jobs.update_job_progress(
            job.id,
            total_channels=latest.total_channels,
            processed_channels=latest.processed_channels,
            total_messages=max(latest.total_messages, len(items)),
            processed_messages=max(latest.processed_messages, len(items)),
            links_found=state.links_found,
        )
        await tracker.complete_phase(
            IngestionPhase.FETCH,
            f"{len(items)} messages, {state.links_found} links",
        )
        return items

    async def _extract_phase(
        self,
        job: IngestionJob,
        tracker: WeightedProgressTracker,
        state: _RunState,
    ) -> list[SourceDocument]:
        state.phase = IngestionPhase.EXTRACT
        links = list(state.link_sources)
        await tracker.start_phase(IngestionPhase.EXTRACT, f"{len(links)} links")
        on_step = tracker.step_callback(IngestionPhase.EXTRACT, "links")
        done = 0

        async def _extract(link: str) -> SourceDocument | None:
            nonlocal done
            try:
                extracted = await asyncio.wait_for(
                    self._extractor.extract(link),
                    timeout=self._extract_timeout,
                )
                if extracted is None or not extracted.content.strip():
                    self._logger.debug("link_skipped", url=link)
                    return None
                document = SourceDocument(
                    id=str(uuid.uuid4()),
                    url=extracted.url or link,
                    title=extracted.title,
                    full_text=extracted.content,
                    scope_id=job.scope_id,
                    description=extracted.description,
                    domain=extracted.domain or urlparse(link).hostname,
                    collected_item_id=state.link_sources.get(link),
                )
                await self._store.insert_source_document(document)
                return document
            finally:
                done += 1
                await on_step(done, len(links))

        outcome = await bounded_map(
            _extract,
            links,
            limit=self._extract_concurrency,
            logger=self._logger,
            error_event="link_extraction_failed",
        )
        documents = [doc for doc in outcome.values if doc is not None]
        state.documents_created = len(documents)
        state.extraction_failures = len(outcome.failures)

        await tracker.complete_phase(
            IngestionPhase.EXTRACT,
            f"{len(documents)} documents, {len(outcome.failures)} failures",
        )
        return documents

    async def _chunk_phase(
        self,
        job: IngestionJob,
        documents: list[SourceDocument],
        tracker: WeightedProgressTracker,
        state: _RunState,
    ) -> list[Chunk]:
        state.phase = IngestionPhase.CHUNK
        await tracker.start_phase(IngestionPhase.CHUNK, f"{len(documents)} documents")
        chunks, stats = await self._chunking.process_documents(
            documents,
            on_progress=tracker.step_callback(IngestionPhase.CHUNK, "documents"),
        )
        state.chunks_created = len(chunks)
        await self._jobs.update_job_progress(job.id, chunks_created=state.chunks_created)
        await tracker.complete_phase(
            IngestionPhase.CHUNK,
            f"{stats.total_chunks} chunks from {stats.documents_chunked} documents",
        )
        return chunks

    async def _embed_phase(
        self,
        chunks: list[Chunk],
        tracker: WeightedProgressTracker,
        state: _RunState,
    ) -> None:
        state.phase = IngestionPhase.EMBED
        await tracker.start_phase(IngestionPhase.EMBED, f"{len(chunks)} chunks")
        results = await self._embedding.embed_many(
            chunks,
            on_progress=tracker.step_callback(IngestionPhase.EMBED, "chunks embedded"),
        )
        stats = self._embedding.get_stats(results)
        state.embedding_failures = stats.failed
        await tracker.complete_phase(
            IngestionPhase.EMBED,
            f"{stats.successful} embedded, {stats.failed} failed",
        )

    async def _keyword_phase(
        self,
        chunks: list[Chunk],
        corpus_stats: CorpusStats,
        tracker: WeightedProgressTracker,
        state: _RunState,
    ) -> None:
        await tracker.start_phase(IngestionPhase.KEYWORD, f"{len(chunks)} chunks")
        results = await self._keywords.process_chunks(
            chunks,
            corpus_stats,
            on_progress=tracker.step_callback(IngestionPhase.KEYWORD, "chunks scanned"),
        )
        stats = self._keywords.get_stats(results)
        state.keywords_extracted = stats.total_keywords
        state.keyword_failures = stats.chunks_processed - stats.successful
        await tracker.complete_phase(
            IngestionPhase.KEYWORD,
            f"{stats.total_keywords} keywords",
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _report(
        job: IngestionJob,
        status: JobStatus,
        state: _RunState,
        started: float,
        error_message: str | None = None,
    ) -> IngestionReport:
        return IngestionReport(
            job_id=job.id,
            status=status,
            counters=job.counters.model_copy(
                update={
                    "links_found": state.links_found,
                    "chunks_created": state.chunks_created,
                    "keywords_extracted": state.keywords_extracted,
                }
            ),
            documents_created=state.documents_created,
            extraction_failures=state.extraction_failures,
            embedding_failures=state.embedding_failures,
            keyword_failures=state.keyword_failures,
            duration_seconds=round(time.monotonic() - started, 3),
            error_message=error_message,
        )
