"""SQLite-backed hybrid store and job store.

Persists source documents, chunks, embeddings, keywords and ingestion jobs
to a local SQLite database with ``aiosqlite``.  Vectors are stored as
float32 blobs next to their dimension; similarity is computed in numpy at
query time, which is fine for the corpus sizes one scope produces.

Integrity rules live in the schema:

- chunks, embeddings and keywords cascade-delete with their owner
  (``PRAGMA foreign_keys = ON`` is set on every connection)
- ``(source_document_id, chunk_index)`` is unique
- a partial unique index allows at most one ``running`` job per scope,
  and job creation checks for one inside a ``BEGIN IMMEDIATE`` transaction
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
import numpy as np
import structlog

from ragindex.interfaces.hybrid_store import IHybridStore
from ragindex.interfaces.job_store import IJobStore
from ragindex.models.job import IngestionJob, JobCounters, JobStatus
from ragindex.models.rag import (
    Chunk,
    CorpusStats,
    QueryResult,
    ScoredKeyword,
    SearchMethod,
    SourceDocument,
)
from ragindex.providers.store.scoring import (
    as_query_vector,
    cosine_similarities,
    decode_vector,
    encode_vector,
    merge_hybrid_results,
    validate_search_args,
)
from ragindex.utils.errors import (
    DatabaseError,
    InvalidTransitionError,
    JobAlreadyRunningError,
    NotFoundError,
    ValidationError,
)

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/ragindex.db")
_PROVIDER_NAME = "sqlite"
# Word-approximate length of a chunk: characters / 5.
_CHARS_PER_WORD = 5.0
_EMPTY_CORPUS_AVERAGE_LENGTH = 100.0
# Keyword search runs with a looser vector threshold inside hybrid search.
_KEYWORD_THRESHOLD_FACTOR = 0.8

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS source_documents (
    id                 TEXT PRIMARY KEY,
    url                TEXT NOT NULL,
    title              TEXT NOT NULL DEFAULT '',
    full_text          TEXT NOT NULL,
    scope_id           TEXT NOT NULL,
    description        TEXT,
    domain             TEXT,
    collected_item_id  TEXT,
    created_at         TEXT NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS chunks (
    id                  TEXT PRIMARY KEY,
    source_document_id  TEXT NOT NULL REFERENCES source_documents(id) ON DELETE CASCADE,
    content             TEXT NOT NULL,
    chunk_index         INTEGER NOT NULL CHECK (chunk_index >= 0),
    metadata            TEXT NOT NULL DEFAULT '{}',
    created_at          TEXT NOT NULL,
    UNIQUE(source_document_id, chunk_index)
);
""",
    """\
CREATE TABLE IF NOT EXISTS embeddings (
    chunk_id   TEXT PRIMARY KEY REFERENCES chunks(id) ON DELETE CASCADE,
    dimension  INTEGER NOT NULL,
    vector     BLOB NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS keywords (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    chunk_id            TEXT NOT NULL REFERENCES chunks(id) ON DELETE CASCADE,
    term                TEXT NOT NULL,
    bm25_score          REAL NOT NULL,
    term_frequency      INTEGER NOT NULL,
    document_frequency  INTEGER NOT NULL,
    confidence          REAL NOT NULL,
    dimension           INTEGER NOT NULL,
    vector              BLOB NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS ingestion_jobs (
    id                  TEXT PRIMARY KEY,
    scope_id            TEXT NOT NULL,
    scope_name          TEXT NOT NULL,
    initiator           TEXT NOT NULL,
    status              TEXT NOT NULL
                        CHECK (status IN ('pending', 'running', 'completed', 'failed')),
    total_channels      INTEGER NOT NULL DEFAULT 0,
    processed_channels  INTEGER NOT NULL DEFAULT 0,
    total_messages      INTEGER NOT NULL DEFAULT 0,
    processed_messages  INTEGER NOT NULL DEFAULT 0,
    links_found         INTEGER NOT NULL DEFAULT 0,
    chunks_created      INTEGER NOT NULL DEFAULT 0,
    keywords_extracted  INTEGER NOT NULL DEFAULT 0,
    error_message       TEXT,
    created_at          TEXT NOT NULL,
    started_at          TEXT,
    completed_at        TEXT
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_source_documents_scope ON source_documents(scope_id);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(source_document_id);",
    "CREATE INDEX IF NOT EXISTS idx_keywords_chunk ON keywords(chunk_id);",
    "CREATE INDEX IF NOT EXISTS idx_keywords_term ON keywords(term);",
    "CREATE INDEX IF NOT EXISTS idx_jobs_scope_created ON ingestion_jobs(scope_id, created_at);",
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_jobs_one_running_per_scope "
    "ON ingestion_jobs(scope_id) WHERE status = 'running';",
]

_JOB_COLUMNS = (
    "id, scope_id, scope_name, initiator, status, total_channels, processed_channels, "
    "total_messages, processed_messages, links_found, chunks_created, keywords_extracted, "
    "error_message, created_at, started_at, completed_at"
)

_INSERT_JOB_SQL = f"""\
INSERT INTO ingestion_jobs ({_JOB_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_UPDATE_JOB_SQL = """\
UPDATE ingestion_jobs
SET status = ?, total_channels = ?, processed_channels = ?, total_messages = ?,
    processed_messages = ?, links_found = ?, chunks_created = ?, keywords_extracted = ?,
    error_message = ?, started_at = ?, completed_at = ?
WHERE id = ? AND status = ?;
"""


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteHybridStore(IHybridStore, IJobStore):
    """SQLite persistence for the corpus and the ingestion job records.

    Parameters
    ----------
    db_path:
        Database file; parent directories are created on initialize.
    dimension:
        Expected vector dimension.  When set, every stored and query
        vector must match it; when ``None`` only same-dimension rows are
        compared with a query.
    """

    def __init__(
        self,
        db_path: str | Path = _DEFAULT_DB_PATH,
        dimension: int | None = None,
    ) -> None:
        self._db_path = Path(db_path)
        self._dimension = dimension or None

    def get_provider_name(self) -> str:
        return _PROVIDER_NAME

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection with foreign keys on; wrap driver errors."""
        try:
            async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
                db.row_factory = aiosqlite.Row
                await db.execute("PRAGMA foreign_keys = ON;")
                yield db
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as exc:
            raise DatabaseError(
                message=f"SQLite operation failed: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

    async def initialize(self) -> None:
        """Create tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect() as db:
            await db.execute("PRAGMA journal_mode = WAL;")
            for table_sql in _CREATE_TABLES_SQL:
                await db.execute(table_sql)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("hybrid_store_initialized", path=str(self._db_path), dimension=self._dimension)

    # ------------------------------------------------------------------
    # Corpus writes
    # ------------------------------------------------------------------

    async def insert_source_document(self, document: SourceDocument) -> None:
        async with self._connect() as db:
            try:
                await db.execute(
                    "INSERT INTO source_documents (id, url, title, full_text, scope_id, "
                    "description, domain, collected_item_id, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        document.id,
                        document.url,
                        document.title,
                        document.full_text,
                        document.scope_id,
                        document.description,
                        document.domain,
                        document.collected_item_id,
                        _iso(document.created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValidationError(
                    message=f"Source document {document.id} already exists",
                    provider_name=_PROVIDER_NAME,
                    field="id",
                ) from exc
            await db.commit()

    async def insert_chunk(self, chunk: Chunk) -> None:
        async with self._connect() as db:
            try:
                await db.execute(
                    "INSERT INTO chunks (id, source_document_id, content, chunk_index, "
                    "metadata, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        chunk.id,
                        chunk.source_document_id,
                        chunk.content,
                        chunk.index,
                        json.dumps(chunk.metadata, default=str),
                        _iso(chunk.created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValidationError(
                    message=(
                        f"Chunk {chunk.id} rejected: unknown document "
                        f"{chunk.source_document_id} or index {chunk.index} already taken"
                    ),
                    provider_name=_PROVIDER_NAME,
                    field="source_document_id",
                ) from exc
            await db.commit()

    async def insert_embedding(self, chunk_id: str, vector: list[float]) -> None:
        self._check_vector(vector, "embedding")
        async with self._connect() as db:
            try:
                await db.execute(
                    "INSERT INTO embeddings (chunk_id, dimension, vector) VALUES (?, ?, ?) "
                    "ON CONFLICT(chunk_id) DO UPDATE SET dimension = excluded.dimension, "
                    "vector = excluded.vector",
                    (chunk_id, len(vector), encode_vector(vector)),
                )
            except sqlite3.IntegrityError as exc:
                raise ValidationError(
                    message=f"Cannot embed unknown chunk {chunk_id}",
                    provider_name=_PROVIDER_NAME,
                    field="chunk_id",
                ) from exc
            await db.commit()

    async def insert_keywords(self, chunk_id: str, keywords: list[ScoredKeyword]) -> int:
        if not keywords:
            return 0
        for keyword in keywords:
            self._check_vector(keyword.vector, f"keyword {keyword.term!r}")
        rows = [
            (
                chunk_id,
                k.term,
                k.bm25_score,
                k.term_frequency,
                k.document_frequency,
                k.confidence,
                len(k.vector),
                encode_vector(k.vector),
            )
            for k in keywords
        ]
        async with self._connect() as db:
            try:
                await db.executemany(
                    "INSERT INTO keywords (chunk_id, term, bm25_score, term_frequency, "
                    "document_frequency, confidence, dimension, vector) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    rows,
                )
            except sqlite3.IntegrityError as exc:
                raise ValidationError(
                    message=f"Cannot attach keywords to unknown chunk {chunk_id}",
                    provider_name=_PROVIDER_NAME,
                    field="chunk_id",
                ) from exc
            await db.commit()
        return len(rows)

    async def delete_chunk(self, chunk_id: str) -> bool:
        async with self._connect() as db:
            cursor = await db.execute("DELETE FROM chunks WHERE id = ?", (chunk_id,))
            await db.commit()
            deleted = cursor.rowcount > 0
        logger.info("chunk_deleted", chunk_id=chunk_id, deleted=deleted)
        return deleted

    def _check_vector(self, vector: list[float], label: str) -> None:
        if not vector:
            raise ValidationError(message=f"Empty vector for {label}", field="vector")
        if self._dimension is not None and len(vector) != self._dimension:
            raise ValidationError(
                message=f"Vector for {label} has {len(vector)} dimensions, expected {self._dimension}",
                field="vector",
            )

    # ------------------------------------------------------------------
    # Corpus reads
    # ------------------------------------------------------------------

    async def get_chunk(self, chunk_id: str) -> Chunk | None:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT id, source_document_id, content, chunk_index, metadata, created_at "
                "FROM chunks WHERE id = ?",
                (chunk_id,),
            )
            row = await cursor.fetchone()
        return self._row_to_chunk(row) if row else None

    async def list_chunks(self, source_document_id: str) -> list[Chunk]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT id, source_document_id, content, chunk_index, metadata, created_at "
                "FROM chunks WHERE source_document_id = ? ORDER BY chunk_index",
                (source_document_id,),
            )
            rows = await cursor.fetchall()
        return [self._row_to_chunk(r) for r in rows]

    async def count_chunks(self) -> int:
        async with self._connect() as db:
            cursor = await db.execute("SELECT COUNT(*) FROM chunks")
            row = await cursor.fetchone()
        return int(row[0])

    async def count_embeddings(self) -> int:
        async with self._connect() as db:
            cursor = await db.execute("SELECT COUNT(*) FROM embeddings")
            row = await cursor.fetchone()
        return int(row[0])

    async def count_keywords(self, chunk_id: str | None = None) -> int:
        async with self._connect() as db:
            if chunk_id is None:
                cursor = await db.execute("SELECT COUNT(*) FROM keywords")
            else:
                cursor = await db.execute(
                    "SELECT COUNT(*) FROM keywords WHERE chunk_id = ?", (chunk_id,)
                )
            row = await cursor.fetchone()
        return int(row[0])

    async def get_corpus_stats(self) -> CorpusStats:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT COUNT(*), AVG(LENGTH(content) / ?) FROM chunks",
                (_CHARS_PER_WORD,),
            )
            total, average = await cursor.fetchone()
            cursor = await db.execute(
                "SELECT term, COUNT(DISTINCT chunk_id) FROM keywords GROUP BY term"
            )
            frequencies = {row[0]: int(row[1]) for row in await cursor.fetchall()}

        stats = CorpusStats(
            total_documents=int(total),
            average_document_length=(
                float(average) if average is not None else _EMPTY_CORPUS_AVERAGE_LENGTH
            ),
            term_document_frequency=frequencies,
        )
        logger.debug(
            "corpus_stats_loaded",
            total_documents=stats.total_documents,
            average_document_length=round(stats.average_document_length, 2),
            distinct_terms=len(frequencies),
        )
        return stats

    @staticmethod
    def _row_to_chunk(row: aiosqlite.Row) -> Chunk:
        return Chunk(
            id=row["id"],
            source_document_id=row["source_document_id"],
            content=row["content"],
            index=row["chunk_index"],
            metadata=json.loads(row["metadata"] or "{}"),
            created_at=_parse_dt(row["created_at"]),
        )

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def vector_search(
        self,
        query_vector: list[float],
        limit: int = 5,
        threshold: float = 0.7,
    ) -> list[QueryResult]:
        validate_search_args(limit)
        query = as_query_vector(query_vector, self._dimension)

        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT c.id, c.source_document_id, c.content, c.chunk_index, c.metadata, "
                "e.vector FROM embeddings e JOIN chunks c ON c.id = e.chunk_id "
                "WHERE e.dimension = ?",
                (int(query.size),),
            )
            rows = await cursor.fetchall()
        if not rows:
            return []

        sims = cosine_similarities(query, np.vstack([decode_vector(r["vector"]) for r in rows]))
        hits = [
            QueryResult(
                chunk_id=row["id"],
                content=row["content"],
                metadata={
                    **json.loads(row["metadata"] or "{}"),
                    "source_document_id": row["source_document_id"],
                    "chunk_index": row["chunk_index"],
                },
                similarity_score=float(sim),
                search_method=SearchMethod.VECTOR,
            )
            for row, sim in zip(rows, sims)
            if sim > threshold
        ]
        hits.sort(key=lambda r: r.similarity_score, reverse=True)
        return hits[:limit]

    async def keyword_search(
        self,
        query_vector: list[float],
        limit: int = 5,
        vector_threshold: float = 0.7,
        bm25_threshold: float = 0.1,
    ) -> list[QueryResult]:
        """Rank chunks by their best keyword: ``cos(keyword, query) * bm25``.

        One result per chunk, carrying the matching keyword's components
        in its metadata.
        """
        validate_search_args(limit)
        query = as_query_vector(query_vector, self._dimension)

        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT k.chunk_id, k.term, k.bm25_score, k.vector, c.source_document_id, "
                "c.content, c.chunk_index, c.metadata FROM keywords k "
                "JOIN chunks c ON c.id = k.chunk_id "
                "WHERE k.dimension = ? AND k.bm25_score > ?",
                (int(query.size), bm25_threshold),
            )
            rows = await cursor.fetchall()
        if not rows:
            return []

        sims = cosine_similarities(query, np.vstack([decode_vector(r["vector"]) for r in rows]))
        scored: list[tuple[float, float, Any]] = [
            (float(sim) * float(row["bm25_score"]), float(sim), row)
            for row, sim in zip(rows, sims)
            if sim > vector_threshold
        ]
        scored.sort(key=lambda item: item[0], reverse=True)

        results: list[QueryResult] = []
        seen: set[str] = set()
        for combined, sim, row in scored:
            if row["chunk_id"] in seen:
                continue
            seen.add(row["chunk_id"])
            results.append(
                QueryResult(
                    chunk_id=row["chunk_id"],
                    content=row["content"],
                    metadata={
                        **json.loads(row["metadata"] or "{}"),
                        "source_document_id": row["source_document_id"],
                        "chunk_index": row["chunk_index"],
                        "matched_keyword": row["term"],
                        "vector_similarity": sim,
                        "bm25_score": float(row["bm25_score"]),
                        "combined_score": combined,
                    },
                    similarity_score=combined,
                    search_method=SearchMethod.KEYWORD,
                )
            )
            if len(results) >= limit:
                break
        return results

    async def hybrid_search(
        self,
        query_vector: list[float],
        limit: int = 5,
        vector_threshold: float = 0.7,
        keyword_weight: float = 0.7,
        bm25_threshold: float = 0.1,
    ) -> list[QueryResult]:
        validate_search_args(limit, keyword_weight)
        vector_hits = await self.vector_search(query_vector, limit, vector_threshold)
        keyword_hits = await self.keyword_search(
            query_vector,
            limit,
            vector_threshold * _KEYWORD_THRESHOLD_FACTOR,
            bm25_threshold,
        )
        merged = merge_hybrid_results(vector_hits, keyword_hits, keyword_weight, limit)
        logger.info(
            "hybrid_search",
            vector_hits=len(vector_hits),
            keyword_hits=len(keyword_hits),
            returned=len(merged),
            keyword_weight=keyword_weight,
        )
        return merged

    # ------------------------------------------------------------------
    # Job store
    # ------------------------------------------------------------------

    async def create_job_if_idle(self, job: IngestionJob) -> IngestionJob:
        async with self._connect() as db:
            # IMMEDIATE takes the write lock before the check, so a second
            # writer cannot insert between our SELECT and INSERT.
            await db.execute("BEGIN IMMEDIATE")
            try:
                cursor = await db.execute(
                    "SELECT id FROM ingestion_jobs WHERE scope_id = ? AND status = 'running' "
                    "LIMIT 1",
                    (job.scope_id,),
                )
                running = await cursor.fetchone()
                if running is not None:
                    raise JobAlreadyRunningError(job.scope_id, running_job_id=running["id"])
                await db.execute(_INSERT_JOB_SQL, self._job_params(job))
            except sqlite3.IntegrityError as exc:
                await db.rollback()
                if job.status is JobStatus.RUNNING:
                    raise JobAlreadyRunningError(job.scope_id) from exc
                raise ValidationError(
                    message=f"Ingestion job {job.id} already exists",
                    provider_name=_PROVIDER_NAME,
                    field="id",
                ) from exc
            except BaseException:
                await db.rollback()
                raise
            await db.commit()
        return job

    async def update_job(self, job: IngestionJob, expected_status: JobStatus) -> IngestionJob:
        counters = job.counters
        async with self._connect() as db:
            try:
                cursor = await db.execute(
                    _UPDATE_JOB_SQL,
                    (
                        job.status.value,
                        counters.total_channels,
                        counters.processed_channels,
                        counters.total_messages,
                        counters.processed_messages,
                        counters.links_found,
                        counters.chunks_created,
                        counters.keywords_extracted,
                        job.error_message,
                        _iso(job.started_at),
                        _iso(job.completed_at),
                        job.id,
                        expected_status.value,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                # Only the one-running-job index can fire here.
                raise JobAlreadyRunningError(job.scope_id) from exc
            await db.commit()
            updated = cursor.rowcount

        if updated == 0:
            current = await self.get_job(job.id)
            if current is None:
                raise NotFoundError(message=f"Ingestion job {job.id} not found")
            raise InvalidTransitionError(job.id, current.status.value, job.status.value)
        return job

    async def get_job(self, job_id: str) -> IngestionJob | None:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_JOB_COLUMNS} FROM ingestion_jobs WHERE id = ?", (job_id,)
            )
            row = await cursor.fetchone()
        return self._row_to_job(row) if row else None

    async def get_running_job(self, scope_id: str) -> IngestionJob | None:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_JOB_COLUMNS} FROM ingestion_jobs "
                "WHERE scope_id = ? AND status = 'running' LIMIT 1",
                (scope_id,),
            )
            row = await cursor.fetchone()
        return self._row_to_job(row) if row else None

    async def list_jobs(self, scope_id: str, limit: int = 10) -> list[IngestionJob]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_JOB_COLUMNS} FROM ingestion_jobs WHERE scope_id = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (scope_id, limit),
            )
            rows = await cursor.fetchall()
        return [self._row_to_job(r) for r in rows]

    @staticmethod
    def _job_params(job: IngestionJob) -> tuple[Any, ...]:
        c = job.counters
        return (
            job.id,
            job.scope_id,
            job.scope_name,
            job.initiator,
            job.status.value,
            c.total_channels,
            c.processed_channels,
            c.total_messages,
            c.processed_messages,
            c.links_found,
            c.chunks_created,
            c.keywords_extracted,
            job.error_message,
            _iso(job.created_at),
            _iso(job.started_at),
            _iso(job.completed_at),
        )

    @staticmethod
    def _row_to_job(row: aiosqlite.Row) -> IngestionJob:
        return IngestionJob(
            id=row["id"],
            scope_id=row["scope_id"],
            scope_name=row["scope_name"],
            initiator=row["initiator"],
            status=JobStatus(row["status"]),
            counters=JobCounters(
                total_channels=row["total_channels"],
                processed_channels=row["processed_channels"],
                total_messages=row["total_messages"],
                processed_messages=row["processed_messages"],
                links_found=row["links_found"],
                chunks_created=row["chunks_created"],
                keywords_extracted=row["keywords_extracted"],
            ),
            error_message=row["error_message"],
            created_at=_parse_dt(row["created_at"]),
            started_at=_parse_dt(row["started_at"]),
            completed_at=_parse_dt(row["completed_at"]),
        )
