"""Command-line access to a ragindex database.

Ingestion itself needs a platform collector, so it runs inside the host
application; this CLI covers everything that only needs the store:

    python -m ragindex.cli init
    python -m ragindex.cli search "vector databases" --method hybrid --limit 5
    python -m ragindex.cli stats
    python -m ragindex.cli jobs <scope_id> --limit 10
    python -m ragindex.cli delete-chunk <chunk_id>

Settings come from ``config/config.yaml`` plus the environment, exactly as
for the host application.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from ragindex.config.loader import load_settings
from ragindex.config.settings import Settings
from ragindex.main import build_embedding_provider
from ragindex.models.rag import SearchMethod
from ragindex.pipeline.job_manager import JobManager
from ragindex.providers.store.sqlite_hybrid_store import SQLiteHybridStore
from ragindex.services.retrieval_service import RetrievalService
from ragindex.utils.errors import RagIndexError
from ragindex.utils.logging import configure_logging

_PREVIEW_LENGTH = 160


def _open_store(settings: Settings) -> SQLiteHybridStore:
    return SQLiteHybridStore(
        db_path=settings.database_path,
        dimension=settings.embedding_dimension or None,
    )


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _handle_init(settings: Settings) -> int:
    store = _open_store(settings)
    await store.initialize()
    print(f"Database ready: {settings.database_path}")
    return 0


async def _handle_search(args: argparse.Namespace, settings: Settings) -> int:
    store = _open_store(settings)
    await store.initialize()
    retrieval = RetrievalService(
        embedding_provider=build_embedding_provider(settings),
        store=store,
        default_limit=settings.search_limit,
        vector_threshold=(
            args.threshold if args.threshold is not None else settings.search_threshold
        ),
        keyword_weight=settings.search_keyword_weight,
        bm25_threshold=settings.search_bm25_threshold,
    )
    results = await retrieval.search(
        args.query,
        limit=args.limit,
        method=SearchMethod(args.method),
        keyword_weight=args.keyword_weight,
    )
    if not results:
        print("No results.")
        return 0

    for rank, result in enumerate(results, start=1):
        source = result.metadata.get("url") or result.metadata.get("source_document_id", "")
        preview = " ".join(result.content.split())[:_PREVIEW_LENGTH]
        print(f"{rank:>2}. [{result.search_method.value}] {result.similarity_score:.4f}  {source}")
        print(f"    {preview}")
        keyword = result.metadata.get("matched_keyword") or result.metadata.get(
            "keyword_match", {}
        ).get("matched_keyword")
        if keyword:
            print(f"    keyword: {keyword}")
    return 0


async def _handle_stats(settings: Settings) -> int:
    store = _open_store(settings)
    await store.initialize()
    stats = await store.get_corpus_stats()
    embeddings = await store.count_embeddings()
    keywords = await store.count_keywords()
    top_terms = sorted(
        stats.term_document_frequency.items(), key=lambda kv: (-kv[1], kv[0])
    )[:10]

    print("Corpus Statistics")
    print("=" * 40)
    print(f"  Chunks:              {stats.total_documents}")
    print(f"  Embeddings:          {embeddings}")
    print(f"  Keywords:            {keywords}")
    print(f"  Distinct terms:      {len(stats.term_document_frequency)}")
    print(f"  Avg chunk length:    {stats.average_document_length:.1f} words")
    if top_terms:
        print("\n  Most common terms:")
        for term, count in top_terms:
            print(f"    {term:<30} {count}")
    return 0


async def _handle_jobs(args: argparse.Namespace, settings: Settings) -> int:
    store = _open_store(settings)
    await store.initialize()
    manager = JobManager(store)
    jobs = await manager.get_job_history(args.scope_id, limit=args.limit)
    if not jobs:
        print(f"No jobs for scope {args.scope_id}.")
        return 0
    for job in jobs:
        summary = manager.get_job_summary(job)
        duration = summary["duration"] or "-"
        print(f"{job.id}  {job.created_at:%Y-%m-%d %H:%M}  {duration:>8}  {summary['summary']}")
    return 0


async def _handle_delete_chunk(args: argparse.Namespace, settings: Settings) -> int:
    store = _open_store(settings)
    await store.initialize()
    if await store.delete_chunk(args.chunk_id):
        print(f"Deleted chunk {args.chunk_id}.")
        return 0
    print(f"Chunk {args.chunk_id} not found.", file=sys.stderr)
    return 1


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ragindex",
        description="Inspect and query a ragindex hybrid store.",
    )
    parser.add_argument("--config", default="config/config.yaml", help="YAML defaults file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create the database schema")

    search_parser = subparsers.add_parser("search", help="Search the corpus")
    search_parser.add_argument("query", help="Free-text query")
    search_parser.add_argument(
        "--method",
        choices=[m.value for m in SearchMethod],
        default=SearchMethod.HYBRID.value,
    )
    search_parser.add_argument("--limit", type=int, default=None)
    search_parser.add_argument("--threshold", type=float, default=None)
    search_parser.add_argument("--keyword-weight", type=float, default=None)

    subparsers.add_parser("stats", help="Show corpus statistics")

    jobs_parser = subparsers.add_parser("jobs", help="List recent ingestion jobs for a scope")
    jobs_parser.add_argument("scope_id")
    jobs_parser.add_argument("--limit", type=int, default=10)

    delete_parser = subparsers.add_parser("delete-chunk", help="Delete one chunk")
    delete_parser.add_argument("chunk_id")

    return parser


async def _dispatch(args: argparse.Namespace, settings: Settings) -> int:
    if args.command == "init":
        return await _handle_init(settings)
    if args.command == "search":
        return await _handle_search(args, settings)
    if args.command == "stats":
        return await _handle_stats(settings)
    if args.command == "jobs":
        return await _handle_jobs(args, settings)
    return await _handle_delete_chunk(args, settings)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        settings = load_settings(args.config)
    except RagIndexError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    configure_logging(settings.log_level, app_env=settings.app_env)

    try:
        return asyncio.run(_dispatch(args, settings))
    except RagIndexError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
