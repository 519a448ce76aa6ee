"""Query-side entry point: text in, ranked chunks out.

Embeds the query with the same provider that embedded the corpus, then
delegates to the store's search.  Defaults come from settings so the CLI
and callers agree on thresholds.
"""

from __future__ import annotations

import structlog

from ragindex.interfaces.embedding_provider import IEmbeddingProvider
from ragindex.interfaces.hybrid_store import IHybridStore
from ragindex.models.rag import QueryResult, SearchMethod
from ragindex.utils.errors import ValidationError

logger = structlog.get_logger(logger_name=__name__)


class RetrievalService:
    """Embed a text query and run vector, keyword or hybrid search."""

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        store: IHybridStore,
        default_limit: int = 5,
        vector_threshold: float = 0.7,
        keyword_weight: float = 0.7,
        bm25_threshold: float = 0.1,
    ) -> None:
        self._embedding_provider = embedding_provider
        self._store = store
        self._default_limit = default_limit
        self._vector_threshold = vector_threshold
        self._keyword_weight = keyword_weight
        self._bm25_threshold = bm25_threshold

    async def search(
        self,
        query: str,
        limit: int | None = None,
        method: SearchMethod = SearchMethod.HYBRID,
        keyword_weight: float | None = None,
    ) -> list[QueryResult]:
        """Return the best chunks for ``query``.

        Raises
        ------
        ValidationError
            If the query is blank or a search argument is out of range.
        """
        query = query.strip()
        if not query:
            raise ValidationError(message="Query must not be empty", field="query")

        limit = limit or self._default_limit
        query_vector = await self._embedding_provider.embed(query)

        if method is SearchMethod.VECTOR:
            results = await self._store.vector_search(
                query_vector, limit=limit, threshold=self._vector_threshold
            )
        elif method is SearchMethod.KEYWORD:
            results = await self._store.keyword_search(
                query_vector,
                limit=limit,
                vector_threshold=self._vector_threshold,
                bm25_threshold=self._bm25_threshold,
            )
        else:
            results = await self._store.hybrid_search(
                query_vector,
                limit=limit,
                vector_threshold=self._vector_threshold,
                keyword_weight=(
                    self._keyword_weight if keyword_weight is None else keyword_weight
                ),
                bm25_threshold=self._bm25_threshold,
            )

        logger.info(
            "retrieval_query",
            method=method.value,
            query_length=len(query),
            results=len(results),
        )
        return results
