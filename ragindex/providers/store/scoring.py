"""Vector math and result merging for the hybrid store.

Kept apart from the SQL so the ranking rules can be tested without a
database:

- :func:`cosine_similarities` -- one query against a matrix of vectors.
- :func:`merge_hybrid_results` -- per-chunk merge of vector and keyword
  hits with a keyword weight ``w``.
"""

from __future__ import annotations

import numpy as np

from ragindex.models.rag import QueryResult, SearchMethod
from ragindex.utils.errors import ValidationError


def encode_vector(vector: list[float]) -> bytes:
    """Serialize a vector as little-endian float32 bytes."""
    return np.asarray(vector, dtype="<f4").tobytes()


def decode_vector(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype="<f4")


def as_query_vector(query_vector: list[float], expected_dimension: int | None = None) -> np.ndarray:
    """Validate a query vector and return it as a float32 array.

    Raises
    ------
    ValidationError
        If the vector is empty, has a zero norm, contains NaN/inf, or does
        not match ``expected_dimension``.
    """
    query = np.asarray(query_vector, dtype=np.float32)
    if query.ndim != 1 or query.size == 0:
        raise ValidationError(message="Query vector must be a non-empty list of floats", field="query_vector")
    if expected_dimension and query.size != expected_dimension:
        raise ValidationError(
            message=f"Query vector has {query.size} dimensions, store expects {expected_dimension}",
            field="query_vector",
        )
    if not np.all(np.isfinite(query)):
        raise ValidationError(message="Query vector contains NaN or infinite values", field="query_vector")
    if float(np.linalg.norm(query)) == 0.0:
        raise ValidationError(message="Query vector must not be all zeros", field="query_vector")
    return query


def cosine_similarities(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` with every row of ``matrix``.

    Rows with zero norm get similarity 0.
    """
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float32)
    row_norms = np.linalg.norm(matrix, axis=1)
    query_norm = np.linalg.norm(query)
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(row_norms > 0, dots / (row_norms * query_norm), 0.0)
    return sims.astype(np.float64)


def validate_search_args(limit: int, keyword_weight: float | None = None) -> None:
    if limit < 1:
        raise ValidationError(message=f"limit must be >= 1, got {limit}", field="limit")
    if keyword_weight is not None and not 0.0 <= keyword_weight <= 1.0:
        raise ValidationError(
            message=f"keyword_weight must be within [0, 1], got {keyword_weight}",
            field="keyword_weight",
        )


def merge_hybrid_results(
    vector_results: list[QueryResult],
    keyword_results: list[QueryResult],
    keyword_weight: float,
    limit: int,
) -> list[QueryResult]:
    """Merge vector and keyword hits per chunk and keep the best ``limit``.

    - vector only:  ``similarity * (1 - w)``, tagged ``vector``
    - keyword only: ``combined * w``, tagged ``keyword``
    - both:         the sum of the two, tagged ``hybrid``

    Ties keep first-seen order (vector hits before keyword hits).
    """
    validate_search_args(limit, keyword_weight)
    merged: dict[str, QueryResult] = {}

    for result in vector_results:
        if result.chunk_id in merged:
            continue
        merged[result.chunk_id] = result.model_copy(
            update={
                "similarity_score": result.similarity_score * (1 - keyword_weight),
                "search_method": SearchMethod.VECTOR,
            }
        )

    seen_keyword: set[str] = set()
    for result in keyword_results:
        # Only a chunk's best keyword hit counts.
        if result.chunk_id in seen_keyword:
            continue
        seen_keyword.add(result.chunk_id)
        weighted = result.similarity_score * keyword_weight
        existing = merged.get(result.chunk_id)
        if existing is None:
            merged[result.chunk_id] = result.model_copy(
                update={"similarity_score": weighted, "search_method": SearchMethod.KEYWORD}
            )
        else:
            merged[result.chunk_id] = existing.model_copy(
                update={
                    "similarity_score": existing.similarity_score + weighted,
                    "search_method": SearchMethod.HYBRID,
                    "metadata": {**existing.metadata, "keyword_match": result.metadata},
                }
            )

    ranked = sorted(merged.values(), key=lambda r: r.similarity_score, reverse=True)
    return ranked[:limit]
