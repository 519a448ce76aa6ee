"""Keyword extraction: LLM candidates filtered and ranked by BM25.

For each chunk:

1. The LLM proposes candidate terms with a confidence in ``[0, 1]``.
2. Candidates are validated: non-string terms and non-numeric confidences
   are dropped, confidences clamped, terms trimmed and de-duplicated
   case-insensitively (first occurrence wins), terms over 50 characters
   dropped.
3. Each survivor is scored with BM25 against the chunk.
4. Candidates below ``min_confidence`` or ``min_bm25_score`` are dropped.
5. The rest are ranked by ``bm25_score * confidence`` and truncated to
   ``max_keywords``.
6. Surviving terms are embedded (batch, then per-term fallback); a term
   that cannot be embedded is dropped because keyword search needs its
   vector.

If the model answers with broken JSON, ``"keyword"``/``"confidence"``
pairs are salvaged with a regex before giving up on the response.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Any

import structlog

from ragindex.interfaces.embedding_provider import IEmbeddingProvider
from ragindex.interfaces.hybrid_store import IHybridStore
from ragindex.interfaces.llm_provider import ILLMProvider
from ragindex.models.job import StepProgressCallback
from ragindex.models.rag import (
    Chunk,
    CorpusStats,
    KeywordCandidate,
    KeywordResult,
    KeywordStats,
    ScoredKeyword,
)
from ragindex.services.bm25_scorer import BM25Scorer
from ragindex.services.embedding_service import (
    default_embedding_retry,
    embed_texts_with_fallback,
)
from ragindex.utils.concurrency import bounded_map
from ragindex.utils.llm_json import parse_llm_json, require_list_field
from ragindex.utils.retry import RetryPolicy, retry_all

logger = structlog.get_logger(logger_name=__name__)

_MAX_TERM_LENGTH = 50
_KEYWORD_TEMPERATURE = 0.2
_KEYWORD_MAX_TOKENS = 1000

_KEYWORD_RE = re.compile(r'"keyword"\s*:\s*"([^"]+)"')
_CONFIDENCE_RE = re.compile(r'"confidence"\s*:\s*([0-9]*\.?[0-9]+)')

_KEYWORD_PROMPT = """\
Extract the most important keywords from the document below.  Focus on
technical terms, concepts and significant proper nouns.

Document:
\"\"\"
{document}
\"\"\"

Rules:
1. Extract at most {max_keywords} keywords.
2. Rate the importance of each keyword from 0.0 to 1.0.
3. Keep keywords in the language they appear in the document.
4. Use single words or short phrases (at most 3 words).
5. Prefer technical terms, concepts and proper nouns.

Answer with JSON only, in this format:
{{
  "keywords": [
    {{"keyword": "first keyword", "confidence": 0.9}},
    {{"keyword": "second keyword", "confidence": 0.8}}
  ]
}}"""


# ---------------------------------------------------------------------------
# Candidate parsing
# ---------------------------------------------------------------------------

def validate_candidates(raw: list[Any]) -> list[KeywordCandidate]:
    """Validate, clamp, trim and de-duplicate raw ``{keyword, confidence}`` items."""
    candidates: list[KeywordCandidate] = []
    seen: set[str] = set()
    for item in raw:
        if not isinstance(item, dict):
            continue
        term = item.get("keyword")
        confidence = item.get("confidence")
        if not isinstance(term, str):
            continue
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            continue
        term = term.strip()
        if not term or len(term) > _MAX_TERM_LENGTH:
            continue
        key = term.casefold()
        if key in seen:
            continue
        seen.add(key)
        candidates.append(
            KeywordCandidate(term=term, confidence=min(1.0, max(0.0, float(confidence))))
        )
    return candidates


def salvage_candidates(response: str) -> list[KeywordCandidate]:
    """Pair ``"keyword"`` and ``"confidence"`` values by position.

    A keyword with no matching confidence gets 0.5.
    """
    terms = [m.group(1) for m in _KEYWORD_RE.finditer(response)]
    confidences = [float(m.group(1)) for m in _CONFIDENCE_RE.finditer(response)]
    raw = [
        {"keyword": term, "confidence": confidences[i] if i < len(confidences) else 0.5}
        for i, term in enumerate(terms)
    ]
    return validate_candidates(raw)


def parse_keyword_candidates(response: str) -> list[KeywordCandidate]:
    """Turn an LLM response into validated candidates, salvaging if needed."""
    parsed = parse_llm_json(response, require_list_field("keywords"))
    if parsed.ok:
        return validate_candidates(parsed.value["keywords"])
    logger.warning(
        "keyword_response_unparseable",
        reasons=parsed.reasons[:3],
        response_preview=response[:200],
    )
    return salvage_candidates(response)


# ---------------------------------------------------------------------------
# Per-chunk extraction
# ---------------------------------------------------------------------------

class KeywordExtractor:
    """Propose, score, filter, rank and embed keywords for one chunk."""

    def __init__(
        self,
        llm: ILLMProvider,
        scorer: BM25Scorer,
        embedding_provider: IEmbeddingProvider,
        max_keywords: int = 8,
        min_confidence: float = 0.6,
        min_bm25_score: float = 0.1,
        llm_retry: RetryPolicy | None = None,
        embedding_retry: RetryPolicy | None = None,
        fallback_concurrency: int = 3,
    ) -> None:
        self._llm = llm
        self._scorer = scorer
        self._embedding_provider = embedding_provider
        self._max_keywords = max_keywords
        self._min_confidence = min_confidence
        self._min_bm25_score = min_bm25_score
        self._llm_retry = llm_retry or RetryPolicy(
            max_attempts=3,
            base_delay=2.0,
            classifier=retry_all,
        )
        self._embedding_retry = embedding_retry or default_embedding_retry()
        self._fallback_concurrency = fallback_concurrency

    async def extract_keywords(
        self,
        chunk_content: str,
        corpus_stats: CorpusStats,
    ) -> list[ScoredKeyword]:
        """Return at most ``max_keywords`` embedded keywords, best first."""
        if not chunk_content.strip():
            return []

        candidates = await self.propose_candidates(chunk_content)
        if not candidates:
            logger.info("keyword_no_candidates", content_length=len(chunk_content))
            return []

        ranked = self.rank_candidates(candidates, chunk_content, corpus_stats)
        if not ranked:
            return []

        vectors = await embed_texts_with_fallback(
            self._embedding_provider,
            [k.term for k in ranked],
            self._embedding_retry,
            self._fallback_concurrency,
        )
        embedded = [
            keyword.model_copy(update={"vector": vector})
            for keyword, vector in zip(ranked, vectors)
            if vector is not None
        ]
        if len(embedded) < len(ranked):
            logger.warning(
                "keyword_terms_dropped_without_vector",
                dropped=len(ranked) - len(embedded),
            )
        return embedded

    async def propose_candidates(self, chunk_content: str) -> list[KeywordCandidate]:
        """Ask the LLM for candidates; ``[]`` once every attempt has failed."""
        prompt = _KEYWORD_PROMPT.format(
            document=chunk_content,
            max_keywords=self._max_keywords,
        )
        try:
            response = await self._llm_retry.run(
                lambda: self._llm.generate(
                    prompt,
                    temperature=_KEYWORD_TEMPERATURE,
                    max_tokens=_KEYWORD_MAX_TOKENS,
                ),
                operation="keyword_candidates",
                logger=logger,
            )
        except Exception as exc:
            logger.warning("keyword_llm_failed", error=str(exc))
            return []
        return parse_keyword_candidates(response)

    def rank_candidates(
        self,
        candidates: list[KeywordCandidate],
        chunk_content: str,
        corpus_stats: CorpusStats,
    ) -> list[ScoredKeyword]:
        """Score, filter and rank candidates (steps 3 to 5); no embedding."""
        scores = self._scorer.score_terms(
            [c.term for c in candidates],
            chunk_content,
            corpus_stats,
        )
        kept = [
            ScoredKeyword(
                term=candidate.term,
                bm25_score=score.score,
                term_frequency=score.term_frequency,
                document_frequency=score.document_frequency,
                confidence=candidate.confidence,
            )
            for candidate, score in zip(candidates, scores)
            if candidate.confidence >= self._min_confidence
            and score.score >= self._min_bm25_score
        ]
        # sorted() is stable, so equal scores keep the model's order.
        kept = sorted(kept, key=lambda k: k.rank_score, reverse=True)
        return kept[: self._max_keywords]


# ---------------------------------------------------------------------------
# Batch service
# ---------------------------------------------------------------------------

class KeywordExtractionService:
    """Run :class:`KeywordExtractor` over many chunks and persist the results."""

    def __init__(
        self,
        extractor: KeywordExtractor,
        store: IHybridStore,
        concurrency: int = 3,
    ) -> None:
        self._extractor = extractor
        self._store = store
        self._concurrency = concurrency

    async def process_chunks(
        self,
        chunks: list[Chunk],
        corpus_stats: CorpusStats,
        on_progress: StepProgressCallback | None = None,
    ) -> list[KeywordResult]:
        """Extract and persist keywords for every chunk; one result per chunk."""
        total = len(chunks)
        done = 0
        logger.info("keyword_extraction_start", chunks=total, concurrency=self._concurrency)

        async def _process(chunk: Chunk) -> KeywordResult:
            nonlocal done
            try:
                keywords = await self._extractor.extract_keywords(chunk.content, corpus_stats)
                if keywords:
                    await self._store.insert_keywords(chunk.id, keywords)
                return KeywordResult(chunk_id=chunk.id, keywords=keywords, success=True)
            finally:
                done += 1
                if on_progress is not None:
                    await on_progress(done, total)

        outcome = await bounded_map(
            _process,
            chunks,
            limit=self._concurrency,
            logger=logger,
            error_event="keyword_chunk_failed",
        )
        by_chunk = {result.chunk_id: result for result in outcome.values}
        for failure in outcome.failures:
            by_chunk[failure.item.id] = KeywordResult(
                chunk_id=failure.item.id,
                success=False,
                error=str(failure.error),
            )
        results = [by_chunk[c.id] for c in chunks]

        stats = self.get_stats(results)
        logger.info(
            "keyword_extraction_complete",
            total_keywords=stats.total_keywords,
            successful=stats.successful,
            chunks=total,
        )
        return results

    @staticmethod
    def get_stats(results: list[KeywordResult], top_n: int = 10) -> KeywordStats:
        """Summarise keyword results, including the most common terms."""
        processed = len(results)
        successful = sum(1 for r in results if r.success)
        total_keywords = sum(len(r.keywords) for r in results)
        counts: Counter[str] = Counter()
        for result in results:
            counts.update({k.term.casefold() for k in result.keywords})
        return KeywordStats(
            chunks_processed=processed,
            successful=successful,
            total_keywords=total_keywords,
            average_keywords_per_chunk=round(total_keywords / processed, 2) if processed else 0.0,
            success_rate=round(successful / processed, 4) if processed else 0.0,
            top_keywords=counts.most_common(top_n),
        )
