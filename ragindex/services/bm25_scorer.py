"""Okapi BM25 scoring for keyword relevance.

Scores how relevant a term is to one chunk relative to the whole corpus::

    idf           = ln((N - df + 0.5) / (df + 0.5))
    normalized_tf = tf * (k1 + 1) / (tf + k1 * (1 - b + b * doc_len / avg_len))
    score         = max(0, idf * normalized_tf)

``N`` and ``avg_len`` come from :class:`~ragindex.models.rag.CorpusStats`,
which the orchestrator reads from the store once per job.  Terms that
appear in most of the corpus get a negative idf and therefore score 0.

Text is normalised before counting: case-folded, punctuation replaced by
spaces, whitespace collapsed.  Letters and digits of every script survive,
so Japanese and Chinese terms are scored too.  Because those scripts do
not separate words with spaces, terms containing them are counted as
substrings; all other terms must match on word boundaries.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable

from ragindex.models.rag import BM25Score, CorpusStats
from ragindex.utils.errors import ValidationError

_NON_WORD_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")
# Hiragana, katakana, CJK unified ideographs (+ extension A), Hangul syllables.
_UNSPACED_SCRIPT_RE = re.compile(r"[\u3040-\u309f\u30a0-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af]")
_MIN_IDF_RATIO = 1e-9


def normalize_text(text: str) -> str:
    """Case-fold, replace punctuation with spaces and collapse whitespace."""
    folded = _NON_WORD_RE.sub(" ", text.casefold())
    return _WHITESPACE_RE.sub(" ", folded).strip()


def document_length(text: str) -> int:
    """Return the number of whitespace-separated words after normalisation."""
    return _word_count(normalize_text(text))


def _word_count(normalized: str) -> int:
    return len(normalized.split(" ")) if normalized else 0


def count_term(normalized_document: str, term: str) -> int:
    """Count occurrences of ``term`` in an already-normalised document."""
    normalized_term = normalize_text(term)
    if not normalized_term or not normalized_document:
        return 0
    if _UNSPACED_SCRIPT_RE.search(normalized_term):
        return normalized_document.count(normalized_term)
    pattern = r"(?<!\w)" + re.escape(normalized_term) + r"(?!\w)"
    return len(re.findall(pattern, normalized_document))


class BM25Scorer:
    """Pure BM25 calculator.

    Parameters
    ----------
    k1:
        Term-frequency saturation.  Must be non-negative.
    b:
        Length normalisation strength, in ``[0, 1]``.
    """

    def __init__(self, k1: float = 1.2, b: float = 0.75) -> None:
        if k1 < 0:
            raise ValidationError(message=f"k1 must be >= 0, got {k1}", field="k1")
        if not 0.0 <= b <= 1.0:
            raise ValidationError(message=f"b must be within [0, 1], got {b}", field="b")
        self._k1 = k1
        self._b = b

    @property
    def k1(self) -> float:
        return self._k1

    @property
    def b(self) -> float:
        return self._b

    def score(
        self,
        term: str,
        term_frequency: int,
        document_frequency: int,
        document_length: int,
        corpus_stats: CorpusStats,
    ) -> BM25Score:
        """Score one term for one document.

        Returns the score together with its idf and normalised tf so
        callers can log or persist the components.
        """
        if term_frequency < 0 or document_frequency < 0 or document_length < 0:
            raise ValidationError(
                message="term_frequency, document_frequency and document_length must be >= 0"
            )

        n = corpus_stats.total_documents
        # df > N (e.g. an empty corpus) would take the log of a non-positive
        # number; floor the ratio so the term simply scores 0.
        ratio = (n - document_frequency + 0.5) / (document_frequency + 0.5)
        idf = math.log(max(ratio, _MIN_IDF_RATIO))

        avg_len = corpus_stats.average_document_length
        length_ratio = document_length / avg_len if avg_len > 0 else 1.0
        denominator = term_frequency + self._k1 * (1 - self._b + self._b * length_ratio)
        normalized_tf = (
            term_frequency * (self._k1 + 1) / denominator if denominator > 0 else 0.0
        )

        return BM25Score(
            term=term,
            score=max(0.0, idf * normalized_tf),
            idf=idf,
            normalized_tf=normalized_tf,
            term_frequency=term_frequency,
            document_frequency=document_frequency,
        )

    def score_terms(
        self,
        terms: Iterable[str],
        document: str,
        corpus_stats: CorpusStats,
    ) -> list[BM25Score]:
        """Score every term against ``document``, in input order.

        Terms missing from the corpus statistics are treated as appearing
        in exactly one document.
        """
        normalized_document = normalize_text(document)
        doc_len = _word_count(normalized_document)
        frequencies = corpus_stats.term_document_frequency

        scores: list[BM25Score] = []
        for term in terms:
            df = frequencies.get(term) or frequencies.get(normalize_text(term)) or 1
            scores.append(
                self.score(
                    term=term,
                    term_frequency=count_term(normalized_document, term),
                    document_frequency=df,
                    document_length=doc_len,
                    corpus_stats=corpus_stats,
                )
            )
        return scores


def update_corpus_stats(stats: CorpusStats, document: str, terms: Iterable[str]) -> CorpusStats:
    """Return ``stats`` with one more document folded in.

    The average length is updated as a running mean and every distinct
    term that occurs in ``document`` has its document frequency bumped.
    Useful for offline scoring where the store is not available.
    """
    normalized_document = normalize_text(document)
    doc_len = _word_count(normalized_document)
    total = stats.total_documents + 1
    average = (stats.average_document_length * stats.total_documents + doc_len) / total

    frequencies = dict(stats.term_document_frequency)
    for term in dict.fromkeys(terms):
        if count_term(normalized_document, term) > 0:
            frequencies[term] = frequencies.get(term, 0) + 1

    return CorpusStats(
        total_documents=total,
        average_document_length=average,
        term_document_frequency=frequencies,
    )
