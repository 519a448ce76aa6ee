"""Shared pytest fixtures for the ragindex test suite."""

from __future__ import annotations

import hashlib
import json
import os
import re
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from ragindex.interfaces.content_collector import (
    CollectedItem,
    FetchProgress,
    FetchProgressCallback,
    IContentCollector,
)
from ragindex.interfaces.content_extractor import ExtractedContent, IContentExtractor
from ragindex.interfaces.embedding_provider import IEmbeddingProvider
from ragindex.interfaces.llm_provider import ILLMProvider
from ragindex.interfaces.status_sink import IStatusSink
from ragindex.providers.store.sqlite_hybrid_store import SQLiteHybridStore
from ragindex.services.bm25_scorer import normalize_text
from ragindex.utils.errors import ExternalApiError

_EMBEDDING_DIM = 32


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def _hash_to_vector(text: str, dimension: int = _EMBEDDING_DIM) -> list[float]:
    """Bag-of-words hashing vector: texts sharing words point the same way."""
    vector = [0.0] * dimension
    for token in normalize_text(text).split():
        bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % dimension
        vector[bucket] += 1.0
    if not any(vector):
        vector[0] = 1.0
    return vector


class FakeEmbeddingProvider(IEmbeddingProvider):
    """Deterministic embedder with switchable failure modes.

    ``fail_batch`` makes every batch call raise; texts listed in
    ``fail_texts`` raise on the single-text path too.
    """

    def __init__(
        self,
        dimension: int = _EMBEDDING_DIM,
        fail_batch: bool = False,
        fail_texts: set[str] | None = None,
    ) -> None:
        self._dimension = dimension
        self.fail_batch = fail_batch
        self.fail_texts = set(fail_texts or ())
        self.batch_calls: list[list[str]] = []
        self.single_calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.single_calls.append(text)
        if text in self.fail_texts:
            raise ExternalApiError(message=f"cannot embed {text!r}", provider_name="fake")
        return _hash_to_vector(text, self._dimension)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls.append(list(texts))
        if self.fail_batch:
            raise ExternalApiError(message="batch endpoint down", provider_name="fake")
        return [_hash_to_vector(t, self._dimension) for t in texts]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "fake-embedding"


def scripted_llm_response(prompt: str) -> str:
    """Answer chunking and keyword prompts the way a well-behaved model would.

    Chunking splits the quoted text on blank lines; keyword extraction
    proposes every capitalised word of the document.
    """
    if prompt.startswith("Split the following text"):
        text = prompt.split("Text:\n", 1)[1]
        parts = [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]
        return json.dumps({"chunks": [{"content": p, "index": i} for i, p in enumerate(parts)]})
    if prompt.startswith("Extract the most important keywords"):
        document = prompt.split('"""', 2)[1]
        words = dict.fromkeys(re.findall(r"\b[A-Z][a-zA-Z]{3,}\b", document))
        return "```json\n" + json.dumps(
            {"keywords": [{"keyword": w, "confidence": 0.9} for w in words]}
        ) + "\n```"
    return "{}"


class ListCollector(IContentCollector):
    """Collector over a fixed list of items."""

    def __init__(self, items: list[CollectedItem], channels: int = 1) -> None:
        self._items = items
        self._channels = channels

    async def fetch(
        self,
        scope_id: str,
        on_progress: FetchProgressCallback | None = None,
    ) -> list[CollectedItem]:
        if on_progress is not None:
            await on_progress(
                FetchProgress(
                    processed_channels=self._channels,
                    total_channels=self._channels,
                    processed_messages=len(self._items),
                    total_messages=len(self._items),
                )
            )
        return list(self._items)


class DictExtractor(IContentExtractor):
    """Extractor backed by a ``url -> text`` mapping; unknown links yield ``None``."""

    def __init__(self, pages: dict[str, str], failing: set[str] | None = None) -> None:
        self._pages = pages
        self._failing = set(failing or ())
        self.calls: list[str] = []

    async def extract(self, link: str) -> ExtractedContent | None:
        self.calls.append(link)
        if link in self._failing:
            raise ExternalApiError(message=f"fetch failed for {link}", provider_name="fake")
        text = self._pages.get(link)
        if text is None:
            return None
        return ExtractedContent(url=link, title=f"Page {link}", content=text)


class RecordingSink(IStatusSink):
    def __init__(self) -> None:
        self.messages: list[str] = []

    async def notify(self, text: str) -> None:
        self.messages.append(text)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_root() -> Path:
    return Path(__file__).parent.parent


@pytest.fixture
def fake_embedding_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def mock_llm_provider() -> ILLMProvider:
    """Mock ILLMProvider answering chunking and keyword prompts.

    Override ``mock_llm_provider.generate.side_effect`` (or
    ``return_value``) for specific tests.
    """
    mock = MagicMock(spec=ILLMProvider)
    mock.get_provider_name.return_value = "mock-llm"
    mock.generate = AsyncMock(side_effect=lambda prompt, **_: scripted_llm_response(prompt))
    return mock


@pytest.fixture
async def store():
    """SQLiteHybridStore on a temporary database file."""
    tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    tmp.close()
    s = SQLiteHybridStore(db_path=tmp.name)
    await s.initialize()
    yield s
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(tmp.name + suffix):
            os.unlink(tmp.name + suffix)


@pytest.fixture
def no_sleep():
    """Awaitable sleep stub that records requested delays."""
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep


@pytest.fixture
def sample_article_text() -> str:
    """Multi-paragraph article used by chunking and pipeline tests."""
    return (
        "PostgreSQL added native vector search through the pgvector extension. "
        "Developers store embeddings next to relational data and query them "
        "with cosine distance operators.\n\n"
        "BM25 remains the standard lexical ranking function. Elasticsearch and "
        "OpenSearch both default to BM25 when scoring keyword matches.\n\n"
        "Hybrid retrieval merges both signals. A keyword weight decides how much "
        "the lexical score counts against the dense similarity."
    )
