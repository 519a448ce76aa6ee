"""Abstract interfaces (ports) for every external dependency of ragindex.

Services depend on these ABCs, never on concrete SDKs.  ``main.py`` picks
the implementations and passes them in through constructors, so tests can
substitute mocks without patching imports.

- **ILLMProvider** -- text generation for chunking and keyword candidates
- **IEmbeddingProvider** -- dense vectors for chunks, keywords and queries
- **IContentCollector** -- enumerates a scope's items and their links
- **IContentExtractor** -- turns a link into readable text
- **IStatusSink** -- receives human-facing progress text
- **IHybridStore** -- corpus persistence and hybrid search
- **IJobStore** -- ingestion job records and the one-running-job rule
"""

from ragindex.interfaces.content_collector import (
    CollectedItem,
    FetchProgress,
    IContentCollector,
)
from ragindex.interfaces.content_extractor import ExtractedContent, IContentExtractor
from ragindex.interfaces.embedding_provider import IEmbeddingProvider
from ragindex.interfaces.hybrid_store import IHybridStore
from ragindex.interfaces.job_store import IJobStore
from ragindex.interfaces.llm_provider import ILLMProvider
from ragindex.interfaces.status_sink import IStatusSink

__all__ = [
    "CollectedItem",
    "ExtractedContent",
    "FetchProgress",
    "IContentCollector",
    "IContentExtractor",
    "IEmbeddingProvider",
    "IHybridStore",
    "IJobStore",
    "ILLMProvider",
    "IStatusSink",
]
