"""ragindex -- hybrid vector + BM25 ingestion and retrieval backbone."""

__version__ = "0.1.0"
