"""Hybrid store and job store backends."""

from ragindex.providers.store.sqlite_hybrid_store import SQLiteHybridStore

__all__ = ["SQLiteHybridStore"]
