"""Concrete adapters for the interfaces in ``ragindex.interfaces``."""
