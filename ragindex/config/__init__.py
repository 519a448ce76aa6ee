"""Configuration module -- exports Settings and load_settings."""

from ragindex.config.loader import load_settings
from ragindex.config.settings import Settings

__all__ = ["Settings", "load_settings"]
