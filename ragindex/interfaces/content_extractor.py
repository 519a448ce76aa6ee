"""Abstract base class for link content extractors.

Turns a URL into readable text.  Fetching, HTML parsing and boilerplate
removal live behind this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class ExtractedContent:
    """Readable content of one link."""

    url: str
    title: str
    content: str
    description: str | None = None
    domain: str | None = None


class IContentExtractor(ABC):
    """Contract for pulling readable text out of a link."""

    @abstractmethod
    async def extract(self, link: str) -> ExtractedContent | None:
        """Fetch and extract the content behind ``link``.

        Returns ``None`` when the link has no usable content (binary file,
        empty page, unsupported scheme).  Raises for transport failures so
        the caller can count them.
        """
