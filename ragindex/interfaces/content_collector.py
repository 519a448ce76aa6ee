"""Abstract base class for source-platform content collectors.

A collector enumerates the items (messages, posts) of one scope and the
links each item carries.  How it talks to the platform is its own concern;
the orchestrator only needs the items and progress counts.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field


@dataclass(frozen=True)
class CollectedItem:
    """One item collected from a scope, with the links found in it."""

    id: str
    text: str
    links: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class FetchProgress:
    """Counts reported by a collector while it walks a scope."""

    processed_channels: int = 0
    total_channels: int = 0
    processed_messages: int = 0
    total_messages: int = 0


FetchProgressCallback = Callable[[FetchProgress], Awaitable[None]]


class IContentCollector(ABC):
    """Contract for enumerating a scope's items and their links."""

    @abstractmethod
    async def fetch(
        self,
        scope_id: str,
        on_progress: FetchProgressCallback | None = None,
    ) -> list[CollectedItem]:
        """Collect every item of ``scope_id``.

        Parameters
        ----------
        scope_id:
            Identifier of the scope (e.g. a guild or workspace) to walk.
        on_progress:
            Awaited with a :class:`FetchProgress` snapshot as channels and
            messages are processed.

        Returns
        -------
        list[CollectedItem]
            All collected items; items without links are allowed.
        """
