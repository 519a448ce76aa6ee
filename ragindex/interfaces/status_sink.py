"""Abstract base class for human-facing status destinations.

A status sink receives pre-formatted progress text, for example a message
that a chat bot edits in place.  Sinks are best-effort: the progress
tracker logs and ignores their failures.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations: LoggingStatusSink (ragindex/providers/sink/)
class IStatusSink(ABC):
    """Contract for delivering progress text to a human."""

    @abstractmethod
    async def notify(self, text: str) -> None:
        """Deliver one status update."""
