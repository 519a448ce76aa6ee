"""Status sink that writes progress text to the structured log.

``build_components`` makes it the default sink of the orchestrator, so a job
submitted without a chat integration still reports its progress.
"""

from __future__ import annotations

import structlog

from ragindex.interfaces.status_sink import IStatusSink

logger = structlog.get_logger(logger_name=__name__)


class LoggingStatusSink(IStatusSink):
    """Log each status update and remember the last few."""

    def __init__(self, history_size: int = 20) -> None:
        self._history_size = history_size
        self._history: list[str] = []

    async def notify(self, text: str) -> None:
        logger.info("status_update", text=text)
        self._history.append(text)
        del self._history[: -self._history_size]

    @property
    def history(self) -> list[str]:
        return list(self._history)
