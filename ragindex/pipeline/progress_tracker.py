"""Weighted progress tracking for ingestion jobs.

Each ingestion phase owns a share of the overall 0-100 % bar (fetch 30,
extract 25, chunk 15, embed 15, keyword 15 by default).  Services report
``(done, total)`` for their phase; the tracker turns that into an overall
percentage and broadcasts a :class:`ProgressUpdate` to its listeners.

    Orchestrator ──update_phase()──→ WeightedProgressTracker ──→ listener(update)
                                                             ──→ ThrottledStatusReporter ──→ IStatusSink

Embedding and keyword extraction run at the same time, so more than one
phase can be in flight; the overall value is the weighted sum of every
phase's fraction.  The reported percentage never goes backwards.

Listeners may be sync or async.  A listener that raises is logged and
skipped so a broken status destination cannot stall the pipeline.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog

from ragindex.interfaces.status_sink import IStatusSink
from ragindex.models.job import (
    DEFAULT_PHASE_WEIGHTS,
    IngestionPhase,
    ProgressUpdate,
    StepProgressCallback,
)
from ragindex.utils.errors import ValidationError
from ragindex.utils.logging import get_logger

ProgressListener = Callable[[ProgressUpdate], Awaitable[None] | None]

_BAR_WIDTH = 20
_PHASE_LABELS: dict[IngestionPhase, str] = {
    IngestionPhase.FETCH: "Fetching messages",
    IngestionPhase.EXTRACT: "Extracting link content",
    IngestionPhase.CHUNK: "Chunking documents",
    IngestionPhase.EMBED: "Embedding chunks",
    IngestionPhase.KEYWORD: "Extracting keywords",
}


def progress_bar(percentage: float, width: int = _BAR_WIDTH) -> str:
    """Render ``percentage`` as a fixed-width block bar."""
    filled = int(round(max(0.0, min(100.0, percentage)) / 100 * width))
    return "█" * filled + "░" * (width - filled)


def _format_seconds(seconds: float) -> str:
    seconds = int(round(seconds))
    if seconds < 60:
        return f"{seconds}s"
    minutes, seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {seconds:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m"


def format_progress(update: ProgressUpdate) -> str:
    """Human-readable multi-line status text for a chat message or log line."""
    lines = [
        f"[{progress_bar(update.percentage)}] {update.percentage:.1f}%",
        f"{_PHASE_LABELS[update.phase]}: {update.message}" if update.message
        else _PHASE_LABELS[update.phase],
    ]
    details = ", ".join(f"{k}={v}" for k, v in update.metadata.items())
    if details:
        lines.append(details)
    if update.is_final:
        lines.append(f"Elapsed: {_format_seconds(update.elapsed_seconds)}")
    elif update.eta_seconds is not None:
        lines.append(f"ETA: {_format_seconds(update.eta_seconds)}")
    return "\n".join(lines)


class WeightedProgressTracker:
    """Combine per-phase fractions into one overall percentage.

    Parameters
    ----------
    weights:
        Share of the bar per phase; every weight positive, total 100.
    clock:
        Monotonic clock used for elapsed time and ETA.
    """

    def __init__(
        self,
        weights: Mapping[IngestionPhase, float] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        weights = dict(weights or DEFAULT_PHASE_WEIGHTS)
        if any(w <= 0 for w in weights.values()):
            raise ValidationError(message="Phase weights must be positive", field="weights")
        total = sum(weights.values())
        if abs(total - 100.0) > 1e-6:
            raise ValidationError(
                message=f"Phase weights must sum to 100, got {total:g}",
                field="weights",
            )
        self._weights = weights
        self._fractions: dict[IngestionPhase, float] = {phase: 0.0 for phase in weights}
        self._clock = clock
        self._started = clock()
        self._percentage = 0.0
        self._finished = False
        self._listeners: list[ProgressListener] = []
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @property
    def percentage(self) -> float:
        return self._percentage

    @property
    def finished(self) -> bool:
        return self._finished

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def register_listener(self, callback: ProgressListener) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unregister_listener(self, callback: ProgressListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    # ------------------------------------------------------------------
    # Phase reporting
    # ------------------------------------------------------------------

    async def start_phase(self, phase: IngestionPhase, message: str = "") -> ProgressUpdate:
        return await self.update_phase(phase, 0.0, message or "starting")

    async def update_phase(
        self,
        phase: IngestionPhase,
        fraction: float,
        message: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> ProgressUpdate:
        """Record ``fraction`` (0..1) of ``phase`` as done and notify listeners."""
        if phase not in self._weights:
            raise ValidationError(message=f"Unknown phase {phase!r}", field="phase")
        fraction = max(0.0, min(1.0, fraction))
        # A phase's own fraction never goes backwards either.
        self._fractions[phase] = max(self._fractions[phase], fraction)
        return await self._publish(phase, message, metadata or {})

    async def complete_phase(self, phase: IngestionPhase, message: str = "") -> ProgressUpdate:
        return await self.update_phase(phase, 1.0, message or "done")

    async def finish(
        self,
        message: str,
        phase: IngestionPhase | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ProgressUpdate:
        """Publish the final update.

        On success every phase is complete and the bar reads 100 %.  After a
        failure (``phase`` given) the bar stays where it stopped.
        """
        if phase is None:
            for name in self._fractions:
                self._fractions[name] = 1.0
            phase = list(self._weights)[-1]
        self._finished = True
        return await self._publish(phase, message, metadata or {}, is_final=True)

    def step_callback(self, phase: IngestionPhase, label: str) -> StepProgressCallback:
        """Adapt a service's ``(done, total)`` reports to :meth:`update_phase`."""

        async def _on_step(done: int, total: int) -> None:
            fraction = done / total if total else 1.0
            await self.update_phase(phase, fraction, f"{done}/{total} {label}")

        return _on_step

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _overall(self) -> float:
        raw = sum(self._weights[p] * f for p, f in self._fractions.items())
        return max(self._percentage, min(100.0, max(0.0, raw)))

    async def _publish(
        self,
        phase: IngestionPhase,
        message: str,
        metadata: dict[str, Any],
        is_final: bool = False,
    ) -> ProgressUpdate:
        self._percentage = self._overall()
        elapsed = max(0.0, self._clock() - self._started)
        eta = None
        if 0.0 < self._percentage < 100.0:
            eta = elapsed * (100.0 - self._percentage) / self._percentage

        update = ProgressUpdate(
            phase=phase,
            percentage=self._percentage,
            message=message,
            metadata=metadata,
            elapsed_seconds=elapsed,
            eta_seconds=eta,
            is_final=is_final,
        )
        self._logger.debug(
            "progress_update",
            phase=phase.value,
            percentage=round(self._percentage, 1),
            message=message,
            is_final=is_final,
        )
        await self._notify_listeners(update)
        return update

    async def _notify_listeners(self, update: ProgressUpdate) -> None:
        for callback in list(self._listeners):
            try:
                result = callback(update)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "progress_listener_error",
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )


class ThrottledStatusReporter:
    """Listener that forwards formatted progress to an :class:`IStatusSink`.

    Sends at most one update per ``interval`` seconds.  Final updates and
    updates at 100 % always go out.
    """

    def __init__(
        self,
        sink: IStatusSink,
        interval: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        formatter: Callable[[ProgressUpdate], str] = format_progress,
    ) -> None:
        self._sink = sink
        self._interval = interval
        self._clock = clock
        self._formatter = formatter
        self._last_sent: float | None = None
        self._lock = asyncio.Lock()
        self.sent = 0
        self.suppressed = 0

    async def __call__(self, update: ProgressUpdate) -> None:
        async with self._lock:
            now = self._clock()
            always = update.is_final or update.percentage >= 100.0
            if (
                not always
                and self._last_sent is not None
                and now - self._last_sent < self._interval
            ):
                self.suppressed += 1
                return
            self._last_sent = now
            self.sent += 1
        await self._sink.notify(self._formatter(update))
