"""Ingestion pipeline: job lifecycle, progress tracking and orchestration."""

from ragindex.pipeline.job_manager import JobManager
from ragindex.pipeline.orchestrator import IngestionOrchestrator
from ragindex.pipeline.progress_tracker import (
    ThrottledStatusReporter,
    WeightedProgressTracker,
    format_progress,
)

__all__ = [
    "IngestionOrchestrator",
    "JobManager",
    "ThrottledStatusReporter",
    "WeightedProgressTracker",
    "format_progress",
]
