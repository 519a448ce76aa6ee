"""Ingestion job lifecycle on top of :class:`IJobStore`.

Every transition is a compare-and-set against the stored status, so two
callers racing on the same job cannot both win:

    create_job   → pending          (rejected while the scope has a running job)
    start_job    pending → running
    complete_job running → completed
    fail_job     pending | running → failed   (never raises)

Counter updates (:meth:`JobManager.update_job_progress`) are best-effort:
a failed write is logged and the pipeline carries on.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import structlog

from ragindex.interfaces.job_store import IJobStore
from ragindex.models.job import IngestionJob, JobCounters, JobStatus
from ragindex.utils.errors import (
    InvalidTransitionError,
    NotFoundError,
    RagIndexError,
    ValidationError,
)
from ragindex.utils.logging import get_logger

_ERROR_MESSAGE_MAX_LENGTH = 2000

# Rough shares used to estimate progress from counters alone.
_COUNTER_WEIGHT_CHANNELS = 30.0
_COUNTER_WEIGHT_MESSAGES = 40.0
_COUNTER_WEIGHT_KEYWORDS = 30.0
_EXPECTED_KEYWORDS_PER_CHUNK = 5


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _require(value: str, field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(message=f"{field} must not be empty", field=field)
    return value


def _format_duration(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs}s"


class JobManager:
    """Create, advance and inspect ingestion jobs."""

    def __init__(self, store: IJobStore) -> None:
        self._store = store
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def create_job(self, scope_id: str, scope_name: str, initiator: str) -> IngestionJob:
        """Insert a ``pending`` job for the scope.

        Raises
        ------
        ValidationError
            If an argument is blank.
        JobAlreadyRunningError
            If the scope already has a ``running`` job.
        """
        job = IngestionJob(
            id=str(uuid.uuid4()),
            scope_id=_require(scope_id, "scope_id"),
            scope_name=_require(scope_name, "scope_name"),
            initiator=_require(initiator, "initiator"),
        )
        created = await self._store.create_job_if_idle(job)
        self._logger.info(
            "job_created",
            job_id=created.id,
            scope_id=created.scope_id,
            initiator=created.initiator,
        )
        return created

    async def start_job(self, job_id: str) -> IngestionJob:
        job = await self._transition(job_id, JobStatus.RUNNING, started_at=_now())
        self._logger.info("job_started", job_id=job_id, scope_id=job.scope_id)
        return job

    async def complete_job(
        self,
        job_id: str,
        links_found: int,
        chunks_created: int,
        keywords_extracted: int,
    ) -> IngestionJob:
        current = await self._require_job(job_id)
        counters = current.counters.model_copy(
            update={
                "links_found": links_found,
                "chunks_created": chunks_created,
                "keywords_extracted": keywords_extracted,
            }
        )
        job = await self._transition(
            job_id,
            JobStatus.COMPLETED,
            current=current,
            counters=counters,
            completed_at=_now(),
        )
        self._logger.info(
            "job_completed",
            job_id=job_id,
            links_found=links_found,
            chunks_created=chunks_created,
            keywords_extracted=keywords_extracted,
        )
        return job

    async def fail_job(self, job_id: str, error_message: str) -> IngestionJob | None:
        """Mark the job failed.  Logs instead of raising; returns ``None`` on failure."""
        message = (error_message or "unknown error")[:_ERROR_MESSAGE_MAX_LENGTH]
        try:
            job = await self._transition(
                job_id,
                JobStatus.FAILED,
                error_message=message,
                completed_at=_now(),
            )
        except Exception as exc:
            self._logger.error(
                "job_fail_not_recorded",
                job_id=job_id,
                error_message=message,
                error=str(exc),
            )
            return None
        self._logger.warning("job_failed", job_id=job_id, error_message=message)
        return job

    async def update_job_progress(self, job_id: str, **counters: int) -> IngestionJob | None:
        """Overwrite the given counters on a running job.

        Raises
        ------
        ValidationError
            If a counter name is unknown or a value is negative.  Storage
            failures are logged and yield ``None``.
        """
        unknown = set(counters) - JobCounters.field_names()
        if unknown:
            raise ValidationError(
                message=f"Unknown job counters: {', '.join(sorted(unknown))}",
                field="counters",
            )
        negative = [name for name, value in counters.items() if value < 0]
        if negative:
            raise ValidationError(
                message=f"Job counters must be non-negative: {', '.join(sorted(negative))}",
                field="counters",
            )

        try:
            current = await self._require_job(job_id)
            updated = current.model_copy(
                update={"counters": current.counters.model_copy(update=counters)}
            )
            return await self._store.update_job(updated, expected_status=current.status)
        except RagIndexError as exc:
            self._logger.warning("job_progress_not_recorded", job_id=job_id, error=str(exc))
            return None

    async def _transition(
        self,
        job_id: str,
        target: JobStatus,
        current: IngestionJob | None = None,
        **changes: Any,
    ) -> IngestionJob:
        current = current or await self._require_job(job_id)
        if not current.status.can_transition_to(target):
            raise InvalidTransitionError(job_id, current.status.value, target.value)
        updated = current.model_copy(update={"status": target, **changes})
        return await self._store.update_job(updated, expected_status=current.status)

    async def _require_job(self, job_id: str) -> IngestionJob:
        job = await self._store.get_job(job_id)
        if job is None:
            raise NotFoundError(message=f"Ingestion job {job_id} not found")
        return job

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_job(self, job_id: str) -> IngestionJob | None:
        return await self._store.get_job(job_id)

    async def get_running_job(self, scope_id: str) -> IngestionJob | None:
        return await self._store.get_running_job(scope_id)

    async def get_job_history(self, scope_id: str, limit: int = 10) -> list[IngestionJob]:
        """Return the scope's most recent jobs, newest first."""
        if limit < 1:
            raise ValidationError(message=f"limit must be >= 1, got {limit}", field="limit")
        return await self._store.list_jobs(scope_id, limit=limit)

    @staticmethod
    def get_job_duration(job: IngestionJob, now: datetime | None = None) -> float | None:
        """Seconds between start and completion (or ``now`` while running)."""
        if job.started_at is None:
            return None
        end = job.completed_at or now or _now()
        return max(0.0, (end - job.started_at).total_seconds())

    @staticmethod
    def get_job_progress_percentage(job: IngestionJob) -> float:
        """Estimate progress from the persisted counters alone.

        Used where no live tracker exists (e.g. a job listing).  Terminal
        jobs report 100 when completed and 0 when failed.
        """
        if job.status is JobStatus.COMPLETED:
            return 100.0
        if job.status is not JobStatus.RUNNING:
            return 0.0

        c = job.counters
        total_weight = 0.0
        done = 0.0
        if c.total_channels > 0:
            total_weight += _COUNTER_WEIGHT_CHANNELS
            done += min(c.processed_channels / c.total_channels, 1.0) * _COUNTER_WEIGHT_CHANNELS
        if c.total_messages > 0:
            total_weight += _COUNTER_WEIGHT_MESSAGES
            done += min(c.processed_messages / c.total_messages, 1.0) * _COUNTER_WEIGHT_MESSAGES
        if c.chunks_created > 0:
            total_weight += _COUNTER_WEIGHT_KEYWORDS
            expected = c.chunks_created * _EXPECTED_KEYWORDS_PER_CHUNK
            done += min(c.keywords_extracted / expected, 1.0) * _COUNTER_WEIGHT_KEYWORDS
        return round(done / total_weight * 100, 1) if total_weight else 0.0

    @classmethod
    def get_job_summary(cls, job: IngestionJob, now: datetime | None = None) -> dict[str, Any]:
        """One-line status summary plus duration and progress for display."""
        duration = cls.get_job_duration(job, now)
        percentage = cls.get_job_progress_percentage(job)
        if job.status is JobStatus.PENDING:
            summary = "Waiting to start"
        elif job.status is JobStatus.RUNNING:
            summary = f"Running ({percentage:.1f}%)"
        elif job.status is JobStatus.COMPLETED:
            summary = (
                f"Completed: {job.counters.chunks_created} chunks, "
                f"{job.counters.keywords_extracted} keywords"
            )
        else:
            summary = f"Failed: {job.error_message or 'unknown error'}"
        return {
            "status": job.status.value,
            "duration": _format_duration(duration) if duration is not None else None,
            "progress_percentage": percentage,
            "summary": summary,
        }
