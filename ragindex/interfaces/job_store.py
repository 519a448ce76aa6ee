"""Abstract base class for ingestion job persistence.

The job store is where the "one running job per scope" rule is enforced:
:meth:`IJobStore.create_job_if_idle` checks and inserts atomically, and
:meth:`IJobStore.update_job` only writes when the stored status still
matches what the caller read.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ragindex.models.job import IngestionJob, JobStatus


# Concrete implementations: SQLiteHybridStore (ragindex/providers/store/)
class IJobStore(ABC):
    """Contract for durable ingestion job records."""

    @abstractmethod
    async def create_job_if_idle(self, job: IngestionJob) -> IngestionJob:
        """Insert ``job`` unless its scope already has a running job.

        Raises
        ------
        ragindex.utils.errors.JobAlreadyRunningError
            If a job in ``running`` state exists for the scope.
        """

    @abstractmethod
    async def update_job(self, job: IngestionJob, expected_status: JobStatus) -> IngestionJob:
        """Persist ``job`` if the stored status still equals ``expected_status``.

        Raises
        ------
        ragindex.utils.errors.NotFoundError
            If the job does not exist.
        ragindex.utils.errors.InvalidTransitionError
            If another writer changed the status first.
        ragindex.utils.errors.JobAlreadyRunningError
            If moving to ``running`` would give the scope two running jobs.
        """

    @abstractmethod
    async def get_job(self, job_id: str) -> IngestionJob | None:
        """Return a job by id, or ``None``."""

    @abstractmethod
    async def get_running_job(self, scope_id: str) -> IngestionJob | None:
        """Return the scope's running job, or ``None``."""

    @abstractmethod
    async def list_jobs(self, scope_id: str, limit: int = 10) -> list[IngestionJob]:
        """Return the scope's jobs, newest first."""
