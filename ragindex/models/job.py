"""Ingestion job models.

An :class:`IngestionJob` is the durable record of one ingestion run for a
scope.  Its status only moves forward:

    pending ──→ running ──→ completed
       │           │
       └───────────┴──────→ failed

The job manager (``ragindex/pipeline/job_manager.py``) enforces the
transitions; these models only describe them.  Models are frozen, so each
transition produces a new instance via ``model_copy(update={...})``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):  # noqa: UP042
    """Lifecycle states of an ingestion job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    def can_transition_to(self, target: JobStatus) -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class IngestionPhase(str, Enum):  # noqa: UP042
    """Phases of an ingestion run, in execution order."""

    FETCH = "fetch"        # Collect items and their links from the scope
    EXTRACT = "extract"    # Pull page content for each link
    CHUNK = "chunk"        # Split documents into semantic chunks
    EMBED = "embed"        # Dense vectors per chunk
    KEYWORD = "keyword"    # BM25-scored keywords per chunk


DEFAULT_PHASE_WEIGHTS: dict[IngestionPhase, float] = {
    IngestionPhase.FETCH: 30.0,
    IngestionPhase.EXTRACT: 25.0,
    IngestionPhase.CHUNK: 15.0,
    IngestionPhase.EMBED: 15.0,
    IngestionPhase.KEYWORD: 15.0,
}

# Awaited by services with (items_done, items_total) as they work through a phase.
StepProgressCallback = Callable[[int, int], Awaitable[None]]


class JobCounters(BaseModel):
    """Progress counters persisted on the job record.

    ``chunks_created`` counts persisted chunk rows, not source documents.
    """

    model_config = ConfigDict(frozen=True)

    total_channels: int = Field(default=0, ge=0)
    processed_channels: int = Field(default=0, ge=0)
    total_messages: int = Field(default=0, ge=0)
    processed_messages: int = Field(default=0, ge=0)
    links_found: int = Field(default=0, ge=0)
    chunks_created: int = Field(default=0, ge=0)
    keywords_extracted: int = Field(default=0, ge=0)

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(cls.model_fields)


class IngestionJob(BaseModel):
    """Durable record of one ingestion run."""

    model_config = ConfigDict(frozen=True)

    id: str
    scope_id: str
    scope_name: str
    initiator: str
    status: JobStatus = JobStatus.PENDING
    counters: JobCounters = Field(default_factory=JobCounters)
    error_message: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
    started_at: datetime | None = None
    completed_at: datetime | None = None


class IngestionReport(BaseModel):
    """What a finished run produced; returned by the orchestrator."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    status: JobStatus
    counters: JobCounters
    documents_created: int = Field(default=0, ge=0)
    extraction_failures: int = Field(default=0, ge=0)
    embedding_failures: int = Field(default=0, ge=0)
    keyword_failures: int = Field(default=0, ge=0)
    duration_seconds: float | None = None
    error_message: str | None = None


class ProgressUpdate(BaseModel):
    """Snapshot broadcast to progress listeners."""

    model_config = ConfigDict(frozen=True)

    phase: IngestionPhase
    percentage: float = Field(ge=0, le=100)
    message: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    elapsed_seconds: float = Field(default=0.0, ge=0)
    eta_seconds: float | None = None
    is_final: bool = False
