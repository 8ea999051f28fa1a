"""Rebuild job and builder status models exposed on the operational surface."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

ALL_SCOPE = "all"


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class RebuildProgress(BaseModel):
    observations_total: int = 0
    observations_processed: int = 0
    trades_processed: int = 0
    candles_published: int = 0


class RebuildJob(BaseModel):
    """One rebuild run; ``resource_slug`` is None for the all-markets scope."""

    id: str
    resource_slug: str | None = None
    state: JobState = JobState.PENDING
    progress: RebuildProgress = Field(default_factory=RebuildProgress)
    cutoff_timestamp: int | None = None
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None

    @property
    def scope(self) -> str:
        return scope_key(self.resource_slug)


def scope_key(resource_slug: str | None) -> str:
    return ALL_SCOPE if resource_slug is None else f"resource:{resource_slug}"


class StartResult(BaseModel):
    success: bool
    message: str
    job_id: str | None = None


class BuilderState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    ERROR = "error"


class BuilderStatus(BaseModel):
    status: BuilderState = BuilderState.IDLE
    description: str = "Not started"
    timestamp: datetime | None = None
    cycles: int = 0
    observations_processed: int = 0
    trades_processed: int = 0
    errors: int = 0
    last_processed_timestamp: int | None = None


class RebuilderStatus(BaseModel):
    """Most recent job per scope; ``is_active`` when any job is pending or running."""

    is_active: bool = False
    jobs: list[RebuildJob] = Field(default_factory=list)


class AllBuildersStatus(BaseModel):
    builder: BuilderStatus
    rebuilder: RebuilderStatus
