# src/session/models.py - v1
"""Session domain models: Session, SessionProgress, SessionResults, SessionSummary.

A Session is the durable record of one detection run. Its full body is
stored per id; a SessionSummary is the lightweight projection kept in the
index for listing without loading full bodies.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from autodetect.config.detection import DetectionConfig


class SessionStatus(str, Enum):
    """Lifecycle status of a detection session."""

    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    INTERRUPTED = "interrupted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_incomplete(self) -> bool:
        return self in INCOMPLETE_STATUSES


TERMINAL_STATUSES: frozenset[SessionStatus] = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED}
)
INCOMPLETE_STATUSES: frozenset[SessionStatus] = frozenset(
    {SessionStatus.RUNNING, SessionStatus.PAUSED, SessionStatus.INTERRUPTED}
)


class SessionProgress(BaseModel):
    """Mutable progress counters."""

    total_files: int = 0
    processed_files: int = 0
    current_file: str = ""
    current_batch: int = 0
    total_batches: int = 0
    percentage: int = 0
    files_with_defects: int = 0
    total_defects_found: int = 0


class ProcessedFileRecord(BaseModel):
    """A file whose analysis finished (with or without defects)."""

    path: str
    name: str
    defects_found: int = 0
    processed_at: datetime | None = None


class FailedFileRecord(BaseModel):
    """A file whose analysis raised."""

    path: str
    name: str
    error: str
    failed_at: datetime | None = None


class SessionResults(BaseModel):
    """Append-only outcome lists."""

    processed_files_list: list[ProcessedFileRecord] = Field(default_factory=list)
    failed_files: list[FailedFileRecord] = Field(default_factory=list)

    @property
    def processed_paths(self) -> set[str]:
        return {r.path for r in self.processed_files_list}


class SessionMetadata(BaseModel):
    """Timestamps. ``duration_seconds`` is set on entering a terminal state."""

    start_time: datetime
    last_update_time: datetime
    end_time: datetime | None = None
    duration_seconds: float | None = None


class Session(BaseModel):
    """Full durable record of one detection run."""

    id: str
    status: SessionStatus = SessionStatus.RUNNING
    config: DetectionConfig
    progress: SessionProgress = Field(default_factory=SessionProgress)
    results: SessionResults = Field(default_factory=SessionResults)
    metadata: SessionMetadata
    error: str | None = None

    def summary(self) -> SessionSummary:
        """Project to the index entry."""
        return SessionSummary(
            id=self.id,
            status=self.status,
            target_directory=self.config.target_directory,
            start_time=self.metadata.start_time,
            last_update_time=self.metadata.last_update_time,
            end_time=self.metadata.end_time,
            duration_seconds=self.metadata.duration_seconds,
            total_files=self.progress.total_files,
            processed_files=self.progress.processed_files,
            failed_files=len(self.results.failed_files),
            percentage=self.progress.percentage,
            total_defects_found=self.progress.total_defects_found,
        )


class SessionSummary(BaseModel):
    """Lightweight index entry for listing sessions."""

    id: str
    status: SessionStatus
    target_directory: str = ""
    start_time: datetime
    last_update_time: datetime
    end_time: datetime | None = None
    duration_seconds: float | None = None
    total_files: int = 0
    processed_files: int = 0
    failed_files: int = 0
    percentage: int = 0
    total_defects_found: int = 0


class CleanupReport(BaseModel):
    """Counts of sessions removed or demoted by ``SessionStore.cleanup``."""

    by_max_count: int = 0
    by_retention: int = 0
    by_stale: int = 0

    @property
    def total(self) -> int:
        return self.by_max_count + self.by_retention + self.by_stale


class SessionStats(BaseModel):
    """Aggregate statistics over all stored sessions."""

    total_sessions: int = 0
    status_counts: dict[str, int] = Field(default_factory=dict)
    completed_sessions: int = 0
    incomplete_sessions: int = 0
    avg_duration_seconds: float = 0.0
    avg_duration_formatted: str = "0s"
