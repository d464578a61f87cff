# src/orchestrator/models.py - v1
"""Orchestrator models: run state, progress snapshots, group reports, callbacks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel, Field

from autodetect.batch.models import Batch, BatchAggregate
from autodetect.session.models import Session


class RunState(str, Enum):
    """In-process state of the control loop (mirrors the session status)."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ProgressSnapshot(BaseModel):
    """Progress view handed to progress subscribers."""

    session_id: str
    total_files: int = 0
    processed_files: int = 0
    failed_files: int = 0
    current_file: str = ""
    current_batch: int = 0
    total_batches: int = 0
    percentage: int = 0
    files_with_defects: int = 0
    total_defects_found: int = 0

    @classmethod
    def from_session(cls, session: Session) -> ProgressSnapshot:
        p = session.progress
        return cls(
            session_id=session.id,
            total_files=p.total_files,
            processed_files=p.processed_files,
            failed_files=len(session.results.failed_files),
            current_file=p.current_file,
            current_batch=p.current_batch,
            total_batches=p.total_batches,
            percentage=p.percentage,
            files_with_defects=p.files_with_defects,
            total_defects_found=p.total_defects_found,
        )


class GroupReport(BaseModel):
    """Emitted once every batch of a scan group has been processed."""

    session_id: str
    group_name: str
    group_path: str
    files_scanned: int
    defects_found: int = 0
    batches: list[Batch] = Field(default_factory=list)
    aggregated: BatchAggregate


Callback = Callable[..., Union[None, Awaitable[None]]]


@dataclass
class DetectionCallbacks:
    """Optional per-run callbacks; each may be a plain function or a coroutine.

    on_progress(snapshot), on_status_change(status, session), on_report(report).
    """

    on_progress: Optional[Callback] = None
    on_status_change: Optional[Callback] = None
    on_report: Optional[Callback] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "progress": self.on_progress,
            "status": self.on_status_change,
            "report": self.on_report,
        }
