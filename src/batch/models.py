# src/batch/models.py - v1
"""Batch models: Batch, FileResult, BatchAggregate, BatchStatistics."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from autodetect.core.models import DefectRecord, FileDescriptor


class BatchStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FileResult(BaseModel):
    """Outcome of processing one file inside a batch."""

    file: FileDescriptor
    defects: list[DefectRecord] = Field(default_factory=list)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


class Batch(BaseModel):
    """Ordered files processed as one unit.

    ``group`` names the scan group the batch was built from; ``directory``
    is the single directory all its files live in.
    """

    id: str
    group: str = ""
    directory: str = "/"
    files: list[FileDescriptor] = Field(default_factory=list)
    status: BatchStatus = BatchStatus.PENDING
    started_at: datetime | None = None
    ended_at: datetime | None = None
    error: str | None = None
    results: list[FileResult] = Field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.files)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.ended_at:
            return (self.ended_at - self.started_at).total_seconds()
        return None


class BatchError(BaseModel):
    batch_id: str
    error: str


class BatchAggregate(BaseModel):
    """Outcome totals over a sequence of processed batches."""

    total_batches: int = 0
    completed_batches: int = 0
    failed_batches: int = 0
    total_files: int = 0
    processed_files: int = 0
    failed_files: int = 0
    total_defects: int = 0
    errors: list[BatchError] = Field(default_factory=list)
    total_duration_seconds: float = 0.0


class BatchStatistics(BaseModel):
    """Status counts over a batch plan."""

    total_batches: int = 0
    completed_batches: int = 0
    failed_batches: int = 0
    pending_batches: int = 0
    processing_batches: int = 0
    total_files: int = 0
    processed_files: int = 0
