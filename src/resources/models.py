# src/resources/models.py - v1
"""Resource governor models: ResourceSample, ConstraintCheck, alerts and estimates."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field


class ResourceSample(BaseModel):
    """Point-in-time host memory reading (all sizes in MB)."""

    available_mb: float
    used_mb: float
    total_mb: float
    usage_percent: float
    available_for_processing_mb: float
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    is_fallback: bool = False


class ConstraintCheck(BaseModel):
    """Admission decision for a batch size."""

    can_proceed: bool
    has_enough_memory: bool
    warnings: list[str] = Field(default_factory=list)
    recommended_batch_size: int | None = None
    level: Literal["ok", "warning", "critical"] = "ok"
    sample: ResourceSample


class ResourceAlert(BaseModel):
    """Emitted by the monitor when usage crosses a threshold."""

    level: Literal["warning", "critical"]
    message: str
    sample: ResourceSample


class MemoryStats(BaseModel):
    """Usage statistics over the sample history."""

    count: int = 0
    avg_usage: float = 0.0
    max_usage: float = 0.0
    min_usage: float = 0.0
    trend: Literal["increasing", "decreasing", "stable"] = "stable"


class RecommendedAction(BaseModel):
    priority: Literal["high", "medium", "low"]
    action: str
    message: str


class ResourceRecommendations(BaseModel):
    """Aggregated advice for a prospective detection run."""

    can_proceed: bool
    current: ResourceSample
    batch_size: int
    should_reduce_batch_size: bool
    should_wait: bool
    warnings: list[str] = Field(default_factory=list)
    actions: list[RecommendedAction] = Field(default_factory=list)


class TimeEstimate(BaseModel):
    """Rough wall-clock estimate for a detection run."""

    total_files: int
    batch_size: int
    total_batches: int
    estimated_seconds: float
    estimated_formatted: str
    adjustment_factor: float = 1.0
    note: str | None = None
