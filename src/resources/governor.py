# src/resources/governor.py - v1
"""Resource governor: memory headroom, admission decisions and monitoring.

Memory is read through psutil. Any failure to read host counters falls back
to a conservative static sample instead of raising, so callers always get
an answer.

Usage:
    governor = ResourceGovernor.from_settings(settings)
    check = governor.check_constraints(batch_size=20, avg_file_size_kb=50)
    if check.can_proceed:
        await governor.start_monitoring(5.0, on_warning=handle_alert)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
from collections import deque
from typing import TYPE_CHECKING, Awaitable, Callable, Union

import psutil

from autodetect.core.formatting import format_duration
from autodetect.resources.models import (
    ConstraintCheck,
    MemoryStats,
    RecommendedAction,
    ResourceAlert,
    ResourceRecommendations,
    ResourceSample,
    TimeEstimate,
)

if TYPE_CHECKING:
    from autodetect.config.settings import Settings

logger = logging.getLogger(__name__)

_MB = 1024 * 1024

# Smallest batch that keeps a header/implementation pair together.
MIN_BATCH_SIZE = 2

FALLBACK_TOTAL_MB = 2048.0
FALLBACK_USED_MB = 512.0

TREND_WINDOW = 10

AlertCallback = Callable[[ResourceAlert], Union[None, Awaitable[None]]]
Sampler = Callable[[], ResourceSample]


def psutil_sampler(processing_fraction: float = 0.5) -> Sampler:
    """Build a sampler reading host memory through psutil."""

    def sample() -> ResourceSample:
        vm = psutil.virtual_memory()
        total = vm.total / _MB
        available = vm.available / _MB
        used = total - available
        return ResourceSample(
            available_mb=available,
            used_mb=used,
            total_mb=total,
            usage_percent=(used / total) * 100 if total else 0.0,
            available_for_processing_mb=math.floor(available * processing_fraction),
        )

    return sample


def fallback_sample(processing_fraction: float = 0.5) -> ResourceSample:
    """Static sample used when host counters cannot be read."""
    available = FALLBACK_TOTAL_MB - FALLBACK_USED_MB
    return ResourceSample(
        available_mb=available,
        used_mb=FALLBACK_USED_MB,
        total_mb=FALLBACK_TOTAL_MB,
        usage_percent=FALLBACK_USED_MB / FALLBACK_TOTAL_MB * 100,
        available_for_processing_mb=math.floor(available * processing_fraction),
        is_fallback=True,
    )


class ResourceGovernor:
    """Estimate memory headroom and turn it into batch-size decisions.

    Args:
        warning_threshold: Usage ratio (0-1) that raises a warning.
        critical_threshold: Usage ratio (0-1) considered critical.
        processing_multiplier: In-memory expansion factor per file.
        processing_fraction: Share of free memory usable for processing.
        min_batch_size: Lower clamp for ``calculate_optimal_batch_size``.
        max_batch_size: Upper clamp for ``calculate_optimal_batch_size``.
        history_size: Ring buffer length for monitored samples.
        sampler: Memory reader; defaults to psutil.
    """

    def __init__(
        self,
        warning_threshold: float = 0.85,
        critical_threshold: float = 0.95,
        processing_multiplier: float = 10.0,
        processing_fraction: float = 0.5,
        min_batch_size: int = 5,
        max_batch_size: int = 50,
        history_size: int = 100,
        sampler: Sampler | None = None,
    ) -> None:
        self.warning_threshold = warning_threshold
        self.critical_threshold = critical_threshold
        self.processing_multiplier = processing_multiplier
        self.processing_fraction = processing_fraction
        self.min_batch_size = min_batch_size
        self.max_batch_size = max_batch_size
        self._sampler = sampler or psutil_sampler(processing_fraction)
        self._history: deque[ResourceSample] = deque(maxlen=history_size)
        self._monitor_task: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, settings: Settings, sampler: Sampler | None = None) -> ResourceGovernor:
        return cls(
            warning_threshold=settings.resource_warning_threshold,
            critical_threshold=settings.resource_critical_threshold,
            processing_multiplier=settings.resource_processing_multiplier,
            processing_fraction=settings.resource_processing_fraction,
            min_batch_size=settings.batch_min_size,
            max_batch_size=settings.batch_max_size,
            history_size=settings.resource_history_size,
            sampler=sampler,
        )

    # ------------------------------------------------------------------
    # Sampling and admission
    # ------------------------------------------------------------------

    def sample(self) -> ResourceSample:
        """Read current memory; never raises."""
        try:
            return self._sampler()
        except Exception as e:
            logger.warning("Memory counters unavailable, using defaults: %s", e)
            return fallback_sample(self.processing_fraction)

    def memory_per_file_mb(self, avg_file_size_kb: float) -> float:
        return avg_file_size_kb * self.processing_multiplier / 1024

    def check_constraints(self, batch_size: int, avg_file_size_kb: float) -> ConstraintCheck:
        """Decide whether a batch of ``batch_size`` files fits in memory.

        Detection is refused only when even a minimal batch does not fit
        and usage (current, or projected with that minimal batch) is
        critical. Otherwise it proceeds, possibly with a smaller
        ``recommended_batch_size``.
        """
        sample = self.sample()
        per_file = self.memory_per_file_mb(avg_file_size_kb)
        needed = batch_size * per_file
        headroom = sample.available_for_processing_mb
        has_enough = headroom >= needed
        warnings: list[str] = []

        min_needed = MIN_BATCH_SIZE * per_file
        reduced_fits = headroom >= min_needed
        projected = (
            (sample.used_mb + min_needed) / sample.total_mb * 100 if sample.total_mb else 100.0
        )
        critical_pct = self.critical_threshold * 100
        is_critical = sample.usage_percent >= critical_pct or projected >= critical_pct

        if not has_enough:
            warnings.append(
                f"Insufficient memory: need ~{round(needed)}MB, "
                f"available {round(headroom)}MB"
            )

        level = "ok"
        if sample.usage_percent >= critical_pct:
            level = "critical"
            warnings.append(f"Memory usage critical: {sample.usage_percent:.1f}%")
        elif sample.usage_percent >= self.warning_threshold * 100:
            level = "warning"
            warnings.append(f"Memory usage high: {sample.usage_percent:.1f}%")

        if not has_enough and not reduced_fits and is_critical:
            logger.warning("Admission denied for batch size %d: %s", batch_size, "; ".join(warnings))
            return ConstraintCheck(
                can_proceed=False,
                has_enough_memory=False,
                warnings=warnings,
                recommended_batch_size=None,
                level="critical",
                sample=sample,
            )

        recommended = None
        if not has_enough:
            recommended = max(MIN_BATCH_SIZE, math.floor(headroom / per_file))
            logger.info("Recommending batch size %d instead of %d", recommended, batch_size)

        return ConstraintCheck(
            can_proceed=True,
            has_enough_memory=has_enough,
            warnings=warnings,
            recommended_batch_size=recommended,
            level=level,
            sample=sample,
        )

    def calculate_optimal_batch_size(
        self,
        current_batch_size: int,
        avg_file_size_kb: float,
        available_memory_mb: float | None = None,
    ) -> int:
        """Scale the batch size to current memory pressure.

        Shrinks by 30% at or above the warning threshold, grows by 30%
        below half usage, then clamps to [min, max] and the memory bound.

        Args:
            current_batch_size: Size in effect now.
            avg_file_size_kb: Average file size hint.
            available_memory_mb: Free memory to size against; read from the
                host when omitted.
        """
        sample = self.sample()
        if available_memory_mb is None:
            headroom = sample.available_for_processing_mb
        else:
            headroom = math.floor(available_memory_mb * self.processing_fraction)

        per_file = self.memory_per_file_mb(avg_file_size_kb)
        max_by_memory = math.floor(headroom / per_file) if per_file > 0 else self.max_batch_size

        adjusted = current_batch_size
        if sample.usage_percent >= self.warning_threshold * 100:
            adjusted = math.floor(current_batch_size * 0.7)
        elif sample.usage_percent < 50:
            adjusted = math.floor(current_batch_size * 1.3)

        optimal = max(self.min_batch_size, min(self.max_batch_size, max_by_memory, adjusted))
        logger.debug(
            "Batch size %d -> %d (usage %.1f%%, headroom %dMB)",
            current_batch_size, optimal, sample.usage_percent, headroom,
        )
        return optimal

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    async def start_monitoring(
        self,
        interval_seconds: float = 5.0,
        on_warning: AlertCallback | None = None,
    ) -> None:
        """Start periodic sampling. A second call replaces the running monitor."""
        await self.stop_monitoring()
        self._monitor_task = asyncio.create_task(self._monitor_loop(interval_seconds, on_warning))
        logger.debug("Resource monitoring started (interval=%.2fs)", interval_seconds)

    async def stop_monitoring(self) -> None:
        """Stop periodic sampling. Safe to call when not monitoring."""
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Resource monitoring stopped")

    async def poll(self, on_warning: AlertCallback | None = None) -> ResourceAlert | None:
        """Take one sample, record it and notify if a threshold is crossed."""
        sample = self.sample()
        self._history.append(sample)

        alert = None
        if sample.usage_percent >= self.critical_threshold * 100:
            alert = ResourceAlert(
                level="critical",
                message=f"Memory usage reached critical level: {sample.usage_percent:.1f}%",
                sample=sample,
            )
        elif sample.usage_percent >= self.warning_threshold * 100:
            alert = ResourceAlert(
                level="warning",
                message=f"Memory usage high: {sample.usage_percent:.1f}%",
                sample=sample,
            )

        if alert is not None and on_warning is not None:
            try:
                result = on_warning(alert)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Resource alert callback failed")
        return alert

    async def _monitor_loop(
        self, interval_seconds: float, on_warning: AlertCallback | None
    ) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.poll(on_warning)

    # ------------------------------------------------------------------
    # History and advice
    # ------------------------------------------------------------------

    def history(self, limit: int | None = None) -> list[ResourceSample]:
        samples = list(self._history)
        if limit:
            return samples[-limit:]
        return samples

    def clear_history(self) -> None:
        self._history.clear()

    def memory_stats(self) -> MemoryStats:
        """Average/min/max usage and a trend over the last ten samples."""
        if not self._history:
            return MemoryStats()

        usage = [s.usage_percent for s in self._history]
        trend = "stable"
        if len(usage) >= TREND_WINDOW:
            recent = sum(usage[-5:]) / 5
            older = sum(usage[-TREND_WINDOW:-5]) / 5
            if recent > older * 1.1:
                trend = "increasing"
            elif recent < older * 0.9:
                trend = "decreasing"

        return MemoryStats(
            count=len(usage),
            avg_usage=round(sum(usage) / len(usage), 2),
            max_usage=round(max(usage), 2),
            min_usage=round(min(usage), 2),
            trend=trend,
        )

    def recommendations(self, batch_size: int, avg_file_size_kb: float) -> ResourceRecommendations:
        """Admission, sizing advice and prioritized actions in one report."""
        check = self.check_constraints(batch_size, avg_file_size_kb)
        optimal = self.calculate_optimal_batch_size(batch_size, avg_file_size_kb)
        sample = check.sample
        actions: list[RecommendedAction] = []

        if sample.usage_percent >= self.critical_threshold * 100:
            actions.append(RecommendedAction(
                priority="high", action="wait",
                message="Wait for memory to be released before starting detection",
            ))
            actions.append(RecommendedAction(
                priority="high", action="close_apps",
                message="Close other applications to free memory",
            ))
        elif sample.usage_percent >= self.warning_threshold * 100:
            target = check.recommended_batch_size or optimal
            actions.append(RecommendedAction(
                priority="medium", action="reduce_batch",
                message=f"Reduce batch size to {target}",
            ))
            actions.append(RecommendedAction(
                priority="medium", action="monitor",
                message="Monitor memory usage closely",
            ))
        else:
            actions.append(RecommendedAction(
                priority="low", action="proceed",
                message="Resources are sufficient to start detection",
            ))

        return ResourceRecommendations(
            can_proceed=check.can_proceed,
            current=sample,
            batch_size=optimal,
            should_reduce_batch_size=optimal < batch_size,
            should_wait=not check.can_proceed,
            warnings=check.warnings,
            actions=actions,
        )

    def estimate_detection_time(
        self,
        total_files: int,
        batch_size: int = 20,
        avg_seconds_per_file: float = 5.0,
    ) -> TimeEstimate:
        """Estimate run duration, slowed down under memory pressure."""
        sample = self.sample()
        factor = 1.0
        if sample.usage_percent >= self.critical_threshold * 100:
            factor = 2.0
        elif sample.usage_percent >= self.warning_threshold * 100:
            factor = 1.5

        seconds = total_files * avg_seconds_per_file * factor
        return TimeEstimate(
            total_files=total_files,
            batch_size=batch_size,
            total_batches=math.ceil(total_files / batch_size) if batch_size > 0 else 0,
            estimated_seconds=seconds,
            estimated_formatted=format_duration(seconds),
            adjustment_factor=factor,
            note="Estimate may be longer due to resource constraints" if factor > 1.0 else None,
        )

    def __repr__(self) -> str:
        return (
            f"ResourceGovernor(warning={self.warning_threshold}, "
            f"critical={self.critical_threshold}, monitoring={self.is_monitoring})"
        )
