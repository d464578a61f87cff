# src/batch/scheduler.py - v1
"""Batch scheduler: turn a flat file list into bounded, pair-preserving batches.

Files are grouped by directory; inside a directory, header/implementation
pairs are emitted first (both members together), then the remaining files.
A batch is flushed once it reaches ``batch_size`` files, so with an odd
size a batch may hold one extra file rather than split a pair. A batch
never spans two directories.

Resizing only affects batches built after the call.
"""

from __future__ import annotations

import logging

from autodetect.batch.models import (
    Batch,
    BatchAggregate,
    BatchError,
    BatchStatistics,
    BatchStatus,
)
from autodetect.batch.pairing import find_pairs
from autodetect.core.models import FileDescriptor
from autodetect.resources.governor import MIN_BATCH_SIZE, ResourceGovernor

logger = logging.getLogger(__name__)


class BatchScheduler:
    """Plan batches and adapt their size to memory pressure.

    Args:
        batch_size: Initial target files per batch (>= 2).
        governor: Source of sizing decisions for ``resize``.
    """

    def __init__(self, batch_size: int = 20, governor: ResourceGovernor | None = None) -> None:
        if batch_size < MIN_BATCH_SIZE:
            raise ValueError(f"batch_size must be >= {MIN_BATCH_SIZE}, got {batch_size}")
        self._batch_size = batch_size
        self._governor = governor or ResourceGovernor()
        self._counter = 0

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @staticmethod
    def group_by_directory(files: list[FileDescriptor]) -> dict[str, list[FileDescriptor]]:
        """Group files by parent directory, keeping first-seen order."""
        groups: dict[str, list[FileDescriptor]] = {}
        for f in files:
            groups.setdefault(f.directory, []).append(f)
        return groups

    def create_batches(self, files: list[FileDescriptor], group: str = "") -> list[Batch]:
        """Partition ``files`` into PENDING batches at the current size."""
        size = self._batch_size
        batches: list[Batch] = []

        for directory, dir_files in self.group_by_directory(files).items():
            pairing = find_pairs(dir_files)
            logger.debug(
                "Directory %s: %d pairs, %d unpaired",
                directory, len(pairing.paired), len(pairing.unpaired),
            )
            current: list[FileDescriptor] = []

            for header, impl in pairing.paired:
                current.extend((header, impl))
                if len(current) >= size:
                    batches.append(self._new_batch(group, directory, current))
                    current = []

            for f in pairing.unpaired:
                current.append(f)
                if len(current) >= size:
                    batches.append(self._new_batch(group, directory, current))
                    current = []

            if current:
                batches.append(self._new_batch(group, directory, current))

        logger.debug("Created %d batches (size=%d, group=%s)", len(batches), size, group or "-")
        return batches

    def create_batches_with_resource_check(
        self, files: list[FileDescriptor], avg_file_size_kb: float, group: str = ""
    ) -> list[Batch]:
        """Shrink the batch size first if the governor refuses the current one."""
        check = self._governor.check_constraints(self._batch_size, avg_file_size_kb)
        if not check.can_proceed:
            logger.warning("Insufficient resources for batch size %d, resizing", self._batch_size)
            self.resize(check.sample.available_mb, avg_file_size_kb)
        elif check.recommended_batch_size is not None:
            self._set_size(check.recommended_batch_size)
        return self.create_batches(files, group=group)

    def resize(self, available_memory_mb: float, avg_file_size_kb: float) -> int:
        """Recompute the batch size from free memory. Applies to future batches.

        The result is rounded down to an even number with a floor of 2.
        """
        optimal = self._governor.calculate_optimal_batch_size(
            self._batch_size, avg_file_size_kb, available_memory_mb=available_memory_mb
        )
        return self._set_size(optimal)

    def _set_size(self, size: int) -> int:
        new_size = max(MIN_BATCH_SIZE, size - (size % 2))
        if new_size != self._batch_size:
            logger.info("Batch size %d -> %d", self._batch_size, new_size)
        self._batch_size = new_size
        return new_size

    def _new_batch(self, group: str, directory: str, files: list[FileDescriptor]) -> Batch:
        batch_id = f"batch_{directory}_{self._counter}"
        self._counter += 1
        return Batch(id=batch_id, group=group, directory=directory, files=list(files))

    @staticmethod
    def aggregate_results(batches: list[Batch]) -> BatchAggregate:
        """Sum per-file outcomes over processed batches.

        Files of a FAILED batch that have no recorded result count as failed.
        """
        agg = BatchAggregate(total_batches=len(batches))
        for batch in batches:
            agg.total_files += batch.size
            succeeded = sum(1 for r in batch.results if r.success)
            errored = len(batch.results) - succeeded
            agg.processed_files += succeeded
            agg.failed_files += errored
            agg.total_defects += sum(len(r.defects) for r in batch.results)

            if batch.status == BatchStatus.COMPLETED:
                agg.completed_batches += 1
            elif batch.status == BatchStatus.FAILED:
                agg.failed_batches += 1
                agg.failed_files += batch.size - len(batch.results)
                if batch.error:
                    agg.errors.append(BatchError(batch_id=batch.id, error=batch.error))

            if batch.duration_seconds is not None:
                agg.total_duration_seconds += batch.duration_seconds
        return agg

    @staticmethod
    def statistics(batches: list[Batch]) -> BatchStatistics:
        """Status counts and file totals over a batch plan."""
        counts = {status: 0 for status in BatchStatus}
        for batch in batches:
            counts[batch.status] += 1
        return BatchStatistics(
            total_batches=len(batches),
            completed_batches=counts[BatchStatus.COMPLETED],
            failed_batches=counts[BatchStatus.FAILED],
            pending_batches=counts[BatchStatus.PENDING],
            processing_batches=counts[BatchStatus.PROCESSING],
            total_files=sum(b.size for b in batches),
            processed_files=sum(b.size for b in batches if b.status == BatchStatus.COMPLETED),
        )

