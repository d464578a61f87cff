# tests/unit/batch/test_unit_scheduler.py - v1
"""Tests for batch/scheduler.py - partitioning, pairing, resizing, aggregation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from autodetect.batch.models import Batch, BatchStatus, FileResult
from autodetect.batch.pairing import split_name
from autodetect.batch.scheduler import BatchScheduler
from autodetect.core.models import DefectRecord


@pytest.fixture
def paired_files(make_file):
    """Five header/implementation pairs in one directory."""
    files = []
    for stem in ("a", "b", "c", "d", "e"):
        files.append(make_file(f"/p/core/{stem}.h"))
        files.append(make_file(f"/p/core/{stem}.cpp"))
    return files


def _pair_locations(batches):
    """Map stem -> set of batch ids holding a file with that stem."""
    where: dict[str, set[str]] = {}
    for batch in batches:
        for f in batch.files:
            where.setdefault(split_name(f.name)[0], set()).add(batch.id)
    return where


class TestCreateBatches:
    def test_pairs_flush_at_size(self, governor, paired_files):
        batches = BatchScheduler(4, governor).create_batches(paired_files)
        assert [b.size for b in batches] == [4, 4, 2]
        assert [f.name for f in batches[0].files] == ["a.h", "a.cpp", "b.h", "b.cpp"]
        assert all(b.status == BatchStatus.PENDING for b in batches)

    @pytest.mark.parametrize("size", range(2, 11))
    def test_pairs_never_split(self, governor, paired_files, make_file, size):
        files = paired_files + [make_file("/p/core/lone.cc"), make_file("/p/core/only.hpp")]
        batches = BatchScheduler(size, governor).create_batches(files)

        assert sum(b.size for b in batches) == len(files)
        for stem, ids in _pair_locations(batches).items():
            assert len(ids) == 1, f"{stem} split across {ids}"
        for batch in batches:
            assert batch.size <= size + 1

    def test_batches_never_span_directories(self, governor, make_file):
        files = [
            make_file("/p/core/a.h"),
            make_file("/p/net/b.cpp"),
            make_file("/p/core/a.cpp"),
            make_file("/p/net/c.cpp"),
        ]
        batches = BatchScheduler(10, governor).create_batches(files, group="p")
        assert len(batches) == 2
        for batch in batches:
            assert {f.directory for f in batch.files} == {batch.directory}
            assert batch.group == "p"
        assert [f.name for f in batches[0].files] == ["a.h", "a.cpp"]

    def test_unpaired_files_follow_pairs(self, governor, make_file):
        files = [make_file("/p/x.cc"), make_file("/p/a.h"), make_file("/p/a.cpp")]
        batches = BatchScheduler(10, governor).create_batches(files)
        assert [f.name for f in batches[0].files] == ["a.h", "a.cpp", "x.cc"]

    def test_batch_ids_unique_across_calls(self, governor, paired_files):
        scheduler = BatchScheduler(4, governor)
        ids = [b.id for b in scheduler.create_batches(paired_files)]
        ids += [b.id for b in scheduler.create_batches(paired_files)]
        assert len(ids) == len(set(ids)) == 6
        assert ids[0] == "batch_/p/core_0"

    def test_empty_input(self, governor):
        assert BatchScheduler(4, governor).create_batches([]) == []

    def test_size_below_two_rejected(self, governor):
        with pytest.raises(ValueError):
            BatchScheduler(1, governor)


class TestResize:
    @pytest.mark.parametrize(
        "available_mb,expected",
        [
            (400, 20),  # 200MB headroom / 10MB per file
            (150, 6),   # 7 rounds down to even
            (10, 2),    # floor
        ],
    )
    def test_resize_rounds_down_to_even(self, governor, available_mb, expected):
        scheduler = BatchScheduler(20, governor)
        assert scheduler.resize(available_mb, avg_file_size_kb=1024) == expected
        assert scheduler.batch_size == expected

    def test_resize_applies_to_future_batches(self, governor, paired_files):
        scheduler = BatchScheduler(10, governor)
        before = scheduler.create_batches(paired_files)
        scheduler.resize(50, avg_file_size_kb=1024)
        after = scheduler.create_batches(paired_files)
        assert [b.size for b in before] == [10]
        assert all(b.size <= 2 for b in after)

    def test_resource_check_applies_recommendation(self, governor_at, paired_files):
        scheduler = BatchScheduler(50, governor_at(8192, 6144))
        scheduler.create_batches_with_resource_check(paired_files, avg_file_size_kb=10240)
        assert scheduler.batch_size == 30

    def test_resource_check_shrinks_when_refused(self, governor_at, paired_files):
        scheduler = BatchScheduler(20, governor_at(1000, 100))
        batches = scheduler.create_batches_with_resource_check(
            paired_files, avg_file_size_kb=10240
        )
        assert scheduler.batch_size == 2
        assert len(batches) == 5


class TestAggregation:
    def _batch(self, make_file, batch_id, names, status, results=(), error=None, seconds=None):
        started = datetime(2026, 3, 1, tzinfo=timezone.utc) if seconds is not None else None
        return Batch(
            id=batch_id,
            files=[make_file(f"/p/{n}") for n in names],
            status=status,
            results=list(results),
            error=error,
            started_at=started,
            ended_at=started + timedelta(seconds=seconds) if started else None,
        )

    def test_aggregate_results(self, make_file):
        a, b = make_file("/p/a.cpp"), make_file("/p/b.cpp")
        completed = self._batch(
            make_file, "b0", ["a.cpp", "b.cpp"], BatchStatus.COMPLETED,
            results=[
                FileResult(file=a, defects=[DefectRecord(file=a.path), DefectRecord(file=a.path)]),
                FileResult(file=b, error="timeout"),
            ],
            seconds=3,
        )
        c = make_file("/p/c.cpp")
        failed = self._batch(
            make_file, "b1", ["c.cpp", "d.cpp", "e.cpp"], BatchStatus.FAILED,
            results=[FileResult(file=c)], error="store unavailable", seconds=1,
        )
        pending = self._batch(make_file, "b2", ["f.cpp"], BatchStatus.PENDING)

        agg = BatchScheduler.aggregate_results([completed, failed, pending])

        assert agg.total_batches == 3
        assert agg.completed_batches == 1
        assert agg.failed_batches == 1
        assert agg.total_files == 6
        assert agg.processed_files == 2
        assert agg.failed_files == 3
        assert agg.total_defects == 2
        assert [(e.batch_id, e.error) for e in agg.errors] == [("b1", "store unavailable")]
        assert agg.total_duration_seconds == 4.0

    def test_statistics(self, make_file):
        batches = [
            self._batch(make_file, "b0", ["a.cpp", "b.cpp"], BatchStatus.COMPLETED),
            self._batch(make_file, "b1", ["c.cpp"], BatchStatus.PROCESSING),
            self._batch(make_file, "b2", ["d.cpp"], BatchStatus.PENDING),
            self._batch(make_file, "b3", ["e.cpp"], BatchStatus.FAILED),
        ]
        stats = BatchScheduler.statistics(batches)
        assert stats.total_batches == 4
        assert stats.completed_batches == 1
        assert stats.processing_batches == 1
        assert stats.pending_batches == 1
        assert stats.failed_batches == 1
        assert stats.total_files == 5
        assert stats.processed_files == 2
