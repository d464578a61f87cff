# tests/unit/resources/test_unit_governor.py - v1
"""Tests for resources/governor.py - admission, sizing, monitoring, advice."""

from __future__ import annotations

import asyncio
import logging
from itertools import chain, repeat

import pytest

from autodetect.config.settings import Settings
from autodetect.resources.governor import ResourceGovernor, fallback_sample


class TestSampling:
    def test_sampler_error_falls_back(self):
        def broken():
            raise OSError("no /proc")

        sample = ResourceGovernor(sampler=broken).sample()
        assert sample.is_fallback
        assert sample.total_mb == 2048
        assert sample.used_mb == 512
        assert sample.usage_percent == 25.0
        assert sample.available_for_processing_mb == 768

    def test_fallback_sample_respects_fraction(self):
        assert fallback_sample(0.25).available_for_processing_mb == 384

    def test_psutil_sampler_by_default(self):
        sample = ResourceGovernor().sample()
        assert sample.total_mb > 0
        assert 0 <= sample.usage_percent <= 100

    def test_from_settings(self):
        settings = Settings(
            _env_file=None,
            resource_warning_threshold=0.7,
            resource_critical_threshold=0.9,
            batch_min_size=4,
            batch_max_size=40,
        )
        governor = ResourceGovernor.from_settings(settings)
        assert governor.warning_threshold == 0.7
        assert governor.critical_threshold == 0.9
        assert governor.min_batch_size == 4
        assert governor.max_batch_size == 40


class TestCheckConstraints:
    def test_healthy_memory_proceeds(self, governor):
        check = governor.check_constraints(batch_size=20, avg_file_size_kb=50)
        assert check.can_proceed
        assert check.has_enough_memory
        assert check.recommended_batch_size is None
        assert check.level == "ok"
        assert check.warnings == []

    def test_denied_when_minimal_batch_does_not_fit_and_critical(self, governor_at):
        # 90% used; headroom 50MB; 100MB per file.
        governor = governor_at(1000, 100)
        check = governor.check_constraints(batch_size=20, avg_file_size_kb=10240)
        assert not check.can_proceed
        assert not check.has_enough_memory
        assert check.recommended_batch_size is None
        assert check.level == "critical"
        assert any("Insufficient memory" in w for w in check.warnings)

    def test_recommends_smaller_batch(self, governor_at):
        # headroom 3072MB; 100MB per file; 50 files need 5000MB.
        governor = governor_at(8192, 6144)
        check = governor.check_constraints(batch_size=50, avg_file_size_kb=10240)
        assert check.can_proceed
        assert not check.has_enough_memory
        assert check.recommended_batch_size == 30

    def test_not_critical_proceeds_at_minimum(self, governor_at):
        governor = governor_at(100_000, 50_000)
        check = governor.check_constraints(batch_size=20, avg_file_size_kb=2_000_000)
        assert check.can_proceed
        assert check.recommended_batch_size == 2

    def test_warning_level(self, governor_at):
        governor = governor_at(1000, 120)
        check = governor.check_constraints(batch_size=2, avg_file_size_kb=1)
        assert check.can_proceed
        assert check.level == "warning"
        assert any("Memory usage high" in w for w in check.warnings)


class TestOptimalBatchSize:
    def test_shrinks_under_pressure(self, governor_at):
        assert governor_at(1000, 100).calculate_optimal_batch_size(20, 50) == 14

    def test_grows_when_idle(self, governor):
        assert governor.calculate_optimal_batch_size(20, 50) == 26

    def test_unchanged_at_moderate_usage(self, governor_at):
        assert governor_at(1000, 400).calculate_optimal_batch_size(20, 50) == 20

    def test_clamped_to_max(self, governor):
        assert governor.calculate_optimal_batch_size(100, 50) == 50

    def test_bounded_by_available_memory(self, governor):
        # 10MB free -> 5MB headroom, 10MB per file: the floor wins.
        assert governor.calculate_optimal_batch_size(20, 1024, available_memory_mb=10) == 2

    def test_bounded_by_memory_above_floor(self, governor):
        # 400MB free -> 200MB headroom, 10MB per file.
        assert governor.calculate_optimal_batch_size(40, 1024, available_memory_mb=400) == 20


class TestMonitoring:
    @pytest.mark.asyncio
    async def test_start_twice_replaces_monitor(self, governor):
        await governor.start_monitoring(10)
        first = governor._monitor_task
        await governor.start_monitoring(10)
        assert first.cancelled()
        assert governor.is_monitoring
        await governor.stop_monitoring()
        assert not governor.is_monitoring

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, governor):
        await governor.stop_monitoring()
        await governor.start_monitoring(10)
        await governor.stop_monitoring()
        await governor.stop_monitoring()
        assert not governor.is_monitoring

    @pytest.mark.asyncio
    async def test_poll_healthy_records_without_alert(self, governor):
        received = []
        assert await governor.poll(received.append) is None
        assert received == []
        assert len(governor.history()) == 1

    @pytest.mark.asyncio
    async def test_poll_critical_alerts_sync_callback(self, governor_at):
        governor = governor_at(1000, 40)
        received = []
        alert = await governor.poll(received.append)
        assert alert.level == "critical"
        assert received == [alert]

    @pytest.mark.asyncio
    async def test_poll_warning_alerts_async_callback(self, governor_at):
        governor = governor_at(1000, 120)
        received = []

        async def on_warning(alert):
            received.append(alert.level)

        await governor.poll(on_warning)
        assert received == ["warning"]

    @pytest.mark.asyncio
    async def test_callback_error_is_logged(self, governor_at, caplog):
        governor = governor_at(1000, 40)

        def explode(alert):
            raise RuntimeError("handler bug")

        with caplog.at_level(logging.ERROR):
            alert = await governor.poll(explode)
        assert alert is not None
        assert "Resource alert callback failed" in caplog.text

    @pytest.mark.asyncio
    async def test_monitor_loop_samples_periodically(self, governor_at):
        governor = governor_at(1000, 40)
        received = []
        await governor.start_monitoring(0.01, received.append)
        await asyncio.sleep(0.1)
        await governor.stop_monitoring()
        assert received
        assert len(governor.history()) == len(received)


class TestHistoryAndStats:
    @pytest.mark.asyncio
    async def test_history_is_bounded(self, governor_at):
        governor = governor_at(1000, 500, history_size=3)
        for _ in range(5):
            await governor.poll()
        assert len(governor.history()) == 3
        assert len(governor.history(limit=2)) == 2
        governor.clear_history()
        assert governor.history() == []

    def test_empty_stats(self, governor):
        stats = governor.memory_stats()
        assert stats.count == 0
        assert stats.trend == "stable"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "older,recent,trend",
        [(20, 40, "increasing"), (40, 20, "decreasing"), (30, 31, "stable")],
    )
    async def test_trend(self, sample_factory, older, recent, trend):
        usages = chain(repeat(older, 5), repeat(recent, 5))
        governor = ResourceGovernor(sampler=lambda: sample_factory(1000, 1000 - next(usages) * 10))
        for _ in range(10):
            await governor.poll()
        stats = governor.memory_stats()
        assert stats.count == 10
        assert stats.trend == trend
        assert stats.max_usage == max(older, recent)
        assert stats.min_usage == min(older, recent)


class TestAdvice:
    def test_recommendations_healthy(self, governor):
        rec = governor.recommendations(batch_size=20, avg_file_size_kb=50)
        assert rec.can_proceed
        assert not rec.should_wait
        assert not rec.should_reduce_batch_size
        assert [a.action for a in rec.actions] == ["proceed"]

    def test_recommendations_warning(self, governor_at):
        rec = governor_at(1000, 120).recommendations(batch_size=20, avg_file_size_kb=50)
        assert rec.should_reduce_batch_size
        assert [a.action for a in rec.actions] == ["reduce_batch", "monitor"]

    def test_recommendations_critical(self, governor_at):
        rec = governor_at(1000, 40).recommendations(batch_size=20, avg_file_size_kb=50)
        assert [a.action for a in rec.actions] == ["wait", "close_apps"]
        assert all(a.priority == "high" for a in rec.actions)

    def test_estimate_healthy(self, governor):
        estimate = governor.estimate_detection_time(10, batch_size=4)
        assert estimate.total_batches == 3
        assert estimate.estimated_seconds == 50.0
        assert estimate.estimated_formatted == "50s"
        assert estimate.adjustment_factor == 1.0
        assert estimate.note is None

    @pytest.mark.parametrize("available,factor", [(120, 1.5), (40, 2.0)])
    def test_estimate_slows_under_pressure(self, governor_at, available, factor):
        estimate = governor_at(1000, available).estimate_detection_time(10)
        assert estimate.adjustment_factor == factor
        assert estimate.estimated_seconds == 50.0 * factor
        assert estimate.note is not None

    def test_repr(self, governor):
        assert "monitoring=False" in repr(governor)
