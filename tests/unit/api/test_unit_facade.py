# tests/unit/api/test_unit_facade.py - v1
"""Tests for api/facade.py - the host-facing command surface."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from autodetect.api.facade import DetectionService
from autodetect.config.detection import DetectionConfig
from autodetect.config.settings import Settings
from autodetect.orchestrator.models import RunState
from autodetect.session.models import SessionStatus

S = SessionStatus


# ---------------------------------------------------------------------------
# Helper factories
# ---------------------------------------------------------------------------


@pytest.fixture
def service_factory(store, governor, processor_factory):
    def _make(processor=None, governor_=None, **kwargs):
        return DetectionService(
            processor=processor or processor_factory(),
            settings=Settings(_env_file=None),
            store=store,
            governor=governor_ or governor,
            **kwargs,
        )

    return _make


@pytest.fixture
def tree_config(source_tree: Path) -> DetectionConfig:
    return DetectionConfig(target_directory=str(source_tree), batch_size=4)


# ---------------------------------------------------------------------------
# Tests - lifecycle
# ---------------------------------------------------------------------------


class TestInitialize:
    @pytest.mark.asyncio
    async def test_commands_before_initialize_raise(self, service_factory, config):
        service = service_factory()
        with pytest.raises(RuntimeError):
            await service.start(config)
        with pytest.raises(RuntimeError):
            await service.list_incomplete_sessions()
        with pytest.raises(RuntimeError):
            await service.pause()

    @pytest.mark.asyncio
    async def test_initialize_recovers_orphans(self, service_factory, store, config):
        orphan = await store.create(config)
        service = service_factory()

        result = await service.initialize()

        assert result.success
        assert result.data == {"recovered_sessions": 1}
        assert (await store.load(orphan.id)).status == S.INTERRUPTED

    @pytest.mark.asyncio
    async def test_initialize_twice(self, service_factory):
        service = service_factory()
        await service.initialize()
        result = await service.initialize()
        assert result.success
        assert result.message == "Already initialized"


# ---------------------------------------------------------------------------
# Tests - run commands
# ---------------------------------------------------------------------------


class TestRunCommands:
    @pytest.mark.asyncio
    async def test_start_completes(self, service_factory, tree_config):
        service = service_factory()
        await service.initialize()

        result = await service.start(tree_config)

        assert result.success
        assert result.state == RunState.COMPLETED
        assert result.session.status == S.COMPLETED
        assert result.session.processed_files == 9

    @pytest.mark.asyncio
    async def test_start_refused_reports_no_session(self, service_factory, governor_at, store, config):
        service = service_factory(governor_=governor_at(1000, 100))
        await service.initialize()

        result = await service.start(config.model_copy(update={"avg_file_size_kb": 10240}))

        assert not result.success
        assert "Insufficient" in result.error
        assert result.session is None
        assert await store.list_sessions() == []

    @pytest.mark.asyncio
    async def test_start_failure_reports_failed_session(self, service_factory, tmp_path, config):
        service = service_factory()
        await service.initialize()

        result = await service.start(
            config.model_copy(update={"target_directory": str(tmp_path / "missing")})
        )

        assert not result.success
        assert result.state == RunState.FAILED
        assert result.session.status == S.FAILED

    @pytest.mark.asyncio
    async def test_control_without_run_fails(self, service_factory):
        service = service_factory()
        await service.initialize()
        for command in (service.pause, service.resume, service.cancel):
            result = await command()
            assert not result.success
            assert result.error == "No active detection session"

    @pytest.mark.asyncio
    async def test_pause_and_resume_through_service(
        self, service_factory, processor_factory, tree_config
    ):
        paused = asyncio.Event()
        pause_results = []

        async def hook(file):
            if file.name == "gen.cpp":
                pause_results.append(await service.pause())
                paused.set()

        service = service_factory(processor=processor_factory(hook=hook))
        await service.initialize()
        task = asyncio.create_task(service.start(tree_config))
        await asyncio.wait_for(paused.wait(), timeout=5)
        await asyncio.sleep(0.05)

        status = await service.get_status()
        assert status.session.status == S.PAUSED
        assert status.data["progress"]["processed_files"] == 1

        resumed = await service.resume()
        result = await asyncio.wait_for(task, timeout=5)

        assert pause_results[0].success
        assert resumed.success
        assert result.session.status == S.COMPLETED

    @pytest.mark.asyncio
    async def test_resume_from_session(self, service_factory, store, tree_config):
        interrupted = await store.create(tree_config)
        service = service_factory()
        await service.initialize()

        result = await service.resume_from_session(interrupted.id)

        assert result.success
        assert result.session.id == interrupted.id
        assert result.session.status == S.COMPLETED

    @pytest.mark.asyncio
    async def test_resume_unknown_session(self, service_factory):
        service = service_factory()
        await service.initialize()
        result = await service.resume_from_session("missing")
        assert not result.success
        assert "missing" in result.error


# ---------------------------------------------------------------------------
# Tests - queries and maintenance
# ---------------------------------------------------------------------------


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_status_without_session(self, service_factory):
        service = service_factory()
        await service.initialize()
        result = await service.get_status()
        assert not result.success
        assert result.state == RunState.IDLE

    @pytest.mark.asyncio
    async def test_list_incomplete_sessions(self, service_factory, store, config, clock):
        service = service_factory()
        await service.initialize()
        paused = await store.create(config)
        await store.update_status(paused.id, S.PAUSED)

        result = await service.list_incomplete_sessions()

        assert result.success
        assert [s.id for s in result.sessions] == [paused.id]

    @pytest.mark.asyncio
    async def test_cleanup_old_sessions(self, service_factory, store, config, clock):
        service = service_factory()
        await service.initialize()
        old = await store.create(config)
        await store.update_status(old.id, S.COMPLETED)
        clock.advance(days=8)

        result = await service.cleanup_old_sessions()

        assert result.success
        assert result.data["by_retention"] == 1
        assert result.data["total"] == 1

    @pytest.mark.asyncio
    async def test_get_session_stats(self, service_factory, tree_config):
        service = service_factory()
        await service.initialize()
        await service.start(tree_config)

        result = await service.get_session_stats()

        assert result.data["total_sessions"] == 1
        assert result.data["status_counts"] == {"completed": 1}

    @pytest.mark.asyncio
    async def test_delete_session(self, service_factory, store, config):
        service = service_factory()
        await service.initialize()
        paused = await store.create(config)
        await store.update_status(paused.id, S.PAUSED)

        refused = await service.delete_session(paused.id)
        missing = await service.delete_session("missing")
        await store.update_status(paused.id, S.CANCELLED)
        deleted = await service.delete_session(paused.id)

        assert not refused.success
        assert not missing.success
        assert "not found" in missing.error
        assert deleted.success
