# src/api/facade.py - v1
"""Public API facade: the command surface offered to host applications.

Usage:
    from autodetect.api.facade import DetectionService
    service = DetectionService(processor=my_processor)
    await service.initialize()
    result = await service.start(DetectionConfig(target_directory="src"))

Every command returns a CommandResult. Expected failures are reported with
``success=False``; calling a command before ``initialize()`` raises
RuntimeError.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from autodetect.api.models import CommandResult
from autodetect.batch.scanner import DirectoryScanner
from autodetect.config.settings import Settings
from autodetect.orchestrator.errors import AdmissionError, DetectionError
from autodetect.orchestrator.orchestrator import DetectionOrchestrator
from autodetect.resources.governor import ResourceGovernor
from autodetect.session.errors import SessionStoreError
from autodetect.session.store import SessionStore

if TYPE_CHECKING:
    from autodetect.config.detection import DetectionConfig
    from autodetect.core.base_file_lister import BaseFileLister
    from autodetect.core.base_file_processor import BaseFileProcessor
    from autodetect.orchestrator.models import DetectionCallbacks

logger = logging.getLogger(__name__)


class DetectionService:
    """Host-facing wrapper around one DetectionOrchestrator.

    Args:
        processor: Per-file analysis step.
        settings: Deployment settings. Loaded from .env if None.
        store: Session store; built from settings if None.
        lister: File lister; a DirectoryScanner if None.
        governor: Resource governor; built from settings if None.
    """

    def __init__(
        self,
        processor: BaseFileProcessor,
        settings: Settings | None = None,
        store: SessionStore | None = None,
        lister: BaseFileLister | None = None,
        governor: ResourceGovernor | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._processor = processor
        self._store = store
        self._lister = lister
        self._governor = governor
        self._orchestrator: DetectionOrchestrator | None = None

    @property
    def orchestrator(self) -> DetectionOrchestrator:
        if self._orchestrator is None:
            raise RuntimeError("DetectionService.initialize() must be called first")
        return self._orchestrator

    async def initialize(self) -> CommandResult:
        """Wire collaborators and recover sessions orphaned by a crashed process."""
        if self._orchestrator is not None:
            return CommandResult.ok("Already initialized")

        store = self._store or SessionStore.from_settings(self._settings)
        governor = self._governor or ResourceGovernor.from_settings(self._settings)
        self._orchestrator = DetectionOrchestrator(
            store=store,
            lister=self._lister or DirectoryScanner(),
            processor=self._processor,
            governor=governor,
            monitor_interval_s=self._settings.resource_monitor_interval_s,
        )
        self._store = store

        recovered = await store.recover_orphaned()
        logger.info("Detection service initialized (%d orphaned sessions recovered)", recovered)
        return CommandResult.ok("Initialized", data={"recovered_sessions": recovered})

    async def close(self) -> None:
        if self._store is not None:
            await self._store.close()

    # ------------------------------------------------------------------
    # Run commands
    # ------------------------------------------------------------------

    async def start(
        self,
        config: DetectionConfig,
        callbacks: DetectionCallbacks | None = None,
        resume_from_last: bool = False,
    ) -> CommandResult:
        """Run a detection to completion (or pause/cancel/failure)."""
        orchestrator = self.orchestrator
        try:
            session = await orchestrator.start_detection(config, callbacks, resume_from_last)
        except (DetectionError, SessionStoreError) as e:
            return await self._failed_run(e)
        return CommandResult.ok(
            f"Detection {session.status.value}",
            state=orchestrator.state,
            session=session.summary(),
        )

    async def resume_from_session(
        self, session_id: str, callbacks: DetectionCallbacks | None = None
    ) -> CommandResult:
        orchestrator = self.orchestrator
        try:
            session = await orchestrator.resume_from_session(session_id, callbacks)
        except (DetectionError, SessionStoreError) as e:
            return await self._failed_run(e)
        return CommandResult.ok(
            f"Detection {session.status.value}",
            state=orchestrator.state,
            session=session.summary(),
        )

    async def pause(self) -> CommandResult:
        orchestrator = self.orchestrator
        try:
            session = await orchestrator.pause()
        except (DetectionError, SessionStoreError) as e:
            return CommandResult.fail(str(e), state=orchestrator.state)
        return CommandResult.ok("Detection paused", state=orchestrator.state, session=session.summary())

    async def resume(self) -> CommandResult:
        orchestrator = self.orchestrator
        try:
            session = await orchestrator.resume()
        except (DetectionError, SessionStoreError) as e:
            return CommandResult.fail(str(e), state=orchestrator.state)
        return CommandResult.ok("Detection resumed", state=orchestrator.state, session=session.summary())

    async def cancel(self) -> CommandResult:
        orchestrator = self.orchestrator
        try:
            session = await orchestrator.cancel()
        except (DetectionError, SessionStoreError) as e:
            return CommandResult.fail(str(e), state=orchestrator.state)
        return CommandResult.ok("Detection cancelled", state=orchestrator.state, session=session.summary())

    # ------------------------------------------------------------------
    # Queries and maintenance
    # ------------------------------------------------------------------

    async def get_status(self) -> CommandResult:
        orchestrator = self.orchestrator
        try:
            session = await orchestrator.get_status()
        except SessionStoreError as e:
            return CommandResult.fail(str(e), state=orchestrator.state)
        if session is None:
            return CommandResult.fail("No detection session", state=orchestrator.state)
        return CommandResult.ok(
            session.status.value,
            state=orchestrator.state,
            session=session.summary(),
            data={"progress": session.progress.model_dump()},
        )

    async def list_incomplete_sessions(self) -> CommandResult:
        sessions = await self._initialized_store().list_incomplete()
        return CommandResult.ok(f"{len(sessions)} incomplete session(s)", sessions=sessions)

    async def cleanup_old_sessions(self) -> CommandResult:
        store = self._initialized_store()
        try:
            report = await store.cleanup()
        except SessionStoreError as e:
            return CommandResult.fail(str(e))
        return CommandResult.ok(
            f"Cleaned up {report.total} session(s)",
            data={**report.model_dump(), "total": report.total},
        )

    async def get_session_stats(self) -> CommandResult:
        stats = await self.orchestrator.session_stats()
        return CommandResult.ok("Session statistics", data=stats.model_dump())

    async def delete_session(self, session_id: str) -> CommandResult:
        orchestrator = self.orchestrator
        try:
            deleted = await orchestrator.delete_session(session_id)
        except (DetectionError, SessionStoreError) as e:
            return CommandResult.fail(str(e))
        if not deleted:
            return CommandResult.fail(f"Session not found: {session_id}")
        return CommandResult.ok(f"Deleted session {session_id}")

    def _initialized_store(self) -> SessionStore:
        if self._orchestrator is None or self._store is None:
            raise RuntimeError("DetectionService.initialize() must be called first")
        return self._store

    async def _failed_run(self, error: Exception) -> CommandResult:
        orchestrator = self.orchestrator
        session = None
        if not isinstance(error, AdmissionError) and orchestrator.current_session_id:
            session = await orchestrator.get_status()
        return CommandResult.fail(
            str(error),
            state=orchestrator.state,
            session=session.summary() if session else None,
        )
