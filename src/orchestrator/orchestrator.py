# src/orchestrator/orchestrator.py - v1
"""Detection orchestrator: the resumable control loop.

Binds the file lister, batch scheduler, resource governor and session store
into one run. Batches are processed strictly in order; files inside a batch
run with up to ``max_concurrency`` in flight, and their outcomes are always
recorded in batch order. Pause takes effect at the next batch boundary;
cancel is observed before every file and batch. A failing file is recorded
and never aborts the run. A failure of the lister or store marks the
session FAILED, or INTERRUPTED when it was paused at the time. Listing runs
in a worker thread so the monitor and control commands stay responsive.

Usage:
    orchestrator = DetectionOrchestrator(store, DirectoryScanner(), processor)
    session = await orchestrator.start_detection(config, callbacks)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from autodetect.batch.models import Batch, BatchStatus, FileResult
from autodetect.batch.scheduler import BatchScheduler
from autodetect.config.detection import DetectionConfig
from autodetect.core.base_file_lister import BaseFileLister
from autodetect.core.base_file_processor import BaseFileProcessor
from autodetect.core.models import FileDescriptor, FileGroup
from autodetect.logging.context import clear_context, set_batch_context, set_session_context
from autodetect.orchestrator.errors import AdmissionError, DetectionError
from autodetect.orchestrator.events import EventChannel, Subscriber, Subscription
from autodetect.orchestrator.models import (
    DetectionCallbacks,
    GroupReport,
    ProgressSnapshot,
    RunState,
)
from autodetect.resources.governor import ResourceGovernor
from autodetect.resources.models import ResourceAlert
from autodetect.session.errors import (
    InvalidTransitionError,
    SessionClosedError,
    SessionNotFoundError,
    SessionStoreError,
)
from autodetect.session.models import Session, SessionStats, SessionStatus
from autodetect.session.store import SessionStore

logger = logging.getLogger(__name__)


class _GroupPlan:
    """Batches of one scan group and the size they were planned with."""

    def __init__(self, group: FileGroup, batches: list[Batch], size: int) -> None:
        self.group = group
        self.batches = batches
        self.size = size
        self.done: list[Batch] = []


class DetectionOrchestrator:
    """Drive one detection session at a time.

    Args:
        store: Session store (single source of truth for resumability).
        lister: Produces the file inventory for a target directory.
        processor: Analyzes one file.
        governor: Admission and sizing decisions; a default psutil-backed
            governor is used when omitted.
        monitor_interval_s: Resource monitor tick during a run.
    """

    def __init__(
        self,
        store: SessionStore,
        lister: BaseFileLister,
        processor: BaseFileProcessor,
        governor: ResourceGovernor | None = None,
        monitor_interval_s: float = 5.0,
    ) -> None:
        self._store = store
        self._lister = lister
        self._processor = processor
        self._governor = governor or ResourceGovernor()
        self._monitor_interval_s = monitor_interval_s

        self.channels: dict[str, EventChannel] = {
            "progress": EventChannel("progress"),
            "status": EventChannel("status"),
            "report": EventChannel("report"),
        }

        self._state = RunState.IDLE
        self._session_id: str | None = None
        self._config: DetectionConfig | None = None
        self._scheduler: BatchScheduler | None = None
        self._cancel_requested = False
        self._resume_event = asyncio.Event()
        self._resume_event.set()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def current_session_id(self) -> str | None:
        return self._session_id

    @property
    def is_active(self) -> bool:
        return self._state in (RunState.RUNNING, RunState.PAUSED)

    @property
    def governor(self) -> ResourceGovernor:
        return self._governor

    def subscribe(self, channel: str, callback: Subscriber) -> Subscription:
        """Subscribe to 'progress', 'status' or 'report' events."""
        try:
            return self.channels[channel].subscribe(callback)
        except KeyError:
            raise ValueError(f"Unknown event channel: {channel}") from None

    async def get_status(self) -> Session | None:
        """The session driven by this orchestrator, freshly loaded."""
        if self._session_id is None:
            return None
        return await self._store.load(self._session_id)

    async def get_session(self, session_id: str) -> Session | None:
        return await self._store.load(session_id)

    async def delete_session(self, session_id: str) -> bool:
        if self.is_active and session_id == self._session_id:
            raise DetectionError(f"Session {session_id} is in use by the current run")
        return await self._store.delete(session_id)

    async def session_stats(self) -> SessionStats:
        return await self._store.get_stats()

    # ------------------------------------------------------------------
    # Run entry points
    # ------------------------------------------------------------------

    async def start_detection(
        self,
        config: DetectionConfig,
        callbacks: DetectionCallbacks | None = None,
        resume_from_last: bool = False,
    ) -> Session:
        """Start a fresh run, or resume the latest incomplete one.

        Raises:
            AdmissionError: Another session is running, or memory is
                insufficient even for a minimal batch. No session is created.
            DetectionError: The run failed; the session is marked FAILED.
        """
        await self._ensure_no_active_session()

        if resume_from_last:
            incomplete = await self._store.list_incomplete()
            if incomplete:
                logger.info("Resuming most recent incomplete session %s", incomplete[0].id)
                return await self.resume_from_session(incomplete[0].id, callbacks)

        check = self._governor.check_constraints(config.batch_size, config.avg_file_size_kb)
        if not check.can_proceed:
            raise AdmissionError(
                "Insufficient resources to start detection: " + "; ".join(check.warnings)
            )
        if check.recommended_batch_size is not None:
            logger.info(
                "Adopting reduced batch size %d (requested %d)",
                check.recommended_batch_size, config.batch_size,
            )
            config = config.model_copy(update={"batch_size": check.recommended_batch_size})

        session = await self._store.create(config)
        return await self._run(session, callbacks, resumed=False)

    async def resume_from_session(
        self, session_id: str, callbacks: DetectionCallbacks | None = None
    ) -> Session:
        """Continue an incomplete session, skipping files already processed.

        Raises:
            SessionNotFoundError: No such session.
            AdmissionError: Another session is running.
            DetectionError: The session is terminal, or the run failed.
        """
        await self._ensure_no_active_session()
        session = await self._store.require(session_id)
        if session.status.is_terminal:
            raise DetectionError(
                f"Session {session_id} is {session.status.value} and cannot be resumed"
            )
        if session.status != SessionStatus.RUNNING:
            await self._store.update_status(session_id, SessionStatus.RUNNING)
            session = await self._store.require(session_id)
        logger.info(
            "Resuming session %s (%d files already processed)",
            session_id, len(session.results.processed_files_list),
        )
        return await self._run(session, callbacks, resumed=True)

    # ------------------------------------------------------------------
    # Control commands
    # ------------------------------------------------------------------

    async def pause(self) -> Session:
        """Pause at the next batch boundary; the in-flight batch finishes."""
        session_id = self._require_active()
        await self._store.update_status(session_id, SessionStatus.PAUSED)
        self._resume_event.clear()
        self._state = RunState.PAUSED
        return await self._notify_status(SessionStatus.PAUSED)

    async def resume(self) -> Session:
        """Resume a paused run."""
        session_id = self._require_active()
        await self._store.update_status(session_id, SessionStatus.RUNNING)
        self._state = RunState.RUNNING
        self._resume_event.set()
        return await self._notify_status(SessionStatus.RUNNING)

    async def cancel(self) -> Session:
        """Mark the session CANCELLED now; the loop stops at the next file."""
        session_id = self._require_active()
        self._cancel_requested = True
        await self._store.update_status(session_id, SessionStatus.CANCELLED)
        self._state = RunState.CANCELLED
        self._resume_event.set()
        return await self._notify_status(SessionStatus.CANCELLED)

    # ------------------------------------------------------------------
    # Control loop
    # ------------------------------------------------------------------

    async def _run(
        self,
        session: Session,
        callbacks: DetectionCallbacks | None,
        resumed: bool,
    ) -> Session:
        session_id = session.id
        config = session.config
        temporary = self._register(callbacks)

        self._session_id = session_id
        self._config = config
        self._state = RunState.RUNNING
        self._cancel_requested = False
        self._resume_event.set()
        self._scheduler = BatchScheduler(config.batch_size, self._governor)
        set_session_context(session_id)

        try:
            await self._notify_status(SessionStatus.RUNNING)
            await self._governor.start_monitoring(
                self._monitor_interval_s, on_warning=self._on_resource_alert
            )

            scan = await asyncio.to_thread(
                self._lister.list,
                config.target_directory,
                include_extensions=config.file_types,
                exclude_patterns=config.exclude_patterns,
            )
            already_done = 0
            if resumed:
                done_paths = session.results.processed_paths
                before = scan.total_files
                scan = scan.without_paths(done_paths)
                already_done = before - scan.total_files

            total_files = already_done + scan.total_files
            await self._store.update_progress(session_id, total_files=total_files)

            estimate = self._governor.estimate_detection_time(
                scan.total_files, self._scheduler.batch_size
            )
            logger.info(
                "Processing %d of %d files (estimated %s)",
                scan.total_files, total_files, estimate.estimated_formatted,
            )
            if estimate.note:
                logger.warning(estimate.note)

            plans = [
                _GroupPlan(group, self._scheduler.create_batches(group.files, group.name),
                           self._scheduler.batch_size)
                for group in scan.all_groups()
            ]
            await self._store.update_progress(
                session_id, total_batches=_count_batches(plans), current_batch=0
            )
            await self._emit_progress()

            completed_batches = 0
            for plan in plans:
                i = 0
                while i < len(plan.batches):
                    if not await self._checkpoint():
                        return await self._finish_cancelled()
                    if plan.size != self._scheduler.batch_size:
                        self._replan(plan, i)
                        await self._store.update_progress(
                            session_id, total_batches=_count_batches(plans)
                        )

                    batch = plan.batches[i]
                    await self._process_batch(session_id, batch, config.max_concurrency)
                    plan.done.append(batch)
                    completed_batches += 1
                    if self._cancel_requested:
                        return await self._finish_cancelled()
                    await self._store.update_progress(session_id, current_batch=completed_batches)
                    i += 1

                await self._emit_report(session_id, plan)

            if not await self._checkpoint():
                return await self._finish_cancelled()

            await self._store.update_progress(session_id, percentage=100, current_file="")
            await self._store.update_status(session_id, SessionStatus.COMPLETED)
            self._state = RunState.COMPLETED
            logger.info("Detection completed: %s", self._governor.memory_stats().model_dump())
            return await self._notify_status(SessionStatus.COMPLETED)

        except Exception as e:
            if self._cancel_requested and isinstance(e, SessionClosedError):
                return await self._finish_cancelled()
            logger.exception("Detection run %s failed", session_id)
            await self._mark_failed(session_id, str(e) or type(e).__name__)
            raise DetectionError(f"Detection failed: {e}") from e

        finally:
            await self._governor.stop_monitoring()
            for sub in temporary:
                sub.cancel()
            self._scheduler = None
            clear_context()

    async def _process_batch(self, session_id: str, batch: Batch, max_concurrency: int) -> None:
        batch.status = BatchStatus.PROCESSING
        batch.started_at = datetime.now(timezone.utc)
        set_batch_context(batch.id)
        logger.debug("Processing batch %s (%d files)", batch.id, batch.size)

        try:
            if max_concurrency <= 1:
                for file in batch.files:
                    if self._cancel_requested:
                        break
                    result = await self._process_file(batch.id, file)
                    if not await self._record(session_id, batch, result):
                        break
            else:
                semaphore = asyncio.Semaphore(max_concurrency)

                async def run(file: FileDescriptor) -> FileResult | None:
                    async with semaphore:
                        if self._cancel_requested:
                            return None
                        return await self._process_file(batch.id, file)

                outcomes = await asyncio.gather(*(run(f) for f in batch.files))
                for result in outcomes:
                    if result is None or not await self._record(session_id, batch, result):
                        break
        except Exception as e:
            batch.status = BatchStatus.FAILED
            batch.error = str(e) or type(e).__name__
            batch.ended_at = datetime.now(timezone.utc)
            raise

        batch.status = BatchStatus.COMPLETED
        batch.ended_at = datetime.now(timezone.utc)
        set_batch_context(None)

    async def _process_file(self, batch_id: str, file: FileDescriptor) -> FileResult:
        set_batch_context(batch_id, file.path)
        try:
            defects = await self._processor.process(file)
        except Exception as e:
            logger.warning("Failed to process %s: %s", file.path, e)
            return FileResult(file=file, error=str(e) or type(e).__name__)
        return FileResult(file=file, defects=list(defects or []))

    async def _record(self, session_id: str, batch: Batch, result: FileResult) -> bool:
        """Persist one file outcome. Returns False once the run was cancelled."""
        if self._cancel_requested:
            return False
        try:
            if result.success:
                written = await self._store.add_processed_file(
                    session_id, result.file.path, result.file.name,
                    defects_found=len(result.defects),
                )
            else:
                written = await self._store.add_failed_file(
                    session_id, result.file.path, result.file.name, result.error or "",
                )
            if not written:
                raise SessionNotFoundError(session_id)
            await self._store.update_progress(session_id, current_file=result.file.name)
        except SessionClosedError:
            if self._cancel_requested:
                return False
            raise
        batch.results.append(result)
        await self._emit_progress()
        return True

    async def _checkpoint(self) -> bool:
        """Wait while paused. Returns False if the run was cancelled."""
        if not self._resume_event.is_set():
            logger.info("Run paused, waiting at batch boundary")
            await self._resume_event.wait()
        return not self._cancel_requested

    def _replan(self, plan: _GroupPlan, start: int) -> None:
        """Rebuild the not-yet-started batches of a group at the current size."""
        remaining = [f for batch in plan.batches[start:] for f in batch.files]
        fresh = self._scheduler.create_batches(remaining, plan.group.name)
        logger.info(
            "Re-planned group %s: %d -> %d remaining batches (size %d)",
            plan.group.name, len(plan.batches) - start, len(fresh), self._scheduler.batch_size,
        )
        plan.batches = plan.batches[:start] + fresh
        plan.size = self._scheduler.batch_size

    def _on_resource_alert(self, alert: ResourceAlert) -> None:
        logger.warning("Resource %s: %s", alert.level, alert.message)
        if alert.level == "critical" and self._scheduler is not None and self._config is not None:
            self._scheduler.resize(alert.sample.available_mb, self._config.avg_file_size_kb)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _ensure_no_active_session(self) -> None:
        if self.is_active:
            raise AdmissionError(f"Detection session {self._session_id} is already active")
        active = await self._store.get_active()
        if active is not None:
            raise AdmissionError(f"Detection session {active.id} is already running")

    def _require_active(self) -> str:
        if not self.is_active or self._session_id is None:
            raise DetectionError("No active detection session")
        return self._session_id

    def _register(self, callbacks: DetectionCallbacks | None) -> list[Subscription]:
        if callbacks is None:
            return []
        return [
            self.channels[name].subscribe(cb)
            for name, cb in callbacks.as_dict().items()
            if cb is not None
        ]

    async def _finish_cancelled(self) -> Session:
        self._state = RunState.CANCELLED
        logger.info("Detection cancelled")
        return await self._store.require(self._session_id)

    async def _mark_failed(self, session_id: str, message: str) -> None:
        """Record a run failure. A PAUSED session becomes INTERRUPTED instead."""
        self._state = RunState.FAILED
        status = SessionStatus.FAILED
        try:
            try:
                updated = await self._store.update_status(session_id, status, message)
            except InvalidTransitionError:
                status = SessionStatus.INTERRUPTED
                updated = await self._store.update_status(session_id, status, message)
        except SessionStoreError:
            logger.exception("Could not mark session %s as failed", session_id)
            return
        if not updated:
            logger.error("Session %s disappeared before it could be marked failed", session_id)
            return
        await self._notify_status(status)

    async def _notify_status(self, status: SessionStatus) -> Session:
        session = await self._store.require(self._session_id)
        await self.channels["status"].emit(status, session)
        return session

    async def _emit_progress(self) -> None:
        if not len(self.channels["progress"]):
            return
        session = await self._store.load(self._session_id)
        if session is not None:
            await self.channels["progress"].emit(ProgressSnapshot.from_session(session))

    async def _emit_report(self, session_id: str, plan: _GroupPlan) -> None:
        aggregated = BatchScheduler.aggregate_results(plan.done)
        report = GroupReport(
            session_id=session_id,
            group_name=plan.group.name,
            group_path=plan.group.path,
            files_scanned=len(plan.group.files),
            defects_found=aggregated.total_defects,
            batches=plan.done,
            aggregated=aggregated,
        )
        logger.info(
            "Group %s done: %d files, %d defects",
            plan.group.name, report.files_scanned, report.defects_found,
        )
        await self.channels["report"].emit(report)


def _count_batches(plans: list[_GroupPlan]) -> int:
    return sum(len(p.batches) for p in plans)
