# src/session/store.py - v1
"""Session store: durable, crash-survivable record of detection sessions.

Every mutation is a single load-merge-save step under an asyncio lock, so
callers never observe a partially applied update. Terminal sessions
(COMPLETED, FAILED, CANCELLED) reject writes with SessionClosedError.

Usage:
    store = SessionStore(JsonSessionBackend(root))
    session = await store.create(config)
    await store.add_processed_file(session.id, path, name, defects_found=2)
    await store.update_status(session.id, SessionStatus.COMPLETED)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from autodetect.config.detection import DetectionConfig
from autodetect.core.formatting import format_duration
from autodetect.session.base_session_backend import BaseSessionBackend
from autodetect.session.errors import (
    InvalidTransitionError,
    SessionClosedError,
    SessionInUseError,
    SessionNotFoundError,
    SessionStorageError,
)
from autodetect.session.models import (
    CleanupReport,
    FailedFileRecord,
    ProcessedFileRecord,
    Session,
    SessionMetadata,
    SessionProgress,
    SessionStats,
    SessionStatus,
    SessionSummary,
)
from autodetect.session.state_machine import can_transition

logger = logging.getLogger(__name__)

DEFAULT_MAX_SESSIONS = 50
DEFAULT_RETENTION = timedelta(days=7)
DEFAULT_STALE_AFTER = timedelta(hours=24)

STALE_ERROR = "Session expired due to inactivity"
ORPHAN_ERROR = "Session interrupted: owning process exited before completion"

# Progress fields callers may set; processed_files is derived from results.
_WRITABLE_PROGRESS_FIELDS = frozenset(SessionProgress.model_fields) - {"processed_files"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_session_id(timestamp: datetime | None = None) -> str:
    """Generate a session id: session_yyyymmdd_hhmmss_{uuid4_short}."""
    ts = timestamp or _utcnow()
    return f"session_{ts.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


class SessionStore:
    """Status rules, progress bookkeeping and retention on top of a backend.

    Args:
        backend: Persistence medium.
        max_sessions: Index size above which oldest terminal sessions are evicted.
        retention: Age after which terminal sessions are deleted.
        stale_after: Inactivity after which RUNNING/PAUSED sessions are
            demoted to INTERRUPTED.
        clock: Time source returning aware UTC datetimes.
    """

    def __init__(
        self,
        backend: BaseSessionBackend,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        retention: timedelta = DEFAULT_RETENTION,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._backend = backend
        self._max_sessions = max_sessions
        self._retention = retention
        self._stale_after = stale_after
        self._clock = clock or _utcnow
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Any, backend: BaseSessionBackend | None = None) -> SessionStore:
        """Build a store with retention rules taken from Settings."""
        if backend is None:
            from autodetect.session.backend_factory import create_session_backend
            backend = create_session_backend(settings)
        return cls(
            backend,
            max_sessions=settings.session_max_count,
            retention=timedelta(days=settings.session_retention_days),
            stale_after=timedelta(hours=settings.session_stale_hours),
        )

    @property
    def backend(self) -> BaseSessionBackend:
        return self._backend

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    async def create(self, config: DetectionConfig) -> Session:
        """Create, persist and index a new RUNNING session."""
        now = self._clock()
        session = Session(
            id=generate_session_id(now),
            status=SessionStatus.RUNNING,
            config=config,
            metadata=SessionMetadata(start_time=now, last_update_time=now),
        )
        async with self._lock:
            await self._backend.put(session)
        logger.info("Created session %s for %s", session.id, config.target_directory)
        return session

    async def load(self, session_id: str) -> Session | None:
        """Load a session body, or None if absent."""
        return await self._backend.get(session_id)

    async def require(self, session_id: str) -> Session:
        """Load a session body or raise SessionNotFoundError."""
        session = await self._backend.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def list_sessions(self) -> list[SessionSummary]:
        """All index entries, newest first."""
        summaries = await self._backend.list_summaries()
        return sorted(summaries, key=lambda s: s.start_time, reverse=True)

    async def list_incomplete(self) -> list[SessionSummary]:
        """Index entries in RUNNING, PAUSED or INTERRUPTED, newest first."""
        return [s for s in await self.list_sessions() if s.status.is_incomplete]

    async def get_active(self) -> Session | None:
        """The most recent RUNNING session, if any."""
        for summary in await self.list_sessions():
            if summary.status == SessionStatus.RUNNING:
                return await self._backend.get(summary.id)
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def update_progress(self, session_id: str, **fields: Any) -> bool:
        """Merge progress fields and recompute the percentage.

        ``processed_files`` cannot be set; it always equals the length of the
        processed-file list. The percentage never decreases.

        Returns:
            False if the session does not exist.

        Raises:
            SessionClosedError: If the session is terminal.
            ValueError: On unknown progress fields.
        """
        unknown = set(fields) - _WRITABLE_PROGRESS_FIELDS
        if unknown:
            raise ValueError(f"Unknown or derived progress fields: {sorted(unknown)}")

        def apply(session: Session) -> None:
            previous = session.progress.percentage
            session.progress = session.progress.model_copy(update=fields)
            _refresh_percentage(session, previous, fields.get("percentage"))

        return await self._mutate(session_id, apply)

    async def update_status(
        self,
        session_id: str,
        status: SessionStatus,
        error: str | None = None,
    ) -> bool:
        """Change status, enforcing the transition table.

        Entering a terminal status stamps end_time and duration.

        Returns:
            False if the session does not exist.

        Raises:
            SessionClosedError: If the session is already terminal.
            InvalidTransitionError: If the transition is not allowed.
        """
        status = SessionStatus(status)

        def apply(session: Session) -> None:
            if not can_transition(session.status, status):
                raise InvalidTransitionError(session.id, session.status.value, status.value)
            session.status = status
            if error:
                session.error = error
            if status.is_terminal:
                end = self._clock()
                session.metadata.end_time = end
                session.metadata.duration_seconds = (
                    end - session.metadata.start_time
                ).total_seconds()

        changed = await self._mutate(session_id, apply)
        if changed:
            logger.info("Session %s -> %s", session_id, status.value)
        return changed

    async def add_processed_file(
        self,
        session_id: str,
        path: str,
        name: str,
        defects_found: int = 0,
    ) -> bool:
        """Append a processed-file record and update defect counters."""

        def apply(session: Session) -> None:
            previous = session.progress.percentage
            session.results.processed_files_list.append(
                ProcessedFileRecord(
                    path=path,
                    name=name,
                    defects_found=defects_found,
                    processed_at=self._clock(),
                )
            )
            if defects_found > 0:
                session.progress.files_with_defects += 1
                session.progress.total_defects_found += defects_found
            _refresh_percentage(session, previous)

        return await self._mutate(session_id, apply)

    async def add_failed_file(
        self,
        session_id: str,
        path: str,
        name: str,
        error: str,
    ) -> bool:
        """Append a failed-file record."""

        def apply(session: Session) -> None:
            session.results.failed_files.append(
                FailedFileRecord(path=path, name=name, error=error, failed_at=self._clock())
            )

        return await self._mutate(session_id, apply)

    async def delete(self, session_id: str) -> bool:
        """Delete a session that is not RUNNING or PAUSED.

        Raises:
            SessionInUseError: If the session is RUNNING or PAUSED.
        """
        async with self._lock:
            try:
                session = await self._backend.get(session_id)
            except SessionStorageError as e:
                logger.warning("Deleting unreadable session %s: %s", session_id, e)
                session = None
            if session is not None and session.status in (
                SessionStatus.RUNNING,
                SessionStatus.PAUSED,
            ):
                raise SessionInUseError(session_id, session.status.value)
            return await self._backend.delete(session_id)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup(self) -> CleanupReport:
        """Apply max-count eviction, terminal retention and the stale sweep."""
        report = CleanupReport()
        now = self._clock()

        # Max count: evict oldest terminal sessions first.
        summaries = await self.list_sessions()
        excess = len(summaries) - self._max_sessions
        if excess > 0:
            terminal = sorted(
                (s for s in summaries if s.status.is_terminal),
                key=lambda s: s.start_time,
            )
            for summary in terminal[:excess]:
                if await self._backend.delete(summary.id):
                    report.by_max_count += 1

        # Retention window for terminal sessions.
        cutoff = now - self._retention
        for summary in await self.list_sessions():
            finished = summary.end_time or summary.last_update_time
            if summary.status.is_terminal and finished < cutoff:
                if await self._backend.delete(summary.id):
                    report.by_retention += 1

        # Staleness sweep: demote, never delete.
        stale_cutoff = now - self._stale_after
        for summary in await self.list_sessions():
            if (
                summary.status in (SessionStatus.RUNNING, SessionStatus.PAUSED)
                and summary.last_update_time < stale_cutoff
            ):
                try:
                    demoted = await self.update_status(
                        summary.id, SessionStatus.INTERRUPTED, STALE_ERROR
                    )
                except SessionStorageError:
                    logger.exception("Could not demote stale session %s", summary.id)
                    continue
                if demoted:
                    report.by_stale += 1

        if report.total:
            logger.info(
                "Session cleanup: %d by max count, %d by retention, %d stale",
                report.by_max_count, report.by_retention, report.by_stale,
            )
        return report

    async def recover_orphaned(self, keep: set[str] | None = None) -> int:
        """Demote RUNNING sessions left behind by a dead process to INTERRUPTED.

        Args:
            keep: Session ids owned by the live process; left untouched.

        Returns:
            Number of sessions demoted.
        """
        keep = keep or set()
        recovered = 0
        for summary in await self.list_sessions():
            if summary.status == SessionStatus.RUNNING and summary.id not in keep:
                try:
                    demoted = await self.update_status(
                        summary.id, SessionStatus.INTERRUPTED, ORPHAN_ERROR
                    )
                except SessionStorageError:
                    logger.exception("Could not recover orphaned session %s", summary.id)
                    continue
                if demoted:
                    recovered += 1
        if recovered:
            logger.warning("Recovered %d orphaned running session(s)", recovered)
        return recovered

    async def get_stats(self) -> SessionStats:
        """Status counts and average duration of completed sessions."""
        summaries = await self.list_sessions()
        counts = Counter(s.status.value for s in summaries)
        completed = [s for s in summaries if s.status == SessionStatus.COMPLETED]
        durations = [s.duration_seconds or 0.0 for s in completed]
        avg = sum(durations) / len(durations) if durations else 0.0
        return SessionStats(
            total_sessions=len(summaries),
            status_counts=dict(counts),
            completed_sessions=len(completed),
            incomplete_sessions=sum(1 for s in summaries if s.status.is_incomplete),
            avg_duration_seconds=avg,
            avg_duration_formatted=format_duration(avg),
        )

    async def export_session(self, session_id: str) -> str | None:
        """Full session body as indented JSON, or None if absent."""
        session = await self._backend.get(session_id)
        if session is None:
            return None
        return session.model_dump_json(indent=2)

    async def close(self) -> None:
        await self._backend.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _mutate(self, session_id: str, apply: Callable[[Session], None]) -> bool:
        """Load, apply ``apply`` to a copy, stamp and save as one step."""
        async with self._lock:
            stored = await self._backend.get(session_id)
            if stored is None:
                return False
            if stored.status.is_terminal:
                raise SessionClosedError(session_id, stored.status.value)

            session = stored.model_copy(deep=True)
            apply(session)
            session.progress.processed_files = len(session.results.processed_files_list)
            session.metadata.last_update_time = self._clock()
            await self._backend.put(session)
            return True


def _refresh_percentage(
    session: Session, previous: int, requested: int | None = None
) -> None:
    """Recompute the completion percentage without letting it go backwards."""
    progress = session.progress
    processed = len(session.results.processed_files_list)
    if requested is not None:
        candidate = requested
    elif progress.total_files > 0:
        candidate = (processed * 100) // progress.total_files
    else:
        candidate = previous
    progress.percentage = min(100, max(previous, candidate))
