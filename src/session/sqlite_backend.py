# src/session/sqlite_backend.py - v1
"""SQLite-based session backend (SESSION_BACKEND=sqlite).

Uses stdlib sqlite3. Session body and index row are written in one
transaction, so a failed write rolls both back.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from pydantic import ValidationError

from autodetect.session.base_session_backend import BaseSessionBackend
from autodetect.session.errors import SessionStorageError
from autodetect.session.models import Session, SessionSummary

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    body TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS session_index (
    id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    last_update_time TEXT NOT NULL,
    summary TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_session_status ON session_index(status);
"""


class SqliteSessionBackend(BaseSessionBackend):
    """SQLite-backed session store for larger session histories."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    async def get(self, session_id: str) -> Session | None:
        try:
            row = self._conn.execute(
                "SELECT body FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
        except sqlite3.Error as e:
            raise SessionStorageError(f"Failed to read session {session_id}: {e}") from e
        if row is None:
            return None
        try:
            return Session.model_validate_json(row[0])
        except ValidationError as e:
            raise SessionStorageError(f"Corrupt session body {session_id}: {e}") from e

    async def put(self, session: Session) -> None:
        summary = session.summary()
        try:
            with self._conn:
                self._conn.execute(
                    "INSERT OR REPLACE INTO sessions (id, body) VALUES (?, ?)",
                    (session.id, session.model_dump_json()),
                )
                self._conn.execute(
                    """INSERT OR REPLACE INTO session_index
                       (id, status, last_update_time, summary)
                       VALUES (?, ?, ?, ?)""",
                    (
                        session.id,
                        summary.status.value,
                        summary.last_update_time.isoformat(),
                        summary.model_dump_json(),
                    ),
                )
        except sqlite3.Error as e:
            raise SessionStorageError(f"Failed to write session {session.id}: {e}") from e

    async def delete(self, session_id: str) -> bool:
        try:
            with self._conn:
                cursor = self._conn.execute(
                    "DELETE FROM sessions WHERE id = ?", (session_id,)
                )
                self._conn.execute(
                    "DELETE FROM session_index WHERE id = ?", (session_id,)
                )
        except sqlite3.Error as e:
            raise SessionStorageError(f"Failed to delete session {session_id}: {e}") from e
        return cursor.rowcount > 0

    async def list_summaries(self) -> list[SessionSummary]:
        summaries: list[SessionSummary] = []
        for session_id, raw in self._conn.execute(
            "SELECT id, summary FROM session_index"
        ):
            try:
                summaries.append(SessionSummary.model_validate_json(raw))
            except ValidationError as e:
                logger.warning("Skipping corrupt index row %s: %s", session_id, e)
        return summaries

    async def close(self) -> None:
        self._conn.close()
