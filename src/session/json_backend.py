# src/session/json_backend.py - v1
"""JSON file-based session backend (default SESSION_BACKEND=json).

Layout under ``root``::

    sessions/<session_id>.json   full session body
    index.json                   {session_id: summary}

Files are replaced atomically (write to a temp file, then ``os.replace``).
If the index write fails after the body was replaced, the previous body is
restored so the caller never observes a half-applied write.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from autodetect.session.base_session_backend import BaseSessionBackend
from autodetect.session.errors import SessionStorageError
from autodetect.session.models import Session, SessionSummary

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"


class JsonSessionBackend(BaseSessionBackend):
    """File-based session backend using JSON documents."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()
        self._sessions_dir = self._root / "sessions"
        self._sessions_dir.mkdir(parents=True, exist_ok=True)
        self._index_path = self._root / INDEX_FILENAME

    async def get(self, session_id: str) -> Session | None:
        path = self._session_path(session_id)
        if not path.exists():
            return None
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise SessionStorageError(f"Failed to read session {session_id}: {e}") from e
        try:
            return Session.model_validate_json(raw)
        except ValidationError as e:
            raise SessionStorageError(f"Corrupt session body {session_id}: {e}") from e

    async def put(self, session: Session) -> None:
        path = self._session_path(session.id)
        previous = path.read_bytes() if path.exists() else None

        index = self._read_index()
        index[session.id] = json.loads(session.summary().model_dump_json())

        try:
            _atomic_write(path, session.model_dump_json(indent=2).encode("utf-8"))
        except OSError as e:
            raise SessionStorageError(f"Failed to write session {session.id}: {e}") from e

        try:
            _atomic_write(self._index_path, json.dumps(index, indent=2).encode("utf-8"))
        except OSError as e:
            self._restore(path, previous)
            raise SessionStorageError(
                f"Failed to update index for session {session.id}: {e}"
            ) from e

    async def delete(self, session_id: str) -> bool:
        path = self._session_path(session_id)
        index = self._read_index()
        existed = path.exists() or session_id in index
        if not existed:
            return False

        if session_id in index:
            del index[session_id]
            try:
                _atomic_write(
                    self._index_path, json.dumps(index, indent=2).encode("utf-8")
                )
            except OSError as e:
                raise SessionStorageError(
                    f"Failed to update index for session {session_id}: {e}"
                ) from e
        if path.exists():
            path.unlink()
        return True

    async def list_summaries(self) -> list[SessionSummary]:
        summaries: list[SessionSummary] = []
        for session_id, data in self._read_index().items():
            try:
                summaries.append(SessionSummary.model_validate(data))
            except ValidationError as e:
                logger.warning("Skipping corrupt index entry %s: %s", session_id, e)
        return summaries

    def rebuild_index(self) -> int:
        """Regenerate index.json from the session bodies on disk.

        Returns:
            Number of sessions indexed.
        """
        index: dict[str, dict] = {}
        for path in sorted(self._sessions_dir.glob("*.json")):
            try:
                session = Session.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as e:
                logger.warning("Skipping unreadable session file %s: %s", path.name, e)
                continue
            index[session.id] = json.loads(session.summary().model_dump_json())
        _atomic_write(self._index_path, json.dumps(index, indent=2).encode("utf-8"))
        logger.info("Rebuilt session index: %d sessions", len(index))
        return len(index)

    def _read_index(self) -> dict[str, dict]:
        if not self._index_path.exists():
            if any(self._sessions_dir.glob("*.json")):
                self.rebuild_index()
            else:
                return {}
        try:
            data = json.loads(self._index_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Session index unreadable (%s), rebuilding", e)
            self.rebuild_index()
            data = json.loads(self._index_path.read_text(encoding="utf-8"))
        return data if isinstance(data, dict) else {}

    def _restore(self, path: Path, previous: bytes | None) -> None:
        try:
            if previous is None:
                path.unlink(missing_ok=True)
            else:
                _atomic_write(path, previous)
        except OSError:
            logger.exception("Failed to restore %s after index write failure", path.name)

    def _session_path(self, session_id: str) -> Path:
        safe_id = session_id.replace("/", "_").replace("\\", "_")
        return self._sessions_dir / f"{safe_id}.json"


def _atomic_write(path: Path, payload: bytes) -> None:
    """Write ``payload`` to ``path`` so readers see either old or new content."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise
