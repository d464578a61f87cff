# src/session/base_session_backend.py - v1
"""Abstract session persistence backend.

A backend stores one record per session plus an index of summaries. It
knows nothing about status rules; ``SessionStore`` layers those on top.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from autodetect.session.models import Session, SessionSummary


class BaseSessionBackend(ABC):
    """Unified interface for session storage media."""

    @abstractmethod
    async def get(self, session_id: str) -> Session | None:
        """Retrieve a full session body by id, or None if it does not exist.

        Raises:
            SessionStorageError: If the medium cannot be read or the stored
                body is corrupt.
        """

    @abstractmethod
    async def put(self, session: Session) -> None:
        """Persist the session body and its index entry as one unit.

        Raises:
            SessionStorageError: If the medium fails. The previously stored
                body and index entry must be left intact.
        """

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Remove body and index entry. Returns False if absent."""

    @abstractmethod
    async def list_summaries(self) -> list[SessionSummary]:
        """Return all index entries (unordered)."""

    async def close(self) -> None:
        """Release medium resources. No-op by default."""
