# src/session/errors.py - v1
"""Session store exceptions."""

from __future__ import annotations


class SessionStoreError(Exception):
    """Base class for session store failures."""


class SessionNotFoundError(SessionStoreError):
    """No session is stored under the requested id."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class SessionClosedError(SessionStoreError):
    """A write was attempted against a session in a terminal status."""

    def __init__(self, session_id: str, status: str) -> None:
        self.session_id = session_id
        self.status = status
        super().__init__(f"Session {session_id} is closed ({status})")


class InvalidTransitionError(SessionStoreError):
    """A status change is not allowed from the current status."""

    def __init__(self, session_id: str, current: str, requested: str) -> None:
        self.session_id = session_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid transition for session {session_id}: {current} -> {requested}"
        )


class SessionInUseError(SessionStoreError):
    """The session is RUNNING or PAUSED and cannot be deleted."""

    def __init__(self, session_id: str, status: str) -> None:
        self.session_id = session_id
        self.status = status
        super().__init__(f"Session {session_id} is still {status}")


class SessionStorageError(SessionStoreError):
    """The storage medium failed; the previously persisted value is intact."""
