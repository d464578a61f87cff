# src/logging/context.py - v1
"""Contextual logging support - attach session_id, batch_id, file_path to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Context variables for structured logging, set per detection run.
_session_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "session_id", default=None
)
_batch_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "batch_id", default=None
)
_file_path: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "file_path", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    session_id: str | None = None
    batch_id: str | None = None
    file_path: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        session_id=_session_id.get(),
        batch_id=_batch_id.get(),
        file_path=_file_path.get(),
    )


def set_session_context(session_id: str) -> None:
    """Set session-level context (called once per run)."""
    _session_id.set(session_id)


def set_batch_context(batch_id: str | None, file_path: str | None = None) -> None:
    """Set batch-level context (called per batch and per file)."""
    _batch_id.set(batch_id)
    _file_path.set(file_path)


def clear_context() -> None:
    """Reset all context variables."""
    _session_id.set(None)
    _batch_id.set(None)
    _file_path.set(None)
