# src/api/models.py - v1
"""API-level models: CommandResult."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from autodetect.orchestrator.models import RunState
from autodetect.session.models import SessionSummary


class CommandResult(BaseModel):
    """Return value of every DetectionService command.

    Expected failures (no active session, admission refused, invalid
    transition) come back with ``success=False`` and an ``error`` message
    instead of raising.
    """

    success: bool
    message: str = ""
    error: str | None = None
    state: RunState | None = None
    session: SessionSummary | None = None
    sessions: list[SessionSummary] = Field(default_factory=list)
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, message: str = "", **kwargs: Any) -> CommandResult:
        return cls(success=True, message=message, **kwargs)

    @classmethod
    def fail(cls, error: str, **kwargs: Any) -> CommandResult:
        return cls(success=False, error=error, **kwargs)
