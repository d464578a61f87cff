# src/session/state_machine.py - v1
"""Allowed session status transitions.

RUNNING is the initial status. COMPLETED, FAILED and CANCELLED are terminal.
INTERRUPTED is reached from RUNNING or PAUSED by the inactivity sweep or by
orphan recovery, and can be resumed (-> RUNNING) or discarded (-> CANCELLED).
"""

from __future__ import annotations

from autodetect.session.models import SessionStatus

_S = SessionStatus

ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    _S.RUNNING: frozenset(
        {_S.PAUSED, _S.COMPLETED, _S.FAILED, _S.CANCELLED, _S.INTERRUPTED}
    ),
    _S.PAUSED: frozenset({_S.RUNNING, _S.CANCELLED, _S.INTERRUPTED}),
    _S.INTERRUPTED: frozenset({_S.RUNNING, _S.CANCELLED}),
    _S.COMPLETED: frozenset(),
    _S.FAILED: frozenset(),
    _S.CANCELLED: frozenset(),
}


def can_transition(current: SessionStatus, requested: SessionStatus) -> bool:
    """Return True if ``current -> requested`` is a valid status change."""
    return requested in ALLOWED_TRANSITIONS[current]
