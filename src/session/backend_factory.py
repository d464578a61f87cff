# src/session/backend_factory.py - v1
"""Factory for session backend instantiation."""

from __future__ import annotations

from autodetect.config.settings import Settings
from autodetect.session.base_session_backend import BaseSessionBackend


def create_session_backend(settings: Settings | None = None) -> BaseSessionBackend:
    """Instantiate the configured session backend.

    Args:
        settings: Application settings. Defaults to the JSON backend.

    Returns:
        Configured BaseSessionBackend implementation.
    """
    backend = "json" if settings is None else settings.session_backend
    root = ".autodetect/sessions" if settings is None else str(settings.session_root)

    if backend == "json":
        from autodetect.session.json_backend import JsonSessionBackend
        return JsonSessionBackend(root=root)

    if backend == "sqlite":
        from autodetect.session.sqlite_backend import SqliteSessionBackend
        return SqliteSessionBackend(db_path=f"{root}/sessions.db")

    raise ValueError(f"Unsupported session backend: {backend!r}")
