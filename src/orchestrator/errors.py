# src/orchestrator/errors.py - v1
"""Orchestrator exceptions."""

from __future__ import annotations


class DetectionError(Exception):
    """A detection run could not be started, controlled or completed."""


class AdmissionError(DetectionError):
    """A run was refused before any session was created.

    Raised when another session is already running or when the resource
    governor denies the requested batch size.
    """
