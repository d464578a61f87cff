# src/__init__.py - v1
"""autodetect - resumable, resource-aware batch defect detection engine."""

from autodetect.version import __version__

__all__ = ["__version__"]
