# src/core/base_file_lister.py - v1
"""Abstract file lister interface.

A lister turns a root directory into a deterministic ``ScanResult`` for a
fixed filesystem state and must honor the exclude globs it is given.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from autodetect.core.models import ScanResult


class BaseFileLister(ABC):
    """Produces the flat file inventory a detection run works on."""

    @abstractmethod
    def list(
        self,
        root: str,
        include_extensions: list[str] | None = None,
        exclude_patterns: list[str] | None = None,
    ) -> ScanResult:
        """List files below ``root`` grouped by first-level directory."""
