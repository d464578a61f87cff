# src/core/base_file_processor.py - v1
"""Abstract per-file processor interface.

The processor is the external analysis step. It is not assumed to be
idempotent; anything it raises is recorded as a failure of that one file.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from autodetect.core.models import DefectRecord, FileDescriptor


class BaseFileProcessor(ABC):
    """Analyzes one file and returns the defects found in it."""

    @abstractmethod
    async def process(self, file: FileDescriptor) -> list[DefectRecord]:
        """Analyze ``file``. Raise to signal a per-file failure."""


class CallableFileProcessor(BaseFileProcessor):
    """Adapter turning a plain coroutine function into a processor."""

    def __init__(
        self, fn: Callable[[FileDescriptor], Awaitable[list[DefectRecord] | None]]
    ) -> None:
        self._fn = fn

    async def process(self, file: FileDescriptor) -> list[DefectRecord]:
        return list(await self._fn(file) or [])
