# src/core/models.py - v1
"""Shared domain models: FileDescriptor, FileGroup, ScanResult, DefectRecord.

These cross the boundary between the engine and its external collaborators
(file lister, per-file processor).
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class FileDescriptor(BaseModel):
    """A file produced by the file lister. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    path: str
    name: str
    size: int = 0
    last_modified: datetime | None = None
    is_directory: bool = False

    @property
    def directory(self) -> str:
        """Parent directory of ``path`` ('/' separated, '/' for top level)."""
        idx = self.path.rfind("/")
        return self.path[:idx] if idx > 0 else "/"


class FileGroup(BaseModel):
    """Files below one first-level sub-directory of the scan root."""

    name: str
    path: str
    files: list[FileDescriptor] = Field(default_factory=list)


class ScanResult(BaseModel):
    """Output of a file lister: directory groups plus loose root files."""

    groups: list[FileGroup] = Field(default_factory=list)
    root_files: list[FileDescriptor] = Field(default_factory=list)

    @property
    def total_files(self) -> int:
        return sum(len(g.files) for g in self.groups) + len(self.root_files)

    def all_groups(self) -> list[FileGroup]:
        """Groups in processing order, root files last as a synthetic 'root' group."""
        groups = list(self.groups)
        if self.root_files:
            groups.append(FileGroup(name="root", path=".", files=list(self.root_files)))
        return groups

    def without_paths(self, excluded: set[str]) -> ScanResult:
        """Copy with every file whose path is in ``excluded`` removed.

        Groups left empty are dropped.
        """
        groups = []
        for group in self.groups:
            remaining = [f for f in group.files if f.path not in excluded]
            if remaining:
                groups.append(group.model_copy(update={"files": remaining}))
        root_files = [f for f in self.root_files if f.path not in excluded]
        return ScanResult(groups=groups, root_files=root_files)


class DefectRecord(BaseModel):
    """A single defect reported by the per-file processor."""

    file: str
    line: int | None = None
    category: str = "general"
    severity: Literal["high", "medium", "low"] = "medium"
    description: str = ""
    suggestion: str | None = None
