# src/batch/scanner.py - v1
"""Directory scanner: discover source files grouped by first-level directory.

Each first-level sub-directory of the scan root becomes one group holding
every matching file below it; files directly in the root are returned as
root files. Exclude patterns are case-insensitive globs matched against
both the path relative to the root and the bare name, so ``build`` and
``*_test.cpp`` both work. Excluded directories are not descended into.
"""

from __future__ import annotations

import fnmatch
import logging
from datetime import datetime, timezone
from pathlib import Path

from autodetect.config.detection import DEFAULT_FILE_TYPES
from autodetect.core.base_file_lister import BaseFileLister
from autodetect.core.models import FileDescriptor, FileGroup, ScanResult

logger = logging.getLogger(__name__)


def should_exclude(rel_path: str, patterns: list[str]) -> bool:
    """True if ``rel_path`` or its last component matches any pattern."""
    if not patterns:
        return False
    name = rel_path.rsplit("/", 1)[-1].lower()
    candidate = rel_path.lower()
    for pattern in patterns:
        p = pattern.lower()
        if fnmatch.fnmatchcase(candidate, p) or fnmatch.fnmatchcase(name, p):
            return True
    return False


def find_changed_files(
    previous: list[FileDescriptor], current: list[FileDescriptor]
) -> list[FileDescriptor]:
    """Files in ``current`` that are new or whose mtime differs from ``previous``."""
    before = {f.path: f for f in previous}
    changed = []
    for f in current:
        old = before.get(f.path)
        if old is None or old.last_modified != f.last_modified:
            changed.append(f)
    return changed


class DirectoryScanner(BaseFileLister):
    """Filesystem-backed file lister with deterministic (sorted) output."""

    def list(
        self,
        root: str,
        include_extensions: list[str] | None = None,
        exclude_patterns: list[str] | None = None,
    ) -> ScanResult:
        scan_root = Path(root).expanduser()
        if not scan_root.is_dir():
            msg = f"Scan root is not a directory: {scan_root}"
            raise ValueError(msg)

        extensions = {e.lower() for e in (include_extensions or DEFAULT_FILE_TYPES)}
        patterns = list(exclude_patterns or [])
        result = ScanResult()

        for entry in sorted(scan_root.iterdir()):
            rel = entry.name
            if should_exclude(rel, patterns):
                logger.debug("Skipping excluded entry: %s", rel)
                continue
            if entry.is_dir():
                files = self._walk(entry, rel, extensions, patterns)
                if files:
                    result.groups.append(
                        FileGroup(name=entry.name, path=rel, files=files)
                    )
            elif entry.is_file() and entry.suffix.lower() in extensions:
                result.root_files.append(_describe(entry))

        logger.info(
            "Scanned %s: %d groups, %d root files, %d files total",
            scan_root, len(result.groups), len(result.root_files), result.total_files,
        )
        return result

    def _walk(
        self,
        directory: Path,
        rel_dir: str,
        extensions: set[str],
        patterns: list[str],
    ) -> list[FileDescriptor]:
        files: list[FileDescriptor] = []
        for entry in sorted(directory.iterdir()):
            rel = f"{rel_dir}/{entry.name}"
            if should_exclude(rel, patterns):
                continue
            if entry.is_dir():
                files.extend(self._walk(entry, rel, extensions, patterns))
            elif entry.is_file() and entry.suffix.lower() in extensions:
                files.append(_describe(entry))
        return files


def _describe(path: Path) -> FileDescriptor:
    stat = path.stat()
    return FileDescriptor(
        path=path.resolve().as_posix(),
        name=path.name,
        size=stat.st_size,
        last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
    )
