# tests/conftest.py - v1
"""Shared test fixtures for all unit and integration tests.

Provides a controllable clock, session stores on tmp_path, a fake memory
sampler, a scripted file processor and a small C++ source tree.
"""

from __future__ import annotations

import asyncio
import math
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Awaitable, Callable

import pytest

from autodetect.config.detection import DetectionConfig
from autodetect.core.base_file_processor import BaseFileProcessor
from autodetect.core.models import DefectRecord, FileDescriptor
from autodetect.resources.governor import ResourceGovernor
from autodetect.resources.models import ResourceSample
from autodetect.session.json_backend import JsonSessionBackend
from autodetect.session.store import SessionStore


# === Helpers ===


class FakeClock:
    """Deterministic time source for SessionStore."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class ScriptedProcessor(BaseFileProcessor):
    """Processor that records calls, fails on chosen names and reports defects.

    ``hook`` is awaited after each call (before returning) so tests can
    pause or cancel the run at a precise file.
    """

    def __init__(
        self,
        fail_on: set[str] | None = None,
        defects: dict[str, int] | None = None,
        hook: Callable[[FileDescriptor], Awaitable[None]] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.fail_on = fail_on or set()
        self.defects = defects or {}
        self.hook = hook
        self.delay = delay
        self.calls: list[str] = []

    async def process(self, file: FileDescriptor) -> list[DefectRecord]:
        self.calls.append(file.path)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.hook is not None:
            await self.hook(file)
        if file.name in self.fail_on:
            raise RuntimeError(f"analysis failed for {file.name}")
        return [
            DefectRecord(file=file.path, line=i + 1, description=f"defect {i}")
            for i in range(self.defects.get(file.name, 0))
        ]


def make_sample(total_mb: float = 8192.0, available_mb: float = 6144.0) -> ResourceSample:
    used = total_mb - available_mb
    return ResourceSample(
        available_mb=available_mb,
        used_mb=used,
        total_mb=total_mb,
        usage_percent=used / total_mb * 100,
        available_for_processing_mb=math.floor(available_mb * 0.5),
    )


# === FIXTURES: Time and config ===


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def config() -> DetectionConfig:
    return DetectionConfig(target_directory="/project", batch_size=4)


@pytest.fixture
def make_file() -> Callable[..., FileDescriptor]:
    def _make(path: str, size: int = 1024) -> FileDescriptor:
        return FileDescriptor(path=path, name=path.rsplit("/", 1)[-1], size=size)

    return _make


# === FIXTURES: Session storage ===


@pytest.fixture
def backend(tmp_path: Path) -> JsonSessionBackend:
    return JsonSessionBackend(root=tmp_path / "sessions")


@pytest.fixture
def store(backend: JsonSessionBackend, clock: FakeClock) -> SessionStore:
    return SessionStore(backend, clock=clock)


# === FIXTURES: Resources ===


@pytest.fixture
def sample_factory() -> Callable[..., ResourceSample]:
    return make_sample


@pytest.fixture
def governor() -> ResourceGovernor:
    """Governor on a healthy host: 8 GB total, 25% used."""
    return ResourceGovernor(min_batch_size=2, sampler=lambda: make_sample())


@pytest.fixture
def governor_at() -> Callable[..., ResourceGovernor]:
    """Factory for a governor pinned to a fixed memory reading."""

    def _make(total_mb: float, available_mb: float, **kwargs) -> ResourceGovernor:
        kwargs.setdefault("min_batch_size", 2)
        return ResourceGovernor(sampler=lambda: make_sample(total_mb, available_mb), **kwargs)

    return _make


# === FIXTURES: Processing ===


@pytest.fixture
def processor_factory() -> Callable[..., ScriptedProcessor]:
    return ScriptedProcessor


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """Small C++ project.

    core/   a.h a.cpp b.h b.cpp util.cc
    net/    sock.hpp sock.cxx
    build/  gen.cpp
    main.cpp README.md
    """
    root = tmp_path / "project"
    files = {
        "core/a.h": "int a();",
        "core/a.cpp": "int a() { return 1; }",
        "core/b.h": "int b();",
        "core/b.cpp": "int b() { return 2; }",
        "core/util.cc": "void util() {}",
        "net/sock.hpp": "struct Sock;",
        "net/sock.cxx": "struct Sock {};",
        "build/gen.cpp": "// generated",
        "main.cpp": "int main() { return 0; }",
        "README.md": "# project",
    }
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root
