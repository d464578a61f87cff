# src/config/detection.py - v1
"""Per-run detection configuration.

A ``DetectionConfig`` is captured into the session at creation time and is
never mutated afterwards; resumed runs re-read it from the session.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from autodetect.config.settings import Settings

DEFAULT_FILE_TYPES: list[str] = [".h", ".cpp", ".hpp", ".cc", ".cxx"]


class DetectionConfig(BaseModel):
    """Validated options for one detection run.

    Attributes:
        target_directory: Root directory handed to the file lister.
        file_types: Extensions to include (lowercase, dot-prefixed).
        exclude_patterns: Case-insensitive globs matched against relative paths.
        batch_size: Requested files per batch (the governor may reduce it).
        max_concurrency: Files processed concurrently inside one batch.
        avg_file_size_kb: Size hint used for memory estimates.
    """

    model_config = ConfigDict(frozen=True)

    target_directory: str
    file_types: list[str] = Field(default_factory=lambda: list(DEFAULT_FILE_TYPES))
    exclude_patterns: list[str] = Field(default_factory=list)
    batch_size: int = Field(default=20, ge=2)
    max_concurrency: int = Field(default=1, ge=1)
    avg_file_size_kb: float = Field(default=50.0, gt=0)

    @field_validator("file_types")
    @classmethod
    def normalize_file_types(cls, v: list[str]) -> list[str]:  # noqa: N805
        normalized = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        return normalized

    @classmethod
    def from_settings(
        cls, settings: Settings, target_directory: str, **overrides: Any
    ) -> DetectionConfig:
        """Build a run config from deployment settings plus caller overrides."""
        values: dict[str, Any] = {
            "target_directory": target_directory,
            "file_types": settings.scan_file_types_list,
            "exclude_patterns": settings.scan_exclude_patterns_list,
            "batch_size": settings.batch_size,
            "max_concurrency": settings.max_concurrency,
            "avg_file_size_kb": settings.avg_file_size_kb,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
