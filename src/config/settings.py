# src/config/settings.py - v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for deployment-level settings: session storage,
batching defaults, resource thresholds, scan defaults and logging.
Per-run options live in ``DetectionConfig`` (config/detection.py).
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Session store ===
    session_backend: Literal["json", "sqlite"] = "json"
    session_root: Path = Path("~/.autodetect/sessions")
    session_max_count: int = 50
    session_retention_days: int = 7
    session_stale_hours: int = 24

    # === Batching ===
    batch_size: int = 20
    batch_min_size: int = 5
    batch_max_size: int = 50
    max_concurrency: int = 1
    avg_file_size_kb: float = 50.0

    # === Resources ===
    resource_warning_threshold: float = 0.85
    resource_critical_threshold: float = 0.95
    resource_processing_multiplier: float = 10.0
    resource_processing_fraction: float = 0.5
    resource_monitor_interval_s: float = 5.0
    resource_history_size: int = 100

    # === Scan defaults ===
    scan_file_types: str = ".h,.cpp,.hpp,.cc,.cxx"
    scan_exclude_patterns: str = ""

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "text"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator(
        "session_max_count",
        "session_retention_days",
        "session_stale_hours",
        "max_concurrency",
        "resource_history_size",
    )
    @classmethod
    def validate_positive(cls, v: int, info) -> int:  # noqa: N805
        if v < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return v

    @field_validator("batch_min_size")
    @classmethod
    def validate_min_batch(cls, v: int) -> int:  # noqa: N805
        """A batch must be able to hold at least one header/implementation pair."""
        if v < 2:
            raise ValueError("batch_min_size must be >= 2")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if not self.batch_min_size <= self.batch_size <= self.batch_max_size:
            errors.append(
                "BATCH_SIZE must lie between BATCH_MIN_SIZE and BATCH_MAX_SIZE"
            )

        if not (
            0.0 < self.resource_warning_threshold
            < self.resource_critical_threshold <= 1.0
        ):
            errors.append(
                "RESOURCE thresholds must satisfy 0 < warning < critical <= 1"
            )

        if not 0.0 < self.resource_processing_fraction <= 1.0:
            errors.append("RESOURCE_PROCESSING_FRACTION must be in (0, 1]")

        if self.resource_processing_multiplier <= 0:
            errors.append("RESOURCE_PROCESSING_MULTIPLIER must be > 0")

        if self.resource_monitor_interval_s <= 0:
            errors.append("RESOURCE_MONITOR_INTERVAL_S must be > 0")

        if self.avg_file_size_kb <= 0:
            errors.append("AVG_FILE_SIZE_KB must be > 0")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def scan_file_types_list(self) -> list[str]:
        """Parse comma-separated file extensions, normalized to '.ext'."""
        types = []
        for raw in self.scan_file_types.split(","):
            ext = raw.strip().lower()
            if not ext:
                continue
            types.append(ext if ext.startswith(".") else f".{ext}")
        return types

    @property
    def scan_exclude_patterns_list(self) -> list[str]:
        """Parse comma-separated exclude globs."""
        return [p.strip() for p in self.scan_exclude_patterns.split(",") if p.strip()]


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or embedding hosts).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
