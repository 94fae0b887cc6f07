"""Runtime settings — env-driven via pydantic-settings.

All settings can be overridden via LAYERFORGE_* environment variables or a
.env file in the working directory.

Examples
--------
Override via environment::

    export LAYERFORGE_REGISTRY_PATH=/mnt/layer-registry
    export LAYERFORGE_LOG_LEVEL=DEBUG
    export LAYERFORGE_MAX_PARALLEL_STAGES=2
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BuildSettings(BaseSettings):
    """Process-wide settings with environment variable overrides."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="LAYERFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"

    # Storage paths
    registry_path: Path = Path(".layerforge/registry")
    reports_path: Path = Path(".layerforge/reports")
    output_path: Path = Path(".layerforge/out")

    # Scheduling
    max_parallel_stages: int = Field(default=4, ge=1)
    stage_timeout_seconds: float = 3600.0

    # Fingerprints
    fingerprint_length: int = Field(default=16, ge=12, le=64)

    # Registry retries for transient outages
    registry_retries: int = Field(default=3, ge=0)
    registry_backoff_seconds: float = 0.5

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"
