"""Planner configuration model."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from layerforge.config import BuildSettings


class RetryPolicy(BaseModel):
    """Exponential backoff for retryable registry failures."""

    model_config = ConfigDict(frozen=True)

    attempts: int = Field(default=3, ge=0)  # retries after the first call
    backoff_seconds: float = 0.5
    multiplier: float = 2.0
    max_backoff_seconds: float = 30.0

    def delay(self, attempt: int) -> float:
        """Delay before retry number *attempt* (1-based)."""
        return min(
            self.backoff_seconds * self.multiplier ** (attempt - 1),
            self.max_backoff_seconds,
        )


class PlannerConfig(BaseModel):
    """Per-planner configuration.

    Usually derived from ``BuildSettings`` via ``from_settings``.
    """

    model_config = ConfigDict(frozen=True)

    reports_path: Path = Path(".layerforge/reports")
    max_parallel_stages: int = Field(default=4, ge=1)
    fingerprint_length: int = Field(default=16, ge=12, le=64)
    stage_timeout_seconds: float = 3600.0
    retry: RetryPolicy = RetryPolicy()

    @classmethod
    def from_settings(cls, settings: BuildSettings) -> PlannerConfig:
        return cls(
            reports_path=settings.reports_path,
            max_parallel_stages=settings.max_parallel_stages,
            fingerprint_length=settings.fingerprint_length,
            stage_timeout_seconds=settings.stage_timeout_seconds,
            retry=RetryPolicy(
                attempts=settings.registry_retries,
                backoff_seconds=settings.registry_backoff_seconds,
            ),
        )
