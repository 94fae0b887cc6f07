"""Tests for settings and planner config — env-driven overrides."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from layerforge.config import BuildSettings
from layerforge.models.config import PlannerConfig


class TestBuildSettings:
    def test_defaults(self):
        settings = BuildSettings()
        assert settings.environment == "development"
        assert settings.log_level == "INFO"
        assert settings.max_parallel_stages == 4
        assert settings.fingerprint_length == 16

    def test_is_production(self):
        assert BuildSettings().is_production is False
        assert BuildSettings(environment="production").is_production is True

    def test_default_paths(self):
        settings = BuildSettings()
        assert settings.registry_path == Path(".layerforge/registry")
        assert settings.reports_path == Path(".layerforge/reports")
        assert settings.output_path == Path(".layerforge/out")

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LAYERFORGE_REGISTRY_PATH", "/mnt/layers")
        monkeypatch.setenv("LAYERFORGE_MAX_PARALLEL_STAGES", "2")
        settings = BuildSettings()
        assert settings.registry_path == Path("/mnt/layers")
        assert settings.max_parallel_stages == 2

    def test_fingerprint_length_bounds(self):
        with pytest.raises(ValidationError):
            BuildSettings(fingerprint_length=8)


class TestPlannerConfig:
    def test_from_settings(self):
        settings = BuildSettings(
            reports_path=Path("/tmp/reports"),
            registry_retries=5,
            registry_backoff_seconds=0.1,
            max_parallel_stages=3,
        )
        config = PlannerConfig.from_settings(settings)
        assert config.reports_path == Path("/tmp/reports")
        assert config.max_parallel_stages == 3
        assert config.retry.attempts == 5
        assert config.retry.backoff_seconds == 0.1

    def test_frozen(self):
        config = PlannerConfig()
        with pytest.raises(ValidationError):
            config.max_parallel_stages = 8  # type: ignore[misc]
