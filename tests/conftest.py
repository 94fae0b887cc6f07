"""Shared test fixtures for Layerforge."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from layerforge.core.layer_cache import LayerCacheStore
from layerforge.core.planner import BuildPlanner
from layerforge.core.registry import FilesystemRegistry, InMemoryRegistry
from layerforge.core.test_gate import CallableTestRunner, ReportSink
from layerforge.models.artifacts import ArtifactBundle
from layerforge.models.build import BuildRequest
from layerforge.models.config import PlannerConfig, RetryPolicy
from layerforge.models.manifest import Manifest
from layerforge.models.stages import standard_pipeline


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def memory_registry() -> InMemoryRegistry:
    """Provide a fresh in-memory registry."""
    return InMemoryRegistry()


@pytest.fixture
def fs_registry(tmp_dir: Path) -> FilesystemRegistry:
    """Provide a filesystem registry in a temp directory."""
    return FilesystemRegistry(tmp_dir / "registry")


@pytest.fixture
def cache(memory_registry: InMemoryRegistry) -> LayerCacheStore:
    """Provide a LayerCacheStore over the in-memory registry."""
    return LayerCacheStore(memory_registry)


@pytest.fixture
def report_sink(tmp_dir: Path) -> ReportSink:
    """Provide a ReportSink writing into a temp directory."""
    return ReportSink(tmp_dir / "reports")


@pytest.fixture
def planner_config(tmp_dir: Path) -> PlannerConfig:
    """Planner config with instant retries so outage tests stay fast."""
    return PlannerConfig(
        reports_path=tmp_dir / "reports",
        retry=RetryPolicy(attempts=2, backoff_seconds=0.0),
    )


@pytest.fixture
def manifest() -> Manifest:
    """Provide a small three-entry manifest."""
    return Manifest.from_text("shiny==1.8.0\ndplyr>=1.1\nggplot2 3.5.0\n")


@pytest.fixture
def app_files() -> dict[str, bytes]:
    """Application tree with runtime code, tests and build-only material."""
    return {
        "app.R": b"library(shiny)\nshinyApp(ui, server)\n",
        "R/helpers.R": b"add <- function(a, b) a + b\n",
        "tests/testthat/test-app.R": b"test_that('adds', expect_equal(add(1, 2), 3))\n",
        "Makefile": b"build:\n\techo build\n",
    }


@pytest.fixture
def passing_runner() -> CallableTestRunner:
    """A runner whose single check asserts the app entrypoint is present."""

    def app_present(bundle: ArtifactBundle) -> None:
        assert "app.R" in bundle

    return CallableTestRunner({"app_present": app_present})


@pytest.fixture
def failing_runner() -> CallableTestRunner:
    """A runner with one passing and one failing check."""

    def ok(bundle: ArtifactBundle) -> None:
        return None

    def broken(bundle: ArtifactBundle) -> None:
        raise AssertionError("expected 3, got 4")

    return CallableTestRunner({"ok": ok, "broken": broken})


@pytest.fixture
def make_planner(
    cache: LayerCacheStore,
    planner_config: PlannerConfig,
    report_sink: ReportSink,
    passing_runner: CallableTestRunner,
) -> Callable[..., BuildPlanner]:
    """Factory fixture: a BuildPlanner sharing the test cache and sink."""

    def _factory(**overrides: Any) -> BuildPlanner:
        defaults: dict[str, Any] = {
            "config": planner_config,
            "report_sink": report_sink,
            "test_runner": passing_runner,
        }
        defaults.update(overrides)
        return BuildPlanner(defaults.pop("cache", cache), **defaults)

    return _factory


@pytest.fixture
def make_request(
    manifest: Manifest, app_files: dict[str, bytes]
) -> Callable[..., BuildRequest]:
    """Factory fixture: a BuildRequest for the standard four-stage pipeline."""

    def _factory(
        scope: str = "main",
        files: dict[str, bytes] | None = None,
        manifest_override: Manifest | None = None,
        **overrides: Any,
    ) -> BuildRequest:
        pipeline_args: dict[str, Any] = {
            "files": files if files is not None else app_files,
            "entrypoints": ("app.R",),
            "runtime_paths": ("app.R", "R/"),
        }
        pipeline_args.update(overrides.pop("pipeline", {}))
        defaults: dict[str, Any] = {
            "manifest": manifest_override if manifest_override is not None else manifest,
            "scope": scope,
            "stages": standard_pipeline(**pipeline_args),
        }
        defaults.update(overrides)
        return BuildRequest(**defaults)

    return _factory
