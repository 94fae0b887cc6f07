"""Unit tests for the BuildRenderer — Rich output for plans, results and reports."""

from __future__ import annotations

import pytest
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from layerforge.core.errors import TestFailureError
from layerforge.models.artifacts import ArtifactRef, CacheEntry
from layerforge.models.build import BuildPlan, BuildResult, PlanAction, PlannedStage
from layerforge.models.reports import TestCaseResult, TestReport
from layerforge.models.stages import StageKind, StageResult, StageStatus
from layerforge.monitor.renderer import (
    _ACTION_ICONS,
    _STATUS_ICONS,
    BuildRenderer,
    format_duration,
)


@pytest.fixture
def console() -> Console:
    return Console(record=True, width=160)


@pytest.fixture
def renderer(console: Console) -> BuildRenderer:
    return BuildRenderer(console=console)


def _result(**overrides) -> BuildResult:
    defaults = {
        "build_id": "lf-test-001",
        "scope": "main",
        "stage_results": [
            StageResult(stage="dependencies", kind=StageKind.DEPENDENCY, status=StageStatus.CACHED),
            StageResult(stage="tests", kind=StageKind.TEST_GATE, status=StageStatus.FAILED),
            StageResult(stage="runtime", kind=StageKind.ASSEMBLY, status=StageStatus.BLOCKED),
        ],
        "duration_seconds": 1.5,
    }
    defaults.update(overrides)
    return BuildResult(**defaults)


class TestStyles:
    def test_every_status_has_an_icon(self):
        assert set(_STATUS_ICONS) == set(StageStatus)

    def test_every_action_has_an_icon(self):
        assert set(_ACTION_ICONS) == set(PlanAction)

    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [(0.5, "0.50s"), (59.994, "59.99s"), (75.2, "1m 15s"), (3600, "60m 0s")],
    )
    def test_format_duration(self, seconds: float, expected: str):
        assert format_duration(seconds) == expected


class TestRendering:
    def test_plan_table(self, renderer: BuildRenderer, console: Console):
        plan = BuildPlan(
            build_id="lf-test-001",
            scope="main",
            stages=[
                PlannedStage(
                    name="dependencies",
                    kind=StageKind.DEPENDENCY,
                    action=PlanAction.REUSE,
                    fingerprint="abcdef0123456789",
                ),
                PlannedStage(
                    name="application", kind=StageKind.APPLICATION, action=PlanAction.EXECUTE
                ),
            ],
        )
        assert isinstance(renderer.render_plan(plan), Table)
        renderer.print_plan(plan)
        text = console.export_text()
        assert "abcdef0123456789" in text
        assert "reuse" in text

    def test_failed_result_panel(self, renderer: BuildRenderer, console: Console):
        result = BuildResult.failed(
            TestFailureError("Test gate 'tests' failed: broken"),
            stage="tests",
            **_result().model_dump(exclude={"failure"}),
        )
        assert isinstance(renderer.render_result(result), Panel)
        renderer.print_result(result)
        text = console.export_text()
        assert "BLOCKED" in text
        assert "test_failure" in text

    def test_report_panel(self, renderer: BuildRenderer, console: Console):
        report = TestReport(
            stage="tests",
            build_id="lf-test-001",
            scope="main",
            passed=False,
            cases=[TestCaseResult(test_id="adds", passed=False, error_message="3 != 4")],
            payload={"output": "FAILED adds"},
        )
        renderer.print_report(report, show_output=True)
        text = console.export_text()
        assert "adds" in text
        assert "FAIL" in text
        assert "FAILED adds" in text

    def test_entries_table(self, renderer: BuildRenderer, console: Console):
        entry = CacheEntry(
            fingerprint="abcdef0123456789",
            scope="main",
            artifact=ArtifactRef(name="main/abcdef0123456789", content_address="sha256:ff", file_count=3),
        )
        console.print(renderer.render_entries([entry]))
        text = console.export_text()
        assert "abcdef0123456789" in text
        assert "sha256:ff" in text

    def test_timings_table(self, renderer: BuildRenderer, console: Console):
        cold = _result(duration_seconds=90.0)
        warm = _result(duration_seconds=2.0)
        console.print(renderer.render_timings([("cold", cold), ("warm", warm)]))
        text = console.export_text()
        assert "1m 30s" in text
        assert "2.00s" in text
