"""Test gate — runs the validation suite inside the build.

The gate is a regular DAG stage, not a side job: the assembly stage consumes
it, so its report is always observed before anything is assembled. Because a
failing gate stops the pipeline before any artifact exists, every report is
also written to a side channel (``ReportSink``) where an external process can
read it after the build aborted.

Report layout: {base_path}/{encoded scope}/{build_id}/{stage}.json
"""

from __future__ import annotations

import json
import logging
import tempfile
import time
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from layerforge.core.cancellation import CancellationToken
from layerforge.core.errors import ArtifactNotFoundError, BuildError
from layerforge.core.hasher import (
    canonical_json_bytes,
    decode_path_component,
    encode_path_component,
)
from layerforge.core.process import run_command
from layerforge.models.artifacts import ArtifactBundle
from layerforge.models.reports import TestCaseResult, TestReport

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Runners
# ---------------------------------------------------------------------------


@runtime_checkable
class TestRunner(Protocol):
    """Protocol for test suite backends.

    ``run`` receives the merged artifact under test and a scratch
    workspace, and returns the individual case results plus a
    machine-readable payload.
    """

    __test__ = False

    def run(
        self,
        bundle: ArtifactBundle,
        *,
        workspace: Path,
        cancel_token: CancellationToken | None = None,
    ) -> tuple[list[TestCaseResult], dict[str, Any]]:
        ...


class CommandTestRunner:
    """Runs a test command (``pytest -q``, ``Rscript -e 'testthat::...'``) in the workspace.

    The bundle is materialized into *workspace* first. Exit code 0 passes.
    If ``report_file`` names a file the command writes (e.g. JUnit XML), its
    contents are attached to the payload.
    """

    __test__ = False

    def __init__(
        self,
        command: Sequence[str],
        *,
        report_file: str = "",
        timeout: float | None = None,
    ) -> None:
        self._command = list(command)
        self._report_file = report_file
        self._timeout = timeout

    def run(
        self,
        bundle: ArtifactBundle,
        *,
        workspace: Path,
        cancel_token: CancellationToken | None = None,
    ) -> tuple[list[TestCaseResult], dict[str, Any]]:
        bundle.write_to(workspace)
        result = run_command(
            self._command,
            cwd=workspace,
            cancel_token=cancel_token,
            timeout=self._timeout,
        )
        payload: dict[str, Any] = {
            "command": result.command,
            "exit_code": result.returncode,
            "output": result.output,
        }
        if self._report_file:
            report_path = workspace / self._report_file
            if report_path.is_file():
                payload["report_file"] = self._report_file
                payload["report"] = report_path.read_text(encoding="utf-8", errors="replace")
        case = TestCaseResult(
            test_id=" ".join(result.command),
            passed=result.ok,
            duration_ms=result.duration_seconds * 1000.0,
            error_message="" if result.ok else f"exit code {result.returncode}",
        )
        return [case], payload


class CallableTestRunner:
    """Runs named Python checks against the bundle.

    A check passes unless it raises. Useful for embedding and for tests.
    """

    __test__ = False

    def __init__(self, checks: Mapping[str, Callable[[ArtifactBundle], object]]) -> None:
        self._checks = dict(checks)

    def run(
        self,
        bundle: ArtifactBundle,
        *,
        workspace: Path,
        cancel_token: CancellationToken | None = None,
    ) -> tuple[list[TestCaseResult], dict[str, Any]]:
        cases: list[TestCaseResult] = []
        for name, check in self._checks.items():
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            started = time.monotonic()
            error = ""
            try:
                check(bundle)
            except Exception as exc:  # a failing check is a test result, not a crash
                error = f"{type(exc).__name__}: {exc}"
            cases.append(
                TestCaseResult(
                    test_id=name,
                    passed=not error,
                    duration_ms=round((time.monotonic() - started) * 1000.0, 3),
                    error_message=error,
                )
            )
        return cases, {"runner": "callable", "checks": list(self._checks)}


# ---------------------------------------------------------------------------
# Side channel
# ---------------------------------------------------------------------------


class ReportSink:
    """Writes test reports to local JSON files, pass or fail.

    Parameters
    ----------
    base_path:
        Root directory for reports. Defaults to ``.layerforge/reports``.
    """

    def __init__(self, base_path: Path | str | None = None) -> None:
        self._base = Path(base_path) if base_path else Path(".layerforge/reports")

    @property
    def base_path(self) -> Path:
        return self._base

    def path_for(self, scope: str, build_id: str, stage: str) -> Path:
        return (
            self._base
            / encode_path_component(scope)
            / encode_path_component(build_id)
            / f"{encode_path_component(stage)}.json"
        )

    def write(self, report: TestReport) -> Path:
        target = self.path_for(report.scope, report.build_id, report.stage)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(canonical_json_bytes(report.model_dump(mode="json")))
        logger.debug("ReportSink: wrote %s", target)
        return target

    def load(self, scope: str, build_id: str, stage: str) -> TestReport:
        path = self.path_for(scope, build_id, stage)
        if not path.is_file():
            raise ArtifactNotFoundError(f"No test report at {path}")
        return self.read(path)

    @staticmethod
    def read(path: Path) -> TestReport:
        return TestReport.model_validate(json.loads(path.read_bytes()))

    def list_reports(self, scope: str | None = None) -> list[Path]:
        """All report files, optionally for one scope, sorted by path."""
        if scope is not None:
            root = self._base / encode_path_component(scope)
            return sorted(root.glob("*/*.json")) if root.is_dir() else []
        return sorted(self._base.glob("*/*/*.json")) if self._base.is_dir() else []

    def latest(self, scope: str, stage: str | None = None) -> TestReport:
        """Most recent report for *scope* (optionally for one gate stage)."""
        reports = [self.read(p) for p in self.list_reports(scope)]
        if stage is not None:
            reports = [r for r in reports if r.stage == stage]
        if not reports:
            raise ArtifactNotFoundError(f"No test reports for scope {scope!r}")
        return max(reports, key=lambda r: r.timestamp_utc)

    @staticmethod
    def scope_of(path: Path) -> str:
        return decode_path_component(path.parent.parent.name)


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class TestGate:
    """Runs a suite and records its verdict.

    Parameters
    ----------
    runner:
        Backend executing the suite.
    sink:
        Side channel receiving every report.
    """

    __test__ = False

    def __init__(self, runner: TestRunner, sink: ReportSink) -> None:
        self._runner = runner
        self._sink = sink

    @property
    def sink(self) -> ReportSink:
        return self._sink

    def run_tests(
        self,
        stage: str,
        bundle: ArtifactBundle,
        *,
        scope: str,
        build_id: str,
        cancel_token: CancellationToken | None = None,
    ) -> TestReport:
        """Execute the suite against *bundle* and persist the report.

        Never raises for failing tests; the verdict is ``report.passed``.
        An empty suite does not pass. If the runner itself errors (timeout,
        missing binary, cancellation) a failed report naming the error is
        still written before the error propagates.
        """
        try:
            with tempfile.TemporaryDirectory(prefix=f"layerforge-{stage}-") as tmp:
                cases, payload = self._runner.run(
                    bundle, workspace=Path(tmp), cancel_token=cancel_token
                )
        except BuildError as exc:
            report = TestReport(
                stage=stage,
                build_id=build_id,
                scope=scope,
                passed=False,
                payload={"error_kind": exc.kind.value, "error": str(exc)},
            )
            path = self._sink.write(report)
            logger.error("Test gate %s could not run (%s), report at %s", stage, exc, path)
            raise

        passed = bool(cases) and all(c.passed for c in cases)
        if not cases:
            payload = {**payload, "error": "no tests were executed"}
        report = TestReport(
            stage=stage,
            build_id=build_id,
            scope=scope,
            passed=passed,
            cases=cases,
            payload=payload,
        )
        path = self._sink.write(report)
        logger.info(
            "Test gate %s %s (%d/%d cases passed), report at %s",
            stage,
            "passed" if passed else "FAILED",
            sum(1 for c in cases if c.passed),
            len(cases),
            path,
        )
        return report
