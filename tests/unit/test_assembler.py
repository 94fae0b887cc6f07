"""Tests for the ArtifactAssembler — copy-set closure, gating, determinism."""

from __future__ import annotations

import pytest

from layerforge.core.assembler import ArtifactAssembler, select_paths
from layerforge.core.errors import (
    AssemblyIncompleteError,
    ErrorKind,
    ScopeMismatchError,
    TestFailureError,
)
from layerforge.models.artifacts import ArtifactBundle, StageArtifact
from layerforge.models.reports import TestReport
from layerforge.models.stages import CopySpec


@pytest.fixture
def deps() -> StageArtifact:
    bundle = ArtifactBundle(
        files={
            "library/shiny/VERSION": b"==1.8.0\n",
            "library/manifest.lock": b"shiny ==1.8.0\n",
            "build-cache/objects.o": b"\x00\x01",
        }
    )
    return StageArtifact.of(bundle, stage="dependencies", scope="main")


@pytest.fixture
def app(app_files: dict[str, bytes]) -> StageArtifact:
    return StageArtifact.of(ArtifactBundle(files=app_files), stage="application", scope="main")


@pytest.fixture
def passed() -> TestReport:
    return TestReport(stage="tests", build_id="b1", scope="main", passed=True)


@pytest.fixture
def copy_set() -> tuple[CopySpec, ...]:
    return (
        CopySpec(from_stage="dependencies", source="library/"),
        CopySpec(from_stage="application", source="app.R"),
        CopySpec(from_stage="application", source="R/"),
    )


class TestSelectPaths:
    def test_single_file(self, app: StageArtifact):
        spec = CopySpec(from_stage="application", source="app.R")
        assert list(select_paths(app.bundle, spec)) == ["app.R"]

    def test_single_file_into_directory(self, app: StageArtifact):
        spec = CopySpec(from_stage="application", source="app.R", destination="srv/")
        assert list(select_paths(app.bundle, spec)) == ["srv/app.R"]

    def test_directory_prefix(self, app: StageArtifact):
        spec = CopySpec(from_stage="application", source="R/")
        assert list(select_paths(app.bundle, spec)) == ["R/helpers.R"]

    def test_directory_without_trailing_slash(self, app: StageArtifact):
        spec = CopySpec(from_stage="application", source="R", destination="lib/R")
        assert list(select_paths(app.bundle, spec)) == ["lib/R/helpers.R"]

    def test_missing_source(self, app: StageArtifact):
        spec = CopySpec(from_stage="application", source="docs/")
        assert select_paths(app.bundle, spec) == {}

    def test_escaping_source_rejected(self):
        with pytest.raises(ValueError):
            CopySpec(from_stage="application", source="../etc/passwd")


class TestAssemble:
    def test_runtime_contains_only_copy_set(
        self, deps: StageArtifact, app: StageArtifact, passed: TestReport, copy_set
    ):
        runtime = ArtifactAssembler().assemble(
            {"dependencies": deps, "application": app},
            copy_set,
            passed,
            scope="main",
            entrypoints=("app.R",),
        )
        assert runtime.bundle.paths == [
            "R/helpers.R",
            "app.R",
            "library/manifest.lock",
            "library/shiny/VERSION",
        ]
        assert "tests/testthat/test-app.R" not in runtime.bundle
        assert "Makefile" not in runtime.bundle
        assert "build-cache/objects.o" not in runtime.bundle
        assert runtime.entrypoints == ("app.R",)
        assert runtime.sources == {
            "dependencies": deps.ref.content_address,
            "application": app.ref.content_address,
        }

    def test_deterministic(
        self, deps: StageArtifact, app: StageArtifact, passed: TestReport, copy_set
    ):
        inputs = {"dependencies": deps, "application": app}
        first = ArtifactAssembler().assemble(inputs, copy_set, passed, scope="main")
        second = ArtifactAssembler().assemble(inputs, copy_set, passed, scope="main")
        assert first.content_address == second.content_address

    def test_failed_report_refused(
        self, deps: StageArtifact, app: StageArtifact, copy_set
    ):
        failed = TestReport(stage="tests", build_id="b1", scope="main", passed=False)
        with pytest.raises(TestFailureError) as excinfo:
            ArtifactAssembler().assemble(
                {"dependencies": deps, "application": app}, copy_set, failed
            )
        assert excinfo.value.kind == ErrorKind.TEST_FAILURE
        assert excinfo.value.report is failed

    def test_missing_path(self, deps: StageArtifact, app: StageArtifact, passed: TestReport):
        with pytest.raises(AssemblyIncompleteError, match="not found"):
            ArtifactAssembler().assemble(
                {"dependencies": deps, "application": app},
                (CopySpec(from_stage="application", source="www/"),),
                passed,
            )

    def test_missing_stage(self, app: StageArtifact, passed: TestReport, copy_set):
        with pytest.raises(AssemblyIncompleteError, match="produced no artifact"):
            ArtifactAssembler().assemble({"application": app}, copy_set, passed)

    def test_missing_entrypoint(
        self, deps: StageArtifact, app: StageArtifact, passed: TestReport, copy_set
    ):
        with pytest.raises(AssemblyIncompleteError, match="Entrypoint"):
            ArtifactAssembler().assemble(
                {"dependencies": deps, "application": app},
                copy_set,
                passed,
                entrypoints=("server.R",),
            )

    def test_conflicting_destinations(self, passed: TestReport):
        a = StageArtifact.of(ArtifactBundle(files={"x.txt": b"a"}), stage="a", scope="main")
        b = StageArtifact.of(ArtifactBundle(files={"x.txt": b"b"}), stage="b", scope="main")
        with pytest.raises(AssemblyIncompleteError, match="Conflicting"):
            ArtifactAssembler().assemble(
                {"a": a, "b": b},
                (CopySpec(from_stage="a", source="x.txt"), CopySpec(from_stage="b", source="x.txt")),
                passed,
            )

    def test_scope_mismatch(self, app: StageArtifact, passed: TestReport):
        other = StageArtifact.of(
            ArtifactBundle(files={"library/x": b"x"}), stage="dependencies", scope="release"
        )
        with pytest.raises(ScopeMismatchError):
            ArtifactAssembler().assemble(
                {"dependencies": other, "application": app},
                (CopySpec(from_stage="dependencies", source="library/"),),
                passed,
            )

    def test_exclude_patterns(
        self, deps: StageArtifact, app: StageArtifact, passed: TestReport, copy_set
    ):
        runtime = ArtifactAssembler().assemble(
            {"dependencies": deps, "application": app},
            copy_set,
            passed,
            exclude=("*.lock",),
        )
        assert "library/manifest.lock" not in runtime.bundle
        assert "library/shiny/VERSION" in runtime.bundle
