"""Build request, plan and result models — the invocation boundary."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from layerforge.core.errors import BuildError, ErrorKind
from layerforge.models.artifacts import RuntimeArtifact
from layerforge.models.manifest import Manifest
from layerforge.models.reports import TestReport
from layerforge.models.stages import BuildStage, StageKind, StageResult, StageStatus


def new_build_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"lf-{ts}-{uuid.uuid4().hex[:6]}"


class BuildRequest(BaseModel):
    """Everything one build invocation needs.

    ``invalidate`` maps a cacheable stage name to an explicit cache-bust
    token (e.g. the commit of a floating upstream ref). The token is folded
    into that stage's fingerprint.
    """

    model_config = ConfigDict(frozen=True)

    manifest: Manifest = Manifest()
    scope: str
    stages: list[BuildStage]
    invalidate: dict[str, str] = {}
    build_id: str = Field(default_factory=new_build_id)


class PlanAction(str, Enum):
    REUSE = "reuse"
    EXECUTE = "execute"
    EXECUTE_AND_PUBLISH = "execute_and_publish"


class PlannedStage(BaseModel):
    """What the planner intends to do with one stage."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: StageKind
    action: PlanAction
    fingerprint: str = ""
    inputs: tuple[str, ...] = ()


class BuildPlan(BaseModel):
    """Stages in execution (topological) order."""

    model_config = ConfigDict(frozen=True)

    build_id: str
    scope: str
    stages: list[PlannedStage]

    def get(self, name: str) -> PlannedStage:
        for planned in self.stages:
            if planned.name == name:
                return planned
        raise KeyError(name)

    @property
    def order(self) -> list[str]:
        return [p.name for p in self.stages]


class BuildFailure(BaseModel):
    """Why a build did not produce a runtime artifact."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    stage: str = ""
    retryable: bool = False


class BuildResult(BaseModel):
    """Outcome of a build: a runtime artifact, or a typed failure."""

    model_config = ConfigDict(frozen=True)

    build_id: str
    scope: str
    stage_results: list[StageResult] = []
    runtime_artifact: RuntimeArtifact | None = None
    test_reports: list[TestReport] = []
    report_paths: list[str] = []
    failure: BuildFailure | None = None
    duration_seconds: float = 0.0

    _error: BuildError | None = PrivateAttr(default=None)

    @property
    def succeeded(self) -> bool:
        """True when no stage failed. Graphs without an assembly stage
        (e.g. cache warm-up builds) succeed without a runtime artifact."""
        return self.failure is None

    @property
    def error(self) -> BuildError | None:
        return self._error

    def stage(self, name: str) -> StageResult:
        for result in self.stage_results:
            if result.stage == name:
                return result
        raise KeyError(name)

    def statuses(self) -> dict[str, StageStatus]:
        return {r.stage: r.status for r in self.stage_results}

    def raise_for_failure(self) -> None:
        """Re-raise the error that ended the build, if any."""
        if self._error is not None:
            raise self._error

    @classmethod
    def failed(
        cls, error: BuildError, *, stage: str = "", **fields: object
    ) -> BuildResult:
        result = cls(
            failure=BuildFailure(
                kind=error.kind,
                message=str(error),
                stage=stage,
                retryable=error.retryable,
            ),
            **fields,
        )
        result._error = error
        return result
