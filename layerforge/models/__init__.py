"""Layerforge data models — all Pydantic v2, all frozen (immutable)."""

from layerforge.models.artifacts import (
    ArtifactBundle,
    ArtifactRef,
    CacheEntry,
    RuntimeArtifact,
    StageArtifact,
)
from layerforge.models.build import (
    BuildFailure,
    BuildPlan,
    BuildRequest,
    BuildResult,
    PlanAction,
    PlannedStage,
)
from layerforge.models.config import PlannerConfig, RetryPolicy
from layerforge.models.manifest import Dependency, Manifest
from layerforge.models.reports import TestCaseResult, TestReport
from layerforge.models.stages import (
    ApplicationStage,
    AssemblyStage,
    BuildStage,
    CopySpec,
    DependencyStage,
    StageKind,
    StageResult,
    StageStatus,
    TestGateStage,
    standard_pipeline,
)

__all__ = [
    # manifest
    "Dependency",
    "Manifest",
    # artifacts
    "ArtifactBundle",
    "ArtifactRef",
    "CacheEntry",
    "RuntimeArtifact",
    "StageArtifact",
    # stages
    "StageKind",
    "StageStatus",
    "DependencyStage",
    "ApplicationStage",
    "TestGateStage",
    "AssemblyStage",
    "CopySpec",
    "BuildStage",
    "StageResult",
    "standard_pipeline",
    # reports
    "TestCaseResult",
    "TestReport",
    # build
    "BuildRequest",
    "BuildPlan",
    "PlannedStage",
    "PlanAction",
    "BuildFailure",
    "BuildResult",
    # config
    "PlannerConfig",
    "RetryPolicy",
]
