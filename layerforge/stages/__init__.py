"""Stage executors — registry mapping stage kind to executor class.

Usage::

    from layerforge.stages import build_executor

    executor = build_executor(stage, gate=gate)
    output = executor.run_stage(context)
"""

from __future__ import annotations

from layerforge.core.assembler import ArtifactAssembler
from layerforge.core.test_gate import TestGate
from layerforge.models.stages import BuildStage, StageKind
from layerforge.stages.application import ApplicationStageExecutor
from layerforge.stages.assembly import AssemblyStageExecutor
from layerforge.stages.base import BaseStage, StageContext, StageOutput
from layerforge.stages.dependencies import (
    CommandInstaller,
    DependencyInstaller,
    DependencyStageExecutor,
    LockfileInstaller,
)
from layerforge.stages.test_gate import TestGateStageExecutor

# ---------------------------------------------------------------------------
# Executor registry: stage kind -> executor class
# ---------------------------------------------------------------------------

EXECUTOR_REGISTRY: dict[StageKind, type[BaseStage]] = {
    StageKind.DEPENDENCY: DependencyStageExecutor,
    StageKind.APPLICATION: ApplicationStageExecutor,
    StageKind.TEST_GATE: TestGateStageExecutor,
    StageKind.ASSEMBLY: AssemblyStageExecutor,
}


def build_executor(
    stage: BuildStage,
    *,
    gate: TestGate | None = None,
    installer: DependencyInstaller | None = None,
    assembler: ArtifactAssembler | None = None,
) -> BaseStage:
    """Instantiate the executor for *stage* with its collaborators.

    Raises ``ValueError`` if a test gate stage is built without a gate.
    """
    if stage.kind == StageKind.DEPENDENCY:
        return DependencyStageExecutor(stage, installer)
    if stage.kind == StageKind.APPLICATION:
        return ApplicationStageExecutor(stage)
    if stage.kind == StageKind.TEST_GATE:
        if gate is None:
            raise ValueError(f"Test gate stage {stage.name!r} needs a TestGate")
        return TestGateStageExecutor(stage, gate)
    return AssemblyStageExecutor(stage, assembler)


__all__ = [
    "EXECUTOR_REGISTRY",
    "build_executor",
    "BaseStage",
    "StageContext",
    "StageOutput",
    "ApplicationStageExecutor",
    "AssemblyStageExecutor",
    "DependencyStageExecutor",
    "TestGateStageExecutor",
    "DependencyInstaller",
    "CommandInstaller",
    "LockfileInstaller",
]
