"""Assembly stage — produces the runtime artifact after the gate passed."""

from __future__ import annotations

from typing import ClassVar

from layerforge.core.assembler import ArtifactAssembler
from layerforge.core.errors import TestFailureError
from layerforge.models.artifacts import StageArtifact
from layerforge.models.stages import AssemblyStage, StageKind
from layerforge.stages.base import BaseStage, StageContext, StageOutput


class AssemblyStageExecutor(BaseStage[AssemblyStage]):
    """Feeds the declared copy set and the gate report to the assembler."""

    kind: ClassVar[StageKind] = StageKind.ASSEMBLY

    def __init__(
        self, definition: AssemblyStage, assembler: ArtifactAssembler | None = None
    ) -> None:
        super().__init__(definition)
        self._assembler = assembler or ArtifactAssembler()

    def execute(self, context: StageContext) -> StageOutput:
        reports = [
            context.output_of(name).report
            for name in self.definition.inputs
            if context.output_of(name).report is not None
        ]
        if not reports:
            raise TestFailureError(
                f"Assembly {self.name!r} has no test report to gate on"
            )
        # Every gate this assembly consumes must have passed.
        report = next((r for r in reports if not r.passed), reports[0])

        inputs: dict[str, StageArtifact] = {}
        for spec in self.definition.copy_set:
            upstream = context.upstream.get(spec.from_stage)
            if upstream is not None and upstream.artifact is not None:
                inputs[spec.from_stage] = upstream.artifact

        runtime = self._assembler.assemble(
            inputs,
            self.definition.copy_set,
            report,
            name=self.name,
            scope=context.scope,
            entrypoints=self.definition.entrypoints,
            exclude=self.definition.exclude,
        )
        return StageOutput(
            artifact=StageArtifact(ref=runtime.ref, bundle=runtime.bundle),
            runtime=runtime,
        )
