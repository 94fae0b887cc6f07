"""Application stage — packages application content. Always executed."""

from __future__ import annotations

from typing import ClassVar

from layerforge.core.errors import StageExecutionError
from layerforge.models.artifacts import ArtifactBundle, StageArtifact
from layerforge.models.stages import ApplicationStage, StageKind
from layerforge.stages.base import BaseStage, StageContext, StageOutput


class ApplicationStageExecutor(BaseStage[ApplicationStage]):
    """Reads ``source_dir`` (minus ``exclude``) and overlays inline ``files``."""

    kind: ClassVar[StageKind] = StageKind.APPLICATION

    def execute(self, context: StageContext) -> StageOutput:
        definition = self.definition
        bundles: list[ArtifactBundle] = []
        if definition.source_dir is not None:
            if not definition.source_dir.is_dir():
                raise StageExecutionError(
                    f"Application source {definition.source_dir} is not a directory"
                )
            bundles.append(
                ArtifactBundle.from_directory(definition.source_dir, exclude=definition.exclude)
            )
        if definition.files:
            bundles.append(ArtifactBundle(files=definition.files))

        bundle = ArtifactBundle.merge(bundles)
        if not bundle.files:
            raise StageExecutionError(f"Application stage {self.name!r} has no content")
        return StageOutput(
            artifact=StageArtifact.of(bundle, stage=self.name, scope=context.scope)
        )
