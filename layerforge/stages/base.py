"""Abstract base stage executor with an enforced lifecycle.

Every concrete executor inherits from BaseStage and implements only
``execute()``. The ``run_stage()`` wrapper is **not overridable** — it
enforces the canonical ordering:

    check cancellation -> check inputs present -> execute -> log output

and turns unexpected exceptions into ``StageExecutionError`` so the planner
only ever sees typed ``BuildError``s.
"""

from __future__ import annotations

import abc
import logging
from collections.abc import Mapping
from typing import ClassVar, Generic, TypeVar, final

from pydantic import BaseModel, ConfigDict

from layerforge.core.cancellation import CancellationToken
from layerforge.core.errors import BuildError, StageExecutionError
from layerforge.models.artifacts import RuntimeArtifact, StageArtifact
from layerforge.models.manifest import Manifest
from layerforge.models.reports import TestReport
from layerforge.models.stages import BuildStage, StageKind

logger = logging.getLogger(__name__)

StageT = TypeVar("StageT", bound=BaseModel)


class StageOutput(BaseModel):
    """What a stage hands to its dependents."""

    model_config = ConfigDict(frozen=True)

    artifact: StageArtifact | None = None
    report: TestReport | None = None
    runtime: RuntimeArtifact | None = None


class StageContext:
    """Build-wide inputs for one stage execution.

    Parameters
    ----------
    build_id, scope:
        Identity of the current build invocation.
    manifest:
        The build request's manifest.
    upstream:
        Outputs of every stage finished so far in this build, by name.
    cancel_token:
        Cooperative cancellation flag for long-running work.
    timeout:
        Upper bound in seconds for stage subprocesses.
    """

    def __init__(
        self,
        *,
        build_id: str,
        scope: str,
        manifest: Manifest,
        upstream: Mapping[str, StageOutput],
        cancel_token: CancellationToken,
        timeout: float | None = None,
    ) -> None:
        self.build_id = build_id
        self.scope = scope
        self.manifest = manifest
        self.upstream = dict(upstream)
        self.cancel_token = cancel_token
        self.timeout = timeout

    def output_of(self, stage: str) -> StageOutput:
        try:
            return self.upstream[stage]
        except KeyError:
            raise StageExecutionError(f"Upstream stage {stage!r} has no output") from None


class BaseStage(abc.ABC, Generic[StageT]):
    """Abstract base for all stage executors.

    Subclasses **must** implement ``execute(context)`` and set ``kind``.
    Subclasses **must not** override ``run_stage()``.
    """

    kind: ClassVar[StageKind]

    def __init__(self, definition: StageT) -> None:
        self.definition = definition

    @property
    def name(self) -> str:
        return self.definition.name  # type: ignore[attr-defined]

    @property
    def display_name(self) -> str:
        return self.definition.label  # type: ignore[attr-defined]

    @abc.abstractmethod
    def execute(self, context: StageContext) -> StageOutput:
        """Run the stage's core logic and return its output."""
        ...

    @final
    def run_stage(self, context: StageContext) -> StageOutput:
        """Execute the full stage lifecycle.  **Do not override.**"""
        context.cancel_token.raise_if_cancelled()
        for upstream in self.definition.inputs:  # type: ignore[attr-defined]
            context.output_of(upstream)

        logger.info("%s [%s] starting", self.display_name, self.name)
        try:
            output = self.execute(context)
        except BuildError:
            raise
        except Exception as exc:
            logger.error("%s [%s] execution failed: %s", self.display_name, self.name, exc)
            raise StageExecutionError(f"Stage {self.name} failed: {exc}") from exc

        if output.artifact is not None:
            logger.info(
                "%s [%s] produced %s",
                self.display_name,
                self.name,
                output.artifact.ref.content_address,
            )
        return output

    def __repr__(self) -> str:
        return f"<{type(self).__name__} stage={self.name!r} kind={self.kind.value}>"


def resolve_manifest(stage: BuildStage, request_manifest: Manifest) -> Manifest:
    """The manifest a dependency stage is keyed by."""
    manifest = getattr(stage, "manifest", None)
    return manifest if manifest is not None else request_manifest
