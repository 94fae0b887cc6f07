"""Stage definitions — a closed, tagged set of build stage kinds.

Stages are data, not scripts: each kind has a fixed input/output contract so
the graph can be checked for cycles, missing inputs and gate placement before
anything runs.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from layerforge.core.errors import ErrorKind
from layerforge.models.artifacts import ArtifactRef, normalize_artifact_path
from layerforge.models.manifest import Manifest


class StageKind(str, Enum):
    """The closed set of stage kinds a build graph may contain."""

    DEPENDENCY = "dependency"
    APPLICATION = "application"
    TEST_GATE = "test_gate"
    ASSEMBLY = "assembly"


class StageStatus(str, Enum):
    """Outcome of a stage within one build invocation."""

    CACHED = "cached"
    EXECUTED = "executed"
    FAILED = "failed"
    BLOCKED = "blocked"  # an upstream stage failed
    CANCELLED = "cancelled"


# Kinds whose output may be served from the layer cache.
CACHEABLE_KINDS: frozenset[StageKind] = frozenset({StageKind.DEPENDENCY})

# Kinds whose output an assembly stage may copy from.
COPYABLE_KINDS: frozenset[StageKind] = frozenset(
    {StageKind.DEPENDENCY, StageKind.APPLICATION}
)


class _StageBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    inputs: tuple[str, ...] = ()
    display_name: str = ""

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("stage name must be non-empty")
        return value.strip()

    @property
    def cacheable(self) -> bool:
        return StageKind(self.kind) in CACHEABLE_KINDS  # type: ignore[attr-defined]

    @property
    def label(self) -> str:
        return self.display_name or self.name


class DependencyStage(_StageBase):
    """Installs the declared dependencies. Cacheable, keyed by manifest fingerprint.

    ``manifest`` defaults to the build request's manifest when omitted.
    ``command`` is an optional install command run by ``CommandInstaller``.
    """

    kind: Literal[StageKind.DEPENDENCY] = StageKind.DEPENDENCY
    manifest: Manifest | None = None
    command: tuple[str, ...] = ()
    output_dir: str = "library"


class ApplicationStage(_StageBase):
    """Packages application content. Never cached: it changes every build."""

    kind: Literal[StageKind.APPLICATION] = StageKind.APPLICATION
    source_dir: Path | None = None
    files: dict[str, bytes] = {}
    exclude: tuple[str, ...] = (".git/", ".layerforge/", "__pycache__/", "*.pyc")


class TestGateStage(_StageBase):
    """Runs the validation suite against its upstream artifacts.

    A failing suite halts every downstream stage.
    """

    __test__ = False

    kind: Literal[StageKind.TEST_GATE] = StageKind.TEST_GATE
    command: tuple[str, ...] = ()
    report_file: str = ""


class CopySpec(BaseModel):
    """One entry of an assembly copy set.

    ``source`` is a file path or a directory prefix inside the output of
    ``from_stage``; it lands under ``destination`` (default: same path).
    """

    model_config = ConfigDict(frozen=True)

    from_stage: str
    source: str
    destination: str = ""

    @field_validator("source")
    @classmethod
    def _validate_source(cls, value: str) -> str:
        trailing = value.endswith("/")
        normalized = normalize_artifact_path(value)
        return normalized + "/" if trailing else normalized


class AssemblyStage(_StageBase):
    """Builds the runtime artifact from a declared copy set."""

    kind: Literal[StageKind.ASSEMBLY] = StageKind.ASSEMBLY
    copy_set: tuple[CopySpec, ...] = ()
    entrypoints: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()


BuildStage = Annotated[
    Union[DependencyStage, ApplicationStage, TestGateStage, AssemblyStage],
    Field(discriminator="kind"),
]


class StageResult(BaseModel):
    """Per-stage outcome for one build. Not persisted by the core."""

    model_config = ConfigDict(frozen=True)

    stage: str
    kind: StageKind
    status: StageStatus
    artifact: ArtifactRef | None = None
    fingerprint: str = ""
    duration_seconds: float = 0.0
    error_kind: ErrorKind | None = None
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status in (StageStatus.CACHED, StageStatus.EXECUTED)


def standard_pipeline(
    *,
    source_dir: Path | None = None,
    files: dict[str, bytes] | None = None,
    test_command: tuple[str, ...] | list[str] = (),
    entrypoints: tuple[str, ...] | list[str] = (),
    runtime_paths: tuple[str, ...] | list[str] = (),
    install_command: tuple[str, ...] | list[str] = (),
    exclude: tuple[str, ...] | list[str] = (),
    manifest: Manifest | None = None,
) -> list[BuildStage]:
    """The canonical four-stage graph.

    ``dependencies`` and ``application`` are independent and may run in
    parallel; ``tests`` consumes both; ``runtime`` copies the dependency
    library plus ``runtime_paths`` (default: the entrypoints) from the
    application, and nothing else.
    """
    deps = DependencyStage(
        name="dependencies",
        display_name="Dependencies",
        manifest=manifest,
        command=tuple(install_command),
    )
    app = ApplicationStage(
        name="application",
        display_name="Application",
        source_dir=source_dir,
        files=files or {},
    )
    tests = TestGateStage(
        name="tests",
        display_name="Test Gate",
        inputs=(deps.name, app.name),
        command=tuple(test_command),
    )
    copy_set = [CopySpec(from_stage=deps.name, source=f"{deps.output_dir}/")]
    copy_set.extend(
        CopySpec(from_stage=app.name, source=path)
        for path in (runtime_paths or entrypoints)
    )
    runtime = AssemblyStage(
        name="runtime",
        display_name="Runtime",
        inputs=(tests.name,),
        copy_set=tuple(copy_set),
        entrypoints=tuple(entrypoints),
        exclude=tuple(exclude),
    )
    return [deps, app, tests, runtime]
