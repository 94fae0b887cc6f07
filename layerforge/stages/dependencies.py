"""Dependency stage — installs the manifest into a cacheable layer.

Installers are pluggable:

1. **CommandInstaller** — runs the stage's install command
   (``pip install --target library -r manifest.lock``,
   ``Rscript -e 'renv::restore()'``) and captures ``output_dir``.
2. **LockfileInstaller** — deterministic default that records the resolved
   manifest as a library tree, for pipelines whose real install happens
   elsewhere and for tests.

Whatever the installer, its output must be deterministic for a given
manifest: publishing a different tree under the same fingerprint is a
cache corruption.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import ClassVar, Protocol, runtime_checkable

from layerforge.core.cancellation import CancellationToken
from layerforge.core.errors import StageExecutionError
from layerforge.core.process import run_command
from layerforge.models.artifacts import ArtifactBundle, StageArtifact
from layerforge.models.manifest import Manifest
from layerforge.models.stages import DependencyStage, StageKind
from layerforge.stages.base import BaseStage, StageContext, StageOutput, resolve_manifest

logger = logging.getLogger(__name__)

MANIFEST_LOCK_NAME = "manifest.lock"


def render_lock(manifest: Manifest) -> bytes:
    """Canonical lock file contents: one sorted entry per line."""
    lines = manifest.canonical_lines()
    return ("\n".join(lines) + "\n").encode("utf-8") if lines else b""


@runtime_checkable
class DependencyInstaller(Protocol):
    """Produces the dependency layer for a manifest."""

    def install(
        self,
        manifest: Manifest,
        *,
        output_dir: str,
        workdir: Path,
        cancel_token: CancellationToken,
        timeout: float | None = None,
    ) -> ArtifactBundle:
        ...


class LockfileInstaller:
    """Writes ``{output_dir}/{name}/VERSION`` per dependency plus the lock file."""

    def install(
        self,
        manifest: Manifest,
        *,
        output_dir: str,
        workdir: Path,
        cancel_token: CancellationToken,
        timeout: float | None = None,
    ) -> ArtifactBundle:
        files: dict[str, bytes] = {f"{output_dir}/{MANIFEST_LOCK_NAME}": render_lock(manifest)}
        for dep in manifest.entries:
            cancel_token.raise_if_cancelled()
            files[f"{output_dir}/{dep.name}/VERSION"] = f"{dep.constraint}\n".encode("utf-8")
        return ArtifactBundle(files=files)


class CommandInstaller:
    """Runs an install command with the lock file in its working directory.

    The command sees ``LAYERFORGE_MANIFEST`` (lock file path) and
    ``LAYERFORGE_OUTPUT_DIR`` in its environment; everything it writes
    under the output directory becomes the layer.
    """

    def __init__(self, command: list[str] | tuple[str, ...]) -> None:
        self._command = list(command)

    def install(
        self,
        manifest: Manifest,
        *,
        output_dir: str,
        workdir: Path,
        cancel_token: CancellationToken,
        timeout: float | None = None,
    ) -> ArtifactBundle:
        lock_path = workdir / MANIFEST_LOCK_NAME
        lock_path.write_bytes(render_lock(manifest))
        out = workdir / output_dir
        out.mkdir(parents=True, exist_ok=True)

        result = run_command(
            self._command,
            cwd=workdir,
            cancel_token=cancel_token,
            timeout=timeout,
            env={
                "LAYERFORGE_MANIFEST": str(lock_path),
                "LAYERFORGE_OUTPUT_DIR": str(out),
            },
        )
        if not result.ok:
            raise StageExecutionError(
                f"Install command exited with {result.returncode}:\n{result.output[-2000:]}"
            )
        bundle = ArtifactBundle.from_directory(out)
        return ArtifactBundle(files={f"{output_dir}/{p}": d for p, d in bundle.files.items()})


class DependencyStageExecutor(BaseStage[DependencyStage]):
    """Executes a dependency stage on a cache miss."""

    kind: ClassVar[StageKind] = StageKind.DEPENDENCY

    def __init__(
        self,
        definition: DependencyStage,
        installer: DependencyInstaller | None = None,
    ) -> None:
        super().__init__(definition)
        if installer is None:
            installer = (
                CommandInstaller(definition.command)
                if definition.command
                else LockfileInstaller()
            )
        self._installer = installer

    def execute(self, context: StageContext) -> StageOutput:
        manifest = resolve_manifest(self.definition, context.manifest)
        with tempfile.TemporaryDirectory(prefix=f"layerforge-{self.name}-") as tmp:
            bundle = self._installer.install(
                manifest,
                output_dir=self.definition.output_dir,
                workdir=Path(tmp),
                cancel_token=context.cancel_token,
                timeout=context.timeout,
            )
        logger.info(
            "Installed %d dependencies into %d files for %s",
            len(manifest),
            len(bundle),
            self.name,
        )
        return StageOutput(
            artifact=StageArtifact.of(bundle, stage=self.name, scope=context.scope)
        )
