"""Artifact assembler — the minimal runtime closure of a validated build.

Only paths named by the assembly copy set are carried forward; build-only
tooling and test material never reach the runtime artifact unless a copy
spec names them explicitly. Output is a pure function of the inputs, so the
same upstream artifacts always assemble to the same content address.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from layerforge.core.errors import (
    AssemblyIncompleteError,
    ScopeMismatchError,
    TestFailureError,
)
from layerforge.models.artifacts import ArtifactBundle, RuntimeArtifact, StageArtifact
from layerforge.models.reports import TestReport
from layerforge.models.stages import CopySpec

logger = logging.getLogger(__name__)


def select_paths(bundle: ArtifactBundle, spec: CopySpec) -> dict[str, bytes]:
    """Resolve one copy spec against a bundle; returns destination path -> bytes.

    A source ending in ``/`` (or naming a directory) copies the whole
    subtree; otherwise a single file is copied. Empty result means the
    source is absent.
    """
    source = spec.source
    if not source.endswith("/") and source in bundle:
        destination = spec.destination or source
        if destination.endswith("/"):
            destination = destination + source.rsplit("/", 1)[-1]
        return {destination: bundle.files[source]}

    prefix = source.rstrip("/") + "/"
    dest_prefix = (spec.destination or prefix).rstrip("/") + "/"
    return {
        dest_prefix + path[len(prefix):]: data
        for path, data in bundle.files.items()
        if path.startswith(prefix)
    }


class ArtifactAssembler:
    """Materializes runtime artifacts from validated upstream stages."""

    def assemble(
        self,
        inputs: Mapping[str, StageArtifact],
        copy_set: Iterable[CopySpec],
        report: TestReport,
        *,
        name: str = "runtime",
        scope: str = "",
        entrypoints: Iterable[str] = (),
        exclude: Iterable[str] = (),
    ) -> RuntimeArtifact:
        """Assemble the runtime artifact.

        Raises
        ------
        TestFailureError
            If *report* did not pass. Nothing is assembled.
        ScopeMismatchError
            If the inputs were produced for different scopes.
        AssemblyIncompleteError
            If a copy source, an upstream stage or an entrypoint is missing,
            or two copy specs write different bytes to the same path.
        """
        if not report.passed:
            raise TestFailureError(
                f"Refusing to assemble {name!r}: test gate {report.stage!r} did not pass",
                report=report,
            )

        copy_specs = list(copy_set)
        scopes = {artifact.ref.scope for artifact in inputs.values()}
        if scope:
            scopes.add(scope)
        if len(scopes) > 1:
            raise ScopeMismatchError(
                f"Cannot assemble {name!r} from mixed scopes: {sorted(scopes)}"
            )

        files: dict[str, bytes] = {}
        for spec in copy_specs:
            upstream = inputs.get(spec.from_stage)
            if upstream is None:
                raise AssemblyIncompleteError(
                    f"Copy source stage {spec.from_stage!r} produced no artifact"
                )
            selected = select_paths(upstream.bundle, spec)
            if not selected:
                raise AssemblyIncompleteError(
                    f"Path {spec.source!r} not found in output of stage {spec.from_stage!r}"
                )
            for path, data in selected.items():
                if path in files and files[path] != data:
                    raise AssemblyIncompleteError(
                        f"Conflicting content for {path!r} in assembly {name!r}"
                    )
                files[path] = data

        bundle = ArtifactBundle(files=files).without(exclude)
        entrypoint_list = tuple(entrypoints)
        missing = [ep for ep in entrypoint_list if ep not in bundle]
        if missing:
            raise AssemblyIncompleteError(
                f"Entrypoint(s) missing from assembly {name!r}: {missing}"
            )

        resolved_scope = scope or next(iter(scopes), "")
        runtime = RuntimeArtifact(
            ref=bundle.make_ref(name, stage=name, scope=resolved_scope),
            bundle=bundle,
            entrypoints=entrypoint_list,
            sources={
                spec.from_stage: inputs[spec.from_stage].ref.content_address
                for spec in copy_specs
            },
        )
        logger.info(
            "Assembled %s -> %s (%d files)",
            name,
            runtime.content_address,
            len(bundle),
        )
        return runtime
