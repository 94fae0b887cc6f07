"""Build graph planner — the central coordinator for a build invocation.

The planner wires the fingerprint engine, the layer cache, the stage
executors and the test gate into one DAG execution:

- cacheable stages are fingerprinted; a hit reuses the published layer, a
  miss executes the stage and publishes its output;
- every other stage always executes;
- independent stages run concurrently, consumers wait for their producers;
- the first failure stops scheduling, lets running stages finish (their
  publishes stay) and blocks everything downstream.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

from layerforge.core.assembler import ArtifactAssembler
from layerforge.core.build_graph import BuildGraph
from layerforge.core.cancellation import CancellationToken
from layerforge.core.errors import (
    ArtifactNotFoundError,
    BuildCancelledError,
    BuildError,
    InvalidStageGraphError,
    TestFailureError,
)
from layerforge.core.fingerprint import (
    DEFAULT_FINGERPRINT_LENGTH,
    fingerprint,
    validate_scope,
)
from layerforge.core.layer_cache import LayerCacheStore
from layerforge.core.retry import call_with_retry
from layerforge.core.test_gate import CommandTestRunner, ReportSink, TestGate, TestRunner
from layerforge.models.artifacts import StageArtifact
from layerforge.models.build import (
    BuildPlan,
    BuildRequest,
    BuildResult,
    PlanAction,
    PlannedStage,
)
from layerforge.models.config import PlannerConfig
from layerforge.models.manifest import Manifest
from layerforge.models.reports import TestReport
from layerforge.models.stages import (
    BuildStage,
    DependencyStage,
    StageKind,
    StageResult,
    StageStatus,
    TestGateStage,
)
from layerforge.stages import build_executor
from layerforge.stages.base import StageContext, StageOutput, resolve_manifest
from layerforge.stages.dependencies import DependencyInstaller

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DEFAULT_OUTPUT_DIR = DependencyStage.model_fields["output_dir"].default


def stage_fingerprint(
    stage: BuildStage,
    manifest: Manifest,
    scope: str,
    *,
    token: str = "",
    length: int = DEFAULT_FINGERPRINT_LENGTH,
) -> str:
    """Cache key of a cacheable stage.

    The install recipe (command, output directory) and any explicit
    invalidation *token* are part of the key, so changing them never
    collides with layers built by the old recipe.
    """
    parts: list[str] = []
    if isinstance(stage, DependencyStage):
        if stage.command:
            parts.append("command=" + json.dumps(list(stage.command)))
        if stage.output_dir != _DEFAULT_OUTPUT_DIR:
            parts.append("output_dir=" + stage.output_dir)
    if token:
        parts.append("invalidate=" + token)
    return fingerprint(
        resolve_manifest(stage, manifest),
        scope,
        invalidation=";".join(parts),
        length=length,
    )


class BuildPlanner:
    """Plans and runs build graphs against a layer cache.

    Parameters
    ----------
    cache:
        The layer cache store (injected; tests pass an in-memory registry).
    config:
        Planner configuration. Uses defaults if not provided.
    test_runner:
        Runner used by every test gate stage. When omitted, each gate runs
        its own ``command`` through ``CommandTestRunner``.
    report_sink:
        Side channel for test reports. Defaults to ``config.reports_path``.
    installer:
        Dependency installer override for all dependency stages.
    """

    def __init__(
        self,
        cache: LayerCacheStore,
        *,
        config: PlannerConfig | None = None,
        test_runner: TestRunner | None = None,
        report_sink: ReportSink | None = None,
        installer: DependencyInstaller | None = None,
        assembler: ArtifactAssembler | None = None,
    ) -> None:
        self.cache = cache
        self.config = config or PlannerConfig()
        self.report_sink = report_sink or ReportSink(self.config.reports_path)
        self._test_runner = test_runner
        self._installer = installer
        self._assembler = assembler or ArtifactAssembler()

    # ------------------------------------------------------------------
    # Fingerprints
    # ------------------------------------------------------------------

    def stage_fingerprint(self, stage: BuildStage, request: BuildRequest) -> str:
        """Cache key of a cacheable stage within *request*."""
        return stage_fingerprint(
            stage,
            request.manifest,
            request.scope,
            token=request.invalidate.get(stage.name, ""),
            length=self.config.fingerprint_length,
        )

    def _retry(
        self,
        fn: Callable[[], T],
        description: str,
        cancel_token: CancellationToken | None = None,
    ) -> T:
        return call_with_retry(
            fn, self.config.retry, description=description, cancel_token=cancel_token
        )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, request: BuildRequest) -> BuildPlan:
        """Decide, per stage, whether it will be reused or executed.

        Raises ``InvalidScopeError``, ``CycleDetectedError`` or
        ``InvalidStageGraphError`` for configuration defects, and
        ``RegistryUnavailableError`` if the cache cannot be queried.
        """
        scope = validate_scope(request.scope)
        graph = BuildGraph(request.stages)
        self._check_invalidations(request)

        planned: list[PlannedStage] = []
        for stage in graph.stages():
            fp = ""
            action = PlanAction.EXECUTE
            if stage.cacheable:
                fp = self.stage_fingerprint(stage, request)
                hit = self._retry(
                    lambda fp=fp: self.cache.exists(fp, scope), f"exists({fp})"
                )
                action = PlanAction.REUSE if hit else PlanAction.EXECUTE_AND_PUBLISH
            planned.append(
                PlannedStage(
                    name=stage.name,
                    kind=stage.kind,
                    action=action,
                    fingerprint=fp,
                    inputs=stage.inputs,
                )
            )
        return BuildPlan(build_id=request.build_id, scope=scope, stages=planned)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(
        self,
        request: BuildRequest,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> BuildResult:
        """Execute the build graph and return a runtime artifact or a typed failure.

        Never raises ``BuildError``; the failure is attached to the result
        (``result.raise_for_failure()`` re-raises it).
        """
        token = cancel_token or CancellationToken()
        started = time.monotonic()
        base = {"build_id": request.build_id, "scope": request.scope}

        try:
            scope = validate_scope(request.scope)
            graph = BuildGraph(request.stages)
            self._check_invalidations(request)
            self._check_gates(graph)
        except BuildError as exc:
            logger.error("Build %s rejected: %s", request.build_id, exc)
            return BuildResult.failed(exc, **base)

        logger.info(
            "Build %s (scope %s): %d stages", request.build_id, scope, len(graph)
        )

        statuses: dict[str, StageStatus] = {}
        results: dict[str, StageResult] = {}
        outputs: dict[str, StageOutput] = {}
        reports: list[TestReport] = []
        failure: tuple[BuildError, str] | None = None
        running: dict[Future, str] = {}
        scheduled: set[str] = set()

        with ThreadPoolExecutor(
            max_workers=self.config.max_parallel_stages,
            thread_name_prefix="layerforge-stage",
        ) as pool:
            while True:
                if failure is None and not token.cancelled:
                    for name in graph.topological_order:
                        if name in scheduled or not graph.is_ready(name, statuses):
                            continue
                        context = StageContext(
                            build_id=request.build_id,
                            scope=scope,
                            manifest=request.manifest,
                            upstream=outputs,
                            cancel_token=token,
                            timeout=self.config.stage_timeout_seconds,
                        )
                        future = pool.submit(
                            self._run_stage, graph.get_stage(name), request, context
                        )
                        running[future] = name
                        scheduled.add(name)

                if not running:
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    name = running.pop(future)
                    result, output, error = future.result()
                    results[name] = result
                    statuses[name] = result.status
                    if output is not None:
                        outputs[name] = output
                        if output.report is not None:
                            reports.append(output.report)
                    if error is None:
                        continue
                    if isinstance(error, TestFailureError) and isinstance(
                        error.report, TestReport
                    ):
                        reports.append(error.report)
                    if failure is None:
                        failure = (error, name)
                    downstream = (
                        StageStatus.CANCELLED
                        if isinstance(error, BuildCancelledError)
                        else StageStatus.BLOCKED
                    )
                    for blocked in graph.cascade_block(name, statuses, downstream):
                        results[blocked] = self._unrun(graph, blocked, downstream)

        for name in graph.topological_order:
            if name not in results:
                status = StageStatus.CANCELLED if token.cancelled else StageStatus.BLOCKED
                results[name] = self._unrun(graph, name, status)
        if failure is None and token.cancelled:
            failure = (BuildCancelledError(f"Build cancelled: {token.reason}"), "")

        fields = {
            **base,
            "scope": scope,
            "stage_results": [results[n] for n in graph.topological_order],
            "test_reports": reports,
            "report_paths": [
                str(self.report_sink.path_for(r.scope, r.build_id, r.stage)) for r in reports
            ],
            "duration_seconds": round(time.monotonic() - started, 3),
        }
        if failure is not None:
            error, stage_name = failure
            logger.error(
                "Build %s failed at %s: [%s] %s",
                request.build_id,
                stage_name or "-",
                error.kind.value,
                error,
            )
            return BuildResult.failed(error, stage=stage_name, **fields)

        runtime = None
        for name in graph.stages_of_kind(StageKind.ASSEMBLY):
            runtime = outputs[name].runtime
        logger.info(
            "Build %s succeeded in %.2fs%s",
            request.build_id,
            fields["duration_seconds"],
            f" -> {runtime.content_address}" if runtime is not None else "",
        )
        return BuildResult(runtime_artifact=runtime, **fields)

    # ------------------------------------------------------------------
    # Per-stage execution (runs on worker threads)
    # ------------------------------------------------------------------

    def _run_stage(
        self, stage: BuildStage, request: BuildRequest, context: StageContext
    ) -> tuple[StageResult, StageOutput | None, BuildError | None]:
        started = time.monotonic()
        fp = ""
        try:
            if stage.cacheable:
                fp = self.stage_fingerprint(stage, request)
                output, status = self._run_cacheable(stage, fp, context)
            else:
                output = self._executor(stage).run_stage(context)
                status = StageStatus.EXECUTED
        except BuildError as exc:
            status = (
                StageStatus.CANCELLED
                if isinstance(exc, BuildCancelledError)
                else StageStatus.FAILED
            )
            result = StageResult(
                stage=stage.name,
                kind=stage.kind,
                status=status,
                fingerprint=fp,
                duration_seconds=round(time.monotonic() - started, 3),
                error_kind=exc.kind,
                error=str(exc),
            )
            return result, None, exc

        result = StageResult(
            stage=stage.name,
            kind=stage.kind,
            status=status,
            artifact=output.artifact.ref if output.artifact is not None else None,
            fingerprint=fp,
            duration_seconds=round(time.monotonic() - started, 3),
        )
        logger.info(
            "Stage %s %s in %.3fs", stage.name, status.value, result.duration_seconds
        )
        return result, output, None

    def _run_cacheable(
        self, stage: BuildStage, fp: str, context: StageContext
    ) -> tuple[StageOutput, StageStatus]:
        scope = context.scope
        token = context.cancel_token
        token.raise_if_cancelled()

        if self._retry(lambda: self.cache.exists(fp, scope), f"exists({fp})", token):
            try:
                layer = self._retry(lambda: self.cache.fetch(fp, scope), f"fetch({fp})", token)
            except ArtifactNotFoundError:
                logger.warning("Layer %s/%s vanished after exists(); rebuilding", scope, fp)
            else:
                logger.info("Cache hit for %s: %s/%s", stage.name, scope, fp)
                artifact = StageArtifact(ref=layer.ref, bundle=layer.bundle)
                return StageOutput(artifact=artifact), StageStatus.CACHED

        logger.info("Cache miss for %s: %s/%s", stage.name, scope, fp)
        output = self._executor(stage).run_stage(context)
        if output.artifact is None:
            raise InvalidStageGraphError(f"Cacheable stage {stage.name!r} produced no artifact")
        token.raise_if_cancelled()
        bundle = output.artifact.bundle
        entry = self._retry(
            lambda: self.cache.publish(fp, scope, bundle, stage=stage.name),
            f"publish({fp})",
            token,
        )
        artifact = StageArtifact(ref=entry.artifact, bundle=bundle)
        return StageOutput(artifact=artifact), StageStatus.EXECUTED

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _executor(self, stage: BuildStage):
        gate = self._gate_for(stage) if isinstance(stage, TestGateStage) else None
        return build_executor(
            stage, gate=gate, installer=self._installer, assembler=self._assembler
        )

    def _gate_for(self, stage: TestGateStage) -> TestGate:
        runner = self._test_runner
        if runner is None:
            runner = CommandTestRunner(
                stage.command,
                report_file=stage.report_file,
                timeout=self.config.stage_timeout_seconds,
            )
        return TestGate(runner, self.report_sink)

    @staticmethod
    def _check_invalidations(request: BuildRequest) -> None:
        unknown = set(request.invalidate) - {s.name for s in request.stages}
        if unknown:
            raise InvalidStageGraphError(f"Invalidation for unknown stage(s): {sorted(unknown)}")

    def _check_gates(self, graph: BuildGraph) -> None:
        if self._test_runner is not None:
            return
        for name in graph.stages_of_kind(StageKind.TEST_GATE):
            stage = graph.get_stage(name)
            if not stage.command:
                raise InvalidStageGraphError(
                    f"Test gate {name!r} has no command and no test runner was configured"
                )

    @staticmethod
    def _unrun(graph: BuildGraph, name: str, status: StageStatus) -> StageResult:
        return StageResult(stage=name, kind=graph.get_stage(name).kind, status=status)
