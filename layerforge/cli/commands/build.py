"""``layerforge plan`` and ``layerforge build`` — the standard four-stage pipeline.

The pipeline is ``dependencies`` (cached by manifest fingerprint) and
``application`` (always rebuilt), both feeding the ``tests`` gate, which
guards assembly of the ``runtime`` artifact.  A failing gate exits 1 and
leaves the test report on disk.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from layerforge.cli.common import (
    load_manifest,
    load_settings,
    make_planner,
    parse_invalidations,
    split_command,
)
from layerforge.core.errors import BuildError
from layerforge.models.build import BuildRequest
from layerforge.models.stages import standard_pipeline
from layerforge.monitor.renderer import BuildRenderer

console = Console()


def plan_cmd(
    scope: str = typer.Option(..., "--scope", "-s", help="Cache scope (build lineage)."),
    manifest: Path = typer.Option(None, "--manifest", "-m", help="Dependency manifest."),
    install_cmd: str = typer.Option(None, "--install-cmd", help="Dependency install command."),
    invalidate: list[str] = typer.Option(
        None, "--invalidate", help="Force a fresh cache key: STAGE=TOKEN (repeatable)."
    ),
    registry: Path = typer.Option(None, "--registry", help="Layer registry directory."),
) -> None:
    """Show which stages would be reused from cache and which would run."""
    settings = load_settings()
    planner = make_planner(settings, registry=registry)
    request = BuildRequest(
        manifest=load_manifest(manifest),
        scope=scope,
        stages=standard_pipeline(install_command=split_command(install_cmd)),
        invalidate=parse_invalidations(invalidate),
    )
    try:
        plan = planner.plan(request)
    except BuildError as exc:
        console.print(f"[bold red]{exc.kind.value}:[/bold red] {exc}")
        raise typer.Exit(code=1)
    BuildRenderer(console=console).print_plan(plan)


def build_cmd(
    scope: str = typer.Option(..., "--scope", "-s", help="Cache scope (build lineage)."),
    manifest: Path = typer.Option(None, "--manifest", "-m", help="Dependency manifest."),
    source: Path = typer.Option(Path("."), "--source", help="Application source directory."),
    test_cmd: str = typer.Option(
        None, "--test-cmd", "-t", help="Test suite command, run inside the staged tree."
    ),
    install_cmd: str = typer.Option(None, "--install-cmd", help="Dependency install command."),
    entrypoint: list[str] = typer.Option(
        None, "--entrypoint", "-e", help="Runtime entrypoint path (repeatable)."
    ),
    include: list[str] = typer.Option(
        None,
        "--include",
        help="Application path copied into the runtime (repeatable; default: entrypoints).",
    ),
    exclude: list[str] = typer.Option(
        None, "--exclude", help="Pattern dropped from the runtime artifact (repeatable)."
    ),
    invalidate: list[str] = typer.Option(
        None, "--invalidate", help="Force a fresh cache key: STAGE=TOKEN (repeatable)."
    ),
    registry: Path = typer.Option(None, "--registry", help="Layer registry directory."),
    reports: Path = typer.Option(None, "--reports", help="Test report directory."),
    output: Path = typer.Option(
        None, "--output", "-o", help="Export the runtime artifact here (default from settings)."
    ),
    export: bool = typer.Option(
        True, "--export/--no-export", help="Write the runtime tree to the output directory."
    ),
) -> None:
    """Run the build: reuse cached dependency layers, test, then assemble."""
    settings = load_settings()
    planner = make_planner(settings, registry=registry, reports=reports)
    request = BuildRequest(
        manifest=load_manifest(manifest),
        scope=scope,
        stages=standard_pipeline(
            source_dir=source,
            test_command=split_command(test_cmd),
            entrypoints=entrypoint or (),
            runtime_paths=include or (),
            install_command=split_command(install_cmd),
            exclude=exclude or (),
        ),
        invalidate=parse_invalidations(invalidate),
    )

    result = planner.run(request)
    BuildRenderer(console=console).print_result(result)
    if not result.succeeded:
        raise typer.Exit(code=1)

    runtime = result.runtime_artifact
    if export and runtime is not None:
        target = (output or settings.output_path) / result.build_id
        runtime.write_to(target)
        console.print(f"[bold green]Runtime artifact exported:[/bold green] {target}")
