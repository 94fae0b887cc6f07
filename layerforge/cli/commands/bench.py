"""``layerforge bench`` — compare cold and warm build times.

Runs the standard pipeline twice against the same registry:

1. **cold** — an empty registry, so the dependency layer is installed;
2. **warm** — the application changed (a marker file is added), the
   manifest did not, so the dependency layer comes from cache.

By default both builds use a throw-away registry so the cold run really
is cold.  ``--registry`` benchmarks against an existing one instead.
"""

from __future__ import annotations

import tempfile
import time
from pathlib import Path

import typer
from rich.console import Console

from layerforge.cli.common import (
    load_manifest,
    load_settings,
    make_planner,
    split_command,
)
from layerforge.models.build import BuildRequest, BuildResult
from layerforge.models.stages import StageStatus, standard_pipeline
from layerforge.monitor.renderer import BuildRenderer, format_duration

console = Console()

_CHANGE_MARKER = ".layerforge-bench"


def bench_cmd(
    scope: str = typer.Option("bench", "--scope", "-s", help="Cache scope for both builds."),
    manifest: Path = typer.Option(None, "--manifest", "-m", help="Dependency manifest."),
    source: Path = typer.Option(Path("."), "--source", help="Application source directory."),
    test_cmd: str = typer.Option(None, "--test-cmd", "-t", help="Test suite command."),
    install_cmd: str = typer.Option(None, "--install-cmd", help="Dependency install command."),
    entrypoint: list[str] = typer.Option(
        None, "--entrypoint", "-e", help="Runtime entrypoint path (repeatable)."
    ),
    registry: Path = typer.Option(
        None, "--registry", help="Use this registry instead of a temporary one."
    ),
) -> None:
    """Build twice (cold, then warm after a code change) and compare timings."""
    settings = load_settings()
    parsed = load_manifest(manifest)

    def request(files: dict[str, bytes]) -> BuildRequest:
        return BuildRequest(
            manifest=parsed,
            scope=scope,
            stages=standard_pipeline(
                source_dir=source,
                files=files,
                test_command=split_command(test_cmd),
                entrypoints=entrypoint or (),
                install_command=split_command(install_cmd),
            ),
        )

    with tempfile.TemporaryDirectory(prefix="layerforge-bench-") as tmp:
        planner = make_planner(
            settings,
            registry=registry or Path(tmp) / "registry",
            reports=Path(tmp) / "reports",
        )
        rows: list[tuple[str, BuildResult]] = []
        for label in ("cold", "warm (code change)"):
            marker = f"# bench {label} {time.time_ns()}\n".encode("utf-8")
            console.print(f"[bold yellow]Building {label}...[/bold yellow]")
            result = planner.run(request({_CHANGE_MARKER: marker}))
            if not result.succeeded:
                BuildRenderer(console=console).print_result(result)
                raise typer.Exit(code=1)
            console.print(
                f"[green]{label}: {format_duration(result.duration_seconds)}[/green]"
            )
            rows.append((label, result))

    console.print()
    console.print(BuildRenderer(console=console).render_timings(rows))

    cold, warm = rows[0][1], rows[1][1]
    if warm.stage("dependencies").status != StageStatus.CACHED:
        console.print("[bold red]Warm build did not reuse the dependency layer.[/bold red]")
        raise typer.Exit(code=1)
    if warm.duration_seconds > 0:
        console.print(
            f"Speed-up: [bold]{cold.duration_seconds / warm.duration_seconds:.1f}x[/bold]"
        )
