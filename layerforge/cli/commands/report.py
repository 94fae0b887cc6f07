"""``layerforge report --scope SCOPE`` — read a test report from the side channel.

Reports are written by the test gate whether the suite passed or failed,
so a failed build can still be diagnosed after the fact.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from layerforge.cli.common import load_settings
from layerforge.core.errors import ArtifactNotFoundError
from layerforge.core.test_gate import ReportSink
from layerforge.monitor.renderer import BuildRenderer

console = Console()


def report_cmd(
    scope: str = typer.Option(..., "--scope", "-s", help="Cache scope of the build."),
    build_id: str = typer.Option(
        None, "--build-id", "-b", help="Build ID (default: most recent build in scope)."
    ),
    stage: str = typer.Option("tests", "--stage", help="Test gate stage name."),
    reports: Path = typer.Option(None, "--reports", help="Test report directory."),
    show_output: bool = typer.Option(
        False, "--output/--no-output", help="Show the captured test output."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the raw JSON report."),
    strict: bool = typer.Option(
        False, "--strict", help="Exit 1 if the report records a failed suite."
    ),
) -> None:
    """Show the test report for a build."""
    sink = ReportSink(reports or load_settings().reports_path)
    try:
        if build_id:
            report = sink.load(scope, build_id, stage)
        else:
            report = sink.latest(scope, stage)
    except ArtifactNotFoundError as exc:
        console.print(f"[bold red]No report:[/bold red] {exc}")
        raise typer.Exit(code=1)

    if as_json:
        console.print_json(report.model_dump_json())
    else:
        BuildRenderer(console=console).print_report(report, show_output=show_output)

    if strict and not report.passed:
        raise typer.Exit(code=1)
