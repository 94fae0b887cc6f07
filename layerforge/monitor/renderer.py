"""Rich terminal renderer for build plans, results and test reports.

Color scheme
------------
- green     : EXECUTED
- cyan      : CACHED
- red       : FAILED
- bold red  : BLOCKED
- dim       : CANCELLED
"""

from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from layerforge.models.artifacts import CacheEntry
from layerforge.models.build import BuildPlan, BuildResult, PlanAction
from layerforge.models.reports import TestReport
from layerforge.models.stages import StageStatus

# ---------------------------------------------------------------------------
# Status -> Rich markup mapping
# ---------------------------------------------------------------------------

_STATUS_ICONS: dict[StageStatus, str] = {
    StageStatus.EXECUTED: "[green]EXECUTED[/green]",
    StageStatus.CACHED: "[cyan]CACHED[/cyan]",
    StageStatus.FAILED: "[bold red]FAILED[/bold red]",
    StageStatus.BLOCKED: "[bold red]BLOCKED[/bold red]",
    StageStatus.CANCELLED: "[dim]CANCELLED[/dim]",
}

_ACTION_ICONS: dict[PlanAction, str] = {
    PlanAction.REUSE: "[cyan]reuse[/cyan]",
    PlanAction.EXECUTE: "[yellow]execute[/yellow]",
    PlanAction.EXECUTE_AND_PUBLISH: "[green]execute + publish[/green]",
}


def format_duration(seconds: float) -> str:
    """``75.2`` -> ``"1m 15s"``; sub-minute values keep two decimals."""
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, rest = divmod(int(round(seconds)), 60)
    return f"{minutes}m {rest}s"


def _short(address: str, width: int = 19) -> str:
    return address[:width] if address else "-"


class BuildRenderer:
    """Renders layerforge models as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def render_plan(self, plan: BuildPlan) -> Table:
        table = Table(title=f"Build plan {plan.build_id} (scope {plan.scope})")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Stage", style="bold")
        table.add_column("Kind")
        table.add_column("Action")
        table.add_column("Fingerprint", style="dim")
        table.add_column("Inputs", style="dim")
        for idx, planned in enumerate(plan.stages, start=1):
            table.add_row(
                str(idx),
                planned.name,
                planned.kind.value,
                _ACTION_ICONS[planned.action],
                planned.fingerprint or "-",
                ", ".join(planned.inputs) or "-",
            )
        return table

    def print_plan(self, plan: BuildPlan) -> None:
        self.console.print(self.render_plan(plan))

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def render_result(self, result: BuildResult) -> Panel:
        table = Table(expand=True)
        table.add_column("Stage", style="bold")
        table.add_column("Kind")
        table.add_column("Status", justify="center")
        table.add_column("Duration", justify="right")
        table.add_column("Artifact", style="dim")
        for stage in result.stage_results:
            table.add_row(
                stage.stage,
                stage.kind.value,
                _STATUS_ICONS[stage.status],
                format_duration(stage.duration_seconds),
                _short(stage.artifact.content_address if stage.artifact else ""),
            )

        if result.succeeded:
            runtime = result.runtime_artifact
            subtitle = (
                f"[green]runtime {runtime.content_address}[/green]"
                if runtime is not None
                else "[green]succeeded[/green]"
            )
            border = "green"
        else:
            failure = result.failure
            subtitle = f"[bold red]{failure.kind.value}[/bold red]: {failure.message}"
            border = "red"

        return Panel(
            table,
            title=f"[bold]Build {result.build_id}[/bold] ({result.scope}, "
            f"{format_duration(result.duration_seconds)})",
            subtitle=subtitle,
            border_style=border,
        )

    def print_result(self, result: BuildResult) -> None:
        self.console.print(self.render_result(result))
        for path in result.report_paths:
            self.console.print(f"[dim]Test report: {path}[/dim]")

    # ------------------------------------------------------------------
    # Reports and cache listings
    # ------------------------------------------------------------------

    def render_report(self, report: TestReport) -> Panel:
        table = Table(expand=True)
        table.add_column("Test", style="bold")
        table.add_column("Result", justify="center")
        table.add_column("Duration", justify="right")
        table.add_column("Error")
        for case in report.cases:
            table.add_row(
                case.test_id,
                "[green]PASS[/green]" if case.passed else "[bold red]FAIL[/bold red]",
                f"{case.duration_ms:.0f}ms",
                case.error_message,
            )
        verdict = "[green]passed[/green]" if report.passed else "[bold red]failed[/bold red]"
        return Panel(
            table,
            title=f"[bold]{report.stage}[/bold] {report.build_id} ({report.scope})",
            subtitle=verdict,
            border_style="green" if report.passed else "red",
        )

    def print_report(self, report: TestReport, *, show_output: bool = False) -> None:
        self.console.print(self.render_report(report))
        output = report.payload.get("output")
        if show_output and output:
            self.console.print(Panel(output, title="Output", border_style="dim"))

    def render_entries(self, entries: Sequence[CacheEntry]) -> Table:
        table = Table(title="Cached dependency layers")
        table.add_column("Scope", style="cyan")
        table.add_column("Fingerprint", style="bold")
        table.add_column("Content address", style="dim")
        table.add_column("Files", justify="right")
        table.add_column("Created (UTC)")
        for entry in entries:
            table.add_row(
                entry.scope,
                entry.fingerprint,
                entry.artifact.content_address,
                str(entry.artifact.file_count),
                entry.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            )
        return table

    def render_timings(self, rows: Sequence[tuple[str, BuildResult]]) -> Table:
        """Cold/warm comparison table: one row per labelled build."""
        table = Table(title="Build time comparison")
        table.add_column("Build", style="bold")
        table.add_column("Total", justify="right")
        stage_names = [s.stage for s in rows[0][1].stage_results] if rows else []
        for name in stage_names:
            table.add_column(name, justify="right")
        for label, result in rows:
            cells = []
            for name in stage_names:
                stage = result.stage(name)
                cells.append(
                    f"{format_duration(stage.duration_seconds)} ({stage.status.value})"
                )
            table.add_row(label, format_duration(result.duration_seconds), *cells)
        return table
