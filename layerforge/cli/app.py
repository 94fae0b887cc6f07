"""Main Typer application — imports and registers all CLI commands.

Entry point: ``layerforge`` (configured via pyproject.toml console_scripts).

Commands: fingerprint, plan, build, report, cache ls, cache exists, bench.
"""

from __future__ import annotations

import typer

from layerforge.cli.commands.bench import bench_cmd
from layerforge.cli.commands.build import build_cmd, plan_cmd
from layerforge.cli.commands.cache import cache_app
from layerforge.cli.commands.fingerprint import fingerprint_cmd
from layerforge.cli.commands.report import report_cmd
from layerforge.cli.common import configure_logging, load_settings

app = typer.Typer(
    name="layerforge",
    help="Layerforge: content-addressed incremental builds with cached dependency layers.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None, "--log-level", help="Logging level (default: LAYERFORGE_LOG_LEVEL or INFO)."
    ),
) -> None:
    """Layerforge build cache."""
    configure_logging(log_level or load_settings().log_level)


# Register subcommands
app.command(name="fingerprint", help="Print the dependency layer fingerprint.")(
    fingerprint_cmd
)
app.command(name="plan", help="Show which stages would be reused or rebuilt.")(plan_cmd)
app.command(name="build", help="Run the build pipeline.")(build_cmd)
app.command(name="report", help="Show a test report.")(report_cmd)
app.command(name="bench", help="Compare cold and warm build times.")(bench_cmd)
app.add_typer(cache_app, name="cache")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
