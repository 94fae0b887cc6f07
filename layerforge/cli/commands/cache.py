"""``layerforge cache ls|exists`` — inspect the layer registry.

Read-only: nothing here publishes or removes entries.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from layerforge.cli.common import load_settings, make_cache
from layerforge.core.errors import BuildError
from layerforge.monitor.renderer import BuildRenderer

console = Console()

cache_app = typer.Typer(
    help="Inspect cached dependency layers.",
    no_args_is_help=True,
)


@cache_app.command(name="ls", help="List published layers.")
def ls_cmd(
    scope: str = typer.Option(None, "--scope", "-s", help="Only this scope."),
    registry: Path = typer.Option(None, "--registry", help="Layer registry directory."),
) -> None:
    """List published dependency layers, optionally for one scope."""
    cache = make_cache(load_settings(), registry)
    try:
        entries = cache.entries(scope)
    except BuildError as exc:
        console.print(f"[bold red]{exc.kind.value}:[/bold red] {exc}")
        raise typer.Exit(code=1)

    if not entries:
        console.print("[dim]No cached layers.[/dim]")
        return
    console.print(BuildRenderer(console=console).render_entries(entries))


@cache_app.command(name="exists", help="Check whether a layer is published.")
def exists_cmd(
    fingerprint: str = typer.Argument(..., help="Layer fingerprint."),
    scope: str = typer.Option(..., "--scope", "-s", help="Cache scope."),
    registry: Path = typer.Option(None, "--registry", help="Layer registry directory."),
) -> None:
    """Exit 0 if FINGERPRINT is published in SCOPE, 1 otherwise."""
    cache = make_cache(load_settings(), registry)
    try:
        entry = cache.lookup(fingerprint, scope)
    except BuildError as exc:
        console.print(f"[bold red]{exc.kind.value}:[/bold red] {exc}")
        raise typer.Exit(code=2)

    if entry is None:
        console.print(f"[yellow]miss[/yellow] {scope}/{fingerprint}")
        raise typer.Exit(code=1)
    console.print(
        f"[green]hit[/green] {scope}/{fingerprint} -> {entry.artifact.content_address}"
    )
