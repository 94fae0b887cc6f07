"""``layerforge fingerprint MANIFEST --scope SCOPE`` — print a dependency layer key.

Prints the key the ``dependencies`` stage of the standard pipeline would
be cached under, so it can be compared across machines or fed to
``layerforge cache exists``.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from layerforge.cli.common import load_manifest, load_settings, split_command
from layerforge.core.fingerprint import canonical_manifest_bytes
from layerforge.core.planner import stage_fingerprint
from layerforge.models.stages import standard_pipeline

console = Console()


def fingerprint_cmd(
    manifest: Path = typer.Argument(..., help="Dependency manifest (text or lockfile)."),
    scope: str = typer.Option(..., "--scope", "-s", help="Cache scope (build lineage)."),
    install_cmd: str = typer.Option(
        None, "--install-cmd", help="Install command; part of the cache key."
    ),
    invalidate: str = typer.Option(
        None, "--invalidate", help="Cache-bust token for the dependency layer."
    ),
    length: int = typer.Option(
        None, "--length", help="Fingerprint length in hex chars (default from settings)."
    ),
    show_canonical: bool = typer.Option(
        False, "--show-canonical", help="Also print the canonical manifest form."
    ),
) -> None:
    """Compute the dependency layer fingerprint for MANIFEST within SCOPE."""
    settings = load_settings()
    parsed = load_manifest(manifest)
    deps = standard_pipeline(manifest=parsed, install_command=split_command(install_cmd))[0]

    try:
        fp = stage_fingerprint(
            deps,
            parsed,
            scope,
            token=invalidate or "",
            length=length or settings.fingerprint_length,
        )
    except ValueError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=2)

    if show_canonical:
        canonical = canonical_manifest_bytes(parsed).decode("utf-8")
        console.print(
            Panel(canonical or "[dim](empty manifest)[/dim]", title="Canonical manifest")
        )
    console.print(fp, highlight=False)
