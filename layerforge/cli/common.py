"""Shared plumbing for CLI commands: settings, logging and planner wiring."""

from __future__ import annotations

import logging
import shlex
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from layerforge.config import BuildSettings
from layerforge.core.layer_cache import LayerCacheStore
from layerforge.core.planner import BuildPlanner
from layerforge.core.registry import FilesystemRegistry
from layerforge.core.test_gate import ReportSink
from layerforge.models.config import PlannerConfig
from layerforge.models.manifest import Manifest

_HANDLER_NAME = "layerforge-cli"


def configure_logging(level: str) -> None:
    """Attach a single RichHandler (stderr) to the ``layerforge`` logger."""
    root = logging.getLogger("layerforge")
    for handler in list(root.handlers):
        if handler.get_name() == _HANDLER_NAME:
            root.removeHandler(handler)
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
    )
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(level.upper())


def load_settings() -> BuildSettings:
    return BuildSettings()


def load_manifest(path: Path | None) -> Manifest:
    """Read a manifest file; no path means the empty manifest."""
    if path is None:
        return Manifest()
    if not path.is_file():
        raise typer.BadParameter(f"Manifest not found: {path}", param_hint="--manifest")
    try:
        return Manifest.from_file(path)
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid manifest {path}: {exc}", param_hint="--manifest")


def split_command(command: str | None) -> tuple[str, ...]:
    return tuple(shlex.split(command)) if command else ()


def parse_invalidations(values: list[str] | None) -> dict[str, str]:
    """``["dependencies=abc123"]`` -> ``{"dependencies": "abc123"}``."""
    result: dict[str, str] = {}
    for value in values or []:
        stage, sep, token = value.partition("=")
        if not sep or not stage.strip() or not token.strip():
            raise typer.BadParameter(
                f"Expected STAGE=TOKEN, got {value!r}", param_hint="--invalidate"
            )
        result[stage.strip()] = token.strip()
    return result


def make_cache(settings: BuildSettings, registry: Path | None = None) -> LayerCacheStore:
    return LayerCacheStore(FilesystemRegistry(registry or settings.registry_path))


def make_planner(
    settings: BuildSettings,
    *,
    registry: Path | None = None,
    reports: Path | None = None,
) -> BuildPlanner:
    config = PlannerConfig.from_settings(settings)
    if reports is not None:
        config = config.model_copy(update={"reports_path": reports})
    return BuildPlanner(make_cache(settings, registry), config=config)
