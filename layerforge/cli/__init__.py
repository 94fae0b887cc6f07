"""Layerforge CLI — Typer-based command-line interface.

Provides the ``layerforge`` command with subcommands for computing
fingerprints, planning and running builds, reading test reports,
inspecting the layer cache and comparing cold and warm build times.

All output uses Rich for formatted terminal display.
"""
