"""Typer-based CLI for FastBuild."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.logging import RichHandler

from . import __version__
from .orchestrator import FastBuildOrchestrator
from .output import OutputSink

app = typer.Typer(
    help="⚡ FastBuild: rebuild and publish only what a changed file affects.",
    add_completion=False,
    rich_markup_mode="rich",
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"FastBuild CLI v{__version__}")
        raise typer.Exit()


def _configure_logging(quiet: bool) -> None:
    logging.basicConfig(
        level=logging.WARNING if quiet else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(show_path=False, show_time=False)],
        force=True,
    )


@app.command(no_args_is_help=True)
def build(
    path: Path = typer.Argument(..., help="Changed file or directory."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Hide debug messages."),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
):
    """Build and publish the native targets or managed project affected by PATH.

    Example:
      fastbuild src/native/core/core.cpp
      fastbuild src/managed/App/Program.cs
    """
    _configure_logging(quiet)
    sink = OutputSink(show_debug=not quiet)

    # Logical failures are reported but keep a zero exit status
    if not path.exists():
        sink.error("Invalid parameter. Please provide a valid file or directory path.")
        return

    FastBuildOrchestrator(sink).process(path)


if __name__ == "__main__":
    app()
