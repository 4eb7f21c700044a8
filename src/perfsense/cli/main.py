"""
PerfSense CLI - performance artifact ingestion and analysis.

Usage:
    perfsense validate slow.log timings.csv
    perfsense ingest spx-full-20240101_120000-web01-4242-7.json slow.log
    perfsense analyze <snapshot-id> --top-n 10
    perfsense show <snapshot-id>
"""

from __future__ import annotations

from typing import Annotated, Optional

import typer

from perfsense import __version__
from perfsense.cli.commands import analysis, artifacts
from perfsense.cli.options import console
from perfsense.logging_config import setup_logging

app = typer.Typer(
    name="perfsense",
    help="Ingest performance artifacts into snapshots and rank what is slow",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"PerfSense version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging."),
    ] = False,
) -> None:
    """PerfSense - performance artifact analyzer."""
    setup_logging(verbose=verbose)


artifacts.register(app)
analysis.register(app)


if __name__ == "__main__":
    app()
