"""Artifact commands: validate, ingest."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from perfsense.cli.options import (
    JsonOption,
    StorageDirOption,
    console,
    error_console,
    open_store,
    print_json,
)
from perfsense.config import get_config
from perfsense.exceptions import PerfSenseError
from perfsense.ingestion import IngestionService
from perfsense.models import ArtifactDescriptor, ValidationResult
from perfsense.validation import ArtifactValidator

ArtifactPaths = Annotated[
    list[Path],
    typer.Argument(help="Artifact files (SPX capture, MySQL slow log, timings CSV/JSON)"),
]


def parse_hints(hints: list[str] | None) -> dict[str, str]:
    """Turn repeated KEY=VALUE options into a dict."""
    parsed: dict[str, str] = {}
    for hint in hints or []:
        key, sep, value = hint.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"expected KEY=VALUE, got {hint!r}", param_hint="--hint")
        parsed[key.strip()] = value.strip()
    return parsed


def _validation_table(results: list[ValidationResult]) -> Table:
    table = Table()
    table.add_column("Artifact", style="cyan")
    table.add_column("Status")
    table.add_column("Type")
    table.add_column("Version")
    table.add_column("Errors")

    for result in results:
        status = "[green]OK[/green]" if result.ok else "[red]FAIL[/red]"
        table.add_row(
            result.path,
            status,
            result.detected_type or "-",
            result.detected_version or "-",
            "\n".join(result.errors) or "-",
        )
    return table


def register(app: typer.Typer) -> None:
    """Register artifact commands on the given Typer app."""

    @app.command()
    def validate(
        paths: ArtifactPaths,
        json_output: JsonOption = False,
    ) -> None:
        """
        Detect the format of each artifact without ingesting it.

        Examples:

            $ perfsense validate spx-full-20240101_120000-web01-4242-7.json slow.log
        """
        try:
            validator = ArtifactValidator(config=get_config())
        except PerfSenseError as e:
            error_console.print(f"[red]Error:[/red] {escape(e.message)}")
            raise typer.Exit(code=1)

        results = validator.validate_many(ArtifactDescriptor(str(p)) for p in paths)

        if json_output:
            print_json({"results": [r.to_dict() for r in results]})
        else:
            console.print(_validation_table(results))

        if not all(r.ok for r in results):
            raise typer.Exit(code=1)

    @app.command()
    def ingest(
        paths: ArtifactPaths,
        hint: Annotated[
            Optional[list[str]],
            typer.Option(
                "--hint",
                help="Environment hint stored with the snapshot, as KEY=VALUE (repeatable)",
            ),
        ] = None,
        storage_dir: StorageDirOption = None,
        json_output: JsonOption = False,
    ) -> None:
        """
        Validate, parse and store artifacts as one snapshot.

        If any artifact fails validation nothing is stored.

        Examples:

            $ perfsense ingest slow.log timings.csv --hint env=staging
        """
        environment_hints = parse_hints(hint)
        try:
            service = IngestionService(
                validator=ArtifactValidator(config=get_config()),
                store=open_store(storage_dir),
            )
            result = service.ingest(
                [ArtifactDescriptor(str(p)) for p in paths],
                environment_hints=environment_hints,
            )
        except PerfSenseError as e:
            error_console.print(f"[red]Error:[/red] {escape(e.message)}")
            raise typer.Exit(code=1)

        if json_output:
            print_json(result.to_dict())
        elif result.snapshot is None:
            console.print(_validation_table(list(result.validation)))
            error_console.print("[red]Ingestion aborted: some artifacts failed validation[/red]")
        else:
            console.print(Panel(
                f"Snapshot [bold]{result.snapshot.id}[/bold]\n\n"
                f"Endpoints: {result.endpoint_count}\n"
                f"Queries:   {result.query_count}\n"
                f"Spans:     {result.span_count}",
                title="Ingested",
                border_style="green",
            ))

        if result.snapshot is None:
            raise typer.Exit(code=1)
