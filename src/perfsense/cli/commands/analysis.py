"""Snapshot commands: analyze, show."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from perfsense.analysis import AnalysisRunService
from perfsense.cli.options import (
    JsonOption,
    StorageDirOption,
    console,
    error_console,
    open_store,
    print_json,
    severity_label,
)
from perfsense.config import get_config
from perfsense.exceptions import PerfSenseError, ThresholdError

SnapshotIdArgument = Annotated[
    str,
    typer.Argument(help="Snapshot id printed by 'perfsense ingest'"),
]


def load_thresholds_file(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, RecursionError) as e:
        raise typer.BadParameter(f"cannot read thresholds file: {e}", param_hint="--thresholds")


def _print_report(document: dict[str, Any]) -> None:
    summary = document["summary"]
    findings = document["findings"]

    if not findings:
        console.print(Panel(
            "[green]No findings above the configured thresholds.[/green]\n\n"
            f"Analyzed {summary['endpoint_count']} endpoint(s) and "
            f"{summary['query_count']} query fingerprint(s).",
            title="PerfSense",
            border_style="green",
        ))
    else:
        console.print(
            f"[bold]Found {summary['finding_count']} finding(s):[/bold] "
            f"{summary['p0_count']} P0, {summary['p1_count']} P1, {summary['p2_count']} P2\n"
        )
        for finding in findings:
            console.print(f"{severity_label(finding['severity'])} {escape(finding['title'])}")
            console.print(f"   [dim]{escape(finding['impact_summary'])}[/dim]")
            for rec in finding["recommendations"]:
                console.print(f"   [green]-[/green] {escape(rec['action'])}")
            console.print()

    for question in document["open_questions"]:
        console.print(f"[yellow]{question}[/yellow]")


def register(app: typer.Typer) -> None:
    """Register snapshot commands on the given Typer app."""

    @app.command()
    def analyze(
        snapshot_id: SnapshotIdArgument,
        top_n: Annotated[
            Optional[int],
            typer.Option("--top-n", "-n", help="Entries ranked per category (1-20)"),
        ] = None,
        thresholds: Annotated[
            Optional[Path],
            typer.Option(
                "--thresholds",
                "-t",
                help="JSON file mapping metric name to {P0, P1, P2}",
                exists=True,
                dir_okay=False,
                readable=True,
            ),
        ] = None,
        storage_dir: StorageDirOption = None,
        json_output: JsonOption = False,
    ) -> None:
        """
        Rank endpoints, spans and queries of a stored snapshot.

        Examples:

            $ perfsense analyze 3f2a...c9 --top-n 10
            $ perfsense analyze 3f2a...c9 --thresholds thresholds.json --json
        """
        params: dict[str, Any] = {}
        if top_n is not None:
            params["top_n"] = top_n
        if thresholds is not None:
            params["thresholds"] = load_thresholds_file(thresholds)

        try:
            service = AnalysisRunService(open_store(storage_dir), config=get_config())
            document = service.run(snapshot_id, params)
        except ThresholdError as e:
            error_console.print("[red]Invalid thresholds:[/red]")
            for problem in e.errors:
                error_console.print(f"  - {escape(problem)}")
            raise typer.Exit(code=1)
        except PerfSenseError as e:
            error_console.print(f"[red]Error:[/red] {escape(e.message)}")
            raise typer.Exit(code=1)

        if document is None:
            error_console.print(f"[red]Snapshot not found:[/red] {snapshot_id}")
            raise typer.Exit(code=1)

        if json_output:
            print_json(document)
        else:
            _print_report(document)

    @app.command()
    def show(
        snapshot_id: SnapshotIdArgument,
        storage_dir: StorageDirOption = None,
        json_output: JsonOption = False,
    ) -> None:
        """Show the contents of a stored snapshot."""
        try:
            snapshot = open_store(storage_dir).load(snapshot_id)
        except PerfSenseError as e:
            error_console.print(f"[red]Error:[/red] {escape(e.message)}")
            raise typer.Exit(code=1)

        if snapshot is None:
            error_console.print(f"[red]Snapshot not found:[/red] {snapshot_id}")
            raise typer.Exit(code=1)

        if json_output:
            print_json(snapshot.to_dict())
            return

        sources = Table(title="Sources")
        sources.add_column("Path", style="cyan")
        sources.add_column("Type")
        sources.add_column("Version")
        sources.add_column("Bytes", justify="right")
        for source in snapshot.sources:
            sources.add_row(source.path, source.type, source.version or "-", str(source.size_bytes))

        console.print(f"[bold]Snapshot[/bold] {snapshot.id}")
        console.print(f"[dim]Collected at {snapshot.collected_at}[/dim]\n")
        console.print(sources)
        console.print(
            f"\nEndpoints: {len(snapshot.request_profiles)}  "
            f"Queries: {len(snapshot.db_query_samples)}  "
            f"Spans: {snapshot.span_count}"
        )
