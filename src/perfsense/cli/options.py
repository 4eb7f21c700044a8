"""Options and helpers shared by the CLI commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console

from perfsense.config import get_config
from perfsense.storage import FilesystemSnapshotStore

console = Console()
error_console = Console(stderr=True)

JsonOption = Annotated[
    bool,
    typer.Option("--json", "-j", help="Output results as JSON"),
]

StorageDirOption = Annotated[
    Optional[Path],
    typer.Option(
        "--storage-dir",
        "-s",
        help="Snapshot storage directory (default: PERFSENSE_STORAGE_DIR or .perfsense)",
        file_okay=False,
    ),
]

SEVERITY_STYLES = {
    "P0": "red bold",
    "P1": "yellow",
    "P2": "blue",
}


def open_store(storage_dir: Path | None) -> FilesystemSnapshotStore:
    return FilesystemSnapshotStore(storage_dir or get_config().storage_dir)


def print_json(payload: Any) -> None:
    """Emit a document as JSON on stdout, keys sorted."""
    console.print_json(json.dumps(payload, sort_keys=True, ensure_ascii=False))


def severity_label(severity: str | None) -> str:
    if severity is None:
        return "[dim]-[/dim]"
    style = SEVERITY_STYLES.get(severity, "")
    return f"[{style}]{severity}[/{style}]"
