"""
SPX artifact filename grammar.

SPX writes one run as up to two files sharing a prefix:

    spx-full-20240101_120000-web01-4242-7.json
    spx-full-20240101_120000-web01-4242-7.txt.gz

Either file parses on its own; the pair is only reported as metadata.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

_FILENAME = re.compile(
    r"^(?P<prefix>spx-full-(?P<timestamp>\d{8}_\d{6})-(?P<host>.+)-(?P<pid>\d+)-(?P<runid>\d+))"
    r"\.(?P<ext>json|txt\.gz)$"
)


@dataclass(frozen=True)
class SpxFilename:
    """Parsed components of an SPX artifact filename."""

    basename: str
    prefix: str
    extension: str
    timestamp: str
    host: str
    pid: int
    run_id: int
    json_path: Path
    text_gz_path: Path

    @classmethod
    def try_parse(cls, path: str | Path) -> "SpxFilename | None":
        """Return the parsed filename, or None if it does not match."""
        path = Path(path)
        match = _FILENAME.match(path.name)
        if match is None:
            return None

        prefix = match["prefix"]
        return cls(
            basename=path.name,
            prefix=prefix,
            extension=match["ext"],
            timestamp=match["timestamp"],
            host=match["host"],
            pid=int(match["pid"]),
            run_id=int(match["runid"]),
            json_path=path.parent / f"{prefix}.json",
            text_gz_path=path.parent / f"{prefix}.txt.gz",
        )

    @property
    def is_json(self) -> bool:
        return self.extension == "json"

    @property
    def counterpart_path(self) -> Path:
        return self.text_gz_path if self.is_json else self.json_path

    def metadata(self, has_json: bool, has_text_gz: bool) -> dict[str, Any]:
        """Run identity and pairing status, attached to validation metadata."""
        missing = []
        if not has_json:
            missing.append("json")
        if not has_text_gz:
            missing.append("txt.gz")

        return {
            "run": {
                "prefix": self.prefix,
                "timestamp": self.timestamp,
                "host": self.host,
                "pid": self.pid,
                "runid": self.run_id,
            },
            "pairing": {
                "status": "paired" if has_json and has_text_gz else "partial",
                "has_json": has_json,
                "has_txt_gz": has_text_gz,
                "missing": missing,
                "counterpart_path": str(self.counterpart_path),
            },
        }


def synthetic_endpoint(run: Any) -> str:
    """
    Endpoint key for a profiler run without an explicit route.

    Falls back to "unknown_endpoint" when no run metadata is available.
    """
    if not isinstance(run, dict):
        return "unknown_endpoint"

    host = run.get("host")
    pid = run.get("pid")
    run_id = run.get("runid")
    return "spx://{}/{}/{}".format(
        host if isinstance(host, str) else "unknown-host",
        pid if isinstance(pid, int) and not isinstance(pid, bool) else 0,
        run_id if isinstance(run_id, int) and not isinstance(run_id, bool) else 0,
    )
