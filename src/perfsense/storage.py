"""
Snapshot persistence.

Layout under the storage root:

    snapshots/
        manifest.json              [{snapshot_id, ingested_at}, ...]
        <id>/snapshot.json         the snapshot itself
        <id>/metadata.json         sources and environment hints
    index/
        endpoints/<sha1>.json      endpoint -> snapshot ids
        queries/<fingerprint>.json fingerprint -> snapshot ids

Snapshots are content-addressed, so a second persist() of the same id
leaves the stored documents untouched. Loading is tolerant: records with
unexpected field types are skipped rather than failing the load.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from perfsense.canonical import encode, sha1_hex
from perfsense.exceptions import SnapshotStoreError
from perfsense.models import (
    DbQuerySample,
    EvidenceRef,
    LineRange,
    RequestProfile,
    Snapshot,
    SourceArtifact,
    Span,
)

logger = logging.getLogger(__name__)

_SNAPSHOT_ID = re.compile(r"^[0-9a-f]{64}$")


class SnapshotStore(Protocol):
    """Where ingested snapshots go, and where analysis loads them from."""

    def persist(self, snapshot: Snapshot, environment_hints: dict[str, Any]) -> None: ...

    def load(self, snapshot_id: str) -> Snapshot | None: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def is_snapshot_id(value: str) -> bool:
    return bool(_SNAPSHOT_ID.match(value))


class FilesystemSnapshotStore:
    """
    JSON-file snapshot store.

    Example:
        store = FilesystemSnapshotStore(".perfsense")
        store.persist(snapshot, {"env": "staging"})
        again = store.load(snapshot.id)
    """

    def __init__(self, root: str | Path = ".perfsense") -> None:
        self.root = Path(root)

    @property
    def snapshots_dir(self) -> Path:
        return self.root / "snapshots"

    @property
    def manifest_path(self) -> Path:
        return self.snapshots_dir / "manifest.json"

    def snapshot_dir(self, snapshot_id: str) -> Path:
        return self.snapshots_dir / snapshot_id

    # ── Writing ──────────────────────────────────────────────────────────

    def persist(
        self,
        snapshot: Snapshot,
        environment_hints: dict[str, Any] | None = None,
    ) -> None:
        if not is_snapshot_id(snapshot.id):
            raise SnapshotStoreError(f"Refusing to store malformed snapshot id: {snapshot.id!r}")

        snapshot_dir = self.snapshot_dir(snapshot.id)
        try:
            if snapshot_dir.is_dir():
                logger.debug("Snapshot %s already stored", snapshot.id)
            else:
                snapshot_dir.mkdir(parents=True)
                self._write_json(snapshot_dir / "snapshot.json", snapshot.to_dict())
                self._write_json(
                    snapshot_dir / "metadata.json",
                    {
                        "snapshot_id": snapshot.id,
                        "created_at": _now(),
                        "sources": [source.to_dict() for source in snapshot.sources],
                        "environment_hints": environment_hints or {},
                    },
                )
                logger.info("Stored snapshot %s in %s", snapshot.id, snapshot_dir)

            self._upsert_manifest(snapshot.id)
            self._update_indexes(snapshot)
        except OSError as e:
            raise SnapshotStoreError(f"Cannot write snapshot {snapshot.id}: {e}") from e

    def _upsert_manifest(self, snapshot_id: str) -> None:
        rows = self._read_json(self.manifest_path)
        if not isinstance(rows, list):
            rows = []

        by_id: dict[str, dict[str, Any]] = {}
        for row in rows:
            if isinstance(row, dict) and isinstance(row.get("snapshot_id"), str):
                by_id[row["snapshot_id"]] = row
        by_id.setdefault(snapshot_id, {"snapshot_id": snapshot_id, "ingested_at": _now()})

        self._write_json(self.manifest_path, list(by_id.values()))

    def _update_indexes(self, snapshot: Snapshot) -> None:
        for profile in snapshot.request_profiles:
            self._upsert_index(
                self.root / "index" / "endpoints" / f"{sha1_hex(profile.endpoint)}.json",
                "endpoint",
                profile.endpoint,
                snapshot.id,
            )
        for sample in snapshot.db_query_samples:
            self._upsert_index(
                self.root / "index" / "queries" / f"{sample.fingerprint}.json",
                "fingerprint",
                sample.fingerprint,
                snapshot.id,
            )

    def _upsert_index(self, path: Path, key: str, value: str, snapshot_id: str) -> None:
        data = self._read_json(path)
        if not isinstance(data, dict):
            data = {key: value, "snapshot_ids": []}

        ids = [i for i in data.get("snapshot_ids") or [] if isinstance(i, str)]
        if snapshot_id in ids:
            return
        ids.append(snapshot_id)

        data["snapshot_ids"] = ids
        data["updated_at"] = _now()
        self._write_json(path, data)

    def _write_json(self, path: Path, payload: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(encode(payload) + b"\n")

    # ── Reading ──────────────────────────────────────────────────────────

    def _read_json(self, path: Path) -> Any:
        if not path.is_file():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            logger.warning("Failed to read %s: %s", path, e)
            return None

    def list_snapshots(self) -> list[dict[str, Any]]:
        """Manifest rows in ingestion order."""
        rows = self._read_json(self.manifest_path)
        if not isinstance(rows, list):
            return []
        return [row for row in rows if isinstance(row, dict)]

    def load_metadata(self, snapshot_id: str) -> dict[str, Any] | None:
        if not is_snapshot_id(snapshot_id):
            return None
        data = self._read_json(self.snapshot_dir(snapshot_id) / "metadata.json")
        return data if isinstance(data, dict) else None

    def load(self, snapshot_id: str) -> Snapshot | None:
        """Load a stored snapshot, or None if unknown or unreadable."""
        if not is_snapshot_id(snapshot_id):
            logger.debug("Not a snapshot id: %r", snapshot_id)
            return None
        data = self._read_json(self.snapshot_dir(snapshot_id) / "snapshot.json")
        if not isinstance(data, dict):
            return None
        return hydrate_snapshot(data)


# ── Hydration ────────────────────────────────────────────────────────────


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _optional_number(value: Any) -> bool:
    return value is None or _is_number(value)


def _float_or_none(value: Any) -> float | None:
    return None if value is None else float(value)


def hydrate_snapshot(payload: dict[str, Any]) -> Snapshot | None:
    """
    Rebuild a Snapshot from its stored document.

    Returns None when a required top-level field is missing or has the
    wrong type. Individual records with bad fields are dropped.
    """
    snapshot_id = payload.get("id")
    collected_at = payload.get("collected_at")
    sources = payload.get("sources")
    profiles = payload.get("request_profiles")
    samples = payload.get("db_query_samples")

    if not (
        isinstance(snapshot_id, str)
        and isinstance(collected_at, str)
        and isinstance(sources, list)
        and isinstance(profiles, list)
        and isinstance(samples, list)
    ):
        logger.warning("Stored snapshot document is missing required fields")
        return None

    return Snapshot(
        id=snapshot_id,
        collected_at=collected_at,
        sources=_hydrate_all(sources, _hydrate_source),
        request_profiles=_hydrate_all(profiles, _hydrate_profile),
        db_query_samples=_hydrate_all(samples, _hydrate_sample),
    )


def _hydrate_all(items: list[Any], hydrate: Any) -> tuple[Any, ...]:
    result = []
    for item in items:
        if not isinstance(item, dict):
            continue
        model = hydrate(item)
        if model is None:
            logger.debug("Skipping unusable stored record: %s", hydrate.__name__)
            continue
        result.append(model)
    return tuple(result)


def _hydrate_source(p: dict[str, Any]) -> SourceArtifact | None:
    version = p.get("version")
    hints = p.get("hints", {})
    size = p.get("size_bytes")
    if not (
        isinstance(p.get("path"), str)
        and isinstance(p.get("type"), str)
        and (version is None or isinstance(version, str))
        and isinstance(p.get("sha256"), str)
        and isinstance(size, int)
        and not isinstance(size, bool)
        and isinstance(hints, dict)
    ):
        return None
    return SourceArtifact(
        path=p["path"],
        type=p["type"],
        version=version,
        sha256=p["sha256"],
        size_bytes=size,
        hints=hints,
    )


def _hydrate_profile(p: dict[str, Any]) -> RequestProfile | None:
    spans = p.get("spans", [])
    evidence = p.get("evidence", [])
    if not (
        isinstance(p.get("endpoint"), str)
        and _is_number(p.get("wall_ms"))
        and _optional_number(p.get("ttfb_ms"))
        and _optional_number(p.get("cpu_ms"))
        and _optional_number(p.get("mem_mb"))
        and isinstance(spans, list)
        and isinstance(evidence, list)
    ):
        return None
    return RequestProfile(
        endpoint=p["endpoint"],
        ttfb_ms=_float_or_none(p.get("ttfb_ms")),
        wall_ms=float(p["wall_ms"]),
        cpu_ms=_float_or_none(p.get("cpu_ms")),
        mem_mb=_float_or_none(p.get("mem_mb")),
        spans=_hydrate_all(spans, _hydrate_span),
        evidence=_hydrate_evidence(evidence),
    )


def _hydrate_span(p: dict[str, Any]) -> Span | None:
    evidence = p.get("evidence", [])
    if not (
        isinstance(p.get("type"), str)
        and isinstance(p.get("label"), str)
        and _is_number(p.get("self_ms"))
        and _is_number(p.get("total_ms"))
        and isinstance(evidence, list)
    ):
        return None
    return Span(
        type=p["type"],
        label=p["label"],
        self_ms=float(p["self_ms"]),
        total_ms=float(p["total_ms"]),
        evidence=_hydrate_evidence(evidence),
    )


def _hydrate_sample(p: dict[str, Any]) -> DbQuerySample | None:
    count = p.get("count")
    examples = p.get("examples", [])
    evidence = p.get("evidence", [])
    if not (
        isinstance(p.get("fingerprint"), str)
        and _is_number(p.get("total_time_ms"))
        and _is_number(p.get("avg_time_ms"))
        and isinstance(count, int)
        and not isinstance(count, bool)
        and _optional_number(p.get("lock_ms"))
        and _optional_number(p.get("rows_examined"))
        and isinstance(examples, list)
        and isinstance(evidence, list)
    ):
        return None
    return DbQuerySample(
        fingerprint=p["fingerprint"],
        total_time_ms=float(p["total_time_ms"]),
        avg_time_ms=float(p["avg_time_ms"]),
        count=count,
        lock_ms=_float_or_none(p.get("lock_ms")),
        rows_examined=_float_or_none(p.get("rows_examined")),
        examples=tuple(e for e in examples if isinstance(e, str)),
        evidence=_hydrate_evidence(evidence),
    )


def _hydrate_evidence(items: list[Any]) -> tuple[EvidenceRef, ...]:
    refs = []
    for item in items:
        if not isinstance(item, dict):
            continue
        line_range = item.get("line_range")
        record_id = item.get("record_id")
        if not (
            isinstance(item.get("source"), str)
            and isinstance(item.get("file"), str)
            and (line_range is None or isinstance(line_range, dict))
            and (record_id is None or isinstance(record_id, str))
            and isinstance(item.get("extraction_note"), str)
        ):
            continue

        lines = None
        if line_range is not None:
            start, end = line_range.get("start"), line_range.get("end")
            if isinstance(start, int) and isinstance(end, int):
                lines = LineRange(start, end)

        refs.append(
            EvidenceRef(
                source=item["source"],
                file=item["file"],
                line_range=lines,
                record_id=record_id,
                extraction_note=item["extraction_note"],
            )
        )
    return tuple(refs)
