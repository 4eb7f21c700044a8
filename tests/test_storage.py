"""
Tests for the filesystem snapshot store.
"""

import json

import pytest

from perfsense.canonical import sha1_hex
from perfsense.exceptions import SnapshotStoreError
from perfsense.models import (
    ArtifactDescriptor,
    DbQuerySample,
    EvidenceRef,
    LineRange,
    RequestProfile,
    Snapshot,
    SourceArtifact,
    Span,
)
from perfsense.snapshot import SnapshotBuilder
from perfsense.storage import FilesystemSnapshotStore, hydrate_snapshot, is_snapshot_id
from perfsense.validation import ArtifactValidator


@pytest.fixture
def store(tmp_path) -> FilesystemSnapshotStore:
    return FilesystemSnapshotStore(tmp_path / "store")


@pytest.fixture
def snapshot(slow_log, spx_json, timings_csv) -> Snapshot:
    validator = ArtifactValidator()
    parsed = []
    for path in (slow_log, spx_json, timings_csv):
        descriptor = ArtifactDescriptor(str(path), hints={"env": "test"})
        validation = validator.validate_single(descriptor)
        parsed.append(validator.resolve_parser(validation).parse(descriptor, validation))
    return SnapshotBuilder().build(parsed)


class TestPersistAndLoad:
    """Tests for the write-once round trip."""

    def test_round_trip(self, store, snapshot):
        store.persist(snapshot, {"region": "eu"})

        loaded = store.load(snapshot.id)

        assert loaded is not None
        assert loaded.to_dict() == snapshot.to_dict()

    def test_round_trip_preserves_id(self, store, snapshot):
        store.persist(snapshot)
        loaded = store.load(snapshot.id)

        assert SnapshotBuilder.snapshot_id(
            loaded.sources, loaded.request_profiles, loaded.db_query_samples
        ) == snapshot.id

    def test_layout(self, store, snapshot):
        store.persist(snapshot, {"region": "eu"})

        snapshot_dir = store.root / "snapshots" / snapshot.id
        assert (snapshot_dir / "snapshot.json").is_file()
        metadata = json.loads((snapshot_dir / "metadata.json").read_text())
        assert metadata["snapshot_id"] == snapshot.id
        assert metadata["environment_hints"] == {"region": "eu"}
        assert len(metadata["sources"]) == 3

    def test_documents_are_canonical(self, store, snapshot):
        store.persist(snapshot)

        raw = (store.snapshot_dir(snapshot.id) / "snapshot.json").read_text(encoding="utf-8")
        assert raw.endswith("\n")
        assert raw.rstrip("\n") == json.dumps(
            json.loads(raw), sort_keys=True, separators=(",", ":"), ensure_ascii=False
        )

    def test_second_persist_is_noop(self, store, snapshot):
        store.persist(snapshot, {"first": True})
        path = store.snapshot_dir(snapshot.id) / "metadata.json"
        before = path.read_bytes()

        store.persist(snapshot, {"second": True})

        assert path.read_bytes() == before
        assert len(store.list_snapshots()) == 1

    def test_manifest_lists_each_snapshot_once(self, store, snapshot):
        other = Snapshot(id="f" * 64, collected_at="2024-01-01T00:00:00+00:00")

        store.persist(snapshot)
        store.persist(other)
        store.persist(snapshot)

        assert [row["snapshot_id"] for row in store.list_snapshots()] == [snapshot.id, other.id]
        assert all("ingested_at" in row for row in store.list_snapshots())

    def test_indexes(self, store, snapshot):
        store.persist(snapshot)

        endpoint = json.loads(
            (store.root / "index" / "endpoints" / f"{sha1_hex('/checkout')}.json").read_text()
        )
        assert endpoint["endpoint"] == "/checkout"
        assert endpoint["snapshot_ids"] == [snapshot.id]

        sample = snapshot.db_query_samples[0]
        query = json.loads(
            (store.root / "index" / "queries" / f"{sample.fingerprint}.json").read_text()
        )
        assert query["snapshot_ids"] == [snapshot.id]

    def test_malformed_id_rejected(self, store):
        with pytest.raises(SnapshotStoreError):
            store.persist(Snapshot(id="../escape", collected_at="x"))

    def test_write_failure_wrapped(self, tmp_path, snapshot):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")

        with pytest.raises(SnapshotStoreError):
            FilesystemSnapshotStore(blocker).persist(snapshot)


class TestLoadFailures:
    """Tests for tolerant loading."""

    def test_unknown_id(self, store):
        assert store.load("a" * 64) is None
        assert store.load_metadata("a" * 64) is None

    @pytest.mark.parametrize("bad_id", ["", "abc", "../../etc/passwd", "A" * 64])
    def test_malformed_id(self, store, bad_id):
        assert store.load(bad_id) is None

    def test_corrupt_document(self, store, snapshot):
        store.persist(snapshot)
        (store.snapshot_dir(snapshot.id) / "snapshot.json").write_text("{broken")

        assert store.load(snapshot.id) is None

    def test_missing_required_field(self, store, snapshot):
        store.persist(snapshot)
        path = store.snapshot_dir(snapshot.id) / "snapshot.json"
        document = json.loads(path.read_text())
        del document["sources"]
        path.write_text(json.dumps(document))

        assert store.load(snapshot.id) is None

    def test_empty_store_lists_nothing(self, store):
        assert store.list_snapshots() == []

    def test_load_metadata(self, store, snapshot):
        store.persist(snapshot, {"region": "eu"})

        assert store.load_metadata(snapshot.id)["environment_hints"] == {"region": "eu"}


class TestHydration:
    """Tests for rebuilding models from stored documents."""

    def _document(self, **overrides):
        document = {
            "id": "a" * 64,
            "collected_at": "2024-01-01T00:00:00+00:00",
            "sources": [],
            "request_profiles": [],
            "db_query_samples": [],
        }
        document.update(overrides)
        return document

    def test_bad_records_skipped(self):
        snapshot = hydrate_snapshot(
            self._document(
                request_profiles=[
                    {"endpoint": "/ok", "wall_ms": 5, "ttfb_ms": None},
                    {"endpoint": "/bad", "wall_ms": "slow"},
                    "junk",
                ],
                db_query_samples=[
                    {"fingerprint": "f", "total_time_ms": 1, "avg_time_ms": 1, "count": True},
                ],
            )
        )

        assert [p.endpoint for p in snapshot.request_profiles] == ["/ok"]
        assert snapshot.request_profiles[0].wall_ms == 5.0
        assert snapshot.db_query_samples == ()

    def test_nested_models(self):
        evidence = {
            "source": "spx",
            "file": "p.json",
            "line_range": {"start": 2, "end": 2},
            "record_id": "text:1",
            "extraction_note": "n",
        }
        snapshot = hydrate_snapshot(
            self._document(
                sources=[
                    {"path": "p", "type": "spx", "version": None, "sha256": "0" * 64, "size_bytes": 3}
                ],
                request_profiles=[
                    {
                        "endpoint": "/a",
                        "wall_ms": 1.5,
                        "spans": [
                            {"type": "php", "label": "f", "self_ms": 1, "total_ms": 2, "evidence": [evidence]},
                            {"type": "php", "label": "g", "self_ms": None, "total_ms": 2},
                        ],
                    }
                ],
            )
        )

        assert snapshot.sources == (
            SourceArtifact(path="p", type="spx", version=None, sha256="0" * 64, size_bytes=3),
        )
        (span,) = snapshot.request_profiles[0].spans
        assert span == Span(
            type="php",
            label="f",
            self_ms=1.0,
            total_ms=2.0,
            evidence=(
                EvidenceRef(
                    source="spx",
                    file="p.json",
                    line_range=LineRange(2, 2),
                    record_id="text:1",
                    extraction_note="n",
                ),
            ),
        )

    def test_sample_optional_fields(self):
        snapshot = hydrate_snapshot(
            self._document(
                db_query_samples=[
                    {
                        "fingerprint": "f",
                        "total_time_ms": 10,
                        "avg_time_ms": 5,
                        "count": 2,
                        "lock_ms": None,
                        "rows_examined": 7,
                        "examples": ["SELECT ?", 3],
                    }
                ]
            )
        )

        assert snapshot.db_query_samples == (
            DbQuerySample(
                fingerprint="f",
                total_time_ms=10.0,
                avg_time_ms=5.0,
                count=2,
                lock_ms=None,
                rows_examined=7.0,
                examples=("SELECT ?",),
            ),
        )

    def test_wrong_top_level_types(self):
        assert hydrate_snapshot(self._document(sources={})) is None
        assert hydrate_snapshot(self._document(id=None)) is None

    def test_profile_with_no_optional_metrics(self):
        snapshot = hydrate_snapshot(
            self._document(request_profiles=[{"endpoint": "/a", "wall_ms": 0}])
        )

        assert snapshot.request_profiles == (
            RequestProfile(endpoint="/a", ttfb_ms=None, wall_ms=0.0),
        )


class TestSnapshotIds:
    def test_is_snapshot_id(self):
        assert is_snapshot_id("0123456789abcdef" * 4)
        assert not is_snapshot_id("0123456789ABCDEF" * 4)
        assert not is_snapshot_id("0" * 63)
