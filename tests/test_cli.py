"""
Tests for the perfsense command line.
"""

import json

import pytest
from typer.testing import CliRunner

from perfsense import __version__
from perfsense.cli import app

runner = CliRunner()


@pytest.fixture
def storage_dir(tmp_path):
    return tmp_path / "store"


def _ingest(storage_dir, *paths) -> dict:
    result = runner.invoke(
        app,
        ["ingest", *map(str, paths), "--storage-dir", str(storage_dir), "--json"],
    )
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestValidateCommand:
    """Tests for 'perfsense validate'."""

    def test_json_output(self, slow_log, timings_csv):
        result = runner.invoke(app, ["validate", str(slow_log), str(timings_csv), "--json"])

        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert [r["detected_type"] for r in payload["results"]] == [
            "mysql_slow_log",
            "ttfb_timings",
        ]

    def test_table_output(self, slow_log):
        result = runner.invoke(app, ["validate", str(slow_log)])

        assert result.exit_code == 0
        assert "OK" in result.stdout

    def test_failure_exit_code(self, slow_log, tmp_path):
        result = runner.invoke(
            app, ["validate", str(slow_log), str(tmp_path / "missing.csv"), "--json"]
        )

        assert result.exit_code == 1
        payload = json.loads(result.stdout)
        assert payload["results"][1]["errors"] == ["artifact file not found"]


class TestIngestCommand:
    """Tests for 'perfsense ingest'."""

    def test_ingest_json(self, storage_dir, slow_log, spx_json):
        payload = _ingest(storage_dir, slow_log, spx_json)

        assert len(payload["snapshot_id"]) == 64
        assert payload["query_count"] == 2
        assert payload["span_count"] == 2
        assert (storage_dir / "snapshots" / payload["snapshot_id"] / "snapshot.json").is_file()

    def test_ingest_panel(self, storage_dir, slow_log):
        result = runner.invoke(app, ["ingest", str(slow_log), "--storage-dir", str(storage_dir)])

        assert result.exit_code == 0
        assert "Ingested" in result.stdout
        assert "Queries" in result.stdout

    def test_hints_stored(self, storage_dir, slow_log):
        result = runner.invoke(
            app,
            [
                "ingest",
                str(slow_log),
                "--storage-dir",
                str(storage_dir),
                "--hint",
                "env=staging",
                "--hint",
                "region = eu",
                "--json",
            ],
        )
        snapshot_id = json.loads(result.stdout)["snapshot_id"]

        metadata = json.loads(
            (storage_dir / "snapshots" / snapshot_id / "metadata.json").read_text()
        )
        assert metadata["environment_hints"] == {"env": "staging", "region": "eu"}

    def test_bad_hint(self, storage_dir, slow_log):
        result = runner.invoke(
            app, ["ingest", str(slow_log), "--storage-dir", str(storage_dir), "--hint", "nokey"]
        )

        assert result.exit_code != 0
        assert not storage_dir.exists()

    def test_validation_failure_stores_nothing(self, storage_dir, slow_log, write_text):
        bad = write_text("notes.txt", "hello\n")

        result = runner.invoke(
            app,
            ["ingest", str(slow_log), str(bad), "--storage-dir", str(storage_dir), "--json"],
        )

        assert result.exit_code == 1
        assert json.loads(result.stdout)["snapshot_id"] is None
        assert not (storage_dir / "snapshots").exists()

    def test_storage_dir_from_environment(self, monkeypatch, tmp_path, slow_log):
        monkeypatch.setenv("PERFSENSE_STORAGE_DIR", str(tmp_path / "env-store"))

        result = runner.invoke(app, ["ingest", str(slow_log), "--json"])

        assert result.exit_code == 0
        snapshot_id = json.loads(result.stdout)["snapshot_id"]
        assert (tmp_path / "env-store" / "snapshots" / snapshot_id).is_dir()


class TestAnalyzeCommand:
    """Tests for 'perfsense analyze'."""

    def test_analyze_json(self, storage_dir, slow_log, timings_csv):
        snapshot_id = _ingest(storage_dir, slow_log, timings_csv)["snapshot_id"]

        result = runner.invoke(
            app,
            ["analyze", snapshot_id, "--storage-dir", str(storage_dir), "--top-n", "2", "--json"],
        )

        assert result.exit_code == 0, result.output
        document = json.loads(result.stdout)
        assert document["normalized_snapshot_id"] == snapshot_id
        assert document["summary"]["top_n"] == 2
        assert len(document["aggregates"]["top_endpoints"]) == 2

    def test_analyze_report(self, storage_dir, slow_log, timings_csv):
        snapshot_id = _ingest(storage_dir, slow_log, timings_csv)["snapshot_id"]

        result = runner.invoke(app, ["analyze", snapshot_id, "--storage-dir", str(storage_dir)])

        assert result.exit_code == 0
        assert "Slow endpoint /checkout" in result.stdout
        assert "OPEN_QUESTION" in result.stdout

    def test_thresholds_file(self, storage_dir, slow_log, tmp_path):
        snapshot_id = _ingest(storage_dir, slow_log)["snapshot_id"]
        thresholds = tmp_path / "thresholds.json"
        thresholds.write_text(json.dumps({"query_total_time_ms": {"P0": 3, "P1": 2, "P2": 1}}))

        result = runner.invoke(
            app,
            [
                "analyze",
                snapshot_id,
                "--storage-dir",
                str(storage_dir),
                "--thresholds",
                str(thresholds),
                "--json",
            ],
        )

        document = json.loads(result.stdout)
        assert document["summary"]["p0_count"] == 2
        assert document["ranking_thresholds"]["query_total_time_ms"]["source"] == "configured"

    def test_invalid_thresholds_file(self, storage_dir, slow_log, tmp_path):
        snapshot_id = _ingest(storage_dir, slow_log)["snapshot_id"]
        thresholds = tmp_path / "thresholds.json"
        thresholds.write_text(json.dumps({"bogus": {"P0": 3, "P1": 2, "P2": 1}}))

        result = runner.invoke(
            app,
            ["analyze", snapshot_id, "--storage-dir", str(storage_dir), "-t", str(thresholds)],
        )

        assert result.exit_code == 1
        assert 'unknown metric "bogus"' in result.output

    def test_unknown_snapshot(self, storage_dir):
        result = runner.invoke(app, ["analyze", "0" * 64, "--storage-dir", str(storage_dir)])

        assert result.exit_code == 1
        assert "Snapshot not found" in result.output


class TestShowCommand:
    """Tests for 'perfsense show'."""

    def test_show_json(self, storage_dir, slow_log):
        snapshot_id = _ingest(storage_dir, slow_log)["snapshot_id"]

        result = runner.invoke(app, ["show", snapshot_id, "--storage-dir", str(storage_dir), "--json"])

        assert result.exit_code == 0
        document = json.loads(result.stdout)
        assert document["id"] == snapshot_id
        assert len(document["db_query_samples"]) == 2

    def test_show_table(self, storage_dir, slow_log):
        snapshot_id = _ingest(storage_dir, slow_log)["snapshot_id"]

        result = runner.invoke(app, ["show", snapshot_id, "--storage-dir", str(storage_dir)])

        assert result.exit_code == 0
        assert snapshot_id[:8] in result.stdout
        assert "Queries: 2" in result.stdout

    def test_show_unknown(self, storage_dir):
        result = runner.invoke(app, ["show", "nope", "--storage-dir", str(storage_dir)])

        assert result.exit_code == 1


class TestConfigFileErrors:
    """Tests for a PERFSENSE_CONFIG_FILE that does not load."""

    @pytest.fixture
    def bad_config(self, monkeypatch, tmp_path):
        path = tmp_path / "perfsense.json"
        path.write_text(json.dumps({"default_top_n": 0}))
        monkeypatch.setenv("PERFSENSE_CONFIG_FILE", str(path))
        return path

    def test_validate_reports_error(self, bad_config, slow_log):
        result = runner.invoke(app, ["validate", str(slow_log)])

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert isinstance(result.exception, SystemExit)

    def test_ingest_reports_error(self, bad_config, storage_dir, slow_log):
        result = runner.invoke(app, ["ingest", str(slow_log), "--storage-dir", str(storage_dir)])

        assert result.exit_code == 1
        assert "Error:" in result.output
        assert isinstance(result.exception, SystemExit)
        assert not storage_dir.exists()

    def test_analyze_reports_error(self, bad_config, storage_dir):
        result = runner.invoke(app, ["analyze", "0" * 64, "--storage-dir", str(storage_dir)])

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_unreadable_json_config(self, monkeypatch, tmp_path, slow_log):
        path = tmp_path / "perfsense.json"
        path.write_text("{not json")
        monkeypatch.setenv("PERFSENSE_CONFIG_FILE", str(path))

        result = runner.invoke(app, ["validate", str(slow_log), "--json"])

        assert result.exit_code == 1
        assert "Cannot load config file" in result.output
