"""
Tests for the snapshot analysis engine.
"""

import pytest

from perfsense.analysis import AnalysisThresholds, SnapshotAnalysisEngine
from perfsense.analysis.engine import clamp_top_n, limit_evidence
from perfsense.canonical import sha1_hex
from perfsense.models import (
    DbQuerySample,
    EvidenceRef,
    RequestProfile,
    Severity,
    Snapshot,
    Span,
)


def _ref(file: str, record_id: str = "r") -> EvidenceRef:
    return EvidenceRef(source="test", file=file, record_id=record_id)


def _query(fp: str, avg: float, count: int, file: str = "slow.log") -> DbQuerySample:
    return DbQuerySample(
        fingerprint=fp,
        total_time_ms=avg * count,
        avg_time_ms=avg,
        count=count,
        evidence=(_ref(file, f"slowlog:{fp}"),),
    )


@pytest.fixture
def snapshot() -> Snapshot:
    return Snapshot(
        id="s" * 64,
        collected_at="2024-01-01T00:00:00+00:00",
        request_profiles=(
            RequestProfile(
                endpoint="/slow",
                ttfb_ms=100.0,
                wall_ms=2500.0,
                cpu_ms=400.0,
                spans=(
                    Span(type="php", label="A", self_ms=900.0, total_ms=1000.0, evidence=(_ref("p.json", "a"),)),
                    Span(type="php", label="B", self_ms=10.0, total_ms=20.0),
                ),
                evidence=(_ref("shared.log", "slow"),),
            ),
            RequestProfile(
                endpoint="/mid",
                ttfb_ms=900.0,
                wall_ms=500.0,
                evidence=(_ref("timings.csv", "mid"),),
            ),
            RequestProfile(endpoint="/fast", ttfb_ms=None, wall_ms=50.0),
        ),
        db_query_samples=(
            _query("q1", 2000.0, 6, file="shared.log"),
            _query("q2", 500.0, 3),
            _query("q3", 1.0, 1),
        ),
    )


@pytest.fixture
def engine() -> SnapshotAnalysisEngine:
    return SnapshotAnalysisEngine()


@pytest.fixture
def thresholds() -> AnalysisThresholds:
    return AnalysisThresholds.defaults()


class TestHelpers:
    """Tests for top-N clamping and evidence limits."""

    @pytest.mark.parametrize("value, expected", [(0, 1), (-3, 1), (5, 5), (20, 20), (99, 20)])
    def test_clamp_top_n(self, value, expected):
        assert clamp_top_n(value) == expected

    def test_limit_evidence_keeps_first_three(self):
        refs = [_ref(str(i)) for i in range(5)]

        assert [r.file for r in limit_evidence(refs)] == ["0", "1", "2"]


class TestFindings:
    """Tests for classification and global ordering."""

    def test_global_order_by_severity_then_id(self, engine, snapshot, thresholds):
        result = engine.analyze(snapshot, thresholds, top_n=5)

        assert [(f.severity, f.id) for f in result.findings] == [
            (Severity.P0, f"endpoint:{sha1_hex('/slow')}"),
            (Severity.P0, "query:q1"),
            (Severity.P0, f"span:{sha1_hex('/slow|php|A')}"),
            (Severity.P1, f"endpoint:{sha1_hex('/mid')}"),
            (Severity.P2, "query:q2"),
        ]

    def test_ttfb_can_raise_endpoint_severity(self, engine, snapshot, thresholds):
        result = engine.analyze(snapshot, thresholds)

        mid = next(f for f in result.findings if f.id == f"endpoint:{sha1_hex('/mid')}")
        assert mid.severity == Severity.P1
        assert mid.metrics["severity_score_ms"] == 900.0
        assert mid.impact_summary == 'Endpoint "/mid" reached 500.000ms wall time with 900.000ms TTFB.'

    def test_query_finding_uses_contribution(self, engine, snapshot, thresholds):
        result = engine.analyze(snapshot, thresholds)

        q1 = next(f for f in result.findings if f.id == "query:q1")
        assert q1.metrics["query_total_time_ms"] == 12000.0
        assert q1.metrics["count"] == 6
        assert q1.title == "Slow query fingerprint q1"
        assert [r.id for r in q1.recommendations] == [
            "query-plan",
            "query-index-candidate",
            "query-volume-check",
        ]

    def test_span_finding(self, engine, snapshot, thresholds):
        result = engine.analyze(snapshot, thresholds)

        span = next(f for f in result.findings if f.id.startswith("span:"))
        assert span.title == "Heavy span A (/slow)"
        assert span.evidence[0].record_id == "a"
        assert span.metrics == {"self_ms": 900.0, "total_ms": 1000.0, "severity_score_ms": 1000.0}

    def test_endpoint_query_association(self, engine, snapshot, thresholds):
        result = engine.analyze(snapshot, thresholds)

        slow = next(f for f in result.findings if f.id == f"endpoint:{sha1_hex('/slow')}")
        association = slow.recommendations[2]
        assert association.id == "endpoint-query-association"
        assert '"q1"' in association.action
        assert [r.record_id for r in association.evidence] == ["slow", "slowlog:q1"]

    def test_no_association_without_shared_file(self, engine, snapshot, thresholds):
        result = engine.analyze(snapshot, thresholds)

        mid = next(f for f in result.findings if f.id == f"endpoint:{sha1_hex('/mid')}")
        assert [r.id for r in mid.recommendations] == [
            "endpoint-breakdown",
            "endpoint-regression-check",
        ]

    def test_by_severity(self, engine, snapshot, thresholds):
        result = engine.analyze(snapshot, thresholds)

        assert len(result.by_severity(Severity.P0)) == 3
        assert len(result.by_severity(Severity.P2)) == 1

    def test_custom_thresholds_change_outcome(self, engine, snapshot):
        strict = AnalysisThresholds.from_input({"endpoint_wall_ms": {"P0": 40, "P1": 30, "P2": 20}})

        result = engine.analyze(snapshot, strict)

        fast = next(f for f in result.findings if f.id == f"endpoint:{sha1_hex('/fast')}")
        assert fast.severity == Severity.P0

    def test_empty_snapshot(self, engine, thresholds):
        result = engine.analyze(Snapshot(id="e" * 64, collected_at="x"), thresholds)

        assert result.findings == ()
        assert result.aggregates == {"top_endpoints": [], "top_spans": [], "top_queries": []}

    def test_analysis_is_repeatable(self, engine, snapshot, thresholds):
        first = engine.analyze(snapshot, thresholds).to_dict()
        second = engine.analyze(snapshot, thresholds).to_dict()

        assert first == second


class TestAggregates:
    """Tests for the per-category top-N listings."""

    def test_rankings_include_unclassified_entries(self, engine, snapshot, thresholds):
        aggregates = engine.analyze(snapshot, thresholds, top_n=5).aggregates

        assert [e["endpoint"] for e in aggregates["top_endpoints"]] == ["/slow", "/mid", "/fast"]
        assert aggregates["top_endpoints"][2]["severity"] is None
        assert [s["span_label"] for s in aggregates["top_spans"]] == ["A", "B"]
        assert aggregates["top_spans"][1]["severity"] is None
        assert [q["fingerprint"] for q in aggregates["top_queries"]] == ["q1", "q2", "q3"]
        assert aggregates["top_queries"][0]["query_total_time_ms"] == 12000.0

    def test_top_n_limits_each_category(self, engine, snapshot, thresholds):
        result = engine.analyze(snapshot, thresholds, top_n=1)

        assert len(result.top_endpoints) == 1
        assert len(result.top_spans) == 1
        assert len(result.top_queries) == 1
        assert {f.id.split(":")[0] for f in result.findings} == {"endpoint", "span", "query"}

    def test_top_n_below_one_is_clamped(self, engine, snapshot, thresholds):
        result = engine.analyze(snapshot, thresholds, top_n=0)

        assert len(result.top_endpoints) == 1

    def test_ties_broken_by_name(self, engine, thresholds):
        snapshot = Snapshot(
            id="t" * 64,
            collected_at="x",
            request_profiles=(
                RequestProfile(endpoint="/b", ttfb_ms=None, wall_ms=10.0),
                RequestProfile(endpoint="/a", ttfb_ms=None, wall_ms=10.0),
            ),
        )

        result = engine.analyze(snapshot, thresholds)

        assert [e["endpoint"] for e in result.top_endpoints] == ["/a", "/b"]
