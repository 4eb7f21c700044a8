"""
Snapshot analysis engine.

Ranks endpoints, spans and queries of one snapshot, classifies the top N
of each against the threshold bands, and turns every classified entry
into a Finding with evidence and recommendations.

The engine is a pure function of (snapshot, thresholds, top_n) and keeps
no state between calls.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from perfsense.analysis.thresholds import (
    ENDPOINT_TTFB_MS,
    ENDPOINT_WALL_MS,
    QUERY_TOTAL_TIME_MS,
    SPAN_SELF_MS,
    SPAN_TOTAL_MS,
    AnalysisThresholds,
)
from perfsense.canonical import sha1_hex
from perfsense.models import (
    DbQuerySample,
    EvidenceRef,
    Finding,
    Recommendation,
    RequestProfile,
    Severity,
    Snapshot,
    Span,
    round3,
)

logger = logging.getLogger(__name__)

MIN_TOP_N = 1
MAX_TOP_N = 20
MAX_EVIDENCE = 3
MAX_RECOMMENDATIONS = 3


def clamp_top_n(top_n: int) -> int:
    return max(MIN_TOP_N, min(MAX_TOP_N, top_n))


def limit_evidence(evidence: Sequence[EvidenceRef]) -> tuple[EvidenceRef, ...]:
    """First evidence refs in discovery order."""
    return tuple(evidence[:MAX_EVIDENCE])


def _severity_value(severity: Severity | None) -> str | None:
    return severity.value if severity is not None else None


@dataclass
class CategoryResult:
    findings: list[Finding] = field(default_factory=list)
    aggregates: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class AnalysisResult:
    """Findings (globally ordered) and the per-category top-N listings."""

    findings: tuple[Finding, ...]
    top_endpoints: tuple[dict[str, Any], ...] = ()
    top_spans: tuple[dict[str, Any], ...] = ()
    top_queries: tuple[dict[str, Any], ...] = ()

    @property
    def aggregates(self) -> dict[str, list[dict[str, Any]]]:
        return {
            "top_endpoints": list(self.top_endpoints),
            "top_spans": list(self.top_spans),
            "top_queries": list(self.top_queries),
        }

    def by_severity(self, severity: Severity) -> list[Finding]:
        return [finding for finding in self.findings if finding.severity == severity]

    def to_dict(self) -> dict[str, Any]:
        return {
            "findings": [finding.to_dict() for finding in self.findings],
            "aggregates": self.aggregates,
        }


class SnapshotAnalysisEngine:
    """
    Turns a snapshot into severity-ranked findings.

    Example:
        engine = SnapshotAnalysisEngine()
        result = engine.analyze(snapshot, AnalysisThresholds.defaults(), top_n=5)
        for finding in result.findings:
            print(finding.severity, finding.title)
    """

    def analyze(
        self,
        snapshot: Snapshot,
        thresholds: AnalysisThresholds,
        top_n: int = 5,
    ) -> AnalysisResult:
        top_n = clamp_top_n(top_n)

        endpoints = self._analyze_endpoints(
            snapshot.request_profiles, snapshot.db_query_samples, thresholds, top_n
        )
        spans = self._analyze_spans(snapshot.request_profiles, thresholds, top_n)
        queries = self._analyze_queries(snapshot.db_query_samples, thresholds, top_n)

        findings = sorted(
            [*endpoints.findings, *spans.findings, *queries.findings],
            key=lambda f: (f.severity.rank, f.id),
        )
        logger.info(
            "Analyzed snapshot %s: %d findings (top_n=%d)",
            snapshot.id,
            len(findings),
            top_n,
        )

        return AnalysisResult(
            findings=tuple(findings),
            top_endpoints=tuple(endpoints.aggregates),
            top_spans=tuple(spans.aggregates),
            top_queries=tuple(queries.aggregates),
        )

    # ── Endpoints ────────────────────────────────────────────────────────

    def _analyze_endpoints(
        self,
        profiles: Sequence[RequestProfile],
        queries: Sequence[DbQuerySample],
        thresholds: AnalysisThresholds,
        top_n: int,
    ) -> CategoryResult:
        result = CategoryResult()
        ranked = sorted(profiles, key=lambda p: (-p.score, p.endpoint))

        for profile in ranked[:top_n]:
            ttfb_severity = None
            if profile.ttfb_ms is not None:
                ttfb_severity = thresholds.severity_for(ENDPOINT_TTFB_MS, profile.ttfb_ms)
            severity = Severity.most_severe(
                thresholds.severity_for(ENDPOINT_WALL_MS, profile.wall_ms),
                ttfb_severity,
            )

            result.aggregates.append(
                {
                    "endpoint": profile.endpoint,
                    "wall_ms": round3(profile.wall_ms),
                    "ttfb_ms": round3(profile.ttfb_ms),
                    "severity": _severity_value(severity),
                    "evidence": [ref.to_dict() for ref in profile.evidence],
                }
            )
            if severity is not None:
                result.findings.append(self._endpoint_finding(profile, queries, severity))

        return result

    def _endpoint_finding(
        self,
        profile: RequestProfile,
        queries: Sequence[DbQuerySample],
        severity: Severity,
    ) -> Finding:
        evidence = limit_evidence(profile.evidence)
        recommendations = [
            Recommendation(
                id="endpoint-breakdown",
                action=(
                    f'Collect endpoint-level breakdown for "{profile.endpoint}" by comparing '
                    "wall vs CPU vs memory in the same capture window."
                ),
                verification_step=(
                    "Re-run the profiler or timing capture and confirm whether wall_ms "
                    "remains dominant against cpu_ms."
                ),
                evidence=evidence,
            ),
            Recommendation(
                id="endpoint-regression-check",
                action=(
                    f'Run a controlled baseline request set for "{profile.endpoint}" and '
                    "compare p95 wall/ttfb to this snapshot."
                ),
                verification_step=(
                    "Use identical traffic volume and validate that p95/p99 latency trend "
                    "matches this finding."
                ),
                evidence=evidence,
            ),
        ]

        association = self._query_association(profile, queries)
        if association is not None:
            fingerprint, association_evidence = association
            recommendations.append(
                Recommendation(
                    id="endpoint-query-association",
                    action=(
                        f'Inspect query fingerprint "{fingerprint}" in the context of '
                        f'endpoint "{profile.endpoint}" before attempting mitigations.'
                    ),
                    verification_step=(
                        "Trace query call sequence for this endpoint and verify contribution "
                        "with SQL profiling or EXPLAIN ANALYZE."
                    ),
                    evidence=association_evidence,
                )
            )

        impact = f'Endpoint "{profile.endpoint}" reached {profile.wall_ms:.3f}ms wall time'
        if profile.ttfb_ms is not None:
            impact += f" with {profile.ttfb_ms:.3f}ms TTFB"

        return Finding(
            id=f"endpoint:{sha1_hex(profile.endpoint)}",
            title=f"Slow endpoint {profile.endpoint}",
            severity=severity,
            impact_summary=impact + ".",
            metrics={
                "wall_ms": round3(profile.wall_ms),
                "ttfb_ms": round3(profile.ttfb_ms),
                "cpu_ms": round3(profile.cpu_ms),
                "mem_mb": round3(profile.mem_mb),
                "severity_score_ms": round3(profile.score),
            },
            recommendations=tuple(recommendations[:MAX_RECOMMENDATIONS]),
            evidence=evidence,
            aggregation_provenance={
                "wall_ms": "directly from request_profile.wall_ms",
                "ttfb_ms": "directly from request_profile.ttfb_ms when present",
                "severity_score_ms": "max(wall_ms, ttfb_ms)",
            },
        )

    def _query_association(
        self,
        profile: RequestProfile,
        queries: Sequence[DbQuerySample],
    ) -> tuple[str, tuple[EvidenceRef, ...]] | None:
        """First query sharing an evidence file with the profile."""
        files = {ref.file for ref in profile.evidence}
        for query in queries:
            matching = [ref for ref in query.evidence if ref.file in files]
            if matching:
                return query.fingerprint, limit_evidence([*profile.evidence, *matching])
        return None

    # ── Spans ────────────────────────────────────────────────────────────

    def _analyze_spans(
        self,
        profiles: Sequence[RequestProfile],
        thresholds: AnalysisThresholds,
        top_n: int,
    ) -> CategoryResult:
        result = CategoryResult()
        rows = [(profile.endpoint, span) for profile in profiles for span in profile.spans]
        rows.sort(key=lambda row: (-row[1].score, row[1].label, row[0]))

        for endpoint, span in rows[:top_n]:
            severity = Severity.most_severe(
                thresholds.severity_for(SPAN_SELF_MS, span.self_ms),
                thresholds.severity_for(SPAN_TOTAL_MS, span.total_ms),
            )

            result.aggregates.append(
                {
                    "endpoint": endpoint,
                    "span_label": span.label,
                    "span_type": span.type,
                    "self_ms": round3(span.self_ms),
                    "total_ms": round3(span.total_ms),
                    "severity": _severity_value(severity),
                    "evidence": [ref.to_dict() for ref in span.evidence],
                }
            )
            if severity is not None:
                result.findings.append(self._span_finding(endpoint, span, severity))

        return result

    def _span_finding(self, endpoint: str, span: Span, severity: Severity) -> Finding:
        evidence = limit_evidence(span.evidence)
        return Finding(
            id=f"span:{sha1_hex(f'{endpoint}|{span.type}|{span.label}')}",
            title=f"Heavy span {span.label} ({endpoint})",
            severity=severity,
            impact_summary=(
                f'Span "{span.label}" in endpoint "{endpoint}" consumed '
                f"{span.self_ms:.3f}ms self and {span.total_ms:.3f}ms total time."
            ),
            metrics={
                "self_ms": round3(span.self_ms),
                "total_ms": round3(span.total_ms),
                "severity_score_ms": round3(span.score),
            },
            recommendations=(
                Recommendation(
                    id="span-flamegraph",
                    action=f'Profile span "{span.label}" call tree and identify dominant child frames.',
                    verification_step=(
                        "Capture a focused trace and confirm the same span remains in top "
                        "self_ms contributors."
                    ),
                    evidence=evidence,
                ),
                Recommendation(
                    id="span-input-shape",
                    action=(
                        f'Compare input sizes and branching paths that trigger span "{span.label}" '
                        f'in endpoint "{endpoint}".'
                    ),
                    verification_step=(
                        "Replay representative requests and confirm whether span duration "
                        "scales with input shape."
                    ),
                    evidence=evidence,
                ),
            ),
            evidence=evidence,
            aggregation_provenance={
                "self_ms": "directly from span.self_ms",
                "total_ms": "directly from span.total_ms",
                "severity_score_ms": "max(self_ms, total_ms)",
            },
        )

    # ── Queries ──────────────────────────────────────────────────────────

    def _analyze_queries(
        self,
        queries: Sequence[DbQuerySample],
        thresholds: AnalysisThresholds,
        top_n: int,
    ) -> CategoryResult:
        result = CategoryResult()
        ranked = sorted(queries, key=lambda q: (-q.contribution_ms, q.fingerprint))

        for query in ranked[:top_n]:
            contribution = round3(query.contribution_ms)
            severity = thresholds.severity_for(QUERY_TOTAL_TIME_MS, contribution)

            result.aggregates.append(
                {
                    "fingerprint": query.fingerprint,
                    "query_total_time_ms": contribution,
                    "avg_time_ms": round3(query.avg_time_ms),
                    "count": query.count,
                    "severity": _severity_value(severity),
                    "evidence": [ref.to_dict() for ref in query.evidence],
                }
            )
            if severity is not None:
                result.findings.append(self._query_finding(query, contribution, severity))

        return result

    def _query_finding(
        self,
        query: DbQuerySample,
        contribution: float,
        severity: Severity,
    ) -> Finding:
        evidence = limit_evidence(query.evidence)
        return Finding(
            id=f"query:{query.fingerprint}",
            title=f"Slow query fingerprint {query.fingerprint[:12]}",
            severity=severity,
            impact_summary=(
                f"Fingerprint {query.fingerprint} contributes {contribution:.3f}ms total "
                f"estimated time (avg {query.avg_time_ms:.3f}ms x {query.count})."
            ),
            metrics={
                "query_total_time_ms": contribution,
                "avg_time_ms": round3(query.avg_time_ms),
                "count": query.count,
                "reported_total_time_ms": round3(query.total_time_ms),
                "lock_ms": round3(query.lock_ms),
                "rows_examined": round3(query.rows_examined),
            },
            recommendations=(
                Recommendation(
                    id="query-plan",
                    action=(
                        f"Run EXPLAIN ANALYZE for fingerprint {query.fingerprint} "
                        "using representative literals."
                    ),
                    verification_step=(
                        "Confirm scan type, row estimates, and execution time align with "
                        "slow-log evidence."
                    ),
                    evidence=evidence,
                ),
                Recommendation(
                    id="query-index-candidate",
                    action=(
                        "Inspect access path and index coverage for filter/join predicates "
                        "in this fingerprint."
                    ),
                    verification_step=(
                        "Measure avg_time_ms before/after index or rewrite in a controlled "
                        "staging replay."
                    ),
                    evidence=evidence,
                ),
                Recommendation(
                    id="query-volume-check",
                    action=(
                        "Validate whether call frequency can be reduced through caching, "
                        "batching, or deduplication."
                    ),
                    verification_step=(
                        "Track count and total contribution across a second capture window "
                        "after the change."
                    ),
                    evidence=evidence,
                ),
            ),
            evidence=evidence,
            aggregation_provenance={
                "query_total_time_ms": "avg_time_ms * count",
                "reported_total_time_ms": "directly from db_query_sample.total_time_ms",
            },
        )
