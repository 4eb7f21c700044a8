"""
Domain models for PerfSense.

Everything here is a value object: built once by a parser, the snapshot
builder or the analysis engine, then only read. They're designed to be:
- Immutable (frozen): nothing is mutated after construction
- Serializable: to_dict() gives the snake_case wire form
- Canonical: to_dict() output feeds the canonical encoder for hashing

Numeric fields are rounded to 3 decimal places at emission time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def round3(value: float | None) -> float | None:
    """Round to 3 decimal places, passing None through."""
    if value is None:
        return None
    return round(float(value), 3)


class Severity(str, Enum):
    """
    Finding severity tiers.

    P0 is the most severe. Sorting puts P0 first.
    """

    P0 = "P0"
    P1 = "P1"
    P2 = "P2"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def most_severe(cls, *levels: "Severity | None") -> "Severity | None":
        """The more severe of the given levels, ignoring None."""
        present = [level for level in levels if level is not None]
        if not present:
            return None
        return min(present)


_SEVERITY_RANK = {Severity.P0: 0, Severity.P1: 1, Severity.P2: 2}


# ── Input / provenance ───────────────────────────────────────────────────


@dataclass(frozen=True)
class ArtifactDescriptor:
    """A raw artifact path supplied by the caller, with free-form hints."""

    path: str
    hints: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LineRange:
    start: int
    end: int

    def to_dict(self) -> dict[str, int]:
        return {"start": self.start, "end": self.end}


@dataclass(frozen=True)
class EvidenceRef:
    """
    Pointer from a derived fact back to the raw input it came from.

    Attributes:
        source: Format tag of the producing handler (e.g. "spx").
        file: Artifact path.
        line_range: Inclusive line span, for line-oriented formats.
        record_id: Handler-specific record identifier.
        extraction_note: Which fields were read.
    """

    source: str
    file: str
    line_range: LineRange | None = None
    record_id: str | None = None
    extraction_note: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "file": self.file,
            "line_range": self.line_range.to_dict() if self.line_range else None,
            "record_id": self.record_id,
            "extraction_note": self.extraction_note,
        }


@dataclass(frozen=True)
class SourceArtifact:
    """One accepted input artifact."""

    path: str
    type: str
    version: str | None
    sha256: str
    size_bytes: int
    hints: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "type": self.type,
            "version": self.version,
            "sha256": self.sha256,
            "size_bytes": self.size_bytes,
            "hints": self.hints,
        }


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of running one descriptor through the format handlers."""

    path: str
    ok: bool
    detected_type: str | None = None
    detected_version: str | None = None
    errors: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "ok": self.ok,
            "detected_type": self.detected_type,
            "detected_version": self.detected_version,
            "errors": list(self.errors),
            "metadata": self.metadata,
        }


# ── Observations ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Span:
    """
    One call-tree node from a profiler capture.

    self_ms <= total_ms is expected but not enforced; profiler output
    violates it often enough that consumers must tolerate it.
    """

    type: str
    label: str
    self_ms: float
    total_ms: float
    evidence: tuple[EvidenceRef, ...] = ()

    @property
    def score(self) -> float:
        return max(self.self_ms, self.total_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "label": self.label,
            "self_ms": round3(self.self_ms),
            "total_ms": round3(self.total_ms),
            "evidence": [ref.to_dict() for ref in self.evidence],
        }


@dataclass(frozen=True)
class RequestProfile:
    """One observed request execution (or one profiler run)."""

    endpoint: str
    ttfb_ms: float | None
    wall_ms: float
    cpu_ms: float | None = None
    mem_mb: float | None = None
    spans: tuple[Span, ...] = ()
    evidence: tuple[EvidenceRef, ...] = ()

    @property
    def score(self) -> float:
        return max(self.wall_ms, self.ttfb_ms or 0.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "ttfb_ms": round3(self.ttfb_ms),
            "wall_ms": round3(self.wall_ms),
            "cpu_ms": round3(self.cpu_ms),
            "mem_mb": round3(self.mem_mb),
            "spans": [span.to_dict() for span in self.spans],
            "evidence": [ref.to_dict() for ref in self.evidence],
        }


@dataclass(frozen=True)
class DbQuerySample:
    """Aggregated observations of one SQL fingerprint."""

    fingerprint: str
    total_time_ms: float
    avg_time_ms: float
    count: int
    lock_ms: float | None = None
    rows_examined: float | None = None
    examples: tuple[str, ...] = ()
    evidence: tuple[EvidenceRef, ...] = ()

    @property
    def contribution_ms(self) -> float:
        return self.avg_time_ms * self.count

    def to_dict(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "total_time_ms": round3(self.total_time_ms),
            "avg_time_ms": round3(self.avg_time_ms),
            "count": self.count,
            "lock_ms": round3(self.lock_ms),
            "rows_examined": round3(self.rows_examined),
            "examples": list(self.examples),
            "evidence": [ref.to_dict() for ref in self.evidence],
        }


@dataclass(frozen=True)
class ParsedArtifact:
    """Fragment produced by one handler for one artifact."""

    source: SourceArtifact
    request_profiles: tuple[RequestProfile, ...] = ()
    db_query_samples: tuple[DbQuerySample, ...] = ()


@dataclass(frozen=True)
class Snapshot:
    """
    Canonical, content-addressed aggregate of one ingestion batch.

    The id is a pure function of sources, profiles and samples;
    collected_at is informational and does not take part in it.
    """

    id: str
    collected_at: str
    sources: tuple[SourceArtifact, ...] = ()
    request_profiles: tuple[RequestProfile, ...] = ()
    db_query_samples: tuple[DbQuerySample, ...] = ()

    @property
    def span_count(self) -> int:
        return sum(len(profile.spans) for profile in self.request_profiles)

    def content_dict(self) -> dict[str, Any]:
        """The hashed portion of the snapshot."""
        return {
            "sources": [source.to_dict() for source in self.sources],
            "request_profiles": [p.to_dict() for p in self.request_profiles],
            "db_query_samples": [s.to_dict() for s in self.db_query_samples],
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "collected_at": self.collected_at,
            **self.content_dict(),
        }


# ── Analysis output ──────────────────────────────────────────────────────


class Recommendation(BaseModel):
    """An actionable next step with a way to verify it worked."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1)
    verification_step: str = Field(..., min_length=1)
    evidence: tuple[EvidenceRef, ...] = Field(default=(), max_length=3)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "verification_step": self.verification_step,
            "evidence": [ref.to_dict() for ref in self.evidence],
        }


class Finding(BaseModel):
    """
    A severity-classified, evidence-backed observation.

    One per ranked, above-threshold endpoint, span or query. Produced
    fresh on every analysis run.

    Attributes:
        id: Stable id ("endpoint:<sha1>", "span:<sha1>", "query:<fingerprint>").
        title: One-line summary.
        severity: P0, P1 or P2.
        impact_summary: Sentence quoting the measured values.
        metrics: Rounded metric values used for classification.
        recommendations: At most 3 next steps.
        evidence: At most 3 refs, in discovery order.
        aggregation_provenance: Metric name -> how it was derived.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    severity: Severity
    impact_summary: str
    metrics: dict[str, int | float | None] = Field(default_factory=dict)
    recommendations: tuple[Recommendation, ...] = Field(default=(), max_length=3)
    evidence: tuple[EvidenceRef, ...] = Field(default=(), max_length=3)
    aggregation_provenance: dict[str, str] = Field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "severity": self.severity.value,
            "impact_summary": self.impact_summary,
            "metrics": dict(self.metrics),
            "aggregation_provenance": dict(self.aggregation_provenance),
            "evidence": [ref.to_dict() for ref in self.evidence],
            "recommendations": [r.to_dict() for r in self.recommendations],
        }
