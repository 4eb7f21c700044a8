"""Shared result type for the SPX parsers."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from perfsense.models import RequestProfile, Span


@dataclass(frozen=True)
class SpxParseResult:
    """Profiles plus recoverable anomalies noted while parsing."""

    profiles: tuple[RequestProfile, ...] = ()
    notes: tuple[str, ...] = ()


def _span_sort_key(span: Span) -> tuple[str, float, float, str]:
    record_id = ""
    if span.evidence:
        record_id = span.evidence[0].record_id or ""
    return (span.label, span.self_ms, span.total_ms, record_id)


def sort_spans(spans: Iterable[Span]) -> tuple[Span, ...]:
    """Deterministic span order: label, self, total, then record id."""
    return tuple(sorted(spans, key=_span_sort_key))
