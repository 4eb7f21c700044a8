"""
Severity threshold bands.

Each metric has a band of three descending cut points. A value is
classified into the most severe tier whose cut point it meets or exceeds:

    endpoint_wall_ms = {P0: 2000, P1: 1000, P2: 400}
    2500 -> P0, 1200 -> P1, 500 -> P2, 100 -> None

Custom bands replace the conservative defaults per metric. Any problem in
a supplied override is a hard error: all problems are collected and
raised together, and nothing is partially applied.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from perfsense.exceptions import ThresholdError
from perfsense.models import Severity

ENDPOINT_WALL_MS = "endpoint_wall_ms"
ENDPOINT_TTFB_MS = "endpoint_ttfb_ms"
SPAN_SELF_MS = "span_self_ms"
SPAN_TOTAL_MS = "span_total_ms"
QUERY_TOTAL_TIME_MS = "query_total_time_ms"

SOURCE_DEFAULT = "default_conservative"
SOURCE_CONFIGURED = "configured"

_TIERS = ("P0", "P1", "P2")


@dataclass(frozen=True)
class SeverityBand:
    """Three descending cut points, P0 >= P1 >= P2."""

    p0: int
    p1: int
    p2: int

    def classify(self, value: float) -> Severity | None:
        if value >= self.p0:
            return Severity.P0
        if value >= self.p1:
            return Severity.P1
        if value >= self.p2:
            return Severity.P2
        return None

    def to_dict(self) -> dict[str, int]:
        return {"P0": self.p0, "P1": self.p1, "P2": self.p2}


CONSERVATIVE_DEFAULTS: Mapping[str, SeverityBand] = {
    ENDPOINT_WALL_MS: SeverityBand(2000, 1000, 400),
    ENDPOINT_TTFB_MS: SeverityBand(1500, 800, 300),
    SPAN_SELF_MS: SeverityBand(800, 300, 100),
    SPAN_TOTAL_MS: SeverityBand(1500, 700, 250),
    QUERY_TOTAL_TIME_MS: SeverityBand(10000, 3000, 1000),
}


def _open_question(metric: str) -> str:
    return (
        f'OPEN_QUESTION: provide custom thresholds for "{metric}" '
        "to replace conservative defaults."
    )


def _parse_band(metric: str, raw: Any, errors: list[str]) -> SeverityBand | None:
    if not isinstance(raw, Mapping):
        errors.append(f"{metric}: must be an object with keys P0, P1, P2")
        return None

    values: dict[str, int] = {}
    seen: set[str] = set()
    valid = True
    for key, value in raw.items():
        tier = str(key).upper()
        if tier not in _TIERS:
            errors.append(f'{metric}: unknown key "{key}"')
            valid = False
            continue
        if tier in seen:
            errors.append(f'{metric}: duplicate key "{tier}"')
            valid = False
            continue
        seen.add(tier)

        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{metric}.{tier}: must be an integer")
            valid = False
            continue
        if value <= 0:
            errors.append(f"{metric}.{tier}: must be positive")
            valid = False
            continue
        values[tier] = value

    for tier in _TIERS:
        if tier not in seen:
            errors.append(f'{metric}: missing key "{tier}"')
            valid = False

    if not valid:
        return None

    if not values["P0"] >= values["P1"] >= values["P2"]:
        errors.append(f"{metric}: require P0 >= P1 >= P2")
        return None

    return SeverityBand(values["P0"], values["P1"], values["P2"])


class AnalysisThresholds:
    """
    Resolved threshold table for one analysis run.

    Build it with from_input(); the constructor takes already-validated
    bands.
    """

    def __init__(
        self,
        bands: Mapping[str, SeverityBand],
        sources: Mapping[str, str],
        open_questions: list[str],
    ) -> None:
        self._bands = dict(bands)
        self._sources = dict(sources)
        self.open_questions = sorted(set(open_questions))

    @classmethod
    def defaults(cls) -> "AnalysisThresholds":
        return cls.from_input(None)

    @classmethod
    def from_input(cls, raw: Mapping[str, Any] | None) -> "AnalysisThresholds":
        """
        Resolve thresholds from an optional override mapping.

        Args:
            raw: metric name -> {P0, P1, P2} (keys case-insensitive), or
                None to use the defaults for every metric.

        Raises:
            ThresholdError: If the mapping names an unknown metric, or any
                band is malformed, non-positive or out of order.
        """
        if raw is None:
            return cls(
                CONSERVATIVE_DEFAULTS,
                {metric: SOURCE_DEFAULT for metric in CONSERVATIVE_DEFAULTS},
                [_open_question(metric) for metric in CONSERVATIVE_DEFAULTS],
            )

        if not isinstance(raw, Mapping):
            raise ThresholdError(["thresholds: must be an object keyed by metric name"])

        errors: list[str] = []
        for metric in raw:
            if metric not in CONSERVATIVE_DEFAULTS:
                errors.append(f'unknown metric "{metric}"')

        bands: dict[str, SeverityBand] = {}
        sources: dict[str, str] = {}
        open_questions: list[str] = []
        for metric, default in CONSERVATIVE_DEFAULTS.items():
            if metric not in raw:
                bands[metric] = default
                sources[metric] = SOURCE_DEFAULT
                open_questions.append(_open_question(metric))
                continue

            band = _parse_band(metric, raw[metric], errors)
            if band is not None:
                bands[metric] = band
                sources[metric] = SOURCE_CONFIGURED

        if errors:
            raise ThresholdError(errors)

        return cls(bands, sources, open_questions)

    def band(self, metric: str) -> SeverityBand | None:
        return self._bands.get(metric)

    def severity_for(self, metric: str, value: float) -> Severity | None:
        """Classify a value; None for unknown metrics or below every cut point."""
        band = self._bands.get(metric)
        if band is None:
            return None
        return band.classify(value)

    def source(self, metric: str) -> str:
        return self._sources.get(metric, SOURCE_DEFAULT)

    def table(self) -> dict[str, dict[str, Any]]:
        """Metric -> {P0, P1, P2, source}, sorted by metric name."""
        return {
            metric: {**self._bands[metric].to_dict(), "source": self.source(metric)}
            for metric in sorted(self._bands)
        }
