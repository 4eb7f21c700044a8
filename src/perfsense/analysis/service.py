"""
Analysis run service.

Loads a stored snapshot, resolves run parameters and thresholds, runs the
engine and shapes the result for callers (CLI, JSON output).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from perfsense.analysis.engine import AnalysisResult, SnapshotAnalysisEngine, clamp_top_n
from perfsense.analysis.thresholds import AnalysisThresholds
from perfsense.config import Config, get_config
from perfsense.exceptions import InvalidRequestError
from perfsense.models import Severity, Snapshot
from perfsense.storage import SnapshotStore

logger = logging.getLogger(__name__)


class AnalysisRunService:
    """Runs the analysis engine against stored or in-memory snapshots."""

    def __init__(
        self,
        store: SnapshotStore,
        engine: SnapshotAnalysisEngine | None = None,
        config: Config | None = None,
    ) -> None:
        self.store = store
        self.engine = engine or SnapshotAnalysisEngine()
        self.config = config or get_config()

    def run(
        self,
        snapshot_id: str,
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """
        Analyze a stored snapshot.

        Args:
            snapshot_id: Id returned by ingestion.
            params: Optional "top_n" (int) and "thresholds" (mapping).

        Returns:
            The analysis document, or None if the snapshot is unknown.

        Raises:
            InvalidRequestError: If "thresholds" is present but not a mapping.
            ThresholdError: If the thresholds are malformed.
        """
        snapshot = self.store.load(snapshot_id)
        if snapshot is None:
            logger.info("Snapshot %s not found", snapshot_id)
            return None
        return self.analyze_snapshot(snapshot, params)

    def analyze_snapshot(
        self,
        snapshot: Snapshot,
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        params = params or {}
        top_n = self._normalize_top_n(params.get("top_n"))
        thresholds = AnalysisThresholds.from_input(self._threshold_input(params))

        result = self.engine.analyze(snapshot, thresholds, top_n)
        return self._to_document(snapshot, result, thresholds, top_n)

    def _normalize_top_n(self, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            return self.config.default_top_n
        return clamp_top_n(value)

    def _threshold_input(self, params: Mapping[str, Any]) -> Mapping[str, Any] | None:
        if "thresholds" in params:
            thresholds = params["thresholds"]
            if not isinstance(thresholds, Mapping):
                raise InvalidRequestError("params.thresholds must be an object when provided.")
            return thresholds
        return self.config.thresholds

    def _to_document(
        self,
        snapshot: Snapshot,
        result: AnalysisResult,
        thresholds: AnalysisThresholds,
        top_n: int,
    ) -> dict[str, Any]:
        by_severity = {
            severity.value: [f.to_dict() for f in result.by_severity(severity)]
            for severity in Severity
        }
        return {
            "normalized_snapshot_id": snapshot.id,
            "summary": {
                "endpoint_count": len(snapshot.request_profiles),
                "query_count": len(snapshot.db_query_samples),
                "finding_count": len(result.findings),
                "p0_count": len(by_severity["P0"]),
                "p1_count": len(by_severity["P1"]),
                "p2_count": len(by_severity["P2"]),
                "top_n": top_n,
            },
            "ranking_thresholds": thresholds.table(),
            "open_questions": list(thresholds.open_questions),
            "aggregates": result.aggregates,
            "findings": [finding.to_dict() for finding in result.findings],
            "findings_by_severity": by_severity,
        }
