"""
Snapshot analysis: threshold bands, the ranking engine and the run service.
"""

from perfsense.analysis.engine import AnalysisResult, SnapshotAnalysisEngine
from perfsense.analysis.service import AnalysisRunService
from perfsense.analysis.thresholds import (
    CONSERVATIVE_DEFAULTS,
    AnalysisThresholds,
    SeverityBand,
)

__all__ = [
    "CONSERVATIVE_DEFAULTS",
    "AnalysisResult",
    "AnalysisRunService",
    "AnalysisThresholds",
    "SeverityBand",
    "SnapshotAnalysisEngine",
]
