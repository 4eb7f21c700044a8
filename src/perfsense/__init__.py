"""PerfSense - performance artifact ingestion and snapshot analysis."""

__version__ = "0.1.0"
__license__ = "MIT"

# Exception hierarchy (import first so other modules can use it)
from perfsense.exceptions import (
    PerfSenseError,
    ConfigurationError,
    ThresholdError,
    InvalidRequestError,
    ParseError,
    SnapshotStoreError,
)

from perfsense.models import (
    ArtifactDescriptor,
    DbQuerySample,
    EvidenceRef,
    Finding,
    LineRange,
    ParsedArtifact,
    Recommendation,
    RequestProfile,
    Severity,
    Snapshot,
    SourceArtifact,
    Span,
    ValidationResult,
)

from perfsense.fingerprint import fingerprint, redact
from perfsense.validation import ArtifactValidator
from perfsense.snapshot import SnapshotBuilder
from perfsense.ingestion import IngestionResult, IngestionService
from perfsense.storage import FilesystemSnapshotStore, SnapshotStore
from perfsense.analysis import (
    AnalysisResult,
    AnalysisRunService,
    AnalysisThresholds,
    SnapshotAnalysisEngine,
)
from perfsense.config import Config, get_config, reset_config

__all__ = [
    "__version__",
    # Exceptions
    "PerfSenseError",
    "ConfigurationError",
    "ThresholdError",
    "InvalidRequestError",
    "ParseError",
    "SnapshotStoreError",
    # Models
    "ArtifactDescriptor",
    "DbQuerySample",
    "EvidenceRef",
    "Finding",
    "LineRange",
    "ParsedArtifact",
    "Recommendation",
    "RequestProfile",
    "Severity",
    "Snapshot",
    "SourceArtifact",
    "Span",
    "ValidationResult",
    # Pipeline
    "fingerprint",
    "redact",
    "ArtifactValidator",
    "SnapshotBuilder",
    "IngestionResult",
    "IngestionService",
    "FilesystemSnapshotStore",
    "SnapshotStore",
    # Analysis
    "AnalysisResult",
    "AnalysisRunService",
    "AnalysisThresholds",
    "SnapshotAnalysisEngine",
    # Config
    "Config",
    "get_config",
    "reset_config",
]
