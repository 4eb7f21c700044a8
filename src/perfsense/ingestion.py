"""
Artifact ingestion.

Validate everything first, then parse and build. A single failed
validation aborts the batch: nothing is parsed and nothing is stored.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from perfsense.models import ArtifactDescriptor, ParsedArtifact, Snapshot, ValidationResult
from perfsense.snapshot import SnapshotBuilder
from perfsense.storage import SnapshotStore
from perfsense.validation import ArtifactValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestionResult:
    """Outcome of one ingestion call."""

    snapshot: Snapshot | None
    validation: tuple[ValidationResult, ...]

    @property
    def ok(self) -> bool:
        return self.snapshot is not None

    @property
    def endpoint_count(self) -> int:
        return len(self.snapshot.request_profiles) if self.snapshot else 0

    @property
    def query_count(self) -> int:
        return len(self.snapshot.db_query_samples) if self.snapshot else 0

    @property
    def span_count(self) -> int:
        return self.snapshot.span_count if self.snapshot else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "snapshot_id": self.snapshot.id if self.snapshot else None,
            "collected_at": self.snapshot.collected_at if self.snapshot else None,
            "validation": [result.to_dict() for result in self.validation],
            "endpoint_count": self.endpoint_count,
            "query_count": self.query_count,
            "span_count": self.span_count,
        }


class IngestionService:
    """
    Validates, parses and snapshots a batch of artifacts.

    Example:
        service = IngestionService(store=FilesystemSnapshotStore(".perfsense"))
        result = service.ingest([ArtifactDescriptor("slow.log")])
        if result.ok:
            print(result.snapshot.id)
    """

    def __init__(
        self,
        validator: ArtifactValidator | None = None,
        builder: SnapshotBuilder | None = None,
        store: SnapshotStore | None = None,
    ) -> None:
        self.validator = validator or ArtifactValidator()
        self.builder = builder or SnapshotBuilder()
        self.store = store

    def ingest(
        self,
        descriptors: Sequence[ArtifactDescriptor],
        environment_hints: dict[str, Any] | None = None,
    ) -> IngestionResult:
        validations = self.validator.validate_many(descriptors)
        failed = [v for v in validations if not v.ok]
        if failed:
            logger.info(
                "Ingestion aborted: %d of %d artifacts failed validation",
                len(failed),
                len(validations),
            )
            return IngestionResult(snapshot=None, validation=tuple(validations))

        parsed: list[ParsedArtifact] = []
        for descriptor, validation in zip(descriptors, validations):
            handler = self.validator.resolve_parser(validation)
            if handler is None:
                continue
            parsed.append(handler.parse(descriptor, validation))

        snapshot = self.builder.build(parsed)
        if self.store is not None:
            self.store.persist(snapshot, environment_hints or {})

        result = IngestionResult(snapshot=snapshot, validation=tuple(validations))
        logger.info(
            "Ingested snapshot %s: %d endpoints, %d queries, %d spans",
            snapshot.id,
            result.endpoint_count,
            result.query_count,
            result.span_count,
        )
        return result
