"""
Snapshot builder.

Folds the fragments produced by the format handlers into one canonical,
content-addressed Snapshot. Identical inputs in any order produce the
same id, because every collection is sorted with a canonical-encoding
tie-break before hashing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from perfsense.canonical import encode_str, sha256_hex
from perfsense.models import (
    DbQuerySample,
    EvidenceRef,
    ParsedArtifact,
    RequestProfile,
    Snapshot,
    SourceArtifact,
    round3,
)

logger = logging.getLogger(__name__)

MAX_EXAMPLES = 3


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class SnapshotBuilder:
    """Builds Snapshots from parsed artifacts."""

    def __init__(self, clock: Callable[[], str] = _utc_now) -> None:
        self.clock = clock

    def build(self, parsed_artifacts: Iterable[ParsedArtifact]) -> Snapshot:
        artifacts = self._dedupe_artifacts(parsed_artifacts)

        sources: list[SourceArtifact] = []
        profiles: list[RequestProfile] = []
        samples: list[DbQuerySample] = []
        for artifact in artifacts:
            sources.append(artifact.source)
            profiles.extend(artifact.request_profiles)
            samples.extend(artifact.db_query_samples)

        sorted_sources = tuple(
            sorted(sources, key=lambda s: (s.path, encode_str(s.to_dict())))
        )
        sorted_profiles = tuple(
            sorted(
                self.dedupe_profiles(profiles),
                key=lambda p: (p.endpoint, encode_str(p.to_dict())),
            )
        )
        sorted_samples = tuple(
            sorted(
                self.merge_samples(samples),
                key=lambda s: (s.fingerprint, encode_str(s.to_dict())),
            )
        )

        snapshot_id = self.snapshot_id(sorted_sources, sorted_profiles, sorted_samples)
        logger.debug(
            "Built snapshot %s: %d sources, %d profiles, %d query samples",
            snapshot_id,
            len(sorted_sources),
            len(sorted_profiles),
            len(sorted_samples),
        )

        return Snapshot(
            id=snapshot_id,
            collected_at=self.clock(),
            sources=sorted_sources,
            request_profiles=sorted_profiles,
            db_query_samples=sorted_samples,
        )

    @staticmethod
    def snapshot_id(
        sources: Iterable[SourceArtifact],
        profiles: Iterable[RequestProfile],
        samples: Iterable[DbQuerySample],
    ) -> str:
        """SHA-256 of the canonical encoding of the three collections."""
        return sha256_hex(
            {
                "sources": [source.to_dict() for source in sources],
                "request_profiles": [profile.to_dict() for profile in profiles],
                "db_query_samples": [sample.to_dict() for sample in samples],
            }
        )

    def _dedupe_artifacts(
        self,
        parsed_artifacts: Iterable[ParsedArtifact],
    ) -> list[ParsedArtifact]:
        """Drop repeated artifacts (same path and content hash)."""
        seen: set[tuple[str, str]] = set()
        unique = []
        for artifact in parsed_artifacts:
            key = (artifact.source.path, artifact.source.sha256)
            if key in seen:
                logger.debug("Ignoring repeated artifact %s", artifact.source.path)
                continue
            seen.add(key)
            unique.append(artifact)
        return unique

    @staticmethod
    def dedupe_profiles(profiles: Iterable[RequestProfile]) -> list[RequestProfile]:
        """Keep one of each canonically identical profile."""
        by_key: dict[str, RequestProfile] = {}
        for profile in profiles:
            by_key.setdefault(sha256_hex(profile.to_dict()), profile)
        return list(by_key.values())

    @staticmethod
    def merge_samples(samples: Iterable[DbQuerySample]) -> list[DbQuerySample]:
        """
        Merge samples that share a fingerprint.

        Totals and counts are summed. lock_ms and rows_examined are summed
        with absent values counted as zero, and stay None only if no
        contributing sample reported them. Each group is folded in canonical
        order, so the result does not depend on artifact order. Examples are
        de-duplicated in that order and capped; evidence is concatenated.
        """
        groups: dict[str, list[DbQuerySample]] = {}
        for sample in samples:
            groups.setdefault(sample.fingerprint, []).append(sample)

        merged = []
        for fingerprint, group in groups.items():
            group.sort(key=lambda sample: encode_str(sample.to_dict()))
            total = sum(sample.total_time_ms for sample in group)
            count = sum(sample.count for sample in group)

            lock_values = [s.lock_ms for s in group if s.lock_ms is not None]
            rows_values = [s.rows_examined for s in group if s.rows_examined is not None]

            examples: list[str] = []
            for sample in group:
                for example in sample.examples:
                    if example not in examples:
                        examples.append(example)

            evidence: list[EvidenceRef] = []
            for sample in group:
                evidence.extend(sample.evidence)

            merged.append(
                DbQuerySample(
                    fingerprint=fingerprint,
                    total_time_ms=round3(total),
                    avg_time_ms=round3(total / count) if count > 0 else 0.0,
                    count=count,
                    lock_ms=round3(sum(lock_values)) if lock_values else None,
                    rows_examined=round3(sum(rows_values)) if rows_values else None,
                    examples=tuple(examples[:MAX_EXAMPLES]),
                    evidence=tuple(evidence),
                )
            )
        return merged
