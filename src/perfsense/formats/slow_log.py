"""
MySQL slow-query-log handler.

Records look like:

    # Time: 2024-01-01T12:00:00.000000Z
    # User@Host: app[app] @ localhost []
    # Query_time: 1.250000  Lock_time: 0.000100 Rows_sent: 1  Rows_examined: 5000
    SET timestamp=1704110400;
    SELECT * FROM orders WHERE customer_id = 42;

Every "# Time:" line starts a new record. Records are aggregated per SQL
fingerprint into one DbQuerySample each.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from perfsense.exceptions import ParseError
from perfsense.fingerprint import fingerprint, redact
from perfsense.formats.base import FormatHandler, to_number
from perfsense.models import (
    ArtifactDescriptor,
    DbQuerySample,
    EvidenceRef,
    LineRange,
    ParsedArtifact,
    ValidationResult,
    round3,
)

logger = logging.getLogger(__name__)

VERSION = "mysql-slowlog-v1"

TIME_MARKER = "# Time:"
STATS_MARKER = "# Query_time:"
TIMESTAMP_MARKER = "SET timestamp="

_QUERY_TIME = re.compile(r"Query_time:\s*([\d.]+)")
_LOCK_TIME = re.compile(r"Lock_time:\s*([\d.]+)")
_ROWS_EXAMINED = re.compile(r"Rows_examined:\s*(\d+)")

EXTRACTION_NOTE = (
    "query_time, lock_time, rows_examined and normalized SQL extracted from slow-log record"
)


@dataclass
class _Record:
    start_line: int
    end_line: int
    query_time_sec: float = 0.0
    lock_time_sec: float | None = None
    rows_examined: float | None = None
    sql_lines: list[str] = field(default_factory=list)

    @property
    def sql(self) -> str:
        return "\n".join(self.sql_lines).strip()


@dataclass
class _Bucket:
    total_ms: float = 0.0
    count: int = 0
    lock_ms: float | None = None
    rows_examined: float | None = None
    examples: list[str] = field(default_factory=list)
    evidence: list[EvidenceRef] = field(default_factory=list)


def _capture(pattern: re.Pattern[str], line: str) -> float | None:
    match = pattern.search(line)
    if match is None:
        return None
    return to_number(match.group(1))


class SlowLogHandler(FormatHandler):
    """Handler for MySQL slow-query logs."""

    def __init__(self, max_examples: int = 3, validate_lines: int = 500) -> None:
        self.max_examples = max_examples
        self.validate_lines = validate_lines

    @property
    def format_type(self) -> str:
        return "mysql_slow_log"

    def validate(self, descriptor: ArtifactDescriptor) -> ValidationResult:
        has_time = has_stats = has_timestamp = False

        try:
            with open(descriptor.path, encoding="utf-8", errors="replace") as f:
                for line_no, line in enumerate(f, start=1):
                    if line_no > self.validate_lines:
                        break
                    line = line.strip()
                    has_time = has_time or line.startswith(TIME_MARKER)
                    has_stats = has_stats or line.startswith(STATS_MARKER)
                    has_timestamp = has_timestamp or line.startswith(TIMESTAMP_MARKER)
                    if has_time and has_stats and has_timestamp:
                        break
        except OSError:
            return self.reject(descriptor, "cannot read file")

        if not (has_time and has_stats and has_timestamp):
            return self.reject(descriptor, "missing required MySQL slow-log markers")

        return self.accept(descriptor, VERSION)

    def parse(
        self,
        descriptor: ArtifactDescriptor,
        validation: ValidationResult,
    ) -> ParsedArtifact:
        buckets: dict[str, _Bucket] = {}
        record_number = 0
        current: _Record | None = None

        def flush() -> None:
            nonlocal record_number
            if current is None:
                return
            sql = current.sql
            if not sql or current.query_time_sec <= 0:
                logger.debug(
                    "Skipping slow-log record at line %d: no SQL or zero query time",
                    current.start_line,
                )
                return

            record_number += 1
            bucket = buckets.setdefault(fingerprint(sql), _Bucket())
            self._add_record(bucket, current, sql, descriptor.path, record_number)

        try:
            with open(descriptor.path, encoding="utf-8", errors="replace") as f:
                for line_no, line in enumerate(f, start=1):
                    stripped = line.strip()

                    if stripped.startswith(TIME_MARKER):
                        flush()
                        current = _Record(start_line=line_no, end_line=line_no)
                        continue

                    if current is None:
                        continue
                    current.end_line = line_no

                    if stripped.startswith(STATS_MARKER):
                        self._read_stats(current, stripped)
                        continue

                    if (
                        not stripped
                        or stripped.startswith("#")
                        or stripped.startswith(TIMESTAMP_MARKER)
                        or stripped.lower().startswith("use ")
                    ):
                        continue

                    current.sql_lines.append(line.rstrip())
        except OSError as e:
            raise ParseError(f"Cannot open artifact: {e}", source=descriptor.path) from e
        flush()

        samples = tuple(
            self._to_sample(fp, bucket) for fp, bucket in sorted(buckets.items())
        )
        logger.debug(
            "Parsed %d slow-log records into %d fingerprints from %s",
            record_number,
            len(samples),
            descriptor.path,
        )

        return ParsedArtifact(
            source=self.source_artifact(descriptor, validation),
            db_query_samples=samples,
        )

    def _read_stats(self, record: _Record, line: str) -> None:
        query_time = _capture(_QUERY_TIME, line)
        if query_time is not None:
            record.query_time_sec = query_time
        lock_time = _capture(_LOCK_TIME, line)
        if lock_time is not None:
            record.lock_time_sec = lock_time
        rows = _capture(_ROWS_EXAMINED, line)
        if rows is not None:
            record.rows_examined = rows

    def _add_record(
        self,
        bucket: _Bucket,
        record: _Record,
        sql: str,
        path: str,
        record_number: int,
    ) -> None:
        bucket.total_ms += record.query_time_sec * 1000
        bucket.count += 1
        if record.lock_time_sec is not None:
            bucket.lock_ms = (bucket.lock_ms or 0.0) + record.lock_time_sec * 1000
        if record.rows_examined is not None:
            bucket.rows_examined = (bucket.rows_examined or 0.0) + record.rows_examined

        example = redact(sql)
        if example not in bucket.examples and len(bucket.examples) < self.max_examples:
            bucket.examples.append(example)

        bucket.evidence.append(
            EvidenceRef(
                source=self.format_type,
                file=path,
                line_range=LineRange(record.start_line, record.end_line),
                record_id=f"slowlog:{record_number}",
                extraction_note=EXTRACTION_NOTE,
            )
        )

    def _to_sample(self, fp: str, bucket: _Bucket) -> DbQuerySample:
        return DbQuerySample(
            fingerprint=fp,
            total_time_ms=round3(bucket.total_ms),
            avg_time_ms=round3(bucket.total_ms / max(1, bucket.count)),
            count=bucket.count,
            lock_ms=round3(bucket.lock_ms),
            rows_examined=round3(bucket.rows_examined),
            examples=tuple(bucket.examples),
            evidence=tuple(bucket.evidence),
        )
