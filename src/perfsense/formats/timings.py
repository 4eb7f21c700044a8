"""
HTTP timing capture handler.

Two flavors are accepted:

CSV, with this exact header row:

    url,route,ttfb_ms,wall_ms,cpu_ms,mem_mb

JSON, with a format signature:

    {"format": "ttfb_timings", "version": "1", "requests": [{...}, ...]}

Each row or request object becomes one RequestProfile without spans.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from pathlib import Path
from typing import Any

from perfsense.exceptions import ParseError
from perfsense.formats.base import FormatHandler, to_number
from perfsense.models import (
    ArtifactDescriptor,
    EvidenceRef,
    LineRange,
    ParsedArtifact,
    RequestProfile,
    ValidationResult,
)

logger = logging.getLogger(__name__)

CSV_VERSION = "csv-v1"
CSV_HEADER = ["url", "route", "ttfb_ms", "wall_ms", "cpu_ms", "mem_mb"]
JSON_FORMAT = "ttfb_timings"

UNKNOWN_ENDPOINT = "unknown_endpoint"


def _endpoint(route: Any, url: Any) -> str:
    for candidate in (route, url):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return UNKNOWN_ENDPOINT


def _read_text(path: str) -> str:
    return Path(path).read_text(encoding="utf-8-sig")


class TimingsHandler(FormatHandler):
    """Handler for TTFB timing captures (CSV or JSON)."""

    @property
    def format_type(self) -> str:
        return "ttfb_timings"

    def validate(self, descriptor: ArtifactDescriptor) -> ValidationResult:
        try:
            content = _read_text(descriptor.path)
        except (OSError, UnicodeDecodeError):
            return self.reject(descriptor, "cannot read file")

        stripped = content.strip()
        if not stripped:
            return self.reject(descriptor, "empty file")

        if stripped[0] in "{[":
            return self._validate_json(descriptor, stripped)

        first_line = stripped.splitlines()[0].strip()
        header = next(csv.reader([first_line]), [])
        if header != CSV_HEADER:
            return self.reject(descriptor, "unsupported timings csv header")

        return self.accept(descriptor, CSV_VERSION)

    def _validate_json(self, descriptor: ArtifactDescriptor, content: str) -> ValidationResult:
        try:
            document = json.loads(content)
        except (json.JSONDecodeError, RecursionError):
            return self.reject(descriptor, "invalid json")

        if (
            isinstance(document, dict)
            and document.get("format") == JSON_FORMAT
            and isinstance(document.get("version"), str)
            and isinstance(document.get("requests"), list)
        ):
            return self.accept(descriptor, document["version"])

        return self.reject(descriptor, "unsupported timings json signature")

    def parse(
        self,
        descriptor: ArtifactDescriptor,
        validation: ValidationResult,
    ) -> ParsedArtifact:
        try:
            content = _read_text(descriptor.path)
        except (OSError, UnicodeDecodeError) as e:
            raise ParseError(f"Cannot open artifact: {e}", source=descriptor.path) from e

        if validation.detected_version == CSV_VERSION:
            profiles = self._parse_csv(descriptor.path, content)
        else:
            profiles = self._parse_json(descriptor.path, content)

        logger.debug("Parsed %d timing records from %s", len(profiles), descriptor.path)
        return ParsedArtifact(
            source=self.source_artifact(descriptor, validation),
            request_profiles=tuple(profiles),
        )

    def _parse_csv(self, path: str, content: str) -> list[RequestProfile]:
        profiles = []
        reader = csv.reader(io.StringIO(content))
        header_line = None

        for row in reader:
            line_no = reader.line_num
            if header_line is None:
                if [cell.strip() for cell in row] == CSV_HEADER:
                    header_line = line_no
                continue

            if len(row) != len(CSV_HEADER):
                logger.debug("Skipping timings row at line %d: %d columns", line_no, len(row))
                continue

            url, route, ttfb, wall, cpu, mem = row
            profiles.append(
                RequestProfile(
                    endpoint=_endpoint(route, url),
                    ttfb_ms=to_number(ttfb),
                    wall_ms=to_number(wall) or 0.0,
                    cpu_ms=to_number(cpu),
                    mem_mb=to_number(mem),
                    evidence=(
                        EvidenceRef(
                            source=self.format_type,
                            file=path,
                            line_range=LineRange(line_no, line_no),
                            record_id=f"timings-csv:{line_no - header_line}",
                            extraction_note="ttfb_ms, wall_ms, cpu_ms and mem_mb extracted from csv row",
                        ),
                    ),
                )
            )
        return profiles

    def _parse_json(self, path: str, content: str) -> list[RequestProfile]:
        try:
            document = json.loads(content)
        except (json.JSONDecodeError, RecursionError) as e:
            raise ParseError(f"Invalid timings json: {e}", source=path) from e

        requests = document.get("requests") if isinstance(document, dict) else None
        if not isinstance(requests, list):
            return []

        profiles = []
        for index, request in enumerate(requests):
            if not isinstance(request, dict):
                logger.debug("Skipping timings request %d: not an object", index)
                continue
            profiles.append(
                RequestProfile(
                    endpoint=_endpoint(request.get("route"), request.get("url")),
                    ttfb_ms=to_number(request.get("ttfb_ms")),
                    wall_ms=to_number(request.get("wall_ms")) or 0.0,
                    cpu_ms=to_number(request.get("cpu_ms")),
                    mem_mb=to_number(request.get("mem_mb")),
                    evidence=(
                        EvidenceRef(
                            source=self.format_type,
                            file=path,
                            record_id=f"timings-json:{index}",
                            extraction_note="ttfb_ms, wall_ms, cpu_ms and mem_mb extracted from request object",
                        ),
                    ),
                )
            )
        return profiles
