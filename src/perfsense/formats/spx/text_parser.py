"""
SPX gzip text report parser.

The text report is read line by line; only lines matching one of the
span grammars below are kept:

    App\\Kernel::handle | self_ms: 12.5 | total_ms: 830
    App\\Kernel::handle, self_ms=12.5, total_ms=830
    App\\Kernel::handle   12.5ms   830ms

Section headers ("[Functions]", "=== Hot paths ===", "--- io ---") are
only used to annotate evidence. The request wall time is inferred from
the largest span total.
"""

from __future__ import annotations

import gzip
import logging
import re
import zlib
from typing import Any

from perfsense.formats.base import to_number
from perfsense.formats.spx.filename import synthetic_endpoint
from perfsense.formats.spx.results import SpxParseResult, sort_spans
from perfsense.models import EvidenceRef, LineRange, RequestProfile, Span

logger = logging.getLogger(__name__)

SPAN_TYPE = "php"

_SECTION_MARKERS = (
    re.compile(r"^\[[^\]]+\]$"),
    re.compile(r"^={3,}.*={3,}$"),
    re.compile(r"^-{3,}.*-{3,}$"),
)

_SPAN_LINES = (
    re.compile(
        r"^(?P<label>[^|]+?)\|\s*self_ms\s*[:=]\s*(?P<self>[\d.]+)"
        r"\s*\|\s*total_ms\s*[:=]\s*(?P<total>[\d.]+)$",
        re.IGNORECASE,
    ),
    re.compile(
        r"^(?P<label>[^,]+),\s*self_ms\s*[:=]\s*(?P<self>[\d.]+)"
        r",\s*total_ms\s*[:=]\s*(?P<total>[\d.]+)$",
        re.IGNORECASE,
    ),
    re.compile(
        r"^(?P<label>\S.+?)\s+(?P<self>[\d.]+)\s*ms\s+(?P<total>[\d.]+)\s*ms$",
        re.IGNORECASE,
    ),
)


def is_section_marker(line: str) -> bool:
    return any(pattern.match(line) for pattern in _SECTION_MARKERS)


def parse_span_line(line: str) -> tuple[str, float, float] | None:
    """Match a stripped line against the span grammars."""
    for pattern in _SPAN_LINES:
        match = pattern.match(line)
        if match is None:
            continue
        self_ms = to_number(match["self"])
        total_ms = to_number(match["total"])
        if self_ms is None or total_ms is None:
            return None
        return match["label"].strip(), self_ms, total_ms
    return None


class SpxTextParser:
    """Parser for spx-text-gz-v1 artifacts."""

    def __init__(self, max_decompressed_bytes: int = 16 * 1024 * 1024) -> None:
        self.max_decompressed_bytes = max_decompressed_bytes

    def parse(self, path: str, metadata: dict[str, Any]) -> SpxParseResult:
        notes: list[str] = []
        spans: list[Span] = []
        section = "root"
        line_no = 0
        consumed = 0

        try:
            with gzip.open(path, "rb") as stream:
                for raw in stream:
                    line_no += 1
                    consumed += len(raw)
                    if consumed > self.max_decompressed_bytes:
                        notes.append(
                            f"decompressed content exceeds {self.max_decompressed_bytes} bytes"
                        )
                        logger.warning("Decompressed size ceiling hit for %s", path)
                        break

                    line = raw.decode("utf-8", errors="replace").strip()
                    if not line:
                        continue
                    if is_section_marker(line):
                        section = line
                        continue

                    parsed = parse_span_line(line)
                    if parsed is None:
                        continue

                    label, self_ms, total_ms = parsed
                    spans.append(
                        Span(
                            type=SPAN_TYPE,
                            label=label,
                            self_ms=self_ms,
                            total_ms=total_ms,
                            evidence=(
                                EvidenceRef(
                                    source="spx",
                                    file=path,
                                    line_range=LineRange(line_no, line_no),
                                    record_id=f"text:{len(spans) + 1}",
                                    extraction_note=f"span metrics extracted from section {section}",
                                ),
                            ),
                        )
                    )
        except FileNotFoundError:
            return SpxParseResult(notes=("cannot open gz file",))
        except (OSError, EOFError, zlib.error) as e:
            notes.append(f"gzip stream ended unexpectedly after line {line_no}: {e}")
            logger.warning("Corrupt gzip stream in %s after line %d", path, line_no)

        wall_ms = max((span.total_ms for span in spans), default=0.0)
        profile = RequestProfile(
            endpoint=synthetic_endpoint(metadata.get("run", {})),
            ttfb_ms=None,
            wall_ms=wall_ms,
            spans=sort_spans(spans),
            evidence=(
                EvidenceRef(
                    source="spx",
                    file=path,
                    line_range=LineRange(1, max(1, line_no)),
                    record_id="text:run",
                    extraction_note="request-level wall_ms inferred from maximum parsed span total_ms",
                ),
            ),
        )
        return SpxParseResult(profiles=(profile,), notes=tuple(notes))
