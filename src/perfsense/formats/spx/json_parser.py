"""
SPX JSON export parser.

Produces exactly one RequestProfile per file. Spans are found by a
breadth-first walk over the primary request context: any object with a
label key and at least one timing key becomes a span.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from pathlib import Path
from typing import Any

from perfsense.formats.base import to_number
from perfsense.formats.spx.filename import synthetic_endpoint
from perfsense.formats.spx.results import SpxParseResult, sort_spans
from perfsense.models import EvidenceRef, RequestProfile, Span

logger = logging.getLogger(__name__)

ENDPOINT_KEYS = ("route", "url", "endpoint", "request_uri", "uri", "path")
SPAN_LABEL_KEYS = ("function", "func", "name", "symbol", "label")
SPAN_SELF_KEYS = ("self_ms", "self_time_ms", "selfTimeMs")
SPAN_TOTAL_KEYS = ("total_ms", "total_time_ms", "totalTimeMs", "duration_ms")
REQUEST_METRICS = ("ttfb_ms", "wall_ms", "cpu_ms", "mem_mb")

SPAN_TYPE = "php"


def _get(container: Any, key: str) -> Any:
    if isinstance(container, dict):
        return container.get(key)
    return None


def _first_string(node: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = node.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _first_number(node: dict[str, Any], keys: tuple[str, ...]) -> float | None:
    for key in keys:
        number = to_number(node.get(key))
        if number is not None:
            return number
    return None


class SpxJsonParser:
    """Parser for spx-json-v2 artifacts."""

    def __init__(self, max_nodes: int = 50_000) -> None:
        self.max_nodes = max_nodes

    def parse(self, path: str, metadata: dict[str, Any]) -> SpxParseResult:
        """
        Parse one SPX JSON file.

        Args:
            path: Artifact path.
            metadata: Validation metadata (run identity, pairing).

        Returns:
            SpxParseResult with one profile, or no profiles and a note if
            the file became unreadable since validation.
        """
        try:
            document = json.loads(Path(path).read_text(encoding="utf-8"))
        except OSError:
            return SpxParseResult(notes=("cannot read json artifact",))
        except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
            return SpxParseResult(notes=(f"invalid json: {e}",))

        if not isinstance(document, (dict, list)):
            return SpxParseResult(notes=("json root must be object/array",))

        context_path, context = self._primary_context(document)
        endpoint = self._resolve_endpoint(context, document, metadata)

        metric_sources: list[str] = []
        metrics: dict[str, float | None] = {}
        for key in REQUEST_METRICS:
            metrics[key] = self._metric(context, document, key, metric_sources)

        spans, truncated = self._walk_spans(context, path, context_path)
        notes: list[str] = []
        if truncated:
            notes.append(f"span walk stopped after {self.max_nodes} nodes")
            logger.warning("SPX span walk truncated for %s", path)

        profile = RequestProfile(
            endpoint=endpoint,
            ttfb_ms=metrics["ttfb_ms"],
            wall_ms=metrics["wall_ms"] or 0.0,
            cpu_ms=metrics["cpu_ms"],
            mem_mb=metrics["mem_mb"],
            spans=sort_spans(spans),
            evidence=(
                EvidenceRef(
                    source="spx",
                    file=path,
                    record_id=f"json:{context_path}",
                    extraction_note=(
                        "request-level metrics extracted from SPX JSON keys: "
                        + ", ".join(metric_sources)
                    ),
                ),
            ),
        )
        return SpxParseResult(profiles=(profile,), notes=tuple(notes))

    def _primary_context(self, document: Any) -> tuple[str, Any]:
        """The first object in a top-level "requests" array, else the root."""
        requests = _get(document, "requests")
        if isinstance(requests, list):
            for index, request in enumerate(requests):
                if isinstance(request, (dict, list)):
                    return f"root.requests.{index}", request
        return "root", document

    def _resolve_endpoint(
        self,
        context: Any,
        document: Any,
        metadata: dict[str, Any],
    ) -> str:
        for key in ENDPOINT_KEYS:
            value = _get(context, key)
            if value is None:
                value = _get(document, key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return synthetic_endpoint(metadata.get("run"))

    def _metric(
        self,
        context: Any,
        document: Any,
        key: str,
        sources: list[str],
    ) -> float | None:
        number = to_number(_get(context, key))
        if number is not None:
            sources.append(f"{key}@context")
            return number

        number = to_number(_get(document, key))
        if number is not None:
            sources.append(f"{key}@root")
            return number

        return None

    def _walk_spans(
        self,
        root: Any,
        file: str,
        base_path: str,
    ) -> tuple[list[Span], bool]:
        spans: list[Span] = []
        queue: deque[tuple[str, Any]] = deque([(base_path, root)])
        visited = 0

        while queue:
            if visited >= self.max_nodes:
                return spans, True
            node_path, node = queue.popleft()
            visited += 1

            if isinstance(node, dict):
                span = self._span_from_node(node, file, node_path)
                if span is not None:
                    spans.append(span)
                children = node.items()
            else:
                children = enumerate(node)

            for key, child in children:
                if isinstance(child, (dict, list)):
                    queue.append((f"{node_path}.{key}", child))

        return spans, False

    def _span_from_node(
        self,
        node: dict[str, Any],
        file: str,
        node_path: str,
    ) -> Span | None:
        label = _first_string(node, SPAN_LABEL_KEYS)
        if label is None:
            return None

        self_ms = _first_number(node, SPAN_SELF_KEYS)
        total_ms = _first_number(node, SPAN_TOTAL_KEYS)
        if self_ms is None and total_ms is None:
            return None

        return Span(
            type=SPAN_TYPE,
            label=label,
            self_ms=self_ms or 0.0,
            total_ms=total_ms or 0.0,
            evidence=(
                EvidenceRef(
                    source="spx",
                    file=file,
                    record_id=f"json:{node_path}",
                    extraction_note="span metrics extracted from SPX JSON object keys",
                ),
            ),
        )
