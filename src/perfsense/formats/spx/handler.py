"""
SPX profiler format handler.

Accepts files named by the SPX filename grammar, in either the JSON
export (spx-json-v2) or the gzip text report (spx-text-gz-v1) flavor.
"""

from __future__ import annotations

import gzip
import json
import logging
import zlib
from pathlib import Path
from typing import Any

from perfsense.config import DEFAULT_MAX_TEXT_GZ_BYTES
from perfsense.formats.base import FormatHandler
from perfsense.formats.spx.filename import SpxFilename
from perfsense.formats.spx.json_parser import SpxJsonParser
from perfsense.formats.spx.results import SpxParseResult
from perfsense.formats.spx.text_parser import SpxTextParser
from perfsense.models import ArtifactDescriptor, ParsedArtifact, ValidationResult

logger = logging.getLogger(__name__)

JSON_VERSION = "spx-json-v2"
TEXT_GZ_VERSION = "spx-text-gz-v1"

_PROBE_CHUNK = 8192


class SpxHandler(FormatHandler):
    """
    Handler for SPX profiler captures.

    Validation never parses spans. For the text flavor it only measures
    the decompressed size against the configured ceiling.
    """

    def __init__(
        self,
        max_text_gz_bytes: int = DEFAULT_MAX_TEXT_GZ_BYTES,
        span_walk_max_nodes: int = 50_000,
    ) -> None:
        self.max_text_gz_bytes = max_text_gz_bytes
        self.json_parser = SpxJsonParser(max_nodes=span_walk_max_nodes)
        self.text_parser = SpxTextParser(max_decompressed_bytes=max_text_gz_bytes)

    @property
    def format_type(self) -> str:
        return "spx"

    def validate(self, descriptor: ArtifactDescriptor) -> ValidationResult:
        filename = SpxFilename.try_parse(descriptor.path)
        if filename is None:
            return self.reject(descriptor, "unsupported SPX filename signature")

        metadata = filename.metadata(
            has_json=filename.json_path.is_file(),
            has_text_gz=filename.text_gz_path.is_file(),
        )

        if filename.is_json:
            return self._validate_json(descriptor, metadata)
        return self._validate_text_gz(descriptor, metadata)

    def _validate_json(
        self,
        descriptor: ArtifactDescriptor,
        metadata: dict[str, Any],
    ) -> ValidationResult:
        try:
            content = Path(descriptor.path).read_text(encoding="utf-8")
        except OSError:
            return self.reject(descriptor, "cannot read file", metadata=metadata)
        except UnicodeDecodeError:
            return self.reject(descriptor, "invalid json", metadata=metadata)

        try:
            document = json.loads(content)
        except (json.JSONDecodeError, RecursionError):
            return self.reject(descriptor, "invalid json", metadata=metadata)

        if not isinstance(document, (dict, list)):
            return self.reject(
                descriptor, "spx json root must be object/array", metadata=metadata
            )

        return self.accept(descriptor, JSON_VERSION, metadata)

    def _validate_text_gz(
        self,
        descriptor: ArtifactDescriptor,
        metadata: dict[str, Any],
    ) -> ValidationResult:
        try:
            stream = gzip.open(descriptor.path, "rb")
        except OSError:
            return self.reject(descriptor, "cannot open gzip stream", metadata=metadata)

        decompressed = 0
        try:
            with stream:
                while decompressed <= self.max_text_gz_bytes:
                    chunk = stream.read(_PROBE_CHUNK)
                    if not chunk:
                        break
                    decompressed += len(chunk)
        except (OSError, EOFError, zlib.error):
            return self.reject(descriptor, "cannot read gzip stream", metadata=metadata)

        if decompressed > self.max_text_gz_bytes:
            return self.reject(
                descriptor,
                f"decompressed content exceeds {self.max_text_gz_bytes} bytes",
                metadata=metadata,
            )

        return self.accept(descriptor, TEXT_GZ_VERSION, metadata)

    def parse(
        self,
        descriptor: ArtifactDescriptor,
        validation: ValidationResult,
    ) -> ParsedArtifact:
        metadata = dict(validation.metadata)

        if validation.detected_version == JSON_VERSION:
            result = self.json_parser.parse(descriptor.path, metadata)
        elif validation.detected_version == TEXT_GZ_VERSION:
            result = self.text_parser.parse(descriptor.path, metadata)
        else:
            result = SpxParseResult()

        notes = list(result.notes)
        pairing = metadata.get("pairing")
        if isinstance(pairing, dict) and pairing.get("status") == "partial":
            notes.append(f"pairing counterpart not found: {pairing.get('counterpart_path')}")

        if notes:
            metadata["parse_notes"] = notes
            logger.debug("SPX parse notes for %s: %s", descriptor.path, notes)

        hints = {**descriptor.hints, "spx": metadata}
        return ParsedArtifact(
            source=self.source_artifact(descriptor, validation, hints=hints),
            request_profiles=result.profiles,
        )
