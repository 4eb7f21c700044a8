"""
Base format handler interface.

Every artifact family implements this interface so the validation
orchestrator can try handlers in a fixed order and route accepted
artifacts to the matching parser. New formats are additive: implement
the three members and register the handler.
"""

from __future__ import annotations

import hashlib
import math
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from perfsense.models import (
    ArtifactDescriptor,
    ParsedArtifact,
    SourceArtifact,
    ValidationResult,
)

_NUMERIC_STRING = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?\s*$")


class FormatHandler(ABC):
    """Base class for artifact format handlers."""

    @property
    @abstractmethod
    def format_type(self) -> str:
        """Return the format tag (e.g. 'spx', 'mysql_slow_log')."""
        pass

    @abstractmethod
    def validate(self, descriptor: ArtifactDescriptor) -> ValidationResult:
        """
        Decide whether the artifact belongs to this format.

        Must only read the file. Must not raise for unreadable or
        malformed content: report it in ValidationResult.errors.
        """
        pass

    @abstractmethod
    def parse(
        self,
        descriptor: ArtifactDescriptor,
        validation: ValidationResult,
    ) -> ParsedArtifact:
        """
        Parse an artifact that this handler validated.

        Args:
            descriptor: The artifact to parse.
            validation: The ok=True result returned by validate().
        """
        pass

    def reject(
        self,
        descriptor: ArtifactDescriptor,
        *errors: str,
        metadata: dict[str, Any] | None = None,
    ) -> ValidationResult:
        return ValidationResult(
            path=descriptor.path,
            ok=False,
            errors=tuple(errors),
            metadata=metadata or {},
        )

    def accept(
        self,
        descriptor: ArtifactDescriptor,
        version: str,
        metadata: dict[str, Any] | None = None,
    ) -> ValidationResult:
        return ValidationResult(
            path=descriptor.path,
            ok=True,
            detected_type=self.format_type,
            detected_version=version,
            metadata=metadata or {},
        )

    def source_artifact(
        self,
        descriptor: ArtifactDescriptor,
        validation: ValidationResult,
        hints: dict[str, Any] | None = None,
    ) -> SourceArtifact:
        """Build the SourceArtifact record with content hash and size."""
        path = Path(descriptor.path)
        return SourceArtifact(
            path=descriptor.path,
            type=self.format_type,
            version=validation.detected_version,
            sha256=file_sha256(path),
            size_bytes=path.stat().st_size,
            hints=dict(descriptor.hints) if hints is None else hints,
        )


def file_sha256(path: Path, chunk_size: int = 65536) -> str:
    """Streaming SHA-256 of a file's raw bytes."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def to_number(value: Any) -> float | None:
    """
    Coerce a decoded value to float when it is numeric.

    Accepts ints, floats and numeric strings. Booleans, non-finite values
    and anything else are treated as absent.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and _NUMERIC_STRING.match(value):
        number = float(value)
    else:
        return None
    if not math.isfinite(number):
        return None
    return number
