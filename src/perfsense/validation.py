"""
Artifact validation orchestrator.

Routes each descriptor through the registered format handlers in order
and keeps the first acceptance. Validation failures are returned as data,
never raised.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

from perfsense.config import Config
from perfsense.formats import FormatHandler, default_handlers
from perfsense.models import ArtifactDescriptor, ValidationResult

logger = logging.getLogger(__name__)


class ArtifactValidator:
    """
    Classifies artifacts by trying each handler in registration order.

    Example:
        validator = ArtifactValidator()
        result = validator.validate_single(ArtifactDescriptor("slow.log"))
        if result.ok:
            handler = validator.resolve_parser(result)
    """

    def __init__(
        self,
        handlers: Sequence[FormatHandler] | None = None,
        config: Config | None = None,
    ) -> None:
        self.handlers = list(handlers) if handlers is not None else default_handlers(config)

    def validate_many(
        self,
        descriptors: Iterable[ArtifactDescriptor],
    ) -> list[ValidationResult]:
        """Validate each descriptor, preserving input order."""
        return [self.validate_single(descriptor) for descriptor in descriptors]

    def validate_single(self, descriptor: ArtifactDescriptor) -> ValidationResult:
        if not descriptor.path:
            return ValidationResult(path=descriptor.path, ok=False, errors=("path is required",))

        if not Path(descriptor.path).is_file():
            return ValidationResult(
                path=descriptor.path, ok=False, errors=("artifact file not found",)
            )

        errors = []
        for handler in self.handlers:
            result = handler.validate(descriptor)
            if result.ok:
                logger.debug(
                    "%s accepted by %s (%s)",
                    descriptor.path,
                    handler.format_type,
                    result.detected_version,
                )
                return result
            if result.errors:
                errors.append(f"{handler.format_type}: {'; '.join(result.errors)}")

        if not errors:
            errors.append("unsupported artifact format")

        logger.debug("%s rejected by all handlers", descriptor.path)
        return ValidationResult(path=descriptor.path, ok=False, errors=tuple(errors))

    def resolve_parser(self, validation: ValidationResult) -> FormatHandler | None:
        """The handler whose format tag matches the detected type."""
        if validation.detected_type is None:
            return None
        for handler in self.handlers:
            if handler.format_type == validation.detected_type:
                return handler
        return None
