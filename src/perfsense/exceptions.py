"""
Package-level exception hierarchy for PerfSense.

All exceptions inherit from PerfSenseError, enabling:
- Catching all PerfSense errors with a single except clause
- Rich context fields for debugging (config_key, source, errors)
- Structured serialization via to_dict() for JSON error responses

Validation failures of individual artifacts are NOT exceptions: they are
returned as ValidationResult values so that one bad file never hides the
verdicts for the others.

Hierarchy:
    PerfSenseError
    ├── ConfigurationError     – Invalid configuration
    │   └── ThresholdError     – Malformed severity threshold overrides
    ├── InvalidRequestError    – Malformed caller input (params, descriptors)
    ├── ParseError             – An accepted artifact could not be read back
    └── SnapshotStoreError     – Snapshot persistence failures
"""

from __future__ import annotations

from typing import Any, Iterable


class PerfSenseError(Exception):
    """
    Base exception for all PerfSense errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON error responses."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
        }


# ── Configuration Errors ─────────────────────────────────────────────────


class ConfigurationError(PerfSenseError):
    """
    Error in configuration.

    Attributes:
        config_key: The configuration key that caused the error (if known).
    """

    def __init__(self, message: str, config_key: str | None = None) -> None:
        self.config_key = config_key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["config_key"] = self.config_key
        return result


class ThresholdError(ConfigurationError):
    """
    One or more threshold overrides are malformed.

    All problems are collected before raising so the caller can fix the
    whole table in one round trip. The message joins them in sorted order.

    Attributes:
        errors: Sorted, de-duplicated list of individual problems.
    """

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors = sorted(set(errors))
        message = "Invalid thresholds: " + "; ".join(self.errors)
        super().__init__(message, config_key="thresholds")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["errors"] = list(self.errors)
        return result


# ── Request Errors ───────────────────────────────────────────────────────


class InvalidRequestError(PerfSenseError):
    """Caller-supplied input has the wrong shape."""
    pass


# ── Parse Errors ─────────────────────────────────────────────────────────


class ParseError(PerfSenseError):
    """
    An artifact that passed validation could not be parsed.

    Attributes:
        source: The artifact path.
    """

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["source"] = self.source
        return result


# ── Storage Errors ───────────────────────────────────────────────────────


class SnapshotStoreError(PerfSenseError):
    """Snapshot could not be written to the store."""
    pass
