"""
Configuration system for PerfSense.

Implements 12-factor config principles:
- Environment variables as primary config source
- Optional JSON config file for local development
- Resource ceilings for artifact parsing
- Optional severity threshold overrides

Usage:
    from perfsense.config import get_config

    config = get_config()
    store = FilesystemSnapshotStore(config.storage_dir)

Environment variables:
    PERFSENSE_CONFIG_FILE            path to a JSON config file (wins over env)
    PERFSENSE_STORAGE_DIR            snapshot store root (default: .perfsense)
    PERFSENSE_MAX_TEXT_GZ_BYTES      decompressed ceiling for SPX text dumps
    PERFSENSE_SPAN_WALK_MAX_NODES    node budget for the SPX JSON span walk
    PERFSENSE_SLOW_LOG_MAX_EXAMPLES  redacted examples kept per fingerprint
    PERFSENSE_SLOW_LOG_VALIDATE_LINES  lines scanned for slow-log markers
    PERFSENSE_DEFAULT_TOP_N          ranking depth when none is requested
"""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from perfsense.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_TEXT_GZ_BYTES = 16 * 1024 * 1024


class Config(BaseModel):
    """
    PerfSense configuration.

    Loaded from environment variables or an optional JSON config file.
    """

    model_config = ConfigDict(frozen=True)

    storage_dir: Path = Field(
        default=Path(".perfsense"),
        description="Root directory of the filesystem snapshot store",
    )

    # Parsing ceilings
    max_text_gz_bytes: int = Field(
        default=DEFAULT_MAX_TEXT_GZ_BYTES,
        gt=0,
        description="Maximum decompressed bytes read from an SPX text.gz dump",
    )
    span_walk_max_nodes: int = Field(
        default=50_000,
        gt=0,
        description="Maximum JSON nodes visited while collecting SPX spans",
    )
    slow_log_max_examples: int = Field(
        default=3,
        ge=1,
        le=3,
        description="Redacted SQL examples kept per query fingerprint",
    )
    slow_log_validate_lines: int = Field(
        default=500,
        gt=0,
        description="Lines scanned for slow-log markers during validation",
    )

    # Analysis
    default_top_n: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Ranking depth used when the caller does not pass one",
    )
    thresholds: dict[str, Any] | None = Field(
        default=None,
        description="Severity band overrides, same shape as the analyze input",
    )


def _parse_env_int(name: str, default: int) -> int:
    """Parse integer from environment variable."""
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Could not parse %s=%s, using %d", name, value, default)
        return default


def load_config_from_env() -> Config:
    """Load configuration from PERFSENSE_* environment variables."""
    defaults = Config()
    config_kwargs: dict[str, Any] = {
        "storage_dir": Path(
            os.environ.get("PERFSENSE_STORAGE_DIR", str(defaults.storage_dir))
        ),
        "max_text_gz_bytes": _parse_env_int(
            "PERFSENSE_MAX_TEXT_GZ_BYTES", defaults.max_text_gz_bytes
        ),
        "span_walk_max_nodes": _parse_env_int(
            "PERFSENSE_SPAN_WALK_MAX_NODES", defaults.span_walk_max_nodes
        ),
        "slow_log_max_examples": _parse_env_int(
            "PERFSENSE_SLOW_LOG_MAX_EXAMPLES", defaults.slow_log_max_examples
        ),
        "slow_log_validate_lines": _parse_env_int(
            "PERFSENSE_SLOW_LOG_VALIDATE_LINES", defaults.slow_log_validate_lines
        ),
        "default_top_n": _parse_env_int(
            "PERFSENSE_DEFAULT_TOP_N", defaults.default_top_n
        ),
    }

    try:
        return Config(**config_kwargs)
    except ValidationError as e:
        logger.warning("Invalid PERFSENSE_* environment, using defaults: %s", e)
        return defaults


def load_config_from_file(path: Path) -> Config:
    """
    Load configuration from a JSON file.

    Raises:
        ConfigurationError: If the file cannot be read or does not validate.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, RecursionError) as e:
        raise ConfigurationError(
            f"Cannot load config file {path}: {e}",
            config_key="PERFSENSE_CONFIG_FILE",
        ) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {path} must contain a JSON object",
            config_key="PERFSENSE_CONFIG_FILE",
        )

    try:
        return Config(**data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid config file {path}: {e}",
            config_key="PERFSENSE_CONFIG_FILE",
        ) from e


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the global configuration instance.

    Loads from PERFSENSE_CONFIG_FILE when set, otherwise from the
    environment. Result is cached for the lifetime of the process.
    """
    config_file = os.environ.get("PERFSENSE_CONFIG_FILE")

    if config_file:
        return load_config_from_file(Path(config_file))

    return load_config_from_env()


def reset_config() -> None:
    """Reset the cached configuration (mainly for testing)."""
    get_config.cache_clear()
