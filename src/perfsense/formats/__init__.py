"""
Artifact format handlers.

PerfSense recognizes three artifact families:
- SPX profiler captures (JSON export or gzip text report)
- MySQL slow-query logs
- HTTP timing captures (CSV or JSON)

Handlers are tried in the order returned by default_handlers().
"""

from __future__ import annotations

from perfsense.config import Config
from perfsense.formats.base import FormatHandler
from perfsense.formats.slow_log import SlowLogHandler
from perfsense.formats.spx import SpxHandler
from perfsense.formats.timings import TimingsHandler


def default_handlers(config: Config | None = None) -> list[FormatHandler]:
    """Handlers in detection order: spx, mysql_slow_log, ttfb_timings."""
    config = config or Config()
    return [
        SpxHandler(
            max_text_gz_bytes=config.max_text_gz_bytes,
            span_walk_max_nodes=config.span_walk_max_nodes,
        ),
        SlowLogHandler(
            max_examples=config.slow_log_max_examples,
            validate_lines=config.slow_log_validate_lines,
        ),
        TimingsHandler(),
    ]


__all__ = [
    "FormatHandler",
    "SlowLogHandler",
    "SpxHandler",
    "TimingsHandler",
    "default_handlers",
]
