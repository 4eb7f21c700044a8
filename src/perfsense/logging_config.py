"""
Logging setup for the command line.

Library modules only create module-level loggers; handlers are attached
here, once, by the CLI entry point.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(verbose: bool = False) -> logging.Logger:
    """
    Route log records to stderr through rich.

    Args:
        verbose: DEBUG level when set, WARNING otherwise.

    Returns:
        The "perfsense" package logger.
    """
    level = logging.DEBUG if verbose else logging.WARNING

    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        show_time=verbose,
        show_path=verbose,
    )
    logging.basicConfig(level=level, format="%(message)s", datefmt="[%X]", handlers=[handler], force=True)

    logger = logging.getLogger("perfsense")
    logger.setLevel(level)
    return logger
