"""Command-line interface."""

from perfsense.cli.main import app

__all__ = ["app"]
