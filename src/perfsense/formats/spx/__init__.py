"""SPX profiler captures: JSON exports and gzip text reports."""

from perfsense.formats.spx.filename import SpxFilename
from perfsense.formats.spx.handler import JSON_VERSION, TEXT_GZ_VERSION, SpxHandler
from perfsense.formats.spx.json_parser import SpxJsonParser
from perfsense.formats.spx.text_parser import SpxTextParser

__all__ = [
    "JSON_VERSION",
    "TEXT_GZ_VERSION",
    "SpxFilename",
    "SpxHandler",
    "SpxJsonParser",
    "SpxTextParser",
]
