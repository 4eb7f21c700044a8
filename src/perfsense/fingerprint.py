"""
SQL statement fingerprinting.

Two statements that differ only in literal values, whitespace or letter
case share a fingerprint, so repeated executions of the same query shape
land in one bucket:

    >>> fingerprint("SELECT * FROM t WHERE id=1") == fingerprint(
    ...     "select * from t where id = 2")
    True

redact() keeps the original case and spacing and is used for
human-readable examples. The fingerprint additionally drops whitespace
around operators and punctuation, so "id=1" and "id = 2" match.
"""

from __future__ import annotations

import hashlib
import re

_SINGLE_QUOTED = re.compile(r"'(?:''|[^'])*'")
_DOUBLE_QUOTED = re.compile(r'"(?:""|[^"])*"')
_NUMBER = re.compile(r"\b\d+(?:\.\d+)?\b")
_WHITESPACE = re.compile(r"\s+")
_OPERATOR_SPACING = re.compile(r"\s*([=<>!,();+\-*/%|&])\s*")


def _collapse(sql: str) -> str:
    return _WHITESPACE.sub(" ", sql.strip())


def redact(sql: str) -> str:
    """Replace string and numeric literals with placeholders, collapse whitespace."""
    sql = _SINGLE_QUOTED.sub("'?'", sql)
    sql = _DOUBLE_QUOTED.sub('"?"', sql)
    sql = _NUMBER.sub("?", sql)
    return _collapse(sql)


def normalize(sql: str) -> str:
    """Redacted, lower-cased form that the fingerprint hashes."""
    return _OPERATOR_SPACING.sub(r"\1", _collapse(redact(sql).lower()))


def fingerprint(sql: str) -> str:
    """Lower-case hex SHA-256 of the normalized statement."""
    return hashlib.sha256(normalize(sql).encode("utf-8")).hexdigest()
