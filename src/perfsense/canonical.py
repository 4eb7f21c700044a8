"""
Canonical JSON encoding.

Deterministic serialization used wherever a stable hash or a stable sort
tie-break is needed: snapshot ids, profile de-duplication keys, and the
secondary sort key of every snapshot collection.

Rules:
- Mapping keys are sorted lexicographically at every level
- Lists and tuples keep their element order
- Integers print without a decimal point, integral floats keep ".0"
- UTF-8 text and "/" are emitted unescaped
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any


def _normalize(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            str(key): _normalize(value[key])
            for key in sorted(value, key=str)
        }
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    return value


def encode(value: Any) -> bytes:
    """Encode a value tree into canonical UTF-8 JSON bytes."""
    normalized = _normalize(value)
    text = json.dumps(
        normalized,
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )
    return text.encode("utf-8")


def encode_str(value: Any) -> str:
    """Canonical encoding as text, for sort keys."""
    return encode(value).decode("utf-8")


def sha256_hex(value: Any) -> str:
    """SHA-256 of the canonical encoding of a value tree."""
    return hashlib.sha256(encode(value)).hexdigest()


def sha1_hex(text: str) -> str:
    """SHA-1 of a plain string (finding ids)."""
    return hashlib.sha1(text.encode("utf-8")).hexdigest()
