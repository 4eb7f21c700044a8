"""
Shared fixtures: synthetic artifacts written into tmp_path.
"""

from __future__ import annotations

import gzip
import json
from pathlib import Path
from typing import Any, Callable

import pytest

from perfsense.config import reset_config

SPX_PREFIX = "spx-full-20240101_120000-web01-4242-7"

SLOW_LOG = """\
# Time: 2024-01-01T12:00:00.000000Z
# User@Host: app[app] @ localhost []
# Query_time: 1.500000  Lock_time: 0.000200 Rows_sent: 1  Rows_examined: 5000
SET timestamp=1704110400;
SELECT * FROM orders WHERE customer_id = 42;
# Time: 2024-01-01T12:00:01.000000Z
# User@Host: app[app] @ localhost []
# Query_time: 2.500000  Lock_time: 0.000100 Rows_sent: 1  Rows_examined: 7000
SET timestamp=1704110401;
select * from orders where customer_id=7;
# Time: 2024-01-01T12:00:02.000000Z
# Query_time: 0.000000  Lock_time: 0.000000 Rows_sent: 0  Rows_examined: 0
SET timestamp=1704110402;
SELECT 1;
# Time: 2024-01-01T12:00:03.000000Z
# Query_time: 0.300000  Lock_time: 0.000000 Rows_sent: 0  Rows_examined: 10
use shop;
SET timestamp=1704110403;
UPDATE users SET name = 'bob' WHERE id = 3;
"""

SPX_JSON = {
    "requests": [
        {
            "route": "/checkout",
            "wall_ms": 1200,
            "ttfb_ms": 900,
            "cpu_ms": 300,
            "mem_mb": 12.5,
            "calls": [
                {
                    "function": "App\\Kernel::handle",
                    "self_ms": 20,
                    "total_ms": 1150,
                    "children": [
                        {"function": "PDO::execute", "self_ms": 450, "total_ms": 450},
                    ],
                },
                {"name": "no-timing-here"},
            ],
        }
    ]
}

SPX_TEXT = """\
[Functions]
App\\Kernel::handle | self_ms: 12.5 | total_ms: 830
=== Hot paths ===
PDO::execute, self_ms=400, total_ms=420
render   30ms   60ms
this line is not a span
"""

TIMINGS_CSV = """\
url,route,ttfb_ms,wall_ms,cpu_ms,mem_mb
https://shop.test/checkout,/checkout,900,1200,300,12.5
https://shop.test/search,,150,abc,,
bad,row
https://shop.test/x, ,n/a,50,1,2
"""


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch):
    """Keep PERFSENSE_* settings from the host out of every test."""
    for name in [
        "PERFSENSE_CONFIG_FILE",
        "PERFSENSE_STORAGE_DIR",
        "PERFSENSE_MAX_TEXT_GZ_BYTES",
        "PERFSENSE_SPAN_WALK_MAX_NODES",
        "PERFSENSE_SLOW_LOG_MAX_EXAMPLES",
        "PERFSENSE_SLOW_LOG_VALIDATE_LINES",
        "PERFSENSE_DEFAULT_TOP_N",
    ]:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def write_text(tmp_path: Path) -> Callable[[str, str], Path]:
    def _write(name: str, content: str) -> Path:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def write_json(tmp_path: Path) -> Callable[[str, Any], Path]:
    def _write(name: str, payload: Any) -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def write_gzip(tmp_path: Path) -> Callable[[str, str], Path]:
    def _write(name: str, content: str) -> Path:
        path = tmp_path / name
        with gzip.open(path, "wb") as f:
            f.write(content.encode("utf-8"))
        return path

    return _write


@pytest.fixture
def slow_log(write_text) -> Path:
    return write_text("slow.log", SLOW_LOG)


@pytest.fixture
def spx_json(write_json) -> Path:
    return write_json(f"{SPX_PREFIX}.json", SPX_JSON)


@pytest.fixture
def spx_text(write_gzip) -> Path:
    return write_gzip(f"{SPX_PREFIX}.txt.gz", SPX_TEXT)


@pytest.fixture
def timings_csv(write_text) -> Path:
    return write_text("timings.csv", TIMINGS_CSV)


@pytest.fixture
def timings_json(write_json) -> Path:
    return write_json(
        "timings.json",
        {
            "format": "ttfb_timings",
            "version": "2024.1",
            "requests": [
                {"url": "/a", "wall_ms": "12.5"},
                "junk",
                {"route": "/b", "ttfb_ms": 700},
            ],
        },
    )
