"""JSON helpers for coverage and source map documents.

All encoding and decoding goes through orjson. Output is deterministic:
keys sorted, two-space indent.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any

import orjson

JSON_OPTIONS = orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS


def loads_json(raw: str | bytes) -> Any:
    """Decode JSON text. Raises ``orjson.JSONDecodeError`` (a ValueError)."""
    return orjson.loads(raw)


def dumps_json(obj: Any, *, pretty: bool = True) -> str:
    """Encode an object as JSON text with sorted keys."""
    opts = JSON_OPTIONS if pretty else orjson.OPT_SORT_KEYS
    return orjson.dumps(obj, option=opts).decode("utf-8")


def save_json(obj: Any, path: Path, *, pretty: bool = True) -> None:
    """Save an object as JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    opts = JSON_OPTIONS if pretty else orjson.OPT_SORT_KEYS
    path.write_bytes(orjson.dumps(obj, option=opts))
