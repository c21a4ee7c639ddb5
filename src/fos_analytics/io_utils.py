"""orjson-backed JSON file helpers for the import and backfill tools."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import orjson


def load_json(path: Path) -> Any:
    """Load JSON from a file."""
    return orjson.loads(path.read_bytes())


def save_json(obj: Any, path: Path, *, pretty: bool = True) -> None:
    """Save an object as JSON, creating parent directories as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    opts = orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS if pretty else orjson.OPT_SORT_KEYS
    path.write_bytes(orjson.dumps(obj, option=opts))


def load_state(path: Path) -> dict[str, Any]:
    """Load a resumable-job state file; a missing or corrupt file is empty state."""
    if not path.exists():
        return {}
    try:
        payload = load_json(path)
    except orjson.JSONDecodeError:
        return {}
    return payload if isinstance(payload, dict) else {}
