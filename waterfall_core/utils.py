from __future__ import annotations

import dataclasses
import datetime as _dt
import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict

import numpy as np


# -------------------------
# Path utilities
# -------------------------
def normalize_abs_posix(path: str | Path) -> str:
    """
    Return an absolute POSIX-style path string for the given input.
    Ensures deterministic representation across platforms.
    """
    p = Path(path).resolve()
    return p.as_posix()


# -------------------------
# JSON helpers
# -------------------------
def sanitize_for_json(obj: Any) -> Any:
    """
    Recursively convert arbitrary objects into JSON-serializable Python primitives.

    Conversions performed:
    - objects with to_dict() (Entry, Segment) -> their camelCase dict form
    - pathlib.Path -> normalized POSIX string via normalize_abs_posix()
    - Enums -> .value for str-valued enums, else .name
    - dataclasses -> dict via dataclasses.asdict() then sanitized recursively
    - numpy scalars -> Python int/float via .item()
    - numpy arrays -> lists via .tolist()
    - dicts -> sanitized dict with stringified keys
    - lists/tuples/sets -> lists with sanitized elements
    - datetime.datetime -> ISO-8601 string
    - non-finite floats -> None
    """
    # str-valued enums are also str instances
    if isinstance(obj, Enum):
        return obj.value if isinstance(obj.value, str) else obj.name

    if obj is None or isinstance(obj, (bool, int, str)):
        return obj
    if isinstance(obj, float):
        return obj if np.isfinite(obj) else None

    if callable(getattr(obj, "to_dict", None)) and dataclasses.is_dataclass(obj):
        return sanitize_for_json(obj.to_dict())

    if isinstance(obj, Path):
        return normalize_abs_posix(obj)

    if isinstance(obj, _dt.datetime):
        return obj.isoformat()

    if isinstance(obj, np.generic):
        return sanitize_for_json(obj.item())
    if isinstance(obj, np.ndarray):
        return [sanitize_for_json(x) for x in obj.tolist()]

    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return sanitize_for_json(
            {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
        )

    if isinstance(obj, dict):
        return {
            (k if isinstance(k, str) else str(k)): sanitize_for_json(v)
            for k, v in obj.items()
        }

    if isinstance(obj, (list, tuple, set)):
        return [sanitize_for_json(x) for x in obj]

    return str(obj)


def json_dumps(payload: Any) -> str:
    """Stable, human-readable JSON (indent=2) of a sanitized payload."""
    return json.dumps(sanitize_for_json(payload), ensure_ascii=False, indent=2)


def write_json(path: str | Path, payload: Dict[str, Any]) -> Path:
    """
    Write payload as JSON with UTF-8 encoding and stable formatting (indent=2 for readability).
    """
    p = Path(path)
    p.write_text(json_dumps(payload), encoding="utf-8")
    return p
