from __future__ import annotations

import json
import math
from typing import Any, Optional


def loads_json(raw: Optional[str], default: Any) -> Any:
    if raw is None or raw == "":
        return default
    try:
        out = json.loads(raw)
    except (TypeError, ValueError):
        return default
    return default if out is None else out


def dumps_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str, ensure_ascii=False)


def deep_merge(base: Any, patch: Any) -> Any:
    """
    Recursive dict merge; nested dicts merge, everything else (lists included)
    is replaced by the patch value.
    """
    if not isinstance(patch, dict):
        return base
    result = dict(base) if isinstance(base, dict) else {}
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def clamp_int(value: Any, *, min_value: int = 0, max_value: int = 365) -> Optional[int]:
    """Floor to int and clamp; None when the value isn't a finite number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(parsed):
        return None
    rounded = math.floor(parsed)
    if rounded < min_value:
        return min_value
    if rounded > max_value:
        return max_value
    return int(rounded)
