# leasing_engine/services/guards.py
from __future__ import annotations

from typing import Any


def require(**values: Any) -> None:
    """Missing identifiers are caller bugs, not business outcomes: raise."""
    missing = [k for k, v in values.items() if v is None or (isinstance(v, str) and not v.strip())]
    if missing:
        raise ValueError(f"Missing required field(s): {', '.join(missing)}")
