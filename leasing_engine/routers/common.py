# leasing_engine/routers/common.py
from __future__ import annotations

from typing import Any, Optional

from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

CONFLICT_CODES = frozenset({"RESERVATION_CONFLICT", "HOLD_CONFLICT"})


def outcome(result: Optional[dict[str, Any]], *, not_found: str = "not found") -> Any:
    """
    Service results go back as-is. NOT_FOUND (or a None result) becomes 404
    and reservation conflicts become 409 with the full body; every other
    business failure is a 200 with ok=false so callers branch on error_code.
    """
    if result is None:
        raise HTTPException(status_code=404, detail=not_found)
    code = result.get("error_code")
    if code == "NOT_FOUND":
        raise HTTPException(status_code=404, detail=not_found)
    if code in CONFLICT_CODES:
        return JSONResponse(status_code=409, content=jsonable_encoder(result))
    return result
