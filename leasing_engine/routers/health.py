# leasing_engine/routers/health.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db

log = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=dict)
def health(db: Session = Depends(get_db)):
    db_ok = True
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        log.exception("health check: database unreachable")
        db_ok = False
    return {
        "ok": db_ok,
        "version": settings.app_version,
        "env": settings.app_env,
        "database": "ok" if db_ok else "unreachable",
        "leasing_jobs_enabled": settings.leasing_jobs_enabled,
    }
