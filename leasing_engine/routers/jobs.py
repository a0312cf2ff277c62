# leasing_engine/routers/jobs.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import Principal, require_operator, require_owner
from ..db import get_db
from ..services.leasing_jobs import (
    expire_draft_applications,
    expire_submitted_applications,
    list_job_runs,
    mark_co_applicant_abandonment,
    run_leasing_jobs_once,
)
from ..services.reservations import expire_reservations

router = APIRouter(prefix="/leasing/jobs", tags=["leasing-jobs"])


@router.post("/run", response_model=dict)
def run_once(p: Principal = Depends(require_owner)):
    """Manual tick; same code path as the scheduled runner."""
    summary = run_leasing_jobs_once()
    return {"ok": not summary.errors, "summary": summary.as_dict()}


@router.post("/maintenance", response_model=dict)
def maintenance(
    draft_ttl_days: Optional[int] = Query(default=None, ge=1, le=365),
    inactivity_days: Optional[int] = Query(default=None, ge=1, le=60),
    db: Session = Depends(get_db),
    p: Principal = Depends(require_owner),
):
    return {
        "ok": True,
        "reservations": expire_reservations(db),
        "drafts": expire_draft_applications(db, ttl_days=draft_ttl_days),
        "submitted": expire_submitted_applications(db),
        "co_applicants": mark_co_applicant_abandonment(db, inactivity_days=inactivity_days),
    }


@router.get("/runs", response_model=list[dict])
def runs(
    job_key: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    p: Principal = Depends(require_operator),
):
    return list_job_runs(db, org_id=p.org_id, job_key=job_key, limit=limit)
