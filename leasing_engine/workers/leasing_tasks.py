# leasing_engine/workers/leasing_tasks.py
from __future__ import annotations

import logging

from ..db import SessionLocal
from ..services.leasing_jobs import (
    expire_draft_applications,
    expire_submitted_applications,
    mark_co_applicant_abandonment,
    run_leasing_jobs_once,
)
from ..services.requirements import expire_documents
from ..services.reservations import expire_reservations
from .celery_app import celery_app

log = logging.getLogger(__name__)


@celery_app.task(name="leasing_engine.workers.leasing_tasks.run_leasing_jobs")
def run_leasing_jobs() -> dict:
    """
    One orchestrator tick. Idempotent per candidate key, so overlapping
    deliveries (acks_late redelivery, two beat schedulers) are harmless.
    """
    summary = run_leasing_jobs_once()
    return {"ok": not summary.errors, "summary": summary.as_dict()}


@celery_app.task(name="leasing_engine.workers.leasing_tasks.run_maintenance_sweeps")
def run_maintenance_sweeps() -> dict:
    """
    Bulk expiry sweeps. Each one is its own transaction; a failure in one
    is logged and the rest still run.
    """
    out: dict = {}
    sweeps = (
        ("reservations", expire_reservations),
        ("drafts", expire_draft_applications),
        ("submitted", expire_submitted_applications),
        ("co_applicants", mark_co_applicant_abandonment),
        ("documents", expire_documents),
    )
    for name, fn in sweeps:
        db = SessionLocal()
        try:
            out[name] = fn(db)
        except Exception as e:
            log.exception("maintenance sweep failed", extra={"job_key": name})
            out[name] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        finally:
            db.close()
    return {"ok": all(v.get("ok") for v in out.values()), "sweeps": out}
