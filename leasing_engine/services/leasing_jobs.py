# leasing_engine/services/leasing_jobs.py
"""
Background reconciliation for leasing applications.

Each sweep scans for candidates, then handles them one at a time:

  1. resolve the automation policy for the candidate's org/property
     (disabled -> skip)
  2. claim a JobRun by inserting its idempotency key in its own transaction
     (unique violation -> another worker owns it, skip)
  3. do the work and mark the run SUCCESS in one transaction
  4. on any exception the work rolls back and the run is marked FAILED

No transaction spans more than one candidate.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..db import scoped_transaction, session_scope
from ..domain.audit import audit_write
from ..domain.json_fields import clamp_int, dumps_json, loads_json
from ..domain.leasing_states import OPEN_REVIEW_STATUSES
from ..domain.requirement_metadata import parse_requirement_metadata
from ..models import (
    ApplicationNote,
    ApplicationParty,
    DraftSession,
    JobRun,
    LeaseApplication,
    LeasingJob,
    RequirementItem,
)
from .config_resolver import (
    AutomationPolicy,
    config_document,
    resolve_abandonment_days,
    resolve_automation_policy,
    resolve_effective_config,
)
from .mappers import job_run_to_dict
from .requirements import create_info_request
from .reservations import release_reservations_for_application

log = logging.getLogger(__name__)

SCREENING_TIMEOUT = "SCREENING_TIMEOUT"
DOC_EXPIRY = "DOC_EXPIRY"
CO_APPLICANT_REMINDER = "CO_APPLICANT_REMINDER"
CO_APPLICANT_REMINDER_MAXED = "CO_APPLICANT_REMINDER_MAXED"
SUBMITTED_TTL = "SUBMITTED_TTL"

JOB_DESCRIPTIONS = {
    SCREENING_TIMEOUT: "Expire screening requirements past their due date",
    DOC_EXPIRY: "Expire document requirements past their due date",
    CO_APPLICANT_REMINDER: "Remind co-applicants who have not finished",
    CO_APPLICANT_REMINDER_MAXED: "Record that a co-applicant hit the reminder ceiling",
    SUBMITTED_TTL: "Close submitted applications past their TTL",
}

SCREENING_TIMEOUT_MESSAGE = "Screening timed out. Please resubmit screening details."
DOC_EXPIRED_MESSAGE = "Document expired. Please upload a new copy."
REMINDER_NOTE = "Co-applicant reminder sent."

EXPIRABLE_EXCLUDED = ("APPROVED", "WAIVED", "EXPIRED")
PENDING_PARTY_STATUSES = ("INVITED", "IN_PROGRESS")


class JobCandidateError(RuntimeError):
    """A candidate's work hit a business failure; the run is marked FAILED."""


@dataclass
class JobSummary:
    screening_timeouts: int = 0
    doc_expiry: int = 0
    co_applicant_reminders: int = 0
    reminders_maxed: int = 0
    submitted_expired: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


# ----------------------------
# Job runs
# ----------------------------


def ensure_job(db: Session, *, job_key: str) -> int:
    job_id = db.scalar(select(LeasingJob.id).where(LeasingJob.job_key == job_key))
    if job_id is not None:
        return int(job_id)
    try:
        with db.begin_nested():
            job = LeasingJob(job_key=job_key, description=JOB_DESCRIPTIONS.get(job_key))
            db.add(job)
            db.flush()
            return int(job.id)
    except IntegrityError:
        return int(db.scalar(select(LeasingJob.id).where(LeasingJob.job_key == job_key)))


def claim_job_run(
    *,
    org_id: Optional[int],
    job_key: str,
    idempotency_key: str,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    metadata: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Optional[int]:
    """Insert a STARTED run for the key. Returns its id, or None when the key was already claimed."""
    now = now or datetime.utcnow()
    with session_scope() as db:
        job_id = ensure_job(db, job_key=job_key)
        run = JobRun(
            org_id=org_id,
            job_id=job_id,
            job_key=job_key,
            target_type=target_type,
            target_id=target_id,
            idempotency_key=idempotency_key,
            status="STARTED",
            metadata_json=dumps_json(metadata or {}),
            started_at=now,
        )
        try:
            with db.begin_nested():
                db.add(run)
                db.flush()
        except IntegrityError:
            return None

        job = db.get(LeasingJob, job_id)
        if job is not None:
            job.last_run_at = now
        return int(run.id)


def finish_job_run(
    db: Session,
    *,
    run_id: int,
    status: str,
    error: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[JobRun]:
    run = db.get(JobRun, int(run_id))
    if run is None:
        return None
    run.status = status
    run.error = error
    run.finished_at = now or datetime.utcnow()
    db.flush()
    return run


def list_job_runs(db: Session, *, org_id: Optional[int] = None, job_key: Optional[str] = None, limit: int = 100):
    q = select(JobRun)
    if org_id is not None:
        q = q.where(JobRun.org_id == int(org_id))
    if job_key:
        q = q.where(JobRun.job_key == job_key)
    rows = db.scalars(q.order_by(JobRun.started_at.desc(), JobRun.id.desc()).limit(max(1, min(int(limit), 500)))).all()
    return [job_run_to_dict(r) for r in rows]


# ----------------------------
# Candidate plumbing
# ----------------------------


@dataclass(frozen=True)
class _Candidate:
    org_id: int
    property_id: Optional[int]
    application_id: int
    target_type: str
    target_id: int
    data: dict[str, Any]


class _PolicyCache:
    """Automation policy per (org, property) for the length of one tick."""

    def __init__(self, now: datetime):
        self.now = now
        self._cache: dict[tuple, AutomationPolicy] = {}

    def get(self, org_id: int, property_id: Optional[int]) -> AutomationPolicy:
        key = (org_id, property_id)
        if key not in self._cache:
            with session_scope() as db:
                self._cache[key] = resolve_automation_policy(
                    db, org_id=org_id, property_id=property_id, as_of=self.now
                )
        return self._cache[key]


def _scan(stmt) -> list[Any]:
    with session_scope() as db:
        return list(db.execute(stmt).all())


def _run_candidate(
    cand: _Candidate,
    *,
    job_key: str,
    idempotency_key: str,
    work: Callable[[Session, _Candidate, datetime], None],
    now: datetime,
    summary: JobSummary,
) -> bool:
    run_id = claim_job_run(
        org_id=cand.org_id,
        job_key=job_key,
        idempotency_key=idempotency_key,
        target_type=cand.target_type,
        target_id=cand.target_id,
        metadata={"application_id": cand.application_id, **cand.data},
        now=now,
    )
    if run_id is None:
        summary.skipped += 1
        return False

    try:
        with session_scope() as db:
            work(db, cand, now)
            finish_job_run(db, run_id=run_id, status="SUCCESS", now=now)
    except Exception as e:
        log.exception(
            "leasing job candidate failed",
            extra={"job_key": job_key, "run_id": run_id, "org_id": cand.org_id, "application_id": cand.application_id},
        )
        with session_scope() as db:
            finish_job_run(db, run_id=run_id, status="FAILED", error=f"{type(e).__name__}: {e}", now=now)
        summary.failed += 1
        return False
    return True


def _open_application_ids() -> list[str]:
    return sorted(OPEN_REVIEW_STATUSES)


# ----------------------------
# Sweeps
# ----------------------------


def _expirable_requirements(requirement_type: str, now: datetime) -> list[_Candidate]:
    rows = _scan(
        select(
            RequirementItem.id,
            RequirementItem.application_id,
            LeaseApplication.org_id,
            LeaseApplication.property_id,
        )
        .join(LeaseApplication, LeaseApplication.id == RequirementItem.application_id)
        .where(
            RequirementItem.requirement_type == requirement_type,
            RequirementItem.status.not_in(EXPIRABLE_EXCLUDED),
            RequirementItem.due_date.is_not(None),
            RequirementItem.due_date <= now,
            LeaseApplication.status.in_(_open_application_ids()),
        )
        .order_by(RequirementItem.id.asc())
    )
    return [
        _Candidate(
            org_id=r.org_id,
            property_id=r.property_id,
            application_id=r.application_id,
            target_type="requirement_item",
            target_id=r.id,
            data={"requirement_id": r.id},
        )
        for r in rows
    ]


def _expire_requirement_and_rerequest(
    db: Session,
    cand: _Candidate,
    now: datetime,
    *,
    event_type: str,
    message: str,
) -> None:
    req = db.scalar(select(RequirementItem).where(RequirementItem.id == cand.target_id).with_for_update())
    if req is None:
        raise JobCandidateError("requirement not found")

    meta = parse_requirement_metadata(req.requirement_type, loads_json(req.metadata_json, {}))
    if req.requirement_type == "SCREENING":
        meta.timeout = True
    req.status = "EXPIRED"
    req.metadata_json = dumps_json(meta.to_json())
    req.updated_at = now
    db.flush()

    item: dict[str, Any] = {"name": req.name, "requirementType": req.requirement_type, "partyId": req.party_id}
    if meta.document_type:
        item["documentType"] = meta.document_type
    out = create_info_request(
        db,
        org_id=cand.org_id,
        application_id=cand.application_id,
        items_to_request=[item],
        message=message,
        now=now,
    )
    if not out.get("ok"):
        raise JobCandidateError(f"info request failed: {out.get('error_code')}")

    audit_write(
        db,
        org_id=cand.org_id,
        application_id=cand.application_id,
        event_type=event_type,
        target_type="requirement_item",
        target_id=req.id,
        metadata={"requirement_id": req.id},
        created_at=now,
    )


def run_screening_timeouts(now: datetime, summary: JobSummary, policies: _PolicyCache) -> int:
    processed = 0
    for cand in _expirable_requirements("SCREENING", now):
        if not policies.get(cand.org_id, cand.property_id).enabled:
            continue
        ok = _run_candidate(
            cand,
            job_key=SCREENING_TIMEOUT,
            idempotency_key=f"{SCREENING_TIMEOUT}:{cand.target_id}",
            work=lambda db, c, n: _expire_requirement_and_rerequest(
                db, c, n, event_type="SCREENING_TIMEOUT", message=SCREENING_TIMEOUT_MESSAGE
            ),
            now=now,
            summary=summary,
        )
        processed += int(ok)
    return processed


def run_doc_expiry(now: datetime, summary: JobSummary, policies: _PolicyCache) -> int:
    processed = 0
    for cand in _expirable_requirements("DOCUMENT", now):
        if not policies.get(cand.org_id, cand.property_id).enabled:
            continue
        ok = _run_candidate(
            cand,
            job_key=DOC_EXPIRY,
            idempotency_key=f"{DOC_EXPIRY}:{cand.target_id}",
            work=lambda db, c, n: _expire_requirement_and_rerequest(
                db, c, n, event_type="DOCUMENT_EXPIRED", message=DOC_EXPIRED_MESSAGE
            ),
            now=now,
            summary=summary,
        )
        processed += int(ok)
    return processed


def _record_reminders_maxed(db: Session, cand: _Candidate, now: datetime) -> None:
    audit_write(
        db,
        org_id=cand.org_id,
        application_id=cand.application_id,
        event_type="CO_APPLICANT_REMINDER_MAXED",
        target_type="application_party",
        target_id=cand.target_id,
        metadata={"reminder_count": cand.data["reminder_count"]},
        created_at=now,
    )


def _send_co_applicant_reminder(db: Session, cand: _Candidate, now: datetime) -> None:
    party = db.scalar(select(ApplicationParty).where(ApplicationParty.id == cand.target_id).with_for_update())
    if party is None:
        raise JobCandidateError("party not found")

    party.reminder_count = int(party.reminder_count or 0) + 1
    party.last_reminder_at = now
    party.updated_at = now
    db.add(
        ApplicationNote(
            org_id=cand.org_id,
            application_id=cand.application_id,
            author_id=None,
            visibility="INTERNAL_STAFF_ONLY",
            body=REMINDER_NOTE,
            is_pinned=False,
            created_at=now,
            updated_at=now,
        )
    )
    audit_write(
        db,
        org_id=cand.org_id,
        application_id=cand.application_id,
        event_type="CO_APPLICANT_REMINDER_SENT",
        target_type="application_party",
        target_id=party.id,
        metadata={"reminder_count": party.reminder_count},
        created_at=now,
    )


def run_co_applicant_reminders(now: datetime, summary: JobSummary, policies: _PolicyCache) -> int:
    rows = _scan(
        select(
            ApplicationParty.id,
            ApplicationParty.application_id,
            ApplicationParty.reminder_count,
            ApplicationParty.last_reminder_at,
            LeaseApplication.org_id,
            LeaseApplication.property_id,
        )
        .join(LeaseApplication, LeaseApplication.id == ApplicationParty.application_id)
        .where(
            ApplicationParty.role == "CO_APPLICANT",
            ApplicationParty.status.in_(PENDING_PARTY_STATUSES),
            ApplicationParty.abandoned_at.is_(None),
            LeaseApplication.status.in_(_open_application_ids()),
        )
        .order_by(ApplicationParty.id.asc())
    )

    sent = 0
    defaults = AutomationPolicy()
    for r in rows:
        policy = policies.get(r.org_id, r.property_id)
        if not policy.enabled:
            continue
        cadence_days = policy.reminder_cadence_days or defaults.reminder_cadence_days
        max_reminders = policy.max_reminders or defaults.max_reminders
        count = int(r.reminder_count or 0)
        cand = _Candidate(
            org_id=r.org_id,
            property_id=r.property_id,
            application_id=r.application_id,
            target_type="application_party",
            target_id=r.id,
            data={"party_id": r.id, "reminder_count": count},
        )

        if count >= max_reminders:
            if _run_candidate(
                cand,
                job_key=CO_APPLICANT_REMINDER_MAXED,
                idempotency_key=f"{CO_APPLICANT_REMINDER_MAXED}:{r.id}",
                work=_record_reminders_maxed,
                now=now,
                summary=summary,
            ):
                summary.reminders_maxed += 1
            continue

        due_at = r.last_reminder_at + timedelta(days=cadence_days) if r.last_reminder_at else now
        if due_at > now:
            continue

        ok = _run_candidate(
            cand,
            job_key=CO_APPLICANT_REMINDER,
            idempotency_key=f"{CO_APPLICANT_REMINDER}:{r.id}:{count + 1}",
            work=_send_co_applicant_reminder,
            now=now,
            summary=summary,
        )
        sent += int(ok)
    return sent


def _close_expired_application(db: Session, app: LeaseApplication, *, now: datetime, automation: bool) -> None:
    app.status = "CLOSED"
    app.closed_at = now
    app.closed_reason = "EXPIRED"
    app.updated_at = now
    db.flush()
    release_reservations_for_application(
        db,
        org_id=app.org_id,
        application_id=app.id,
        release_reason_code="EXPIRED",
        released_reason="Application expired",
        now=now,
    )
    audit_write(
        db,
        org_id=app.org_id,
        application_id=app.id,
        event_type="APPLICATION_EXPIRED",
        target_type="lease_application",
        target_id=app.id,
        metadata={"automation": automation},
        created_at=now,
    )


def _expire_submitted(db: Session, cand: _Candidate, now: datetime, *, automation: bool = True) -> None:
    app = db.scalar(select(LeaseApplication).where(LeaseApplication.id == cand.application_id).with_for_update())
    if app is None:
        raise JobCandidateError("application not found")
    if app.status not in OPEN_REVIEW_STATUSES:
        return
    _close_expired_application(db, app, now=now, automation=automation)


def _submitted_ttl_query(now: datetime):
    return (
        select(LeaseApplication.id, LeaseApplication.org_id, LeaseApplication.property_id)
        .where(
            LeaseApplication.status.in_(_open_application_ids()),
            LeaseApplication.expires_at.is_not(None),
            LeaseApplication.expires_at <= now,
        )
        .order_by(LeaseApplication.id.asc())
    )


def _expire_submitted_rows(
    rows: list[Any],
    *,
    now: datetime,
    summary: JobSummary,
    policies: Optional[_PolicyCache],
) -> int:
    # policies=None closes regardless of automation settings
    automation = policies is not None
    expired = 0
    for r in rows:
        if policies is not None and not policies.get(r.org_id, r.property_id).enabled:
            continue
        cand = _Candidate(
            org_id=r.org_id,
            property_id=r.property_id,
            application_id=r.id,
            target_type="lease_application",
            target_id=r.id,
            data={},
        )
        ok = _run_candidate(
            cand,
            job_key=SUBMITTED_TTL,
            idempotency_key=f"{SUBMITTED_TTL}:{r.id}",
            work=lambda db, c, n: _expire_submitted(db, c, n, automation=automation),
            now=now,
            summary=summary,
        )
        expired += int(ok)
    return expired


def run_submitted_ttl(now: datetime, summary: JobSummary, policies: _PolicyCache) -> int:
    return _expire_submitted_rows(_scan(_submitted_ttl_query(now)), now=now, summary=summary, policies=policies)


SWEEPS: tuple[tuple[str, Callable[[datetime, JobSummary, _PolicyCache], int]], ...] = (
    ("screening_timeouts", run_screening_timeouts),
    ("doc_expiry", run_doc_expiry),
    ("co_applicant_reminders", run_co_applicant_reminders),
    ("submitted_expired", run_submitted_ttl),
)


def run_leasing_jobs_once(now: Optional[datetime] = None) -> JobSummary:
    """
    One pass over every sweep, in order. Safe to call repeatedly and from
    several processes at once: each candidate is claimed exactly once per key.
    """
    now = now or datetime.utcnow()
    summary = JobSummary()
    policies = _PolicyCache(now)

    for name, sweep in SWEEPS:
        try:
            setattr(summary, name, sweep(now, summary, policies))
        except Exception as e:
            # scan-level failure (DB unreachable etc); later sweeps still run
            log.exception("leasing sweep failed", extra={"job_key": name})
            summary.errors.append(f"{name}: {type(e).__name__}: {e}")

    log.info("leasing jobs tick %s", summary.as_dict(), extra={"job_key": "tick"})
    return summary


# ----------------------------
# Maintenance sweeps (bulk, one transaction each)
# ----------------------------


def expire_draft_applications(
    db: Session,
    *,
    ttl_days: Any = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    now = now or datetime.utcnow()
    days = clamp_int(ttl_days, min_value=1, max_value=365) or settings.draft_ttl_days
    cutoff = now - timedelta(days=days)

    with scoped_transaction(db):
        apps = list(
            db.scalars(
                select(LeaseApplication)
                .where(LeaseApplication.status == "DRAFT", LeaseApplication.created_at <= cutoff)
                .with_for_update()
            ).all()
        )
        for app in apps:
            app.status = "CLOSED"
            app.closed_at = now
            app.closed_reason = "DRAFT_EXPIRED"
            app.updated_at = now
            audit_write(
                db,
                org_id=app.org_id,
                application_id=app.id,
                event_type="APPLICATION_DRAFT_EXPIRED",
                target_type="lease_application",
                target_id=app.id,
                metadata={"ttl_days": days},
                created_at=now,
            )
        db.flush()
        if apps:
            log.info("expired draft applications", extra={"error_code": "DRAFT_EXPIRED"})
        return {"ok": True, "expired": len(apps)}


def expire_submitted_applications(db: Session, *, now: Optional[datetime] = None) -> dict[str, Any]:
    """
    Closes every open application past its TTL, automation settings aside.
    Candidates go through the same SUBMITTED_TTL run keys as the scheduled
    sweep, so an application is closed at most once whichever path gets there first.
    """
    now = now or datetime.utcnow()
    with scoped_transaction(db):
        rows = list(db.execute(_submitted_ttl_query(now)).all())

    summary = JobSummary()
    expired = _expire_submitted_rows(rows, now=now, summary=summary, policies=None)
    return {"ok": summary.failed == 0, "expired": expired, "skipped": summary.skipped, "failed": summary.failed}


def mark_co_applicant_abandonment(
    db: Session,
    *,
    inactivity_days: Any = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Lock co-applicants with no draft-session activity inside the inactivity
    window. The window comes from the property's workflow config
    (coApplicantAbandonment.inactivityDays) and falls back to the argument,
    then to settings. Applications under review go back to NEEDS_INFO.
    """
    now = now or datetime.utcnow()
    fallback = clamp_int(inactivity_days, min_value=1, max_value=60) or settings.co_applicant_inactivity_days

    with scoped_transaction(db):
        last_activity = (
            select(func.max(DraftSession.last_activity_at))
            .where(DraftSession.party_id == ApplicationParty.id)
            .correlate(ApplicationParty.__table__)
            .scalar_subquery()
        )
        rows = db.execute(
            select(ApplicationParty, LeaseApplication, last_activity.label("last_activity_at"))
            .join(LeaseApplication, LeaseApplication.id == ApplicationParty.application_id)
            .where(
                ApplicationParty.role == "CO_APPLICANT",
                ApplicationParty.status.in_(PENDING_PARTY_STATUSES),
                ApplicationParty.abandoned_at.is_(None),
            )
            .order_by(ApplicationParty.id.asc())
        ).all()

        days_cache: dict[tuple, int] = {}
        abandoned = 0
        for party, app, last_at in rows:
            key = (app.org_id, app.property_id)
            if key not in days_cache:
                cfg = resolve_effective_config(db, org_id=app.org_id, property_id=app.property_id, as_of=now)
                days_cache[key] = resolve_abandonment_days(config_document(cfg), fallback=fallback)
            cutoff = now - timedelta(days=days_cache[key])
            if last_at is not None and last_at > cutoff:
                continue

            party.status = "LOCKED"
            party.abandoned_at = now
            party.abandoned_reason_code = "INACTIVITY"
            party.updated_at = now
            if app.status in ("SUBMITTED", "IN_REVIEW"):
                app.status = "NEEDS_INFO"
            if app.status != "CLOSED":
                app.updated_at = now
            audit_write(
                db,
                org_id=app.org_id,
                application_id=app.id,
                event_type="CO_APPLICANT_ABANDONED",
                target_type="application_party",
                target_id=party.id,
                metadata={"inactivity_days": days_cache[key], "last_activity_at": last_at},
                created_at=now,
            )
            abandoned += 1

        db.flush()
        return {"ok": True, "abandoned": abandoned}
