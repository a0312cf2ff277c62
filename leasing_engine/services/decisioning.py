# leasing_engine/services/decisioning.py
"""
Staff decisions, scores, priority overrides and notes.

make_decision() settles the unit reservation before it writes anything: an
approval upgrades the screening lock, keeps an existing hold, or takes a new
soft hold. A HOLD_CONFLICT there returns before the decision row exists.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..db import scoped_transaction
from ..domain.audit import audit_write
from ..domain.json_fields import dumps_json, loads_json
from ..domain.leasing_states import (
    APPROVING_OUTCOMES,
    DECISION_OUTCOMES,
    NOTE_VISIBILITIES,
    OPEN_REVIEW_STATUSES,
    PRIORITIES,
)
from ..models import (
    ApplicationNote,
    ApplicationScore,
    DecisionRecord,
    LeaseApplication,
    OverrideRequest,
    UnitReservation,
)
from .guards import require
from .mappers import decision_to_dict, note_to_dict, override_to_dict, reservation_to_dict, score_to_dict
from .reservations import create_soft_hold, upgrade_screening_lock_to_soft_hold

log = logging.getLogger(__name__)


def _lock_application(db: Session, *, org_id: int, application_id: int) -> Optional[LeaseApplication]:
    return db.scalar(
        select(LeaseApplication)
        .where(LeaseApplication.id == int(application_id), LeaseApplication.org_id == int(org_id))
        .with_for_update()
    )


def _get_application(db: Session, *, org_id: int, application_id: int) -> Optional[LeaseApplication]:
    return db.scalar(
        select(LeaseApplication).where(
            LeaseApplication.id == int(application_id), LeaseApplication.org_id == int(org_id)
        )
    )


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


# ---------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------
def _secure_reservation(
    db: Session,
    app: LeaseApplication,
    *,
    actor_id: int,
    now: datetime,
) -> dict[str, Any]:
    current = db.scalar(
        select(UnitReservation)
        .where(
            UnitReservation.org_id == app.org_id,
            UnitReservation.application_id == app.id,
            UnitReservation.status == "ACTIVE",
        )
        .order_by(UnitReservation.created_at.desc(), UnitReservation.id.desc())
        .limit(1)
        .with_for_update()
    )
    if current is None:
        return create_soft_hold(
            db,
            org_id=app.org_id,
            application_id=app.id,
            unit_id=app.unit_id,
            expires_at=app.expires_at,
            actor_id=actor_id,
            now=now,
        )
    if current.kind == "SCREENING_LOCK":
        return upgrade_screening_lock_to_soft_hold(
            db,
            org_id=app.org_id,
            reservation_id=current.id,
            actor_id=actor_id,
            now=now,
        )
    return {"ok": True, "reservation": reservation_to_dict(current)}


def make_decision(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    decided_by: int,
    outcome: str,
    criteria_version: Optional[str] = None,
    reason_codes: Optional[list[Any]] = None,
    income: Optional[dict[str, Any]] = None,
    criminal: Optional[dict[str, Any]] = None,
    conditions: Optional[list[Any]] = None,
    notes: Optional[str] = None,
    override_request_id: Optional[int] = None,
    previous_decision_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Record the next decision version for an application under review.

    Returns {ok, decision, reservation}. reservation is None unless the
    outcome approves an application that targets a unit.
    """
    require(org_id=org_id, application_id=application_id, decided_by=decided_by, outcome=outcome)
    outcome = str(outcome).strip().upper()
    if outcome not in DECISION_OUTCOMES:
        raise ValueError(f"Invalid decision outcome: {outcome}")
    now = now or datetime.utcnow()
    income = _as_dict(income)
    criminal = _as_dict(criminal)

    with scoped_transaction(db):
        app = _lock_application(db, org_id=org_id, application_id=application_id)
        if app is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if app.status not in OPEN_REVIEW_STATUSES:
            return {"ok": False, "error_code": "INVALID_STATUS", "status": app.status}

        reservation = None
        if outcome in APPROVING_OUTCOMES and app.unit_id is not None:
            secured = _secure_reservation(db, app, actor_id=decided_by, now=now)
            if not secured["ok"]:
                log.info(
                    "decision blocked by hold",
                    extra={"org_id": org_id, "application_id": app.id, "error_code": secured.get("error_code")},
                )
                return secured
            reservation = secured["reservation"]

        current = db.scalar(
            select(func.coalesce(func.max(DecisionRecord.version), 0)).where(DecisionRecord.application_id == app.id)
        )
        summary = criminal.get("summary")
        record = DecisionRecord(
            org_id=app.org_id,
            application_id=app.id,
            version=int(current or 0) + 1,
            outcome=outcome,
            decided_by=int(decided_by),
            decided_at=now,
            criteria_version=criteria_version,
            reason_codes_json=dumps_json(reason_codes or []),
            income_verification_method=income.get("method"),
            income_verified_monthly_cents=income.get("verified_monthly_cents"),
            income_verified_annual_cents=income.get("verified_annual_cents"),
            income_passed=income["passed"] if isinstance(income.get("passed"), bool) else None,
            income_notes=income.get("notes"),
            criminal_status=criminal.get("status"),
            criminal_summary=dumps_json(summary) if summary is not None else None,
            criminal_notes=criminal.get("notes"),
            criminal_reviewed_at=criminal.get("reviewed_at"),
            criminal_reviewed_by=criminal.get("reviewed_by"),
            conditions_json=dumps_json(conditions or []),
            notes=notes,
            override_request_id=override_request_id,
            is_override=override_request_id is not None,
            previous_decision_id=previous_decision_id,
            created_at=now,
        )
        db.add(record)

        app.status = "DECISIONED"
        app.decisioned_at = now
        app.updated_at = now
        db.flush()

        audit_write(
            db,
            org_id=app.org_id,
            application_id=app.id,
            event_type="DECISION_RECORDED",
            actor_id=decided_by,
            target_type="decision_record",
            target_id=record.id,
            metadata={"outcome": outcome, "version": record.version, "is_override": record.is_override},
            created_at=now,
        )
        log.info("decision recorded", extra={"org_id": org_id, "application_id": app.id})
        return {"ok": True, "decision": decision_to_dict(record), "reservation": reservation}


def list_decisions(db: Session, *, org_id: int, application_id: int) -> list[dict[str, Any]]:
    require(org_id=org_id, application_id=application_id)
    rows = db.scalars(
        select(DecisionRecord)
        .where(DecisionRecord.org_id == int(org_id), DecisionRecord.application_id == int(application_id))
        .order_by(DecisionRecord.version.desc())
    ).all()
    return [decision_to_dict(r) for r in rows]


# ---------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------
def _floor_or(value: Any, fallback: Optional[int]) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return fallback
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(parsed):
        return fallback
    return int(math.floor(parsed))


def create_application_score(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    score_value: Any = None,
    max_score: Any = None,
    score_type: Optional[str] = None,
    factors: Optional[dict[str, Any]] = None,
    created_by: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        app = _get_application(db, org_id=org_id, application_id=application_id)
        if app is None:
            return {"ok": False, "error_code": "NOT_FOUND"}

        score = ApplicationScore(
            org_id=app.org_id,
            application_id=app.id,
            score_type=score_type or "DECISION_STUB",
            score_value=_floor_or(score_value, 0),
            max_score=_floor_or(max_score, None),
            factors_json=dumps_json(factors) if isinstance(factors, dict) else None,
            created_by=created_by,
            created_at=now,
        )
        db.add(score)
        db.flush()
        return {"ok": True, "score": score_to_dict(score)}


# ---------------------------------------------------------------------
# Priority overrides
# ---------------------------------------------------------------------
def _audit_override(
    db: Session,
    o: OverrideRequest,
    *,
    event_type: str,
    actor_id: Optional[int],
    now: datetime,
) -> None:
    audit_write(
        db,
        org_id=o.org_id,
        application_id=o.application_id,
        event_type=event_type,
        actor_id=actor_id,
        target_type="override_request",
        target_id=o.id,
        metadata={
            "override_type": o.override_type,
            "status": o.status,
            "before": loads_json(o.before_json, None),
            "after": loads_json(o.after_json, None),
        },
        created_at=now,
    )


def request_priority_override(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    requested_by: int,
    requested_priority: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(
        org_id=org_id,
        application_id=application_id,
        requested_by=requested_by,
        requested_priority=requested_priority,
    )
    requested_priority = str(requested_priority).strip().upper()
    if requested_priority not in PRIORITIES:
        raise ValueError(f"Invalid priority: {requested_priority}")
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        app = _get_application(db, org_id=org_id, application_id=application_id)
        if app is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if app.priority == requested_priority:
            return {"ok": False, "error_code": "NO_CHANGE"}

        o = OverrideRequest(
            org_id=app.org_id,
            application_id=app.id,
            override_type="PRIORITY",
            status="PENDING",
            reason=reason or "",
            before_json=dumps_json({"priority": app.priority}),
            after_json=dumps_json({"priority": requested_priority}),
            requested_by=int(requested_by),
            created_at=now,
            updated_at=now,
        )
        db.add(o)
        db.flush()
        _audit_override(db, o, event_type="OVERRIDE_REQUESTED", actor_id=requested_by, now=now)
        return {"ok": True, "override_request": override_to_dict(o)}


def review_priority_override(
    db: Session,
    *,
    org_id: int,
    override_request_id: int,
    reviewer_id: int,
    status: str,
    review_notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, override_request_id=override_request_id, reviewer_id=reviewer_id, status=status)
    status = str(status).strip().upper()
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        o = db.scalar(
            select(OverrideRequest)
            .where(OverrideRequest.id == int(override_request_id), OverrideRequest.org_id == int(org_id))
            .with_for_update()
        )
        if o is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if o.override_type != "PRIORITY":
            return {"ok": False, "error_code": "INVALID_TYPE", "override_type": o.override_type}
        if o.status != "PENDING":
            return {"ok": False, "error_code": "INVALID_STATUS", "status": o.status}
        if status not in ("APPROVED", "DENIED"):
            return {"ok": False, "error_code": "INVALID_STATUS_VALUE"}

        o.status = status
        o.reviewed_by = int(reviewer_id)
        o.reviewed_at = now
        o.review_notes = review_notes
        o.updated_at = now

        requested = loads_json(o.after_json, {}).get("priority")
        if status == "APPROVED" and requested:
            app = _lock_application(db, org_id=org_id, application_id=o.application_id)
            if app is not None:
                app.priority = requested
                app.updated_at = now
        db.flush()

        _audit_override(
            db,
            o,
            event_type="OVERRIDE_APPROVED" if status == "APPROVED" else "OVERRIDE_DENIED",
            actor_id=reviewer_id,
            now=now,
        )
        return {"ok": True, "override_request": override_to_dict(o)}


def list_override_requests(
    db: Session,
    *,
    org_id: int,
    application_id: Optional[int] = None,
    status: Optional[str] = None,
) -> list[dict[str, Any]]:
    require(org_id=org_id)
    q = select(OverrideRequest).where(OverrideRequest.org_id == int(org_id))
    if application_id is not None:
        q = q.where(OverrideRequest.application_id == int(application_id))
    if status:
        q = q.where(OverrideRequest.status == str(status).strip().upper())
    q = q.order_by(OverrideRequest.created_at.desc(), OverrideRequest.id.desc())
    return [override_to_dict(o) for o in db.scalars(q).all()]


# ---------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------
# Each viewer sees its own level and everything more public than it.
VIEWER_VISIBILITY = {
    "staff": NOTE_VISIBILITIES,
    "applicant": NOTE_VISIBILITIES[1:],
    "party": NOTE_VISIBILITIES[2:],
    "public": NOTE_VISIBILITIES[3:],
}


def visible_note_levels(viewer_type: Optional[str]) -> tuple[str, ...]:
    return tuple(VIEWER_VISIBILITY.get((viewer_type or "public").strip().lower(), VIEWER_VISIBILITY["public"]))


def can_set_visibility(actor_type: Optional[str], visibility: str) -> bool:
    return visibility in visible_note_levels(actor_type)


def _lock_note(db: Session, *, org_id: int, note_id: int) -> Optional[ApplicationNote]:
    return db.scalar(
        select(ApplicationNote)
        .where(ApplicationNote.id == int(note_id), ApplicationNote.org_id == int(org_id))
        .with_for_update()
    )


def create_note(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    author_id: int,
    body: str,
    visibility: Optional[str] = None,
    is_pinned: bool = False,
    actor_type: str = "staff",
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id, author_id=author_id)
    visibility = (visibility or "").strip().upper() or "INTERNAL_STAFF_ONLY"
    if not can_set_visibility(actor_type, visibility):
        return {"ok": False, "error_code": "VISIBILITY_NOT_ALLOWED"}
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        app = _get_application(db, org_id=org_id, application_id=application_id)
        if app is None:
            return {"ok": False, "error_code": "NOT_FOUND"}

        note = ApplicationNote(
            org_id=app.org_id,
            application_id=app.id,
            author_id=int(author_id),
            visibility=visibility,
            body=body or "",
            is_pinned=bool(is_pinned),
            created_at=now,
            updated_at=now,
        )
        db.add(note)
        db.flush()
        return {"ok": True, "note": note_to_dict(note)}


def list_notes(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    viewer_type: str = "staff",
) -> list[dict[str, Any]]:
    require(org_id=org_id, application_id=application_id)
    rows = db.scalars(
        select(ApplicationNote)
        .where(
            ApplicationNote.org_id == int(org_id),
            ApplicationNote.application_id == int(application_id),
            ApplicationNote.visibility.in_(visible_note_levels(viewer_type)),
            ApplicationNote.deleted_at.is_(None),
        )
        .order_by(ApplicationNote.is_pinned.desc(), ApplicationNote.created_at.desc(), ApplicationNote.id.desc())
    ).all()
    return [note_to_dict(n) for n in rows]


def update_note(
    db: Session,
    *,
    org_id: int,
    note_id: int,
    actor_id: int,
    body: Optional[str] = None,
    visibility: Optional[str] = None,
    is_pinned: Optional[bool] = None,
    actor_type: str = "staff",
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, note_id=note_id, actor_id=actor_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        note = _lock_note(db, org_id=org_id, note_id=note_id)
        if note is None or note.deleted_at is not None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if actor_type != "staff" and note.author_id != int(actor_id):
            return {"ok": False, "error_code": "FORBIDDEN"}

        next_visibility = (visibility or note.visibility).strip().upper()
        if not can_set_visibility(actor_type, next_visibility):
            return {"ok": False, "error_code": "VISIBILITY_NOT_ALLOWED"}

        if body is not None:
            note.body = body
        note.visibility = next_visibility
        if isinstance(is_pinned, bool):
            note.is_pinned = is_pinned
        note.updated_at = now
        db.flush()
        return {"ok": True, "note": note_to_dict(note)}


def delete_note(
    db: Session,
    *,
    org_id: int,
    note_id: int,
    actor_id: int,
    actor_type: str = "staff",
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Soft delete; the row stays for the audit trail."""
    require(org_id=org_id, note_id=note_id, actor_id=actor_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        note = _lock_note(db, org_id=org_id, note_id=note_id)
        if note is None or note.deleted_at is not None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if actor_type != "staff" and note.author_id != int(actor_id):
            return {"ok": False, "error_code": "FORBIDDEN"}

        note.deleted_at = now
        note.deleted_by = int(actor_id)
        note.updated_at = now
        db.flush()
        return {"ok": True, "note": note_to_dict(note)}
