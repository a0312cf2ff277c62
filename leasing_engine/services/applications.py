# leasing_engine/services/applications.py
"""
Lease application lifecycle.

DRAFT -> SUBMITTED -> IN_REVIEW <-> NEEDS_INFO -> DECISIONED -> CONVERTED
any non-terminal -> CLOSED (withdrawn / expired)

Submit is a chain of gates evaluated in a fixed order; the first failing gate
is returned as an outcome. The unit availability snapshot is written before
any gate can fail, and the surrounding scoped_transaction commits it even
when submit is rejected.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..config import settings
from ..db import scoped_transaction
from ..domain.audit import audit_write
from ..domain.fingerprint import duplicate_check_hash, issue_token, normalize_email, normalize_phone
from ..domain.json_fields import deep_merge, dumps_json, loads_json
from ..domain.leasing_states import APPLICATION_TYPES, PARTY_ROLES, TERMINAL_STATUSES
from ..models import (
    ApplicationParty,
    ConsentTemplate,
    DraftSession,
    LeaseApplication,
    PaymentIntent,
    UnitReservation,
)
from .config_resolver import (
    SubmitSettings,
    config_document,
    config_ref,
    resolve_effective_config,
    resolve_submit_settings,
    resolve_unit_intake,
)
from .guards import require
from .mappers import (
    application_to_dict,
    party_to_dict,
    refund_request_to_dict,
    reservation_to_dict,
    session_to_dict,
)
from .refunds import (
    evaluate_refund_for_payment,
    insert_refund_request,
    jurisdiction_for_application,
    payment_facts,
)
from .reservations import active_holds_for_unit, create_screening_lock, release_reservations_for_application

log = logging.getLogger(__name__)

TARGET_TYPE = "lease_application"


def _lock_application(db: Session, *, org_id: int, application_id: int) -> Optional[LeaseApplication]:
    return db.scalar(
        select(LeaseApplication)
        .where(LeaseApplication.id == int(application_id), LeaseApplication.org_id == int(org_id))
        .with_for_update()
    )


def _audit_app(
    db: Session,
    app: LeaseApplication,
    *,
    event_type: str,
    actor_id: Optional[int],
    now: datetime,
    metadata: Optional[dict[str, Any]] = None,
) -> None:
    audit_write(
        db,
        org_id=app.org_id,
        application_id=app.id,
        event_type=event_type,
        actor_id=actor_id,
        target_type=TARGET_TYPE,
        target_id=app.id,
        metadata=metadata,
        created_at=now,
    )


def _new_session(
    *,
    app: LeaseApplication,
    party: ApplicationParty,
    now: datetime,
    form_data: Optional[dict[str, Any]] = None,
    progress_map: Optional[dict[str, Any]] = None,
    current_step: Optional[str] = None,
) -> DraftSession:
    return DraftSession(
        org_id=app.org_id,
        application_id=app.id,
        party_id=party.id,
        token=issue_token(),
        form_data_json=dumps_json(form_data or {}),
        progress_map_json=dumps_json(progress_map or {}),
        current_step=current_step,
        expires_at=now + timedelta(days=settings.session_ttl_days),
        last_activity_at=now,
        last_saved_at=now,
        created_at=now,
    )


# ---------------------------------------------------------------------
# Start / autosave / resume
# ---------------------------------------------------------------------
def _find_existing_draft(
    db: Session,
    *,
    org_id: int,
    dupe_hash: str,
    lookback_days: int,
    now: datetime,
) -> Optional[dict[str, Any]]:
    app = db.scalar(
        select(LeaseApplication)
        .where(
            LeaseApplication.org_id == int(org_id),
            LeaseApplication.status == "DRAFT",
            LeaseApplication.duplicate_check_hash == dupe_hash,
            LeaseApplication.created_at >= now - timedelta(days=lookback_days),
        )
        .order_by(LeaseApplication.created_at.desc(), LeaseApplication.id.desc())
        .limit(1)
    )
    if app is None:
        return None

    party = db.scalar(
        select(ApplicationParty)
        .where(ApplicationParty.application_id == app.id, ApplicationParty.role == "PRIMARY")
        .order_by(ApplicationParty.id.asc())
        .limit(1)
    )
    if party is None:
        return None

    session = db.scalar(
        select(DraftSession)
        .where(
            DraftSession.application_id == app.id,
            or_(DraftSession.party_id == party.id, DraftSession.party_id.is_(None)),
        )
        .order_by(DraftSession.last_activity_at.desc(), DraftSession.created_at.desc())
        .limit(1)
    )
    return {
        "application": application_to_dict(app),
        "party": party_to_dict(party),
        "draft_session": session_to_dict(session),
    }


def start_application(
    db: Session,
    *,
    org_id: int,
    property_id: int,
    primary: dict[str, Any],
    unit_id: Optional[int] = None,
    application_type: str = "INDIVIDUAL",
    priority: str = "STANDARD",
    relocation_status: Optional[str] = None,
    form_data: Optional[dict[str, Any]] = None,
    progress_map: Optional[dict[str, Any]] = None,
    current_step: Optional[str] = None,
    lookback_days: Optional[int] = None,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Creates DRAFT application + PRIMARY party + draft session, or returns the
    caller's recent DRAFT for the same email/unit/property (deduped=True).
    """
    require(org_id=org_id, property_id=property_id)
    email = normalize_email((primary or {}).get("email"))
    if not email:
        raise ValueError("Missing primary email")
    application_type = (application_type or "INDIVIDUAL").strip().upper()
    if application_type not in APPLICATION_TYPES:
        raise ValueError(f"Invalid application_type: {application_type}")
    now = now or datetime.utcnow()
    lookback = settings.draft_lookback_days if lookback_days is None else int(lookback_days)
    dupe_hash = duplicate_check_hash(email, unit_id, property_id)

    with scoped_transaction(db):
        existing = _find_existing_draft(db, org_id=org_id, dupe_hash=dupe_hash, lookback_days=lookback, now=now)
        if existing is not None:
            log.info("draft deduped", extra={"org_id": org_id, "application_id": existing["application"]["id"]})
            return {"deduped": True, **existing}

        app = LeaseApplication(
            org_id=int(org_id),
            property_id=int(property_id),
            unit_id=int(unit_id) if unit_id is not None else None,
            application_type=application_type,
            status="DRAFT",
            priority=priority or "STANDARD",
            relocation_status=relocation_status,
            duplicate_check_hash=dupe_hash,
            created_at=now,
            updated_at=now,
        )
        db.add(app)
        db.flush()

        party = ApplicationParty(
            org_id=app.org_id,
            application_id=app.id,
            role="PRIMARY",
            status="IN_PROGRESS",
            email=email,
            first_name=(primary.get("first_name") or "").strip() or None,
            last_name=(primary.get("last_name") or "").strip() or None,
            phone=normalize_phone(primary.get("phone")),
            created_at=now,
            updated_at=now,
        )
        db.add(party)
        db.flush()

        session = _new_session(
            app=app,
            party=party,
            now=now,
            form_data=form_data,
            progress_map=progress_map,
            current_step=current_step,
        )
        db.add(session)
        db.flush()

        _audit_app(
            db,
            app,
            event_type="APPLICATION_STARTED",
            actor_id=actor_id,
            now=now,
            metadata={"unit_id": app.unit_id, "application_type": application_type},
        )
        log.info("application started", extra={"org_id": org_id, "application_id": app.id, "unit_id": unit_id})
        return {
            "deduped": False,
            "application": application_to_dict(app),
            "party": party_to_dict(party),
            "draft_session": session_to_dict(session),
        }


def autosave_draft_session(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    session_token: str,
    form_data_patch: Optional[dict[str, Any]] = None,
    progress_map_patch: Optional[dict[str, Any]] = None,
    current_step: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[dict[str, Any]]:
    require(org_id=org_id, application_id=application_id, session_token=session_token)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        session = db.scalar(
            select(DraftSession)
            .join(LeaseApplication, LeaseApplication.id == DraftSession.application_id)
            .where(
                DraftSession.token == str(session_token).strip(),
                DraftSession.application_id == int(application_id),
                LeaseApplication.org_id == int(org_id),
            )
            .with_for_update()
        )
        if session is None:
            return None

        if form_data_patch:
            session.form_data_json = dumps_json(deep_merge(loads_json(session.form_data_json, {}), form_data_patch))
        if progress_map_patch:
            session.progress_map_json = dumps_json(
                deep_merge(loads_json(session.progress_map_json, {}), progress_map_patch)
            )
        if current_step is not None:
            session.current_step = current_step
        session.last_saved_at = now
        session.last_activity_at = now
        db.flush()
        return session_to_dict(session)


def resume_application(
    db: Session,
    *,
    org_id: int,
    session_token: str,
    now: Optional[datetime] = None,
) -> Optional[dict[str, Any]]:
    require(org_id=org_id, session_token=session_token)
    now = now or datetime.utcnow()

    session = db.scalar(
        select(DraftSession)
        .join(LeaseApplication, LeaseApplication.id == DraftSession.application_id)
        .where(
            DraftSession.token == str(session_token).strip(),
            LeaseApplication.org_id == int(org_id),
            DraftSession.expires_at > now,
        )
        .limit(1)
    )
    if session is None:
        return None
    app = db.get(LeaseApplication, session.application_id)
    party = db.get(ApplicationParty, session.party_id) if session.party_id else None
    return {
        "application": application_to_dict(app),
        "party": party_to_dict(party),
        "draft_session": session_to_dict(session),
    }


# ---------------------------------------------------------------------
# Parties
# ---------------------------------------------------------------------
def invite_party(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    role: str,
    email: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    phone: Optional[str] = None,
    current_step: Optional[str] = None,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[dict[str, Any]]:
    require(org_id=org_id, application_id=application_id)
    email = normalize_email(email)
    if not email:
        raise ValueError("Missing party email")
    role = (role or "").strip().upper()
    if role not in PARTY_ROLES or role == "PRIMARY":
        raise ValueError(f"Invalid party role: {role}")
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        app = _lock_application(db, org_id=org_id, application_id=application_id)
        if app is None:
            return None
        if app.status in TERMINAL_STATUSES:
            return {"ok": False, "error_code": "INVALID_STATUS", "status": app.status}

        party = ApplicationParty(
            org_id=app.org_id,
            application_id=app.id,
            role=role,
            status="INVITED",
            email=email,
            first_name=(first_name or "").strip() or None,
            last_name=(last_name or "").strip() or None,
            phone=normalize_phone(phone),
            invite_token=issue_token(),
            invite_sent_at=now,
            created_at=now,
            updated_at=now,
        )
        db.add(party)
        db.flush()

        session = _new_session(app=app, party=party, now=now, current_step=current_step)
        db.add(session)
        db.flush()

        audit_write(
            db,
            org_id=app.org_id,
            application_id=app.id,
            event_type="PARTY_INVITED",
            actor_id=actor_id,
            target_type="application_party",
            target_id=party.id,
            metadata={"role": role},
            created_at=now,
        )
        return {"ok": True, "party": party_to_dict(party), "draft_session": session_to_dict(session)}


def complete_party(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    party_id: int,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id, party_id=party_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        app = _lock_application(db, org_id=org_id, application_id=application_id)
        if app is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if app.status in TERMINAL_STATUSES:
            return {"ok": False, "error_code": "INVALID_STATUS", "status": app.status}

        party = db.scalar(
            select(ApplicationParty)
            .where(ApplicationParty.id == int(party_id), ApplicationParty.application_id == app.id)
            .with_for_update()
        )
        if party is None:
            return {"ok": False, "error_code": "PARTY_NOT_FOUND"}
        if party.status == "LOCKED":
            return {"ok": False, "error_code": "INVALID_STATUS", "status": party.status}
        if party.status == "COMPLETE":
            return {"ok": True, "party": party_to_dict(party)}

        party.status = "COMPLETE"
        party.completed_at = now
        party.updated_at = now
        db.flush()

        audit_write(
            db,
            org_id=app.org_id,
            application_id=app.id,
            event_type="PARTY_COMPLETED",
            actor_id=actor_id,
            target_type="application_party",
            target_id=party.id,
            metadata={"role": party.role},
            created_at=now,
        )
        return {"ok": True, "party": party_to_dict(party)}


# ---------------------------------------------------------------------
# Submit
# ---------------------------------------------------------------------
def evaluate_required_parties(
    *,
    application_type: str,
    parties: list[ApplicationParty],
    submit: SubmitSettings,
) -> Optional[dict[str, Any]]:
    """None when the party roster can be submitted, else {error_code, details}."""
    primaries = [p for p in parties if p.role == "PRIMARY"]
    if not primaries:
        return {"error_code": "PRIMARY_REQUIRED", "details": {"required_primary": 1, "completed_primary": 0}}

    incomplete = [p.id for p in primaries if p.status != "COMPLETE"]
    if incomplete:
        return {"error_code": "PRIMARY_INCOMPLETE", "details": {"incomplete_primary_ids": incomplete}}

    if application_type == "JOINT":
        completed = [p for p in parties if p.role == "CO_APPLICANT" and p.status == "COMPLETE"]
        if len(completed) < submit.joint_required_co_applicants:
            return {
                "error_code": "CO_APPLICANT_REQUIRED",
                "details": {
                    "required_co_applicants": submit.joint_required_co_applicants,
                    "completed_co_applicants": len(completed),
                },
            }
    return None


def load_active_consent_template(db: Session, *, org_id: int, as_of: datetime) -> Optional[ConsentTemplate]:
    # org-specific template wins over the global (org_id NULL) one
    return db.scalar(
        select(ConsentTemplate)
        .where(
            ConsentTemplate.is_active.is_(True),
            ConsentTemplate.effective_at <= as_of,
            or_(ConsentTemplate.expired_at.is_(None), ConsentTemplate.expired_at > as_of),
            or_(ConsentTemplate.org_id == int(org_id), ConsentTemplate.org_id.is_(None)),
        )
        .order_by(
            ConsentTemplate.org_id.is_(None).asc(),
            ConsentTemplate.version.desc(),
            ConsentTemplate.effective_at.desc(),
            ConsentTemplate.id.asc(),
        )
        .limit(1)
    )


def _availability_snapshot(db: Session, app: LeaseApplication, now: datetime) -> tuple[bool, dict[str, Any]]:
    if app.unit_id is None:
        return True, {"unit_id": None, "checked_at": now.isoformat(), "available": True, "reason": "NO_UNIT"}

    holds = active_holds_for_unit(db, org_id=app.org_id, unit_id=app.unit_id, exclude_application_id=app.id)
    available = not holds
    return available, {
        "unit_id": app.unit_id,
        "checked_at": now.isoformat(),
        "available": available,
        "active_hold_count": len(holds),
        "active_hold_applications": [h.application_id for h in holds],
        "active_hold_kinds": [h.kind for h in holds],
        "source": "unit_reservations",
    }


def submit_application(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    consent: Optional[dict[str, Any]] = None,
    jurisdiction_code: Optional[str] = None,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id)
    now = now or datetime.utcnow()
    consent = consent or {}

    with scoped_transaction(db):
        app = _lock_application(db, org_id=org_id, application_id=application_id)
        if app is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if app.status != "DRAFT":
            return {"ok": False, "error_code": "INVALID_STATUS", "status": app.status}

        def blocked(outcome: dict[str, Any]) -> dict[str, Any]:
            _audit_app(
                db,
                app,
                event_type="SUBMIT_BLOCKED",
                actor_id=actor_id,
                now=now,
                metadata={"error_code": outcome.get("error_code"), "details": outcome.get("details")},
            )
            log.info(
                "submit blocked",
                extra={"org_id": org_id, "application_id": app.id, "error_code": outcome.get("error_code")},
            )
            return outcome

        parties = list(
            db.scalars(
                select(ApplicationParty)
                .where(ApplicationParty.application_id == app.id)
                .order_by(ApplicationParty.id.asc())
            ).all()
        )
        cfg = resolve_effective_config(
            db,
            org_id=org_id,
            property_id=app.property_id,
            jurisdiction_code=jurisdiction_code,
            as_of=now,
        )
        doc = config_document(cfg)
        submit = resolve_submit_settings(doc)
        intake = resolve_unit_intake(doc)

        available, snapshot = _availability_snapshot(db, app, now)
        app.unit_availability_snapshot_json = dumps_json(snapshot)
        app.unit_availability_verified_at = now
        app.unit_was_available_at_submit = available
        app.updated_at = now
        db.flush()

        if not available:
            return blocked(
                {
                    "ok": False,
                    "error_code": "UNIT_UNAVAILABLE",
                    "guidance": {
                        "unit_id": app.unit_id,
                        "active_hold_count": snapshot.get("active_hold_count", 0),
                        "suggested_action": "CHOOSE_ANOTHER_UNIT",
                    },
                }
            )

        party_problem = evaluate_required_parties(
            application_type=app.application_type,
            parties=parties,
            submit=submit,
        )
        if party_problem is not None:
            return blocked(
                {
                    "ok": False,
                    "error_code": "PARTIES_INCOMPLETE",
                    "reason": party_problem["error_code"],
                    "details": party_problem["details"],
                }
            )

        if app.unit_id is not None and intake.mode == "CAP_N_SUBMITS":
            current = int(
                db.scalar(
                    select(func.count(LeaseApplication.id)).where(
                        LeaseApplication.org_id == app.org_id,
                        LeaseApplication.unit_id == app.unit_id,
                        LeaseApplication.status == "SUBMITTED",
                        LeaseApplication.id != app.id,
                    )
                )
                or 0
            )
            if current >= intake.cap_submits:
                return blocked(
                    {
                        "ok": False,
                        "error_code": "SUBMIT_CAP_REACHED",
                        "cap": intake.cap_submits,
                        "current_count": current,
                    }
                )

        if not consent.get("party_id") or not consent.get("signature"):
            return blocked({"ok": False, "error_code": "CONSENT_REQUIRED"})

        template = load_active_consent_template(db, org_id=org_id, as_of=now)
        if template is None:
            return blocked({"ok": False, "error_code": "CONSENT_TEMPLATE_MISSING"})

        consent_party = next((p for p in parties if str(p.id) == str(consent["party_id"])), None)
        if consent_party is None:
            return blocked({"ok": False, "error_code": "CONSENT_PARTY_INVALID"})

        if consent_party.screening_consent_at is None:
            consent_party.screening_consent_at = now
            consent_party.screening_consent_template_id = template.id
            consent_party.screening_consent_template_version = template.version
            consent_party.screening_consent_ip = consent.get("ip")
            consent_party.screening_consent_signature = str(consent["signature"])
            consent_party.updated_at = now

        expires_at = now + timedelta(days=submit.ttl_days)
        reservation = None
        if app.unit_id is not None and intake.mode == "LOCK_ON_SUBMIT":
            lock = create_screening_lock(
                db,
                org_id=org_id,
                application_id=app.id,
                unit_id=app.unit_id,
                expires_at=expires_at,
                actor_id=actor_id,
                now=now,
            )
            if not lock["ok"]:
                return blocked(lock)
            reservation = lock["reservation"]

        app.status = "SUBMITTED"
        app.submitted_at = now
        app.expires_at = expires_at
        app.application_fee_status = "PENDING"
        app.updated_at = now
        db.flush()

        _audit_app(
            db,
            app,
            event_type="APPLICATION_SUBMITTED",
            actor_id=actor_id,
            now=now,
            metadata={"config": config_ref(cfg), "intake_mode": intake.mode, "expires_at": expires_at},
        )
        log.info("application submitted", extra={"org_id": org_id, "application_id": app.id, "unit_id": app.unit_id})
        return {
            "ok": True,
            "application": application_to_dict(app),
            "unit_availability": snapshot,
            "reservation": reservation,
            "workflow_config": config_ref(cfg),
        }


def begin_review(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        app = _lock_application(db, org_id=org_id, application_id=application_id)
        if app is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if app.status != "SUBMITTED":
            return {"ok": False, "error_code": "INVALID_STATUS", "status": app.status}

        app.status = "IN_REVIEW"
        app.updated_at = now
        db.flush()
        _audit_app(db, app, event_type="APPLICATION_IN_REVIEW", actor_id=actor_id, now=now)
        return {"ok": True, "application": application_to_dict(app)}


# ---------------------------------------------------------------------
# Withdraw / convert
# ---------------------------------------------------------------------
def withdraw_application(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    reason_code: Optional[str] = None,
    reason: Optional[str] = None,
    withdrawn_by: Optional[int] = None,
    jurisdiction_code: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Close the application, release its reservations, and open a PENDING refund
    request for every payment the refund policy says is eligible.
    """
    require(org_id=org_id, application_id=application_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        app = _lock_application(db, org_id=org_id, application_id=application_id)
        if app is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if app.status == "CLOSED":
            return {"ok": False, "error_code": "ALREADY_CLOSED"}
        if app.status == "CONVERTED":
            return {"ok": False, "error_code": "INVALID_STATUS", "status": app.status}

        app.status = "CLOSED"
        app.closed_at = now
        app.closed_reason = "WITHDRAWN"
        app.withdrawn_at = now
        app.withdrawn_reason_code = reason_code
        app.withdrawn_reason = reason
        app.updated_at = now
        db.flush()

        release_reservations_for_application(
            db,
            org_id=org_id,
            application_id=app.id,
            release_reason_code="WITHDRAWN",
            released_reason=reason or "Applicant withdrew",
            released_by=withdrawn_by,
            now=now,
        )

        if jurisdiction_code is None:
            jurisdiction_code = jurisdiction_for_application(db, application_id=app.id)

        refund_requests: list[dict[str, Any]] = []
        refund_decisions: list[dict[str, Any]] = []
        payments = db.scalars(
            select(PaymentIntent)
            .where(PaymentIntent.application_id == app.id)
            .order_by(PaymentIntent.id.asc())
            .with_for_update()
        ).all()
        for pi in payments:
            decision = evaluate_refund_for_payment(
                db,
                org_id=org_id,
                payment=payment_facts(pi),
                jurisdiction_code=jurisdiction_code,
                as_of=now,
            )
            refund_decisions.append({"payment_intent_id": pi.id, "decision": decision.as_dict()})
            if decision.eligible:
                rr = insert_refund_request(
                    db,
                    pi=pi,
                    decision=decision,
                    requested_by=withdrawn_by,
                    requested_amount_cents=decision.eligible_amount_cents,
                    reason=reason or "Applicant withdrawal",
                    now=now,
                )
                refund_requests.append(refund_request_to_dict(rr))

        _audit_app(
            db,
            app,
            event_type="APPLICATION_WITHDRAWN",
            actor_id=withdrawn_by,
            now=now,
            metadata={"reason_code": reason_code, "refund_request_count": len(refund_requests)},
        )
        log.info("application withdrawn", extra={"org_id": org_id, "application_id": app.id})
        return {
            "ok": True,
            "application": application_to_dict(app),
            "refund_requests": refund_requests,
            "refund_decisions": refund_decisions,
        }


def convert_application(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        app = _lock_application(db, org_id=org_id, application_id=application_id)
        if app is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if app.status != "DECISIONED":
            return {"ok": False, "error_code": "INVALID_STATUS", "status": app.status}

        holds = list(
            db.scalars(
                select(UnitReservation)
                .where(
                    UnitReservation.application_id == app.id,
                    UnitReservation.status == "ACTIVE",
                    UnitReservation.kind.in_(("SOFT_HOLD", "HARD_HOLD")),
                )
                .with_for_update()
            ).all()
        )
        for r in holds:
            r.converted_at = now
            r.updated_at = now

        app.status = "CONVERTED"
        app.converted_at = now
        app.updated_at = now
        db.flush()

        _audit_app(
            db,
            app,
            event_type="APPLICATION_CONVERTED",
            actor_id=actor_id,
            now=now,
            metadata={"reservation_ids": [r.id for r in holds]},
        )
        return {
            "ok": True,
            "application": application_to_dict(app),
            "reservations": [reservation_to_dict(r) for r in holds],
        }
