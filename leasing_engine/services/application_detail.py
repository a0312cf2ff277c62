# leasing_engine/services/application_detail.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import scoped_transaction
from ..domain.audit import audit_event_to_dict, audit_write, list_audit_events
from ..models import (
    ApplicationParty,
    ApplicationScore,
    DecisionRecord,
    LeaseApplication,
    OverrideRequest,
    PaymentAttempt,
    PaymentIntent,
    RefundRequest,
    UnitReservation,
)
from .guards import require
from .mappers import (
    application_to_dict,
    attempt_to_dict,
    decision_to_dict,
    intent_to_dict,
    override_to_dict,
    party_to_dict,
    refund_request_to_dict,
    reservation_to_dict,
    score_to_dict,
)
from .requirements import list_info_requests, list_requirements

AUDIT_TAIL = 50


def get_application_detail(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    actor_id: Optional[int] = None,
    source: str = "staff_ui",
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Everything a reviewer needs on one screen.

    Writes APPLICATION_VIEWED when an actor is known; the audit tail returned
    includes that view.
    """
    require(org_id=org_id, application_id=application_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        app = db.scalar(
            select(LeaseApplication).where(
                LeaseApplication.id == int(application_id), LeaseApplication.org_id == int(org_id)
            )
        )
        if app is None:
            return {"ok": False, "error_code": "NOT_FOUND"}

        if actor_id is not None:
            audit_write(
                db,
                org_id=app.org_id,
                application_id=app.id,
                event_type="APPLICATION_VIEWED",
                actor_id=actor_id,
                target_type="lease_application",
                target_id=app.id,
                metadata={"source": source},
                created_at=now,
            )
            db.flush()

        parties = db.scalars(
            select(ApplicationParty)
            .where(ApplicationParty.application_id == app.id)
            .order_by(ApplicationParty.created_at.asc(), ApplicationParty.id.asc())
        ).all()
        reservations = db.scalars(
            select(UnitReservation)
            .where(UnitReservation.application_id == app.id)
            .order_by(UnitReservation.created_at.desc(), UnitReservation.id.desc())
        ).all()
        intents = db.scalars(
            select(PaymentIntent)
            .where(PaymentIntent.application_id == app.id)
            .order_by(PaymentIntent.created_at.desc(), PaymentIntent.id.desc())
        ).all()

        intent_ids = [pi.id for pi in intents]
        attempts_by_intent: dict[int, list[dict[str, Any]]] = {}
        refunds_by_intent: dict[int, list[dict[str, Any]]] = {}
        if intent_ids:
            for a in db.scalars(
                select(PaymentAttempt)
                .where(PaymentAttempt.payment_intent_id.in_(intent_ids))
                .order_by(PaymentAttempt.attempt_number.asc())
            ).all():
                attempts_by_intent.setdefault(a.payment_intent_id, []).append(attempt_to_dict(a))
            for rr in db.scalars(
                select(RefundRequest)
                .where(RefundRequest.payment_intent_id.in_(intent_ids))
                .order_by(RefundRequest.created_at.desc(), RefundRequest.id.desc())
            ).all():
                refunds_by_intent.setdefault(rr.payment_intent_id, []).append(refund_request_to_dict(rr))

        payments = []
        for pi in intents:
            row = intent_to_dict(pi)
            row["attempts"] = attempts_by_intent.get(pi.id, [])
            row["refund_requests"] = refunds_by_intent.get(pi.id, [])
            payments.append(row)

        decisions = db.scalars(
            select(DecisionRecord)
            .where(DecisionRecord.application_id == app.id)
            .order_by(DecisionRecord.decided_at.desc(), DecisionRecord.version.desc())
        ).all()
        scores = db.scalars(
            select(ApplicationScore)
            .where(ApplicationScore.application_id == app.id)
            .order_by(ApplicationScore.created_at.desc(), ApplicationScore.id.desc())
        ).all()
        overrides = db.scalars(
            select(OverrideRequest)
            .where(OverrideRequest.application_id == app.id)
            .order_by(OverrideRequest.created_at.desc(), OverrideRequest.id.desc())
        ).all()
        events = list_audit_events(db, org_id=app.org_id, application_id=app.id, limit=AUDIT_TAIL)

        return {
            "ok": True,
            "application": application_to_dict(app),
            "parties": [party_to_dict(p) for p in parties],
            "reservations": [reservation_to_dict(r) for r in reservations],
            "requirements": list_requirements(db, org_id=app.org_id, application_id=app.id),
            "info_requests": list_info_requests(db, org_id=app.org_id, application_id=app.id),
            "payments": payments,
            "decisions": [decision_to_dict(d) for d in decisions],
            "scores": [score_to_dict(s) for s in scores],
            "override_requests": [override_to_dict(o) for o in overrides],
            "audit_events": [audit_event_to_dict(e) for e in events],
        }
