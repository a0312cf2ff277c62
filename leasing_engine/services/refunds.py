# leasing_engine/services/refunds.py
"""
Refund requests: policy lookup, eligibility snapshot, review lifecycle.

PENDING -> APPROVED|DENIED (review), APPROVED -> PROCESSED|FAILED.
The eligibility decision (policy id/version, reason code, eligible amount) is
frozen onto the request when it is created.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ..db import scoped_transaction
from ..domain.audit import audit_write
from ..domain.refund_eligibility import (
    PaymentFacts,
    PolicyFacts,
    RefundDecision,
    evaluate_refund_eligibility,
    pick_active_refund_policy,
)
from ..models import LeaseApplication, PaymentIntent, Property, RefundPolicy, RefundRequest
from .guards import require
from .mappers import refund_request_to_dict

log = logging.getLogger(__name__)

TARGET_TYPE = "refund_request"
REVIEW_OUTCOMES = ("APPROVED", "DENIED")


def payment_facts(pi: PaymentIntent) -> PaymentFacts:
    return PaymentFacts(
        status=pi.status,
        amount_cents=int(pi.amount_cents),
        paid_at=pi.paid_at,
        payment_type=pi.payment_type,
    )


def load_refund_policies(
    db: Session,
    *,
    org_id: int,
    jurisdiction_code: Optional[str],
    payment_type: Optional[str],
    as_of: datetime,
) -> list[PolicyFacts]:
    q = select(RefundPolicy).where(
        RefundPolicy.org_id == int(org_id),
        RefundPolicy.effective_at <= as_of,
        or_(RefundPolicy.expired_at.is_(None), RefundPolicy.expired_at > as_of),
    )
    if jurisdiction_code:
        q = q.where(or_(RefundPolicy.jurisdiction_code == jurisdiction_code, RefundPolicy.jurisdiction_code.is_(None)))
    if payment_type:
        q = q.where(or_(RefundPolicy.payment_type == payment_type, RefundPolicy.payment_type.is_(None)))
    return [PolicyFacts.from_row(r) for r in db.scalars(q).all()]


def evaluate_refund_for_payment(
    db: Session,
    *,
    org_id: int,
    payment: PaymentFacts,
    jurisdiction_code: Optional[str] = None,
    as_of: Optional[datetime] = None,
) -> RefundDecision:
    as_of = as_of or datetime.utcnow()
    policies = load_refund_policies(
        db,
        org_id=org_id,
        jurisdiction_code=jurisdiction_code,
        payment_type=payment.payment_type,
        as_of=as_of,
    )
    policy = pick_active_refund_policy(
        policies,
        jurisdiction_code=jurisdiction_code,
        payment_type=payment.payment_type,
        as_of=as_of,
    )
    return evaluate_refund_eligibility(payment, policy, as_of)


def jurisdiction_for_application(db: Session, *, application_id: int) -> Optional[str]:
    return db.scalar(
        select(Property.jurisdiction_code)
        .join(LeaseApplication, LeaseApplication.property_id == Property.id)
        .where(LeaseApplication.id == int(application_id))
    )


def insert_refund_request(
    db: Session,
    *,
    pi: PaymentIntent,
    decision: RefundDecision,
    requested_by: Optional[int],
    requested_amount_cents: Optional[int] = None,
    reason: Optional[str] = None,
    now: datetime,
) -> RefundRequest:
    """Writes the request + REFUND_REQUESTED audit in the caller's transaction."""
    requested = requested_amount_cents
    if requested is None:
        requested = decision.eligible_amount_cents or 0

    rr = RefundRequest(
        org_id=pi.org_id,
        application_id=pi.application_id,
        payment_intent_id=pi.id,
        policy_id=decision.policy_id,
        policy_version=decision.policy_version,
        reason_code=decision.reason_code,
        eligible_amount_cents=decision.eligible_amount_cents,
        requested_amount_cents=int(requested),
        currency=pi.currency,
        status="PENDING",
        reason=reason or "Refund requested",
        requested_by=requested_by,
        created_at=now,
        updated_at=now,
    )
    db.add(rr)
    db.flush()

    audit_write(
        db,
        org_id=pi.org_id,
        application_id=pi.application_id,
        event_type="REFUND_REQUESTED",
        actor_id=requested_by,
        target_type=TARGET_TYPE,
        target_id=rr.id,
        metadata={
            "payment_intent_id": pi.id,
            "policy_id": decision.policy_id,
            "policy_version": decision.policy_version,
            "eligible_amount_cents": decision.eligible_amount_cents,
            "requested_amount_cents": rr.requested_amount_cents,
        },
        created_at=now,
    )
    return rr


def create_refund_request(
    db: Session,
    *,
    org_id: int,
    payment_intent_id: int,
    requested_by: int,
    requested_amount_cents: Optional[int] = None,
    reason: Optional[str] = None,
    jurisdiction_code: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, payment_intent_id=payment_intent_id, requested_by=requested_by)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        pi = db.scalar(
            select(PaymentIntent)
            .where(PaymentIntent.id == int(payment_intent_id), PaymentIntent.org_id == int(org_id))
            .with_for_update()
        )
        if pi is None:
            return {"ok": False, "error_code": "NOT_FOUND"}

        if jurisdiction_code is None:
            jurisdiction_code = jurisdiction_for_application(db, application_id=pi.application_id)

        decision = evaluate_refund_for_payment(
            db,
            org_id=org_id,
            payment=payment_facts(pi),
            jurisdiction_code=jurisdiction_code,
            as_of=now,
        )
        if not decision.eligible:
            return {"ok": False, "error_code": "NOT_ELIGIBLE", "decision": decision.as_dict()}

        rr = insert_refund_request(
            db,
            pi=pi,
            decision=decision,
            requested_by=requested_by,
            requested_amount_cents=requested_amount_cents,
            reason=reason,
            now=now,
        )
        return {"ok": True, "refund_request": refund_request_to_dict(rr), "decision": decision.as_dict()}


def _lock_refund_request(db: Session, *, org_id: int, refund_request_id: int) -> Optional[RefundRequest]:
    return db.scalar(
        select(RefundRequest)
        .where(RefundRequest.id == int(refund_request_id), RefundRequest.org_id == int(org_id))
        .with_for_update()
    )


def _audit_refund(db: Session, rr: RefundRequest, *, event_type: str, actor_id: Optional[int], now: datetime) -> None:
    audit_write(
        db,
        org_id=rr.org_id,
        application_id=rr.application_id,
        event_type=event_type,
        actor_id=actor_id,
        target_type=TARGET_TYPE,
        target_id=rr.id,
        metadata={
            "status": rr.status,
            "payment_intent_id": rr.payment_intent_id,
            "approved_amount_cents": rr.approved_amount_cents,
        },
        created_at=now,
    )


def review_refund_request(
    db: Session,
    *,
    org_id: int,
    refund_request_id: int,
    reviewer_id: int,
    status: str,
    approved_amount_cents: Optional[int] = None,
    review_notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, refund_request_id=refund_request_id, reviewer_id=reviewer_id, status=status)
    now = now or datetime.utcnow()
    status = str(status).strip().upper()

    with scoped_transaction(db):
        rr = _lock_refund_request(db, org_id=org_id, refund_request_id=refund_request_id)
        if rr is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if rr.status != "PENDING":
            return {"ok": False, "error_code": "INVALID_STATUS", "status": rr.status}
        if status not in REVIEW_OUTCOMES:
            return {"ok": False, "error_code": "INVALID_STATUS_VALUE"}

        if status == "APPROVED":
            if approved_amount_cents is None:
                approved_amount_cents = (
                    rr.eligible_amount_cents if rr.eligible_amount_cents is not None else rr.requested_amount_cents
                )
            rr.approved_amount_cents = approved_amount_cents
        else:
            rr.approved_amount_cents = None

        rr.status = status
        rr.reviewed_by = reviewer_id
        rr.reviewed_at = now
        rr.review_notes = review_notes
        rr.updated_at = now
        db.flush()

        _audit_refund(
            db,
            rr,
            event_type="REFUND_APPROVED" if status == "APPROVED" else "REFUND_DENIED",
            actor_id=reviewer_id,
            now=now,
        )
        return {"ok": True, "refund_request": refund_request_to_dict(rr)}


def process_refund_request(
    db: Session,
    *,
    org_id: int,
    refund_request_id: int,
    provider_refund_id: Optional[str] = None,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, refund_request_id=refund_request_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        rr = _lock_refund_request(db, org_id=org_id, refund_request_id=refund_request_id)
        if rr is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if rr.status != "APPROVED":
            return {"ok": False, "error_code": "INVALID_STATUS", "status": rr.status}

        rr.status = "PROCESSED"
        rr.processed_at = now
        rr.provider_refund_id = provider_refund_id
        rr.updated_at = now
        db.flush()

        _audit_refund(db, rr, event_type="REFUND_PROCESSED", actor_id=actor_id, now=now)
        return {"ok": True, "refund_request": refund_request_to_dict(rr)}


def fail_refund_request(
    db: Session,
    *,
    org_id: int,
    refund_request_id: int,
    failure_reason: Optional[str] = None,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, refund_request_id=refund_request_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        rr = _lock_refund_request(db, org_id=org_id, refund_request_id=refund_request_id)
        if rr is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        # only an approved refund can be in flight at the provider
        if rr.status != "APPROVED":
            return {"ok": False, "error_code": "INVALID_STATUS", "status": rr.status}

        rr.status = "FAILED"
        rr.failed_at = now
        rr.failure_reason = failure_reason
        rr.updated_at = now
        db.flush()

        _audit_refund(db, rr, event_type="REFUND_FAILED", actor_id=actor_id, now=now)
        log.info("refund failed", extra={"org_id": org_id, "application_id": rr.application_id})
        return {"ok": True, "refund_request": refund_request_to_dict(rr)}


def list_refund_requests(
    db: Session,
    *,
    org_id: int,
    status: Optional[str] = None,
    application_id: Optional[int] = None,
) -> list[dict[str, Any]]:
    require(org_id=org_id)
    q = select(RefundRequest).where(RefundRequest.org_id == int(org_id))
    if status:
        q = q.where(RefundRequest.status == str(status).strip().upper())
    if application_id is not None:
        q = q.where(RefundRequest.application_id == int(application_id))
    q = q.order_by(RefundRequest.created_at.desc(), RefundRequest.id.desc())
    return [refund_request_to_dict(r) for r in db.scalars(q).all()]
