# leasing_engine/routers/payments.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_operator
from ..db import get_db
from ..schemas import (
    FeeConfirmIn,
    FeeIntentIn,
    RefundFailIn,
    RefundProcessIn,
    RefundRequestIn,
    RefundReviewIn,
)
from ..services.payments import (
    confirm_application_fee_payment,
    create_application_fee_intent,
    list_application_fee_payment_attempts,
)
from ..services.refunds import (
    create_refund_request,
    fail_refund_request,
    list_refund_requests,
    process_refund_request,
    review_refund_request,
)
from .common import outcome

router = APIRouter(prefix="/leasing", tags=["leasing-payments"])


# -------------------- Application fee --------------------

@router.post("/applications/{application_id}/fee/intent", response_model=dict)
def fee_intent(
    application_id: int,
    payload: FeeIntentIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return outcome(
        create_application_fee_intent(
            db,
            org_id=p.org_id,
            application_id=application_id,
            amount_cents=payload.amount_cents,
            currency=payload.currency,
            metadata=payload.metadata,
            actor_id=p.user_id,
        ),
        not_found="application not found",
    )


@router.post("/applications/{application_id}/fee/confirm", response_model=dict)
def fee_confirm(
    application_id: int,
    payload: FeeConfirmIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return outcome(
        confirm_application_fee_payment(
            db,
            org_id=p.org_id,
            application_id=application_id,
            confirmation=payload.confirmation,
            actor_id=p.user_id,
        ),
        not_found="application not found",
    )


@router.get("/applications/{application_id}/fee/attempts", response_model=dict)
def fee_attempts(application_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return list_application_fee_payment_attempts(db, org_id=p.org_id, application_id=application_id)


# -------------------- Refunds --------------------

@router.post("/refunds", response_model=dict)
def request_refund(payload: RefundRequestIn, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return outcome(
        create_refund_request(
            db,
            org_id=p.org_id,
            payment_intent_id=payload.payment_intent_id,
            requested_by=p.user_id,
            requested_amount_cents=payload.requested_amount_cents,
            reason=payload.reason,
            jurisdiction_code=payload.jurisdiction_code,
        ),
        not_found="payment intent not found",
    )


@router.get("/refunds", response_model=list[dict])
def refunds(
    status: Optional[str] = Query(default=None),
    application_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return list_refund_requests(db, org_id=p.org_id, status=status, application_id=application_id)


@router.post("/refunds/{refund_request_id}/review", response_model=dict)
def review_refund(
    refund_request_id: int,
    payload: RefundReviewIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_operator),
):
    return outcome(
        review_refund_request(
            db,
            org_id=p.org_id,
            refund_request_id=refund_request_id,
            reviewer_id=p.user_id,
            status=payload.status,
            approved_amount_cents=payload.approved_amount_cents,
            review_notes=payload.review_notes,
        ),
        not_found="refund request not found",
    )


@router.post("/refunds/{refund_request_id}/process", response_model=dict)
def process_refund(
    refund_request_id: int,
    payload: RefundProcessIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_operator),
):
    return outcome(
        process_refund_request(
            db,
            org_id=p.org_id,
            refund_request_id=refund_request_id,
            provider_refund_id=payload.provider_refund_id,
            actor_id=p.user_id,
        ),
        not_found="refund request not found",
    )


@router.post("/refunds/{refund_request_id}/fail", response_model=dict)
def fail_refund(
    refund_request_id: int,
    payload: RefundFailIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_operator),
):
    return outcome(
        fail_refund_request(
            db,
            org_id=p.org_id,
            refund_request_id=refund_request_id,
            failure_reason=payload.failure_reason,
            actor_id=p.user_id,
        ),
        not_found="refund request not found",
    )
