# leasing_engine/services/payments.py
"""
Application-fee payment lifecycle.

One PaymentIntent per application for APPLICATION_FEE; every retry reuses it
and appends a PaymentAttempt (attempt_number = attempts_count + 1). Row locks
on the application, the latest intent and the latest attempt serialize
concurrent create/confirm calls for the same application.

Declines are outcomes ({"ok": False, "error_code": "PAYMENT_FAILED"}), not
exceptions.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import scoped_transaction
from ..domain.audit import audit_write
from ..domain.json_fields import dumps_json
from ..domain.leasing_states import PAYMENT_IN_FLIGHT
from ..models import LeaseApplication, PaymentAttempt, PaymentIntent
from .guards import require
from .mappers import attempt_to_dict, intent_to_dict
from .payments_adapter import PaymentsAdapter, get_payments_adapter

log = logging.getLogger(__name__)

APPLICATION_FEE = "APPLICATION_FEE"
TARGET_TYPE = "payment_intent"


def _lock_application(db: Session, *, org_id: int, application_id: int) -> Optional[LeaseApplication]:
    return db.scalar(
        select(LeaseApplication)
        .where(LeaseApplication.id == int(application_id), LeaseApplication.org_id == int(org_id))
        .with_for_update()
    )


def _lock_latest_fee_intent(db: Session, *, org_id: int, application_id: int) -> Optional[PaymentIntent]:
    return db.scalar(
        select(PaymentIntent)
        .where(
            PaymentIntent.org_id == int(org_id),
            PaymentIntent.application_id == int(application_id),
            PaymentIntent.payment_type == APPLICATION_FEE,
        )
        .order_by(PaymentIntent.updated_at.desc(), PaymentIntent.created_at.desc(), PaymentIntent.id.desc())
        .limit(1)
        .with_for_update()
    )


def _lock_latest_attempt(db: Session, *, payment_intent_id: int) -> Optional[PaymentAttempt]:
    return db.scalar(
        select(PaymentAttempt)
        .where(PaymentAttempt.payment_intent_id == int(payment_intent_id))
        .order_by(PaymentAttempt.attempt_number.desc())
        .limit(1)
        .with_for_update()
    )


# ---------------------------------------------------------------------
# Create (or reuse) the fee intent
# ---------------------------------------------------------------------
def create_application_fee_intent(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    amount_cents: int,
    currency: str = "USD",
    metadata: Optional[dict[str, Any]] = None,
    actor_id: Optional[int] = None,
    adapter: Optional[PaymentsAdapter] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id)
    try:
        amount = int(amount_cents)
    except (TypeError, ValueError):
        raise ValueError("amount_cents must be a positive integer") from None
    if amount <= 0:
        raise ValueError("amount_cents must be a positive integer")
    currency = (currency or "USD").strip().upper()
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        app = _lock_application(db, org_id=org_id, application_id=application_id)
        if app is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if app.status != "SUBMITTED":
            return {"ok": False, "error_code": "NOT_SUBMITTED", "status": app.status}

        intent = _lock_latest_fee_intent(db, org_id=org_id, application_id=application_id)
        if intent is not None and intent.status == "SUCCEEDED":
            return {"ok": True, "already_paid": True, "payment_intent": intent_to_dict(intent)}
        if intent is not None and intent.status in PAYMENT_IN_FLIGHT:
            return {
                "ok": True,
                "payment_intent": intent_to_dict(intent),
                "client_secret": intent.client_secret,
            }

        adapter = adapter or get_payments_adapter()
        created = adapter.create_intent(amount_cents=amount, currency=currency, metadata=metadata)
        attempt_number = (int(intent.attempts_count or 0) if intent is not None else 0) + 1

        if intent is None:
            intent = PaymentIntent(
                org_id=int(org_id),
                application_id=int(application_id),
                payment_type=APPLICATION_FEE,
                created_at=now,
            )
            db.add(intent)

        intent.amount_cents = amount
        intent.currency = currency
        intent.provider = created.provider
        intent.provider_reference = created.provider_reference
        intent.client_secret = created.client_secret
        intent.status = created.status
        intent.attempts_count = attempt_number
        intent.metadata_json = dumps_json(metadata or {})
        intent.failed_at = None
        intent.failure_reason = None
        intent.last_failure_code = None
        intent.last_failure_message = None
        intent.last_failure_at = None
        intent.updated_at = now
        db.flush()

        attempt = PaymentAttempt(
            org_id=int(org_id),
            payment_intent_id=intent.id,
            attempt_number=attempt_number,
            status=created.status,
            amount_cents=amount,
            currency=currency,
            provider=created.provider,
            provider_reference=created.provider_reference,
            request_payload_json=dumps_json({"amount_cents": amount, "currency": currency, "metadata": metadata}),
            response_payload_json=dumps_json(created.response),
            created_at=now,
            updated_at=now,
        )
        db.add(attempt)

        app.application_fee_status = "PENDING"
        app.updated_at = now
        db.flush()

        audit_write(
            db,
            org_id=org_id,
            application_id=application_id,
            event_type="PAYMENT_INTENT_CREATED",
            actor_id=actor_id,
            target_type=TARGET_TYPE,
            target_id=intent.id,
            metadata={
                "amount_cents": amount,
                "currency": currency,
                "attempt_number": attempt_number,
                "provider": created.provider,
            },
            created_at=now,
        )
        log.info(
            "application fee intent created",
            extra={"org_id": org_id, "application_id": application_id},
        )
        return {
            "ok": True,
            "payment_intent": intent_to_dict(intent),
            "attempt": attempt_to_dict(attempt),
            "client_secret": intent.client_secret,
        }


# ---------------------------------------------------------------------
# Confirm
# ---------------------------------------------------------------------
def confirm_application_fee_payment(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    confirmation: Optional[dict[str, Any]] = None,
    actor_id: Optional[int] = None,
    adapter: Optional[PaymentsAdapter] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        app = _lock_application(db, org_id=org_id, application_id=application_id)
        if app is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if app.status != "SUBMITTED":
            return {"ok": False, "error_code": "NOT_SUBMITTED", "status": app.status}

        intent = _lock_latest_fee_intent(db, org_id=org_id, application_id=application_id)
        if intent is None:
            return {"ok": False, "error_code": "NO_PAYMENT_INTENT"}
        if intent.status == "SUCCEEDED":
            return {"ok": True, "already_paid": True, "payment_intent": intent_to_dict(intent)}

        attempt = _lock_latest_attempt(db, payment_intent_id=intent.id)
        if attempt is None:
            return {"ok": False, "error_code": "NO_PAYMENT_ATTEMPT"}

        adapter = adapter or get_payments_adapter(intent.provider)
        result = adapter.confirm_intent(provider_reference=intent.provider_reference, confirmation=confirmation)
        succeeded = result.status == "SUCCEEDED"

        attempt.status = result.status
        attempt.failure_code = result.failure_code
        attempt.failure_message = result.failure_message
        attempt.response_payload_json = dumps_json(result.response)
        attempt.updated_at = now

        intent.status = result.status
        intent.updated_at = now
        if succeeded:
            intent.paid_at = now
            intent.failed_at = None
            intent.failure_reason = None
        else:
            intent.failed_at = now
            intent.failure_reason = result.failure_message
            intent.last_failure_code = result.failure_code
            intent.last_failure_message = result.failure_message
            intent.last_failure_at = now

        app.application_fee_status = "SUCCEEDED" if succeeded else "FAILED"
        app.updated_at = now
        db.flush()

        audit_write(
            db,
            org_id=org_id,
            application_id=application_id,
            event_type="PAYMENT_SUCCEEDED" if succeeded else "PAYMENT_FAILED",
            actor_id=actor_id,
            target_type=TARGET_TYPE,
            target_id=intent.id,
            metadata={
                "attempt_number": attempt.attempt_number,
                "status": result.status,
                "failure_code": result.failure_code,
            },
            created_at=now,
        )

        out: dict[str, Any] = {
            "ok": succeeded,
            "payment_intent": intent_to_dict(intent),
            "attempt": attempt_to_dict(attempt),
        }
        if not succeeded:
            out["error_code"] = "PAYMENT_FAILED"
            log.info(
                "application fee declined",
                extra={"org_id": org_id, "application_id": application_id, "error_code": result.failure_code},
            )
        return out


def list_application_fee_payment_attempts(db: Session, *, org_id: int, application_id: int) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id)
    intent = db.scalar(
        select(PaymentIntent)
        .where(
            PaymentIntent.org_id == int(org_id),
            PaymentIntent.application_id == int(application_id),
            PaymentIntent.payment_type == APPLICATION_FEE,
        )
        .order_by(PaymentIntent.updated_at.desc(), PaymentIntent.created_at.desc(), PaymentIntent.id.desc())
        .limit(1)
    )
    if intent is None:
        return {"ok": True, "payment_intent": None, "attempts": []}
    attempts = db.scalars(
        select(PaymentAttempt)
        .where(PaymentAttempt.payment_intent_id == intent.id)
        .order_by(PaymentAttempt.attempt_number.asc())
    ).all()
    return {"ok": True, "payment_intent": intent_to_dict(intent), "attempts": [attempt_to_dict(a) for a in attempts]}
