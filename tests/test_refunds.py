from __future__ import annotations

from datetime import datetime, timedelta

from factories import OPEN_CONFIG, add_refund_policy, make_world, submit_ready, utcnow
from leasing_engine.domain.refund_eligibility import (
    PaymentFacts,
    PolicyFacts,
    evaluate_refund_eligibility,
    pick_active_refund_policy,
)
from leasing_engine.models import RefundRequest
from leasing_engine.services.applications import withdraw_application
from leasing_engine.services.payments import confirm_application_fee_payment, create_application_fee_intent
from leasing_engine.services.refunds import (
    create_refund_request,
    fail_refund_request,
    list_refund_requests,
    process_refund_request,
    review_refund_request,
)

T0 = datetime(2026, 3, 1, 12, 0, 0)


def _policy(id=1, *, policy_type="FULL_REFUND", pct=None, window=None, jurisdiction=None, version=1, active=True):
    return PolicyFacts(
        id=id,
        version=version,
        policy_type=policy_type,
        is_active=active,
        effective_at=T0 - timedelta(days=30),
        refund_percentage=pct,
        refund_window_hours=window,
        jurisdiction_code=jurisdiction,
        payment_type="APPLICATION_FEE",
    )


def _paid(amount=5000, *, paid_at=T0):
    return PaymentFacts(status="SUCCEEDED", amount_cents=amount, paid_at=paid_at, payment_type="APPLICATION_FEE")


def test_partial_refund_floors_the_amount():
    d = evaluate_refund_eligibility(_paid(999), _policy(policy_type="PARTIAL_REFUND", pct=33.3), T0)
    assert d.eligible is True
    assert d.eligible_amount_cents == 332

    d = evaluate_refund_eligibility(_paid(1), _policy(policy_type="TIME_BASED", pct=50), T0)
    assert d.eligible is False
    assert d.reason_code == "MISSING_REFUND_PERCENTAGE"

    d = evaluate_refund_eligibility(_paid(), _policy(policy_type="PARTIAL_REFUND"), T0)
    assert d.reason_code == "MISSING_REFUND_PERCENTAGE"


def test_eligibility_check_order():
    assert evaluate_refund_eligibility(_paid(), None, T0).reason_code == "NO_POLICY"
    assert evaluate_refund_eligibility(_paid(), _policy(active=False), T0).reason_code == "POLICY_INACTIVE"

    unpaid = PaymentFacts(status="REQUIRES_ACTION", amount_cents=5000)
    assert evaluate_refund_eligibility(unpaid, _policy(), T0).reason_code == "PAYMENT_NOT_SUCCEEDED"

    no_paid_at = PaymentFacts(status="SUCCEEDED", amount_cents=5000)
    assert evaluate_refund_eligibility(no_paid_at, _policy(), T0).reason_code == "PAYMENT_NOT_PAID"

    late = _paid(paid_at=T0 - timedelta(hours=25))
    d = evaluate_refund_eligibility(late, _policy(window=24), T0)
    assert d.reason_code == "OUTSIDE_REFUND_WINDOW"
    assert d.policy_id == 1

    # the window is checked before the policy type
    assert evaluate_refund_eligibility(late, _policy(policy_type="NO_REFUND", window=24), T0).reason_code == (
        "OUTSIDE_REFUND_WINDOW"
    )
    assert evaluate_refund_eligibility(_paid(), _policy(policy_type="NO_REFUND"), T0).reason_code == "POLICY_NO_REFUND"

    full = evaluate_refund_eligibility(_paid(4500), _policy(), T0)
    assert full.eligible is True
    assert full.eligible_amount_cents == 4500


def test_pick_policy_prefers_jurisdiction_then_version():
    policies = [
        _policy(1, version=5),
        _policy(2, jurisdiction="MI-DETROIT", version=1),
        _policy(3, jurisdiction="OH-TOLEDO", version=9),
    ]
    picked = pick_active_refund_policy(
        policies, jurisdiction_code="MI-DETROIT", payment_type="APPLICATION_FEE", as_of=T0
    )
    assert picked.id == 2

    picked = pick_active_refund_policy(policies, jurisdiction_code="CA-SF", payment_type="APPLICATION_FEE", as_of=T0)
    assert picked.id == 1

    inactive = [_policy(1, active=False)]
    assert pick_active_refund_policy(inactive, jurisdiction_code=None, payment_type=None, as_of=T0) is None

    # equal scope, version and effective time: smallest id string wins
    tied = [_policy(9), _policy(10)]
    assert pick_active_refund_policy(tied, jurisdiction_code=None, payment_type=None, as_of=T0).id == 10


def test_policy_outside_its_effective_range_is_not_effective():
    future = PolicyFacts(
        id=7,
        version=1,
        policy_type="FULL_REFUND",
        is_active=True,
        effective_at=T0 + timedelta(days=1),
    )
    d = evaluate_refund_eligibility(_paid(), future, T0)
    assert d.eligible is False
    assert d.reason_code == "POLICY_NOT_EFFECTIVE"
    assert d.policy_id == 7
    assert d.eligible_amount_cents is None

    retired = PolicyFacts(
        id=8,
        version=2,
        policy_type="FULL_REFUND",
        is_active=True,
        effective_at=T0 - timedelta(days=30),
        expired_at=T0 - timedelta(days=1),
    )
    d = evaluate_refund_eligibility(_paid(), retired, T0)
    assert d.eligible is False
    assert d.reason_code == "POLICY_NOT_EFFECTIVE"
    assert d.policy_version == 2

    # the expiry instant itself is already outside the range
    assert evaluate_refund_eligibility(_paid(), retired, T0 - timedelta(days=1)).reason_code == "POLICY_NOT_EFFECTIVE"

    # neither is picked as the active policy
    assert pick_active_refund_policy([future, retired], jurisdiction_code=None, payment_type=None, as_of=T0) is None


def _paid_application(db, w, *, now):
    app_id = submit_ready(db, w, now=now)["application_id"]
    created = create_application_fee_intent(db, org_id=w.org_id, application_id=app_id, amount_cents=5000, now=now)
    confirm_application_fee_payment(db, org_id=w.org_id, application_id=app_id, confirmation={}, now=now)
    return app_id, created["payment_intent"]["id"]


def test_withdraw_after_payment_opens_refund_request_and_review_lifecycle(db):
    w = make_world(db, config=OPEN_CONFIG)
    add_refund_policy(db, org_id=w.org_id, policy_type="FULL_REFUND", refund_window_hours=72)
    now = utcnow()
    app_id, _ = _paid_application(db, w, now=now)

    out = withdraw_application(db, org_id=w.org_id, application_id=app_id, withdrawn_by=w.user_id, now=now)
    assert out["ok"] is True
    assert len(out["refund_requests"]) == 1
    rr = out["refund_requests"][0]
    assert rr["status"] == "PENDING"
    assert rr["eligible_amount_cents"] == 5000
    assert rr["reason_code"] == "ELIGIBLE"

    assert process_refund_request(db, org_id=w.org_id, refund_request_id=rr["id"])["error_code"] == "INVALID_STATUS"
    assert fail_refund_request(db, org_id=w.org_id, refund_request_id=rr["id"])["error_code"] == "INVALID_STATUS"

    bad = review_refund_request(db, org_id=w.org_id, refund_request_id=rr["id"], reviewer_id=w.user_id, status="MAYBE")
    assert bad["error_code"] == "INVALID_STATUS_VALUE"

    reviewed = review_refund_request(
        db, org_id=w.org_id, refund_request_id=rr["id"], reviewer_id=w.user_id, status="approved", now=now
    )
    assert reviewed["refund_request"]["status"] == "APPROVED"
    assert reviewed["refund_request"]["approved_amount_cents"] == 5000

    again = review_refund_request(
        db, org_id=w.org_id, refund_request_id=rr["id"], reviewer_id=w.user_id, status="DENIED"
    )
    assert again == {"ok": False, "error_code": "INVALID_STATUS", "status": "APPROVED"}

    processed = process_refund_request(
        db, org_id=w.org_id, refund_request_id=rr["id"], provider_refund_id="re_123", now=now
    )
    assert processed["refund_request"]["status"] == "PROCESSED"
    assert processed["refund_request"]["provider_refund_id"] == "re_123"

    listed = list_refund_requests(db, org_id=w.org_id, status="processed")
    assert [r["id"] for r in listed] == [rr["id"]]


def test_no_refund_policy_writes_no_request(db):
    w = make_world(db, config=OPEN_CONFIG)
    add_refund_policy(db, org_id=w.org_id, policy_type="NO_REFUND")
    now = utcnow()
    app_id, intent_id = _paid_application(db, w, now=now)

    out = withdraw_application(db, org_id=w.org_id, application_id=app_id, now=now)
    assert out["refund_requests"] == []
    assert out["refund_decisions"][0]["payment_intent_id"] == intent_id
    assert out["refund_decisions"][0]["decision"]["reason_code"] == "POLICY_NO_REFUND"
    assert db.query(RefundRequest).count() == 0


def test_create_refund_request_directly_and_deny(db):
    w = make_world(db, config=OPEN_CONFIG)
    add_refund_policy(db, org_id=w.org_id, policy_type="PARTIAL_REFUND", refund_percentage=50)
    now = utcnow()

    app_id = submit_ready(db, w, now=now)["application_id"]
    created = create_application_fee_intent(db, org_id=w.org_id, application_id=app_id, amount_cents=5000, now=now)
    intent_id = created["payment_intent"]["id"]

    unpaid = create_refund_request(db, org_id=w.org_id, payment_intent_id=intent_id, requested_by=w.user_id, now=now)
    assert unpaid["ok"] is False
    assert unpaid["error_code"] == "NOT_ELIGIBLE"
    assert unpaid["decision"]["reason_code"] == "PAYMENT_NOT_SUCCEEDED"

    confirm_application_fee_payment(db, org_id=w.org_id, application_id=app_id, now=now)
    out = create_refund_request(db, org_id=w.org_id, payment_intent_id=intent_id, requested_by=w.user_id, now=now)
    assert out["ok"] is True
    assert out["refund_request"]["eligible_amount_cents"] == 2500
    assert out["refund_request"]["requested_amount_cents"] == 2500

    denied = review_refund_request(
        db,
        org_id=w.org_id,
        refund_request_id=out["refund_request"]["id"],
        reviewer_id=w.user_id,
        status="DENIED",
        review_notes="outside policy",
    )
    assert denied["refund_request"]["status"] == "DENIED"
    assert denied["refund_request"]["approved_amount_cents"] is None

    missing = create_refund_request(db, org_id=w.org_id, payment_intent_id=999, requested_by=w.user_id)
    assert missing == {"ok": False, "error_code": "NOT_FOUND"}
