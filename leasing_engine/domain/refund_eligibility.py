# leasing_engine/domain/refund_eligibility.py
"""
Pure refund decisioning.

No DB access here: services convert ORM rows into PaymentFacts / PolicyFacts
and call evaluate_refund_eligibility(). Deterministic for a given as_of.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Iterable, Optional


@dataclass(frozen=True)
class PaymentFacts:
    status: str
    amount_cents: int
    paid_at: Optional[datetime] = None
    payment_type: Optional[str] = None


@dataclass(frozen=True)
class PolicyFacts:
    id: int
    version: int
    policy_type: str
    is_active: bool
    effective_at: datetime
    expired_at: Optional[datetime] = None
    refund_percentage: Optional[float] = None
    refund_window_hours: Optional[int] = None
    jurisdiction_code: Optional[str] = None
    payment_type: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> "PolicyFacts":
        return cls(
            id=int(row.id),
            version=int(row.version),
            policy_type=str(row.policy_type),
            is_active=bool(row.is_active),
            effective_at=row.effective_at,
            expired_at=row.expired_at,
            refund_percentage=row.refund_percentage,
            refund_window_hours=row.refund_window_hours,
            jurisdiction_code=row.jurisdiction_code,
            payment_type=row.payment_type,
        )


@dataclass(frozen=True)
class RefundDecision:
    eligible: bool
    reason_code: str
    policy_id: Optional[int] = None
    policy_version: Optional[int] = None
    eligible_amount_cents: Optional[int] = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _is_effective(policy: PolicyFacts, as_of: datetime) -> bool:
    if policy.effective_at > as_of:
        return False
    if policy.expired_at is not None and policy.expired_at <= as_of:
        return False
    return True


def evaluate_refund_eligibility(
    payment: PaymentFacts,
    policy: Optional[PolicyFacts],
    as_of: datetime,
) -> RefundDecision:
    if policy is None:
        return RefundDecision(eligible=False, reason_code="NO_POLICY")

    def _no(code: str) -> RefundDecision:
        return RefundDecision(
            eligible=False,
            reason_code=code,
            policy_id=policy.id,
            policy_version=policy.version,
        )

    if not policy.is_active:
        return _no("POLICY_INACTIVE")
    if not _is_effective(policy, as_of):
        return _no("POLICY_NOT_EFFECTIVE")
    if payment.status != "SUCCEEDED":
        return _no("PAYMENT_NOT_SUCCEEDED")
    if payment.paid_at is None:
        return _no("PAYMENT_NOT_PAID")

    if policy.refund_window_hours is not None:
        elapsed_s = (as_of - payment.paid_at).total_seconds()
        if elapsed_s > float(policy.refund_window_hours) * 3600.0:
            return _no("OUTSIDE_REFUND_WINDOW")

    if policy.policy_type == "NO_REFUND":
        return _no("POLICY_NO_REFUND")

    if policy.policy_type == "FULL_REFUND":
        return RefundDecision(
            eligible=True,
            reason_code="ELIGIBLE",
            policy_id=policy.id,
            policy_version=policy.version,
            eligible_amount_cents=int(payment.amount_cents),
        )

    if policy.policy_type in ("PARTIAL_REFUND", "TIME_BASED"):
        if policy.refund_percentage is None:
            return _no("MISSING_REFUND_PERCENTAGE")
        amount = int(math.floor(int(payment.amount_cents) * float(policy.refund_percentage) / 100))
        if amount <= 0:
            return _no("MISSING_REFUND_PERCENTAGE")
        return RefundDecision(
            eligible=True,
            reason_code="ELIGIBLE",
            policy_id=policy.id,
            policy_version=policy.version,
            eligible_amount_cents=amount,
        )

    return _no("NO_POLICY")


def _scope_score(value: Optional[str], wanted: Optional[str]) -> int:
    # exact match beats a NULL (wildcard) row, which beats anything else
    score = 0
    if wanted and value == wanted:
        score += 2
    if value is None:
        score += 1
    return score


def pick_active_refund_policy(
    policies: Iterable[PolicyFacts],
    *,
    jurisdiction_code: Optional[str],
    payment_type: Optional[str],
    as_of: datetime,
) -> Optional[PolicyFacts]:
    active = [p for p in policies if p.is_active and _is_effective(p, as_of)]
    if jurisdiction_code:
        active = [p for p in active if p.jurisdiction_code is None or p.jurisdiction_code == jurisdiction_code]
    if not active:
        return None

    active.sort(
        key=lambda p: (
            -_scope_score(p.jurisdiction_code, jurisdiction_code),
            -_scope_score(p.payment_type, payment_type),
            -int(p.version),
            -p.effective_at.timestamp(),
            str(p.id),
        )
    )
    return active[0]
