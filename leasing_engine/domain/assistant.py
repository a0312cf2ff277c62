# leasing_engine/domain/assistant.py
"""
Leasing assistant plan (pure).

Input is the application detail snapshot (the dict returned by
get_application_detail) plus the effective workflow-config document. Output
is the next action, a list of recommendations, and the subset of
recommendation keys automation may run on its own.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from ..services.config_resolver import AutomationPolicy, automation_policy
from .leasing_states import PARTY_DONE_STATUSES, REQUIREMENT_SATISFIED

AUTOMATION_SAFE_ACTIONS = ("SEND_REMINDER", "REQUEST_MISSING_DOCS", "RELEASE_EXPIRED_RESERVATION", "MARK_STALE")


@dataclass(frozen=True)
class Recommendation:
    action_key: str
    label: str
    reason: str
    severity: str  # low|medium|high

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AssistantGates:
    parties_blocked: bool
    docs_blocked: bool
    screening_blocked: bool
    payment_blocked: bool
    reservation_blocked: bool
    incomplete_party_ids: tuple = ()
    missing_requirement_ids: tuple = ()


def _list(snapshot: dict[str, Any], key: str) -> list[dict[str, Any]]:
    val = snapshot.get(key)
    return [x for x in val if isinstance(x, dict)] if isinstance(val, list) else []


def compute_gates(snapshot: dict[str, Any]) -> AssistantGates:
    application = snapshot.get("application") or {}
    parties = _list(snapshot, "parties")
    requirements = _list(snapshot, "requirements")
    payments = _list(snapshot, "payments")
    reservations = _list(snapshot, "reservations")

    incomplete = [p for p in parties if p.get("status") not in PARTY_DONE_STATUSES]
    docs_missing = [
        r
        for r in requirements
        if r.get("requirement_type") == "DOCUMENT"
        and r.get("is_required") is not False
        and r.get("status") not in REQUIREMENT_SATISFIED
    ]
    screening_missing = [
        r
        for r in requirements
        if r.get("requirement_type") == "SCREENING" and r.get("status") not in REQUIREMENT_SATISFIED
    ]
    paid = application.get("application_fee_status") == "SUCCEEDED" or any(
        p.get("status") == "SUCCEEDED" for p in payments
    )
    has_active = any(r.get("status") == "ACTIVE" for r in reservations)

    return AssistantGates(
        parties_blocked=bool(incomplete),
        docs_blocked=bool(docs_missing),
        screening_blocked=bool(screening_missing),
        payment_blocked=not paid,
        reservation_blocked=application.get("unit_id") is not None and not has_active,
        incomplete_party_ids=tuple(p.get("id") for p in incomplete),
        missing_requirement_ids=tuple(r.get("id") for r in docs_missing + screening_missing),
    )


def next_action(status: str, gates: AssistantGates) -> dict[str, Any]:
    if status == "NEEDS_INFO":
        return {"key": "WAITING_ON_APPLICANT", "label": "Waiting on applicant", "reason_codes": []}
    if status in ("DECISIONED", "CONVERTED", "CLOSED"):
        return {"key": "NO_ACTION", "label": "No action needed", "reason_codes": []}
    if gates.parties_blocked:
        return {"key": "COMPLETE_PARTIES", "label": "Complete parties", "reason_codes": ["PARTIES_INCOMPLETE"]}
    if gates.docs_blocked:
        return {"key": "COLLECT_DOCUMENTS", "label": "Collect documents", "reason_codes": ["MISSING_DOCS"]}
    if gates.screening_blocked:
        return {"key": "COMPLETE_SCREENING", "label": "Complete screening", "reason_codes": ["SCREENING_PENDING"]}
    if gates.payment_blocked:
        return {"key": "COLLECT_PAYMENT", "label": "Resolve payment", "reason_codes": ["PAYMENT_PENDING"]}
    if gates.reservation_blocked:
        return {"key": "RESERVE_UNIT", "label": "Reserve unit", "reason_codes": ["RESERVATION_PENDING"]}
    return {"key": "REVIEW", "label": "Review application", "reason_codes": []}


def expired_active_reservations(snapshot: dict[str, Any], now: datetime) -> list[dict[str, Any]]:
    return [
        r
        for r in _list(snapshot, "reservations")
        if r.get("status") == "ACTIVE" and isinstance(r.get("expires_at"), datetime) and r["expires_at"] <= now
    ]


def recommendations(
    snapshot: dict[str, Any],
    gates: AssistantGates,
    policy: AutomationPolicy,
    now: datetime,
) -> list[Recommendation]:
    application = snapshot.get("application") or {}
    status = application.get("status") or ""
    out: list[Recommendation] = []

    if gates.parties_blocked:
        out.append(
            Recommendation(
                "SEND_REMINDER", "Send reminder", "Household members still need to complete their sections.", "medium"
            )
        )
    if gates.docs_blocked:
        out.append(
            Recommendation(
                "REQUEST_MISSING_DOCS", "Request missing documents", "Required documents are still pending.", "high"
            )
        )
    if gates.payment_blocked:
        out.append(Recommendation("RETRY_PAYMENT", "Retry application fee", "Payment has not cleared yet.", "high"))
    if status == "SUBMITTED":
        out.append(Recommendation("MARK_IN_REVIEW", "Mark in review", "Application is ready for staff review.", "low"))
    if status == "NEEDS_INFO" and _list(snapshot, "info_requests"):
        out.append(
            Recommendation("SEND_REMINDER", "Send reminder", "Open info requests require applicant response.", "medium")
        )
    if expired_active_reservations(snapshot, now):
        out.append(
            Recommendation(
                "RELEASE_EXPIRED_RESERVATION",
                "Release expired reservation",
                "Reservation has expired and should be released.",
                "medium",
            )
        )

    updated_at = application.get("updated_at")
    if isinstance(updated_at, datetime) and updated_at < now - timedelta(days=policy.stale_after_days):
        out.append(
            Recommendation("MARK_STALE", "Flag as stale", "No recent activity detected on this application.", "low")
        )
    return out


def automation_eligible(recs: list[Recommendation], policy: AutomationPolicy) -> list[str]:
    if not policy.enabled:
        return []
    keys: list[str] = []
    for r in recs:
        if r.action_key in AUTOMATION_SAFE_ACTIONS and r.action_key not in keys:
            keys.append(r.action_key)
    return keys


def compute_assistant_plan(
    snapshot: dict[str, Any],
    workflow_config: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    now = now or datetime.utcnow()
    policy = automation_policy(workflow_config or {})
    gates = compute_gates(snapshot or {})
    status = ((snapshot or {}).get("application") or {}).get("status") or ""
    recs = recommendations(snapshot or {}, gates, policy, now)
    return {
        "next_action": next_action(status, gates),
        "recommendations": [r.as_dict() for r in recs],
        "automation_eligible_actions": automation_eligible(recs, policy),
        "policy": policy.as_dict(),
    }
