# leasing_engine/services/config_resolver.py
"""
Effective workflow-config resolution.

Several versioned configs can be "current" at once (property-scoped, org-wide,
org+jurisdiction). pick_effective_config() chooses exactly one with a fixed
three-tier fallback and a total tie-break order:

  1) property-scoped (jurisdiction match first)
  2) org-wide default (no property, no jurisdiction)
  3) org + jurisdiction default (no property)

Ties inside a tier: highest version, then latest effective_at, then smallest id.

The derived-settings helpers below (submit/unit-intake/automation) read the
config document and apply defaults + clamping; callers never read raw keys.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ..domain.json_fields import clamp_int, loads_json
from ..models import WorkflowConfig


def _tie_break_key(c: WorkflowConfig) -> tuple:
    return (-int(c.version or 0), -c.effective_at.timestamp(), str(c.id))


def pick_effective_config(
    configs: Iterable[WorkflowConfig],
    *,
    property_id: Optional[int],
    jurisdiction_code: Optional[str],
) -> Optional[WorkflowConfig]:
    candidates = [
        c for c in configs if (property_id is not None and c.property_id == property_id) or c.property_id is None
    ]

    if property_id is not None:
        scoped = [c for c in candidates if c.property_id == property_id]
        if scoped:
            scoped.sort(
                key=lambda c: (
                    0 if (jurisdiction_code and c.jurisdiction_code == jurisdiction_code) else 1,
                    *_tie_break_key(c),
                )
            )
            return scoped[0]

    org_default = sorted(
        (c for c in candidates if c.property_id is None and c.jurisdiction_code is None),
        key=_tie_break_key,
    )
    if org_default:
        return org_default[0]

    if jurisdiction_code:
        jurisdiction_default = sorted(
            (c for c in candidates if c.property_id is None and c.jurisdiction_code == jurisdiction_code),
            key=_tie_break_key,
        )
        if jurisdiction_default:
            return jurisdiction_default[0]

    return None


def load_candidate_configs(
    db: Session,
    *,
    org_id: int,
    property_id: Optional[int],
    jurisdiction_code: Optional[str],
    as_of: datetime,
) -> list[WorkflowConfig]:
    q = select(WorkflowConfig).where(
        WorkflowConfig.org_id == int(org_id),
        WorkflowConfig.effective_at <= as_of,
        or_(WorkflowConfig.expired_at.is_(None), WorkflowConfig.expired_at > as_of),
    )
    if property_id is not None:
        q = q.where(or_(WorkflowConfig.property_id == int(property_id), WorkflowConfig.property_id.is_(None)))
    else:
        q = q.where(WorkflowConfig.property_id.is_(None))
    if jurisdiction_code:
        q = q.where(
            or_(WorkflowConfig.jurisdiction_code == jurisdiction_code, WorkflowConfig.jurisdiction_code.is_(None))
        )
    q = q.order_by(WorkflowConfig.version.desc(), WorkflowConfig.effective_at.desc(), WorkflowConfig.id.asc())
    return list(db.scalars(q).all())


def resolve_effective_config(
    db: Session,
    *,
    org_id: int,
    property_id: Optional[int] = None,
    jurisdiction_code: Optional[str] = None,
    as_of: Optional[datetime] = None,
) -> Optional[WorkflowConfig]:
    if not org_id:
        raise ValueError("org_id is required")
    as_of = as_of or datetime.utcnow()
    rows = load_candidate_configs(
        db,
        org_id=org_id,
        property_id=property_id,
        jurisdiction_code=jurisdiction_code,
        as_of=as_of,
    )
    return pick_effective_config(rows, property_id=property_id, jurisdiction_code=jurisdiction_code)


def config_document(cfg: Optional[WorkflowConfig]) -> dict[str, Any]:
    if cfg is None:
        return {}
    doc = loads_json(cfg.config_json, {})
    return doc if isinstance(doc, dict) else {}


def config_ref(cfg: Optional[WorkflowConfig]) -> Optional[dict[str, Any]]:
    if cfg is None:
        return None
    return {"id": cfg.id, "version": cfg.version}


# ---------------------------------------------------------------------
# Derived settings
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class SubmitSettings:
    ttl_days: int = 30
    joint_required_co_applicants: int = 1


@dataclass(frozen=True)
class UnitIntakeSettings:
    mode: str = "OPEN"  # OPEN|LOCK_ON_SUBMIT|CAP_N_SUBMITS
    cap_submits: int = 1


def _section(doc: Any, key: str) -> dict[str, Any]:
    if not isinstance(doc, dict):
        return {}
    val = doc.get(key)
    return val if isinstance(val, dict) else {}


def resolve_submit_settings(doc: Any) -> SubmitSettings:
    submit = _section(doc, "submit")
    ttl = clamp_int(submit.get("ttlDays"), min_value=1, max_value=365)
    joint = clamp_int(submit.get("jointRequiredCoApplicants"), min_value=0, max_value=6)
    return SubmitSettings(
        ttl_days=30 if ttl is None else ttl,
        joint_required_co_applicants=1 if joint is None else joint,
    )


def resolve_unit_intake(doc: Any) -> UnitIntakeSettings:
    intake = _section(doc, "unitIntake")
    cap = clamp_int(intake.get("capSubmits"), min_value=1, max_value=50)
    return UnitIntakeSettings(
        mode=str(intake.get("mode") or "OPEN"),
        cap_submits=1 if cap is None else cap,
    )


def resolve_abandonment_days(doc: Any, fallback: int = 7) -> int:
    section = _section(doc, "coApplicantAbandonment")
    days = clamp_int(section.get("inactivityDays"), min_value=1, max_value=60)
    return fallback if days is None else days


DEFAULT_SLA_HOURS = {"STANDARD": 48, "PRIORITY": 24, "EMERGENCY": 12}


@dataclass(frozen=True)
class AutomationPolicy:
    enabled: bool = True
    reminder_cadence_days: float = 2
    max_reminders: float = 3
    stale_after_days: float = 7
    submitted_ttl_days: float = 30
    screening_timeout_days: float = 7
    doc_expiry_days: float = 30
    sla_hours_by_priority: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_SLA_HOURS))

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _num(value: Any, fallback: float) -> float:
    if value is None or isinstance(value, bool):
        return fallback
    try:
        out = float(value)
    except (TypeError, ValueError):
        return fallback
    if out != out or out in (float("inf"), float("-inf")):
        return fallback
    return out


def automation_policy(doc: Any) -> AutomationPolicy:
    auto = _section(doc, "automation")
    sla = dict(DEFAULT_SLA_HOURS)
    raw_sla = auto.get("slaHoursByPriority")
    if isinstance(raw_sla, dict):
        sla.update(raw_sla)

    d = AutomationPolicy()
    return AutomationPolicy(
        enabled=auto["enabled"] if isinstance(auto.get("enabled"), bool) else d.enabled,
        reminder_cadence_days=_num(auto.get("reminderCadenceDays"), d.reminder_cadence_days),
        max_reminders=_num(auto.get("maxReminders"), d.max_reminders),
        stale_after_days=_num(auto.get("staleAfterDays"), d.stale_after_days),
        submitted_ttl_days=_num(auto.get("submittedTtlDays"), d.submitted_ttl_days),
        screening_timeout_days=_num(auto.get("screeningTimeoutDays"), d.screening_timeout_days),
        doc_expiry_days=_num(auto.get("docExpiryDays"), d.doc_expiry_days),
        sla_hours_by_priority=sla,
    )


def resolve_automation_policy(
    db: Session,
    *,
    org_id: int,
    property_id: Optional[int],
    as_of: Optional[datetime] = None,
) -> AutomationPolicy:
    cfg = resolve_effective_config(db, org_id=org_id, property_id=property_id, as_of=as_of)
    return automation_policy(config_document(cfg))
