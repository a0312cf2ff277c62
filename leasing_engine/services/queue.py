# leasing_engine/services/queue.py
"""
Staff review queue.

One row per application with derived gates, next action, blocking reason
codes and SLA flags, plus facet counts over the same filtered set as `total`.

Property/unit display columns vary between deployments, so the queue works
from a QueueCapabilities descriptor resolved by SQLAlchemy inspection. Each
ApplicationQueue instance caches its descriptor under the current schema
version (alembic revision) and re-resolves when the revision changes or
invalidate() is called.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import String, and_, case, cast, exists, func, inspect, null, or_, select, text
from sqlalchemy.orm import Session, aliased

from ..config import settings
from ..domain.leasing_states import (
    PARTY_DONE_STATUSES,
    PAYMENT_PROBLEM_STATUSES,
    PRIORITY_RANK,
    REQUIREMENT_SATISFIED,
)
from ..models import (
    ApplicationParty,
    LeaseApplication,
    PaymentIntent,
    Property,
    RequirementItem,
    RiskAssessment,
    Unit,
    UnitReservation,
)
from .guards import require

log = logging.getLogger(__name__)

DEFAULT_STATUSES = ("SUBMITTED", "IN_REVIEW", "NEEDS_INFO", "DECISIONED", "CLOSED")
SORT_OPTIONS = (
    "priority_sla",
    "activity_desc",
    "activity_asc",
    "submitted_desc",
    "submitted_asc",
    "sla_asc",
    "risk_desc",
)
FLAG_NAMES = ("stale", "missing_docs", "payment_issue", "has_reservation", "high_risk", "duplicate")
HIGH_RISK_LEVELS = ("HIGH", "SEVERE")
DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100

PROPERTY_NAME_CANDIDATES = ("name", "property_name", "display_name", "label", "title")
PROPERTY_SITE_CODE_CANDIDATES = ("site_code", "code", "property_code", "slug")
UNIT_CODE_CANDIDATES = ("unit_code", "code", "name", "label")
UNIT_TYPE_CANDIDATES = ("unit_type", "type", "unit_type_code")
UNIT_PROPERTY_CANDIDATES = ("property_id",)


# ---------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------
def _pick(available: set[str], mapped: Iterable[str], candidates: Sequence[str]) -> Optional[str]:
    mapped = set(mapped)
    for name in candidates:
        if name in available and name in mapped:
            return name
    return None


@dataclass(frozen=True)
class QueueCapabilities:
    has_properties: bool
    has_units: bool
    property_name_column: Optional[str] = None
    property_site_code_column: Optional[str] = None
    unit_code_column: Optional[str] = None
    unit_type_column: Optional[str] = None
    unit_property_id_column: Optional[str] = None

    @classmethod
    def resolve(cls, db: Session) -> "QueueCapabilities":
        insp = inspect(db.connection())
        has_properties = insp.has_table(Property.__tablename__)
        has_units = insp.has_table(Unit.__tablename__)
        prop_cols = {c["name"] for c in insp.get_columns(Property.__tablename__)} if has_properties else set()
        unit_cols = {c["name"] for c in insp.get_columns(Unit.__tablename__)} if has_units else set()
        prop_mapped = Property.__table__.c.keys()
        unit_mapped = Unit.__table__.c.keys()
        return cls(
            has_properties=has_properties and "id" in prop_cols,
            has_units=has_units and "id" in unit_cols,
            property_name_column=_pick(prop_cols, prop_mapped, PROPERTY_NAME_CANDIDATES),
            property_site_code_column=_pick(prop_cols, prop_mapped, PROPERTY_SITE_CODE_CANDIDATES),
            unit_code_column=_pick(unit_cols, unit_mapped, UNIT_CODE_CANDIDATES),
            unit_type_column=_pick(unit_cols, unit_mapped, UNIT_TYPE_CANDIDATES),
            unit_property_id_column=_pick(unit_cols, unit_mapped, UNIT_PROPERTY_CANDIDATES),
        )

    # column expressions; NULL when the deployment lacks the column
    def property_column(self, name: Optional[str]):
        if not self.has_properties or name is None:
            return null()
        return Property.__table__.c[name]

    def unit_column(self, name: Optional[str]):
        if not self.has_units or name is None:
            return null()
        return Unit.__table__.c[name]


def schema_version(db: Session) -> str:
    insp = inspect(db.connection())
    if not insp.has_table("alembic_version"):
        return "unversioned"
    return str(db.execute(text("SELECT version_num FROM alembic_version")).scalar() or "unversioned")


# ---------------------------------------------------------------------
# Row derivations
# ---------------------------------------------------------------------
def gate(blocked: bool) -> str:
    return "BLOCKED" if blocked else "PASS"


NEXT_ACTION_ORDER = (
    ("parties", "COMPLETE_PARTIES", "Complete parties"),
    ("docs", "COLLECT_DOCUMENTS", "Collect documents"),
    ("screening", "COMPLETE_SCREENING", "Complete screening"),
    ("payment", "COLLECT_PAYMENT", "Resolve payment"),
    ("unit_availability", "VERIFY_UNIT", "Verify unit availability"),
    ("reservation", "RESERVE_UNIT", "Reserve unit"),
)


def compute_next_action(status: str, gates: dict[str, str], blocking_reason_codes: list[str]) -> dict[str, Any]:
    if status == "NEEDS_INFO":
        key, label = "WAITING_ON_APPLICANT", "Waiting on applicant"
    elif status in ("DECISIONED", "CONVERTED", "CLOSED"):
        key, label = "NO_ACTION", "No action needed"
    else:
        key, label = next(
            ((k, lbl) for g, k, lbl in NEXT_ACTION_ORDER if gates.get(g) == "BLOCKED"),
            ("REVIEW", "Review application"),
        )
    return {"key": key, "label": label, "blocking_reason_codes": blocking_reason_codes}


def compute_sla(submitted_at: Optional[datetime], now: datetime) -> Optional[dict[str, Any]]:
    if submitted_at is None:
        return None
    deadline = submitted_at + timedelta(hours=settings.sla_breach_hours)
    warning_at = submitted_at + timedelta(hours=settings.sla_warning_hours)
    return {"deadline_at": deadline, "breached": now > deadline, "warning": now > warning_at}


# ---------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------
class ApplicationQueue:
    def __init__(self) -> None:
        self._capabilities: Optional[QueueCapabilities] = None
        self._schema_key: Optional[str] = None

    def invalidate(self) -> None:
        self._capabilities = None
        self._schema_key = None

    def capabilities(self, db: Session) -> QueueCapabilities:
        key = schema_version(db)
        if self._capabilities is None or self._schema_key != key:
            self._capabilities = QueueCapabilities.resolve(db)
            self._schema_key = key
            log.debug("queue capabilities resolved", extra={"schema_version": key})
        return self._capabilities

    def _stats(self) -> dict[str, Any]:
        a = LeaseApplication
        dup = aliased(LeaseApplication)

        def scalar(stmt):
            return stmt.correlate(a.__table__).scalar_subquery()

        return {
            "parties_incomplete": scalar(
                select(func.count(ApplicationParty.id)).where(
                    ApplicationParty.application_id == a.id,
                    ApplicationParty.status.not_in(sorted(PARTY_DONE_STATUSES)),
                )
            ),
            "parties_total": scalar(
                select(func.count(ApplicationParty.id)).where(ApplicationParty.application_id == a.id)
            ),
            "docs_missing": scalar(
                select(func.count(RequirementItem.id)).where(
                    RequirementItem.application_id == a.id,
                    RequirementItem.requirement_type == "DOCUMENT",
                    RequirementItem.is_required.is_(True),
                    RequirementItem.status.not_in(sorted(REQUIREMENT_SATISFIED)),
                )
            ),
            "screening_missing": scalar(
                select(func.count(RequirementItem.id)).where(
                    RequirementItem.application_id == a.id,
                    RequirementItem.requirement_type == "SCREENING",
                    RequirementItem.is_required.is_(True),
                    RequirementItem.status.not_in(sorted(REQUIREMENT_SATISFIED)),
                )
            ),
            "payment_failed": scalar(
                select(func.count(PaymentIntent.id)).where(
                    PaymentIntent.application_id == a.id,
                    PaymentIntent.status.in_(sorted(PAYMENT_PROBLEM_STATUSES)),
                )
            ),
            "payment_succeeded": scalar(
                select(func.count(PaymentIntent.id)).where(
                    PaymentIntent.application_id == a.id,
                    PaymentIntent.status == "SUCCEEDED",
                )
            ),
            "active_reservations": scalar(
                select(func.count(UnitReservation.id)).where(
                    UnitReservation.application_id == a.id,
                    UnitReservation.status == "ACTIVE",
                )
            ),
            "risk_level": scalar(
                select(RiskAssessment.risk_level)
                .where(RiskAssessment.application_id == a.id)
                .order_by(RiskAssessment.created_at.desc(), RiskAssessment.id.desc())
                .limit(1)
            ),
            "risk_score": scalar(
                select(RiskAssessment.risk_score)
                .where(RiskAssessment.application_id == a.id)
                .order_by(RiskAssessment.created_at.desc(), RiskAssessment.id.desc())
                .limit(1)
            ),
            "duplicate_count": scalar(
                select(func.count(dup.id)).where(
                    dup.org_id == a.org_id,
                    dup.duplicate_check_hash.is_not(None),
                    dup.duplicate_check_hash == a.duplicate_check_hash,
                )
            ),
        }

    def _order_by(self, sort: str, stats: dict[str, Any]) -> list[Any]:
        a = LeaseApplication
        if sort == "activity_asc":
            return [a.updated_at.asc().nulls_last(), a.created_at.asc(), a.id.asc()]
        if sort == "submitted_desc":
            return [a.submitted_at.desc().nulls_last(), a.created_at.desc(), a.id.desc()]
        if sort in ("submitted_asc", "sla_asc"):
            # the SLA deadline is submitted_at plus a fixed offset, so it sorts the same way
            return [a.submitted_at.asc().nulls_last(), a.created_at.asc(), a.id.asc()]
        if sort == "risk_desc":
            return [stats["risk_score"].desc().nulls_last(), a.submitted_at.asc().nulls_last(), a.id.asc()]
        if sort == "priority_sla":
            rank = case(PRIORITY_RANK, value=a.priority, else_=1)
            return [rank.desc(), a.submitted_at.asc().nulls_last(), a.created_at.asc(), a.id.asc()]
        return [a.updated_at.desc().nulls_last(), a.created_at.desc(), a.id.desc()]

    def list(
        self,
        db: Session,
        *,
        org_id: int,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        statuses: Optional[Sequence[str]] = None,
        property_ids: Optional[Sequence[int]] = None,
        priorities: Optional[Sequence[str]] = None,
        unit_types: Optional[Sequence[str]] = None,
        q: Optional[str] = None,
        flags: Optional[dict[str, Any]] = None,
        sort: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        require(org_id=org_id)
        now = now or datetime.utcnow()
        caps = self.capabilities(db)

        page = max(1, int(page or 1))
        page_size = min(MAX_PAGE_SIZE, max(1, int(page_size or DEFAULT_PAGE_SIZE)))
        statuses = list(statuses) if statuses else list(DEFAULT_STATUSES)
        unit_types = list(unit_types or [])
        flags = flags or {}
        sort = sort or "priority_sla"
        q = (q or "").strip()

        if unit_types and caps.unit_type_column is None:
            return {"ok": False, "error_code": "UNIT_TYPE_UNAVAILABLE"}

        a = LeaseApplication
        stats = self._stats()
        property_name = caps.property_column(caps.property_name_column)
        property_site = caps.property_column(caps.property_site_code_column)
        unit_code = caps.unit_column(caps.unit_code_column)
        unit_type = caps.unit_column(caps.unit_type_column)

        from_clause = a.__table__
        if caps.has_properties:
            from_clause = from_clause.outerjoin(Property.__table__, Property.__table__.c.id == a.property_id)
        if caps.has_units:
            from_clause = from_clause.outerjoin(Unit.__table__, Unit.__table__.c.id == a.unit_id)

        stale_at = now - timedelta(days=settings.queue_stale_days)
        conds: list[Any] = [a.org_id == int(org_id), a.status.in_(statuses)]
        if property_ids:
            conds.append(a.property_id.in_([int(p) for p in property_ids]))
        if priorities:
            conds.append(a.priority.in_(list(priorities)))
        if unit_types:
            conds.append(unit_type.in_(unit_types))
        if q:
            like = f"%{q}%"
            full_name = (
                func.coalesce(ApplicationParty.first_name, "") + " " + func.coalesce(ApplicationParty.last_name, "")
            )
            party_match = exists(
                select(ApplicationParty.id).where(
                    ApplicationParty.application_id == a.id,
                    ApplicationParty.role == "PRIMARY",
                    or_(
                        ApplicationParty.email.ilike(like),
                        ApplicationParty.phone.ilike(like),
                        full_name.ilike(like),
                    ),
                )
            ).correlate(a.__table__)
            parts = [cast(a.id, String).ilike(like), party_match]
            if caps.has_units and caps.unit_code_column is not None:
                parts.append(cast(unit_code, String).ilike(like))
            conds.append(or_(*parts))
        if flags.get("stale"):
            conds.append(a.updated_at < stale_at)
        if flags.get("missing_docs"):
            conds.append(stats["docs_missing"] > 0)
        if flags.get("payment_issue"):
            conds.append(or_(a.application_fee_status == "FAILED", stats["payment_failed"] > 0))
        if flags.get("has_reservation"):
            conds.append(stats["active_reservations"] > 0)
        if flags.get("high_risk"):
            conds.append(or_(stats["risk_level"].in_(HIGH_RISK_LEVELS), stats["risk_score"] >= 80))
        if flags.get("duplicate"):
            conds.append(stats["duplicate_count"] > 1)

        where = and_(*conds)

        items_stmt = (
            select(
                a,
                property_name.label("property_name"),
                property_site.label("property_site_code"),
                unit_code.label("unit_code"),
                unit_type.label("unit_type"),
                *(expr.label(name) for name, expr in stats.items()),
            )
            .select_from(from_clause)
            .where(where)
            .order_by(*self._order_by(sort, stats))
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        rows = db.execute(items_stmt).all()

        base = (
            select(
                a.id.label("application_id"),
                a.status.label("status"),
                a.priority.label("priority"),
                a.property_id.label("property_id"),
                unit_type.label("unit_type"),
                property_name.label("property_name"),
            )
            .select_from(from_clause)
            .where(where)
            .subquery()
        )
        total = int(db.scalar(select(func.count()).select_from(base)) or 0)
        facets = self._facets(db, base)

        primaries = self._primary_parties(db, [r[0].id for r in rows])
        items = [self._row_to_item(r, primaries.get(r[0].id), now=now, stale_at=stale_at) for r in rows]
        return {"ok": True, "page": page, "page_size": page_size, "total": total, "facets": facets, "items": items}

    def _facets(self, db: Session, base) -> dict[str, Any]:
        by_status = {
            s: int(n) for s, n in db.execute(select(base.c.status, func.count()).group_by(base.c.status)).all() if s
        }
        by_priority = {
            p: int(n) for p, n in db.execute(select(base.c.priority, func.count()).group_by(base.c.priority)).all() if p
        }
        by_unit_type = {
            t: int(n)
            for t, n in db.execute(select(base.c.unit_type, func.count()).group_by(base.c.unit_type)).all()
            if t
        }
        by_property = [
            {"property_id": pid, "name": name, "count": int(n)}
            for pid, name, n in db.execute(
                select(base.c.property_id, base.c.property_name, func.count())
                .group_by(base.c.property_id, base.c.property_name)
                .order_by(base.c.property_id.asc())
            ).all()
            if pid is not None
        ]
        return {
            "by_status": by_status,
            "by_priority": by_priority,
            "by_unit_type": by_unit_type,
            "by_property": by_property,
        }

    def _primary_parties(self, db: Session, application_ids: list[int]) -> dict[int, ApplicationParty]:
        if not application_ids:
            return {}
        out: dict[int, ApplicationParty] = {}
        parties = db.scalars(
            select(ApplicationParty)
            .where(ApplicationParty.application_id.in_(application_ids), ApplicationParty.role == "PRIMARY")
            .order_by(ApplicationParty.created_at.asc(), ApplicationParty.id.asc())
        ).all()
        for p in parties:
            out.setdefault(p.application_id, p)
        return out

    def _row_to_item(
        self,
        row: Any,
        primary: Optional[ApplicationParty],
        *,
        now: datetime,
        stale_at: datetime,
    ) -> dict[str, Any]:
        app: LeaseApplication = row[0]
        m = row._mapping

        docs_blocked = int(m["docs_missing"] or 0) > 0
        gates = {
            "parties": gate(int(m["parties_total"] or 0) > 0 and int(m["parties_incomplete"] or 0) > 0),
            "docs": gate(docs_blocked),
            "screening": gate(int(m["screening_missing"] or 0) > 0),
            "payment": gate(app.application_fee_status != "SUCCEEDED" and int(m["payment_succeeded"] or 0) == 0),
            "reservation": gate(app.unit_id is not None and int(m["active_reservations"] or 0) == 0),
            "unit_availability": gate(app.unit_id is not None and app.unit_was_available_at_submit is False),
        }

        reasons: list[str] = []
        if docs_blocked:
            reasons.append("MISSING_DOCS")
        if app.application_fee_status == "FAILED" or int(m["payment_failed"] or 0) > 0:
            reasons.append("PAYMENT_ISSUE")
        if int(m["duplicate_count"] or 0) > 1:
            reasons.append("DUPLICATE")
        if app.updated_at is not None and app.updated_at < stale_at:
            reasons.append("STALE")
        risk_level = m["risk_level"]
        if risk_level and str(risk_level).upper() in HIGH_RISK_LEVELS:
            reasons.append("HIGH_RISK")

        name = None
        if primary is not None:
            name = " ".join(x for x in (primary.first_name, primary.last_name) if x) or None

        return {
            "application_id": app.id,
            "status": app.status,
            "priority": app.priority,
            "created_at": app.created_at,
            "updated_at": app.updated_at,
            "submitted_at": app.submitted_at,
            "expires_at": app.expires_at,
            "property": {"id": app.property_id, "name": m["property_name"], "site_code": m["property_site_code"]},
            "unit": (
                {"id": app.unit_id, "unit_code": m["unit_code"], "type": m["unit_type"]}
                if app.unit_id is not None
                else None
            ),
            "primary_applicant": {
                "party_id": primary.id if primary else None,
                "name": name,
                "email": primary.email if primary else None,
                "phone": primary.phone if primary else None,
            },
            "gates": gates,
            "next_action": compute_next_action(app.status, gates, reasons),
            "risk": (
                {"risk_level": risk_level, "risk_score": m["risk_score"]}
                if risk_level or m["risk_score"] is not None
                else None
            ),
            "sla": compute_sla(app.submitted_at, now),
            "assignee": None,
        }

    def filter_options(self, db: Session, *, org_id: int, property_id: Optional[int] = None) -> dict[str, Any]:
        require(org_id=org_id)
        caps = self.capabilities(db)
        a = LeaseApplication

        property_name = caps.property_column(caps.property_name_column)
        property_site = caps.property_column(caps.property_site_code_column)
        from_clause = a.__table__
        if caps.has_properties:
            from_clause = from_clause.outerjoin(Property.__table__, Property.__table__.c.id == a.property_id)

        prop_rows = db.execute(
            select(
                a.property_id.label("property_id"),
                property_name.label("property_name"),
                property_site.label("property_site_code"),
            )
            .select_from(from_clause)
            .where(a.org_id == int(org_id))
            .distinct()
            .order_by(a.property_id.asc())
        ).all()
        properties = sorted(
            (
                {"property_id": r.property_id, "name": r.property_name, "site_code": r.property_site_code}
                for r in prop_rows
            ),
            key=lambda p: (p["name"] is None, p["name"] or "", p["property_id"]),
        )

        unit_types: list[str] = []
        if caps.has_units and caps.unit_type_column is not None:
            unit_type = caps.unit_column(caps.unit_type_column)
            unit_types = [
                t
                for t in db.scalars(
                    select(unit_type)
                    .select_from(a.__table__.join(Unit.__table__, Unit.__table__.c.id == a.unit_id))
                    .where(a.org_id == int(org_id), unit_type.is_not(None))
                    .distinct()
                    .order_by(unit_type.asc())
                ).all()
                if t
            ]

        units: list[dict[str, Any]] = []
        if (
            property_id is not None
            and caps.has_units
            and caps.unit_code_column is not None
            and caps.unit_property_id_column is not None
        ):
            code = caps.unit_column(caps.unit_code_column)
            utype = caps.unit_column(caps.unit_type_column)
            unit_rows = db.execute(
                select(Unit.__table__.c.id, code.label("unit_code"), utype.label("unit_type"))
                .where(caps.unit_column(caps.unit_property_id_column) == int(property_id))
                .order_by(code.asc().nulls_last())
            ).all()
            units = [{"id": r.id, "unit_code": r.unit_code, "type": r.unit_type} for r in unit_rows]

        return {"ok": True, "properties": properties, "unit_types": unit_types, "units": units}


def list_application_queue(db: Session, *, org_id: int, queue: Optional[ApplicationQueue] = None, **kwargs: Any):
    return (queue or ApplicationQueue()).list(db, org_id=org_id, **kwargs)


def list_filter_options(
    db: Session,
    *,
    org_id: int,
    property_id: Optional[int] = None,
    queue: Optional[ApplicationQueue] = None,
) -> dict[str, Any]:
    return (queue or ApplicationQueue()).filter_options(db, org_id=org_id, property_id=property_id)
