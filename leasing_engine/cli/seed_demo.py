# leasing_engine/cli/seed_demo.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import SessionLocal
from ..domain.json_fields import dumps_json
from ..models import (
    AppUser,
    ConsentTemplate,
    OrgMembership,
    Organization,
    Property,
    RefundPolicy,
    Unit,
    WorkflowConfig,
)
from ..services.applications import start_application

DEMO_WORKFLOW_CONFIG = {
    "submit": {"ttlDays": 30, "jointRequiredCoApplicants": 1},
    "unitIntake": {"mode": "LOCK_ON_SUBMIT"},
    "requirements": {
        "items": [
            {"id": "gov-id", "name": "Government ID", "requirementType": "DOCUMENT", "documentType": "ID",
             "partyRoles": ["PRIMARY", "CO_APPLICANT"], "dueInDays": 7},
            {"id": "income", "name": "Proof of income", "requirementType": "DOCUMENT",
             "documentType": "PAYSTUB", "partyRoles": ["PRIMARY"], "dueInDays": 7,
             "alternatives": {"default": ["BANK_STATEMENT", "OFFER_LETTER"]}},
            {"id": "screening", "name": "Background screening", "requirementType": "SCREENING", "dueInDays": 7},
        ]
    },
    "automation": {"enabled": True, "reminderCadenceDays": 2, "maxReminders": 3, "staleAfterDays": 7},
    "coApplicantAbandonment": {"inactivityDays": 7},
}

DEMO_UNITS = (("101", "STUDIO", 0), ("102", "ONE_BED", 1), ("201", "TWO_BED", 2))


@dataclass(frozen=True)
class SeedResult:
    org_slug: str
    user_email: str
    property_id: Optional[int]
    unit_ids: list[int] = field(default_factory=list)
    workflow_config_id: Optional[int] = None
    application_id: Optional[int] = None


def _get_or_create_org(db: Session, slug: str, name: str) -> Organization:
    row = db.scalar(select(Organization).where(Organization.slug == slug))
    if row:
        return row
    row = Organization(slug=slug, name=name)
    db.add(row)
    db.commit()
    return row


def _get_or_create_user(db: Session, email: str, display_name: str) -> AppUser:
    row = db.scalar(select(AppUser).where(AppUser.email == email))
    if row:
        return row
    row = AppUser(email=email, display_name=display_name)
    db.add(row)
    db.commit()
    return row


def _ensure_membership(db: Session, org_id: int, user_id: int, role: str = "owner") -> None:
    existing = db.scalar(
        select(OrgMembership).where(OrgMembership.org_id == int(org_id), OrgMembership.user_id == int(user_id))
    )
    if existing:
        return
    db.add(OrgMembership(org_id=int(org_id), user_id=int(user_id), role=str(role)))
    db.commit()


def _get_or_create_property(db: Session, org_id: int) -> Property:
    row = db.scalar(select(Property).where(Property.org_id == int(org_id), Property.site_code == "DEMO-1"))
    if row:
        return row
    row = Property(
        org_id=int(org_id),
        name="Demo Apartments",
        site_code="DEMO-1",
        address="100 Main St",
        city="Detroit",
        state="MI",
        jurisdiction_code="MI-DETROIT",
    )
    db.add(row)
    db.commit()
    return row


def _ensure_units(db: Session, org_id: int, property_id: int) -> list[int]:
    ids: list[int] = []
    for code, unit_type, bedrooms in DEMO_UNITS:
        row = db.scalar(select(Unit).where(Unit.property_id == int(property_id), Unit.unit_code == code))
        if row is None:
            row = Unit(org_id=int(org_id), property_id=int(property_id), unit_code=code, unit_type=unit_type,
                       bedrooms=bedrooms)
            db.add(row)
            db.commit()
        ids.append(int(row.id))
    return ids


def _ensure_org_config(db: Session, org_id: int) -> WorkflowConfig:
    row = db.scalar(
        select(WorkflowConfig).where(
            WorkflowConfig.org_id == int(org_id),
            WorkflowConfig.property_id.is_(None),
            WorkflowConfig.jurisdiction_code.is_(None),
        )
    )
    if row:
        return row
    row = WorkflowConfig(
        org_id=int(org_id),
        name="Demo org default",
        version=1,
        config_json=dumps_json(DEMO_WORKFLOW_CONFIG),
        effective_at=datetime(2020, 1, 1),
    )
    db.add(row)
    db.commit()
    return row


def _ensure_policies(db: Session, org_id: int) -> None:
    if db.scalar(select(ConsentTemplate).where(ConsentTemplate.org_id == int(org_id))) is None:
        db.add(
            ConsentTemplate(
                org_id=int(org_id),
                version=1,
                title="Screening consent",
                body="I authorize a background and credit screening for this application.",
                effective_at=datetime(2020, 1, 1),
            )
        )
    if db.scalar(select(RefundPolicy).where(RefundPolicy.org_id == int(org_id))) is None:
        db.add(
            RefundPolicy(
                org_id=int(org_id),
                payment_type="APPLICATION_FEE",
                policy_type="TIME_BASED",
                refund_window_hours=72,
                effective_at=datetime(2020, 1, 1),
            )
        )
    db.commit()


def seed_demo(
    *,
    org_slug: str,
    org_name: str,
    user_email: str,
    user_name: str,
    create_sample_application: bool = True,
) -> SeedResult:
    db = SessionLocal()
    try:
        org = _get_or_create_org(db, org_slug, org_name)
        user = _get_or_create_user(db, user_email, user_name)
        _ensure_membership(db, int(org.id), int(user.id), role="owner")

        prop = _get_or_create_property(db, int(org.id))
        unit_ids = _ensure_units(db, int(org.id), int(prop.id))
        cfg = _ensure_org_config(db, int(org.id))
        _ensure_policies(db, int(org.id))

        application_id = None
        if create_sample_application:
            out = start_application(
                db,
                org_id=int(org.id),
                property_id=int(prop.id),
                unit_id=unit_ids[0],
                primary={"email": "applicant@demo.local", "first_name": "Demo", "last_name": "Applicant"},
                actor_id=int(user.id),
            )
            application_id = out["application"]["id"]

        return SeedResult(
            org_slug=str(org.slug),
            user_email=str(user.email),
            property_id=int(prop.id),
            unit_ids=unit_ids,
            workflow_config_id=int(cfg.id),
            application_id=application_id,
        )
    finally:
        db.close()
