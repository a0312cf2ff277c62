# leasing_engine/auth.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .models import AppUser, OrgMembership, Organization


@dataclass(frozen=True)
class Principal:
    org_id: int
    org_slug: str
    user_id: int
    email: str
    role: str  # owner | operator | analyst


ROLE_ORDER = {"analyst": 1, "operator": 2, "owner": 3}


def _require_role(principal: Principal, min_role: str) -> None:
    if ROLE_ORDER.get(principal.role, 0) < ROLE_ORDER.get(min_role, 999):
        raise HTTPException(status_code=403, detail=f"Requires role >= {min_role}")


# -------------------------
# Org + membership helpers
# -------------------------
def _get_org(db: Session, org_slug: str) -> Organization | None:
    return db.scalar(select(Organization).where(Organization.slug == org_slug))


def _get_user_by_email(db: Session, email: str) -> AppUser | None:
    return db.scalar(select(AppUser).where(AppUser.email == email))


def _get_membership(db: Session, org_id: int, user_id: int) -> OrgMembership | None:
    return db.scalar(select(OrgMembership).where(OrgMembership.org_id == org_id, OrgMembership.user_id == user_id))


def _provision(db: Session, *, org_slug: str, email: str, role_hint: str) -> OrgMembership | None:
    now = datetime.utcnow()
    org = _get_org(db, org_slug)
    if org is None:
        org = Organization(slug=org_slug, name=org_slug, created_at=now)
        db.add(org)
        db.flush()

    user = _get_user_by_email(db, email)
    if user is None:
        user = AppUser(email=email, display_name=email.split("@")[0], created_at=now)
        db.add(user)
        db.flush()

    mem = _get_membership(db, int(org.id), int(user.id))
    if mem is None:
        mem = OrgMembership(
            org_id=int(org.id),
            user_id=int(user.id),
            role=role_hint if role_hint in ROLE_ORDER else "owner",
            created_at=now,
        )
        db.add(mem)
    db.commit()
    return mem


# -------------------------
# get_principal
# -------------------------
def get_principal(
    request: Request,
    db: Session = Depends(get_db),
    x_org_slug: Optional[str] = Header(default=None, alias="X-Org-Slug"),
) -> Principal:
    """
    Identity lives upstream; this service trusts the org/user headers.

      - auth_mode == "dev": unknown orgs/users are auto-provisioned
        (when dev_auto_provision is on) with the X-User-Role hint
      - auth_mode == "header": org, user and membership must already exist
    """
    org_slug = str(x_org_slug or request.headers.get(settings.dev_header_org_slug) or "").strip()
    if not org_slug:
        raise HTTPException(status_code=401, detail="Missing X-Org-Slug (active org context).")

    email = (request.headers.get(settings.dev_header_user_email) or "").strip().lower()
    if not email:
        raise HTTPException(status_code=401, detail="Missing X-User-Email")
    role_hint = (request.headers.get(settings.dev_header_user_role) or "owner").strip().lower()

    mode = (settings.auth_mode or "").strip().lower()
    if mode not in ("dev", "header"):
        raise HTTPException(status_code=401, detail="Not authenticated")

    org = _get_org(db, org_slug)
    user = _get_user_by_email(db, email)
    mem = _get_membership(db, int(org.id), int(user.id)) if org is not None and user is not None else None

    if mem is None and mode == "dev" and settings.dev_auto_provision:
        mem = _provision(db, org_slug=org_slug, email=email, role_hint=role_hint)
        org = _get_org(db, org_slug)
        user = _get_user_by_email(db, email)

    if org is None or user is None:
        raise HTTPException(status_code=401, detail="Unknown org or user")
    if mem is None:
        raise HTTPException(status_code=403, detail="Not a member of this org")

    return Principal(
        org_id=int(org.id),
        org_slug=str(org.slug),
        user_id=int(user.id),
        email=str(user.email),
        role=str(mem.role),
    )


def require_operator(p: Principal = Depends(get_principal)) -> Principal:
    _require_role(p, "operator")
    return p


def require_owner(p: Principal = Depends(get_principal)) -> Principal:
    _require_role(p, "owner")
    return p
