# leasing_engine/services/reservations.py
"""
Unit reservation ledger.

Two strengths of claim on a unit:

- SCREENING_LOCK: exclusive. The partial unique index
  uq_unit_reservations_active_screening_lock is the source of truth; the
  insert runs in a SAVEPOINT and a unique violation is reported as
  RESERVATION_CONFLICT with the current holder.
- SOFT_HOLD / HARD_HOLD: cooperative. Conflicts are found by querying for
  another application's active hold; two racing writers can both succeed.

Every public function runs inside scoped_transaction(); callers already in a
transaction (submit, decide, withdraw, jobs) share it.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import scoped_transaction
from ..domain.audit import audit_write
from ..domain.leasing_states import HOLD_KINDS
from ..models import UnitReservation
from .guards import require
from .mappers import reservation_to_dict

log = logging.getLogger(__name__)

TARGET_TYPE = "unit_reservation"


def _audit_reservation(
    db: Session,
    r: UnitReservation,
    *,
    event_type: str,
    actor_id: Optional[int],
    now: datetime,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    meta: dict[str, Any] = {"unit_id": r.unit_id, "kind": r.kind, "status": r.status}
    if extra:
        meta.update(extra)
    audit_write(
        db,
        org_id=r.org_id,
        application_id=r.application_id,
        event_type=event_type,
        actor_id=actor_id,
        target_type=TARGET_TYPE,
        target_id=r.id,
        metadata=meta,
        created_at=now,
    )


def _lock_reservation(db: Session, *, org_id: int, reservation_id: int) -> Optional[UnitReservation]:
    return db.scalar(
        select(UnitReservation)
        .where(UnitReservation.id == int(reservation_id), UnitReservation.org_id == int(org_id))
        .with_for_update()
    )


def active_holds_for_unit(
    db: Session,
    *,
    org_id: int,
    unit_id: int,
    exclude_application_id: Optional[int] = None,
) -> list[UnitReservation]:
    q = select(UnitReservation).where(
        UnitReservation.org_id == int(org_id),
        UnitReservation.unit_id == int(unit_id),
        UnitReservation.status == "ACTIVE",
        UnitReservation.kind.in_(HOLD_KINDS),
    )
    if exclude_application_id is not None:
        q = q.where(UnitReservation.application_id != int(exclude_application_id))
    return list(db.scalars(q.order_by(UnitReservation.created_at.asc(), UnitReservation.id.asc())).all())


# ---------------------------------------------------------------------
# Screening lock (constraint-backed)
# ---------------------------------------------------------------------
def create_screening_lock(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    unit_id: int,
    expires_at: Optional[datetime] = None,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id, unit_id=unit_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        row = UnitReservation(
            org_id=int(org_id),
            application_id=int(application_id),
            unit_id=int(unit_id),
            kind="SCREENING_LOCK",
            status="ACTIVE",
            expires_at=expires_at,
            created_by=actor_id,
            created_at=now,
            updated_at=now,
        )
        try:
            with db.begin_nested():
                db.add(row)
                db.flush()
        except IntegrityError:
            holder = db.scalar(
                select(UnitReservation)
                .where(
                    UnitReservation.org_id == int(org_id),
                    UnitReservation.unit_id == int(unit_id),
                    UnitReservation.status == "ACTIVE",
                    UnitReservation.kind == "SCREENING_LOCK",
                )
                .order_by(UnitReservation.created_at.desc())
                .limit(1)
            )
            log.info(
                "screening lock conflict",
                extra={"org_id": org_id, "application_id": application_id, "unit_id": unit_id},
            )
            return {
                "ok": False,
                "error_code": "RESERVATION_CONFLICT",
                "holder_application_id": holder.application_id if holder else None,
                "reservation_id": holder.id if holder else None,
                "expires_at": holder.expires_at if holder else None,
            }

        _audit_reservation(db, row, event_type="RESERVATION_CREATED", actor_id=actor_id, now=now)
        log.info(
            "screening lock created",
            extra={"org_id": org_id, "application_id": application_id, "unit_id": unit_id, "reservation_id": row.id},
        )
        return {"ok": True, "reservation": reservation_to_dict(row)}


# ---------------------------------------------------------------------
# Soft hold (cooperative)
# ---------------------------------------------------------------------
def create_soft_hold(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    unit_id: int,
    expires_at: Optional[datetime] = None,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id, unit_id=unit_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        others = active_holds_for_unit(db, org_id=org_id, unit_id=unit_id, exclude_application_id=application_id)
        if others:
            return {
                "ok": False,
                "error_code": "HOLD_CONFLICT",
                "holder_application_id": others[0].application_id,
                "holder_kind": others[0].kind,
            }

        row = UnitReservation(
            org_id=int(org_id),
            application_id=int(application_id),
            unit_id=int(unit_id),
            kind="SOFT_HOLD",
            status="ACTIVE",
            expires_at=expires_at,
            created_by=actor_id,
            created_at=now,
            updated_at=now,
        )
        db.add(row)
        db.flush()
        _audit_reservation(db, row, event_type="RESERVATION_CREATED", actor_id=actor_id, now=now)
        return {"ok": True, "reservation": reservation_to_dict(row)}


def upgrade_screening_lock_to_soft_hold(
    db: Session,
    *,
    org_id: int,
    reservation_id: int,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Same reservation id; only the kind changes."""
    require(org_id=org_id, reservation_id=reservation_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        r = _lock_reservation(db, org_id=org_id, reservation_id=reservation_id)
        if r is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if r.status != "ACTIVE":
            return {"ok": False, "error_code": "NOT_ACTIVE", "status": r.status}
        if r.kind != "SCREENING_LOCK":
            return {"ok": False, "error_code": "INVALID_KIND", "kind": r.kind}

        others = active_holds_for_unit(db, org_id=org_id, unit_id=r.unit_id, exclude_application_id=r.application_id)
        if others:
            return {
                "ok": False,
                "error_code": "HOLD_CONFLICT",
                "holder_application_id": others[0].application_id,
                "holder_kind": others[0].kind,
            }

        try:
            with db.begin_nested():
                r.kind = "SOFT_HOLD"
                r.updated_at = now
                db.flush()
        except IntegrityError:
            db.refresh(r)
            return {"ok": False, "error_code": "HOLD_CONFLICT"}

        _audit_reservation(db, r, event_type="RESERVATION_CREATED", actor_id=actor_id, now=now)
        return {"ok": True, "reservation": reservation_to_dict(r)}


# ---------------------------------------------------------------------
# Release / expire
# ---------------------------------------------------------------------
def _mark_released(
    r: UnitReservation,
    *,
    now: datetime,
    released_by: Optional[int],
    release_reason_code: str,
    released_reason: Optional[str],
) -> None:
    r.status = "RELEASED"
    r.released_at = now
    r.released_by = released_by
    r.release_reason_code = release_reason_code
    r.released_reason = released_reason
    r.updated_at = now


def release_reservation(
    db: Session,
    *,
    org_id: int,
    reservation_id: int,
    release_reason_code: str,
    released_reason: Optional[str] = None,
    released_by: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, reservation_id=reservation_id)
    require(release_reason_code=release_reason_code)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        r = _lock_reservation(db, org_id=org_id, reservation_id=reservation_id)
        if r is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if r.status != "ACTIVE":
            return {"ok": False, "error_code": "NOT_ACTIVE", "status": r.status}

        _mark_released(
            r,
            now=now,
            released_by=released_by,
            release_reason_code=str(release_reason_code).strip(),
            released_reason=released_reason,
        )
        _audit_reservation(
            db,
            r,
            event_type="RESERVATION_RELEASED",
            actor_id=released_by,
            now=now,
            extra={"release_reason_code": r.release_reason_code, "released_reason": released_reason},
        )
        return {"ok": True, "reservation": reservation_to_dict(r)}


def release_reservations_for_application(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    release_reason_code: str,
    released_reason: Optional[str] = None,
    released_by: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id)
    require(release_reason_code=release_reason_code)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        rows = list(
            db.scalars(
                select(UnitReservation)
                .where(
                    UnitReservation.org_id == int(org_id),
                    UnitReservation.application_id == int(application_id),
                    UnitReservation.status == "ACTIVE",
                )
                .with_for_update()
            ).all()
        )
        for r in rows:
            _mark_released(
                r,
                now=now,
                released_by=released_by,
                release_reason_code=str(release_reason_code).strip(),
                released_reason=released_reason,
            )
            _audit_reservation(
                db,
                r,
                event_type="RESERVATION_RELEASED",
                actor_id=released_by,
                now=now,
                extra={"release_reason_code": r.release_reason_code, "released_reason": released_reason},
            )
        if rows:
            log.info(
                "released reservations",
                extra={"org_id": org_id, "application_id": application_id, "error_code": release_reason_code},
            )
        return {"ok": True, "released": len(rows)}


def expire_reservations(db: Session, *, now: Optional[datetime] = None) -> dict[str, Any]:
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        rows = list(
            db.scalars(
                select(UnitReservation)
                .where(
                    UnitReservation.status == "ACTIVE",
                    UnitReservation.expires_at.is_not(None),
                    UnitReservation.expires_at <= now,
                )
                .with_for_update()
            ).all()
        )
        for r in rows:
            r.status = "EXPIRED"
            r.released_at = now
            r.release_reason_code = "EXPIRED"
            r.released_reason = "Auto-expired"
            r.updated_at = now
            _audit_reservation(db, r, event_type="RESERVATION_EXPIRED", actor_id=None, now=now)
        return {"ok": True, "expired": len(rows)}


def list_reservations(
    db: Session,
    *,
    org_id: int,
    application_id: Optional[int] = None,
    unit_id: Optional[int] = None,
    status: Optional[str] = None,
) -> list[dict[str, Any]]:
    q = select(UnitReservation).where(UnitReservation.org_id == int(org_id))
    if application_id is not None:
        q = q.where(UnitReservation.application_id == int(application_id))
    if unit_id is not None:
        q = q.where(UnitReservation.unit_id == int(unit_id))
    if status:
        q = q.where(UnitReservation.status == status)
    q = q.order_by(UnitReservation.created_at.desc(), UnitReservation.id.desc())
    return [reservation_to_dict(r) for r in db.scalars(q).all()]
