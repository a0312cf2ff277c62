# leasing_engine/routers/reservations.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_operator
from ..db import get_db
from ..schemas import ReservationIn, ReservationReleaseIn
from ..services.reservations import (
    create_screening_lock,
    create_soft_hold,
    list_reservations,
    release_reservation,
    upgrade_screening_lock_to_soft_hold,
)
from .common import outcome

router = APIRouter(prefix="/leasing/reservations", tags=["leasing-reservations"])


@router.post("", response_model=dict)
def create(payload: ReservationIn, db: Session = Depends(get_db), p: Principal = Depends(require_operator)):
    kind = (payload.kind or "").strip().upper()
    if kind == "SCREENING_LOCK":
        fn = create_screening_lock
    elif kind == "SOFT_HOLD":
        fn = create_soft_hold
    else:
        raise HTTPException(status_code=400, detail="kind must be SCREENING_LOCK or SOFT_HOLD")
    return outcome(
        fn(
            db,
            org_id=p.org_id,
            application_id=payload.application_id,
            unit_id=payload.unit_id,
            expires_at=payload.expires_at,
            actor_id=p.user_id,
        )
    )


@router.get("", response_model=list[dict])
def list_all(
    application_id: Optional[int] = Query(default=None),
    unit_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return list_reservations(db, org_id=p.org_id, application_id=application_id, unit_id=unit_id, status=status)


@router.post("/{reservation_id}/upgrade", response_model=dict)
def upgrade(reservation_id: int, db: Session = Depends(get_db), p: Principal = Depends(require_operator)):
    return outcome(
        upgrade_screening_lock_to_soft_hold(db, org_id=p.org_id, reservation_id=reservation_id, actor_id=p.user_id),
        not_found="reservation not found",
    )


@router.post("/{reservation_id}/release", response_model=dict)
def release(
    reservation_id: int,
    payload: ReservationReleaseIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_operator),
):
    return outcome(
        release_reservation(
            db,
            org_id=p.org_id,
            reservation_id=reservation_id,
            release_reason_code=payload.release_reason_code,
            released_reason=payload.released_reason,
            released_by=p.user_id,
        ),
        not_found="reservation not found",
    )
