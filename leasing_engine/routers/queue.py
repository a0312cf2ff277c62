# leasing_engine/routers/queue.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal
from ..db import get_db
from ..schemas import QueueQuery
from ..services.queue import ApplicationQueue, list_application_queue

router = APIRouter(prefix="/leasing/queue", tags=["leasing-queue"])


def _queue(request: Request) -> ApplicationQueue:
    q = getattr(request.app.state, "queue", None)
    if q is None:
        q = ApplicationQueue()
        request.app.state.queue = q
    return q


@router.get("", response_model=dict)
def list_queue(
    request: Request,
    page: int = Query(default=1),
    page_size: int = Query(default=25),
    status: Optional[list[str]] = Query(default=None),
    property_id: Optional[list[int]] = Query(default=None),
    priority: Optional[list[str]] = Query(default=None),
    unit_type: Optional[list[str]] = Query(default=None),
    q: Optional[str] = Query(default=None),
    sort: Optional[str] = Query(default=None),
    stale: bool = Query(default=False),
    missing_docs: bool = Query(default=False),
    payment_issue: bool = Query(default=False),
    has_reservation: bool = Query(default=False),
    high_risk: bool = Query(default=False),
    duplicate: bool = Query(default=False),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    try:
        query = QueueQuery(
            page=page,
            page_size=page_size,
            statuses=status,
            property_ids=property_id,
            priorities=priority,
            unit_types=unit_type,
            q=q,
            sort=sort,
            stale=stale,
            missing_docs=missing_docs,
            payment_issue=payment_issue,
            has_reservation=has_reservation,
            high_risk=high_risk,
            duplicate=duplicate,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))

    return list_application_queue(
        db,
        org_id=p.org_id,
        queue=_queue(request),
        page=query.page,
        page_size=query.page_size,
        statuses=query.statuses,
        property_ids=query.property_ids,
        priorities=query.priorities,
        unit_types=query.unit_types,
        q=query.q,
        flags=query.flags(),
        sort=query.sort,
    )


@router.get("/filters", response_model=dict)
def filters(
    request: Request,
    property_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return _queue(request).filter_options(db, org_id=p.org_id, property_id=property_id)


@router.post("/capabilities/refresh", response_model=dict)
def refresh_capabilities(request: Request, p: Principal = Depends(get_principal)):
    _queue(request).invalidate()
    return {"ok": True}
