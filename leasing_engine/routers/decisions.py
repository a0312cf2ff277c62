# leasing_engine/routers/decisions.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_operator
from ..db import get_db
from ..schemas import DecisionIn, NoteIn, NoteUpdateIn, OverrideReviewIn, PriorityOverrideIn, ScoreIn
from ..services.decisioning import (
    create_application_score,
    create_note,
    delete_note,
    list_decisions,
    list_notes,
    list_override_requests,
    make_decision,
    request_priority_override,
    review_priority_override,
    update_note,
)
from .common import outcome

router = APIRouter(prefix="/leasing", tags=["leasing-decisions"])


# -------------------- Decisions / scores --------------------

@router.post("/applications/{application_id}/decisions", response_model=dict)
def decide(
    application_id: int,
    payload: DecisionIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_operator),
):
    return outcome(
        make_decision(
            db,
            org_id=p.org_id,
            application_id=application_id,
            decided_by=p.user_id,
            outcome=payload.outcome,
            criteria_version=payload.criteria_version,
            reason_codes=payload.reason_codes,
            income=payload.income,
            criminal=payload.criminal,
            conditions=payload.conditions,
            notes=payload.notes,
            override_request_id=payload.override_request_id,
            previous_decision_id=payload.previous_decision_id,
        ),
        not_found="application not found",
    )


@router.get("/applications/{application_id}/decisions", response_model=list[dict])
def decisions(application_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return list_decisions(db, org_id=p.org_id, application_id=application_id)


@router.post("/applications/{application_id}/scores", response_model=dict)
def score(
    application_id: int,
    payload: ScoreIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_operator),
):
    return outcome(
        create_application_score(
            db,
            org_id=p.org_id,
            application_id=application_id,
            score_value=payload.score_value,
            max_score=payload.max_score,
            score_type=payload.score_type,
            factors=payload.factors,
            created_by=p.user_id,
        ),
        not_found="application not found",
    )


# -------------------- Priority overrides --------------------

@router.post("/applications/{application_id}/overrides", response_model=dict)
def request_override(
    application_id: int,
    payload: PriorityOverrideIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_operator),
):
    return outcome(
        request_priority_override(
            db,
            org_id=p.org_id,
            application_id=application_id,
            requested_by=p.user_id,
            requested_priority=payload.requested_priority,
            reason=payload.reason,
        ),
        not_found="application not found",
    )


@router.get("/overrides", response_model=list[dict])
def overrides(
    application_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return list_override_requests(db, org_id=p.org_id, application_id=application_id, status=status)


@router.post("/overrides/{override_request_id}/review", response_model=dict)
def review_override(
    override_request_id: int,
    payload: OverrideReviewIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_operator),
):
    return outcome(
        review_priority_override(
            db,
            org_id=p.org_id,
            override_request_id=override_request_id,
            reviewer_id=p.user_id,
            status=payload.status,
            review_notes=payload.review_notes,
        ),
        not_found="override request not found",
    )


# -------------------- Notes --------------------

@router.post("/applications/{application_id}/notes", response_model=dict)
def add_note(
    application_id: int,
    payload: NoteIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return outcome(
        create_note(
            db,
            org_id=p.org_id,
            application_id=application_id,
            author_id=p.user_id,
            body=payload.body,
            visibility=payload.visibility,
            is_pinned=payload.is_pinned,
        ),
        not_found="application not found",
    )


@router.get("/applications/{application_id}/notes", response_model=list[dict])
def notes(application_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return list_notes(db, org_id=p.org_id, application_id=application_id, viewer_type="staff")


@router.patch("/notes/{note_id}", response_model=dict)
def edit_note(
    note_id: int,
    payload: NoteUpdateIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return outcome(
        update_note(
            db,
            org_id=p.org_id,
            note_id=note_id,
            actor_id=p.user_id,
            body=payload.body,
            visibility=payload.visibility,
            is_pinned=payload.is_pinned,
        ),
        not_found="note not found",
    )


@router.delete("/notes/{note_id}", response_model=dict)
def remove_note(note_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return outcome(delete_note(db, org_id=p.org_id, note_id=note_id, actor_id=p.user_id), not_found="note not found")
