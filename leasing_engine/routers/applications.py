# leasing_engine/routers/applications.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_operator
from ..db import get_db
from ..schemas import (
    ApplicationStartIn,
    DraftAutosaveIn,
    DraftResumeIn,
    PartyInviteIn,
    SubmitIn,
    WithdrawIn,
)
from ..services.application_detail import get_application_detail
from ..services.applications import (
    autosave_draft_session,
    begin_review,
    complete_party,
    convert_application,
    invite_party,
    resume_application,
    start_application,
    submit_application,
    withdraw_application,
)
from .common import outcome

router = APIRouter(prefix="/leasing", tags=["leasing-applications"])


@router.post("/applications", response_model=dict)
def start(payload: ApplicationStartIn, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return start_application(
        db,
        org_id=p.org_id,
        property_id=payload.property_id,
        unit_id=payload.unit_id,
        primary=payload.primary.model_dump(),
        application_type=payload.application_type,
        priority=payload.priority,
        relocation_status=payload.relocation_status,
        form_data=payload.form_data,
        progress_map=payload.progress_map,
        current_step=payload.current_step,
        actor_id=p.user_id,
    )


@router.get("/applications/{application_id}", response_model=dict)
def detail(application_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return outcome(
        get_application_detail(db, org_id=p.org_id, application_id=application_id, actor_id=p.user_id),
        not_found="application not found",
    )


@router.put("/applications/{application_id}/draft", response_model=dict)
def autosave(
    application_id: int,
    payload: DraftAutosaveIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    session = autosave_draft_session(
        db,
        org_id=p.org_id,
        application_id=application_id,
        session_token=payload.session_token,
        form_data_patch=payload.form_data_patch,
        progress_map_patch=payload.progress_map_patch,
        current_step=payload.current_step,
    )
    return {"ok": True, "draft_session": outcome(session, not_found="draft session not found or expired")}


@router.post("/drafts/resume", response_model=dict)
def resume(payload: DraftResumeIn, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return outcome(
        resume_application(db, org_id=p.org_id, session_token=payload.session_token),
        not_found="draft session not found or expired",
    )


@router.post("/applications/{application_id}/parties", response_model=dict)
def invite(
    application_id: int,
    payload: PartyInviteIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return outcome(
        invite_party(
            db,
            org_id=p.org_id,
            application_id=application_id,
            role=payload.role,
            email=payload.email,
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone=payload.phone,
            current_step=payload.current_step,
            actor_id=p.user_id,
        ),
        not_found="application not found",
    )


@router.post("/applications/{application_id}/parties/{party_id}/complete", response_model=dict)
def complete(application_id: int, party_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return outcome(
        complete_party(db, org_id=p.org_id, application_id=application_id, party_id=party_id, actor_id=p.user_id),
        not_found="application not found",
    )


@router.post("/applications/{application_id}/submit", response_model=dict)
def submit(
    application_id: int,
    payload: SubmitIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return outcome(
        submit_application(
            db,
            org_id=p.org_id,
            application_id=application_id,
            consent=payload.consent.model_dump() if payload.consent else None,
            jurisdiction_code=payload.jurisdiction_code,
            actor_id=p.user_id,
        ),
        not_found="application not found",
    )


@router.post("/applications/{application_id}/review", response_model=dict)
def review(application_id: int, db: Session = Depends(get_db), p: Principal = Depends(require_operator)):
    return outcome(
        begin_review(db, org_id=p.org_id, application_id=application_id, actor_id=p.user_id),
        not_found="application not found",
    )


@router.post("/applications/{application_id}/withdraw", response_model=dict)
def withdraw(
    application_id: int,
    payload: WithdrawIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return outcome(
        withdraw_application(
            db,
            org_id=p.org_id,
            application_id=application_id,
            reason_code=payload.reason_code,
            reason=payload.reason,
            withdrawn_by=p.user_id,
            jurisdiction_code=payload.jurisdiction_code,
        ),
        not_found="application not found",
    )


@router.post("/applications/{application_id}/convert", response_model=dict)
def convert(application_id: int, db: Session = Depends(get_db), p: Principal = Depends(require_operator)):
    return outcome(
        convert_application(db, org_id=p.org_id, application_id=application_id, actor_id=p.user_id),
        not_found="application not found",
    )
