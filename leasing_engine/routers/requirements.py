# leasing_engine/routers/requirements.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_operator
from ..db import get_db
from ..schemas import (
    DocumentAttachIn,
    DocumentVerifyIn,
    InfoRequestIn,
    InfoRequestRespondIn,
    RequirementGenerateIn,
    WaiveIn,
)
from ..services.requirements import (
    attach_document,
    create_info_request,
    generate_requirement_items,
    list_info_requests,
    list_requirements,
    respond_to_info_request,
    update_document_verification,
    waive_requirement,
)
from .common import outcome

router = APIRouter(prefix="/leasing", tags=["leasing-requirements"])


@router.post("/applications/{application_id}/requirements/generate", response_model=dict)
def generate(
    application_id: int,
    payload: RequirementGenerateIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_operator),
):
    return outcome(
        generate_requirement_items(
            db,
            org_id=p.org_id,
            application_id=application_id,
            jurisdiction_code=payload.jurisdiction_code,
            actor_id=p.user_id,
        ),
        not_found="application not found",
    )


@router.get("/applications/{application_id}/requirements", response_model=list[dict])
def requirements(application_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return list_requirements(db, org_id=p.org_id, application_id=application_id)


@router.post("/applications/{application_id}/documents", response_model=dict)
def attach(
    application_id: int,
    payload: DocumentAttachIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return outcome(
        attach_document(
            db,
            org_id=p.org_id,
            application_id=application_id,
            party_id=payload.party_id,
            file_name=payload.file_name,
            size_bytes=payload.size_bytes,
            document_type=payload.document_type,
            mime_type=payload.mime_type,
            storage_key=payload.storage_key,
            requirement_item_id=payload.requirement_item_id,
            valid_until=payload.valid_until,
            actor_id=p.user_id,
        ),
        not_found="application not found",
    )


@router.post("/documents/{document_id}/verification", response_model=dict)
def verify(
    document_id: int,
    payload: DocumentVerifyIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_operator),
):
    return outcome(
        update_document_verification(
            db,
            org_id=p.org_id,
            document_id=document_id,
            action=payload.action,
            reviewer_id=p.user_id,
            rejected_reason=payload.rejected_reason,
        ),
        not_found="document not found",
    )


@router.post("/requirements/{requirement_item_id}/waive", response_model=dict)
def waive(
    requirement_item_id: int,
    payload: WaiveIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_operator),
):
    return outcome(
        waive_requirement(
            db,
            org_id=p.org_id,
            requirement_item_id=requirement_item_id,
            waived_by=p.user_id,
            reason=payload.reason,
        ),
        not_found="requirement not found",
    )


# -------------------- Info requests --------------------

@router.post("/applications/{application_id}/info-requests", response_model=dict)
def request_info(
    application_id: int,
    payload: InfoRequestIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_operator),
):
    return outcome(
        create_info_request(
            db,
            org_id=p.org_id,
            application_id=application_id,
            items_to_request=[i.as_item() for i in payload.items],
            target_party_id=payload.target_party_id,
            message=payload.message,
            unlock_scopes=payload.unlock_scopes,
            requested_by=p.user_id,
        ),
        not_found="application not found",
    )


@router.get("/applications/{application_id}/info-requests", response_model=list[dict])
def info_requests(
    application_id: int,
    status: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return list_info_requests(db, org_id=p.org_id, application_id=application_id, status=status)


@router.post("/applications/{application_id}/info-requests/{info_request_id}/respond", response_model=dict)
def respond(
    application_id: int,
    info_request_id: int,
    payload: InfoRequestRespondIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return outcome(
        respond_to_info_request(
            db,
            org_id=p.org_id,
            application_id=application_id,
            info_request_id=info_request_id,
            responded_by=p.user_id,
            response_message=payload.response_message,
        ),
        not_found="info request not found",
    )
