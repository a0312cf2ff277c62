# leasing_engine/routers/assistant.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_operator
from ..db import get_db
from ..schemas import AssistantActionIn
from ..services.assistant import execute_assistant_action, get_assistant_summary
from .common import outcome

router = APIRouter(prefix="/leasing/applications/{application_id}/assistant", tags=["leasing-assistant"])


@router.get("", response_model=dict)
def summary(application_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return outcome(
        get_assistant_summary(db, org_id=p.org_id, application_id=application_id),
        not_found="application not found",
    )


@router.post("/actions", response_model=dict)
def execute(
    application_id: int,
    payload: AssistantActionIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(require_operator),
):
    return outcome(
        execute_assistant_action(
            db,
            org_id=p.org_id,
            application_id=application_id,
            action_key=payload.action_key,
            reason_code=payload.reason_code,
            actor_id=p.user_id,
            reason=payload.reason,
            template_key=payload.template_key,
        ),
        not_found="application not found",
    )
