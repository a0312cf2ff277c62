# leasing_engine/services/assistant.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..db import scoped_transaction
from ..domain.assistant import compute_assistant_plan, expired_active_reservations
from ..domain.audit import audit_write
from .application_detail import get_application_detail
from .config_resolver import config_document, config_ref, resolve_effective_config
from .decisioning import create_note
from .guards import require
from .requirements import create_info_request
from .reservations import release_reservation

log = logging.getLogger(__name__)

INFO_REQUEST_TEMPLATES = {
    "MISSING_DOCS": "Please upload the missing documents listed on your application.",
    "SCREENING_TIMEOUT": "Your screening step timed out. Please review and resubmit the screening details.",
    "DOC_EXPIRED": "One or more documents have expired. Please upload a new copy.",
    "REMINDER": "Reminder: please complete your pending application tasks.",
}
DEFAULT_TEMPLATE_MESSAGE = "Please review and respond with the requested information."

REREQUESTABLE_STATUSES = ("PENDING", "IN_PROGRESS", "SUBMITTED", "REJECTED", "EXPIRED")


def template_message(template_key: Optional[str]) -> str:
    return INFO_REQUEST_TEMPLATES.get((template_key or "").strip().upper(), DEFAULT_TEMPLATE_MESSAGE)


def get_assistant_summary(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        detail = get_application_detail(db, org_id=org_id, application_id=application_id, now=now)
        if not detail.get("ok"):
            return detail

        app = detail["application"]
        cfg = resolve_effective_config(db, org_id=org_id, property_id=app.get("property_id"), as_of=now)
        plan = compute_assistant_plan(detail, config_document(cfg), now)
        return {
            "ok": True,
            "assistant": {
                "application_id": app["id"],
                "status": app["status"],
                "workflow_config": config_ref(cfg),
                **plan,
            },
        }


def _missing_requirement_items(detail: dict[str, Any]) -> list[dict[str, Any]]:
    items = []
    for r in detail.get("requirements") or []:
        if r.get("status") not in REREQUESTABLE_STATUSES:
            continue
        items.append(
            {
                "name": r.get("name"),
                "requirementType": r.get("requirement_type"),
                "documentType": (r.get("metadata") or {}).get("documentType"),
                "partyId": r.get("party_id"),
                "isRequired": r.get("is_required"),
            }
        )
    return items


def execute_assistant_action(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    action_key: str,
    reason_code: str,
    actor_id: int,
    actor_type: str = "staff",
    reason: Optional[str] = None,
    template_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Run one assistant action on behalf of a staff member.

    Every supported action goes through the regular service it wraps, so the
    same status checks apply. The executed action is audited once at the end.
    """
    require(org_id=org_id, application_id=application_id, action_key=action_key, actor_id=actor_id)
    require(reason_code=reason_code)
    now = now or datetime.utcnow()
    action_key = str(action_key).strip().upper()

    with scoped_transaction(db):
        detail = get_application_detail(db, org_id=org_id, application_id=application_id, now=now)
        if not detail.get("ok"):
            return detail

        if action_key == "SEND_REMINDER":
            result = create_note(
                db,
                org_id=org_id,
                application_id=application_id,
                author_id=actor_id,
                body=f"Reminder sent. {reason}" if reason else "Reminder sent to applicant.",
                visibility="INTERNAL_STAFF_ONLY",
                actor_type=actor_type,
                now=now,
            )
        elif action_key == "REQUEST_MISSING_DOCS":
            result = create_info_request(
                db,
                org_id=org_id,
                application_id=application_id,
                items_to_request=_missing_requirement_items(detail),
                message=template_message("MISSING_DOCS"),
                requested_by=actor_id,
                now=now,
            )
        elif action_key == "CREATE_INFO_REQUEST_TEMPLATE":
            result = create_info_request(
                db,
                org_id=org_id,
                application_id=application_id,
                message=template_message(template_key or "REMINDER"),
                requested_by=actor_id,
                now=now,
            )
        elif action_key == "RELEASE_EXPIRED_RESERVATION":
            released = []
            for r in expired_active_reservations(detail, now):
                out = release_reservation(
                    db,
                    org_id=org_id,
                    reservation_id=r["id"],
                    release_reason_code=reason_code,
                    released_reason=reason,
                    released_by=actor_id,
                    now=now,
                )
                if out.get("ok"):
                    released.append(out["reservation"])
            result = {"ok": True, "released": released}
        elif action_key == "MARK_STALE":
            audit_write(
                db,
                org_id=org_id,
                application_id=application_id,
                event_type="ASSISTANT_MARKED_STALE",
                actor_id=actor_id,
                target_type="lease_application",
                target_id=application_id,
                metadata={"reason_code": reason_code, "reason": reason},
                created_at=now,
            )
            result = {"ok": True}
        else:
            return {"ok": False, "error_code": "UNSUPPORTED_ACTION", "action_key": action_key}

        if not result.get("ok"):
            return result

        audit_write(
            db,
            org_id=org_id,
            application_id=application_id,
            event_type="ASSISTANT_ACTION_EXECUTED",
            actor_id=actor_id,
            target_type="lease_application",
            target_id=application_id,
            metadata={
                "action_key": action_key,
                "reason_code": reason_code,
                "reason": reason,
                "template_key": template_key,
            },
            created_at=now,
        )
        log.info(
            "assistant action executed",
            extra={"org_id": org_id, "application_id": application_id, "action_key": action_key},
        )
        return {"ok": True, "action_key": action_key, "result": result}
