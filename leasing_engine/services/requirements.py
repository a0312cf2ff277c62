# leasing_engine/services/requirements.py
"""
Requirement checklist, documents and info requests.

Requirement items come from two places:
  - the effective workflow config (`requirements.items` templates), expanded
    per applicable party and filtered by relocation status
  - staff info requests (one item per requested entry)

Documents move UPLOADED -> VERIFIED|REJECTED -> EXPIRED and cascade onto the
linked requirement unless that requirement was WAIVED.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..db import scoped_transaction
from ..domain.audit import audit_write
from ..domain.json_fields import dumps_json
from ..domain.leasing_states import OPEN_REVIEW_STATUSES
from ..domain.requirement_metadata import build_requirement_metadata, resolve_alternatives
from ..models import ApplicationParty, Document, InfoRequest, LeaseApplication, Property, RequirementItem
from .config_resolver import config_document, config_ref, resolve_effective_config
from .guards import require
from .mappers import document_to_dict, info_request_to_dict, requirement_to_dict

log = logging.getLogger(__name__)

VERIFICATION_ACTIONS = ("VERIFY", "REJECT")


def _lock_application(db: Session, *, org_id: int, application_id: int) -> Optional[LeaseApplication]:
    return db.scalar(
        select(LeaseApplication)
        .where(LeaseApplication.id == int(application_id), LeaseApplication.org_id == int(org_id))
        .with_for_update()
    )


def _sort_order(value: Any, fallback: int) -> int:
    if value is None or isinstance(value, bool):
        return fallback
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(parsed):
        return fallback
    return int(math.floor(parsed))


def _requirement_type(item: dict[str, Any]) -> str:
    return str(item.get("requirementType") or ("DOCUMENT" if item.get("documentType") else "CUSTOM"))


def _due_date(item: dict[str, Any], now: datetime) -> Optional[datetime]:
    days = item.get("dueInDays")
    if days is None or isinstance(days, bool):
        return None
    try:
        return now + timedelta(days=float(days))
    except (TypeError, ValueError):
        return None


def requirement_templates(doc: Any) -> list[dict[str, Any]]:
    section = doc.get("requirements") if isinstance(doc, dict) else None
    items = section.get("items") if isinstance(section, dict) else None
    return [i for i in items if isinstance(i, dict)] if isinstance(items, list) else []


# ---------------------------------------------------------------------
# Generate from workflow config
# ---------------------------------------------------------------------
def generate_requirement_items(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    jurisdiction_code: Optional[str] = None,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        app = _lock_application(db, org_id=org_id, application_id=application_id)
        if app is None:
            return {"ok": False, "error_code": "NOT_FOUND"}

        parties = list(
            db.scalars(
                select(ApplicationParty)
                .where(ApplicationParty.application_id == app.id)
                .order_by(ApplicationParty.id.asc())
            ).all()
        )
        if jurisdiction_code is None:
            jurisdiction_code = db.scalar(select(Property.jurisdiction_code).where(Property.id == app.property_id))

        cfg = resolve_effective_config(
            db,
            org_id=org_id,
            property_id=app.property_id,
            jurisdiction_code=jurisdiction_code,
            as_of=now,
        )

        created: list[RequirementItem] = []
        for index, tpl in enumerate(requirement_templates(config_document(cfg))):
            if not tpl.get("name"):
                continue

            relocation_statuses = tpl.get("relocationStatuses")
            if not isinstance(relocation_statuses, list):
                relocation_statuses = None
            if relocation_statuses is not None:
                if not app.relocation_status or app.relocation_status not in relocation_statuses:
                    continue

            party_roles = tpl.get("partyRoles") if isinstance(tpl.get("partyRoles"), list) else None
            targets: list[Optional[ApplicationParty]] = (
                [p for p in parties if p.role in party_roles] if party_roles is not None else [None]
            )

            req_type = _requirement_type(tpl)
            meta = build_requirement_metadata(
                req_type,
                source="WORKFLOW_CONFIG",
                base=tpl.get("metadata"),
                template_id=tpl.get("id"),
                document_type=tpl.get("documentType"),
                party_roles=party_roles,
                relocation_statuses=relocation_statuses,
                alternatives=resolve_alternatives(tpl.get("alternatives"), app.relocation_status),
            )
            for party in targets:
                row = RequirementItem(
                    org_id=app.org_id,
                    application_id=app.id,
                    party_id=party.id if party is not None else None,
                    requirement_type=req_type,
                    status="PENDING",
                    name=str(tpl["name"]),
                    description=tpl.get("description"),
                    is_required=bool(tpl.get("isRequired", True)),
                    sort_order=_sort_order(tpl.get("sortOrder"), index),
                    due_date=_due_date(tpl, now),
                    metadata_json=dumps_json(meta.to_json()),
                    created_at=now,
                    updated_at=now,
                )
                db.add(row)
                created.append(row)

        db.flush()
        audit_write(
            db,
            org_id=org_id,
            application_id=app.id,
            event_type="REQUIREMENTS_GENERATED",
            actor_id=actor_id,
            target_type="lease_application",
            target_id=app.id,
            metadata={"config": config_ref(cfg), "count": len(created)},
            created_at=now,
        )
        ref = config_ref(cfg)
        return {
            "ok": True,
            "config_id": ref["id"] if ref else None,
            "config_version": ref["version"] if ref else None,
            "items": [requirement_to_dict(r) for r in created],
        }


# ---------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------
def attach_document(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    party_id: int,
    file_name: str,
    size_bytes: Any,
    document_type: Optional[str] = None,
    mime_type: Optional[str] = None,
    storage_key: Optional[str] = None,
    requirement_item_id: Optional[int] = None,
    valid_until: Optional[datetime] = None,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id, party_id=party_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        app = db.scalar(
            select(LeaseApplication).where(
                LeaseApplication.id == int(application_id), LeaseApplication.org_id == int(org_id)
            )
        )
        if app is None:
            return {"ok": False, "error_code": "NOT_FOUND"}

        party = db.scalar(
            select(ApplicationParty).where(
                ApplicationParty.id == int(party_id), ApplicationParty.application_id == app.id
            )
        )
        if party is None:
            return {"ok": False, "error_code": "PARTY_NOT_FOUND"}

        req: Optional[RequirementItem] = None
        if requirement_item_id is not None:
            req = db.scalar(
                select(RequirementItem).where(
                    RequirementItem.id == int(requirement_item_id), RequirementItem.application_id == app.id
                )
            )
            if req is None:
                return {"ok": False, "error_code": "REQUIREMENT_NOT_FOUND"}
            if req.party_id is not None and req.party_id != party.id:
                return {"ok": False, "error_code": "REQUIREMENT_PARTY_MISMATCH"}

        try:
            size = float(size_bytes)
        except (TypeError, ValueError):
            return {"ok": False, "error_code": "INVALID_SIZE"}
        if not math.isfinite(size) or size < 0:
            return {"ok": False, "error_code": "INVALID_SIZE"}

        doc = Document(
            org_id=app.org_id,
            application_id=app.id,
            party_id=party.id,
            requirement_item_id=req.id if req is not None else None,
            document_type=document_type,
            file_name=file_name,
            mime_type=mime_type,
            size_bytes=int(size),
            storage_key=storage_key,
            status="UPLOADED",
            valid_until=valid_until,
            created_at=now,
            updated_at=now,
        )
        db.add(doc)
        if req is not None and req.status != "WAIVED":
            req.status = "SUBMITTED"
            req.updated_at = now
        db.flush()

        audit_write(
            db,
            org_id=org_id,
            application_id=app.id,
            event_type="DOCUMENT_ATTACHED",
            actor_id=actor_id,
            target_type="document",
            target_id=doc.id,
            metadata={
                "party_id": party.id,
                "requirement_item_id": doc.requirement_item_id,
                "document_type": document_type,
            },
            created_at=now,
        )
        return {"ok": True, "document": document_to_dict(doc)}


def update_document_verification(
    db: Session,
    *,
    org_id: int,
    document_id: int,
    action: str,
    reviewer_id: Optional[int] = None,
    rejected_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, document_id=document_id, action=action)
    action = str(action).strip().upper()
    if action not in VERIFICATION_ACTIONS:
        raise ValueError(f"Invalid verification action: {action}")
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        doc = db.scalar(
            select(Document)
            .where(Document.id == int(document_id), Document.org_id == int(org_id))
            .with_for_update()
        )
        if doc is None:
            return {"ok": False, "error_code": "NOT_FOUND"}

        req = db.get(RequirementItem, doc.requirement_item_id) if doc.requirement_item_id else None

        if action == "VERIFY":
            if doc.status not in ("UPLOADED", "REJECTED"):
                return {"ok": False, "error_code": "INVALID_STATUS", "status": doc.status}
            doc.status = "VERIFIED"
            doc.verified_at = now
            doc.verified_by = reviewer_id
            doc.rejected_at = None
            doc.rejected_by = None
            doc.rejection_reason = None
            doc.expired_at = None
            if req is not None and req.status != "WAIVED":
                req.status = "APPROVED"
                req.completed_at = now
                req.updated_at = now
        else:
            if doc.status not in ("UPLOADED", "VERIFIED"):
                return {"ok": False, "error_code": "INVALID_STATUS", "status": doc.status}
            doc.status = "REJECTED"
            doc.rejected_at = now
            doc.rejected_by = reviewer_id
            doc.rejection_reason = rejected_reason
            doc.verified_at = None
            doc.verified_by = None
            doc.expired_at = None
            if req is not None and req.status != "WAIVED":
                req.status = "REJECTED"
                req.updated_at = now
        doc.updated_at = now
        db.flush()

        audit_write(
            db,
            org_id=org_id,
            application_id=doc.application_id,
            event_type="DOCUMENT_VERIFIED" if action == "VERIFY" else "DOCUMENT_REJECTED",
            actor_id=reviewer_id,
            target_type="document",
            target_id=doc.id,
            metadata={"requirement_item_id": doc.requirement_item_id, "rejected_reason": rejected_reason},
            created_at=now,
        )
        return {"ok": True, "document": document_to_dict(doc)}


def expire_documents(
    db: Session,
    *,
    org_id: Optional[int] = None,
    as_of: Optional[datetime] = None,
) -> dict[str, Any]:
    as_of = as_of or datetime.utcnow()

    with scoped_transaction(db):
        q = select(Document).where(
            Document.valid_until.is_not(None),
            Document.valid_until <= as_of,
            Document.status == "VERIFIED",
        )
        if org_id is not None:
            q = q.where(Document.org_id == int(org_id))
        docs = list(db.scalars(q.with_for_update()).all())

        requirement_ids: list[int] = []
        for doc in docs:
            doc.status = "EXPIRED"
            doc.expired_at = as_of
            doc.updated_at = as_of
            if doc.requirement_item_id:
                requirement_ids.append(doc.requirement_item_id)

        if requirement_ids:
            for req in db.scalars(select(RequirementItem).where(RequirementItem.id.in_(requirement_ids))).all():
                if req.status != "WAIVED":
                    req.status = "EXPIRED"
                    req.updated_at = as_of
        db.flush()
        return {"ok": True, "expired_count": len(docs), "requirement_item_ids": requirement_ids}


def waive_requirement(
    db: Session,
    *,
    org_id: int,
    requirement_item_id: int,
    waived_by: int,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, requirement_item_id=requirement_item_id, waived_by=waived_by)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        req = db.scalar(
            select(RequirementItem)
            .where(RequirementItem.id == int(requirement_item_id), RequirementItem.org_id == int(org_id))
            .with_for_update()
        )
        if req is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if req.status in ("WAIVED", "APPROVED"):
            return {"ok": False, "error_code": "INVALID_STATUS", "status": req.status}

        req.status = "WAIVED"
        req.waived_at = now
        req.waived_by = waived_by
        req.waived_reason = reason
        req.updated_at = now
        db.flush()

        audit_write(
            db,
            org_id=org_id,
            application_id=req.application_id,
            event_type="REQUIREMENT_WAIVED",
            actor_id=waived_by,
            target_type="requirement_item",
            target_id=req.id,
            metadata={"reason": reason},
            created_at=now,
        )
        return {"ok": True, "requirement": requirement_to_dict(req)}


def list_requirements(db: Session, *, org_id: int, application_id: int) -> list[dict[str, Any]]:
    require(org_id=org_id, application_id=application_id)
    reqs = db.scalars(
        select(RequirementItem)
        .where(RequirementItem.org_id == int(org_id), RequirementItem.application_id == int(application_id))
        .order_by(RequirementItem.sort_order.asc(), RequirementItem.id.asc())
    ).all()
    docs = db.scalars(
        select(Document)
        .where(Document.org_id == int(org_id), Document.application_id == int(application_id))
        .order_by(Document.created_at.desc(), Document.id.desc())
    ).all()

    by_req: dict[int, list[dict[str, Any]]] = {}
    for d in docs:
        if d.requirement_item_id is not None:
            by_req.setdefault(d.requirement_item_id, []).append(document_to_dict(d))

    out = []
    for r in reqs:
        item = requirement_to_dict(r)
        item["documents"] = by_req.get(r.id, [])
        out.append(item)
    return out


# ---------------------------------------------------------------------
# Info requests
# ---------------------------------------------------------------------
def insert_info_request(
    db: Session,
    *,
    app: LeaseApplication,
    items: Iterable[dict[str, Any]],
    target_party_id: Optional[int],
    message: Optional[str],
    unlock_scopes: Optional[list[str]],
    requested_by: Optional[int],
    now: datetime,
) -> tuple[InfoRequest, list[RequirementItem]]:
    """
    Info request + one requirement per requested item. Party references must
    already be validated; the caller owns the application status change.
    """
    items = [i for i in items if isinstance(i, dict)]
    ir = InfoRequest(
        org_id=app.org_id,
        application_id=app.id,
        target_party_id=target_party_id,
        status="OPEN",
        message=message,
        requested_items_json=dumps_json(items),
        unlock_scopes_json=dumps_json(list(unlock_scopes or [])),
        requested_by=requested_by,
        created_at=now,
        updated_at=now,
    )
    db.add(ir)
    db.flush()

    created: list[RequirementItem] = []
    for index, item in enumerate(items):
        if not item.get("name"):
            continue
        req_type = _requirement_type(item)
        meta = build_requirement_metadata(
            req_type,
            source="INFO_REQUEST",
            base=item.get("metadata"),
            document_type=item.get("documentType"),
            alternatives=item.get("alternatives") if isinstance(item.get("alternatives"), list) else None,
        )
        meta.info_request_id = ir.id
        party_id = item.get("partyId") if item.get("partyId") is not None else target_party_id
        row = RequirementItem(
            org_id=app.org_id,
            application_id=app.id,
            party_id=int(party_id) if party_id is not None else None,
            info_request_id=ir.id,
            requirement_type=req_type,
            status="PENDING",
            name=str(item["name"]),
            description=item.get("description"),
            is_required=bool(item.get("isRequired", True)),
            sort_order=_sort_order(item.get("sortOrder"), index),
            due_date=_due_date(item, now),
            metadata_json=dumps_json(meta.to_json()),
            created_at=now,
            updated_at=now,
        )
        db.add(row)
        created.append(row)
    db.flush()
    return ir, created


def create_info_request(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    items_to_request: Optional[list[dict[str, Any]]] = None,
    target_party_id: Optional[int] = None,
    message: Optional[str] = None,
    unlock_scopes: Optional[list[str]] = None,
    requested_by: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id)
    now = now or datetime.utcnow()
    items = [i for i in (items_to_request or []) if isinstance(i, dict)]

    with scoped_transaction(db):
        app = _lock_application(db, org_id=org_id, application_id=application_id)
        if app is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if app.status not in OPEN_REVIEW_STATUSES:
            return {"ok": False, "error_code": "INVALID_STATUS", "status": app.status}

        party_ids = set(db.scalars(select(ApplicationParty.id).where(ApplicationParty.application_id == app.id)).all())
        referenced = [target_party_id] + [i.get("partyId") for i in items if i.get("name")]
        for pid in referenced:
            if pid is not None and int(pid) not in party_ids:
                return {"ok": False, "error_code": "PARTY_NOT_FOUND", "party_id": pid}

        ir, created = insert_info_request(
            db,
            app=app,
            items=items,
            target_party_id=int(target_party_id) if target_party_id is not None else None,
            message=message,
            unlock_scopes=unlock_scopes,
            requested_by=requested_by,
            now=now,
        )
        app.status = "NEEDS_INFO"
        app.updated_at = now
        db.flush()

        audit_write(
            db,
            org_id=org_id,
            application_id=app.id,
            event_type="INFO_REQUEST_CREATED",
            actor_id=requested_by,
            target_type="info_request",
            target_id=ir.id,
            metadata={"target_party_id": ir.target_party_id, "requirement_count": len(created)},
            created_at=now,
        )
        log.info("info request created", extra={"org_id": org_id, "application_id": app.id})
        return {
            "ok": True,
            "info_request": info_request_to_dict(ir),
            "requirements": [requirement_to_dict(r) for r in created],
        }


def respond_to_info_request(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    info_request_id: int,
    responded_by: Optional[int] = None,
    response_message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    require(org_id=org_id, application_id=application_id, info_request_id=info_request_id)
    now = now or datetime.utcnow()

    with scoped_transaction(db):
        ir = db.scalar(
            select(InfoRequest)
            .where(
                InfoRequest.id == int(info_request_id),
                InfoRequest.org_id == int(org_id),
                InfoRequest.application_id == int(application_id),
            )
            .with_for_update()
        )
        if ir is None:
            return {"ok": False, "error_code": "NOT_FOUND"}
        if ir.status != "OPEN":
            return {"ok": False, "error_code": "INVALID_STATUS", "status": ir.status}

        ir.status = "RESPONDED"
        ir.responded_at = now
        ir.responded_by = responded_by
        ir.response_message = response_message
        ir.updated_at = now
        db.flush()

        open_count = db.scalar(
            select(func.count(InfoRequest.id)).where(
                InfoRequest.application_id == int(application_id), InfoRequest.status == "OPEN"
            )
        )
        application_status = None
        if not open_count:
            app = _lock_application(db, org_id=org_id, application_id=application_id)
            if app is not None:
                if app.status == "NEEDS_INFO":
                    app.status = "IN_REVIEW"
                    app.updated_at = now
                application_status = app.status

        audit_write(
            db,
            org_id=org_id,
            application_id=int(application_id),
            event_type="INFO_REQUEST_RESPONDED",
            actor_id=responded_by,
            target_type="info_request",
            target_id=ir.id,
            metadata={"application_status": application_status},
            created_at=now,
        )
        return {"ok": True, "info_request": info_request_to_dict(ir), "application_status": application_status}


def list_info_requests(
    db: Session,
    *,
    org_id: int,
    application_id: int,
    status: Optional[str] = None,
) -> list[dict[str, Any]]:
    require(org_id=org_id, application_id=application_id)
    q = select(InfoRequest).where(
        InfoRequest.org_id == int(org_id), InfoRequest.application_id == int(application_id)
    )
    if status:
        q = q.where(InfoRequest.status == status)
    q = q.order_by(InfoRequest.created_at.desc(), InfoRequest.id.desc())
    return [info_request_to_dict(r) for r in db.scalars(q).all()]
