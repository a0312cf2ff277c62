# leasing_engine/domain/audit.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import AuditEvent
from .json_fields import dumps_json, loads_json

log = logging.getLogger(__name__)


def audit_write(
    db: Session,
    *,
    org_id: int,
    event_type: str,
    application_id: Optional[int] = None,
    actor_id: Optional[int] = None,
    target_type: Optional[str] = None,
    target_id: Any = None,
    metadata: Optional[dict[str, Any]] = None,
    created_at: Optional[datetime] = None,
) -> AuditEvent:
    """
    Append one audit row in the caller's transaction.

    - Never commits; the row lands or rolls back with the operation it describes.
    - actor_type is "person" when an actor id is known, else "system".
    - Returns the AuditEvent row for tests / introspection.
    """
    row = AuditEvent(
        org_id=int(org_id),
        application_id=int(application_id) if application_id is not None else None,
        event_type=str(event_type),
        actor_id=int(actor_id) if actor_id is not None else None,
        actor_type="person" if actor_id is not None else "system",
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        metadata_json=dumps_json(metadata) if metadata is not None else None,
        created_at=created_at or datetime.utcnow(),
    )
    db.add(row)
    log.debug(
        "audit %s",
        event_type,
        extra={"org_id": org_id, "application_id": application_id},
    )
    return row


def audit_event_to_dict(row: AuditEvent) -> dict[str, Any]:
    return {
        "id": row.id,
        "org_id": row.org_id,
        "application_id": row.application_id,
        "event_type": row.event_type,
        "actor_id": row.actor_id,
        "actor_type": row.actor_type,
        "target_type": row.target_type,
        "target_id": row.target_id,
        "metadata": loads_json(row.metadata_json, {}),
        "created_at": row.created_at,
    }


def list_audit_events(
    db: Session,
    *,
    org_id: int,
    application_id: Optional[int] = None,
    event_type: Optional[str] = None,
    limit: int = 50,
) -> list[AuditEvent]:
    q = select(AuditEvent).where(AuditEvent.org_id == int(org_id))
    if application_id is not None:
        q = q.where(AuditEvent.application_id == int(application_id))
    if event_type:
        q = q.where(AuditEvent.event_type == str(event_type))
    q = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(max(1, int(limit)))
    return list(db.scalars(q).all())
