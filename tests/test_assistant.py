from __future__ import annotations

from datetime import timedelta

import pytest

from factories import OPEN_CONFIG, make_world, submit_ready, utcnow
from leasing_engine.domain.assistant import AUTOMATION_SAFE_ACTIONS, compute_assistant_plan
from leasing_engine.models import AuditEvent, LeaseApplication, UnitReservation
from leasing_engine.services.assistant import execute_assistant_action, get_assistant_summary, template_message
from leasing_engine.services.requirements import create_info_request
from leasing_engine.services.reservations import create_screening_lock


def _keys(summary):
    return [r["action_key"] for r in summary["assistant"]["recommendations"]]


def test_summary_for_unpaid_submitted_application(db):
    w = make_world(db)
    now = utcnow()
    app_id = submit_ready(db, w, now=now)["application_id"]

    out = get_assistant_summary(db, org_id=w.org_id, application_id=app_id, now=now)
    assert out["ok"] is True
    a = out["assistant"]
    assert a["status"] == "SUBMITTED"
    assert a["workflow_config"] == {"id": w.config_id, "version": 1}
    assert a["next_action"]["key"] == "COLLECT_PAYMENT"
    assert _keys(out) == ["RETRY_PAYMENT", "MARK_IN_REVIEW"]
    assert a["automation_eligible_actions"] == []

    later = get_assistant_summary(db, org_id=w.org_id, application_id=app_id, now=now + timedelta(days=8))
    assert "MARK_STALE" in _keys(later)
    assert later["assistant"]["automation_eligible_actions"] == ["MARK_STALE"]
    assert set(later["assistant"]["automation_eligible_actions"]) <= set(AUTOMATION_SAFE_ACTIONS)

    assert get_assistant_summary(db, org_id=w.org_id, application_id=999)["error_code"] == "NOT_FOUND"


def test_disabled_automation_has_no_eligible_actions():
    snapshot = {
        "application": {"status": "SUBMITTED", "unit_id": None, "updated_at": utcnow() - timedelta(days=30)},
        "parties": [{"id": 1, "status": "INVITED"}],
    }
    plan = compute_assistant_plan(snapshot, {"automation": {"enabled": False}})
    assert "SEND_REMINDER" in [r["action_key"] for r in plan["recommendations"]]
    assert plan["automation_eligible_actions"] == []

    enabled = compute_assistant_plan(snapshot, {})
    assert enabled["next_action"]["key"] == "COMPLETE_PARTIES"
    assert enabled["automation_eligible_actions"] == ["SEND_REMINDER", "MARK_STALE"]


def test_send_reminder_and_unsupported_actions(db):
    w = make_world(db)
    now = utcnow()
    app_id = submit_ready(db, w, now=now)["application_id"]

    out = execute_assistant_action(
        db,
        org_id=w.org_id,
        application_id=app_id,
        action_key="send_reminder",
        reason_code="APPLICANT_IDLE",
        actor_id=w.user_id,
        now=now,
    )
    assert out["ok"] is True
    assert out["action_key"] == "SEND_REMINDER"
    assert out["result"]["note"]["visibility"] == "INTERNAL_STAFF_ONLY"
    executed = db.query(AuditEvent).filter(AuditEvent.event_type == "ASSISTANT_ACTION_EXECUTED").count()
    assert executed == 1

    unsupported = execute_assistant_action(
        db, org_id=w.org_id, application_id=app_id, action_key="RETRY_PAYMENT", reason_code="X", actor_id=w.user_id
    )
    assert unsupported == {"ok": False, "error_code": "UNSUPPORTED_ACTION", "action_key": "RETRY_PAYMENT"}

    with pytest.raises(ValueError):
        execute_assistant_action(
            db, org_id=w.org_id, application_id=app_id, action_key="MARK_STALE", reason_code="", actor_id=w.user_id
        )


def test_request_missing_docs_opens_info_request(db):
    w = make_world(db, config=OPEN_CONFIG)
    now = utcnow()
    app_id = submit_ready(db, w, now=now)["application_id"]
    first = create_info_request(
        db,
        org_id=w.org_id,
        application_id=app_id,
        items_to_request=[{"name": "Pay stub", "documentType": "PAYSTUB"}],
        now=now,
    )
    assert first["ok"] is True

    out = execute_assistant_action(
        db,
        org_id=w.org_id,
        application_id=app_id,
        action_key="REQUEST_MISSING_DOCS",
        reason_code="DOCS_PENDING",
        actor_id=w.user_id,
        now=now,
    )
    assert out["ok"] is True
    result = out["result"]
    assert result["info_request"]["message"] == template_message("MISSING_DOCS")
    assert [r["name"] for r in result["requirements"]] == ["Pay stub"]
    assert result["requirements"][0]["metadata"]["documentType"] == "PAYSTUB"
    db.expire_all()
    assert db.get(LeaseApplication, app_id).status == "NEEDS_INFO"

    templated = execute_assistant_action(
        db,
        org_id=w.org_id,
        application_id=app_id,
        action_key="CREATE_INFO_REQUEST_TEMPLATE",
        reason_code="NUDGE",
        actor_id=w.user_id,
        template_key="doc_expired",
        now=now,
    )
    assert templated["result"]["info_request"]["message"] == template_message("DOC_EXPIRED")
    assert template_message("unknown") == "Please review and respond with the requested information."


def test_release_expired_reservation(db):
    w = make_world(db, config=OPEN_CONFIG)
    now = utcnow()
    app_id = submit_ready(db, w, now=now)["application_id"]
    lock = create_screening_lock(
        db, org_id=w.org_id, application_id=app_id, unit_id=w.unit_ids[0], expires_at=now - timedelta(hours=1)
    )

    summary = get_assistant_summary(db, org_id=w.org_id, application_id=app_id, now=now)
    assert "RELEASE_EXPIRED_RESERVATION" in _keys(summary)

    out = execute_assistant_action(
        db,
        org_id=w.org_id,
        application_id=app_id,
        action_key="RELEASE_EXPIRED_RESERVATION",
        reason_code="EXPIRED",
        actor_id=w.user_id,
        now=now,
    )
    assert [r["id"] for r in out["result"]["released"]] == [lock["reservation"]["id"]]
    db.expire_all()
    assert db.get(UnitReservation, lock["reservation"]["id"]).status == "RELEASED"
