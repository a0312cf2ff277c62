from __future__ import annotations

from datetime import timedelta

import pytest

from factories import OPEN_CONFIG, make_world, start_draft, submit_ready, utcnow
from leasing_engine.models import AuditEvent, LeaseApplication, UnitReservation
from leasing_engine.services.applications import (
    autosave_draft_session,
    begin_review,
    complete_party,
    invite_party,
    resume_application,
    start_application,
    submit_application,
    withdraw_application,
)
from leasing_engine.services.reservations import create_soft_hold


def test_start_dedupes_recent_draft_for_same_email_and_unit(db):
    w = make_world(db)
    now = utcnow()

    first = start_draft(db, w, email="Dupe@Example.com ", now=now)
    assert first["deduped"] is False
    assert first["application"]["status"] == "DRAFT"
    assert first["party"]["role"] == "PRIMARY"
    assert first["party"]["email"] == "dupe@example.com"
    assert first["draft_session"]["session_token"]

    again = start_draft(db, w, email="dupe@example.com", now=now + timedelta(hours=1))
    assert again["deduped"] is True
    assert again["application"]["id"] == first["application"]["id"]
    assert again["draft_session"]["session_token"] == first["draft_session"]["session_token"]

    other_unit = start_draft(db, w, email="dupe@example.com", unit_index=1, now=now)
    assert other_unit["deduped"] is False
    assert other_unit["application"]["id"] != first["application"]["id"]

    # outside the lookback window a new draft is started
    later = start_draft(db, w, email="dupe@example.com", now=now + timedelta(days=8))
    assert later["deduped"] is False


def test_start_rejects_missing_ids_and_email(db):
    w = make_world(db)
    with pytest.raises(ValueError):
        start_application(db, org_id=w.org_id, property_id=None, primary={"email": "a@b.c"})
    with pytest.raises(ValueError):
        start_application(db, org_id=w.org_id, property_id=w.property_id, primary={"email": "  "})
    with pytest.raises(ValueError):
        start_application(
            db, org_id=w.org_id, property_id=w.property_id, primary={"email": "a@b.c"}, application_type="GROUP"
        )


def test_autosave_deep_merges_and_resume_returns_state(db):
    w = make_world(db)
    now = utcnow()
    started = start_application(
        db,
        org_id=w.org_id,
        property_id=w.property_id,
        unit_id=w.unit_ids[0],
        primary={"email": "saver@t.local"},
        form_data={"household": {"adults": 1}, "pets": ["cat"]},
        now=now,
    )
    app_id = started["application"]["id"]
    token = started["draft_session"]["session_token"]

    saved = autosave_draft_session(
        db,
        org_id=w.org_id,
        application_id=app_id,
        session_token=token,
        form_data_patch={"household": {"children": 2}, "pets": ["dog"]},
        progress_map_patch={"household": "done"},
        current_step="income",
        now=now + timedelta(minutes=5),
    )
    assert saved["form_data"] == {"household": {"adults": 1, "children": 2}, "pets": ["dog"]}
    assert saved["progress_map"] == {"household": "done"}
    assert saved["current_step"] == "income"

    resumed = resume_application(db, org_id=w.org_id, session_token=token, now=now + timedelta(days=1))
    assert resumed["application"]["id"] == app_id
    assert resumed["party"]["email"] == "saver@t.local"
    assert resumed["draft_session"]["current_step"] == "income"

    assert resume_application(db, org_id=w.org_id, session_token="nope", now=now) is None
    assert resume_application(db, org_id=w.org_id, session_token=token, now=now + timedelta(days=31)) is None
    assert (
        autosave_draft_session(db, org_id=w.org_id, application_id=app_id, session_token="nope", now=now) is None
    )


def test_submit_happy_path_locks_unit_and_sets_ttl(db):
    w = make_world(db)
    now = utcnow()
    out = submit_ready(db, w, now=now)

    assert out["ok"] is True
    app = out["application"]
    assert app["status"] == "SUBMITTED"
    assert app["submitted_at"] == now
    assert app["expires_at"] == now + timedelta(days=30)
    assert app["application_fee_status"] == "PENDING"
    assert app["unit_was_available_at_submit"] is True
    assert out["unit_availability"]["available"] is True
    assert out["reservation"]["kind"] == "SCREENING_LOCK"
    assert out["reservation"]["status"] == "ACTIVE"
    assert out["workflow_config"] == {"id": w.config_id, "version": 1}


def test_submit_blocked_gates_keep_availability_snapshot(db):
    w = make_world(db)
    now = utcnow()
    started = start_draft(db, w, now=now)
    app_id = started["application"]["id"]
    party_id = started["party"]["id"]

    out = submit_application(db, org_id=w.org_id, application_id=app_id, now=now)
    assert out["ok"] is False
    assert out["error_code"] == "PARTIES_INCOMPLETE"
    assert out["reason"] == "PRIMARY_INCOMPLETE"

    complete_party(db, org_id=w.org_id, application_id=app_id, party_id=party_id, now=now)
    out = submit_application(db, org_id=w.org_id, application_id=app_id, consent={"party_id": party_id}, now=now)
    assert out["error_code"] == "CONSENT_REQUIRED"

    out = submit_application(
        db, org_id=w.org_id, application_id=app_id, consent={"party_id": 999999, "signature": "x"}, now=now
    )
    assert out["error_code"] == "CONSENT_PARTY_INVALID"

    db.expire_all()
    app = db.get(LeaseApplication, app_id)
    assert app.status == "DRAFT"
    assert app.unit_availability_verified_at == now
    assert app.unit_was_available_at_submit is True

    blocked = db.query(AuditEvent).filter(
        AuditEvent.application_id == app_id, AuditEvent.event_type == "SUBMIT_BLOCKED"
    ).count()
    assert blocked == 3


def test_submit_rejects_unit_held_by_another_application(db):
    w = make_world(db)
    now = utcnow()
    holder = start_draft(db, w, email="holder@t.local", now=now)["application"]["id"]
    hold = create_soft_hold(db, org_id=w.org_id, application_id=holder, unit_id=w.unit_ids[0], now=now)
    assert hold["ok"] is True

    out = submit_ready(db, w, email="late@t.local", now=now)
    assert out["ok"] is False
    assert out["error_code"] == "UNIT_UNAVAILABLE"
    assert out["guidance"]["active_hold_count"] == 1
    assert out["guidance"]["suggested_action"] == "CHOOSE_ANOTHER_UNIT"

    db.expire_all()
    app = db.get(LeaseApplication, out["application_id"])
    assert app.status == "DRAFT"
    assert app.unit_was_available_at_submit is False
    assert app.unit_availability_verified_at == now
    assert app.unit_availability_snapshot_json
    assert db.query(UnitReservation).filter(UnitReservation.application_id == app.id).count() == 0


def test_submit_requires_active_consent_template(db):
    w = make_world(db, with_consent=False)
    out = submit_ready(db, w)
    assert out["ok"] is False
    assert out["error_code"] == "CONSENT_TEMPLATE_MISSING"


def test_joint_application_requires_completed_co_applicant(db):
    w = make_world(db)
    now = utcnow()
    started = start_draft(db, w, application_type="JOINT", now=now)
    app_id = started["application"]["id"]
    party_id = started["party"]["id"]
    complete_party(db, org_id=w.org_id, application_id=app_id, party_id=party_id, now=now)

    consent = {"party_id": party_id, "signature": "Pat"}
    out = submit_application(db, org_id=w.org_id, application_id=app_id, consent=consent, now=now)
    assert out["error_code"] == "PARTIES_INCOMPLETE"
    assert out["reason"] == "CO_APPLICANT_REQUIRED"

    invited = invite_party(
        db, org_id=w.org_id, application_id=app_id, role="co_applicant", email="co@t.local", now=now
    )
    assert invited["ok"] is True
    assert invited["party"]["status"] == "INVITED"
    assert invited["draft_session"]["party_id"] == invited["party"]["id"]

    complete_party(db, org_id=w.org_id, application_id=app_id, party_id=invited["party"]["id"], now=now)
    out = submit_application(db, org_id=w.org_id, application_id=app_id, consent=consent, now=now)
    assert out["ok"] is True


def test_cap_n_submits_blocks_once_cap_reached(db):
    w = make_world(db, config={"unitIntake": {"mode": "CAP_N_SUBMITS", "capSubmits": 2}})
    now = utcnow()

    assert submit_ready(db, w, email="a@t.local", now=now)["ok"] is True
    assert submit_ready(db, w, email="b@t.local", now=now)["ok"] is True
    third = submit_ready(db, w, email="c@t.local", now=now)
    assert third["ok"] is False
    assert third["error_code"] == "SUBMIT_CAP_REACHED"
    assert third["cap"] == 2
    assert third["current_count"] == 2

    # a different unit has its own cap
    assert submit_ready(db, w, email="c@t.local", unit_index=1, now=now)["ok"] is True


def test_submit_twice_is_invalid_status(db):
    w = make_world(db, config=OPEN_CONFIG)
    out = submit_ready(db, w)
    again = submit_application(
        db, org_id=w.org_id, application_id=out["application_id"], consent={"party_id": 1, "signature": "x"}
    )
    assert again == {"ok": False, "error_code": "INVALID_STATUS", "status": "SUBMITTED"}


def test_begin_review_then_withdraw_releases_reservations(db):
    w = make_world(db)
    now = utcnow()
    out = submit_ready(db, w, now=now)
    app_id = out["application_id"]

    reviewed = begin_review(db, org_id=w.org_id, application_id=app_id, now=now)
    assert reviewed["application"]["status"] == "IN_REVIEW"
    assert begin_review(db, org_id=w.org_id, application_id=app_id)["error_code"] == "INVALID_STATUS"

    withdrawn = withdraw_application(
        db, org_id=w.org_id, application_id=app_id, reason_code="FOUND_OTHER_HOME", withdrawn_by=w.user_id, now=now
    )
    assert withdrawn["ok"] is True
    assert withdrawn["application"]["status"] == "CLOSED"
    assert withdrawn["application"]["closed_reason"] == "WITHDRAWN"
    assert withdrawn["refund_requests"] == []

    db.expire_all()
    res = db.get(UnitReservation, out["reservation"]["id"])
    assert res.status == "RELEASED"
    assert res.release_reason_code == "WITHDRAWN"

    assert withdraw_application(db, org_id=w.org_id, application_id=app_id)["error_code"] == "ALREADY_CLOSED"
    assert invite_party(db, org_id=w.org_id, application_id=app_id, role="GUARANTOR", email="g@t.local")[
        "error_code"
    ] == "INVALID_STATUS"


def test_unknown_application_is_not_found(db):
    w = make_world(db)
    assert submit_application(db, org_id=w.org_id, application_id=424242)["error_code"] == "NOT_FOUND"
    assert begin_review(db, org_id=w.org_id, application_id=424242)["error_code"] == "NOT_FOUND"
    with pytest.raises(ValueError):
        submit_application(db, org_id=w.org_id, application_id=None)
