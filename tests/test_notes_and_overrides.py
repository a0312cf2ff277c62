from __future__ import annotations

import pytest

from factories import make_world, start_draft
from leasing_engine.models import ApplicationNote, LeaseApplication
from leasing_engine.services.decisioning import (
    create_note,
    delete_note,
    list_notes,
    list_override_requests,
    request_priority_override,
    review_priority_override,
    update_note,
    visible_note_levels,
)


def test_note_visibility_per_viewer(db):
    w = make_world(db)
    app_id = start_draft(db, w)["application"]["id"]
    for visibility in ("INTERNAL_STAFF_ONLY", "SHARED_WITH_APPLICANT", "SHARED_WITH_PARTIES", "PUBLIC"):
        out = create_note(
            db, org_id=w.org_id, application_id=app_id, author_id=w.user_id, body=visibility, visibility=visibility
        )
        assert out["ok"] is True

    def bodies(viewer):
        return {n["body"] for n in list_notes(db, org_id=w.org_id, application_id=app_id, viewer_type=viewer)}

    assert len(bodies("staff")) == 4
    assert bodies("applicant") == {"SHARED_WITH_APPLICANT", "SHARED_WITH_PARTIES", "PUBLIC"}
    assert bodies("party") == {"SHARED_WITH_PARTIES", "PUBLIC"}
    assert bodies("public") == {"PUBLIC"}
    assert visible_note_levels("somebody") == ("PUBLIC",)


def test_default_visibility_and_applicant_limits(db):
    w = make_world(db)
    app_id = start_draft(db, w)["application"]["id"]

    staff_note = create_note(db, org_id=w.org_id, application_id=app_id, author_id=w.user_id, body="internal")
    assert staff_note["note"]["visibility"] == "INTERNAL_STAFF_ONLY"

    denied = create_note(
        db,
        org_id=w.org_id,
        application_id=app_id,
        author_id=42,
        body="x",
        visibility="INTERNAL_STAFF_ONLY",
        actor_type="applicant",
    )
    assert denied == {"ok": False, "error_code": "VISIBILITY_NOT_ALLOWED"}

    own = create_note(
        db,
        org_id=w.org_id,
        application_id=app_id,
        author_id=42,
        body="question",
        visibility="SHARED_WITH_APPLICANT",
        actor_type="applicant",
    )
    assert own["ok"] is True
    note_id = own["note"]["id"]

    hidden = update_note(
        db, org_id=w.org_id, note_id=note_id, actor_id=42, visibility="INTERNAL_STAFF_ONLY", actor_type="applicant"
    )
    assert hidden["error_code"] == "VISIBILITY_NOT_ALLOWED"

    edited = update_note(db, org_id=w.org_id, note_id=note_id, actor_id=42, body="edited", actor_type="applicant")
    assert edited["note"]["body"] == "edited"

    # applicants may not touch notes they did not write
    other = update_note(
        db, org_id=w.org_id, note_id=staff_note["note"]["id"], actor_id=42, body="x", actor_type="applicant"
    )
    assert other == {"ok": False, "error_code": "FORBIDDEN"}
    assert delete_note(
        db, org_id=w.org_id, note_id=staff_note["note"]["id"], actor_id=42, actor_type="applicant"
    ) == {"ok": False, "error_code": "FORBIDDEN"}


def test_delete_is_soft_and_hides_note(db):
    w = make_world(db)
    app_id = start_draft(db, w)["application"]["id"]
    note = create_note(db, org_id=w.org_id, application_id=app_id, author_id=w.user_id, body="pin me", is_pinned=True)
    note_id = note["note"]["id"]

    out = delete_note(db, org_id=w.org_id, note_id=note_id, actor_id=w.user_id)
    assert out["note"]["deleted_at"] is not None
    assert list_notes(db, org_id=w.org_id, application_id=app_id) == []

    db.expire_all()
    row = db.get(ApplicationNote, note_id)
    assert row is not None
    assert row.deleted_by == w.user_id

    assert delete_note(db, org_id=w.org_id, note_id=note_id, actor_id=w.user_id)["error_code"] == "NOT_FOUND"
    assert update_note(db, org_id=w.org_id, note_id=note_id, actor_id=w.user_id, body="x")["error_code"] == (
        "NOT_FOUND"
    )


def test_priority_override_lifecycle(db):
    w = make_world(db)
    app_id = start_draft(db, w)["application"]["id"]

    same = request_priority_override(
        db, org_id=w.org_id, application_id=app_id, requested_by=w.user_id, requested_priority="standard"
    )
    assert same == {"ok": False, "error_code": "NO_CHANGE"}

    with pytest.raises(ValueError):
        request_priority_override(
            db, org_id=w.org_id, application_id=app_id, requested_by=w.user_id, requested_priority="URGENT"
        )

    requested = request_priority_override(
        db,
        org_id=w.org_id,
        application_id=app_id,
        requested_by=w.user_id,
        requested_priority="EMERGENCY",
        reason="displaced by fire",
    )
    assert requested["ok"] is True
    o = requested["override_request"]
    assert o["status"] == "PENDING"
    assert o["before"] == {"priority": "STANDARD"}
    assert o["after"] == {"priority": "EMERGENCY"}

    bad = review_priority_override(
        db, org_id=w.org_id, override_request_id=o["id"], reviewer_id=w.user_id, status="LATER"
    )
    assert bad["error_code"] == "INVALID_STATUS_VALUE"

    reviewed = review_priority_override(
        db, org_id=w.org_id, override_request_id=o["id"], reviewer_id=w.user_id, status="approved"
    )
    assert reviewed["override_request"]["status"] == "APPROVED"
    db.expire_all()
    assert db.get(LeaseApplication, app_id).priority == "EMERGENCY"

    again = review_priority_override(
        db, org_id=w.org_id, override_request_id=o["id"], reviewer_id=w.user_id, status="DENIED"
    )
    assert again == {"ok": False, "error_code": "INVALID_STATUS", "status": "APPROVED"}

    listed = list_override_requests(db, org_id=w.org_id, application_id=app_id, status="approved")
    assert [r["id"] for r in listed] == [o["id"]]
