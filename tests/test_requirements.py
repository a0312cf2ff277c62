from __future__ import annotations

from datetime import timedelta

import pytest

from factories import OPEN_CONFIG, make_world, start_draft, submit_ready, utcnow
from leasing_engine.models import LeaseApplication
from leasing_engine.services.applications import begin_review, invite_party, start_application
from leasing_engine.services.requirements import (
    attach_document,
    create_info_request,
    expire_documents,
    generate_requirement_items,
    list_info_requests,
    list_requirements,
    respond_to_info_request,
    update_document_verification,
    waive_requirement,
)

REQUIREMENTS_CONFIG = {
    **OPEN_CONFIG,
    "requirements": {
        "items": [
            {
                "id": "gov-id",
                "name": "Government ID",
                "documentType": "GOV_ID",
                "partyRoles": ["PRIMARY", "CO_APPLICANT"],
            },
            {
                "id": "income",
                "name": "Proof of income",
                "documentType": "PAYSTUB",
                "sortOrder": 5,
                "dueInDays": 3,
                "alternatives": {"DISPLACED": ["AGENCY_LETTER"], "default": ["BANK_STATEMENT"]},
            },
            {"id": "reloc", "name": "Relocation letter", "relocationStatuses": ["DISPLACED"]},
            {"description": "nameless templates are skipped"},
        ]
    },
}


def _app_with_co_applicant(db, w, *, relocation_status=None, now):
    started = start_application(
        db,
        org_id=w.org_id,
        property_id=w.property_id,
        unit_id=w.unit_ids[0],
        primary={"email": "req@t.local"},
        relocation_status=relocation_status,
        now=now,
    )
    app_id = started["application"]["id"]
    co = invite_party(db, org_id=w.org_id, application_id=app_id, role="CO_APPLICANT", email="co@t.local", now=now)
    return app_id, started["party"]["id"], co["party"]["id"]


def test_generate_expands_party_roles_and_alternatives(db):
    w = make_world(db, config=REQUIREMENTS_CONFIG)
    now = utcnow()
    app_id, primary_id, co_id = _app_with_co_applicant(db, w, now=now)

    out = generate_requirement_items(db, org_id=w.org_id, application_id=app_id, now=now)
    assert out["ok"] is True
    assert out["config_id"] == w.config_id
    assert out["config_version"] == 1

    items = out["items"]
    gov = [i for i in items if i["name"] == "Government ID"]
    assert sorted(i["party_id"] for i in gov) == sorted([primary_id, co_id])
    assert all(i["requirement_type"] == "DOCUMENT" for i in gov)
    assert gov[0]["metadata"]["source"] == "WORKFLOW_CONFIG"
    assert gov[0]["metadata"]["templateId"] == "gov-id"

    (income,) = [i for i in items if i["name"] == "Proof of income"]
    assert income["party_id"] is None
    assert income["sort_order"] == 5
    assert income["due_date"] == now + timedelta(days=3)
    assert income["metadata"]["alternatives"] == ["BANK_STATEMENT"]

    # relocation-only template is skipped without a relocation status
    assert not [i for i in items if i["name"] == "Relocation letter"]
    assert len(items) == 3


def test_generate_uses_relocation_status(db):
    w = make_world(db, config=REQUIREMENTS_CONFIG)
    now = utcnow()
    app_id, _, _ = _app_with_co_applicant(db, w, relocation_status="DISPLACED", now=now)

    items = generate_requirement_items(db, org_id=w.org_id, application_id=app_id, now=now)["items"]
    names = [i["name"] for i in items]
    assert "Relocation letter" in names
    (income,) = [i for i in items if i["name"] == "Proof of income"]
    assert income["metadata"]["alternatives"] == ["AGENCY_LETTER"]


def test_generate_without_config_templates(db):
    w = make_world(db, config=OPEN_CONFIG)
    app_id = start_draft(db, w)["application"]["id"]
    out = generate_requirement_items(db, org_id=w.org_id, application_id=app_id)
    assert out["items"] == []
    assert generate_requirement_items(db, org_id=w.org_id, application_id=777)["error_code"] == "NOT_FOUND"


def test_document_lifecycle_cascades_to_requirement(db):
    w = make_world(db, config=REQUIREMENTS_CONFIG)
    now = utcnow()
    app_id, primary_id, co_id = _app_with_co_applicant(db, w, now=now)
    items = generate_requirement_items(db, org_id=w.org_id, application_id=app_id, now=now)["items"]
    gov_primary = next(i for i in items if i["name"] == "Government ID" and i["party_id"] == primary_id)

    mismatch = attach_document(
        db,
        org_id=w.org_id,
        application_id=app_id,
        party_id=co_id,
        file_name="id.png",
        size_bytes=10,
        requirement_item_id=gov_primary["id"],
    )
    assert mismatch == {"ok": False, "error_code": "REQUIREMENT_PARTY_MISMATCH"}

    bad_size = attach_document(
        db, org_id=w.org_id, application_id=app_id, party_id=primary_id, file_name="id.png", size_bytes=-1
    )
    assert bad_size == {"ok": False, "error_code": "INVALID_SIZE"}

    attached = attach_document(
        db,
        org_id=w.org_id,
        application_id=app_id,
        party_id=primary_id,
        file_name="id.png",
        size_bytes="2048.7",
        document_type="GOV_ID",
        requirement_item_id=gov_primary["id"],
        valid_until=now + timedelta(days=10),
        now=now,
    )
    assert attached["ok"] is True
    doc_id = attached["document"]["id"]
    assert attached["document"]["size_bytes"] == 2048

    reqs = {r["id"]: r for r in list_requirements(db, org_id=w.org_id, application_id=app_id)}
    assert reqs[gov_primary["id"]]["status"] == "SUBMITTED"
    assert [d["id"] for d in reqs[gov_primary["id"]]["documents"]] == [doc_id]

    rejected = update_document_verification(
        db, org_id=w.org_id, document_id=doc_id, action="reject", reviewer_id=w.user_id, rejected_reason="blurry"
    )
    assert rejected["document"]["status"] == "REJECTED"
    assert rejected["document"]["rejection_reason"] == "blurry"
    reqs = {r["id"]: r for r in list_requirements(db, org_id=w.org_id, application_id=app_id)}
    assert reqs[gov_primary["id"]]["status"] == "REJECTED"

    verified = update_document_verification(
        db, org_id=w.org_id, document_id=doc_id, action="VERIFY", reviewer_id=w.user_id, now=now
    )
    assert verified["document"]["status"] == "VERIFIED"
    assert verified["document"]["rejection_reason"] is None
    reqs = {r["id"]: r for r in list_requirements(db, org_id=w.org_id, application_id=app_id)}
    assert reqs[gov_primary["id"]]["status"] == "APPROVED"

    with pytest.raises(ValueError):
        update_document_verification(db, org_id=w.org_id, document_id=doc_id, action="SHRUG")

    assert expire_documents(db, as_of=now + timedelta(days=9))["expired_count"] == 0
    expired = expire_documents(db, org_id=w.org_id, as_of=now + timedelta(days=10))
    assert expired["expired_count"] == 1
    assert expired["requirement_item_ids"] == [gov_primary["id"]]
    reqs = {r["id"]: r for r in list_requirements(db, org_id=w.org_id, application_id=app_id)}
    assert reqs[gov_primary["id"]]["status"] == "EXPIRED"
    assert reqs[gov_primary["id"]]["documents"][0]["status"] == "EXPIRED"

    again = update_document_verification(db, org_id=w.org_id, document_id=doc_id, action="REJECT")
    assert again == {"ok": False, "error_code": "INVALID_STATUS", "status": "EXPIRED"}


def test_waived_requirement_ignores_document_updates(db):
    w = make_world(db, config=REQUIREMENTS_CONFIG)
    now = utcnow()
    app_id, primary_id, _ = _app_with_co_applicant(db, w, now=now)
    items = generate_requirement_items(db, org_id=w.org_id, application_id=app_id, now=now)["items"]
    income = next(i for i in items if i["name"] == "Proof of income")

    waived = waive_requirement(
        db, org_id=w.org_id, requirement_item_id=income["id"], waived_by=w.user_id, reason="retired applicant"
    )
    assert waived["requirement"]["status"] == "WAIVED"
    assert waived["requirement"]["waived_reason"] == "retired applicant"
    again = waive_requirement(db, org_id=w.org_id, requirement_item_id=income["id"], waived_by=w.user_id)
    assert again["error_code"] == "INVALID_STATUS"

    doc = attach_document(
        db,
        org_id=w.org_id,
        application_id=app_id,
        party_id=primary_id,
        file_name="stub.pdf",
        size_bytes=1,
        requirement_item_id=income["id"],
    )
    update_document_verification(db, org_id=w.org_id, document_id=doc["document"]["id"], action="VERIFY")
    reqs = {r["id"]: r for r in list_requirements(db, org_id=w.org_id, application_id=app_id)}
    assert reqs[income["id"]]["status"] == "WAIVED"


def test_info_request_moves_application_to_needs_info_and_back(db):
    w = make_world(db, config=OPEN_CONFIG)
    now = utcnow()

    draft_id = start_draft(db, w, email="draft@t.local")["application"]["id"]
    blocked = create_info_request(db, org_id=w.org_id, application_id=draft_id, items_to_request=[{"name": "x"}])
    assert blocked == {"ok": False, "error_code": "INVALID_STATUS", "status": "DRAFT"}

    submitted = submit_ready(db, w, now=now)
    app_id = submitted["application_id"]
    begin_review(db, org_id=w.org_id, application_id=app_id, now=now)

    bad_party = create_info_request(
        db, org_id=w.org_id, application_id=app_id, items_to_request=[{"name": "Pay stub", "partyId": 99999}]
    )
    assert bad_party["error_code"] == "PARTY_NOT_FOUND"

    out = create_info_request(
        db,
        org_id=w.org_id,
        application_id=app_id,
        items_to_request=[
            {"name": "Pay stub", "documentType": "PAYSTUB"},
            {"name": "Explain gap", "description": "employment gap in 2024"},
            {"description": "ignored"},
        ],
        target_party_id=submitted["party_id"],
        message="Need two more things",
        unlock_scopes=["income"],
        requested_by=w.user_id,
        now=now,
    )
    assert out["ok"] is True
    ir = out["info_request"]
    assert ir["status"] == "OPEN"
    assert ir["unlock_scopes"] == ["income"]
    assert [r["requirement_type"] for r in out["requirements"]] == ["DOCUMENT", "CUSTOM"]
    assert all(r["info_request_id"] == ir["id"] for r in out["requirements"])
    assert all(r["party_id"] == submitted["party_id"] for r in out["requirements"])
    assert out["requirements"][0]["metadata"]["infoRequestId"] == ir["id"]

    db.expire_all()
    assert db.get(LeaseApplication, app_id).status == "NEEDS_INFO"

    responded = respond_to_info_request(
        db,
        org_id=w.org_id,
        application_id=app_id,
        info_request_id=ir["id"],
        responded_by=submitted["party_id"],
        response_message="uploaded",
        now=now,
    )
    assert responded["ok"] is True
    assert responded["application_status"] == "IN_REVIEW"
    assert responded["info_request"]["status"] == "RESPONDED"

    again = respond_to_info_request(db, org_id=w.org_id, application_id=app_id, info_request_id=ir["id"])
    assert again == {"ok": False, "error_code": "INVALID_STATUS", "status": "RESPONDED"}
    assert [r["id"] for r in list_info_requests(db, org_id=w.org_id, application_id=app_id, status="RESPONDED")] == [
        ir["id"]
    ]


def test_application_stays_needs_info_while_requests_remain_open(db):
    w = make_world(db, config=OPEN_CONFIG)
    now = utcnow()
    app_id = submit_ready(db, w, now=now)["application_id"]

    first = create_info_request(db, org_id=w.org_id, application_id=app_id, items_to_request=[{"name": "a"}])
    second = create_info_request(db, org_id=w.org_id, application_id=app_id, items_to_request=[{"name": "b"}])
    assert second["ok"] is True

    out = respond_to_info_request(
        db, org_id=w.org_id, application_id=app_id, info_request_id=first["info_request"]["id"]
    )
    assert out["application_status"] is None
    db.expire_all()
    assert db.get(LeaseApplication, app_id).status == "NEEDS_INFO"
