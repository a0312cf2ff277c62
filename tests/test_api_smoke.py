from __future__ import annotations

from fastapi.testclient import TestClient

from factories import make_world
from leasing_engine.main import create_app


def _client():
    return TestClient(create_app())


def _headers(email="staff@api-org.local"):
    return {"X-Org-Slug": "api-org", "X-User-Email": email}


def _start_and_complete(client, w, email):
    r = client.post(
        "/api/leasing/applications",
        json={"property_id": w.property_id, "unit_id": w.unit_ids[0], "primary": {"email": email}},
        headers=_headers(),
    )
    assert r.status_code == 200
    body = r.json()
    app_id = body["application"]["id"]
    party_id = body["party"]["id"]
    r = client.post(f"/api/leasing/applications/{app_id}/parties/{party_id}/complete", headers=_headers())
    assert r.status_code == 200
    return app_id, party_id


def test_health():
    r = _client().get("/api/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.json()["database"] == "ok"


def test_application_flow_over_http(db):
    w = make_world(db, slug="api-org")
    client = _client()

    app_id, party_id = _start_and_complete(client, w, "first@t.local")
    r = client.post(
        f"/api/leasing/applications/{app_id}/submit",
        json={"consent": {"party_id": party_id, "signature": "First Applicant"}},
        headers=_headers(),
    )
    assert r.status_code == 200
    assert r.json()["application"]["status"] == "SUBMITTED"
    assert r.json()["reservation"]["kind"] == "SCREENING_LOCK"

    other_id, other_party = _start_and_complete(client, w, "second@t.local")
    r = client.post(
        f"/api/leasing/applications/{other_id}/submit",
        json={"consent": {"party_id": other_party, "signature": "Second Applicant"}},
        headers=_headers(),
    )
    assert r.status_code == 409
    assert r.json()["error_code"] == "RESERVATION_CONFLICT"
    assert r.json()["holder_application_id"] == app_id

    r = client.get(f"/api/leasing/applications/{app_id}", headers=_headers())
    assert r.status_code == 200
    assert r.json()["application"]["id"] == app_id
    assert [e["event_type"] for e in r.json()["audit_events"]][0] == "APPLICATION_VIEWED"

    r = client.get("/api/leasing/queue", headers=_headers())
    assert r.status_code == 200
    assert [i["application_id"] for i in r.json()["items"]] == [app_id]

    assert client.get("/api/leasing/applications/999999", headers=_headers()).status_code == 404


def test_auth_headers_required(db):
    make_world(db, slug="api-org")
    client = _client()
    assert client.get("/api/leasing/queue").status_code == 401
    assert client.get("/api/leasing/queue", headers={"X-Org-Slug": "api-org"}).status_code == 401

    # dev mode provisions unknown members
    r = client.get("/api/leasing/queue", headers=_headers(email="new.person@api-org.local"))
    assert r.status_code == 200


def test_invalid_payload_is_rejected(db):
    w = make_world(db, slug="api-org")
    r = _client().post(
        "/api/leasing/applications",
        json={"property_id": w.property_id, "application_type": "GROUP", "primary": {"email": "x@t.local"}},
        headers=_headers(),
    )
    assert r.status_code == 422
