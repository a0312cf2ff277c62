from __future__ import annotations

from datetime import timedelta

from factories import OPEN_CONFIG, make_world, start_draft, submit_ready, utcnow
from leasing_engine.services.queue import (
    ApplicationQueue,
    compute_next_action,
    compute_sla,
    list_filter_options,
)
from leasing_engine.services.requirements import create_info_request


def _seed(db, w, now):
    ids = {}
    ids["standard"] = submit_ready(db, w, email="std@t.local", priority="STANDARD", now=now)["application_id"]
    ids["emergency"] = submit_ready(
        db, w, email="emer@t.local", priority="EMERGENCY", unit_index=1, now=now + timedelta(minutes=5)
    )["application_id"]
    ids["priority"] = submit_ready(
        db, w, email="prio@t.local", priority="PRIORITY", unit_index=2, now=now + timedelta(minutes=1)
    )["application_id"]
    ids["draft"] = start_draft(db, w, email="draft@t.local", now=now)["application"]["id"]
    return ids


def test_priority_sla_sort_and_drafts_excluded(db):
    w = make_world(db, config=OPEN_CONFIG)
    now = utcnow()
    ids = _seed(db, w, now)

    out = ApplicationQueue().list(db, org_id=w.org_id, now=now + timedelta(hours=1))
    assert out["ok"] is True
    assert out["total"] == 3
    assert [i["application_id"] for i in out["items"]] == [ids["emergency"], ids["priority"], ids["standard"]]
    assert ids["draft"] not in [i["application_id"] for i in out["items"]]

    item = out["items"][-1]
    assert item["primary_applicant"]["email"] == "std@t.local"
    assert item["primary_applicant"]["name"] == "Pat std"
    assert item["property"]["name"] == "Test Apartments"
    assert item["unit"]["type"] == "STUDIO"
    assert item["gates"]["payment"] == "BLOCKED"
    assert item["next_action"]["key"] == "COLLECT_PAYMENT"
    assert item["sla"]["breached"] is False


def test_facets_follow_filters(db):
    w = make_world(db, config=OPEN_CONFIG)
    now = utcnow()
    _seed(db, w, now)

    out = ApplicationQueue().list(db, org_id=w.org_id, now=now)
    facets = out["facets"]
    assert facets["by_status"] == {"SUBMITTED": 3}
    assert facets["by_priority"] == {"STANDARD": 1, "PRIORITY": 1, "EMERGENCY": 1}
    assert facets["by_unit_type"] == {"STUDIO": 1, "ONE_BED": 1, "TWO_BED": 1}
    assert facets["by_property"] == [{"property_id": w.property_id, "name": "Test Apartments", "count": 3}]

    filtered = ApplicationQueue().list(db, org_id=w.org_id, unit_types=["TWO_BED"], now=now)
    assert filtered["total"] == 1
    assert filtered["facets"]["by_priority"] == {"PRIORITY": 1}

    drafts = ApplicationQueue().list(db, org_id=w.org_id, statuses=["DRAFT"], now=now)
    assert drafts["total"] == 1


def test_search_and_paging(db):
    w = make_world(db, config=OPEN_CONFIG)
    now = utcnow()
    ids = _seed(db, w, now)
    queue = ApplicationQueue()

    by_email = queue.list(db, org_id=w.org_id, q="EMER@", now=now)
    assert [i["application_id"] for i in by_email["items"]] == [ids["emergency"]]

    by_unit = queue.list(db, org_id=w.org_id, q="201", now=now)
    assert [i["application_id"] for i in by_unit["items"]] == [ids["priority"]]

    page = queue.list(db, org_id=w.org_id, page=2, page_size=2, now=now)
    assert page["total"] == 3
    assert [i["application_id"] for i in page["items"]] == [ids["standard"]]


def test_missing_docs_flag(db):
    w = make_world(db, config=OPEN_CONFIG)
    now = utcnow()
    ids = _seed(db, w, now)
    create_info_request(
        db,
        org_id=w.org_id,
        application_id=ids["standard"],
        items_to_request=[{"name": "Pay stub", "documentType": "PAYSTUB"}],
        now=now,
    )

    out = ApplicationQueue().list(db, org_id=w.org_id, flags={"missing_docs": True}, now=now)
    assert [i["application_id"] for i in out["items"]] == [ids["standard"]]
    item = out["items"][0]
    assert item["gates"]["docs"] == "BLOCKED"
    assert item["next_action"]["key"] == "WAITING_ON_APPLICANT"
    assert "MISSING_DOCS" in item["next_action"]["blocking_reason_codes"]


def test_capabilities_cached_until_invalidated(db):
    queue = ApplicationQueue()
    first = queue.capabilities(db)
    assert first.property_name_column == "name"
    assert first.unit_type_column == "unit_type"
    assert queue.capabilities(db) is first

    queue.invalidate()
    assert queue.capabilities(db) is not first


def test_filter_options(db):
    w = make_world(db, config=OPEN_CONFIG)
    _seed(db, w, utcnow())
    out = list_filter_options(db, org_id=w.org_id, property_id=w.property_id)
    assert out["properties"] == [{"property_id": w.property_id, "name": "Test Apartments", "site_code": "T-1"}]
    assert out["unit_types"] == ["ONE_BED", "STUDIO", "TWO_BED"]
    assert [u["unit_code"] for u in out["units"]] == ["101", "102", "201"]


def test_next_action_and_sla_helpers():
    gates = {"parties": "PASS", "docs": "BLOCKED", "payment": "BLOCKED"}
    assert compute_next_action("SUBMITTED", gates, [])["key"] == "COLLECT_DOCUMENTS"
    assert compute_next_action("IN_REVIEW", {}, [])["key"] == "REVIEW"
    assert compute_next_action("CLOSED", gates, [])["key"] == "NO_ACTION"

    now = utcnow()
    assert compute_sla(None, now) is None
    sla = compute_sla(now - timedelta(hours=30), now)
    assert sla["warning"] is True
    assert sla["breached"] is False
    assert compute_sla(now - timedelta(hours=49), now)["breached"] is True
