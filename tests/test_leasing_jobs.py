from __future__ import annotations

from datetime import timedelta

from factories import OPEN_CONFIG, make_world, start_draft, submit_ready, utcnow
from leasing_engine.models import (
    ApplicationNote,
    ApplicationParty,
    InfoRequest,
    JobRun,
    LeaseApplication,
    RequirementItem,
    UnitReservation,
)
from leasing_engine.services import leasing_jobs
from leasing_engine.services.applications import invite_party
from leasing_engine.services.leasing_jobs import (
    claim_job_run,
    expire_draft_applications,
    expire_submitted_applications,
    list_job_runs,
    mark_co_applicant_abandonment,
    run_leasing_jobs_once,
)
from leasing_engine.services.requirements import create_info_request


def test_claim_job_run_is_idempotent(db):
    now = utcnow()
    first = claim_job_run(org_id=None, job_key="SUBMITTED_TTL", idempotency_key="SUBMITTED_TTL:1", now=now)
    assert first is not None
    assert claim_job_run(org_id=None, job_key="SUBMITTED_TTL", idempotency_key="SUBMITTED_TTL:1", now=now) is None

    runs = list_job_runs(db, job_key="SUBMITTED_TTL")
    assert [r["id"] for r in runs] == [first]
    assert runs[0]["status"] == "STARTED"


def test_submitted_ttl_sweep_closes_and_releases(db):
    w = make_world(db)
    now = utcnow()
    out = submit_ready(db, w, now=now)
    app_id = out["application_id"]

    assert run_leasing_jobs_once(now + timedelta(days=29)).submitted_expired == 0

    summary = run_leasing_jobs_once(now + timedelta(days=31))
    assert summary.submitted_expired == 1
    assert summary.failed == 0

    db.expire_all()
    app = db.get(LeaseApplication, app_id)
    assert app.status == "CLOSED"
    assert app.closed_reason == "EXPIRED"
    res = db.get(UnitReservation, out["reservation"]["id"])
    assert res.status == "RELEASED"
    assert res.release_reason_code == "EXPIRED"

    assert run_leasing_jobs_once(now + timedelta(days=32)).submitted_expired == 0
    runs = list_job_runs(db, org_id=w.org_id, job_key="SUBMITTED_TTL")
    assert len(runs) == 1
    assert runs[0]["status"] == "SUCCESS"
    assert runs[0]["idempotency_key"] == f"SUBMITTED_TTL:{app_id}"


def test_disabled_automation_skips_candidates(db):
    w = make_world(db, config={"submit": {"ttlDays": 1}, "automation": {"enabled": False}})
    now = utcnow()
    app_id = submit_ready(db, w, now=now)["application_id"]

    summary = run_leasing_jobs_once(now + timedelta(days=2))
    assert summary.submitted_expired == 0
    assert db.query(JobRun).count() == 0

    db.expire_all()
    assert db.get(LeaseApplication, app_id).status == "SUBMITTED"

    # the maintenance sweep does not consult automation settings
    out = expire_submitted_applications(db, now=now + timedelta(days=2))
    assert out == {"ok": True, "expired": 1, "skipped": 0, "failed": 0}
    db.expire_all()
    assert db.get(LeaseApplication, app_id).closed_reason == "EXPIRED"

    runs = list_job_runs(db, org_id=w.org_id, job_key="SUBMITTED_TTL")
    assert [(r["idempotency_key"], r["status"]) for r in runs] == [(f"SUBMITTED_TTL:{app_id}", "SUCCESS")]
    assert expire_submitted_applications(db, now=now + timedelta(days=3))["expired"] == 0


def test_maintenance_sweep_skips_already_claimed_application(db):
    w = make_world(db)
    now = utcnow()
    app_id = submit_ready(db, w, now=now)["application_id"]
    claim_job_run(org_id=w.org_id, job_key="SUBMITTED_TTL", idempotency_key=f"SUBMITTED_TTL:{app_id}", now=now)

    out = expire_submitted_applications(db, now=now + timedelta(days=31))
    assert out["expired"] == 0
    assert out["skipped"] == 1
    db.expire_all()
    assert db.get(LeaseApplication, app_id).status == "SUBMITTED"


def test_screening_timeout_expires_and_rerequests(db):
    w = make_world(db, config=OPEN_CONFIG)
    now = utcnow()
    submitted = submit_ready(db, w, now=now)
    app_id = submitted["application_id"]
    created = create_info_request(
        db,
        org_id=w.org_id,
        application_id=app_id,
        items_to_request=[
            {"name": "Background check", "requirementType": "SCREENING", "dueInDays": 1, "metadata": {"provider": "x"}}
        ],
        target_party_id=submitted["party_id"],
        now=now,
    )
    req_id = created["requirements"][0]["id"]

    summary = run_leasing_jobs_once(now + timedelta(days=2))
    assert summary.screening_timeouts == 1

    db.expire_all()
    req = db.get(RequirementItem, req_id)
    assert req.status == "EXPIRED"
    assert '"timeout": true' in req.metadata_json
    assert '"provider": "x"' in req.metadata_json

    requests = db.query(InfoRequest).filter(InfoRequest.application_id == app_id).order_by(InfoRequest.id).all()
    assert len(requests) == 2
    assert requests[-1].message == "Screening timed out. Please resubmit screening details."
    fresh = db.query(RequirementItem).filter(RequirementItem.info_request_id == requests[-1].id).one()
    assert fresh.requirement_type == "SCREENING"
    assert fresh.status == "PENDING"
    assert fresh.party_id == submitted["party_id"]
    assert db.get(LeaseApplication, app_id).status == "NEEDS_INFO"

    assert run_leasing_jobs_once(now + timedelta(days=3)).screening_timeouts == 0


def test_failing_candidate_does_not_block_others(db, monkeypatch):
    w = make_world(db, config=OPEN_CONFIG)
    now = utcnow()
    broken = submit_ready(db, w, email="broken@t.local", now=now)["application_id"]
    healthy = submit_ready(db, w, email="healthy@t.local", unit_index=1, now=now)["application_id"]
    req_ids = {}
    for app_id in (broken, healthy):
        out = create_info_request(
            db,
            org_id=w.org_id,
            application_id=app_id,
            items_to_request=[{"name": "Background check", "requirementType": "SCREENING", "dueInDays": 1}],
            now=now,
        )
        req_ids[app_id] = out["requirements"][0]["id"]

    def flaky_info_request(db, *, application_id, **kw):
        if application_id == broken:
            raise RuntimeError("screening vendor unavailable")
        return create_info_request(db, application_id=application_id, **kw)

    monkeypatch.setattr(leasing_jobs, "create_info_request", flaky_info_request)

    summary = run_leasing_jobs_once(now + timedelta(days=2))
    assert summary.screening_timeouts == 1
    assert summary.failed == 1
    assert summary.errors == []

    runs = {r["idempotency_key"]: r for r in list_job_runs(db, job_key="SCREENING_TIMEOUT")}
    failed = runs[f"SCREENING_TIMEOUT:{req_ids[broken]}"]
    assert failed["status"] == "FAILED"
    assert "screening vendor unavailable" in failed["error"]
    assert runs[f"SCREENING_TIMEOUT:{req_ids[healthy]}"]["status"] == "SUCCESS"

    db.expire_all()
    assert db.get(RequirementItem, req_ids[broken]).status == "PENDING"
    assert db.get(RequirementItem, req_ids[healthy]).status == "EXPIRED"


def test_doc_expiry_rerequests_document(db):
    w = make_world(db, config=OPEN_CONFIG)
    now = utcnow()
    app_id = submit_ready(db, w, now=now)["application_id"]
    create_info_request(
        db,
        org_id=w.org_id,
        application_id=app_id,
        items_to_request=[{"name": "Pay stub", "documentType": "PAYSTUB", "dueInDays": 1}],
        now=now,
    )

    assert run_leasing_jobs_once(now + timedelta(days=2)).doc_expiry == 1
    db.expire_all()
    fresh = (
        db.query(RequirementItem)
        .filter(RequirementItem.application_id == app_id, RequirementItem.status == "PENDING")
        .one()
    )
    assert '"documentType": "PAYSTUB"' in fresh.metadata_json


def test_co_applicant_reminders_follow_cadence_then_max(db):
    w = make_world(db)
    now = utcnow()
    app_id = submit_ready(db, w, now=now)["application_id"]
    co = invite_party(db, org_id=w.org_id, application_id=app_id, role="CO_APPLICANT", email="co@t.local", now=now)
    party_id = co["party"]["id"]

    assert run_leasing_jobs_once(now).co_applicant_reminders == 1
    assert run_leasing_jobs_once(now + timedelta(days=1)).co_applicant_reminders == 0
    assert run_leasing_jobs_once(now + timedelta(days=2)).co_applicant_reminders == 1
    assert run_leasing_jobs_once(now + timedelta(days=4)).co_applicant_reminders == 1

    db.expire_all()
    party = db.get(ApplicationParty, party_id)
    assert party.reminder_count == 3
    assert party.last_reminder_at == now + timedelta(days=4)
    assert db.query(ApplicationNote).filter(ApplicationNote.application_id == app_id).count() == 3

    maxed = run_leasing_jobs_once(now + timedelta(days=6))
    assert maxed.co_applicant_reminders == 0
    assert maxed.reminders_maxed == 1

    again = run_leasing_jobs_once(now + timedelta(days=8))
    assert again.reminders_maxed == 0
    assert again.skipped == 1

    keys = sorted(r["idempotency_key"] for r in list_job_runs(db, org_id=w.org_id))
    assert keys == sorted(
        [f"CO_APPLICANT_REMINDER:{party_id}:{n}" for n in (1, 2, 3)] + [f"CO_APPLICANT_REMINDER_MAXED:{party_id}"]
    )


def test_co_applicant_abandonment(db):
    w = make_world(db)
    now = utcnow()
    app_id = submit_ready(db, w, now=now)["application_id"]
    co = invite_party(db, org_id=w.org_id, application_id=app_id, role="CO_APPLICANT", email="co@t.local", now=now)

    assert mark_co_applicant_abandonment(db, now=now + timedelta(days=5))["abandoned"] == 0
    assert mark_co_applicant_abandonment(db, now=now + timedelta(days=8))["abandoned"] == 1

    db.expire_all()
    party = db.get(ApplicationParty, co["party"]["id"])
    assert party.status == "LOCKED"
    assert party.abandoned_reason_code == "INACTIVITY"
    assert db.get(LeaseApplication, app_id).status == "NEEDS_INFO"

    assert mark_co_applicant_abandonment(db, now=now + timedelta(days=9))["abandoned"] == 0


def test_abandonment_window_from_config(db):
    w = make_world(db, config={**OPEN_CONFIG, "coApplicantAbandonment": {"inactivityDays": 2}})
    now = utcnow()
    app_id = start_draft(db, w, now=now)["application"]["id"]
    invite_party(db, org_id=w.org_id, application_id=app_id, role="CO_APPLICANT", email="co@t.local", now=now)

    assert mark_co_applicant_abandonment(db, now=now + timedelta(days=3))["abandoned"] == 1
    db.expire_all()
    # drafts keep their status
    assert db.get(LeaseApplication, app_id).status == "DRAFT"


def test_expire_draft_applications(db):
    w = make_world(db)
    now = utcnow()
    old = start_draft(db, w, email="old@t.local", now=now - timedelta(days=40))["application"]["id"]
    young = start_draft(db, w, email="young@t.local", now=now - timedelta(days=3))["application"]["id"]

    assert expire_draft_applications(db, now=now)["expired"] == 1
    db.expire_all()
    assert db.get(LeaseApplication, old).closed_reason == "DRAFT_EXPIRED"
    assert db.get(LeaseApplication, young).status == "DRAFT"

    assert expire_draft_applications(db, ttl_days=2, now=now)["expired"] == 1
