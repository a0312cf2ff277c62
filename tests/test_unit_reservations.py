from __future__ import annotations

import threading
from datetime import timedelta

from factories import OPEN_CONFIG, make_world, start_draft, submit_ready, utcnow
from leasing_engine.db import SessionLocal
from leasing_engine.models import AuditEvent, LeaseApplication, UnitReservation
from leasing_engine.services.applications import complete_party, submit_application
from leasing_engine.services.reservations import (
    create_screening_lock,
    create_soft_hold,
    expire_reservations,
    list_reservations,
    release_reservation,
    upgrade_screening_lock_to_soft_hold,
)


def _drafts(db, w, n, *, unit_index=0):
    return [start_draft(db, w, email=f"r{i}@t.local", unit_index=unit_index)["application"]["id"] for i in range(n)]


def test_only_one_active_screening_lock_per_unit(db):
    w = make_world(db, config=OPEN_CONFIG)
    a, b = _drafts(db, w, 2)
    unit_id = w.unit_ids[0]

    first = create_screening_lock(db, org_id=w.org_id, application_id=a, unit_id=unit_id)
    assert first["ok"] is True
    assert first["reservation"]["kind"] == "SCREENING_LOCK"

    second = create_screening_lock(db, org_id=w.org_id, application_id=b, unit_id=unit_id)
    assert second["ok"] is False
    assert second["error_code"] == "RESERVATION_CONFLICT"
    assert second["holder_application_id"] == a
    assert second["reservation_id"] == first["reservation"]["id"]

    # another unit is unaffected
    other = create_screening_lock(db, org_id=w.org_id, application_id=b, unit_id=w.unit_ids[1])
    assert other["ok"] is True

    released = release_reservation(
        db, org_id=w.org_id, reservation_id=first["reservation"]["id"], release_reason_code="STAFF_RELEASE"
    )
    assert released["reservation"]["status"] == "RELEASED"
    assert released["reservation"]["release_reason_code"] == "STAFF_RELEASE"

    retry = create_screening_lock(db, org_id=w.org_id, application_id=b, unit_id=unit_id)
    assert retry["ok"] is True

    active = db.query(UnitReservation).filter(
        UnitReservation.unit_id == unit_id,
        UnitReservation.status == "ACTIVE",
        UnitReservation.kind == "SCREENING_LOCK",
    ).count()
    assert active == 1


def test_second_submit_under_lock_on_submit_conflicts(db):
    w = make_world(db)
    now = utcnow()
    first = submit_ready(db, w, email="one@t.local", now=now)
    assert first["ok"] is True

    second = submit_ready(db, w, email="two@t.local", now=now)
    assert second["ok"] is False
    assert second["error_code"] == "RESERVATION_CONFLICT"
    assert second["holder_application_id"] == first["application_id"]


def test_concurrent_submits_under_lock_on_submit_admit_exactly_one(db):
    w = make_world(db)
    now = utcnow()
    ready = []
    for email in ("left@t.local", "right@t.local"):
        started = start_draft(db, w, email=email, now=now)
        app_id, party_id = started["application"]["id"], started["party"]["id"]
        complete_party(db, org_id=w.org_id, application_id=app_id, party_id=party_id, now=now)
        ready.append((app_id, party_id))

    barrier = threading.Barrier(len(ready))
    results = {}

    def submit(app_id, party_id):
        session = SessionLocal()
        try:
            barrier.wait(5)
            results[app_id] = submit_application(
                session,
                org_id=w.org_id,
                application_id=app_id,
                consent={"party_id": party_id, "signature": "Pat Applicant"},
                now=now,
            )
        finally:
            session.close()

    threads = [threading.Thread(target=submit, args=pair) for pair in ready]
    for t in threads:
        t.start()
    for t in threads:
        t.join(30)

    assert len(results) == 2
    winners = [a for a, out in results.items() if out["ok"]]
    losers = [a for a, out in results.items() if not out["ok"]]
    assert len(winners) == 1
    assert len(losers) == 1

    won = results[winners[0]]
    lost = results[losers[0]]
    assert lost["error_code"] == "RESERVATION_CONFLICT"
    assert lost["holder_application_id"] == winners[0]
    assert lost["reservation_id"] == won["reservation"]["id"]
    assert lost["expires_at"] == won["reservation"]["expires_at"]

    db.expire_all()
    assert db.get(LeaseApplication, losers[0]).status == "DRAFT"
    active = db.query(UnitReservation).filter(
        UnitReservation.unit_id == w.unit_ids[0],
        UnitReservation.status == "ACTIVE",
        UnitReservation.kind == "SCREENING_LOCK",
    ).count()
    assert active == 1


def test_soft_hold_is_exclusive_against_other_applications(db):
    w = make_world(db, config=OPEN_CONFIG)
    a, b = _drafts(db, w, 2)
    unit_id = w.unit_ids[0]

    hold = create_soft_hold(db, org_id=w.org_id, application_id=a, unit_id=unit_id)
    assert hold["ok"] is True
    assert hold["reservation"]["kind"] == "SOFT_HOLD"

    conflict = create_soft_hold(db, org_id=w.org_id, application_id=b, unit_id=unit_id)
    assert conflict["ok"] is False
    assert conflict["error_code"] == "HOLD_CONFLICT"
    assert conflict["holder_application_id"] == a
    assert conflict["holder_kind"] == "SOFT_HOLD"

    # the holder may stack another hold on its own unit
    assert create_soft_hold(db, org_id=w.org_id, application_id=a, unit_id=unit_id)["ok"] is True


def test_upgrade_keeps_reservation_id(db):
    w = make_world(db, config=OPEN_CONFIG)
    (a,) = _drafts(db, w, 1)
    lock = create_screening_lock(db, org_id=w.org_id, application_id=a, unit_id=w.unit_ids[0])
    rid = lock["reservation"]["id"]

    upgraded = upgrade_screening_lock_to_soft_hold(db, org_id=w.org_id, reservation_id=rid)
    assert upgraded["ok"] is True
    assert upgraded["reservation"]["id"] == rid
    assert upgraded["reservation"]["kind"] == "SOFT_HOLD"

    again = upgrade_screening_lock_to_soft_hold(db, org_id=w.org_id, reservation_id=rid)
    assert again["error_code"] == "INVALID_KIND"
    assert upgrade_screening_lock_to_soft_hold(db, org_id=w.org_id, reservation_id=999)["error_code"] == "NOT_FOUND"


def test_upgrade_blocked_by_other_applications_hold(db):
    w = make_world(db, config=OPEN_CONFIG)
    a, b = _drafts(db, w, 2)
    unit_id = w.unit_ids[0]
    create_soft_hold(db, org_id=w.org_id, application_id=a, unit_id=unit_id)
    lock = create_screening_lock(db, org_id=w.org_id, application_id=b, unit_id=unit_id)

    out = upgrade_screening_lock_to_soft_hold(db, org_id=w.org_id, reservation_id=lock["reservation"]["id"])
    assert out["ok"] is False
    assert out["error_code"] == "HOLD_CONFLICT"
    assert out["holder_application_id"] == a

    db.expire_all()
    assert db.get(UnitReservation, lock["reservation"]["id"]).kind == "SCREENING_LOCK"


def test_expire_reservations_only_touches_past_due_active_rows(db):
    w = make_world(db, config=OPEN_CONFIG)
    a, b, c = _drafts(db, w, 3)
    now = utcnow()
    due = create_soft_hold(
        db, org_id=w.org_id, application_id=a, unit_id=w.unit_ids[0], expires_at=now - timedelta(minutes=1)
    )
    later = create_screening_lock(
        db, org_id=w.org_id, application_id=b, unit_id=w.unit_ids[1], expires_at=now + timedelta(days=1)
    )
    assert due["reservation"]["kind"] == "SOFT_HOLD"

    assert expire_reservations(db, now=now)["expired"] == 1
    assert expire_reservations(db, now=now)["expired"] == 0

    rows = {r["id"]: r for r in list_reservations(db, org_id=w.org_id)}
    assert rows[due["reservation"]["id"]]["status"] == "EXPIRED"
    assert rows[due["reservation"]["id"]]["release_reason_code"] == "EXPIRED"
    assert rows[later["reservation"]["id"]]["status"] == "ACTIVE"

    expired_events = db.query(AuditEvent).filter(AuditEvent.event_type == "RESERVATION_EXPIRED").count()
    assert expired_events == 1

    # the expired hold no longer blocks the unit
    assert create_soft_hold(db, org_id=w.org_id, application_id=c, unit_id=w.unit_ids[0])["ok"] is True


def test_release_requires_active_reservation(db):
    w = make_world(db, config=OPEN_CONFIG)
    (a,) = _drafts(db, w, 1)
    lock = create_screening_lock(db, org_id=w.org_id, application_id=a, unit_id=w.unit_ids[0])
    rid = lock["reservation"]["id"]

    assert release_reservation(db, org_id=w.org_id, reservation_id=rid, release_reason_code="X")["ok"] is True
    again = release_reservation(db, org_id=w.org_id, reservation_id=rid, release_reason_code="X")
    assert again == {"ok": False, "error_code": "NOT_ACTIVE", "status": "RELEASED"}
