from __future__ import annotations

from datetime import datetime, timedelta
from types import SimpleNamespace

from factories import add_config, make_world, utcnow
from leasing_engine.services.config_resolver import (
    automation_policy,
    pick_effective_config,
    resolve_abandonment_days,
    resolve_effective_config,
    resolve_submit_settings,
    resolve_unit_intake,
)

T0 = datetime(2026, 1, 1)


def _cfg(id, *, property_id=None, jurisdiction_code=None, version=1, effective_at=T0):
    return SimpleNamespace(
        id=id,
        property_id=property_id,
        jurisdiction_code=jurisdiction_code,
        version=version,
        effective_at=effective_at,
    )


def test_property_scoped_config_wins_and_prefers_jurisdiction_match():
    configs = [
        _cfg(1),
        _cfg(2, property_id=7, version=5),
        _cfg(3, property_id=7, jurisdiction_code="MI-DETROIT", version=1),
    ]
    picked = pick_effective_config(configs, property_id=7, jurisdiction_code="MI-DETROIT")
    assert picked.id == 3

    picked = pick_effective_config(configs, property_id=7, jurisdiction_code="OH-TOLEDO")
    assert picked.id == 2


def test_org_default_beats_jurisdiction_default():
    configs = [_cfg(1, jurisdiction_code="MI-DETROIT", version=9), _cfg(2)]
    assert pick_effective_config(configs, property_id=7, jurisdiction_code="MI-DETROIT").id == 2

    only_jurisdiction = [_cfg(1, jurisdiction_code="MI-DETROIT")]
    assert pick_effective_config(only_jurisdiction, property_id=7, jurisdiction_code="MI-DETROIT").id == 1
    assert pick_effective_config(only_jurisdiction, property_id=7, jurisdiction_code=None) is None


def test_tie_break_version_then_effective_at_then_id():
    configs = [
        _cfg(4, version=2, effective_at=T0),
        _cfg(3, version=2, effective_at=T0 + timedelta(days=1)),
        _cfg(1, version=1, effective_at=T0 + timedelta(days=30)),
    ]
    assert pick_effective_config(configs, property_id=None, jurisdiction_code=None).id == 3

    same = [_cfg(9, version=2), _cfg(5, version=2)]
    assert pick_effective_config(same, property_id=None, jurisdiction_code=None).id == 5

    # ids compare as strings
    mixed = [_cfg(9, version=2), _cfg(10, version=2)]
    assert pick_effective_config(mixed, property_id=None, jurisdiction_code=None).id == 10


def test_other_property_configs_are_ignored():
    configs = [_cfg(1, property_id=99, version=10), _cfg(2)]
    assert pick_effective_config(configs, property_id=7, jurisdiction_code=None).id == 2


def test_resolve_effective_config_skips_future_and_expired(db):
    w = make_world(db)
    now = utcnow()

    future = add_config(db, org_id=w.org_id, config={"submit": {"ttlDays": 3}}, version=5,
                        effective_at=now + timedelta(days=1))
    expired = add_config(db, org_id=w.org_id, config={"submit": {"ttlDays": 4}}, version=4)
    expired.expired_at = now - timedelta(hours=1)
    db.commit()

    picked = resolve_effective_config(db, org_id=w.org_id, property_id=w.property_id, as_of=now)
    assert picked is not None
    assert picked.id == w.config_id
    assert picked.id not in (future.id, expired.id)

    scoped = add_config(db, org_id=w.org_id, property_id=w.property_id, config={}, version=1)
    picked = resolve_effective_config(db, org_id=w.org_id, property_id=w.property_id, as_of=now)
    assert picked.id == scoped.id


def test_submit_and_intake_defaults_and_clamping():
    s = resolve_submit_settings({})
    assert s.ttl_days == 30
    assert s.joint_required_co_applicants == 1

    s = resolve_submit_settings({"submit": {"ttlDays": 9999, "jointRequiredCoApplicants": "2.7"}})
    assert s.ttl_days == 365
    assert s.joint_required_co_applicants == 2

    intake = resolve_unit_intake({"unitIntake": {"mode": "CAP_N_SUBMITS", "capSubmits": 0}})
    assert intake.mode == "CAP_N_SUBMITS"
    assert intake.cap_submits == 1
    assert resolve_unit_intake(None).mode == "OPEN"


def test_automation_policy_defaults_and_overrides():
    d = automation_policy({})
    assert d.enabled is True
    assert d.max_reminders == 3
    assert d.sla_hours_by_priority["EMERGENCY"] == 12

    p = automation_policy(
        {"automation": {"enabled": False, "maxReminders": "5", "slaHoursByPriority": {"STANDARD": 72}}}
    )
    assert p.enabled is False
    assert p.max_reminders == 5.0
    assert p.sla_hours_by_priority["STANDARD"] == 72
    assert p.sla_hours_by_priority["PRIORITY"] == 24

    assert resolve_abandonment_days({"coApplicantAbandonment": {"inactivityDays": 3}}) == 3
    assert resolve_abandonment_days({}, fallback=11) == 11
