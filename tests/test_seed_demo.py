from __future__ import annotations

from leasing_engine.cli.seed_demo import seed_demo
from leasing_engine.models import LeaseApplication, RefundPolicy, Unit, WorkflowConfig


def _seed(**kw):
    return seed_demo(
        org_slug="demo",
        org_name="Demo Property Management",
        user_email="leasing@demo.local",
        user_name="Leasing Admin",
        **kw,
    )


def test_seed_demo_is_idempotent(db):
    first = _seed()
    assert first.org_slug == "demo"
    assert len(first.unit_ids) == 3
    assert first.application_id is not None

    second = _seed()
    assert second.property_id == first.property_id
    assert second.unit_ids == first.unit_ids
    assert second.workflow_config_id == first.workflow_config_id
    assert second.application_id == first.application_id

    assert db.query(Unit).count() == 3
    assert db.query(WorkflowConfig).count() == 1
    assert db.query(RefundPolicy).count() == 1
    assert db.query(LeaseApplication).count() == 1


def test_seed_without_sample_application(db):
    out = _seed(create_sample_application=False)
    assert out.application_id is None
    assert db.query(LeaseApplication).count() == 0
