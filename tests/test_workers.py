from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from factories import make_world, start_draft, utcnow
from leasing_engine.workers.leasing_tasks import run_leasing_jobs, run_maintenance_sweeps
from leasing_engine.workers.leasing_worker import IntervalRunner


def test_overlapping_tick_is_skipped():
    entered = threading.Event()
    release = threading.Event()
    calls = []

    def slow():
        calls.append(1)
        entered.set()
        release.wait(5)
        return "done"

    runner = IntervalRunner(slow, interval_seconds=60)
    results = []
    t = threading.Thread(target=lambda: results.append(runner.tick()))
    t.start()
    assert entered.wait(5)

    assert runner.is_running is True
    assert runner.tick() is None

    release.set()
    t.join(5)
    assert results == ["done"]
    assert len(calls) == 1
    assert runner.is_running is False


def test_failed_tick_returns_none_and_releases_guard():
    def boom():
        raise RuntimeError("db down")

    runner = IntervalRunner(boom, interval_seconds=1)
    assert runner.tick() is None
    assert runner.is_running is False


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        IntervalRunner(lambda: None, interval_seconds=0)


def test_start_runs_immediately_and_stop_joins():
    ticked = threading.Event()
    runner = IntervalRunner(ticked.set, interval_seconds=0.05)
    assert runner.start() is runner
    assert runner.start() is runner
    assert ticked.wait(5)
    runner.stop(timeout=5)
    assert runner._thread is None


def test_celery_tasks_run_inline(db):
    w = make_world(db)
    start_draft(db, w, email="old@t.local", now=utcnow() - timedelta(days=400))

    out = run_maintenance_sweeps()
    assert out["ok"] is True
    assert set(out["sweeps"]) == {"reservations", "drafts", "submitted", "co_applicants", "documents"}
    assert out["sweeps"]["drafts"]["expired"] == 1

    tick = run_leasing_jobs()
    assert tick["ok"] is True
    assert tick["summary"]["errors"] == []
