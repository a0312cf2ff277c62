from __future__ import annotations

import json
import logging

from fastapi.testclient import TestClient

from leasing_engine.logging_config import JsonFormatter
from leasing_engine.main import create_app
from leasing_engine.middleware.request_context import (
    RequestContext,
    context_from_request,
    get_request_context,
    request_context_ctx,
)


def _record(msg="submit blocked", **extra):
    record = logging.LogRecord("leasing_engine.test", logging.INFO, __file__, 1, msg, None, None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def test_context_reads_ids_from_leasing_paths():
    headers = {"X-Org-Slug": "acme", "X-Request-ID": "req-1"}
    ctx = context_from_request("/api/leasing/applications/42/parties/7/complete", headers)
    assert ctx == RequestContext(request_id="req-1", org_slug="acme", application_id=42)

    ctx = context_from_request("/api/leasing/reservations/9/release", {})
    assert ctx.reservation_id == 9
    assert ctx.application_id is None
    assert ctx.org_slug is None
    assert ctx.request_id

    # non-numeric segments are not ids
    assert context_from_request("/api/leasing/applications/abc", {}).application_id is None
    assert context_from_request("/api/leasing/queue", {}).log_fields().keys() == {"request_id"}


def test_formatter_merges_bound_context():
    fmt = JsonFormatter()
    assert "application_id" not in json.loads(fmt.format(_record()))

    token = request_context_ctx.set(RequestContext(request_id="req-2", org_slug="acme", application_id=5))
    try:
        payload = json.loads(fmt.format(_record(error_code="UNIT_UNAVAILABLE")))
        assert payload["request_id"] == "req-2"
        assert payload["org_slug"] == "acme"
        assert payload["application_id"] == 5
        assert payload["error_code"] == "UNIT_UNAVAILABLE"

        # an explicit extra beats the request context
        assert json.loads(fmt.format(_record(application_id=6)))["application_id"] == 6
    finally:
        request_context_ctx.reset(token)
    assert get_request_context() is None


def test_request_id_is_echoed_or_generated():
    client = TestClient(create_app())
    r = client.get("/api/health", headers={"X-Request-ID": "abc-123"})
    assert r.headers["X-Request-ID"] == "abc-123"

    generated = client.get("/api/health").headers["X-Request-ID"]
    assert len(generated) == 36
