# leasing_engine/logging_config.py
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .middleware.request_context import get_request_context

STRUCTURED_EXTRAS = (
    "org_id",
    "user_id",
    "application_id",
    "unit_id",
    "reservation_id",
    "job_key",
    "run_id",
    "action_key",
    "error_code",
    "method",
    "path",
    "query",
    "status_code",
    "latency_ms",
    "org_slug",
    "user_email",
)


class JsonFormatter(logging.Formatter):
    """
    Minimal JSON formatter.
    Includes the request context (request_id, org_slug, application_id,
    reservation_id) when serving a request, plus level, message, logger,
    timestamp, exception and any structured extras.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # request-scoped fields first; explicit extras on the record win
        ctx = get_request_context()
        if ctx is not None:
            payload.update(ctx.log_fields())
        rid = getattr(record, "request_id", None)
        if rid:
            payload["request_id"] = rid

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        # Optional structured extras (only if set on record)
        for k in STRUCTURED_EXTRAS:
            if hasattr(record, k):
                payload[k] = getattr(record, k)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging() -> None:
    level = (os.getenv("LOG_LEVEL") or "INFO").upper()

    root = logging.getLogger()
    root.setLevel(level)

    # Clear existing handlers (important for uvicorn reload)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())

    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel((os.getenv("SQL_LOG_LEVEL") or "WARNING").upper())
    logging.getLogger("celery").setLevel((os.getenv("CELERY_LOG_LEVEL") or level).upper())
