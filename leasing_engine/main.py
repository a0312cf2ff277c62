# leasing_engine/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .logging_config import configure_logging
from .middleware.request_context import RequestContextMiddleware
from .middleware.structured_logging import StructuredLoggingMiddleware
from .routers.applications import router as applications_router
from .routers.assistant import router as assistant_router
from .routers.decisions import router as decisions_router
from .routers.health import router as health_router
from .routers.jobs import router as jobs_router
from .routers.payments import router as payments_router
from .routers.queue import router as queue_router
from .routers.requirements import router as requirements_router
from .routers.reservations import router as reservations_router
from .services.queue import ApplicationQueue

log = logging.getLogger(__name__)

API_PREFIX = "/api"


def _cors_origins() -> list[str]:
    val = getattr(settings, "cors_allow_origins", ["*"])
    if isinstance(val, str):
        v = val.strip()
        return ["*"] if v == "*" else [x.strip() for x in v.split(",") if x.strip()]
    if isinstance(val, list) and val:
        return val
    return ["*"]


def _value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    # missing ids / invalid enums raised by services
    log.info("rejected request: %s", exc, extra={"path": request.url.path, "status_code": 400})
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def create_app() -> FastAPI:
    app = FastAPI(title="Leasing Engine", version=settings.app_version)

    # request context first so every log line carries it
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(StructuredLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ValueError, _value_error_handler)

    # one queue per app; it caches the schema capability descriptor
    app.state.queue = ApplicationQueue()

    app.include_router(health_router, prefix=API_PREFIX)

    # Intake + lifecycle
    app.include_router(applications_router, prefix=API_PREFIX)
    app.include_router(requirements_router, prefix=API_PREFIX)
    app.include_router(reservations_router, prefix=API_PREFIX)
    app.include_router(payments_router, prefix=API_PREFIX)

    # Review
    app.include_router(decisions_router, prefix=API_PREFIX)
    app.include_router(queue_router, prefix=API_PREFIX)
    app.include_router(assistant_router, prefix=API_PREFIX)

    # Automation
    app.include_router(jobs_router, prefix=API_PREFIX)
    return app


configure_logging()
app = create_app()
