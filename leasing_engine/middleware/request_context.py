# leasing_engine/middleware/request_context.py
from __future__ import annotations

import re
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..config import settings

REQUEST_ID_HEADER = "X-Request-ID"

# /api/leasing/applications/{id}/... and /api/leasing/reservations/{id}/...
_APPLICATION_PATH = re.compile(r"/leasing/applications/(\d+)(?:/|$)")
_RESERVATION_PATH = re.compile(r"/leasing/reservations/(\d+)(?:/|$)")


@dataclass(frozen=True)
class RequestContext:
    request_id: str
    org_slug: Optional[str] = None
    application_id: Optional[int] = None
    reservation_id: Optional[int] = None

    def log_fields(self) -> dict[str, Any]:
        return {k: v for k, v in vars(self).items() if v is not None}


request_context_ctx: ContextVar[Optional[RequestContext]] = ContextVar("leasing_request_context", default=None)


def get_request_context() -> Optional[RequestContext]:
    return request_context_ctx.get()


def context_from_request(path: str, headers: Any) -> RequestContext:
    rid = headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    app_match = _APPLICATION_PATH.search(path or "")
    res_match = _RESERVATION_PATH.search(path or "")
    return RequestContext(
        request_id=rid,
        org_slug=(headers.get(settings.dev_header_org_slug) or "").strip() or None,
        application_id=int(app_match.group(1)) if app_match else None,
        reservation_id=int(res_match.group(1)) if res_match else None,
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Binds a RequestContext for the lifetime of the request.

    The request id is taken from X-Request-ID when the caller sends one and
    echoed back on the response. The org slug header and any application or
    reservation id in the path ride along so every log line written while
    serving the request (services included) carries them.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        ctx = context_from_request(request.url.path, request.headers)
        request.state.request_context = ctx
        token = request_context_ctx.set(ctx)
        try:
            resp = await call_next(request)
            resp.headers[REQUEST_ID_HEADER] = ctx.request_id
            return resp
        finally:
            request_context_ctx.reset(token)
