# leasing_engine/middleware/structured_logging.py
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..config import settings
from .request_context import RequestContext

log = logging.getLogger("leasing_engine.request")


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    Emits one structured log line per request with:
      request_id, org_slug, application_id, reservation_id, user_email,
      method, path, status_code, latency_ms

    Registered after RequestContextMiddleware (so it wraps it) and reads the
    context back from request.state.request_context.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        t0 = time.time()
        user_email = request.headers.get(settings.dev_header_user_email)

        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            latency_ms = int((time.time() - t0) * 1000)
            ctx: Optional[RequestContext] = getattr(request.state, "request_context", None)

            log.info(
                "http_request",
                extra={
                    **(ctx.log_fields() if ctx else {}),
                    "method": request.method,
                    "path": request.url.path,
                    "query": str(request.url.query) if request.url.query else "",
                    "status_code": status_code,
                    "latency_ms": latency_ms,
                    "user_email": user_email,
                },
            )
