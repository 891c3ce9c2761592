from __future__ import annotations

import logging
import time
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("app.request")


def _caller_fields(request: Request) -> dict[str, Any]:
    # Set by get_current_caller once the bearer token has been resolved.
    caller = getattr(request.state, "caller", None)
    if caller is None:
        return {}
    return {"user_id": caller.user_id, "organization_id": caller.organization_id, "role": caller.role}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One access-log line and one metrics sample per request."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        method = request.method
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - started
            path = resolve_http_path_label(request)
            observe_http_request(method=method, path=path, status=500, duration=duration)
            logger.error(
                "http.error",
                exc_info=True,
                extra={
                    "method": method,
                    "path": path,
                    "status_code": 500,
                    "duration_ms": round(duration * 1000, 2),
                    **_caller_fields(request),
                },
            )
            raise

        duration = time.perf_counter() - started
        # The route is only known once routing has run, so the label is resolved afterwards.
        path = resolve_http_path_label(request)
        observe_http_request(method=method, path=path, status=response.status_code, duration=duration)
        logger.info(
            "http.request",
            extra={
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": round(duration * 1000, 2),
                "client": request.client.host if request.client is not None else None,
                **_caller_fields(request),
            },
        )
        return response
