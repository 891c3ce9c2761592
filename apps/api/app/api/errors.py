from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from fastapi.responses import JSONResponse
from starlette.requests import Request

from app.context import get_correlation_id
from app.core.errors import CRMError


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=asdict(payload))


def crm_error_response(request: Request, exc: CRMError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


async def crm_error_handler(request: Request, exc: CRMError) -> JSONResponse:
    """Envelope for failures raised from dependencies, before a route body runs."""

    return crm_error_response(request, exc)
