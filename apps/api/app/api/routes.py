from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from app.accounts.api import auth_router
from app.authz.api import roles_router
from app.core.auth import get_current_caller
from app.core.config import get_settings
from app.crm.api import customers_router, interactions_router, pipeline_router
from app.metrics import generate_metrics_payload, metrics_content_type
from app.platform.security.context import Caller

router = APIRouter()
router.include_router(auth_router)
router.include_router(roles_router)
router.include_router(pipeline_router)
router.include_router(customers_router)
router.include_router(interactions_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(caller: Caller = Depends(get_current_caller)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if not caller.is_super_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Platform administrators only")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
