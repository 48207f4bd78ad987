from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from app.api.notifications import router as notifications_router
from app.business.ai_usage.api import router as ai_usage_router
from app.business.contracts.api import router as contracts_router
from app.business.deals.api import router as deals_router
from app.business.leads.api import router as leads_router
from app.business.projects.api import router as projects_router
from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.rbac import has_permission
from app.metrics import generate_metrics_payload, metrics_content_type

router = APIRouter()
router.include_router(projects_router)
router.include_router(leads_router)
router.include_router(deals_router)
router.include_router(contracts_router)
router.include_router(ai_usage_router)
router.include_router(notifications_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | list[str]]:
    return {
        "sub": user.sub,
        "roles": user.roles,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if not has_permission(user, "system.metrics.read"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
