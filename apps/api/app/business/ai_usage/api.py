from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import http_error_response
from app.business.ai_usage.schemas import (
    CanUseRead,
    QuotaLimitsUpdate,
    QuotaRead,
    TrackUsageRead,
    UsageCreate,
    UsageStatsRead,
)
from app.business.ai_usage.service import ai_usage_service
from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db
from app.core.rbac import require_permission


router = APIRouter(prefix="/api/ai", tags=["ai.usage"])


def _resolve_user(user: AuthUser, requested_user_id: str | None) -> str:
    if requested_user_id is None or requested_user_id == user.sub:
        return user.sub
    require_permission(user, "ai.quota.manage")
    return requested_user_id


@router.post("/usage", response_model=TrackUsageRead)
def track_usage(
    request: Request,
    payload: UsageCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> TrackUsageRead | JSONResponse:
    try:
        require_permission(user, "ai.usage.write")
        user_id = _resolve_user(user, payload.user_id)
        return ai_usage_service.track_usage(db, user_id, payload.service, payload.operation, payload.tokens_used, payload.cost)
    except HTTPException as exc:
        return http_error_response(request, exc, "ai_usage_track_failed")


@router.get("/usage/stats", response_model=UsageStatsRead)
def read_usage_stats(
    request: Request,
    user_id: str | None = Query(default=None),
    days: int = Query(default=30, ge=1, le=366),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> UsageStatsRead | JSONResponse:
    try:
        require_permission(user, "ai.usage.read")
        return ai_usage_service.get_usage_stats(db, _resolve_user(user, user_id), days)
    except HTTPException as exc:
        return http_error_response(request, exc, "ai_usage_stats_failed")


@router.get("/quota", response_model=QuotaRead)
def read_quota(
    request: Request,
    user_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> QuotaRead | JSONResponse:
    try:
        require_permission(user, "ai.usage.read")
        return ai_usage_service.get_quota(db, _resolve_user(user, user_id))
    except HTTPException as exc:
        return http_error_response(request, exc, "ai_quota_read_failed")


@router.get("/quota/check", response_model=CanUseRead)
def check_quota(
    request: Request,
    estimated_tokens: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> CanUseRead | JSONResponse:
    try:
        require_permission(user, "ai.usage.read")
        return ai_usage_service.can_use_ai(db, user.sub, estimated_tokens)
    except HTTPException as exc:
        return http_error_response(request, exc, "ai_quota_check_failed")


@router.get("/quotas/approaching", response_model=list[QuotaRead])
def list_users_approaching_limits(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[QuotaRead] | JSONResponse:
    try:
        require_permission(user, "ai.quota.manage")
        return ai_usage_service.get_users_approaching_limits(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "ai_quota_approaching_failed")


@router.put("/quotas/{user_id}", response_model=QuotaRead)
def update_quota_limits(
    request: Request,
    user_id: str,
    payload: QuotaLimitsUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> QuotaRead | JSONResponse:
    try:
        require_permission(user, "ai.quota.manage")
        return ai_usage_service.update_quota_limits(db, user_id, payload)
    except HTTPException as exc:
        return http_error_response(request, exc, "ai_quota_update_failed")
