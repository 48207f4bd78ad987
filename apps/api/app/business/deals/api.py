from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import http_error_response
from app.business.deals.schemas import (
    AutoUpdateRead,
    DealCreate,
    DealCycleRead,
    DealRead,
    DealStageChange,
    ProbabilityFactorsIn,
    ProbabilityUpdateRead,
    SalesForecastRead,
    WinRateRead,
)
from app.business.deals.service import deal_service
from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db
from app.core.rbac import require_permission


router = APIRouter(prefix="/api/deals", tags=["deals"])


@router.post("", response_model=DealRead, status_code=status.HTTP_201_CREATED)
def create_deal(
    request: Request,
    payload: DealCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        require_permission(user, "deals.write")
        return deal_service.create_deal(db, payload)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_create_failed")


@router.get("/forecast", response_model=SalesForecastRead)
def read_sales_forecast(
    request: Request,
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> SalesForecastRead | JSONResponse:
    try:
        require_permission(user, "deals.read")
        return deal_service.get_sales_forecast(db, start, end)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_forecast_failed")


@router.get("/by-probability", response_model=list[DealRead])
def list_deals_by_probability(
    request: Request,
    minimum: Decimal = Query(default=Decimal("0"), ge=0, le=100, alias="min"),
    maximum: Decimal = Query(default=Decimal("100"), ge=0, le=100, alias="max"),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[DealRead] | JSONResponse:
    try:
        require_permission(user, "deals.read")
        return deal_service.get_deals_by_probability(db, minimum, maximum)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_probability_list_failed")


@router.get("/at-risk", response_model=list[DealRead])
def list_at_risk_deals(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[DealRead] | JSONResponse:
    try:
        require_permission(user, "deals.read")
        return deal_service.get_at_risk_deals(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_at_risk_failed")


@router.get("/hot", response_model=list[DealRead])
def list_hot_deals(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[DealRead] | JSONResponse:
    try:
        require_permission(user, "deals.read")
        return deal_service.get_hot_deals(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_hot_failed")


@router.get("/win-rate", response_model=WinRateRead)
def read_win_rate(
    request: Request,
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> WinRateRead | JSONResponse:
    try:
        require_permission(user, "deals.read")
        return deal_service.calculate_win_rate(db, start, end)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_win_rate_failed")


@router.get("/cycle", response_model=DealCycleRead)
def read_average_deal_cycle(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> DealCycleRead | JSONResponse:
    try:
        require_permission(user, "deals.read")
        return deal_service.get_average_deal_cycle(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_cycle_failed")


@router.post("/probabilities/refresh", response_model=AutoUpdateRead)
def refresh_probabilities(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> AutoUpdateRead | JSONResponse:
    try:
        require_permission(user, "deals.write")
        return deal_service.auto_update_probabilities(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_probability_refresh_failed")


@router.get("/{deal_id}", response_model=DealRead)
def get_deal(
    request: Request,
    deal_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        require_permission(user, "deals.read")
        return deal_service.get_deal(db, deal_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_read_failed")


@router.post("/{deal_id}/stage", response_model=DealRead)
def change_deal_stage(
    request: Request,
    deal_id: uuid.UUID,
    payload: DealStageChange,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        require_permission(user, "deals.write")
        return deal_service.change_stage(db, deal_id, payload)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_stage_change_failed")


@router.post("/{deal_id}/probability", response_model=ProbabilityUpdateRead)
def update_deal_probability(
    request: Request,
    deal_id: uuid.UUID,
    payload: ProbabilityFactorsIn,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ProbabilityUpdateRead | JSONResponse:
    try:
        require_permission(user, "deals.write")
        return deal_service.update_deal_probability(db, deal_id, payload)
    except HTTPException as exc:
        return http_error_response(request, exc, "deal_probability_update_failed")
