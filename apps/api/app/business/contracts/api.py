from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import http_error_response
from app.business.contracts.schemas import (
    BatchResultRead,
    ContractCreate,
    ContractRead,
    ExpirationAlertRead,
    RenewalStatsRead,
    RenewRequest,
    TerminateRequest,
)
from app.business.contracts.service import contract_service
from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db
from app.core.rbac import require_permission


router = APIRouter(prefix="/api/contracts", tags=["contracts"])


@router.post("", response_model=ContractRead, status_code=status.HTTP_201_CREATED)
def create_contract(
    request: Request,
    payload: ContractCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ContractRead | JSONResponse:
    try:
        require_permission(user, "contracts.manage")
        return contract_service.create_contract(db, payload)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_create_failed")


@router.get("/expiring", response_model=list[ContractRead])
def list_expiring_contracts(
    request: Request,
    days_ahead: int | None = Query(default=None, ge=1, le=3650),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[ContractRead] | JSONResponse:
    try:
        require_permission(user, "contracts.read")
        return contract_service.get_expiring_contracts(db, days_ahead)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_expiring_failed")


@router.get("/expiration-alerts", response_model=list[ExpirationAlertRead])
def list_expiration_alerts(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[ExpirationAlertRead] | JSONResponse:
    try:
        require_permission(user, "contracts.read")
        return contract_service.get_expiration_alerts(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_alerts_failed")


@router.post("/expiration-notifications", response_model=BatchResultRead)
def send_expiration_notifications(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> BatchResultRead | JSONResponse:
    try:
        require_permission(user, "contracts.manage")
        return contract_service.send_expiration_notifications(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_notifications_failed")


@router.post("/auto-renewals", response_model=BatchResultRead)
def process_auto_renewals(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> BatchResultRead | JSONResponse:
    try:
        require_permission(user, "contracts.manage")
        return contract_service.process_auto_renewals(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_auto_renewals_failed")


@router.get("/renewal-stats", response_model=RenewalStatsRead)
def read_renewal_stats(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> RenewalStatsRead | JSONResponse:
    try:
        require_permission(user, "contracts.read")
        return contract_service.get_renewal_stats(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_renewal_stats_failed")


@router.get("/{contract_id}", response_model=ContractRead)
def get_contract(
    request: Request,
    contract_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ContractRead | JSONResponse:
    try:
        require_permission(user, "contracts.read")
        return contract_service.get_contract(db, contract_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_read_failed")


@router.post("/{contract_id}/sign", response_model=ContractRead)
def sign_contract(
    request: Request,
    contract_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ContractRead | JSONResponse:
    try:
        require_permission(user, "contracts.manage")
        return contract_service.sign_contract(db, contract_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_sign_failed")


@router.post("/{contract_id}/renew", response_model=ContractRead)
def renew_contract(
    request: Request,
    contract_id: uuid.UUID,
    payload: RenewRequest | None = None,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ContractRead | JSONResponse:
    try:
        require_permission(user, "contracts.manage")
        return contract_service.renew_contract(db, contract_id, payload.new_end_date if payload is not None else None)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_renew_failed")


@router.post("/{contract_id}/terminate", response_model=ContractRead)
def terminate_contract(
    request: Request,
    contract_id: uuid.UUID,
    payload: TerminateRequest,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ContractRead | JSONResponse:
    try:
        require_permission(user, "contracts.manage")
        return contract_service.terminate_contract(db, contract_id, payload.reason)
    except HTTPException as exc:
        return http_error_response(request, exc, "contract_terminate_failed")
