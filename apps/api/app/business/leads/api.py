from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import http_error_response
from app.business.leads.schemas import (
    AssignmentRead,
    AutoAssignRequest,
    EscalationRead,
    LeadCreate,
    LeadRead,
    LeadStatus,
    RoutingStatsRead,
    SalesRepRead,
    SalesRepUpsert,
    SlaRead,
)
from app.business.leads.service import lead_assignment_service
from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db
from app.core.rbac import require_permission


router = APIRouter(prefix="/api/leads", tags=["leads"])


@router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    payload: LeadCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "leads.write")
        return lead_assignment_service.create_lead(db, payload)
    except HTTPException as exc:
        return http_error_response(request, exc, "lead_create_failed")


@router.get("", response_model=list[LeadRead])
def list_leads(
    request: Request,
    status_filter: LeadStatus | None = Query(default=None, alias="status"),
    assigned_to: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[LeadRead] | JSONResponse:
    try:
        require_permission(user, "leads.read")
        return lead_assignment_service.list_leads(db, status_filter=status_filter, assigned_to=assigned_to, limit=limit)
    except HTTPException as exc:
        return http_error_response(request, exc, "lead_list_failed")


@router.put("/sales-reps", response_model=SalesRepRead)
def upsert_sales_rep(
    request: Request,
    payload: SalesRepUpsert,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> SalesRepRead | JSONResponse:
    try:
        require_permission(user, "leads.write")
        return lead_assignment_service.upsert_sales_rep(db, payload)
    except HTTPException as exc:
        return http_error_response(request, exc, "sales_rep_upsert_failed")


@router.get("/sales-reps", response_model=list[SalesRepRead])
def list_sales_reps(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[SalesRepRead] | JSONResponse:
    try:
        require_permission(user, "leads.read")
        return lead_assignment_service.list_sales_reps(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "sales_rep_list_failed")


@router.get("/sla/violations", response_model=list[LeadRead])
def list_sla_violations(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[LeadRead] | JSONResponse:
    try:
        require_permission(user, "leads.read")
        return lead_assignment_service.get_sla_violations(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "lead_sla_violations_failed")


@router.post("/sla/escalations", response_model=EscalationRead)
def escalate_uncontacted_leads(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> EscalationRead | JSONResponse:
    try:
        require_permission(user, "leads.assign")
        return lead_assignment_service.escalate_uncontacted_leads(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "lead_escalation_failed")


@router.get("/routing-stats", response_model=RoutingStatsRead)
def read_routing_stats(
    request: Request,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> RoutingStatsRead | JSONResponse:
    try:
        require_permission(user, "leads.read")
        return lead_assignment_service.get_routing_stats(db)
    except HTTPException as exc:
        return http_error_response(request, exc, "lead_routing_stats_failed")


@router.post("/{lead_id}/auto-assign", response_model=AssignmentRead)
def auto_assign_lead(
    request: Request,
    lead_id: uuid.UUID,
    payload: AutoAssignRequest | None = None,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> AssignmentRead | JSONResponse:
    try:
        require_permission(user, "leads.assign")
        return lead_assignment_service.auto_assign_lead(db, lead_id, payload.strategy if payload is not None else None)
    except HTTPException as exc:
        return http_error_response(request, exc, "lead_auto_assign_failed")


@router.get("/{lead_id}/sla", response_model=SlaRead)
def read_lead_sla(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> SlaRead | JSONResponse:
    try:
        require_permission(user, "leads.read")
        return lead_assignment_service.track_sla(db, lead_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "lead_sla_failed")
