from __future__ import annotations

import uuid
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import error_response, http_error_response
from app.business.projects.schemas import (
    AuditLogRead,
    AvailableStagesRead,
    CompletionRead,
    ExecutionResultRead,
    ProjectCreate,
    ProjectRead,
    ProjectUpdate,
    StageChangeRequest,
    StageChecklistRead,
    StageProgressRead,
    StageRead,
    TransitionResultRead,
    ValidateTransitionRequest,
)
from app.business.projects.service import (
    can_complete,
    get_available_stages,
    get_stage_checklist,
    get_stage_progress,
    list_stages,
    project_service,
    update_stage,
    validate_transition,
)
from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db
from app.core.rbac import require_permission


router = APIRouter(prefix="/api/projects", tags=["projects"])

STAGE_ERROR_STATUS = {
    "validation": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "confirmation_required": status.HTTP_409_CONFLICT,
    "conflict": status.HTTP_409_CONFLICT,
    "not_found": status.HTTP_404_NOT_FOUND,
    "store": status.HTTP_503_SERVICE_UNAVAILABLE,
}


@router.get("/stages", response_model=list[StageRead])
def read_stages(request: Request, user: AuthUser = Depends(get_current_user)) -> list[StageRead] | JSONResponse:
    try:
        require_permission(user, "projects.read")
        return list_stages()
    except HTTPException as exc:
        return http_error_response(request, exc, "project_stages_read_failed")


@router.post("/stages/validate", response_model=TransitionResultRead)
def validate_stage_transition(
    request: Request,
    payload: ValidateTransitionRequest,
    user: AuthUser = Depends(get_current_user),
) -> TransitionResultRead | JSONResponse:
    try:
        require_permission(user, "projects.read")
        result = validate_transition(payload.current_stage, payload.target_stage, payload.project)
        return TransitionResultRead.model_validate(result)
    except HTTPException as exc:
        return http_error_response(request, exc, "project_stage_validate_failed")


@router.get("/stages/{stage_name}/checklist", response_model=StageChecklistRead)
def read_stage_checklist(
    request: Request,
    stage_name: str,
    user: AuthUser = Depends(get_current_user),
) -> StageChecklistRead | JSONResponse:
    try:
        require_permission(user, "projects.read")
        return StageChecklistRead(stage=stage_name, required_fields=get_stage_checklist(stage_name))
    except HTTPException as exc:
        return http_error_response(request, exc, "project_stage_checklist_failed")


@router.post("", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
def create_project(
    request: Request,
    payload: ProjectCreate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ProjectRead | JSONResponse:
    try:
        require_permission(user, "projects.write")
        return project_service.create_project(db, user.sub, payload)
    except HTTPException as exc:
        return http_error_response(request, exc, "project_create_failed")


@router.get("", response_model=list[ProjectRead])
def list_projects(
    request: Request,
    owner_id: str | None = Query(default=None),
    stage: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[ProjectRead] | JSONResponse:
    try:
        require_permission(user, "projects.read")
        return project_service.list_projects(db, owner_id=owner_id, stage=stage, limit=limit)
    except HTTPException as exc:
        return http_error_response(request, exc, "project_list_failed")


@router.get("/{project_id}", response_model=ProjectRead)
def get_project(
    request: Request,
    project_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ProjectRead | JSONResponse:
    try:
        require_permission(user, "projects.read")
        return project_service.get_project(db, project_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "project_read_failed")


@router.patch("/{project_id}", response_model=ProjectRead)
def update_project(
    request: Request,
    project_id: uuid.UUID,
    payload: ProjectUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ProjectRead | JSONResponse:
    try:
        require_permission(user, "projects.write")
        return project_service.update_project(db, user.sub, project_id, payload)
    except HTTPException as exc:
        return http_error_response(request, exc, "project_update_failed")


@router.post("/{project_id}/stage", response_model=ExecutionResultRead)
def change_project_stage(
    request: Request,
    project_id: uuid.UUID,
    payload: StageChangeRequest,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> ExecutionResultRead | JSONResponse:
    try:
        require_permission(user, "projects.change_stage")
    except HTTPException as exc:
        return http_error_response(request, exc, "project_stage_update_failed")

    result = update_stage(
        db,
        project_id,
        payload.target_stage,
        user.sub,
        reason=payload.reason,
        force_override=payload.force_override,
        expected_row_version=payload.row_version,
    )
    transition = TransitionResultRead.model_validate(result.transition) if result.transition is not None else None
    if not result.success:
        return error_response(
            request,
            status_code=STAGE_ERROR_STATUS.get(result.error_kind or "", status.HTTP_400_BAD_REQUEST),
            code=f"project_stage_{result.error_kind}",
            message=result.error or "Stage change failed",
            details=asdict(result.transition) if result.transition is not None else None,
        )
    return ExecutionResultRead(success=True, transition=transition, project=result.project)


@router.get("/{project_id}/available-stages", response_model=AvailableStagesRead)
def read_available_stages(
    request: Request,
    project_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> AvailableStagesRead | JSONResponse:
    try:
        require_permission(user, "projects.read")
        project = project_service.get_project(db, project_id)
        return AvailableStagesRead(
            current_stage=project.current_stage,
            available_stages=get_available_stages(project.current_stage, project),
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "project_available_stages_failed")


@router.get("/{project_id}/progress", response_model=StageProgressRead)
def read_stage_progress(
    request: Request,
    project_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> StageProgressRead | JSONResponse:
    try:
        require_permission(user, "projects.read")
        project = project_service.get_project(db, project_id)
        return StageProgressRead(current_stage=project.current_stage, progress=min(get_stage_progress(project.current_stage), 100))
    except HTTPException as exc:
        return http_error_response(request, exc, "project_progress_failed")


@router.get("/{project_id}/completion", response_model=CompletionRead)
def read_completion(
    request: Request,
    project_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> CompletionRead | JSONResponse:
    try:
        require_permission(user, "projects.read")
        ready, missing = can_complete(project_service.get_project(db, project_id))
        return CompletionRead(can_complete=ready, missing_fields=missing)
    except HTTPException as exc:
        return http_error_response(request, exc, "project_completion_failed")


@router.get("/{project_id}/audit", response_model=list[AuditLogRead])
def read_project_audit(
    request: Request,
    project_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> list[AuditLogRead] | JSONResponse:
    try:
        require_permission(user, "projects.read")
        return project_service.list_audit(db, project_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "project_audit_read_failed")
