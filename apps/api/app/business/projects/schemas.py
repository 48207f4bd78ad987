from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


StageErrorKind = Literal["validation", "confirmation_required", "not_found", "conflict", "store"]


class ProjectSnapshot(BaseModel):
    """Fields a stage may require before it can be entered."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    name: str | None = None
    description: str | None = None
    timeline: str | None = None
    design_files: str | None = None
    test_results: str | None = None
    deployment_url: str | None = None
    completion_date: date | None = None
    hold_reason: str | None = None


class ProjectCreate(BaseModel):
    owner_id: str | None = None
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    timeline: str | None = Field(default=None, max_length=255)
    design_files: str | None = None
    test_results: str | None = None
    deployment_url: str | None = Field(default=None, max_length=1024)
    completion_date: date | None = None
    hold_reason: str | None = None


class ProjectUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    timeline: str | None = Field(default=None, max_length=255)
    design_files: str | None = None
    test_results: str | None = None
    deployment_url: str | None = Field(default=None, max_length=1024)
    completion_date: date | None = None
    hold_reason: str | None = None
    row_version: int | None = None


class ProjectRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: str
    name: str | None
    description: str | None
    timeline: str | None
    design_files: str | None
    test_results: str | None
    deployment_url: str | None
    completion_date: date | None
    hold_reason: str | None
    current_stage: str
    row_version: int
    created_at: datetime
    updated_at: datetime


class StageRead(BaseModel):
    name: str
    order: int
    required_fields: list[str]
    next_stages: list[str]


class ValidateTransitionRequest(BaseModel):
    current_stage: str = Field(min_length=1)
    target_stage: str = Field(min_length=1)
    project: dict[str, Any] = Field(default_factory=dict)


class StageChangeRequest(BaseModel):
    target_stage: str = Field(min_length=1)
    reason: str | None = Field(default=None, max_length=2000)
    force_override: bool = False
    row_version: int | None = None


class TransitionResultRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_stage: str
    to_stage: str
    allowed: bool
    requires_confirmation: bool
    reason: str | None = None
    missing_fields: list[str] | None = None


class ExecutionResultRead(BaseModel):
    success: bool
    error: str | None = None
    error_kind: StageErrorKind | None = None
    transition: TransitionResultRead | None = None
    project: ProjectRead | None = None


class AvailableStagesRead(BaseModel):
    current_stage: str
    available_stages: list[str]


class StageProgressRead(BaseModel):
    current_stage: str
    progress: int


class StageChecklistRead(BaseModel):
    stage: str
    required_fields: list[str]


class CompletionRead(BaseModel):
    can_complete: bool
    missing_fields: list[str]


class AuditLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    actor_id: str | None
    action: str
    entity_type: str
    entity_id: str
    old_value: dict[str, Any] | None
    new_value: dict[str, Any] | None
    correlation_id: str | None
    created_at: datetime
