from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import events
from app.business.projects.models import Project, utcnow
from app.business.projects.repository import ProjectRepository, ProjectStore
from app.business.projects.schemas import (
    AuditLogRead,
    ProjectCreate,
    ProjectRead,
    ProjectUpdate,
    StageErrorKind,
    StageRead,
)
from app.business.projects.stages import StageGraph, get_stage_graph
from app.business.projects.validator import INVALID_STAGE_REASON, TransitionResult, TransitionValidator
from app.core.config import get_settings
from app.metrics import observe_stage_transition
from app.otel import operation_span
from app.services.audit import AuditLogger, audit_logger
from app.services.best_effort import BestEffortDispatcher, dispatcher
from app.services.notifications import Notifier, notifier


logger = logging.getLogger("app.projects")
STAGE_UPDATED_ACTION = "project_stage_updated"
PROJECT_ENTITY_TYPE = "project"


class _StrictAuditError(Exception):
    pass


@dataclass
class ExecutionResult:
    success: bool
    error: str | None = None
    error_kind: StageErrorKind | None = None
    transition: TransitionResult | None = None
    project: ProjectRead | None = None

    @property
    def outcome(self) -> str:
        if self.success:
            return "success"
        return self.error_kind or "failed"


def _failure(kind: StageErrorKind, error: str, transition: TransitionResult | None = None) -> ExecutionResult:
    return ExecutionResult(success=False, error=error, error_kind=kind, transition=transition)


@dataclass
class TransitionExecutor:
    """Validates a stage change, persists it and fans out its side effects.

    The stage write is the only hard step. The audit entry and the owner
    notification are dispatched after commit and never fail the call, unless
    ``audit_strict`` is set, in which case the audit entry is written in the same
    transaction as the stage change.
    """

    store: ProjectStore = field(default_factory=ProjectRepository)
    validator: TransitionValidator = field(default_factory=TransitionValidator)
    audit: AuditLogger = audit_logger
    notifier: Notifier = notifier
    side_effects: BestEffortDispatcher = dispatcher
    audit_strict: bool | None = None

    def execute(
        self,
        session: Session,
        project_id: uuid.UUID,
        target_stage: str,
        requested_by: str | None,
        reason: str | None = None,
        force_override: bool = False,
        expected_row_version: int | None = None,
    ) -> ExecutionResult:
        started = time.perf_counter()
        with operation_span(
            "projects.stage_update",
            project_id=str(project_id),
            to_stage=target_stage,
            forced=force_override,
        ) as span:
            result = self._execute(
                session,
                project_id,
                target_stage,
                requested_by,
                reason=reason,
                force_override=force_override,
                expected_row_version=expected_row_version,
            )
            span.set_attribute("outcome", result.outcome)

        duration = time.perf_counter() - started
        observe_stage_transition(result.outcome, duration)
        logger.info(
            "project.stage_update",
            extra={
                "project_id": str(project_id),
                "from_stage": result.transition.from_stage if result.transition is not None else None,
                "to_stage": target_stage,
                "outcome": result.outcome,
                "forced": force_override,
                "duration_ms": round(duration * 1000, 3),
            },
        )
        return result

    def _execute(
        self,
        session: Session,
        project_id: uuid.UUID,
        target_stage: str,
        requested_by: str | None,
        *,
        reason: str | None,
        force_override: bool,
        expected_row_version: int | None,
    ) -> ExecutionResult:
        try:
            project = self.store.get(session, project_id)
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("project.store_read_failed", extra={"project_id": str(project_id), "error": str(exc)[:500]})
            return _failure("store", "Project store unavailable")
        if project is None:
            return _failure("not_found", "Project not found")

        from_stage = project.current_stage
        transition = self.validator.validate(from_stage, target_stage, project)

        if transition.reason == INVALID_STAGE_REASON:
            return _failure("validation", INVALID_STAGE_REASON, transition)
        if not transition.allowed and not force_override:
            return _failure("validation", transition.reason or "Stage change not allowed", transition)
        if transition.requires_confirmation and not force_override:
            return _failure("confirmation_required", "Confirmation required for this stage change", transition)

        if from_stage == target_stage:
            return ExecutionResult(success=True, transition=transition, project=ProjectRead.model_validate(project))

        audit_new_value = {"stage": target_stage, "reason": reason, "forced": force_override}
        strict = self.audit_strict if self.audit_strict is not None else get_settings().audit_strict
        expected = expected_row_version if expected_row_version is not None else project.row_version
        before = ProjectRead.model_validate(project)
        try:
            if not self.store.update_stage(session, project.id, target_stage, expected):
                session.rollback()
                return _failure("conflict", "Stale project state, retry", transition)
            if strict:
                self._audit_in_transaction(session, project.id, requested_by, {"stage": from_stage}, audit_new_value)
            session.commit()
        except _StrictAuditError as exc:
            session.rollback()
            logger.exception("project.stage_audit_failed", extra={"project_id": str(project_id), "error": str(exc)[:500]})
            return _failure("store", "Failed to record audit entry", transition)
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("project.store_write_failed", extra={"project_id": str(project_id), "error": str(exc)[:500]})
            return _failure("store", "Failed to update project stage", transition)

        project_read = self._reload(session, project, before, target_stage, expected + 1)

        if not strict:
            self.side_effects.audit(
                session,
                STAGE_UPDATED_ACTION,
                PROJECT_ENTITY_TYPE,
                str(project_read.id),
                {"stage": from_stage},
                audit_new_value,
                actor_id=requested_by,
                via=self.audit,
            )
        self.side_effects.notify(
            session,
            project_read.owner_id,
            f'Your project "{project_read.name or project_read.id}" has moved from {from_stage} to {target_stage}.',
            "normal",
            via=self.notifier,
        )
        events.publish(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": "project.stage_changed",
                "occurred_at": utcnow().isoformat(),
                "actor_user_id": requested_by,
                "payload": {
                    "project_id": str(project_read.id),
                    "from_stage": from_stage,
                    "to_stage": target_stage,
                    "forced": force_override,
                    "row_version": project_read.row_version,
                },
            }
        )
        return ExecutionResult(success=True, transition=transition, project=project_read)

    def _reload(
        self,
        session: Session,
        project: Project,
        before: ProjectRead,
        target_stage: str,
        row_version: int,
    ) -> ProjectRead:
        # Runs after commit; the stage change stands even when the re-read fails.
        try:
            session.refresh(project)
            return ProjectRead.model_validate(project)
        except SQLAlchemyError as exc:
            session.rollback()
            logger.warning("project.reload_failed", extra={"project_id": str(before.id), "error": str(exc)[:500]})
            return before.model_copy(update={"current_stage": target_stage, "row_version": row_version})

    def _audit_in_transaction(
        self,
        session: Session,
        project_id: uuid.UUID,
        requested_by: str | None,
        old_value: dict[str, Any],
        new_value: dict[str, Any],
    ) -> None:
        try:
            self.audit.log_action(
                session,
                STAGE_UPDATED_ACTION,
                PROJECT_ENTITY_TYPE,
                str(project_id),
                old_value,
                new_value,
                actor_id=requested_by,
            )
        except Exception as exc:
            raise _StrictAuditError(str(exc)) from exc


@dataclass(slots=True)
class ProjectService:
    repository: ProjectRepository = ProjectRepository()

    def create_project(self, session: Session, actor_id: str, payload: ProjectCreate) -> ProjectRead:
        data = payload.model_dump(mode="python")
        data["owner_id"] = data.get("owner_id") or actor_id
        project = Project(**data, current_stage=get_stage_graph().entry_stage)
        session.add(project)
        session.flush()
        audit_logger.log_action(
            session,
            "project_created",
            PROJECT_ENTITY_TYPE,
            str(project.id),
            None,
            {"stage": project.current_stage, "name": project.name},
            actor_id=actor_id,
        )
        session.commit()
        session.refresh(project)
        events.publish(
            {
                "event_id": str(uuid.uuid4()),
                "event_type": "project.created",
                "occurred_at": utcnow().isoformat(),
                "actor_user_id": actor_id,
                "payload": {"project_id": str(project.id), "stage": project.current_stage},
            }
        )
        return ProjectRead.model_validate(project)

    def get_project(self, session: Session, project_id: uuid.UUID) -> ProjectRead:
        return ProjectRead.model_validate(self._get(session, project_id))

    def list_projects(
        self,
        session: Session,
        *,
        owner_id: str | None = None,
        stage: str | None = None,
        limit: int = 100,
    ) -> list[ProjectRead]:
        projects = self.repository.list(session, owner_id=owner_id, stage=stage, limit=limit)
        return [ProjectRead.model_validate(project) for project in projects]

    def update_project(self, session: Session, actor_id: str, project_id: uuid.UUID, payload: ProjectUpdate) -> ProjectRead:
        project = self._get(session, project_id)
        changes: dict[str, Any] = payload.model_dump(exclude_unset=True, exclude={"row_version"})
        if not changes:
            return ProjectRead.model_validate(project)

        before = {key: _jsonable(getattr(project, key)) for key in changes}
        expected = payload.row_version if payload.row_version is not None else project.row_version
        result = session.execute(
            update(Project)
            .where(Project.id == project_id, Project.row_version == expected)
            .values(**changes, updated_at=utcnow(), row_version=Project.row_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict")

        audit_logger.log_action(
            session,
            "project_updated",
            PROJECT_ENTITY_TYPE,
            str(project_id),
            before,
            {key: _jsonable(value) for key, value in changes.items()},
            actor_id=actor_id,
        )
        session.commit()
        session.refresh(project)
        return ProjectRead.model_validate(project)

    def list_audit(self, session: Session, project_id: uuid.UUID) -> list[AuditLogRead]:
        self._get(session, project_id)
        entries = audit_logger.list_for_entity(session, PROJECT_ENTITY_TYPE, str(project_id))
        return [AuditLogRead.model_validate(entry) for entry in entries]

    def _get(self, session: Session, project_id: uuid.UUID) -> Project:
        project = self.repository.get(session, project_id)
        if project is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
        return project


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def list_stages(graph: StageGraph | None = None) -> list[StageRead]:
    graph = graph or get_stage_graph()
    return [
        StageRead(
            name=stage.name,
            order=stage.order,
            required_fields=sorted(stage.required_fields),
            next_stages=list(stage.next_stages),
        )
        for stage in graph
    ]


project_service = ProjectService()
transition_executor = TransitionExecutor()


def validate_transition(current_stage: str, target_stage: str, entity: Any) -> TransitionResult:
    return transition_executor.validator.validate(current_stage, target_stage, entity)


def update_stage(
    session: Session,
    project_id: uuid.UUID,
    target_stage: str,
    requested_by: str | None,
    reason: str | None = None,
    force_override: bool = False,
    expected_row_version: int | None = None,
) -> ExecutionResult:
    return transition_executor.execute(
        session,
        project_id,
        target_stage,
        requested_by,
        reason=reason,
        force_override=force_override,
        expected_row_version=expected_row_version,
    )


def get_available_stages(current_stage: str, entity: Any) -> list[str]:
    return transition_executor.validator.get_available_stages(current_stage, entity)


def get_stage_progress(current_stage: str) -> int:
    return transition_executor.validator.get_stage_progress(current_stage)


def get_stage_checklist(stage_name: str) -> list[str]:
    return transition_executor.validator.get_stage_checklist(stage_name)


def can_complete(entity: Any) -> tuple[bool, list[str]]:
    return transition_executor.validator.can_complete(entity)
