from app.business.projects.api import router
from app.business.projects.models import Project
from app.business.projects.service import (
    ExecutionResult,
    ProjectService,
    TransitionExecutor,
    can_complete,
    get_available_stages,
    get_stage_checklist,
    get_stage_progress,
    project_service,
    transition_executor,
    update_stage,
    validate_transition,
)
from app.business.projects.stages import Stage, StageGraph, UnknownStageError, get_stage_graph
from app.business.projects.validator import TransitionResult, TransitionValidator

__all__ = [
    "router",
    "Project",
    "Stage",
    "StageGraph",
    "UnknownStageError",
    "get_stage_graph",
    "TransitionResult",
    "TransitionValidator",
    "ExecutionResult",
    "TransitionExecutor",
    "ProjectService",
    "project_service",
    "transition_executor",
    "validate_transition",
    "update_stage",
    "get_available_stages",
    "get_stage_progress",
    "get_stage_checklist",
    "can_complete",
]
