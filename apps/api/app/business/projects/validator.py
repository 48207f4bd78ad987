from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from app.business.projects.stages import StageGraph, get_stage_graph


INVALID_STAGE_REASON = "Invalid stage name"
BACKWARD_REASON = "Moving backwards requires confirmation"


@dataclass(frozen=True, slots=True)
class TransitionResult:
    from_stage: str
    to_stage: str
    allowed: bool
    requires_confirmation: bool = False
    reason: str | None = None
    missing_fields: list[str] | None = None


def _field_value(entity: Any, field_name: str) -> Any:
    if entity is None:
        return None
    if isinstance(entity, Mapping):
        return entity.get(field_name)
    return getattr(entity, field_name, None)


def has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return bool(value)
    return True


class TransitionValidator:
    """Classifies a requested stage change without touching storage."""

    def __init__(self, graph: StageGraph | None = None) -> None:
        self.graph = graph or get_stage_graph()

    def missing_fields(self, stage_name: str, entity: Any) -> list[str]:
        stage = self.graph.get_stage(stage_name)
        return sorted(name for name in stage.required_fields if not has_value(_field_value(entity, name)))

    def validate(self, current_stage: str, target_stage: str, entity: Any) -> TransitionResult:
        graph = self.graph
        if not graph.has_stage(current_stage) or not graph.has_stage(target_stage):
            return TransitionResult(current_stage, target_stage, allowed=False, reason=INVALID_STAGE_REASON)

        if current_stage == target_stage:
            return TransitionResult(current_stage, target_stage, allowed=True)

        forward = graph.is_forward(current_stage, target_stage)
        backward = graph.is_backward(current_stage, target_stage)
        if not forward and not backward:
            allowed_stages = ", ".join(graph.get_stage(current_stage).next_stages)
            return TransitionResult(
                current_stage,
                target_stage,
                allowed=False,
                reason=f"Cannot move from {current_stage} to {target_stage}. Allowed stages: {allowed_stages}",
            )

        if forward and backward:
            # Two-way edge: the direction follows stage order.
            backward = graph.get_stage(target_stage).order < graph.get_stage(current_stage).order
        if backward:
            return TransitionResult(
                current_stage,
                target_stage,
                allowed=True,
                requires_confirmation=True,
                reason=BACKWARD_REASON,
            )

        missing = self.missing_fields(target_stage, entity)
        if missing:
            return TransitionResult(
                current_stage,
                target_stage,
                allowed=False,
                reason=f"Missing required fields: {', '.join(missing)}",
                missing_fields=missing,
            )
        return TransitionResult(current_stage, target_stage, allowed=True)

    def get_available_stages(self, current_stage: str, entity: Any) -> list[str]:
        if not self.graph.has_stage(current_stage):
            return []
        available: list[str] = []
        for candidate in self.graph.get_stage(current_stage).next_stages:
            result = self.validate(current_stage, candidate, entity)
            if result.allowed or result.requires_confirmation:
                available.append(candidate)
        return available

    def get_stage_progress(self, current_stage: str) -> int:
        if not self.graph.has_stage(current_stage):
            return 0
        ratio = self.graph.get_stage(current_stage).order / self.graph.progress_denominator
        return int(math.floor(ratio * 100 + 0.5))

    def get_stage_checklist(self, stage_name: str) -> list[str]:
        if not self.graph.has_stage(stage_name):
            return []
        return sorted(self.graph.get_stage(stage_name).required_fields)

    def can_complete(self, entity: Any, completed_stage: str = "Completed") -> tuple[bool, list[str]]:
        missing = self.missing_fields(completed_stage, entity)
        return not missing, missing


transition_validator = TransitionValidator()
