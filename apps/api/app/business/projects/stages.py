from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache

from app.business.projects.schemas import ProjectSnapshot


HOLD_STAGE = "On Hold"
ENTRY_STAGE = "Discovery"
PROJECT_STAGE_FIELDS = frozenset(ProjectSnapshot.model_fields)


class UnknownStageError(KeyError):
    pass


@dataclass(frozen=True, slots=True)
class Stage:
    name: str
    order: int
    required_fields: frozenset[str]
    next_stages: tuple[str, ...]

    @property
    def is_terminal(self) -> bool:
        return not self.next_stages


class StageGraph:
    """Immutable directed graph of named stages.

    Forward edges come from each stage's ``next_stages``. The reverse relation is
    derived once at construction: ``is_backward(a, b)`` holds when ``b`` lists ``a``
    as one of its next stages.
    """

    def __init__(
        self,
        stages: Iterable[Stage],
        *,
        entry_stage: str,
        hold_stage: str | None = None,
        field_schema: Iterable[str] | None = None,
    ) -> None:
        ordered = list(stages)
        self._stages: dict[str, Stage] = {}
        for stage in ordered:
            if stage.name in self._stages:
                raise ValueError(f"Duplicate stage: {stage.name}")
            self._stages[stage.name] = stage

        if entry_stage not in self._stages:
            raise ValueError(f"Unknown entry stage: {entry_stage}")
        if hold_stage is not None and hold_stage not in self._stages:
            raise ValueError(f"Unknown hold stage: {hold_stage}")

        allowed_fields = frozenset(field_schema) if field_schema is not None else None
        predecessors: dict[str, set[str]] = {name: set() for name in self._stages}
        for stage in ordered:
            for target in stage.next_stages:
                if target not in self._stages:
                    raise ValueError(f"Stage {stage.name} references unknown stage: {target}")
                predecessors[target].add(stage.name)
            if allowed_fields is not None:
                unknown_fields = sorted(stage.required_fields - allowed_fields)
                if unknown_fields:
                    raise ValueError(f"Stage {stage.name} requires undeclared fields: {', '.join(unknown_fields)}")

        self.entry_stage = entry_stage
        self.hold_stage = hold_stage
        self._order = tuple(stage.name for stage in ordered)
        self._predecessors = {name: frozenset(sources) for name, sources in predecessors.items()}

    def __iter__(self):  # type: ignore[no-untyped-def]
        return (self._stages[name] for name in self._order)

    def __len__(self) -> int:
        return len(self._stages)

    def has_stage(self, name: str) -> bool:
        return name in self._stages

    def get_stage(self, name: str) -> Stage:
        try:
            return self._stages[name]
        except KeyError:
            raise UnknownStageError(name) from None

    def is_forward(self, from_stage: str, to_stage: str) -> bool:
        return to_stage in self.get_stage(from_stage).next_stages

    def is_backward(self, from_stage: str, to_stage: str) -> bool:
        self.get_stage(from_stage)
        self.get_stage(to_stage)
        return to_stage in self._predecessors[from_stage]

    @property
    def operational_stages(self) -> list[str]:
        return [name for name in self._order if name != self.hold_stage and not self._stages[name].is_terminal]

    @property
    def progress_denominator(self) -> int:
        counted = [name for name in self._order if name != self.hold_stage]
        return max(len(counted) - 1, 1)


def _stage(name: str, order: int, required: Iterable[str], next_stages: Iterable[str]) -> Stage:
    return Stage(name=name, order=order, required_fields=frozenset(required), next_stages=tuple(next_stages))


def build_project_stage_graph() -> StageGraph:
    base = ("name", "description")
    planned = base + ("timeline",)
    operational = ("Discovery", "Planning", "Design", "Development", "Testing", "Deployment")
    return StageGraph(
        [
            _stage("Discovery", 1, base, ("Planning", HOLD_STAGE)),
            _stage("Planning", 2, planned, ("Design", HOLD_STAGE)),
            _stage("Design", 3, planned + ("design_files",), ("Development", "Planning", HOLD_STAGE)),
            _stage("Development", 4, planned + ("design_files",), ("Testing", "Design", HOLD_STAGE)),
            _stage("Testing", 5, planned + ("test_results",), ("Deployment", "Development", HOLD_STAGE)),
            _stage("Deployment", 6, planned + ("test_results", "deployment_url"), ("Completed", "Testing", HOLD_STAGE)),
            _stage("Completed", 7, planned + ("completion_date",), ()),
            _stage(HOLD_STAGE, 0, ("name", "hold_reason"), operational),
        ],
        entry_stage=ENTRY_STAGE,
        hold_stage=HOLD_STAGE,
        field_schema=PROJECT_STAGE_FIELDS,
    )


@lru_cache
def get_stage_graph() -> StageGraph:
    return build_project_stage_graph()
