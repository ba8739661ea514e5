"""Data models for task scheduling problems."""

from enum import Enum

from pydantic import BaseModel, Field, model_validator

from .expressions import var
from .problem import Objective, ObjectiveDirection, Problem, ProblemType, new_id
from .routing import TimeWindow, WindowType

SCHEDULING_METRICS = (
    "makespan",
    "total_cost",
    "overtime",
    "workload_imbalance",
    "preferred_window_misses",
)


class ResourceType(str, Enum):
    HUMAN = "human"
    EQUIPMENT = "equipment"
    FACILITY = "facility"
    MATERIAL = "material"


class Granularity(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"


class ResourceRequirement(BaseModel):
    """One resource a task needs for its whole duration."""

    resource_type: ResourceType
    quantity: float = Field(1.0, gt=0.0, description="Capacity units used on the resource")
    skills: list[str] = Field(default_factory=list)
    alternatives: list[str] = Field(
        default_factory=list, description="Resource ids acceptable regardless of type"
    )


class AvailabilityWindow(BaseModel):
    start: float
    end: float
    capacity: float = Field(ge=0.0)

    @model_validator(mode="after")
    def _check_order(self):
        if self.start > self.end:
            raise ValueError(f"availability window starts at {self.start} after it ends at {self.end}")
        return self


class Task(BaseModel):
    task_id: str = Field(default_factory=new_id)
    name: str = ""
    duration: float = Field(gt=0.0)
    priority: int = Field(0, description="Larger is more urgent")
    dependencies: list[str] = Field(default_factory=list)
    resource_requirements: list[ResourceRequirement] = Field(default_factory=list)
    time_windows: list[TimeWindow] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)

    def windows_of(self, window_type: WindowType) -> list[TimeWindow]:
        return [window for window in self.time_windows if window.type == window_type]


class Resource(BaseModel):
    resource_id: str = Field(default_factory=new_id)
    name: str = ""
    type: ResourceType = ResourceType.HUMAN
    capacity: float = Field(1.0, ge=0.0, description="Concurrent capacity units")
    availability: list[AvailabilityWindow] = Field(
        default_factory=list, description="Empty means always available"
    )
    skills: list[str] = Field(default_factory=list)
    cost: float = Field(0.0, ge=0.0, description="Cost per time unit per capacity unit")
    regular_time: float | None = Field(None, ge=0.0, description="Busy time before overtime")


class TimeHorizon(BaseModel):
    start: float = 0.0
    end: float
    granularity: Granularity = Granularity.HOUR

    @model_validator(mode="after")
    def _check_order(self):
        if self.start >= self.end:
            raise ValueError("time horizon must end after it starts")
        return self


class SchedulingPreferences(BaseModel):
    balance_workload: bool = False
    minimize_overtime: bool = False
    respect_skill_matching: bool = True
    allow_resource_sharing: bool = True
    prioritize_urgent_tasks: bool = True


def _default_objectives() -> list[Objective]:
    return [
        Objective(
            name="makespan",
            direction=ObjectiveDirection.MINIMIZE,
            expression=var("makespan"),
        )
    ]


class SchedulingProblem(Problem):
    """Task scheduling problem.

    Objectives and constraints are expressions over the scheduling metrics
    (``makespan``, ``total_cost``, ``overtime``, ``workload_imbalance``,
    ``preferred_window_misses``); makespan is minimized by default.
    """

    problem_type: ProblemType = ProblemType.SCHEDULING
    tasks: list[Task] = Field(min_length=1)
    resources: list[Resource] = Field(default_factory=list)
    time_horizon: TimeHorizon
    preferences: SchedulingPreferences = Field(default_factory=SchedulingPreferences)

    @model_validator(mode="after")
    def _check_references(self):
        task_ids = [task.task_id for task in self.tasks]
        if len(set(task_ids)) != len(task_ids):
            raise ValueError("task ids must be unique")
        resource_ids = [resource.resource_id for resource in self.resources]
        if len(set(resource_ids)) != len(resource_ids):
            raise ValueError("resource ids must be unique")

        known_tasks, known_resources = set(task_ids), set(resource_ids)
        for task in self.tasks:
            for dependency in task.dependencies:
                if dependency not in known_tasks:
                    raise ValueError(
                        f"task '{task.task_id}' depends on unknown task '{dependency}'"
                    )
            for requirement in task.resource_requirements:
                unknown = set(requirement.alternatives) - known_resources
                if unknown:
                    raise ValueError(
                        f"task '{task.task_id}' names unknown alternative resources {sorted(unknown)}"
                    )

        if not self.objectives:
            self.objectives = _default_objectives()
        return self

    def known_symbols(self) -> set[str]:
        return super().known_symbols() | set(SCHEDULING_METRICS)

    def task(self, task_id: str) -> Task:
        for task in self.tasks:
            if task.task_id == task_id:
                return task
        raise KeyError(task_id)
