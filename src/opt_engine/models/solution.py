"""Data models for optimization solutions."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .problem import new_id


class SolutionStatus(str, Enum):
    OPTIMAL = "optimal"
    FEASIBLE = "feasible"
    INFEASIBLE = "infeasible"
    UNBOUNDED = "unbounded"
    TIME_LIMIT = "time_limit"
    ITERATION_LIMIT = "iteration_limit"
    CANCELLED = "cancelled"


class ViolationSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class _SolutionPart(BaseModel):
    model_config = ConfigDict(frozen=True, ser_json_inf_nan="constants")


class ConstraintViolation(_SolutionPart):
    """A constraint (or task/location) that the solution does not satisfy."""

    constraint_id: str = Field(description="Constraint id, or task/location id for domain solvers")
    violation: float = Field(description="Violation magnitude (0 means satisfied)")
    severity: ViolationSeverity = Field(description="Severity derived from relative magnitude")
    message: str | None = Field(None, description="Human-readable reason")


class ConvergencePoint(_SolutionPart):
    iteration: int
    objective_value: float = Field(description="Best scalar objective at this iteration")
    constraint_violation: float = Field(description="Total violation of the best candidate")
    elapsed: float = Field(0.0, description="Seconds since the solve started")


class SolutionMetadata(_SolutionPart):
    algorithm: str
    iterations: int = 0
    runtime: float = Field(0.0, description="Wall-clock runtime in seconds")
    convergence_history: list[ConvergencePoint] = Field(default_factory=list)
    algorithm_specific: dict[str, Any] = Field(default_factory=dict)


class AlternativeSolution(_SolutionPart):
    """Ranked alternative (a GA top-K member or a Pareto front member)."""

    solution_id: str = Field(default_factory=new_id)
    rank: int
    objective_values: dict[str, float] = Field(default_factory=dict)
    variable_values: dict[str, float | str] = Field(default_factory=dict)
    fitness: float | None = None
    constraint_violation: float = 0.0
    domination_count: int = Field(0, description="Population members this candidate dominates")
    crowding_distance: float = 0.0


class ObjectiveSensitivity(_SolutionPart):
    objective_id: str
    shadow_price: float
    allowable_increase: float | None = None
    allowable_decrease: float | None = None


class ConstraintSensitivity(_SolutionPart):
    constraint_id: str
    shadow_price: float
    slack: float
    allowable_increase: float | None = None
    allowable_decrease: float | None = None


class VariableSensitivity(_SolutionPart):
    variable_id: str
    reduced_cost: float
    allowable_increase: float | None = None
    allowable_decrease: float | None = None


class SensitivityAnalysis(_SolutionPart):
    objective_sensitivity: list[ObjectiveSensitivity] = Field(default_factory=list)
    constraint_sensitivity: list[ConstraintSensitivity] = Field(default_factory=list)
    variable_sensitivity: list[VariableSensitivity] = Field(default_factory=list)


class OptimizationSolution(_SolutionPart):
    """Represents the complete result of one solve."""

    solution_id: str = Field(default_factory=new_id)
    problem_id: str
    status: SolutionStatus = Field(description="Terminal status of the solve")
    objective_values: dict[str, float] = Field(
        default_factory=dict, description="Objective (and metric) values by name"
    )
    variable_values: dict[str, float | str] = Field(
        default_factory=dict, description="Variable values by name"
    )
    constraint_violations: list[ConstraintViolation] = Field(default_factory=list)
    metadata: SolutionMetadata
    alternatives: list[AlternativeSolution] = Field(default_factory=list)
    sensitivity: SensitivityAnalysis = Field(default_factory=SensitivityAnalysis)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_optimal(self) -> bool:
        """Check if the solution is optimal."""
        return self.status == SolutionStatus.OPTIMAL

    @property
    def is_feasible(self) -> bool:
        """Check if the solution carries a feasible assignment."""
        return (
            self.status not in (
                SolutionStatus.INFEASIBLE,
                SolutionStatus.UNBOUNDED,
                SolutionStatus.CANCELLED,
            )
            and not self.constraint_violations
        )
