"""Data models for optimization problems."""

import math
import uuid
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, model_validator

from ..exceptions import EvaluationError
from .expressions import ComparisonOperator, Expression


def new_id() -> str:
    return str(uuid.uuid4())


class ObjectiveDirection(str, Enum):
    MINIMIZE = "minimize"
    MAXIMIZE = "maximize"


class ConstraintKind(str, Enum):
    EQUALITY = "equality"
    INEQUALITY = "inequality"
    BOUND = "bound"
    LOGICAL = "logical"


class VariableKind(str, Enum):
    CONTINUOUS = "continuous"
    INTEGER = "integer"
    BINARY = "binary"
    CATEGORICAL = "categorical"


class ProblemType(str, Enum):
    CONSTRAINT_SATISFACTION = "constraint_satisfaction"
    GENETIC_ALGORITHM = "genetic_algorithm"
    MULTI_OBJECTIVE = "multi_objective"
    RESOURCE_ALLOCATION = "resource_allocation"
    ROUTE_OPTIMIZATION = "route_optimization"
    SCHEDULING = "scheduling"


class ProblemStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_STATUS_TRANSITIONS = {
    ProblemStatus.PENDING: {ProblemStatus.RUNNING},
    ProblemStatus.RUNNING: {ProblemStatus.COMPLETED, ProblemStatus.FAILED},
    ProblemStatus.COMPLETED: set(),
    ProblemStatus.FAILED: set(),
}


class Evaluable(BaseModel):
    """Either a serializable expression tree or a caller-supplied closure."""

    expression: Expression | None = Field(
        default=None, description="Algebraic expression over variable values"
    )
    function: Callable[[Mapping[str, float]], float] | None = Field(
        default=None,
        exclude=True,
        description="Typed closure over variable values (not serialized)",
    )

    @model_validator(mode="after")
    def _exactly_one_form(self):
        if (self.expression is None) == (self.function is None):
            raise ValueError("exactly one of 'expression' or 'function' must be given")
        return self

    def evaluate(self, values: Mapping[str, float]) -> float:
        if self.expression is not None:
            return self.expression.evaluate(values)
        try:
            result = self.function(values)
        except KeyError as e:
            raise EvaluationError(f"No value bound for {e}") from e
        try:
            return float(result)
        except (TypeError, ValueError) as e:
            raise EvaluationError(f"Closure returned non-numeric value {result!r}") from e

    def referenced_symbols(self) -> set[str] | None:
        """Names the expression reads; None for opaque closures."""
        if self.expression is None:
            return None
        return self.expression.variables()


class Objective(Evaluable):
    """Optimization objective."""

    objective_id: str = Field(default_factory=new_id)
    name: str
    direction: ObjectiveDirection = ObjectiveDirection.MINIMIZE
    weight: float = Field(1.0, description="Weight in weighted-sum scalarization")
    priority: int = Field(0, description="Lower value means higher priority")
    description: str = ""

    @property
    def sense(self) -> float:
        """+1 for maximize, -1 for minimize (maps values onto 'higher is better')."""
        return 1.0 if self.direction == ObjectiveDirection.MAXIMIZE else -1.0


class Constraint(Evaluable):
    """Constraint of the form `expression <operator> value`."""

    constraint_id: str = Field(default_factory=new_id)
    name: str
    kind: ConstraintKind = ConstraintKind.INEQUALITY
    operator: ComparisonOperator = ComparisonOperator.LE
    value: float = Field(0.0, description="Target (right-hand side) value")
    tolerance: float | None = Field(None, ge=0.0)
    description: str = ""


class Variable(BaseModel):
    """Decision variable."""

    variable_id: str = Field(default_factory=new_id)
    name: str
    kind: VariableKind = VariableKind.CONTINUOUS
    lower_bound: float | None = None
    upper_bound: float | None = None
    initial_value: float | str | None = None
    categories: list[str] | None = None
    description: str = ""

    @model_validator(mode="after")
    def _check_domain(self):
        if self.kind == VariableKind.CATEGORICAL:
            if not self.categories:
                raise ValueError(f"categorical variable '{self.name}' needs categories")
            if len(set(self.categories)) != len(self.categories):
                raise ValueError(f"categorical variable '{self.name}' has duplicate categories")
            if self.initial_value is not None and self.initial_value not in self.categories:
                raise ValueError(
                    f"initial value {self.initial_value!r} of '{self.name}' is not a category"
                )
            return self

        if isinstance(self.initial_value, str):
            raise ValueError(f"numeric variable '{self.name}' has a string initial value")
        if (
            self.lower_bound is not None
            and self.upper_bound is not None
            and self.lower_bound > self.upper_bound
        ):
            raise ValueError(
                f"variable '{self.name}' has lower bound {self.lower_bound} "
                f"above upper bound {self.upper_bound}"
            )
        if self.kind == VariableKind.BINARY:
            for bound in (self.lower_bound, self.upper_bound):
                if bound is not None and bound not in (0, 1):
                    raise ValueError(f"binary variable '{self.name}' has bound {bound}")
        return self

    @property
    def is_discrete(self) -> bool:
        return self.kind != VariableKind.CONTINUOUS

    def bounds(self, default: tuple[float, float] = (0.0, 100.0)) -> tuple[float, float]:
        """Effective numeric domain; categories are encoded as indices."""
        if self.kind == VariableKind.BINARY:
            lower = 0.0 if self.lower_bound is None else float(self.lower_bound)
            upper = 1.0 if self.upper_bound is None else float(self.upper_bound)
            return lower, upper
        if self.kind == VariableKind.CATEGORICAL:
            return 0.0, float(len(self.categories) - 1)

        lower, upper = self.lower_bound, self.upper_bound
        span = default[1] - default[0]
        if lower is None and upper is None:
            anchor = self.initial_value
            if anchor is None:
                lower, upper = default
            else:
                lower, upper = anchor - span / 2.0, anchor + span / 2.0
        elif lower is None:
            lower = upper - span
        elif upper is None:
            upper = lower + span
        if self.kind == VariableKind.INTEGER:
            lower, upper = math.ceil(lower), math.floor(upper)
        return float(lower), float(upper)

    def encode(self, value: Any) -> float:
        """Map a user-facing value onto the numeric search space."""
        if self.kind == VariableKind.CATEGORICAL:
            if isinstance(value, str):
                return float(self.categories.index(value))
            return float(value)
        return float(value)

    def decode(self, value: float) -> float | str:
        """Map a numeric search value back onto the variable's domain."""
        if self.kind == VariableKind.CATEGORICAL:
            index = min(max(int(round(value)), 0), len(self.categories) - 1)
            return self.categories[index]
        if self.kind in (VariableKind.INTEGER, VariableKind.BINARY):
            return float(round(value))
        return float(value)


class ConvergenceType(str, Enum):
    OBJECTIVE_CHANGE = "objective_change"
    VARIABLE_CHANGE = "variable_change"
    ITERATION_LIMIT = "iteration_limit"


class ConvergenceCriteria(BaseModel):
    type: ConvergenceType = ConvergenceType.OBJECTIVE_CHANGE
    threshold: float = Field(1e-6, ge=0.0)
    consecutive_iterations: int = Field(10, ge=1)


class ParallelizationStrategy(str, Enum):
    MASTER_SLAVE = "master_slave"
    ISLAND_MODEL = "island_model"
    CELLULAR = "cellular"


class ParallelizationConfig(BaseModel):
    """Advisory hint; only master/slave fitness evaluation is honoured."""

    enabled: bool = False
    threads: int = Field(1, ge=1)
    strategy: ParallelizationStrategy = ParallelizationStrategy.MASTER_SLAVE


class Algorithm(str, Enum):
    BACKTRACKING = "backtracking"
    GENETIC = "genetic"
    PARETO = "pareto"
    LINEAR_PROGRAMMING = "linear_programming"
    ROUTING = "routing"
    SCHEDULING = "scheduling"


class SolverParameters(BaseModel):
    """Parameters shared by every strategy."""

    max_iterations: int = Field(1000, ge=1)
    tolerance: float = Field(1e-6, ge=0.0)
    time_limit: float | None = Field(300.0, gt=0.0, description="Seconds; None disables the limit")
    seed: int | None = Field(None, description="Seed for every stochastic operation")
    convergence: ConvergenceCriteria = Field(default_factory=ConvergenceCriteria)
    parallelization: ParallelizationConfig = Field(default_factory=ParallelizationConfig)
    default_bounds: tuple[float, float] = Field(
        (0.0, 100.0), description="Domain used for numeric variables without bounds"
    )


class BacktrackingParameters(SolverParameters):
    algorithm: Literal["backtracking"] = "backtracking"
    value_ordering: Literal["ascending", "descending", "random"] = "ascending"
    continuous_steps: int = Field(101, ge=2, description="Grid points per continuous domain")
    exhaustive: bool = Field(
        False, description="Keep searching for the best assignment instead of the first"
    )


class GeneticParameters(SolverParameters):
    algorithm: Literal["genetic"] = "genetic"
    population_size: int = Field(100, ge=2)
    crossover_rate: float = Field(0.8, ge=0.0, le=1.0)
    mutation_rate: float = Field(0.1, ge=0.0, le=1.0)
    elitism_rate: float = Field(0.1, ge=0.0, le=1.0)
    tournament_size: int = Field(3, ge=1)
    mutation_scale: float = Field(0.1, gt=0.0, description="Gaussian sigma as a share of the domain")
    mutation_decay: float = Field(0.98, gt=0.0, le=1.0)
    penalty_coefficient: float = Field(1000.0, gt=0.0)
    alternatives_count: int = Field(5, ge=0)


class ParetoParameters(GeneticParameters):
    algorithm: Literal["pareto"] = "pareto"
    max_iterations: int = Field(200, ge=1)


class LinearProgrammingParameters(SolverParameters):
    algorithm: Literal["linear_programming"] = "linear_programming"
    allow_partial: bool = Field(False, description="Permit unmet demand at a penalty")
    unmet_penalty: float = Field(1e6, ge=0.0)


class RoutingParameters(SolverParameters):
    algorithm: Literal["routing"] = "routing"
    local_search: bool = True
    average_speed: float = Field(
        50.0, gt=0.0, description="Distance per time unit when no time matrix is given"
    )


class SchedulingParameters(SolverParameters):
    algorithm: Literal["scheduling"] = "scheduling"
    max_candidates: int = Field(3, ge=1, description="Resources tried per requirement")


AnySolverParameters = Annotated[
    Union[
        BacktrackingParameters,
        GeneticParameters,
        ParetoParameters,
        LinearProgrammingParameters,
        RoutingParameters,
        SchedulingParameters,
    ],
    Field(discriminator="algorithm"),
]

PARAMETER_MODELS: dict[str, type[SolverParameters]] = {
    Algorithm.BACKTRACKING.value: BacktrackingParameters,
    Algorithm.GENETIC.value: GeneticParameters,
    Algorithm.PARETO.value: ParetoParameters,
    Algorithm.LINEAR_PROGRAMMING.value: LinearProgrammingParameters,
    Algorithm.ROUTING.value: RoutingParameters,
    Algorithm.SCHEDULING.value: SchedulingParameters,
}


class Problem(BaseModel):
    """Generic optimization problem."""

    problem_id: str = Field(default_factory=new_id)
    name: str
    problem_type: ProblemType = ProblemType.CONSTRAINT_SATISFACTION
    description: str = ""
    objectives: list[Objective] = Field(default_factory=list)
    constraints: list[Constraint] = Field(default_factory=list)
    variables: list[Variable] = Field(default_factory=list)
    parameters: AnySolverParameters | None = None
    status: ProblemStatus = ProblemStatus.PENDING

    @property
    def variable_names(self) -> list[str]:
        return [variable.name for variable in self.variables]

    def variable(self, name: str) -> Variable:
        for variable in self.variables:
            if variable.name == name:
                return variable
        raise KeyError(name)

    def known_symbols(self) -> set[str]:
        """Names expressions may reference."""
        return set(self.variable_names)

    def mark(self, status: ProblemStatus) -> None:
        """Record a lifecycle transition (pending -> running -> completed|failed)."""
        status = ProblemStatus(status)
        if status not in _STATUS_TRANSITIONS[self.status]:
            raise ValueError(f"Invalid status transition {self.status.value} -> {status.value}")
        self.status = status
