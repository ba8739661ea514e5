"""Numeric encoding and evaluation of candidate assignments.

Candidates are numpy vectors in variable order. Categorical variables are
encoded as category indices and integer/binary genes hold whole numbers.
"""

import math
from dataclasses import dataclass

import numpy as np

from ..exceptions import EvaluationError
from ..models.expressions import ComparisonOperator
from ..models.problem import Problem, SolverParameters
from ..models.solution import ConstraintViolation, ViolationSeverity
from ..utils.evaluation import ConstraintEvaluator, ObjectiveEvaluator
from ..utils.logger import get_logger
from ..utils.propagation import DomainReduction, propagate_bounds, single_variable_term

logger = get_logger(__name__)


@dataclass(frozen=True)
class Evaluation:
    """Objective values and total constraint violation of one candidate."""

    objective_values: dict[str, float]
    violation: float
    score: float

    @property
    def feasible(self) -> bool:
        return self.violation == 0.0


class CandidateEvaluator:
    """Evaluates encoded candidates against a problem."""

    def __init__(self, problem: Problem, params: SolverParameters):
        self.problem = problem
        self.tolerance = params.tolerance
        self.variables = list(problem.variables)
        self.names = [variable.name for variable in self.variables]
        self.constraint_evaluator = ConstraintEvaluator(params.tolerance)
        self.objective_evaluator = ObjectiveEvaluator(problem.objectives)
        self.reduction: DomainReduction = propagate_bounds(
            problem, params.default_bounds, params.tolerance
        )
        self.lower = np.array([self.reduction.bounds[n][0] for n in self.names], dtype=float)
        self.upper = np.array([self.reduction.bounds[n][1] for n in self.names], dtype=float)
        self.discrete = np.array([v.is_discrete for v in self.variables], dtype=bool)

    @property
    def size(self) -> int:
        return len(self.names)

    def assignment(self, vector) -> dict[str, float]:
        return {name: float(value) for name, value in zip(self.names, vector)}

    def decode(self, vector) -> dict[str, float | str]:
        """User-facing values (categories by name)."""
        return {
            variable.name: variable.decode(float(value))
            for variable, value in zip(self.variables, vector)
        }

    def encode_initial(self) -> np.ndarray | None:
        """Vector of initial values, or None unless every variable has one."""
        if any(variable.initial_value is None for variable in self.variables):
            return None
        return self.repair(
            np.array([v.encode(v.initial_value) for v in self.variables], dtype=float)
        )

    def thresholds(self, name: str) -> list[float]:
        """Values where a single-variable constraint on `name` switches."""
        thresholds = []
        for constraint in self.problem.constraints:
            parsed = single_variable_term(constraint)
            if parsed is None or parsed[0] != name:
                continue
            _, coefficient, constant = parsed
            threshold = (constraint.value - constant) / coefficient
            margin = self.tolerance if constraint.tolerance is None else constraint.tolerance
            if constraint.operator in (ComparisonOperator.LT, ComparisonOperator.GT):
                step = 2 * margin / abs(coefficient) or 1e-9
                thresholds.extend([threshold - step, threshold + step])
            else:
                thresholds.append(threshold)
        return thresholds

    def threshold_vectors(self) -> list[np.ndarray]:
        """Lower corner with one variable moved onto each of its in-domain thresholds."""
        vectors = []
        for index, name in enumerate(self.names):
            for threshold in self.thresholds(name):
                if not self.lower[index] <= threshold <= self.upper[index]:
                    continue
                vector = self.lower.copy()
                vector[index] = threshold
                vectors.append(self.repair(vector))
        return vectors

    def repair(self, vector: np.ndarray) -> np.ndarray:
        """Clip into the propagated domain and round discrete genes."""
        vector = np.clip(vector, self.lower, self.upper)
        vector[self.discrete] = np.round(vector[self.discrete])
        return vector

    def evaluate(self, vector) -> Evaluation:
        assignment = self.assignment(vector)
        try:
            values = self.objective_evaluator.evaluate(assignment)
            violation = self.constraint_evaluator.total_violation(
                assignment, self.problem.constraints
            )
        except EvaluationError as e:
            logger.debug(f"Candidate could not be evaluated: {e}")
            worst = {
                objective.name: -objective.sense * math.inf
                for objective in self.problem.objectives
            }
            return Evaluation(objective_values=worst, violation=math.inf, score=-math.inf)
        return Evaluation(
            objective_values=values,
            violation=violation,
            score=self.objective_evaluator.score(values),
        )

    def violations(self, vector) -> list[ConstraintViolation]:
        try:
            return self.constraint_evaluator.violations(
                self.assignment(vector), self.problem.constraints
            )
        except EvaluationError as e:
            return [
                ConstraintViolation(
                    constraint_id="evaluation",
                    violation=math.inf,
                    severity=ViolationSeverity.CRITICAL,
                    message=str(e),
                )
            ]

    def minimization_vector(self, evaluation: Evaluation) -> list[float]:
        return self.objective_evaluator.minimization_vector(evaluation.objective_values)

    def trace_value(self, score: float) -> float:
        """Express a score in the primary objective's direction for the trace."""
        return score if self.objective_evaluator.primary.sense > 0 else -score
