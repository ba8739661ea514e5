"""Constraint and objective evaluation against variable assignments."""

import sys
from collections.abc import Mapping, Sequence

from ..models.expressions import ComparisonOperator
from ..models.problem import Constraint, Objective
from ..models.solution import ConstraintViolation, ViolationSeverity
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ConstraintEvaluator:
    """Measures how far an assignment is from satisfying constraints.

    Violations are non-negative magnitudes: 0.0 means satisfied. Equality
    constraints give ``max(0, |value - target| - tolerance)``, inequalities the
    excess beyond ``target +/- tolerance``. Strict operators need the value to
    clear the target by at least one tolerance.
    """

    def __init__(self, tolerance: float = 1e-6):
        """Initialize the evaluator.

        Args:
            tolerance: Tolerance used for constraints without their own
        """
        self.tolerance = tolerance

    def tolerance_for(self, constraint: Constraint) -> float:
        return self.tolerance if constraint.tolerance is None else constraint.tolerance

    def evaluate(self, assignment: Mapping[str, float], constraint: Constraint) -> float:
        """Return the violation magnitude of one constraint.

        Args:
            assignment: Value for every variable the constraint reads
            constraint: Constraint to check

        Returns:
            0.0 when satisfied, otherwise a positive magnitude
        """
        value = constraint.evaluate(assignment)
        return self.violation_of(value, constraint)

    def violation_of(self, value: float, constraint: Constraint) -> float:
        """Violation for an already-evaluated left-hand side."""
        target = constraint.value
        tolerance = self.tolerance_for(constraint)
        operator = constraint.operator

        if operator == ComparisonOperator.EQ:
            excess = abs(value - target) - tolerance
        elif operator == ComparisonOperator.LE:
            excess = value - (target + tolerance)
        elif operator == ComparisonOperator.GE:
            excess = (target - tolerance) - value
        elif operator == ComparisonOperator.LT:
            excess = value - (target - tolerance)
        else:
            excess = (target + tolerance) - value

        if excess == 0.0 and tolerance == 0.0 and operator in (
            ComparisonOperator.LT,
            ComparisonOperator.GT,
        ):
            # value == target fails a strict comparison even without tolerance
            return sys.float_info.epsilon
        return max(0.0, excess)

    def is_satisfied(self, assignment: Mapping[str, float], constraint: Constraint) -> bool:
        return self.evaluate(assignment, constraint) == 0.0

    def is_feasible(self, assignment: Mapping[str, float], constraints: Sequence[Constraint]) -> bool:
        """True iff every constraint evaluates to a zero violation."""
        return all(self.evaluate(assignment, constraint) == 0.0 for constraint in constraints)

    def total_violation(self, assignment: Mapping[str, float], constraints: Sequence[Constraint]) -> float:
        return sum(self.evaluate(assignment, constraint) for constraint in constraints)

    def violations(
        self, assignment: Mapping[str, float], constraints: Sequence[Constraint]
    ) -> list[ConstraintViolation]:
        """List every violated constraint with its magnitude and severity."""
        result = []
        for constraint in constraints:
            magnitude = self.evaluate(assignment, constraint)
            if magnitude > 0.0:
                result.append(
                    ConstraintViolation(
                        constraint_id=constraint.constraint_id,
                        violation=magnitude,
                        severity=self.severity(magnitude, constraint.value),
                        message=f"{constraint.name}: {constraint.operator.value} {constraint.value} "
                        f"missed by {magnitude:.6g}",
                    )
                )
        if result:
            logger.debug(f"{len(result)} of {len(constraints)} constraints violated")
        return result

    @staticmethod
    def severity(magnitude: float, target: float = 0.0) -> ViolationSeverity:
        """Grade a violation by its size relative to the target."""
        relative = magnitude / max(1.0, abs(target))
        if relative < 0.01:
            return ViolationSeverity.LOW
        if relative < 0.1:
            return ViolationSeverity.MEDIUM
        if relative < 0.5:
            return ViolationSeverity.HIGH
        return ViolationSeverity.CRITICAL


class ObjectiveEvaluator:
    """Evaluates objectives and their weighted-sum scalarization."""

    def __init__(self, objectives: Sequence[Objective]):
        self.objectives = list(objectives)

    def evaluate(self, assignment: Mapping[str, float]) -> dict[str, float]:
        return {objective.name: objective.evaluate(assignment) for objective in self.objectives}

    def score(self, values: Mapping[str, float]) -> float:
        """Weighted sum oriented so that higher is better."""
        return sum(
            objective.weight * objective.sense * values[objective.name]
            for objective in self.objectives
        )

    def cost(self, values: Mapping[str, float]) -> float:
        """Weighted sum oriented so that lower is better."""
        return -self.score(values)

    def minimization_vector(self, values: Mapping[str, float]) -> list[float]:
        """Objective values mapped so that every component is minimized."""
        return [-objective.sense * values[objective.name] for objective in self.objectives]

    @property
    def primary(self) -> Objective:
        """Highest-priority objective (lowest priority number, then order)."""
        return min(self.objectives, key=lambda objective: objective.priority)
