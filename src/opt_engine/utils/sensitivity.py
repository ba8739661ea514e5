"""Finite-difference sensitivity analysis around a solution."""

import math
from collections.abc import Callable, Mapping

from ..exceptions import EvaluationError
from ..models.expressions import ComparisonOperator
from ..models.problem import Problem, VariableKind
from ..models.solution import (
    ConstraintSensitivity,
    ObjectiveSensitivity,
    SensitivityAnalysis,
    VariableSensitivity,
)
from ..utils.evaluation import ConstraintEvaluator, ObjectiveEvaluator
from ..utils.logger import get_logger

logger = get_logger(__name__)


def constraint_slack(value: float, constraint, tolerance: float) -> float:
    """Distance from the bound in the feasible direction (negative when violated)."""
    operator = constraint.operator
    if operator == ComparisonOperator.EQ:
        residual = abs(value - constraint.value)
        return 0.0 if residual <= tolerance else -residual
    if operator in (ComparisonOperator.LE, ComparisonOperator.LT):
        return constraint.value - value
    return value - constraint.value


def slack_ranges(slack: float, operator: ComparisonOperator) -> tuple[float, float]:
    """(allowable increase, allowable decrease) of the target of a slack constraint."""
    if operator in (ComparisonOperator.LE, ComparisonOperator.LT):
        return math.inf, max(slack, 0.0)
    return max(slack, 0.0), math.inf


def metric_sensitivity(
    problem: Problem, metrics: Mapping[str, float], evaluator: ConstraintEvaluator
) -> SensitivityAnalysis:
    """Objective prices and constraint slacks for problems solved over derived metrics.

    Routing and scheduling plans are combinatorial, so no marginal prices
    exist for their constraints; only slacks and allowable ranges are given.
    """
    values = ObjectiveEvaluator(problem.objectives).evaluate(metrics)
    constraint_sensitivity = []
    for constraint in problem.constraints:
        slack = constraint_slack(
            constraint.evaluate(metrics), constraint, evaluator.tolerance_for(constraint)
        )
        increase, decrease = slack_ranges(slack, constraint.operator)
        constraint_sensitivity.append(
            ConstraintSensitivity(
                constraint_id=constraint.constraint_id,
                shadow_price=0.0,
                slack=slack,
                allowable_increase=increase,
                allowable_decrease=decrease,
            )
        )
    return SensitivityAnalysis(
        objective_sensitivity=[
            ObjectiveSensitivity(
                objective_id=objective.objective_id,
                shadow_price=-objective.sense * values[objective.name],
            )
            for objective in problem.objectives
        ],
        constraint_sensitivity=constraint_sensitivity,
    )


class SensitivityAnalyzer:
    """Estimates shadow prices, slacks and reduced costs for heuristic solutions.

    All prices are expressed in units of the weighted objective oriented for
    minimization (maximized objectives enter with a negative sign), and are
    derivatives with respect to the constraint target:

    - objective shadow price: d(weighted objective)/d(weight), i.e. the
      signed objective value (envelope theorem)
    - constraint shadow price: (grad F . grad g) / (grad g . grad g) for
      binding constraints, 0 for slack ones
    - reduced cost: dF/dx minus the binding constraints' share
    """

    def __init__(
        self,
        problem: Problem,
        evaluator: ConstraintEvaluator,
        default_bounds: tuple[float, float] = (0.0, 100.0),
        step: float = 1e-4,
    ):
        self.problem = problem
        self.evaluator = evaluator
        self.objectives = ObjectiveEvaluator(problem.objectives)
        self.default_bounds = default_bounds
        self.step = step

    def _cost(self, assignment: Mapping[str, float]) -> float:
        return self.objectives.cost(self.objectives.evaluate(assignment))

    def _gradient(
        self, func: Callable[[Mapping[str, float]], float], assignment: dict[str, float]
    ) -> dict[str, float]:
        gradient = {}
        for variable in self.problem.variables:
            name = variable.name
            if variable.kind == VariableKind.CATEGORICAL:
                gradient[name] = 0.0
                continue
            lower, upper = variable.bounds(self.default_bounds)
            x = assignment[name]
            h = 1.0 if variable.is_discrete else self.step * max(1.0, abs(x))
            up, down = min(x + h, upper), max(x - h, lower)
            if up <= down:
                gradient[name] = 0.0
                continue
            try:
                f_up = func({**assignment, name: up})
                f_down = func({**assignment, name: down})
            except EvaluationError as e:
                logger.debug(f"Gradient probe for '{name}' failed: {e}")
                gradient[name] = 0.0
                continue
            gradient[name] = (f_up - f_down) / (up - down)
        return gradient

    def analyze(self, assignment: dict[str, float]) -> SensitivityAnalysis:
        """Build the sensitivity section for an encoded assignment.

        Args:
            assignment: Numeric value for every variable

        Returns:
            Sensitivity analysis
        """
        values = self.objectives.evaluate(assignment)
        objective_sensitivity = [
            ObjectiveSensitivity(
                objective_id=objective.objective_id,
                shadow_price=-objective.sense * values[objective.name],
            )
            for objective in self.problem.objectives
        ]

        cost_gradient = self._gradient(self._cost, assignment)
        binding: list[tuple[float, dict[str, float]]] = []
        constraint_sensitivity = []

        for constraint in self.problem.constraints:
            value = constraint.evaluate(assignment)
            tolerance = max(self.evaluator.tolerance_for(constraint), 1e-9)
            operator = constraint.operator
            slack = constraint_slack(value, constraint, tolerance)
            is_binding = operator == ComparisonOperator.EQ or abs(slack) <= tolerance
            if not is_binding:
                increase, decrease = slack_ranges(slack, operator)
                constraint_sensitivity.append(
                    ConstraintSensitivity(
                        constraint_id=constraint.constraint_id,
                        shadow_price=0.0,
                        slack=slack,
                        allowable_increase=increase,
                        allowable_decrease=decrease,
                    )
                )
                continue

            gradient = self._gradient(constraint.evaluate, assignment)
            norm = sum(g * g for g in gradient.values())
            shadow_price = 0.0
            if norm > 0.0:
                shadow_price = sum(cost_gradient[n] * gradient[n] for n in gradient) / norm
                binding.append((shadow_price, gradient))
            constraint_sensitivity.append(
                ConstraintSensitivity(
                    constraint_id=constraint.constraint_id,
                    shadow_price=shadow_price,
                    slack=slack,
                )
            )

        variable_sensitivity = []
        for variable in self.problem.variables:
            name = variable.name
            reduced_cost = cost_gradient[name] - sum(
                price * gradient[name] for price, gradient in binding
            )
            increase = decrease = None
            if variable.kind != VariableKind.CATEGORICAL:
                lower, upper = variable.bounds(self.default_bounds)
                increase = max(upper - assignment[name], 0.0)
                decrease = max(assignment[name] - lower, 0.0)
            variable_sensitivity.append(
                VariableSensitivity(
                    variable_id=variable.variable_id,
                    reduced_cost=reduced_cost,
                    allowable_increase=increase,
                    allowable_decrease=decrease,
                )
            )

        return SensitivityAnalysis(
            objective_sensitivity=objective_sensitivity,
            constraint_sensitivity=constraint_sensitivity,
            variable_sensitivity=variable_sensitivity,
        )
