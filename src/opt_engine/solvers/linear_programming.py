"""Linear programming solver backed by PuLP and CBC."""

import math
import threading
from typing import Any, Dict, Optional

import pulp

from ..exceptions import ProblemValidationError
from ..models.allocation import AllocationDemand, AllocationResource
from ..models.expressions import ComparisonOperator, linear
from ..models.problem import (
    Algorithm,
    Constraint,
    ConstraintKind,
    LinearProgrammingParameters,
    Objective,
    ObjectiveDirection,
    Problem,
    ProblemType,
    Variable,
    VariableKind,
)
from ..models.solution import (
    ConstraintSensitivity,
    ConstraintViolation,
    ConvergencePoint,
    ObjectiveSensitivity,
    OptimizationSolution,
    SensitivityAnalysis,
    SolutionMetadata,
    SolutionStatus,
    VariableSensitivity,
)
from ..utils.evaluation import ConstraintEvaluator, ObjectiveEvaluator
from ..utils.logger import get_logger
from ..utils.sensitivity import constraint_slack, slack_ranges
from .base import BaseSolver, SolverError

logger = get_logger(__name__)


class LinearProgrammingSolver(BaseSolver):
    """Solves linear (and mixed-integer linear) problems with CBC.

    The weighted objective is minimized (maximized objectives are negated).
    Strict inequalities are tightened by one tolerance. For continuous
    programs CBC duals and reduced costs fill the sensitivity section;
    shadow prices are d(weighted objective)/d(target).
    """

    algorithm = Algorithm.LINEAR_PROGRAMMING
    parameters_model = LinearProgrammingParameters

    def get_solver_info(self) -> Dict[str, Any]:
        return {
            "name": self.algorithm.value,
            "description": "Simplex / branch-and-cut via PuLP and COIN-OR CBC",
            "backend": "CBC",
            "version": pulp.__version__,
            "capabilities": ["linear", "mixed_integer", "resource_allocation", "duals"],
            "stochastic": False,
        }

    def _linear_terms(self, item, kind: str) -> tuple[dict[str, float], float]:
        terms = item.expression.linear_terms() if item.expression is not None else None
        if terms is None:
            raise ProblemValidationError(
                f"{kind} '{item.name}' is not a linear expression over the variables"
            )
        return terms

    def _build_model(self, problem: Problem, params: LinearProgrammingParameters):
        """Translate the problem into a PuLP model.

        Returns:
            (model, variables by name, constraints by id)
        """
        categorical = [v.name for v in problem.variables if v.kind == VariableKind.CATEGORICAL]
        if categorical:
            raise ProblemValidationError(
                f"linear programming does not support categorical variables {categorical}"
            )

        model = pulp.LpProblem("optimization", pulp.LpMinimize)
        variables = {}
        for index, variable in enumerate(problem.variables):
            category = {
                VariableKind.CONTINUOUS: pulp.LpContinuous,
                VariableKind.INTEGER: pulp.LpInteger,
                VariableKind.BINARY: pulp.LpBinary,
            }[variable.kind]
            lower, upper = variable.lower_bound, variable.upper_bound
            if variable.kind == VariableKind.BINARY:
                lower = 0 if lower is None else lower
                upper = 1 if upper is None else upper
            variables[variable.name] = model.add_variable(
                f"x_{index}", lowBound=lower, upBound=upper, cat=category
            )

        objective_terms = []
        for objective in problem.objectives:
            coefficients, constant = self._linear_terms(objective, "objective")
            factor = -objective.sense * objective.weight
            objective_terms.append(
                factor * (pulp.lpSum(c * variables[n] for n, c in coefficients.items()) + constant)
            )
        model += pulp.lpSum(objective_terms)

        rows = {}
        for index, constraint in enumerate(problem.constraints):
            coefficients, constant = self._linear_terms(constraint, "constraint")
            lhs = pulp.lpSum(c * variables[n] for n, c in coefficients.items()) + constant
            margin = params.tolerance if constraint.tolerance is None else constraint.tolerance
            operator = constraint.operator
            if operator == ComparisonOperator.EQ:
                row = lhs == constraint.value
            elif operator == ComparisonOperator.LE:
                row = lhs <= constraint.value
            elif operator == ComparisonOperator.LT:
                row = lhs <= constraint.value - margin
            elif operator == ComparisonOperator.GE:
                row = lhs >= constraint.value
            else:
                row = lhs >= constraint.value + margin
            name = f"c_{index}"
            model += row, name
            rows[constraint.constraint_id] = model.get_constraint_by_name(name)

        return model, variables, rows

    def _backend(self, time_limit: Optional[float]) -> pulp.LpSolver:
        """System CBC when installed, otherwise the binary bundled with PuLP."""
        backend = pulp.COIN_CMD(msg=False, timeLimit=time_limit)
        if backend.available():
            return backend
        return pulp.PULP_CBC_CMD(msg=False, timeLimit=time_limit)

    def _status(self, model: pulp.LpProblem) -> SolutionStatus:
        if model.status == pulp.LpStatusOptimal:
            if model.sol_status == pulp.LpSolutionIntegerFeasible:
                return SolutionStatus.TIME_LIMIT
            return SolutionStatus.OPTIMAL
        if model.status == pulp.LpStatusUnbounded:
            return SolutionStatus.UNBOUNDED
        if model.status == pulp.LpStatusNotSolved:
            return SolutionStatus.TIME_LIMIT
        return SolutionStatus.INFEASIBLE

    def solve(
        self, problem: Problem, cancel_event: Optional[threading.Event] = None
    ) -> OptimizationSolution:
        params = self.resolve_parameters(problem)
        self._log_start(problem, params)
        budget = self.budget(params, cancel_event)
        if budget.cancelled:
            return self._log_finish(self._empty(problem, SolutionStatus.CANCELLED, 0.0))

        model, variables, rows = self._build_model(problem, params)
        try:
            model.solve(self._backend(params.time_limit))
        except pulp.PulpSolverError as e:
            raise SolverError(f"CBC failed on problem {problem.problem_id}: {e}") from e

        status = self._status(model)
        lp_status = pulp.LpStatus[model.status]
        logger.debug(f"CBC status {lp_status} (solution status {model.sol_status})")
        solved = not variables or any(v.varValue is not None for v in variables.values())
        if status in (SolutionStatus.INFEASIBLE, SolutionStatus.UNBOUNDED) or not solved:
            return self._log_finish(
                self._empty(problem, status, budget.elapsed, {"lp_status": lp_status})
            )

        values = {name: float(v.varValue or 0.0) for name, v in variables.items()}
        objective_values = ObjectiveEvaluator(problem.objectives).evaluate(values)
        evaluator = ConstraintEvaluator(params.tolerance)
        violations = evaluator.violations(values, problem.constraints)
        weighted = ObjectiveEvaluator(problem.objectives).cost(objective_values)
        integral = any(v.kind != VariableKind.CONTINUOUS for v in problem.variables)

        solution = OptimizationSolution(
            problem_id=problem.problem_id,
            status=status,
            objective_values=objective_values,
            variable_values={
                variable.name: variable.decode(values[variable.name])
                for variable in problem.variables
            },
            constraint_violations=violations,
            metadata=SolutionMetadata(
                algorithm=self.algorithm.value,
                iterations=1,
                runtime=budget.elapsed,
                convergence_history=[
                    ConvergencePoint(
                        iteration=1,
                        objective_value=weighted,
                        constraint_violation=sum(v.violation for v in violations),
                        elapsed=budget.elapsed,
                    )
                ],
                algorithm_specific={
                    "backend": "CBC",
                    "lp_status": lp_status,
                    "mixed_integer": integral,
                },
            ),
            sensitivity=self._sensitivity(
                problem, values, objective_values, variables, rows, evaluator
            ),
        )
        return self._log_finish(solution)

    def _sensitivity(
        self, problem, values, objective_values, variables, rows, evaluator
    ) -> SensitivityAnalysis:
        objective_sensitivity = [
            ObjectiveSensitivity(
                objective_id=objective.objective_id,
                shadow_price=-objective.sense * objective_values[objective.name],
            )
            for objective in problem.objectives
        ]

        constraint_sensitivity = []
        for constraint in problem.constraints:
            row = rows[constraint.constraint_id]
            tolerance = max(evaluator.tolerance_for(constraint), 1e-9)
            slack = constraint_slack(constraint.evaluate(values), constraint, tolerance)
            shadow_price = float(row.pi) if row.pi is not None else 0.0
            increase = decrease = None
            if constraint.operator != ComparisonOperator.EQ and abs(slack) > tolerance:
                increase, decrease = slack_ranges(slack, constraint.operator)
            constraint_sensitivity.append(
                ConstraintSensitivity(
                    constraint_id=constraint.constraint_id,
                    shadow_price=shadow_price,
                    slack=slack,
                    allowable_increase=increase,
                    allowable_decrease=decrease,
                )
            )

        variable_sensitivity = []
        for variable in problem.variables:
            lp_variable = variables[variable.name]
            value = values[variable.name]
            upper, lower = lp_variable.upBound, lp_variable.lowBound
            variable_sensitivity.append(
                VariableSensitivity(
                    variable_id=variable.variable_id,
                    reduced_cost=float(lp_variable.dj) if lp_variable.dj is not None else 0.0,
                    allowable_increase=math.inf if upper is None else max(upper - value, 0.0),
                    allowable_decrease=math.inf if lower is None else max(value - lower, 0.0),
                )
            )

        return SensitivityAnalysis(
            objective_sensitivity=objective_sensitivity,
            constraint_sensitivity=constraint_sensitivity,
            variable_sensitivity=variable_sensitivity,
        )

    def _empty(
        self,
        problem: Problem,
        status: SolutionStatus,
        runtime: float,
        extra: Optional[Dict[str, Any]] = None,
        violations: Optional[list[ConstraintViolation]] = None,
    ) -> OptimizationSolution:
        return OptimizationSolution(
            problem_id=problem.problem_id,
            status=status,
            constraint_violations=violations or [],
            metadata=SolutionMetadata(
                algorithm=self.algorithm.value,
                runtime=runtime,
                algorithm_specific={"backend": "CBC", **(extra or {})},
            ),
        )

    def solve_allocation(
        self,
        problem: Problem,
        resources: list[AllocationResource],
        demands: list[AllocationDemand],
        cancel_event: Optional[threading.Event] = None,
    ) -> OptimizationSolution:
        """Allocate resource capacity to demands at minimum total cost.

        One nonnegative continuous variable ``allocation_<resource>_<demand>``
        per pair, fixed at 0 when the resource lacks a required skill.
        ``capacity_<resource>`` rows cap each resource,
        ``demand_<demand>`` rows require each quantity exactly. Objectives
        and linear constraints already on ``problem`` are kept and may refer
        to the allocation variables.

        Args:
            problem: Problem carrying identity, parameters and extra rows
            resources: Resources with capacity and unit cost
            demands: Demands with quantity and required skills
            cancel_event: Optional cancellation flag

        Returns:
            Optimization solution; ``infeasible`` when capacity cannot cover
            demand and partial fulfilment is not allowed
        """
        params = self.resolve_parameters(problem)
        logger.info(
            f"Solving resource allocation {problem.problem_id}: "
            f"{len(resources)} resources, {len(demands)} demands"
        )

        total_capacity = sum(resource.capacity for resource in resources)
        total_demand = sum(demand.quantity for demand in demands)
        if total_capacity < total_demand and not params.allow_partial:
            shortfall = total_demand - total_capacity
            logger.info(
                f"Total capacity {total_capacity} cannot cover total demand {total_demand}"
            )
            violation = ConstraintViolation(
                constraint_id="total_capacity",
                violation=shortfall,
                severity=ConstraintEvaluator.severity(shortfall, total_demand),
                message=f"total capacity {total_capacity} is below total demand {total_demand}",
            )
            return self._log_finish(
                self._empty(
                    problem, SolutionStatus.INFEASIBLE, 0.0,
                    {"total_capacity": total_capacity, "total_demand": total_demand},
                    [violation],
                )
            )

        variables: list[Variable] = []
        cost: dict[str, float] = {}
        pairs: dict[str, tuple[str, str]] = {}
        for resource in resources:
            for demand in demands:
                name = f"allocation_{resource.resource_id}_{demand.demand_id}"
                # capacity and demand rows bound accepted pairs; variable bounds
                # equal to a row's target would make the duals degenerate
                upper = None if demand.accepts(resource) else 0.0
                variables.append(Variable(name=name, lower_bound=0.0, upper_bound=upper))
                cost[name] = resource.unit_cost
                pairs[name] = (resource.resource_id, demand.demand_id)

        unmet: dict[str, str] = {}
        if params.allow_partial:
            for demand in demands:
                name = f"unmet_{demand.demand_id}"
                variables.append(Variable(name=name, lower_bound=0.0))
                cost[name] = params.unmet_penalty
                unmet[name] = demand.demand_id

        constraints = [
            Constraint(
                name=f"capacity_{resource.resource_id}",
                constraint_id=f"capacity_{resource.resource_id}",
                kind=ConstraintKind.INEQUALITY,
                operator=ComparisonOperator.LE,
                value=resource.capacity,
                expression=linear(
                    {n: 1.0 for n, (r, _) in pairs.items() if r == resource.resource_id}
                ),
            )
            for resource in resources
        ]
        for demand in demands:
            terms = {n: 1.0 for n, (_, d) in pairs.items() if d == demand.demand_id}
            terms.update({n: 1.0 for n, d in unmet.items() if d == demand.demand_id})
            constraints.append(
                Constraint(
                    name=f"demand_{demand.demand_id}",
                    constraint_id=f"demand_{demand.demand_id}",
                    kind=ConstraintKind.EQUALITY,
                    operator=ComparisonOperator.EQ,
                    value=demand.quantity,
                    expression=linear(terms),
                )
            )

        total_cost = Objective(
            name="total_cost",
            direction=ObjectiveDirection.MINIMIZE,
            expression=linear(cost),
        )
        allocation_problem = problem.model_copy(
            update={
                "problem_type": ProblemType.RESOURCE_ALLOCATION,
                "objectives": [total_cost, *problem.objectives],
                "constraints": constraints + list(problem.constraints),
                "variables": variables + list(problem.variables),
            }
        )
        solution = self.solve(allocation_problem, cancel_event)
        if not solution.variable_values:
            return solution

        values = solution.variable_values
        allocations = [
            {"resource_id": r, "demand_id": d, "quantity": values[name]}
            for name, (r, d) in pairs.items()
            if values[name] > params.tolerance
        ]
        unmet_demand = sum(values[name] for name in unmet)
        objective_values = {**solution.objective_values, "unmet_demand": unmet_demand}
        metadata = solution.metadata.model_copy(
            update={
                "algorithm_specific": {
                    **solution.metadata.algorithm_specific,
                    "allocations": allocations,
                    "unmet_demand": unmet_demand,
                    "total_capacity": total_capacity,
                    "total_demand": total_demand,
                }
            }
        )
        return solution.model_copy(update={"objective_values": objective_values, "metadata": metadata})
