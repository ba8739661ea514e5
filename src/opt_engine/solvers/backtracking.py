"""Depth-first backtracking search for constraint satisfaction problems."""

import threading
from typing import Any, Dict, Optional

import numpy as np

from ..exceptions import EvaluationError
from ..models.problem import Algorithm, BacktrackingParameters, Problem, VariableKind
from ..models.solution import (
    ConstraintViolation,
    ConvergencePoint,
    OptimizationSolution,
    SensitivityAnalysis,
    SolutionMetadata,
    SolutionStatus,
    ViolationSeverity,
)
from ..utils.logger import get_logger
from ..utils.sensitivity import SensitivityAnalyzer
from .base import BaseSolver
from .encoding import CandidateEvaluator

logger = get_logger(__name__)

# integer domains wider than this many grid steps are sampled instead of enumerated
_INTEGER_ENUMERATION_FACTOR = 10


class BacktrackingSolver(BaseSolver):
    """Backtracking constraint search.

    Variables fixed by bound propagation are assigned first; the remaining
    ones are assigned in problem order. A constraint is checked as soon as
    every variable it reads has a value. Continuous domains are searched on
    a grid that always includes the thresholds of single-variable
    constraints.
    """

    algorithm = Algorithm.BACKTRACKING
    parameters_model = BacktrackingParameters

    def get_solver_info(self) -> Dict[str, Any]:
        return {
            "name": self.algorithm.value,
            "description": "Depth-first search with bound propagation",
            "capabilities": ["constraint_satisfaction", "discrete", "categorical"],
            "stochastic": False,
        }

    def _domain(
        self, index: int, candidates: CandidateEvaluator, params: BacktrackingParameters
    ) -> np.ndarray:
        variable = candidates.variables[index]
        lower, upper = candidates.lower[index], candidates.upper[index]
        if lower == upper:
            return np.array([lower])

        if variable.kind == VariableKind.CONTINUOUS:
            points = list(np.linspace(lower, upper, params.continuous_steps))
            points.extend(candidates.thresholds(variable.name))
            points = [p for p in points if lower <= p <= upper]
            return np.unique(np.array(points, dtype=float))

        if upper - lower + 1 > _INTEGER_ENUMERATION_FACTOR * params.continuous_steps:
            points = np.round(np.linspace(lower, upper, params.continuous_steps))
            extra = np.round(candidates.thresholds(variable.name))
            points = np.concatenate([points, extra])
            return np.unique(points[(points >= lower) & (points <= upper)])
        return np.arange(lower, upper + 1.0)

    def _order_values(
        self, domain: np.ndarray, params: BacktrackingParameters, rng: np.random.Generator
    ) -> np.ndarray:
        if params.value_ordering == "descending":
            return domain[::-1]
        if params.value_ordering == "random":
            return rng.permutation(domain)
        return domain

    def solve(
        self, problem: Problem, cancel_event: Optional[threading.Event] = None
    ) -> OptimizationSolution:
        params = self.resolve_parameters(problem)
        self._log_start(problem, params)
        budget = self.budget(params, cancel_event)
        candidates = CandidateEvaluator(problem, params)
        reduction = candidates.reduction

        def finish(status, vector=None, nodes=0, history=(), extra=None, violations=()):
            return self._build_solution(
                problem, params, candidates, status, vector, nodes, budget.elapsed,
                list(history), extra or {}, list(violations),
            )

        if not reduction.is_consistent:
            logger.info(f"Bound constraints contradict each other: {sorted(reduction.conflicts)}")
            violations = [
                ConstraintViolation(
                    constraint_id=constraint_id,
                    violation=gap,
                    severity=ViolationSeverity.CRITICAL,
                    message="contradicts other bound constraints",
                )
                for constraint_id, gap in reduction.conflicts.items()
            ]
            return self._log_finish(
                finish(SolutionStatus.INFEASIBLE, violations=violations)
            )

        rng = np.random.default_rng(params.seed)
        n = candidates.size
        fixed_first = sorted(range(n), key=lambda i: candidates.names[i] not in reduction.fixed)
        domains = [
            self._order_values(self._domain(i, candidates, params), params, rng)
            for i in fixed_first
        ]

        # constraints checked at the depth where their last variable is assigned
        depth_of = {index: depth for depth, index in enumerate(fixed_first)}
        checks: list[list] = [[] for _ in range(max(n, 1))]
        for constraint in problem.constraints:
            referenced = constraint.referenced_symbols()
            if referenced is None:
                depth = n - 1
            else:
                depths = [depth_of[candidates.names.index(name)] for name in referenced]
                depth = max(depths, default=0)
            checks[max(depth, 0)].append(constraint)

        vector = np.zeros(n)
        if n == 0:
            feasible = candidates.evaluate(vector).feasible
            status = SolutionStatus.OPTIMAL if feasible else SolutionStatus.INFEASIBLE
            return self._log_finish(finish(status, vector if feasible else None))

        evaluator = candidates.constraint_evaluator
        cursor = [0] * n
        depth = 0
        nodes = 0
        best_vector = None
        best_score = -np.inf
        history: list[ConvergencePoint] = []
        stop_status = None
        cancelled = False

        while depth >= 0:
            if cursor[depth] >= len(domains[depth]):
                cursor[depth] = 0
                depth -= 1
                continue

            if budget.cancelled:
                cancelled = True
                break
            stop_status = budget.exhausted(nodes)
            if stop_status is not None:
                break

            value = domains[depth][cursor[depth]]
            cursor[depth] += 1
            nodes += 1
            vector[fixed_first[depth]] = value

            assigned = {
                candidates.names[fixed_first[d]]: float(vector[fixed_first[d]])
                for d in range(depth + 1)
            }
            try:
                consistent = all(
                    evaluator.evaluate(assigned, constraint) == 0.0 for constraint in checks[depth]
                )
            except EvaluationError as e:
                logger.debug(f"Pruning node {nodes}: {e}")
                consistent = False
            if not consistent:
                continue

            if depth < n - 1:
                depth += 1
                continue

            evaluation = candidates.evaluate(vector)
            if evaluation.score > best_score:
                best_score = evaluation.score
                best_vector = vector.copy()
                history.append(
                    ConvergencePoint(
                        iteration=nodes,
                        objective_value=candidates.trace_value(best_score),
                        constraint_violation=0.0,
                        elapsed=budget.elapsed,
                    )
                )
                logger.debug(f"Feasible assignment at node {nodes} (score {best_score:.6g})")
            if not params.exhaustive:
                break

        extra = {"nodes": nodes, "fixed_variables": sorted(reduction.fixed)}
        if cancelled:
            extra["cancelled"] = True
            if best_vector is None:
                return self._log_finish(finish(SolutionStatus.CANCELLED, None, nodes, history, extra))
            stop_status = SolutionStatus.ITERATION_LIMIT

        if best_vector is None:
            if stop_status is not None:
                extra["budget_exhausted"] = True
            return self._log_finish(finish(SolutionStatus.INFEASIBLE, None, nodes, history, extra))

        if stop_status is not None and params.exhaustive:
            status = stop_status
        elif params.exhaustive:
            status = SolutionStatus.OPTIMAL
        else:
            status = SolutionStatus.FEASIBLE
        return self._log_finish(finish(status, best_vector, nodes, history, extra))

    def _build_solution(
        self, problem, params, candidates, status, vector, nodes, runtime, history, extra, violations
    ) -> OptimizationSolution:
        objective_values: dict[str, float] = {}
        variable_values: dict[str, float | str] = {}
        sensitivity = SensitivityAnalysis()
        if vector is not None:
            evaluation = candidates.evaluate(vector)
            objective_values = evaluation.objective_values
            variable_values = candidates.decode(vector)
            violations = candidates.violations(vector)
            sensitivity = SensitivityAnalyzer(
                problem, candidates.constraint_evaluator, params.default_bounds
            ).analyze(candidates.assignment(vector))

        solution = OptimizationSolution(
            problem_id=problem.problem_id,
            status=status,
            objective_values=objective_values,
            variable_values=variable_values,
            constraint_violations=violations,
            metadata=SolutionMetadata(
                algorithm=self.algorithm.value,
                iterations=nodes,
                runtime=runtime,
                convergence_history=history,
                algorithm_specific={
                    "value_ordering": params.value_ordering,
                    "exhaustive": params.exhaustive,
                    **extra,
                },
            ),
            sensitivity=sensitivity,
        )
        return solution
