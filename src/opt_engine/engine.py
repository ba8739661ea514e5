"""Optimization engine: validates problems and dispatches them to solvers."""

import threading
from collections import Counter
from collections.abc import Callable
from typing import Any, Dict, Optional

from .exceptions import OptimizationError, ProblemValidationError, StorageError
from .models.allocation import AllocationDemand, AllocationResource
from .models.problem import Algorithm, Problem, ProblemStatus, ProblemType
from .models.routing import RouteOptimizationProblem
from .models.scheduling import SchedulingProblem
from .models.solution import OptimizationSolution
from .solvers.base import SolverError
from .solvers.factory import SolverFactory
from .solvers.linear_programming import LinearProgrammingSolver
from .storage.result_store import ResultStore, create_result_store
from .utils.config_manager import ConfigManager
from .utils.logger import get_logger
from .utils.problem_validator import ProblemValidator

logger = get_logger(__name__)

CompletionCallback = Callable[[OptimizationSolution], None]

# Problem types without an entry here fall back to the configured default
_STRATEGY_BY_TYPE = {
    ProblemType.CONSTRAINT_SATISFACTION: Algorithm.BACKTRACKING,
    ProblemType.MULTI_OBJECTIVE: Algorithm.PARETO,
    ProblemType.RESOURCE_ALLOCATION: Algorithm.LINEAR_PROGRAMMING,
    ProblemType.ROUTE_OPTIMIZATION: Algorithm.ROUTING,
    ProblemType.SCHEDULING: Algorithm.SCHEDULING,
}

_SPECIALIZED = {
    Algorithm.ROUTING: RouteOptimizationProblem,
    Algorithm.SCHEDULING: SchedulingProblem,
}


class OptimizationEngine:
    """Entry point for solving problems.

    A solve validates the problem, picks a strategy (explicitly, from the
    problem's parameters, or by problem type), runs it, hands the solution
    to the result store and finally calls the optional completion callback.
    Store and callback failures are logged, never raised.
    """

    def __init__(
        self,
        config_manager: Optional[ConfigManager] = None,
        result_store: Optional[ResultStore] = None,
    ):
        """Initialize the engine.

        Args:
            config_manager: Configuration source. If None, loads the defaults.
            result_store: Where solutions are persisted. If None, built from
                the ``storage`` configuration section.
        """
        self.config_manager = config_manager or ConfigManager()
        self.config = self.config_manager.get_config()
        self.result_store = (
            result_store if result_store is not None else create_result_store(self.config.storage)
        )
        validation = self.config.validation
        self.validator = ProblemValidator(
            max_variables=validation.max_variables,
            max_constraints=validation.max_constraints,
            require_nonnegative_weights=validation.require_nonnegative_weights,
        )

    def select_algorithm(self, problem: Problem, algorithm: Optional[str] = None) -> Algorithm:
        """Choose the strategy for a problem.

        Args:
            problem: Problem to solve
            algorithm: Explicit choice overriding everything else

        Returns:
            Selected algorithm

        Raises:
            ProblemValidationError: If the choice does not fit the problem
        """
        if algorithm is not None:
            try:
                selected = Algorithm(algorithm.lower())
            except ValueError as e:
                available = ", ".join(SolverFactory.get_available_solvers())
                raise ProblemValidationError(
                    f"unknown algorithm '{algorithm}' (available: {available})"
                ) from e
        elif problem.parameters is not None:
            selected = Algorithm(problem.parameters.algorithm)
        elif problem.problem_type in _STRATEGY_BY_TYPE:
            selected = _STRATEGY_BY_TYPE[problem.problem_type]
        else:
            selected = Algorithm(self.config.solvers.default)

        required = _SPECIALIZED.get(selected)
        if required is not None and not isinstance(problem, required):
            raise ProblemValidationError(
                f"{selected.value} needs a {required.__name__}, got {type(problem).__name__}"
            )
        for strategy, model in _SPECIALIZED.items():
            if isinstance(problem, model) and selected != strategy:
                raise ProblemValidationError(
                    f"{type(problem).__name__} can only be solved with {strategy.value}, "
                    f"not {selected.value}"
                )
        return selected

    def solve(
        self,
        problem: Problem,
        algorithm: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        on_complete: Optional[CompletionCallback] = None,
    ) -> OptimizationSolution:
        """Validate, solve, persist and notify.

        Args:
            problem: Problem to solve
            algorithm: Optional explicit strategy name
            cancel_event: Optional cooperative cancellation flag
            on_complete: Optional callback receiving the solution

        Returns:
            Solution; infeasibility and budget exhaustion are statuses

        Raises:
            ProblemValidationError: If the problem is malformed
            SolverError: If the strategy fails unexpectedly
        """
        self.validator.validate(problem)
        selected = self.select_algorithm(problem, algorithm)
        solver = SolverFactory.create_solver(
            selected.value, self.config_manager.solver_config(selected.value)
        )
        solution = self._run(problem, lambda: solver.solve(problem, cancel_event))
        self._finish(solution, on_complete)
        return solution

    def solve_allocation(
        self,
        problem: Problem,
        resources: list[AllocationResource],
        demands: list[AllocationDemand],
        cancel_event: Optional[threading.Event] = None,
        on_complete: Optional[CompletionCallback] = None,
    ) -> OptimizationSolution:
        """Allocate resources to demands at minimum cost with the LP strategy.

        Args:
            problem: Problem carrying identity, parameters and extra linear rows
            resources: Resources with capacity and unit cost
            demands: Demands with quantity and required skills
            cancel_event: Optional cooperative cancellation flag
            on_complete: Optional callback receiving the solution

        Returns:
            Solution with allocations in ``algorithm_specific``

        Raises:
            ProblemValidationError: If resource or demand ids repeat
            SolverError: If the LP backend fails
        """
        issues = []
        for label, ids in (
            ("resource id", [resource.resource_id for resource in resources]),
            ("demand id", [demand.demand_id for demand in demands]),
        ):
            issues.extend(f"duplicate {label} '{i}'" for i, n in Counter(ids).items() if n > 1)
        if issues:
            raise ProblemValidationError(issues)

        algorithm = Algorithm.LINEAR_PROGRAMMING.value
        solver = LinearProgrammingSolver(self.config_manager.solver_config(algorithm))
        solution = self._run(
            problem, lambda: solver.solve_allocation(problem, resources, demands, cancel_event)
        )
        self._finish(solution, on_complete)
        return solution

    def _run(self, problem: Problem, action: Callable[[], OptimizationSolution]) -> OptimizationSolution:
        track = problem.status == ProblemStatus.PENDING
        if track:
            problem.mark(ProblemStatus.RUNNING)
        try:
            solution = action()
        except OptimizationError:
            if track:
                problem.mark(ProblemStatus.FAILED)
            raise
        except Exception as e:
            if track:
                problem.mark(ProblemStatus.FAILED)
            logger.exception(f"Unexpected failure while solving {problem.problem_id}")
            raise SolverError(f"Solving problem {problem.problem_id} failed: {e}") from e
        if track:
            problem.mark(ProblemStatus.COMPLETED)
        return solution

    def _finish(
        self, solution: OptimizationSolution, on_complete: Optional[CompletionCallback]
    ) -> None:
        if self.result_store is not None:
            try:
                self.result_store.save(solution)
            except StorageError as e:
                logger.error(f"Failed to persist solution {solution.solution_id}: {e}")
            except Exception as e:
                logger.error(f"Result store raised while saving {solution.solution_id}: {e}")
        if on_complete is not None:
            try:
                on_complete(solution)
            except Exception as e:
                logger.warning(f"Completion callback failed for {solution.solution_id}: {e}")

    def load_solution(self, problem_id: str) -> Optional[OptimizationSolution]:
        """Latest stored solution for a problem, or None without a store."""
        if self.result_store is None:
            return None
        return self.result_store.load(problem_id)

    def get_solver_info(self) -> Dict[str, Any]:
        """Describe every registered strategy."""
        return {
            "default": self.config.solvers.default,
            "solvers": {
                name: SolverFactory.create_solver(name).get_solver_info()
                for name in SolverFactory.get_available_solvers()
            },
        }
