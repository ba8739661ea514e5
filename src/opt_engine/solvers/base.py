"""Base solver abstraction layer."""

import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..exceptions import OptimizationError
from ..models.problem import Algorithm, Problem, SolverParameters
from ..models.solution import OptimizationSolution, SolutionStatus
from ..utils.logger import get_logger

logger = get_logger(__name__)


class SolverError(OptimizationError):
    """Base class for solver-related errors."""
    pass


class SearchBudget:
    """Cooperative stopping conditions for one solve.

    Limits are only checked at iteration boundaries, so a solve may overrun
    its time limit by the duration of one iteration.
    """

    def __init__(
        self,
        max_iterations: int,
        time_limit: Optional[float],
        cancel_event: Optional[threading.Event] = None,
    ):
        self.max_iterations = max_iterations
        self.time_limit = time_limit
        self.cancel_event = cancel_event
        self.started = time.perf_counter()

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self.started

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def time_exceeded(self) -> bool:
        return self.time_limit is not None and self.elapsed >= self.time_limit

    def iterations_exceeded(self, iterations: int) -> bool:
        return iterations >= self.max_iterations

    def exhausted(self, iterations: int) -> Optional[SolutionStatus]:
        """Status to report if a limit has been reached, otherwise None."""
        if self.iterations_exceeded(iterations):
            return SolutionStatus.ITERATION_LIMIT
        if self.time_exceeded():
            return SolutionStatus.TIME_LIMIT
        return None


class BaseSolver(ABC):
    """Abstract base class for optimization solvers."""

    algorithm: Algorithm
    parameters_model: type[SolverParameters] = SolverParameters

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """Initialize the solver.

        Args:
            config: Solver configuration dictionary with ``time_limit``,
                ``tolerance`` and algorithm ``parameters`` overrides
        """
        config = config or {}
        self.config = config
        self.time_limit = config.get("time_limit", 300.0)
        self.tolerance = config.get("tolerance", 1e-6)
        self.parameters = dict(config.get("parameters", {}))

    @abstractmethod
    def solve(
        self, problem: Problem, cancel_event: Optional[threading.Event] = None
    ) -> OptimizationSolution:
        """Solve an optimization problem.

        Args:
            problem: Validated problem
            cancel_event: Optional flag checked once per iteration

        Returns:
            Optimization solution

        Raises:
            SolverError: If solving fails unexpectedly
        """
        pass

    @abstractmethod
    def get_solver_info(self) -> Dict[str, Any]:
        """Get solver information.

        Returns:
            Dictionary with solver name, description, capabilities
        """
        pass

    def set_parameters(self, params: Dict[str, Any]) -> None:
        """Set solver parameters.

        Args:
            params: Parameter dictionary
        """
        self.parameters.update(params)

    def resolve_parameters(self, problem: Problem) -> SolverParameters:
        """Merge configured defaults with the parameters carried by the problem.

        Parameters of another algorithm only contribute their shared fields
        (limits, seed, convergence, parallelization, default bounds).
        """
        data: Dict[str, Any] = {"time_limit": self.time_limit, "tolerance": self.tolerance}
        data.update(self.parameters)
        given = problem.parameters
        if given is not None:
            if given.algorithm == self.algorithm.value:
                data.update(given.model_dump(exclude_unset=True))
            else:
                shared = set(SolverParameters.model_fields)
                data.update(given.model_dump(exclude_unset=True, include=shared))
        data["algorithm"] = self.algorithm.value
        return self.parameters_model.model_validate(data)

    def budget(
        self, params: SolverParameters, cancel_event: Optional[threading.Event] = None
    ) -> SearchBudget:
        return SearchBudget(params.max_iterations, params.time_limit, cancel_event)

    def _log_start(self, problem: Problem, params: SolverParameters) -> None:
        logger.info(
            f"Solving problem {problem.problem_id} ({problem.name}) with {self.algorithm.value}: "
            f"{len(problem.variables)} variables, {len(problem.constraints)} constraints, "
            f"{len(problem.objectives)} objectives, seed={params.seed}"
        )

    def _log_finish(self, solution: OptimizationSolution) -> OptimizationSolution:
        logger.info(
            f"Problem {solution.problem_id} finished with status {solution.status.value} "
            f"after {solution.metadata.iterations} iterations in {solution.metadata.runtime:.3f}s"
        )
        return solution

