"""Task scheduling with resource calendars and chronological backtracking."""

import heapq
import itertools
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..exceptions import ProblemValidationError
from ..models.problem import Algorithm, Problem, SchedulingParameters
from ..models.routing import WindowType
from ..models.scheduling import Resource, ResourceRequirement, SchedulingProblem, Task
from ..models.solution import (
    ConstraintViolation,
    ConvergencePoint,
    OptimizationSolution,
    SensitivityAnalysis,
    SolutionMetadata,
    SolutionStatus,
    ViolationSeverity,
)
from ..utils.evaluation import ConstraintEvaluator, ObjectiveEvaluator
from ..utils.logger import get_logger
from ..utils.sensitivity import metric_sensitivity
from .base import BaseSolver

logger = get_logger(__name__)

_EPSILON = 1e-9


@dataclass(frozen=True)
class Placement:
    """A task booked on a set of resources for [start, end)."""

    task_id: str
    start: float
    end: float
    resources: tuple[tuple[str, float], ...]
    cost: float
    preferred_miss: bool = False


class ResourceCalendar:
    """Bookings per resource and the capacity checks against them."""

    def __init__(self, resources: list[Resource], allow_sharing: bool):
        self.resources = {resource.resource_id: resource for resource in resources}
        self.allow_sharing = allow_sharing
        self.bookings: dict[str, list[Placement]] = defaultdict(list)

    def book(self, placement: Placement) -> None:
        for resource_id, _ in placement.resources:
            self.bookings[resource_id].append(placement)

    def release(self, placement: Placement) -> None:
        for resource_id, _ in placement.resources:
            self.bookings[resource_id].remove(placement)

    def capacity(self, resource_id: str, start: float, end: float) -> Optional[float]:
        """Capacity available for the whole interval, None if the resource is off."""
        resource = self.resources[resource_id]
        if not resource.availability:
            return resource.capacity
        for window in resource.availability:
            if window.start <= start + _EPSILON and end <= window.end + _EPSILON:
                return window.capacity
        return None

    def peak_usage(self, resource_id: str, start: float, end: float) -> float:
        overlapping = [
            (booking.start, booking.end, dict(booking.resources)[resource_id])
            for booking in self.bookings[resource_id]
            if booking.start < end - _EPSILON and booking.end > start + _EPSILON
        ]
        moments = {start} | {s for s, _, _ in overlapping if s > start}
        return max(
            (sum(q for s, e, q in overlapping if s <= t < e) for t in moments),
            default=0.0,
        )

    def fits(self, resource_id: str, quantity: float, start: float, end: float) -> bool:
        capacity = self.capacity(resource_id, start, end)
        if capacity is None:
            return False
        usage = self.peak_usage(resource_id, start, end)
        if not self.allow_sharing and usage > 0.0:
            return False
        return usage + quantity <= capacity + _EPSILON

    def release_points(self, resource_id: str) -> set[float]:
        """Moments where the usable capacity of a resource can grow."""
        points = {booking.end for booking in self.bookings[resource_id]}
        points.update(window.start for window in self.resources[resource_id].availability)
        return points

    def busy_time(self, resource_id: str) -> float:
        return sum(booking.end - booking.start for booking in self.bookings[resource_id])


class SchedulingSolver(BaseSolver):
    """Priority-guided constructive search with chronological backtracking.

    Tasks are taken in topological order (most urgent first among the ready
    ones). For each task every combination of candidate resources gets its
    earliest feasible start; the options are tried by finish time, then
    cost, then the scheduling preferences. A task with no option sends the
    search back to the previous task's next option until the budget runs
    out.
    """

    algorithm = Algorithm.SCHEDULING
    parameters_model = SchedulingParameters

    def get_solver_info(self) -> Dict[str, Any]:
        return {
            "name": self.algorithm.value,
            "description": "Constructive scheduling with resource calendars and backtracking",
            "capabilities": ["scheduling", "dependencies", "resource_capacity", "time_windows"],
            "stochastic": False,
        }

    def _topological_order(self, problem: SchedulingProblem) -> tuple[list[Task], list[Task]]:
        """Kahn's algorithm; returns (ordered tasks, tasks caught in cycles)."""
        index = {task.task_id: i for i, task in enumerate(problem.tasks)}
        indegree = {task.task_id: len(set(task.dependencies)) for task in problem.tasks}
        dependants = defaultdict(list)
        for task in problem.tasks:
            for dependency in set(task.dependencies):
                dependants[dependency].append(task)

        def key(task: Task):
            if problem.preferences.prioritize_urgent_tasks:
                return (-task.priority, index[task.task_id])
            return (index[task.task_id],)

        ready = [(key(task), task.task_id) for task in problem.tasks if indegree[task.task_id] == 0]
        heapq.heapify(ready)
        ordered = []
        while ready:
            _, task_id = heapq.heappop(ready)
            task = problem.task(task_id)
            ordered.append(task)
            for dependant in dependants[task_id]:
                indegree[dependant.task_id] -= 1
                if indegree[dependant.task_id] == 0:
                    heapq.heappush(ready, (key(dependant), dependant.task_id))
        placed = {task.task_id for task in ordered}
        return ordered, [task for task in problem.tasks if task.task_id not in placed]

    def _candidates(
        self, requirement: ResourceRequirement, problem: SchedulingProblem, params
    ) -> list[Resource]:
        matching = []
        for resource in problem.resources:
            if resource.type != requirement.resource_type and (
                resource.resource_id not in requirement.alternatives
            ):
                continue
            if problem.preferences.respect_skill_matching and not set(
                requirement.skills
            ).issubset(resource.skills):
                continue
            if resource.capacity + _EPSILON < requirement.quantity:
                continue
            matching.append(resource)
        matching.sort(key=lambda resource: resource.cost)
        return matching[: params.max_candidates]

    def _combinations(self, task: Task, problem: SchedulingProblem, params) -> list[dict[str, float]]:
        """Resource id -> quantity maps that can cover every requirement of the task."""
        pools = [self._candidates(r, problem, params) for r in task.resource_requirements]
        resources = {resource.resource_id: resource for resource in problem.resources}
        combinations = []
        for chosen in itertools.product(*pools):
            usage: dict[str, float] = defaultdict(float)
            for requirement, resource in zip(task.resource_requirements, chosen):
                usage[resource.resource_id] += requirement.quantity
            if any(resources[r].capacity + _EPSILON < q for r, q in usage.items()):
                continue
            if problem.preferences.respect_skill_matching and task.skills:
                covered = set().union(*(resource.skills for resource in chosen))
                if not set(task.skills).issubset(covered):
                    continue
            combinations.append(dict(usage))
        return combinations

    @staticmethod
    def _window_allows(task: Task, start: float, end: float) -> bool:
        required = task.windows_of(WindowType.REQUIRED)
        if required and not any(w.start <= start and end <= w.end for w in required):
            return False
        return not any(
            start < w.end and end > w.start for w in task.windows_of(WindowType.FORBIDDEN)
        )

    @staticmethod
    def _preferred_miss(task: Task, start: float, end: float) -> bool:
        preferred = task.windows_of(WindowType.PREFERRED)
        return bool(preferred) and not any(w.start <= start and end <= w.end for w in preferred)

    def _earliest_start(
        self, task: Task, usage: dict[str, float], ready: float, calendar, horizon
    ) -> Optional[float]:
        moments = {ready}
        for window in task.time_windows:
            moments.add(window.start if window.type != WindowType.FORBIDDEN else window.end)
        for resource_id in usage:
            moments.update(calendar.release_points(resource_id))
        for start in sorted(m for m in moments if m >= ready):
            end = start + task.duration
            if end > horizon.end + _EPSILON:
                break
            if not self._window_allows(task, start, end):
                continue
            if all(calendar.fits(r, q, start, end) for r, q in usage.items()):
                return start
        return None

    def _options(
        self, task: Task, problem: SchedulingProblem, params, calendar, finished: dict[str, float]
    ) -> list[Placement]:
        """Every feasible placement of a task, best first.

        Placements rank by finish time. Among equal finishes an enabled
        overtime preference, then an enabled workload preference, outranks
        cost; disabled preferences contribute nothing to the ranking.
        """
        ready = max([problem.time_horizon.start, *(finished[d] for d in task.dependencies)])
        preferences = problem.preferences
        resources = calendar.resources
        ranked = []
        for position, usage in enumerate(self._combinations(task, problem, params)):
            start = self._earliest_start(task, usage, ready, calendar, problem.time_horizon)
            if start is None:
                continue
            end = start + task.duration
            cost = sum(resources[r].cost * q * task.duration for r, q in usage.items())
            miss = self._preferred_miss(task, start, end)
            overtime = 0.0
            if preferences.minimize_overtime:
                for resource_id in usage:
                    regular = resources[resource_id].regular_time
                    if regular is not None:
                        busy = calendar.busy_time(resource_id)
                        overtime += max(0.0, busy + task.duration - regular) - max(0.0, busy - regular)
            load = 0.0
            if preferences.balance_workload and usage:
                load = max(calendar.busy_time(r) for r in usage) + task.duration
            placement = Placement(
                task_id=task.task_id,
                start=start,
                end=end,
                resources=tuple(sorted(usage.items())),
                cost=cost,
                preferred_miss=miss,
            )
            ranked.append(((end, overtime, load, cost, miss, position), placement))
        ranked.sort(key=lambda item: item[0])
        return [placement for _, placement in ranked]

    def _metrics(self, problem: SchedulingProblem, placements: list[Placement]) -> dict[str, float]:
        busy: dict[str, float] = {resource.resource_id: 0.0 for resource in problem.resources}
        for placement in placements:
            for resource_id, _ in placement.resources:
                busy[resource_id] += placement.end - placement.start
        overtime = sum(
            max(0.0, busy[resource.resource_id] - resource.regular_time)
            for resource in problem.resources
            if resource.regular_time is not None
        )
        return {
            "makespan": max((p.end for p in placements), default=problem.time_horizon.start)
            - problem.time_horizon.start,
            "total_cost": sum(p.cost for p in placements),
            "overtime": overtime,
            "workload_imbalance": max(busy.values()) - min(busy.values()) if len(busy) > 1 else 0.0,
            "preferred_window_misses": float(sum(1 for p in placements if p.preferred_miss)),
        }

    def _greedy(self, order, problem, params):
        """Place each task at its first option; report what cannot be placed."""
        calendar = ResourceCalendar(problem.resources, problem.preferences.allow_resource_sharing)
        finished: dict[str, float] = {}
        placements, violations = [], []
        for task in order:
            missing = [d for d in task.dependencies if d not in finished]
            if missing:
                violations.append(
                    ConstraintViolation(
                        constraint_id=task.task_id,
                        violation=1.0,
                        severity=ViolationSeverity.HIGH,
                        message=f"blocked by unscheduled prerequisites {sorted(set(missing))}",
                    )
                )
                continue
            options = self._options(task, problem, params, calendar, finished)
            if not options:
                violations.append(
                    ConstraintViolation(
                        constraint_id=task.task_id,
                        violation=1.0,
                        severity=ViolationSeverity.CRITICAL,
                        message="no resource combination satisfies skill, capacity and window constraints",
                    )
                )
                continue
            calendar.book(options[0])
            finished[task.task_id] = options[0].end
            placements.append(options[0])
        return placements, violations

    def solve(
        self, problem: Problem, cancel_event: Optional[threading.Event] = None
    ) -> OptimizationSolution:
        if not isinstance(problem, SchedulingProblem):
            raise ProblemValidationError("scheduling needs a SchedulingProblem")
        params = self.resolve_parameters(problem)
        logger.info(
            f"Solving scheduling problem {problem.problem_id}: "
            f"{len(problem.tasks)} tasks, {len(problem.resources)} resources"
        )
        budget = self.budget(params, cancel_event)
        if budget.cancelled:
            return self._log_finish(
                self._result(
                    problem, params, SolutionStatus.CANCELLED,
                    runtime=budget.elapsed, extra={"cancelled": True},
                )
            )

        order, cyclic = self._topological_order(problem)
        if cyclic:
            violations = [
                ConstraintViolation(
                    constraint_id=task.task_id,
                    violation=1.0,
                    severity=ViolationSeverity.CRITICAL,
                    message="task is part of (or waits on) a dependency cycle",
                )
                for task in cyclic
            ]
            logger.info(f"Dependency cycle among {[task.task_id for task in cyclic]}")
            return self._log_finish(
                self._result(
                    problem, params, SolutionStatus.INFEASIBLE,
                    violations=violations, runtime=budget.elapsed,
                )
            )

        evaluator = ConstraintEvaluator(params.tolerance)
        objectives = ObjectiveEvaluator(problem.objectives)
        calendar = ResourceCalendar(problem.resources, problem.preferences.allow_resource_sharing)
        finished: dict[str, float] = {}
        placements: list[Placement] = []
        options: list[list[Placement]] = []
        cursors: list[int] = []
        history: list[ConvergencePoint] = []
        fallback: Optional[list[Placement]] = None
        solution: Optional[list[Placement]] = None
        iterations = 0
        backtracks = 0
        stop_status = None
        cancelled = False

        while True:
            depth = len(placements)
            if depth == len(order):
                metrics = self._metrics(problem, placements)
                history.append(
                    ConvergencePoint(
                        iteration=iterations,
                        objective_value=objectives.cost(objectives.evaluate(metrics)),
                        constraint_violation=evaluator.total_violation(metrics, problem.constraints),
                        elapsed=budget.elapsed,
                    )
                )
                if evaluator.is_feasible(metrics, problem.constraints):
                    solution = list(placements)
                    break
                if fallback is None:
                    fallback = list(placements)
                depth -= 1
                calendar.release(placements.pop())
                del finished[order[depth].task_id]
                continue

            if depth == len(options):
                options.append(self._options(order[depth], problem, params, calendar, finished))
                cursors.append(0)

            if cursors[depth] >= len(options[depth]):
                options.pop()
                cursors.pop()
                if not placements:
                    break
                backtracks += 1
                calendar.release(placements.pop())
                del finished[order[depth - 1].task_id]
                continue

            if budget.cancelled:
                cancelled = True
                break
            stop_status = budget.exhausted(iterations)
            if stop_status is not None:
                break

            placement = options[depth][cursors[depth]]
            cursors[depth] += 1
            iterations += 1
            calendar.book(placement)
            finished[placement.task_id] = placement.end
            placements.append(placement)

        extra: Dict[str, Any] = {
            "topological_order": [task.task_id for task in order],
            "backtracks": backtracks,
        }
        violations: list[ConstraintViolation] = []
        if solution is not None:
            status = SolutionStatus.FEASIBLE
        elif fallback is not None:
            solution = fallback
            status = SolutionStatus.INFEASIBLE
        else:
            solution, violations = self._greedy(order, problem, params)
            if violations:
                if cancelled:
                    extra["cancelled"] = True
                    return self._log_finish(
                        self._result(
                            problem, params, SolutionStatus.CANCELLED,
                            iterations=iterations, runtime=budget.elapsed,
                            history=history, extra=extra,
                        )
                    )
                if stop_status is not None:
                    extra["budget_exhausted"] = True
                status = SolutionStatus.INFEASIBLE
            elif cancelled:
                extra["cancelled"] = True
                status = SolutionStatus.ITERATION_LIMIT
            else:
                status = stop_status or SolutionStatus.FEASIBLE

        metrics = self._metrics(problem, solution)
        violations.extend(evaluator.violations(metrics, problem.constraints))
        if violations:
            status = SolutionStatus.INFEASIBLE
        return self._log_finish(
            self._result(
                problem, params, status, solution, violations,
                iterations, budget.elapsed, history, extra,
            )
        )

    def _result(
        self,
        problem,
        params,
        status,
        placements=(),
        violations=(),
        iterations=0,
        runtime=0.0,
        history=(),
        extra=None,
    ) -> OptimizationSolution:
        extra = dict(extra or {})
        objective_values: dict[str, float] = {}
        variable_values: dict[str, float | str] = {}
        sensitivity = SensitivityAnalysis()
        if placements:
            metrics = self._metrics(problem, placements)
            objective_values = {**metrics, **ObjectiveEvaluator(problem.objectives).evaluate(metrics)}
            sensitivity = metric_sensitivity(problem, metrics, ConstraintEvaluator(params.tolerance))
            for placement in placements:
                variable_values[f"{placement.task_id}_start"] = placement.start
                variable_values[f"{placement.task_id}_end"] = placement.end
                variable_values[f"{placement.task_id}_resource"] = ",".join(
                    resource_id for resource_id, _ in placement.resources
                )
            extra["schedule"] = [
                {
                    "task_id": placement.task_id,
                    "start": placement.start,
                    "end": placement.end,
                    "resources": [
                        {"resource_id": resource_id, "quantity": quantity}
                        for resource_id, quantity in placement.resources
                    ],
                    "cost": placement.cost,
                }
                for placement in sorted(placements, key=lambda p: (p.start, p.task_id))
            ]

        solution = OptimizationSolution(
            problem_id=problem.problem_id,
            status=status,
            objective_values=objective_values,
            variable_values=variable_values,
            constraint_violations=violations,
            metadata=SolutionMetadata(
                algorithm=self.algorithm.value,
                iterations=iterations,
                runtime=runtime,
                convergence_history=history,
                algorithm_specific=extra,
            ),
            sensitivity=sensitivity,
        )
        return solution
