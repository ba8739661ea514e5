"""Vehicle routing: Clarke-Wright savings construction plus local search."""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..exceptions import ProblemValidationError
from ..models.problem import Algorithm, Problem, RoutingParameters
from ..models.routing import RouteOptimizationProblem, TimeWindow, Vehicle, WindowType
from ..models.solution import (
    ConstraintViolation,
    ConvergencePoint,
    OptimizationSolution,
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


@dataclass
class RouteEvaluation:
    """Timing and cost of one vehicle driving one route."""

    feasible: bool
    distance: float = 0.0
    duration: float = 0.0
    cost: float = 0.0
    load: float = 0.0
    starts: list[float] = field(default_factory=list)
    reason: str = ""


class RoutingNetwork:
    """Precomputed matrices, loads, skills and window groups (index 0 is the depot)."""

    def __init__(self, problem: RouteOptimizationProblem, params: RoutingParameters):
        self.problem = problem
        self.distance = problem.resolved_distance_matrix()
        self.time = problem.resolved_time_matrix(params.average_speed)
        self.nodes = problem.nodes
        self.customers = list(range(1, len(self.nodes)))
        self.load = [0.0] * len(self.nodes)
        self.skills: list[set[str]] = [set() for _ in self.nodes]
        self.windows: list[list[list[TimeWindow]]] = [[] for _ in self.nodes]
        for index in self.customers:
            location = self.nodes[index]
            demands = problem.demands_at(location.location_id)
            self.load[index] = sum(demand.quantity for demand in demands)
            for demand in demands:
                self.skills[index].update(demand.skills)
            groups = [location.time_windows] + [demand.time_windows for demand in demands]
            self.windows[index] = [group for group in groups if group]

    @staticmethod
    def _allowed(group: list[TimeWindow], moment: float) -> bool:
        open_windows = [w for w in group if w.type != WindowType.FORBIDDEN]
        if open_windows and not any(w.contains(moment) for w in open_windows):
            return False
        return not any(w.blocks(moment) for w in group)

    def earliest_start(self, index: int, arrival: float) -> Optional[float]:
        """First moment at or after arrival that every window group allows."""
        groups = self.windows[index]
        if not groups:
            return arrival
        moments = {arrival}
        for group in groups:
            for window in group:
                if window.start >= arrival:
                    moments.add(window.start)
                if window.type == WindowType.FORBIDDEN and window.end >= arrival:
                    moments.add(window.end)
        for moment in sorted(moments):
            if all(self._allowed(group, moment) for group in groups):
                return moment
        return None

    def evaluate(self, route: list[int], vehicle: Vehicle) -> RouteEvaluation:
        """Evaluate a route for a vehicle, trying each of its shifts in turn."""
        if not route:
            return RouteEvaluation(feasible=True)
        load = sum(self.load[i] for i in route)
        if load > vehicle.capacity + _EPSILON:
            return RouteEvaluation(feasible=False, load=load, reason="capacity")
        required = set().union(*(self.skills[i] for i in route))
        if not required.issubset(vehicle.skills):
            return RouteEvaluation(feasible=False, load=load, reason="skills")

        distance = sum(self.distance[a][b] for a, b in zip([0, *route], [*route, 0]))
        if vehicle.max_distance is not None and distance > vehicle.max_distance + _EPSILON:
            return RouteEvaluation(feasible=False, load=load, reason="max_distance")

        reason = "time_windows"
        for shift_start, shift_end in vehicle.shifts():
            clock, previous, starts = shift_start, 0, []
            for index in route:
                start = self.earliest_start(index, clock + self.time[previous][index])
                if start is None:
                    break
                starts.append(start)
                clock = start + self.nodes[index].service_time
                previous = index
            else:
                end = clock + self.time[previous][0]
                duration = end - shift_start
                if end > shift_end + _EPSILON:
                    reason = "shift"
                    continue
                if vehicle.max_time is not None and duration > vehicle.max_time + _EPSILON:
                    reason = "max_time"
                    continue
                overtime = 0.0
                if vehicle.regular_time is not None:
                    overtime = max(0.0, duration - vehicle.regular_time)
                cost = (
                    vehicle.cost.fixed
                    + vehicle.cost.per_distance * distance
                    + vehicle.cost.per_time * duration
                    + vehicle.cost.overtime * overtime
                )
                return RouteEvaluation(
                    feasible=True,
                    distance=distance,
                    duration=duration,
                    cost=cost,
                    load=load,
                    starts=starts,
                )
        return RouteEvaluation(feasible=False, load=load, reason=reason)


class RoutingSolver(BaseSolver):
    """Clarke-Wright savings construction refined by local search.

    Routes are merged by descending savings while some vehicle can still
    drive the merged route, then assigned to vehicles (largest load first,
    cheapest feasible vehicle). Stops left over are placed by cheapest
    insertion. Local search applies 2-opt, relocate and swap moves, taking
    the first move that improves the weighted objective (then the remaining
    objectives by priority) until none does. Time windows, capacity,
    distance and time limits are never violated by an accepted move.
    """

    algorithm = Algorithm.ROUTING
    parameters_model = RoutingParameters

    def get_solver_info(self) -> Dict[str, Any]:
        return {
            "name": self.algorithm.value,
            "description": "Clarke-Wright savings with 2-opt, relocate and swap local search",
            "capabilities": ["route_optimization", "time_windows", "capacity", "heterogeneous_fleet"],
            "stochastic": False,
        }

    # Plan bookkeeping

    def _metrics(self, network, plan, evaluations, unserved) -> dict[str, float]:
        return {
            "total_distance": sum(e.distance for e in evaluations),
            "total_time": sum(e.duration for e in evaluations),
            "total_cost": sum(e.cost for e in evaluations),
            "vehicles_used": float(sum(1 for route in plan if route)),
            "unserved_demand": sum(network.load[i] for i in unserved),
        }

    def _key(self, metrics, objectives: ObjectiveEvaluator, problem: Problem):
        values = objectives.evaluate(metrics)
        ordered = sorted(problem.objectives, key=lambda objective: objective.priority)
        return (objectives.cost(values), *(-o.sense * values[o.name] for o in ordered))

    @staticmethod
    def _better(candidate, current) -> bool:
        """Lexicographic comparison that ignores differences below epsilon."""
        for new, old in zip(candidate, current):
            if new < old - _EPSILON:
                return True
            if new > old + _EPSILON:
                return False
        return False

    # Construction

    def _savings_routes(self, network: RoutingNetwork, vehicles, servable) -> list[list[int]]:
        routes = {i: [i] for i in servable}
        owner = {i: i for i in servable}
        d = network.distance
        savings = sorted(
            (
                (d[i][0] + d[0][j] - d[i][j], i, j)
                for i in servable
                for j in servable
                if i != j
            ),
            key=lambda item: (-item[0], item[1], item[2]),
        )
        for saving, i, j in savings:
            if saving <= _EPSILON:
                break
            first, second = owner[i], owner[j]
            if first == second:
                continue
            head, tail = routes[first], routes[second]
            if head[-1] != i or tail[0] != j:
                continue
            merged = head + tail
            if any(network.evaluate(merged, vehicle).feasible for vehicle in vehicles):
                routes[first] = merged
                del routes[second]
                for stop in tail:
                    owner[stop] = first
        return list(routes.values())

    def _assign(self, network, vehicles, routes):
        """Give each route the cheapest unused vehicle that can drive it."""
        plan: list[list[int]] = [[] for _ in vehicles]
        leftovers: list[int] = []
        for route in sorted(routes, key=lambda r: (-sum(network.load[i] for i in r), r[0])):
            best = None
            for v, vehicle in enumerate(vehicles):
                if plan[v]:
                    continue
                evaluation = network.evaluate(route, vehicle)
                if evaluation.feasible and (best is None or evaluation.cost < best[0]):
                    best = (evaluation.cost, v)
            if best is None:
                leftovers.extend(route)
            else:
                plan[best[1]] = route
        return plan, leftovers

    def _insert(self, network, vehicles, plan, evaluations, customer) -> bool:
        """Cheapest feasible insertion of one stop; False if nowhere fits."""
        best = None
        for v, vehicle in enumerate(vehicles):
            route = plan[v]
            for position in range(len(route) + 1):
                candidate = route[:position] + [customer] + route[position:]
                evaluation = network.evaluate(candidate, vehicle)
                if not evaluation.feasible:
                    continue
                delta = (
                    evaluation.cost - evaluations[v].cost,
                    evaluation.distance - evaluations[v].distance,
                )
                if best is None or delta < best[0]:
                    best = (delta, v, candidate, evaluation)
        if best is None:
            return False
        _, v, candidate, evaluation = best
        plan[v] = candidate
        evaluations[v] = evaluation
        return True

    # Local search

    def _moves(self, plan):
        """Candidate plans: 2-opt within routes, then relocate, then swap."""
        for v, route in enumerate(plan):
            for i in range(len(route) - 1):
                for j in range(i + 1, len(route)):
                    yield {v: route[:i] + route[i:j + 1][::-1] + route[j + 1:]}
        for a, source in enumerate(plan):
            for i, customer in enumerate(source):
                remaining = source[:i] + source[i + 1:]
                for b, target in enumerate(plan):
                    base = remaining if a == b else target
                    for position in range(len(base) + 1):
                        moved = base[:position] + [customer] + base[position:]
                        if a == b:
                            if moved != source:
                                yield {a: moved}
                        else:
                            yield {a: remaining, b: moved}
        for a in range(len(plan)):
            for b in range(a + 1, len(plan)):
                for i, first in enumerate(plan[a]):
                    for j, second in enumerate(plan[b]):
                        route_a = plan[a][:i] + [second] + plan[a][i + 1:]
                        route_b = plan[b][:j] + [first] + plan[b][j + 1:]
                        yield {a: route_a, b: route_b}

    def _improve(self, network, vehicles, plan, evaluations, unserved, objectives, problem) -> bool:
        current = self._key(
            self._metrics(network, plan, evaluations, unserved), objectives, problem
        )
        for move in self._moves(plan):
            trial_evaluations = list(evaluations)
            trial_plan = list(plan)
            feasible = True
            for v, route in move.items():
                evaluation = network.evaluate(route, vehicles[v])
                if not evaluation.feasible:
                    feasible = False
                    break
                trial_plan[v] = route
                trial_evaluations[v] = evaluation
            if not feasible:
                continue
            key = self._key(
                self._metrics(network, trial_plan, trial_evaluations, unserved), objectives, problem
            )
            if self._better(key, current):
                plan[:] = trial_plan
                evaluations[:] = trial_evaluations
                return True
        return False

    # Solve

    def solve(
        self, problem: Problem, cancel_event: Optional[threading.Event] = None
    ) -> OptimizationSolution:
        if not isinstance(problem, RouteOptimizationProblem):
            raise ProblemValidationError("routing needs a RouteOptimizationProblem")
        params = self.resolve_parameters(problem)
        logger.info(
            f"Solving route optimization {problem.problem_id}: "
            f"{len(problem.vehicles)} vehicles, {len(problem.locations)} locations"
        )
        budget = self.budget(params, cancel_event)
        if budget.cancelled:
            return self._log_finish(
                OptimizationSolution(
                    problem_id=problem.problem_id,
                    status=SolutionStatus.CANCELLED,
                    metadata=SolutionMetadata(
                        algorithm=self.algorithm.value, algorithm_specific={"cancelled": True}
                    ),
                )
            )

        network = RoutingNetwork(problem, params)
        vehicles = problem.vehicles
        objectives = ObjectiveEvaluator(problem.objectives)

        servable, unserved = [], []
        for customer in network.customers:
            if any(network.evaluate([customer], vehicle).feasible for vehicle in vehicles):
                servable.append(customer)
            else:
                unserved.append(customer)

        routes = self._savings_routes(network, vehicles, servable)
        plan, leftovers = self._assign(network, vehicles, routes)
        evaluations = [network.evaluate(route, vehicle) for route, vehicle in zip(plan, vehicles)]
        for customer in sorted(leftovers, key=lambda i: (-network.load[i], i)):
            if not self._insert(network, vehicles, plan, evaluations, customer):
                unserved.append(customer)
        logger.debug(
            f"Savings construction: {sum(1 for r in plan if r)} routes, {len(unserved)} unserved"
        )

        history: list[ConvergencePoint] = []
        iterations = 0
        stop_status = None
        cancelled = False

        def record():
            metrics = self._metrics(network, plan, evaluations, unserved)
            history.append(
                ConvergencePoint(
                    iteration=iterations,
                    objective_value=objectives.cost(objectives.evaluate(metrics)),
                    constraint_violation=metrics["unserved_demand"],
                    elapsed=budget.elapsed,
                )
            )

        record()
        if params.local_search:
            while True:
                if budget.cancelled:
                    cancelled = True
                    break
                stop_status = budget.exhausted(iterations)
                if stop_status is not None:
                    break
                improved = self._improve(
                    network, vehicles, plan, evaluations, unserved, objectives, problem
                )
                iterations += 1
                if not improved:
                    break
                record()

        return self._log_finish(
            self._build_solution(
                problem, params, network, plan, evaluations, unserved, history,
                iterations, budget.elapsed, stop_status, cancelled,
            )
        )

    def _build_solution(
        self, problem, params, network, plan, evaluations, unserved, history,
        iterations, runtime, stop_status, cancelled,
    ) -> OptimizationSolution:
        metrics = self._metrics(network, plan, evaluations, unserved)
        objectives = ObjectiveEvaluator(problem.objectives)
        objective_values = {**metrics, **objectives.evaluate(metrics)}

        violations = [
            ConstraintViolation(
                constraint_id=network.nodes[i].location_id,
                violation=network.load[i] or 1.0,
                severity=ViolationSeverity.CRITICAL,
                message="no vehicle can serve this location within its limits and time windows",
            )
            for i in sorted(unserved)
        ]
        evaluator = ConstraintEvaluator(params.tolerance)
        violations.extend(evaluator.violations(metrics, problem.constraints))

        variable_values: dict[str, float | str] = {}
        routes = []
        for route, vehicle, evaluation in zip(plan, problem.vehicles, evaluations):
            if not route:
                continue
            stops = [network.nodes[i].location_id for i in route]
            for position, (location_id, start) in enumerate(zip(stops, evaluation.starts), 1):
                variable_values[f"stop_{location_id}_sequence"] = float(position)
                variable_values[f"stop_{location_id}_start"] = start
                variable_values[f"stop_{location_id}_vehicle"] = vehicle.vehicle_id
            routes.append(
                {
                    "vehicle_id": vehicle.vehicle_id,
                    "stops": stops,
                    "starts": evaluation.starts,
                    "load": evaluation.load,
                    "distance": evaluation.distance,
                    "duration": evaluation.duration,
                    "cost": evaluation.cost,
                }
            )

        if violations:
            status = SolutionStatus.INFEASIBLE
        elif cancelled:
            status = SolutionStatus.ITERATION_LIMIT
        else:
            status = stop_status or SolutionStatus.FEASIBLE

        extra: Dict[str, Any] = {
            "routes": routes,
            "local_search": params.local_search,
            "unserved_locations": [network.nodes[i].location_id for i in sorted(unserved)],
        }
        if cancelled:
            extra["cancelled"] = True

        sensitivity = metric_sensitivity(problem, metrics, evaluator)

        return OptimizationSolution(
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
