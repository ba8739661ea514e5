"""Tests for the routing solver."""

import threading

import pytest

from opt_engine.exceptions import ProblemValidationError
from opt_engine.models.expressions import var
from opt_engine.models.problem import Constraint, RoutingParameters
from opt_engine.models.routing import Coordinates, Location, RouteOptimizationProblem, Vehicle, VehicleCost
from opt_engine.models.solution import SolutionStatus
from opt_engine.solvers.routing import RoutingSolver
from fixtures.sample_problems import (
    line_route_problem,
    minimize_x_at_least_five,
    window_route_problem,
)


def _vans(count, capacity=5.0, **kwargs):
    return [
        Vehicle(vehicle_id=f"van{i}", capacity=capacity, cost=VehicleCost(per_distance=1.0), **kwargs)
        for i in range(1, count + 1)
    ]


class TestRoutingSolver:
    """Test cases for RoutingSolver."""

    @pytest.fixture
    def solver(self):
        return RoutingSolver({"time_limit": 30})

    def test_single_vehicle_visits_everyone(self, solver):
        solution = solver.solve(line_route_problem())

        assert solution.status == SolutionStatus.FEASIBLE
        assert solution.objective_values["total_distance"] == pytest.approx(6.0)
        assert solution.objective_values["total_cost"] == pytest.approx(6.0)
        assert solution.objective_values["vehicles_used"] == 1.0
        assert solution.objective_values["unserved_demand"] == 0.0

        (route,) = solution.metadata.algorithm_specific["routes"]
        assert route["vehicle_id"] == "truck"
        assert sorted(route["stops"]) == ["A", "B", "C"]
        assert route["load"] == pytest.approx(9.0)
        assert solution.variable_values["stop_A_vehicle"] == "truck"

    def test_capacity_splits_routes(self, solver):
        solution = solver.solve(line_route_problem(vehicles=_vans(3)))

        assert solution.status == SolutionStatus.FEASIBLE
        assert solution.objective_values["vehicles_used"] == 3.0
        assert solution.objective_values["total_distance"] == pytest.approx(12.0)
        for route in solution.metadata.algorithm_specific["routes"]:
            assert route["load"] <= 5.0

    def test_not_enough_vehicles_leaves_stop_unserved(self, solver):
        solution = solver.solve(line_route_problem(vehicles=_vans(2)))

        assert solution.status == SolutionStatus.INFEASIBLE
        assert solution.metadata.algorithm_specific["unserved_locations"] == ["C"]
        assert [v.constraint_id for v in solution.constraint_violations] == ["C"]
        assert solution.objective_values["unserved_demand"] == pytest.approx(3.0)
        assert "stop_C_vehicle" not in solution.variable_values

    def test_time_windows(self, solver):
        solution = solver.solve(window_route_problem())
        values = solution.variable_values

        assert solution.status == SolutionStatus.FEASIBLE
        assert values["stop_A_start"] >= 5.0
        assert 10.0 <= values["stop_B_start"] <= 12.0

    def test_max_distance(self, solver):
        solution = solver.solve(line_route_problem(vehicles=_vans(3, capacity=10.0, max_distance=4.0)))

        assert solution.status == SolutionStatus.INFEASIBLE
        assert solution.metadata.algorithm_specific["unserved_locations"] == ["C"]
        for route in solution.metadata.algorithm_specific["routes"]:
            assert route["distance"] <= 4.0

    def test_required_skills(self, solver):
        vehicles = [
            Vehicle(vehicle_id="truck", capacity=10.0, cost=VehicleCost(per_distance=1.0)),
            Vehicle(vehicle_id="cold", capacity=10.0, cost=VehicleCost(per_distance=1.0),
                    skills=["refrigerated"]),
        ]
        problem = line_route_problem(vehicles=vehicles)
        problem.demands[2] = problem.demands[2].model_copy(update={"skills": ["refrigerated"]})
        solution = solver.solve(problem)

        assert solution.status == SolutionStatus.FEASIBLE
        assert solution.variable_values["stop_C_vehicle"] == "cold"

    def test_overtime_is_charged(self, solver):
        vehicle = Vehicle(
            vehicle_id="truck", capacity=10.0, regular_time=4.0,
            cost=VehicleCost(per_distance=1.0, overtime=10.0),
        )
        solution = solver.solve(line_route_problem(vehicles=[vehicle]))

        assert solution.objective_values["total_time"] == pytest.approx(6.0)
        assert solution.objective_values["total_cost"] == pytest.approx(26.0)

    def test_metric_constraint_violation(self, solver):
        problem = line_route_problem(
            constraints=[
                Constraint(name="short", constraint_id="short", value=3.0,
                           expression=var("total_distance"))
            ]
        )
        solution = solver.solve(problem)

        assert solution.status == SolutionStatus.INFEASIBLE
        assert [v.constraint_id for v in solution.constraint_violations] == ["short"]
        (sensitivity,) = solution.sensitivity.constraint_sensitivity
        assert sensitivity.shadow_price == 0.0
        assert sensitivity.slack == pytest.approx(-3.0)

    def test_local_search_never_hurts(self, solver):
        vehicles = _vans(3)
        with_search = solver.solve(line_route_problem(vehicles=vehicles))
        without = solver.solve(
            line_route_problem(vehicles=vehicles, parameters=RoutingParameters(local_search=False))
        )

        assert without.metadata.iterations == 0
        assert without.metadata.algorithm_specific["local_search"] is False
        assert with_search.objective_values["total_cost"] <= without.objective_values["total_cost"]

    def test_coordinates_without_matrix(self, solver):
        problem = RouteOptimizationProblem(
            name="geo",
            depot=Location(location_id="depot", coordinates=Coordinates(lat=35.68, lng=139.77)),
            locations=[
                Location(location_id="yokohama", coordinates=Coordinates(lat=35.44, lng=139.64)),
            ],
            vehicles=[Vehicle(vehicle_id="truck", capacity=1.0, cost=VehicleCost(per_distance=1.0))],
        )
        solution = solver.solve(problem)

        assert solution.status == SolutionStatus.FEASIBLE
        assert 50.0 < solution.objective_values["total_distance"] < 70.0

    def test_cancelled_before_start(self, solver):
        event = threading.Event()
        event.set()
        solution = solver.solve(line_route_problem(), cancel_event=event)
        assert solution.status == SolutionStatus.CANCELLED

    def test_rejects_plain_problems(self, solver):
        with pytest.raises(ProblemValidationError):
            solver.solve(minimize_x_at_least_five())
