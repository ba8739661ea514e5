"""Tests for the linear programming solver and resource allocation."""

import math
import threading

import pytest

from opt_engine.exceptions import ProblemValidationError
from opt_engine.models.allocation import AllocationDemand, AllocationResource
from opt_engine.models.expressions import ComparisonOperator, var
from opt_engine.models.problem import (
    Constraint,
    LinearProgrammingParameters,
    Objective,
    ObjectiveDirection,
    Problem,
    ProblemType,
    Variable,
    VariableKind,
)
from opt_engine.models.solution import SolutionStatus
from opt_engine.solvers.linear_programming import LinearProgrammingSolver
from fixtures.sample_problems import allocation_example, knapsack, simple_lp


class TestLinearProgrammingSolver:
    """Test cases for LinearProgrammingSolver."""

    @pytest.fixture
    def solver(self):
        return LinearProgrammingSolver({"time_limit": 60})

    def test_solver_info(self, solver):
        info = solver.get_solver_info()
        assert info["name"] == "linear_programming"
        assert info["backend"] == "CBC"
        assert "duals" in info["capabilities"]

    def test_simple_lp(self, solver):
        solution = solver.solve(simple_lp())

        assert solution.status == SolutionStatus.OPTIMAL
        assert solution.objective_values["profit"] == pytest.approx(7.5)
        assert solution.variable_values["x"] == pytest.approx(2.5)
        assert solution.variable_values["y"] == pytest.approx(0.0)
        assert solution.constraint_violations == []
        assert solution.metadata.algorithm_specific["mixed_integer"] is False

    def test_simple_lp_sensitivity(self, solver):
        solution = solver.solve(simple_lp())
        by_id = {c.constraint_id: c for c in solution.sensitivity.constraint_sensitivity}

        assert by_id["c2"].slack == pytest.approx(0.0)
        # one more unit of c2 buys a quarter unit of x, worth 0.75 profit
        assert by_id["c2"].shadow_price == pytest.approx(-0.75)
        assert by_id["c1"].slack == pytest.approx(15.0)
        assert by_id["c1"].shadow_price == pytest.approx(0.0)
        assert by_id["c1"].allowable_decrease == pytest.approx(15.0)
        # maximized objectives are reported in minimization units
        assert solution.sensitivity.objective_sensitivity[0].shadow_price == pytest.approx(-7.5)

    def test_knapsack(self, solver):
        solution = solver.solve(knapsack())

        assert solution.status == SolutionStatus.OPTIMAL
        assert solution.objective_values["value"] == pytest.approx(220.0)
        assert solution.variable_values == {"item_0": 0.0, "item_1": 1.0, "item_2": 1.0}
        assert solution.metadata.algorithm_specific["mixed_integer"] is True

    def test_infeasible(self, solver):
        problem = Problem(
            name="infeasible",
            variables=[Variable(name="x", lower_bound=0.0, upper_bound=1.0)],
            objectives=[Objective(name="f", expression=var("x"))],
            constraints=[Constraint(name="c", operator=ComparisonOperator.GE, value=2.0,
                                    expression=var("x"))],
        )
        solution = solver.solve(problem)

        assert solution.status == SolutionStatus.INFEASIBLE
        assert solution.variable_values == {}

    def test_unbounded(self, solver):
        problem = Problem(
            name="unbounded",
            variables=[Variable(name="x", lower_bound=0.0)],
            objectives=[
                Objective(name="f", direction=ObjectiveDirection.MAXIMIZE, expression=var("x"))
            ],
        )
        solution = solver.solve(problem)

        # CBC reports some unbounded programs as infeasible
        assert solution.status in (SolutionStatus.UNBOUNDED, SolutionStatus.INFEASIBLE)
        assert not solution.is_feasible

    def test_strict_inequality_is_tightened(self, solver):
        problem = Problem(
            name="strict",
            variables=[Variable(name="x", lower_bound=0.0, upper_bound=10.0)],
            objectives=[Objective(name="f", direction=ObjectiveDirection.MAXIMIZE,
                                  expression=var("x"))],
            constraints=[Constraint(name="c", operator=ComparisonOperator.LT, value=4.0,
                                    tolerance=0.01, expression=var("x"))],
        )
        solution = solver.solve(problem)
        assert solution.variable_values["x"] == pytest.approx(3.99)

    def test_nonlinear_expression_is_rejected(self, solver):
        problem = Problem(
            name="nonlinear",
            variables=[Variable(name="x")],
            objectives=[Objective(name="f", expression=var("x") ** 2)],
        )
        with pytest.raises(ProblemValidationError, match="not a linear expression"):
            solver.solve(problem)

    def test_closures_are_rejected(self, solver):
        problem = Problem(
            name="closure",
            variables=[Variable(name="x")],
            objectives=[Objective(name="f", function=lambda v: v["x"])],
        )
        with pytest.raises(ProblemValidationError):
            solver.solve(problem)

    def test_categorical_variables_are_rejected(self, solver):
        problem = Problem(
            name="categorical",
            variables=[Variable(name="c", kind=VariableKind.CATEGORICAL, categories=["a", "b"])],
            objectives=[Objective(name="f", expression=var("c"))],
        )
        with pytest.raises(ProblemValidationError, match="categorical"):
            solver.solve(problem)

    def test_cancelled_before_start(self, solver):
        event = threading.Event()
        event.set()
        solution = solver.solve(simple_lp(), cancel_event=event)
        assert solution.status == SolutionStatus.CANCELLED


class TestResourceAllocation:
    """Test cases for LinearProgrammingSolver.solve_allocation."""

    @pytest.fixture
    def solver(self):
        return LinearProgrammingSolver({"time_limit": 60})

    def test_cheapest_resource_is_used_first(self, solver):
        problem, resources, demands = allocation_example()
        solution = solver.solve_allocation(problem, resources, demands)

        assert solution.status == SolutionStatus.OPTIMAL
        assert solution.objective_values["total_cost"] == pytest.approx(30.0)
        assert solution.variable_values["allocation_r1_d1"] == pytest.approx(5.0)
        assert solution.variable_values["allocation_r2_d1"] == pytest.approx(20.0)
        assert solution.objective_values["unmet_demand"] == 0.0

        allocations = {
            (a["resource_id"], a["demand_id"]): a["quantity"]
            for a in solution.metadata.algorithm_specific["allocations"]
        }
        assert allocations == {("r1", "d1"): pytest.approx(5.0), ("r2", "d1"): pytest.approx(20.0)}

    def test_allocation_sensitivity(self, solver):
        problem, resources, demands = allocation_example()
        solution = solver.solve_allocation(problem, resources, demands)
        by_id = {c.constraint_id: c for c in solution.sensitivity.constraint_sensitivity}

        assert by_id["capacity_r1"].slack == pytest.approx(5.0)
        assert by_id["capacity_r2"].slack == pytest.approx(0.0)
        assert by_id["capacity_r1"].shadow_price == pytest.approx(0.0)
        # a unit more of the cheap resource replaces a unit of the expensive one
        assert by_id["capacity_r2"].shadow_price == pytest.approx(-1.0)
        assert by_id["demand_d1"].shadow_price == pytest.approx(2.0)

    def test_shadow_price_matches_resolve(self, solver):
        """The capacity dual predicts the cost change of one more unit of capacity."""
        problem, resources, demands = allocation_example()
        base = solver.solve_allocation(problem, resources, demands)
        price = {
            c.constraint_id: c.shadow_price for c in base.sensitivity.constraint_sensitivity
        }["capacity_r2"]

        problem, resources, demands = allocation_example()
        resources[1] = AllocationResource(resource_id="r2", capacity=21.0, unit_cost=1.0)
        bigger = solver.solve_allocation(problem, resources, demands)

        change = bigger.objective_values["total_cost"] - base.objective_values["total_cost"]
        assert change == pytest.approx(-1.0)
        assert price == pytest.approx(change)

    def test_compatible_pairs_are_bounded_by_rows_only(self, solver):
        problem, resources, demands = allocation_example()
        solution = solver.solve_allocation(problem, resources, demands)
        r1_d1, r2_d1 = solution.sensitivity.variable_sensitivity[:2]

        assert r2_d1.allowable_increase == math.inf
        assert r1_d1.allowable_increase == math.inf
        assert r2_d1.allowable_decrease == pytest.approx(20.0)

    def test_insufficient_capacity(self, solver):
        problem, resources, _ = allocation_example()
        demands = [AllocationDemand(demand_id="d1", quantity=40.0)]
        solution = solver.solve_allocation(problem, resources, demands)

        assert solution.status == SolutionStatus.INFEASIBLE
        (violation,) = solution.constraint_violations
        assert violation.constraint_id == "total_capacity"
        assert violation.violation == pytest.approx(10.0)

    def test_partial_fulfilment(self, solver):
        problem, resources, _ = allocation_example()
        problem.parameters = LinearProgrammingParameters(allow_partial=True)
        demands = [AllocationDemand(demand_id="d1", quantity=40.0)]
        solution = solver.solve_allocation(problem, resources, demands)

        assert solution.status == SolutionStatus.OPTIMAL
        assert solution.objective_values["unmet_demand"] == pytest.approx(10.0)
        assert solution.metadata.algorithm_specific["unmet_demand"] == pytest.approx(10.0)

    def test_required_skills(self, solver):
        resources = [
            AllocationResource(resource_id="cold", capacity=10.0, unit_cost=5.0, skills=["refrigerated"]),
            AllocationResource(resource_id="dry", capacity=10.0, unit_cost=1.0),
        ]
        demands = [
            AllocationDemand(demand_id="ice", quantity=4.0, required_skills=["refrigerated"]),
            AllocationDemand(demand_id="rice", quantity=3.0),
        ]
        problem = Problem(name="skills", problem_type=ProblemType.RESOURCE_ALLOCATION)
        solution = solver.solve_allocation(problem, resources, demands)

        values = solution.variable_values
        assert values["allocation_dry_ice"] == 0.0
        assert values["allocation_cold_ice"] == pytest.approx(4.0)
        assert values["allocation_dry_rice"] == pytest.approx(3.0)
        assert solution.objective_values["total_cost"] == pytest.approx(23.0)

    def test_extra_rows_on_the_problem_are_kept(self, solver):
        problem, resources, demands = allocation_example()
        problem.constraints.append(
            Constraint(name="cap_cheap", constraint_id="cap_cheap", operator=ComparisonOperator.LE,
                       value=15.0, expression=var("allocation_r2_d1"))
        )
        solution = solver.solve_allocation(problem, resources, demands)

        assert solution.variable_values["allocation_r2_d1"] == pytest.approx(15.0)
        assert solution.objective_values["total_cost"] == pytest.approx(35.0)
