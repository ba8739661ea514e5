"""Tests for the scheduling solver."""

import threading

import pytest

from opt_engine.exceptions import ProblemValidationError
from opt_engine.models.expressions import var
from opt_engine.models.problem import Constraint
from opt_engine.models.routing import TimeWindow
from opt_engine.models.scheduling import (
    AvailabilityWindow,
    Resource,
    ResourceRequirement,
    ResourceType,
    SchedulingPreferences,
    SchedulingProblem,
    Task,
    TimeHorizon,
)
from opt_engine.models.solution import SolutionStatus
from opt_engine.solvers.scheduling import SchedulingSolver
from fixtures.sample_problems import chain_schedule, human, minimize_x_at_least_five, needs_human


def _single_task(window, **resource_kwargs):
    return SchedulingProblem(
        name="single",
        tasks=[
            Task(task_id="job", duration=2.0, time_windows=[window] if window else [],
                 resource_requirements=[needs_human()])
        ],
        resources=[human("alice", **resource_kwargs)],
        time_horizon=TimeHorizon(end=50.0),
    )


def _shared_crane(allow_sharing):
    crane = ResourceRequirement(resource_type=ResourceType.EQUIPMENT)
    return SchedulingProblem(
        name="crane",
        tasks=[
            Task(task_id="X", duration=3.0, resource_requirements=[crane]),
            Task(task_id="Y", duration=3.0, resource_requirements=[crane]),
        ],
        resources=[Resource(resource_id="crane", type=ResourceType.EQUIPMENT, capacity=2.0)],
        time_horizon=TimeHorizon(end=20.0),
        preferences=SchedulingPreferences(allow_resource_sharing=allow_sharing),
    )


def _late_slot(preferences, **alice_kwargs):
    """A long job for the cheap resource, then a short job fixed to [4, 5]."""
    return SchedulingProblem(
        name="late-slot",
        tasks=[
            Task(task_id="long", duration=4.0, priority=10, resource_requirements=[needs_human()]),
            Task(
                task_id="short", duration=1.0, resource_requirements=[needs_human()],
                time_windows=[TimeWindow(start=4.0, end=5.0, type="required")],
            ),
        ],
        resources=[human("alice", cost=1.0, **alice_kwargs), human("bob", cost=2.0)],
        time_horizon=TimeHorizon(end=10.0),
        preferences=preferences,
    )


class TestSchedulingSolver:
    """Test cases for SchedulingSolver."""

    @pytest.fixture
    def solver(self):
        return SchedulingSolver({"time_limit": 30})

    def test_single_resource_sequences_tasks(self, solver):
        solution = solver.solve(chain_schedule())
        values = solution.variable_values

        assert solution.status == SolutionStatus.FEASIBLE
        # the urgent independent task goes first
        assert (values["T3_start"], values["T3_end"]) == (0.0, 1.0)
        assert (values["T1_start"], values["T1_end"]) == (1.0, 3.0)
        assert (values["T2_start"], values["T2_end"]) == (3.0, 6.0)
        assert solution.objective_values["makespan"] == pytest.approx(6.0)
        assert solution.objective_values["total_cost"] == pytest.approx(6.0)
        assert solution.metadata.algorithm_specific["topological_order"] == ["T3", "T1", "T2"]

    def test_second_resource_shortens_makespan(self, solver):
        problem = chain_schedule(resources=[human("alice", cost=1.0), human("bob", cost=2.0)])
        solution = solver.solve(problem)
        values = solution.variable_values

        assert solution.status == SolutionStatus.FEASIBLE
        assert values["T3_resource"] == "alice"
        assert values["T1_resource"] == "bob"
        assert values["T2_resource"] == "alice"
        assert values["T2_start"] >= values["T1_end"]
        assert solution.objective_values["makespan"] == pytest.approx(5.0)
        assert solution.objective_values["total_cost"] == pytest.approx(8.0)

    def test_backtracks_when_a_skill_holder_is_taken(self, solver):
        problem = SchedulingProblem(
            name="welding",
            tasks=[
                Task(task_id="A", duration=2.0, priority=10, resource_requirements=[needs_human()]),
                Task(
                    task_id="B", duration=2.0, priority=1,
                    resource_requirements=[needs_human(skills=["welding"])],
                    time_windows=[TimeWindow(start=0.0, end=2.0, type="required")],
                ),
            ],
            resources=[human("alice", cost=1.0, skills=["welding"]), human("bob", cost=2.0)],
            time_horizon=TimeHorizon(end=10.0),
        )
        solution = solver.solve(problem)
        values = solution.variable_values

        assert solution.status == SolutionStatus.FEASIBLE
        assert solution.metadata.algorithm_specific["backtracks"] >= 1
        assert values["A_resource"] == "bob"
        assert values["B_resource"] == "alice"
        assert solution.objective_values["total_cost"] == pytest.approx(6.0)

    def test_dependency_cycle(self, solver):
        problem = SchedulingProblem(
            name="cycle",
            tasks=[
                Task(task_id="T1", duration=1.0, dependencies=["T2"]),
                Task(task_id="T2", duration=1.0, dependencies=["T1"]),
                Task(task_id="T3", duration=1.0),
            ],
            time_horizon=TimeHorizon(end=10.0),
        )
        solution = solver.solve(problem)

        assert solution.status == SolutionStatus.INFEASIBLE
        assert {v.constraint_id for v in solution.constraint_violations} == {"T1", "T2"}
        assert solution.variable_values == {}

    def test_horizon_too_short(self, solver):
        solution = solver.solve(chain_schedule(horizon=4.0))

        assert solution.status == SolutionStatus.INFEASIBLE
        assert [v.constraint_id for v in solution.constraint_violations] == ["T2"]
        assert "T2_start" not in solution.variable_values
        assert solution.variable_values["T1_end"] == 3.0

    def test_required_window(self, solver):
        solution = solver.solve(_single_task(TimeWindow(start=5.0, end=10.0, type="required")))
        assert solution.variable_values["job_start"] == 5.0

    def test_forbidden_window(self, solver):
        solution = solver.solve(_single_task(TimeWindow(start=0.0, end=3.0, type="forbidden")))
        assert solution.variable_values["job_start"] == 3.0

    def test_preferred_window_is_soft(self, solver):
        solution = solver.solve(_single_task(TimeWindow(start=10.0, end=12.0, type="preferred")))

        assert solution.status == SolutionStatus.FEASIBLE
        assert solution.variable_values["job_start"] == 0.0
        assert solution.objective_values["preferred_window_misses"] == 1.0

    def test_resource_availability(self, solver):
        problem = _single_task(None, availability=[AvailabilityWindow(start=4.0, end=20.0, capacity=1.0)])
        solution = solver.solve(problem)
        assert solution.variable_values["job_start"] == 4.0

    def test_cost_decides_between_equal_finishes(self, solver):
        solution = solver.solve(_late_slot(SchedulingPreferences()))

        assert solution.variable_values["long_resource"] == "alice"
        assert solution.variable_values["short_resource"] == "alice"
        assert solution.objective_values["workload_imbalance"] == pytest.approx(5.0)

    def test_balance_workload_outranks_cost(self, solver):
        """With equal finishes the less loaded resource wins over the cheaper one."""
        solution = solver.solve(_late_slot(SchedulingPreferences(balance_workload=True)))

        assert solution.variable_values["long_resource"] == "alice"
        assert solution.variable_values["short_resource"] == "bob"
        assert solution.objective_values["workload_imbalance"] == pytest.approx(3.0)
        assert solution.objective_values["total_cost"] == pytest.approx(6.0)

    def test_minimize_overtime_outranks_cost(self, solver):
        problem = _late_slot(SchedulingPreferences(minimize_overtime=True), regular_time=4.0)
        solution = solver.solve(problem)

        assert solution.variable_values["short_resource"] == "bob"
        assert solution.objective_values["overtime"] == pytest.approx(0.0)

    def test_overtime_is_reported_without_the_preference(self, solver):
        solution = solver.solve(_late_slot(SchedulingPreferences(), regular_time=4.0))

        assert solution.variable_values["short_resource"] == "alice"
        assert solution.objective_values["overtime"] == pytest.approx(1.0)

    def test_resource_sharing(self, solver):
        shared = solver.solve(_shared_crane(True))
        exclusive = solver.solve(_shared_crane(False))

        assert shared.objective_values["makespan"] == pytest.approx(3.0)
        assert exclusive.objective_values["makespan"] == pytest.approx(6.0)

    def test_metric_constraint(self, solver):
        problem = chain_schedule(
            constraints=[
                Constraint(name="deadline", constraint_id="deadline", value=5.0,
                           expression=var("makespan"))
            ]
        )
        solution = solver.solve(problem)

        assert solution.status == SolutionStatus.INFEASIBLE
        assert [v.constraint_id for v in solution.constraint_violations] == ["deadline"]
        assert solution.objective_values["makespan"] == pytest.approx(6.0)

    def test_cancelled_before_start(self, solver):
        event = threading.Event()
        event.set()
        solution = solver.solve(chain_schedule(), cancel_event=event)

        assert solution.status == SolutionStatus.CANCELLED
        assert solution.metadata.algorithm_specific["cancelled"] is True

    def test_rejects_plain_problems(self, solver):
        with pytest.raises(ProblemValidationError):
            solver.solve(minimize_x_at_least_five())
