"""Tests for SolverFactory class."""

import pytest

from opt_engine.solvers.backtracking import BacktrackingSolver
from opt_engine.solvers.base import BaseSolver
from opt_engine.solvers.factory import SolverFactory
from opt_engine.solvers.genetic import GeneticSolver
from opt_engine.solvers.linear_programming import LinearProgrammingSolver
from opt_engine.solvers.pareto import ParetoSolver
from opt_engine.solvers.routing import RoutingSolver
from opt_engine.solvers.scheduling import SchedulingSolver
from fixtures.sample_problems import minimize_x_at_least_five


class TestSolverFactory:
    """Test cases for SolverFactory."""

    def test_get_available_solvers(self):
        """Test getting available solvers."""
        solvers = SolverFactory.get_available_solvers()
        assert solvers == [
            "backtracking",
            "genetic",
            "pareto",
            "linear_programming",
            "routing",
            "scheduling",
        ]

    def test_is_solver_available(self):
        """Test checking if solver is available."""
        assert SolverFactory.is_solver_available("genetic") is True
        assert SolverFactory.is_solver_available("GENETIC") is True  # Case insensitive
        assert SolverFactory.is_solver_available("simplex") is False

    @pytest.mark.parametrize(
        "name, solver_class",
        [
            ("backtracking", BacktrackingSolver),
            ("genetic", GeneticSolver),
            ("pareto", ParetoSolver),
            ("linear_programming", LinearProgrammingSolver),
            ("routing", RoutingSolver),
            ("scheduling", SchedulingSolver),
        ],
    )
    def test_create_solver(self, name, solver_class):
        """Test creating each registered solver."""
        solver = SolverFactory.create_solver(name, {"time_limit": 60})

        assert isinstance(solver, solver_class)
        assert isinstance(solver, BaseSolver)
        assert solver.time_limit == 60
        assert solver.get_solver_info()["name"] == name

    def test_create_solver_case_insensitive(self):
        """Test that solver creation is case insensitive."""
        solvers = [SolverFactory.create_solver(n) for n in ("pareto", "PARETO", "Pareto")]
        assert all(isinstance(s, ParetoSolver) for s in solvers)

    def test_create_solver_without_config(self):
        """Test that a solver created without config uses defaults."""
        solver = SolverFactory.create_solver("genetic")
        assert solver.time_limit == 300
        assert solver.config == {}

    def test_set_parameters_feeds_resolution(self):
        """Test that parameters set after creation reach resolve_parameters."""
        solver = SolverFactory.create_solver("backtracking", {"parameters": {"max_iterations": 50}})
        solver.set_parameters({"value_ordering": "descending"})
        params = solver.resolve_parameters(minimize_x_at_least_five())

        assert params.max_iterations == 50
        assert params.value_ordering == "descending"

    def test_create_invalid_solver(self):
        """Test creating invalid solver raises ValueError."""
        with pytest.raises(ValueError) as exc_info:
            SolverFactory.create_solver("invalid_solver", {})

        assert "Unsupported solver: invalid_solver" in str(exc_info.value)
        assert "Available solvers: backtracking, genetic" in str(exc_info.value)
