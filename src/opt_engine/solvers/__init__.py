"""Solver abstraction layer."""

from .backtracking import BacktrackingSolver
from .base import BaseSolver, SearchBudget, SolverError
from .factory import SolverFactory
from .genetic import GeneticSolver
from .linear_programming import LinearProgrammingSolver
from .pareto import ParetoSolver
from .routing import RoutingSolver
from .scheduling import SchedulingSolver

__all__ = [
    "BacktrackingSolver",
    "BaseSolver",
    "GeneticSolver",
    "LinearProgrammingSolver",
    "ParetoSolver",
    "RoutingSolver",
    "SchedulingSolver",
    "SearchBudget",
    "SolverError",
    "SolverFactory",
]
