"""Multi-objective optimization with NSGA-II style Pareto ranking."""

import math
import threading
from typing import Any, Dict, Optional

import numpy as np

from ..models.problem import Algorithm, ParetoParameters, Problem
from ..models.solution import (
    AlternativeSolution,
    ConvergencePoint,
    OptimizationSolution,
    SolutionStatus,
)
from ..utils.logger import get_logger
from ..utils.pareto import crowding_distance, non_dominated_sort
from .encoding import CandidateEvaluator, Evaluation
from .genetic import GeneticSolver

logger = get_logger(__name__)


class ParetoSolver(GeneticSolver):
    """
    Multi-objective Pareto optimization (NSGA-II).

    Parents and offspring are pooled each generation and the next population
    is filled front by front, breaking the last front by crowding distance.
    Selection, crossover and mutation are the genetic operators. The final
    rank-0 front is returned as alternatives; the primary solution is the
    front member closest to the weighted ideal point.
    """

    algorithm = Algorithm.PARETO
    parameters_model = ParetoParameters

    def get_solver_info(self) -> Dict[str, Any]:
        return {
            "name": self.algorithm.value,
            "description": "NSGA-II: non-dominated sorting with crowding distance",
            "capabilities": ["multi_objective", "pareto_front", "nonlinear"],
            "stochastic": True,
        }

    def _rank(self, evaluations: list[Evaluation], candidates: CandidateEvaluator):
        """Front lists, per-individual rank and crowding distance, dominated counts."""
        objectives = np.array(
            [candidates.minimization_vector(e) for e in evaluations], dtype=float
        ).reshape(len(evaluations), -1)
        violations = np.array([e.violation for e in evaluations], dtype=float)
        fronts, dominated = non_dominated_sort(objectives, violations)
        rank = np.zeros(len(evaluations), dtype=int)
        crowding = np.zeros(len(evaluations))
        for level, front in enumerate(fronts):
            rank[front] = level
            crowding[front] = crowding_distance(objectives[front])
        return fronts, rank, crowding, dominated, objectives

    def _select_next_gen(self, fronts, crowding, target_size: int) -> list[int]:
        """Select next generation using fronts + crowding distance."""
        selected: list[int] = []
        for front in fronts:
            if len(selected) + len(front) <= target_size:
                selected.extend(front)
            else:
                remaining = target_size - len(selected)
                by_crowding = sorted(front, key=lambda i: -crowding[i])
                selected.extend(by_crowding[:remaining])
                break
        return selected

    @staticmethod
    def _selection_score(rank: np.ndarray, crowding: np.ndarray) -> np.ndarray:
        """Higher is better: lower rank first, then larger crowding distance."""
        order = np.lexsort((-crowding, rank))
        score = np.empty(len(rank))
        score[order] = -np.arange(len(rank), dtype=float)
        return score

    def _closest_to_ideal(self, front: list[int], objectives: np.ndarray, problem: Problem) -> int:
        """Front member nearest the weighted ideal point in normalized objective space."""
        values = objectives[front]
        ideal = values.min(axis=0)
        nadir = values.max(axis=0)
        span = np.where(nadir - ideal > 0, nadir - ideal, 1.0)
        normalized = (values - ideal) / span
        normalized = np.nan_to_num(normalized, nan=math.inf, posinf=math.inf)
        weights = np.array([objective.weight for objective in problem.objectives], dtype=float)
        weighted = np.where(weights > 0, weights * normalized ** 2, 0.0)
        distances = np.sqrt(np.sum(weighted, axis=1))
        return front[int(np.argmin(distances))]

    def solve(
        self, problem: Problem, cancel_event: Optional[threading.Event] = None
    ) -> OptimizationSolution:
        params = self.resolve_parameters(problem)
        self._log_start(problem, params)
        budget = self.budget(params, cancel_event)

        if budget.cancelled:
            return self._log_finish(self._cancelled(problem, budget.elapsed))

        candidates = CandidateEvaluator(problem, params)
        rng = np.random.default_rng(params.seed)
        size = params.population_size

        history: list[ConvergencePoint] = []
        best_values: list[float] = []
        best_vectors: list[np.ndarray] = []
        generation = 0
        converged = cancelled = False
        stop_status = None

        with self._executor(params) as executor:
            population = self._initial_population(candidates, size, rng)
            evaluations = self._evaluate(population, candidates, executor)

            while True:
                fronts, rank, crowding, dominated, objectives = self._rank(evaluations, candidates)
                fitness = np.array([self._fitness(e, params) for e in evaluations])
                front = fronts[0]
                leader = max(front, key=lambda i: fitness[i])

                best_values.append(float(fitness[leader]))
                best_vectors.append(population[leader].copy())
                history.append(
                    ConvergencePoint(
                        iteration=generation,
                        objective_value=candidates.trace_value(float(fitness[leader])),
                        constraint_violation=min(evaluations[i].violation for i in front),
                        elapsed=budget.elapsed,
                    )
                )
                logger.debug(
                    f"Generation {generation}: front size {len(front)}, "
                    f"{len(fronts)} fronts"
                )
                generation += 1

                if self._converged(best_values, best_vectors, params):
                    converged = True
                    break
                stop_status = budget.exhausted(generation)
                if stop_status is not None:
                    break
                if budget.cancelled:
                    cancelled = True
                    break

                offspring = self._offspring(
                    population,
                    self._selection_score(rank, crowding),
                    size,
                    candidates,
                    params,
                    generation,
                    rng,
                )
                offspring_evaluations = self._evaluate(offspring, candidates, executor)

                pool = np.vstack([population, offspring])
                pool_evaluations = evaluations + offspring_evaluations
                pool_fronts, _, pool_crowding, _, _ = self._rank(pool_evaluations, candidates)
                selected = self._select_next_gen(pool_fronts, pool_crowding, size)
                population = pool[selected]
                evaluations = [pool_evaluations[i] for i in selected]

        primary = self._closest_to_ideal(front, objectives, problem)
        if converged:
            status = SolutionStatus.FEASIBLE
        elif cancelled:
            status = SolutionStatus.ITERATION_LIMIT
        else:
            status = stop_status
        if not evaluations[primary].feasible:
            status = SolutionStatus.INFEASIBLE

        alternatives = self._front_alternatives(
            front, population, evaluations, fitness, crowding, dominated, candidates
        )
        extra = {
            "population_size": size,
            "crossover_rate": params.crossover_rate,
            "mutation_rate": params.mutation_rate,
            "generations": generation,
            "converged": converged,
            "front_size": len(alternatives),
            "seed": params.seed,
        }
        if cancelled:
            extra["cancelled"] = True
        return self._log_finish(
            self._build_solution(
                problem, params, candidates, status, population[primary], evaluations[primary],
                generation, budget.elapsed, history, alternatives, extra,
            )
        )

    def _front_alternatives(
        self, front, population, evaluations, fitness, crowding, dominated, candidates
    ) -> list[AlternativeSolution]:
        """The rank-0 front, most isolated members first, duplicates removed."""
        alternatives = []
        seen = set()
        for index in sorted(front, key=lambda i: (-crowding[i], i)):
            key = tuple(population[index].tolist())
            if key in seen:
                continue
            seen.add(key)
            alternatives.append(
                AlternativeSolution(
                    rank=len(alternatives) + 1,
                    objective_values=evaluations[index].objective_values,
                    variable_values=candidates.decode(population[index]),
                    fitness=float(fitness[index]),
                    constraint_violation=evaluations[index].violation,
                    domination_count=dominated[index],
                    crowding_distance=float(crowding[index]),
                )
            )
        return alternatives
