"""Genetic algorithm solver."""

import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from typing import Any, Dict, Optional

import numpy as np

from ..models.problem import (
    Algorithm,
    ConvergenceType,
    GeneticParameters,
    Problem,
    VariableKind,
)
from ..models.solution import (
    AlternativeSolution,
    ConvergencePoint,
    OptimizationSolution,
    SensitivityAnalysis,
    SolutionMetadata,
    SolutionStatus,
)
from ..utils.logger import get_logger
from ..utils.pareto import crowding_distance, non_dominated_sort
from ..utils.sensitivity import SensitivityAnalyzer
from .base import BaseSolver
from .encoding import CandidateEvaluator, Evaluation

logger = get_logger(__name__)


class GeneticSolver(BaseSolver):
    """Population-based search with tournament selection and elitism.

    Fitness is the weighted objective score (higher is better). Infeasible
    individuals are penalized by ``penalty_coefficient * (1 + violation)``,
    so a feasible individual always beats an infeasible one of equal score
    and larger violations rank lower.
    """

    algorithm = Algorithm.GENETIC
    parameters_model = GeneticParameters

    def get_solver_info(self) -> Dict[str, Any]:
        return {
            "name": self.algorithm.value,
            "description": "Genetic algorithm with tournament selection, "
            "single-point crossover, Gaussian mutation and elitism",
            "capabilities": ["single_objective", "weighted_multi_objective", "nonlinear"],
            "stochastic": True,
        }

    # Operators

    def _initial_population(
        self, candidates: CandidateEvaluator, size: int, rng: np.random.Generator
    ) -> np.ndarray:
        """Initial values, both domain corners, constraint thresholds, then uniform samples.

        Threshold seeds put individuals exactly on the boundaries of
        single-variable constraints, where constrained optima usually sit.
        """
        seeds = []
        initial = candidates.encode_initial()
        if initial is not None:
            seeds.append(initial)
        seeds.append(candidates.lower.copy())
        seeds.append(candidates.upper.copy())
        seeds.extend(candidates.threshold_vectors())

        widen = 0.5 * candidates.discrete
        samples = rng.uniform(
            candidates.lower - widen,
            candidates.upper + widen,
            size=(max(size - len(seeds), 0), candidates.size),
        )
        seeds = np.array(seeds[:size], dtype=float).reshape(min(len(seeds), size), candidates.size)
        population = np.vstack([seeds, samples])
        return np.array([candidates.repair(row) for row in population])

    def _fitness(self, evaluation: Evaluation, params: GeneticParameters) -> float:
        if evaluation.feasible:
            return evaluation.score
        return evaluation.score - params.penalty_coefficient * (1.0 + evaluation.violation)

    def _tournament(
        self, selection_score: np.ndarray, params: GeneticParameters, rng: np.random.Generator
    ) -> int:
        contenders = rng.integers(0, len(selection_score), size=params.tournament_size)
        return int(contenders[np.argmax(selection_score[contenders])])

    def _mutate(
        self,
        child: np.ndarray,
        candidates: CandidateEvaluator,
        params: GeneticParameters,
        generation: int,
        rng: np.random.Generator,
    ) -> np.ndarray:
        """Gaussian noise on continuous and integer genes, bit flips on binary ones.

        At least one gene always mutates so children never clone a parent.
        """
        mask = rng.random(candidates.size) < params.mutation_rate
        if candidates.size and not mask.any():
            mask[rng.integers(candidates.size)] = True
        span = candidates.upper - candidates.lower
        sigma = params.mutation_scale * span * params.mutation_decay ** generation
        sigma = np.where(candidates.discrete, np.maximum(sigma, 0.5), sigma)
        noise = rng.normal(0.0, 1.0, size=candidates.size) * sigma
        binary = np.array([v.kind == VariableKind.BINARY for v in candidates.variables], dtype=bool)
        child = child.copy()
        child[mask & ~binary] += noise[mask & ~binary]
        child[mask & binary] = 1.0 - child[mask & binary]
        return candidates.repair(child)

    def _offspring(
        self,
        population: np.ndarray,
        selection_score: np.ndarray,
        count: int,
        candidates: CandidateEvaluator,
        params: GeneticParameters,
        generation: int,
        rng: np.random.Generator,
    ) -> np.ndarray:
        """Tournament selection, single-point crossover and mutation."""
        n = candidates.size
        children = []
        while len(children) < count:
            first = population[self._tournament(selection_score, params, rng)]
            second = population[self._tournament(selection_score, params, rng)]
            child_a, child_b = first.copy(), second.copy()
            if n >= 2 and rng.random() < params.crossover_rate:
                point = int(rng.integers(1, n))
                child_a[point:], child_b[point:] = second[point:], first[point:]
            children.append(self._mutate(child_a, candidates, params, generation, rng))
            children.append(self._mutate(child_b, candidates, params, generation, rng))
        return np.array(children[:count]).reshape(count, n)

    def _next_generation(
        self,
        population: np.ndarray,
        fitness: np.ndarray,
        order: np.ndarray,
        candidates: CandidateEvaluator,
        params: GeneticParameters,
        generation: int,
        rng: np.random.Generator,
    ) -> np.ndarray:
        size = len(population)
        elite_count = min(size, max(1, int(params.elitism_rate * size)))
        elites = population[order[:elite_count]].copy()
        children = self._offspring(
            population, fitness, size - elite_count, candidates, params, generation, rng
        )
        return np.vstack([elites, children])

    # Convergence

    def _converged(
        self, best_values: list[float], best_vectors: list[np.ndarray], params: GeneticParameters
    ) -> bool:
        criteria = params.convergence
        window = criteria.consecutive_iterations
        if criteria.type == ConvergenceType.ITERATION_LIMIT or len(best_values) <= window:
            return False
        if criteria.type == ConvergenceType.OBJECTIVE_CHANGE:
            recent = best_values[-(window + 1):]
            return max(recent) - min(recent) < criteria.threshold
        recent = best_vectors[-(window + 1):]
        return all(
            float(np.max(np.abs(b - a), initial=0.0)) < criteria.threshold
            for a, b in zip(recent, recent[1:])
        )

    def _evaluate(self, population, candidates: CandidateEvaluator, executor) -> list[Evaluation]:
        if executor is None:
            return [candidates.evaluate(individual) for individual in population]
        return list(executor.map(candidates.evaluate, population))

    def _executor(self, params: GeneticParameters):
        parallel = params.parallelization
        if parallel.enabled and parallel.threads > 1:
            return ThreadPoolExecutor(max_workers=parallel.threads)
        return nullcontext()

    # Solve

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
        population = self._initial_population(candidates, params.population_size, rng)

        history: list[ConvergencePoint] = []
        best_values: list[float] = []
        best_vectors: list[np.ndarray] = []
        generation = 0
        converged = cancelled = False
        stop_status = None

        with self._executor(params) as executor:
            while True:
                evaluations = self._evaluate(population, candidates, executor)
                fitness = np.array([self._fitness(e, params) for e in evaluations])
                order = np.argsort(-fitness, kind="stable")
                best = int(order[0])

                best_values.append(float(fitness[best]))
                best_vectors.append(population[best].copy())
                history.append(
                    ConvergencePoint(
                        iteration=generation,
                        objective_value=candidates.trace_value(float(fitness[best])),
                        constraint_violation=evaluations[best].violation,
                        elapsed=budget.elapsed,
                    )
                )
                logger.debug(
                    f"Generation {generation}: best fitness {fitness[best]:.6g}, "
                    f"violation {evaluations[best].violation:.6g}"
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
                population = self._next_generation(
                    population, fitness, order, candidates, params, generation, rng
                )

        if converged:
            status = SolutionStatus.FEASIBLE
        elif cancelled:
            status = SolutionStatus.ITERATION_LIMIT
        else:
            status = stop_status
        if not evaluations[best].feasible:
            status = SolutionStatus.INFEASIBLE

        alternatives = self._alternatives(population, evaluations, fitness, order, candidates, params)
        extra = {
            "population_size": params.population_size,
            "crossover_rate": params.crossover_rate,
            "mutation_rate": params.mutation_rate,
            "elitism_rate": params.elitism_rate,
            "generations": generation,
            "converged": converged,
            "seed": params.seed,
        }
        if cancelled:
            extra["cancelled"] = True
        return self._log_finish(
            self._build_solution(
                problem, params, candidates, status, population[best], evaluations[best],
                generation, budget.elapsed, history, alternatives, extra,
            )
        )

    def _cancelled(self, problem: Problem, runtime: float) -> OptimizationSolution:
        return OptimizationSolution(
            problem_id=problem.problem_id,
            status=SolutionStatus.CANCELLED,
            metadata=SolutionMetadata(
                algorithm=self.algorithm.value,
                runtime=runtime,
                algorithm_specific={"cancelled": True},
            ),
        )

    def _alternatives(
        self, population, evaluations, fitness, order, candidates, params
    ) -> list[AlternativeSolution]:
        """Top distinct individuals, annotated with dominance data."""
        if params.alternatives_count == 0:
            return []
        objectives = [candidates.minimization_vector(e) for e in evaluations]
        violations = [e.violation for e in evaluations]
        fronts, dominated = non_dominated_sort(objectives, violations)
        crowding = np.zeros(len(population))
        for front in fronts:
            crowding[front] = crowding_distance([objectives[i] for i in front])

        alternatives = []
        seen = set()
        for index in order:
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
            if len(alternatives) == params.alternatives_count:
                break
        return alternatives

    def _build_solution(
        self, problem, params, candidates, status, vector, evaluation, iterations,
        runtime, history, alternatives, extra,
    ) -> OptimizationSolution:
        sensitivity = SensitivityAnalysis()
        if np.isfinite(evaluation.score):
            sensitivity = SensitivityAnalyzer(
                problem, candidates.constraint_evaluator, params.default_bounds
            ).analyze(candidates.assignment(vector))
        return OptimizationSolution(
            problem_id=problem.problem_id,
            status=status,
            objective_values=evaluation.objective_values,
            variable_values=candidates.decode(vector),
            constraint_violations=candidates.violations(vector),
            metadata=SolutionMetadata(
                algorithm=self.algorithm.value,
                iterations=iterations,
                runtime=runtime,
                convergence_history=history,
                algorithm_specific=extra,
            ),
            alternatives=alternatives,
            sensitivity=sensitivity,
        )
