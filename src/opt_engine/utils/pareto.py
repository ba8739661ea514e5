"""Pareto dominance, non-dominated sorting and crowding distance.

Objective vectors are always oriented for minimization.
"""

import numpy as np


def dominates(obj_a, viol_a: float, obj_b, viol_b: float) -> bool:
    """Check if solution a dominates solution b (constraint-domination).

    A feasible solution dominates an infeasible one; between two infeasible
    solutions the smaller violation wins; between feasible ones ordinary
    Pareto dominance applies. Violations already absorb constraint tolerances,
    so only an exact zero counts as feasible.
    """
    feasible_a = viol_a == 0.0
    feasible_b = viol_b == 0.0
    if feasible_a and not feasible_b:
        return True
    if not feasible_a and feasible_b:
        return False
    if not feasible_a and not feasible_b:
        return viol_a < viol_b

    obj_a = np.asarray(obj_a, dtype=float)
    obj_b = np.asarray(obj_b, dtype=float)
    return bool(np.all(obj_a <= obj_b) and np.any(obj_a < obj_b))


def non_dominated_sort(objectives, violations) -> tuple[list[list[int]], list[int]]:
    """Fast non-dominated sorting.

    Args:
        objectives: (N, M) array of minimization objective vectors
        violations: (N,) array of total constraint violations

    Returns:
        (fronts, dominated) where fronts lists indices per rank (rank 0 first)
        and dominated[i] is the number of solutions that i dominates
    """
    objectives = np.asarray(objectives, dtype=float)
    violations = np.asarray(violations, dtype=float)
    n = len(objectives)
    domination_count = np.zeros(n, dtype=int)
    dominated_set: list[list[int]] = [[] for _ in range(n)]

    for i in range(n):
        for j in range(i + 1, n):
            if dominates(objectives[i], violations[i], objectives[j], violations[j]):
                dominated_set[i].append(j)
                domination_count[j] += 1
            elif dominates(objectives[j], violations[j], objectives[i], violations[i]):
                dominated_set[j].append(i)
                domination_count[i] += 1

    fronts: list[list[int]] = [[i for i in range(n) if domination_count[i] == 0]]
    k = 0
    while fronts[k]:
        next_front = []
        for i in fronts[k]:
            for j in dominated_set[i]:
                domination_count[j] -= 1
                if domination_count[j] == 0:
                    next_front.append(j)
        k += 1
        fronts.append(next_front)

    return [front for front in fronts if front], [len(s) for s in dominated_set]


def crowding_distance(objectives) -> np.ndarray:
    """Crowding distance of each member of one front (boundaries are infinite)."""
    objectives = np.asarray(objectives, dtype=float)
    n = len(objectives)
    if n <= 2:
        return np.full(n, np.inf)

    distances = np.zeros(n)
    for m in range(objectives.shape[1]):
        sorted_idx = np.argsort(objectives[:, m], kind="stable")
        distances[sorted_idx[0]] = np.inf
        distances[sorted_idx[-1]] = np.inf

        obj_range = objectives[sorted_idx[-1], m] - objectives[sorted_idx[0], m]
        if obj_range < 1e-15:
            continue

        for i in range(1, n - 1):
            distances[sorted_idx[i]] += (
                objectives[sorted_idx[i + 1], m] - objectives[sorted_idx[i - 1], m]
            ) / obj_range

    return distances
