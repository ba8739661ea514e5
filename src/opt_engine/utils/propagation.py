"""Domain reduction from variable bounds and single-variable bound constraints."""

import math
from dataclasses import dataclass, field

from ..models.expressions import ComparisonOperator
from ..models.problem import ConstraintKind, Problem, VariableKind


@dataclass
class DomainReduction:
    """Effective numeric domains after propagation."""

    bounds: dict[str, tuple[float, float]]
    fixed: dict[str, float] = field(default_factory=dict)
    conflicts: dict[str, float] = field(default_factory=dict)

    @property
    def is_consistent(self) -> bool:
        return not self.conflicts


def single_variable_term(constraint) -> tuple[str, float, float] | None:
    """(name, coefficient, constant) for `a*x + c` expressions, else None."""
    if constraint.expression is None:
        return None
    terms = constraint.expression.linear_terms()
    if terms is None:
        return None
    coefficients = {name: c for name, c in terms[0].items() if c != 0.0}
    if len(coefficients) != 1:
        return None
    (name, coefficient), = coefficients.items()
    return name, coefficient, terms[1]


def propagate_bounds(
    problem: Problem,
    default_bounds: tuple[float, float] = (0.0, 100.0),
    tolerance: float = 1e-6,
) -> DomainReduction:
    """Tighten variable domains with bound-kind constraints.

    Only constraints of kind ``bound`` over a single variable are used.
    Variables whose domain collapses to one value are reported as fixed;
    constraints that empty a domain are reported as conflicts with the gap
    between the contradicting bounds.

    Args:
        problem: Problem to analyse
        default_bounds: Domain for numeric variables without bounds
        tolerance: Margin used for strict comparisons

    Returns:
        Domain reduction result
    """
    bounds = {v.name: v.bounds(default_bounds) for v in problem.variables}
    kinds = {v.name: v.kind for v in problem.variables}
    conflicts: dict[str, float] = {}

    for constraint in problem.constraints:
        if constraint.kind != ConstraintKind.BOUND:
            continue
        parsed = single_variable_term(constraint)
        if parsed is None or parsed[0] not in bounds:
            continue
        if kinds[parsed[0]] == VariableKind.CATEGORICAL:
            continue
        name, coefficient, constant = parsed
        margin = tolerance if constraint.tolerance is None else constraint.tolerance
        threshold = (constraint.value - constant) / coefficient
        operator = constraint.operator
        if coefficient < 0:
            operator = {
                ComparisonOperator.LE: ComparisonOperator.GE,
                ComparisonOperator.GE: ComparisonOperator.LE,
                ComparisonOperator.LT: ComparisonOperator.GT,
                ComparisonOperator.GT: ComparisonOperator.LT,
            }.get(operator, operator)
        strict_margin = margin / abs(coefficient)

        lower, upper = bounds[name]
        if operator == ComparisonOperator.EQ:
            lower, upper = max(lower, threshold), min(upper, threshold)
        elif operator == ComparisonOperator.LE:
            upper = min(upper, threshold)
        elif operator == ComparisonOperator.LT:
            upper = min(upper, threshold - strict_margin)
        elif operator == ComparisonOperator.GE:
            lower = max(lower, threshold)
        else:
            lower = max(lower, threshold + strict_margin)

        if kinds[name] != VariableKind.CONTINUOUS:
            lower, upper = math.ceil(lower - 1e-9), math.floor(upper + 1e-9)

        if lower > upper:
            conflicts[constraint.constraint_id] = lower - upper
            continue
        bounds[name] = (float(lower), float(upper))

    fixed = {name: lo for name, (lo, hi) in bounds.items() if lo == hi}
    return DomainReduction(bounds=bounds, fixed=fixed, conflicts=conflicts)
