"""Structural validation of problems before any solver runs."""

from collections import Counter

from ..exceptions import ProblemValidationError
from ..models.problem import Problem, VariableKind
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ProblemValidator:
    """Checks problem-level invariants that single fields cannot express."""

    def __init__(
        self,
        max_variables: int = 100000,
        max_constraints: int = 100000,
        require_nonnegative_weights: bool = True,
    ):
        self.max_variables = max_variables
        self.max_constraints = max_constraints
        self.require_nonnegative_weights = require_nonnegative_weights

    def collect_issues(self, problem: Problem) -> list[str]:
        """Return every structural issue found (empty when valid)."""
        issues: list[str] = []

        if not problem.objectives:
            issues.append("problem has no objectives")

        for label, names in (
            ("variable name", [v.name for v in problem.variables]),
            ("objective name", [o.name for o in problem.objectives]),
            ("constraint id", [c.constraint_id for c in problem.constraints]),
        ):
            for name, count in Counter(names).items():
                if count > 1:
                    issues.append(f"duplicate {label} '{name}'")

        if len(problem.variables) > self.max_variables:
            issues.append(
                f"too many variables: {len(problem.variables)} (max: {self.max_variables})"
            )
        if len(problem.constraints) > self.max_constraints:
            issues.append(
                f"too many constraints: {len(problem.constraints)} (max: {self.max_constraints})"
            )

        for variable in problem.variables:
            if variable.kind == VariableKind.INTEGER:
                lower, upper = variable.bounds()
                if lower > upper:
                    issues.append(f"integer variable '{variable.name}' has an empty domain")

        known = problem.known_symbols()
        for kind, items in (("objective", problem.objectives), ("constraint", problem.constraints)):
            for item in items:
                referenced = item.referenced_symbols()
                if referenced is None:
                    continue
                for name in sorted(referenced - known):
                    issues.append(f"{kind} '{item.name}' references unknown variable '{name}'")

        if self.require_nonnegative_weights:
            for objective in problem.objectives:
                if objective.weight < 0:
                    issues.append(
                        f"objective '{objective.name}' has negative weight {objective.weight}"
                    )

        return issues

    def validate(self, problem: Problem) -> None:
        """Raise ProblemValidationError if the problem is malformed.

        Args:
            problem: Problem to check

        Raises:
            ProblemValidationError: With every issue found
        """
        issues = self.collect_issues(problem)
        if issues:
            logger.warning(f"Problem {problem.problem_id} failed validation: {issues}")
            raise ProblemValidationError(issues)
