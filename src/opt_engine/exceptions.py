"""Exception classes for the optimization engine."""


class OptimizationError(Exception):
    """Base class for engine errors."""
    pass


class ProblemValidationError(OptimizationError):
    """A problem is structurally malformed and cannot be solved."""

    def __init__(self, issues: list[str] | str):
        if isinstance(issues, str):
            issues = [issues]
        self.issues = list(issues)
        super().__init__("Invalid problem: " + "; ".join(self.issues))


class EvaluationError(OptimizationError):
    """An expression or closure could not be evaluated for an assignment."""
    pass


class StorageError(OptimizationError):
    """A result store operation failed."""
    pass
