"""Closed algebraic expression tree for objectives and constraints.

Expressions are plain pydantic models, so problems built from them can be
serialized to and loaded from JSON/YAML without evaluating any strings.
"""

from collections.abc import Mapping
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from ..exceptions import EvaluationError


class ComparisonOperator(str, Enum):
    """Comparison operators shared by constraints and conditions."""

    EQ = "eq"
    LE = "le"
    GE = "ge"
    LT = "lt"
    GT = "gt"


def compare(lhs: float, operator: ComparisonOperator, rhs: float, tolerance: float = 1e-9) -> bool:
    """Compare two numbers with the given operator."""
    if operator == ComparisonOperator.EQ:
        return abs(lhs - rhs) <= tolerance
    if operator == ComparisonOperator.LE:
        return lhs <= rhs + tolerance
    if operator == ComparisonOperator.GE:
        return lhs >= rhs - tolerance
    if operator == ComparisonOperator.LT:
        return lhs < rhs
    return lhs > rhs


class ExpressionNode(BaseModel):
    """Base class for expression tree nodes."""

    def evaluate(self, values: Mapping[str, float]) -> float:
        raise NotImplementedError

    def variables(self) -> set[str]:
        return set()

    def linear_terms(self) -> tuple[dict[str, float], float] | None:
        """Return (coefficients, constant) if the node is linear, else None."""
        return None

    def __add__(self, other):
        other = as_expression(other)
        left, right = self.linear_terms(), other.linear_terms()
        if left is not None and right is not None:
            coefficients = dict(left[0])
            for name, coefficient in right[0].items():
                coefficients[name] = coefficients.get(name, 0.0) + coefficient
            return Linear(coefficients=coefficients, constant=left[1] + right[1])
        return Sum(terms=[self, other])

    def __radd__(self, other):
        return as_expression(other) + self

    def __neg__(self):
        return self * -1.0

    def __sub__(self, other):
        return self + (-as_expression(other))

    def __rsub__(self, other):
        return as_expression(other) + (-self)

    def __mul__(self, other):
        other = as_expression(other)
        for scalar, expression in ((other, self), (self, other)):
            if isinstance(scalar, Constant):
                terms = expression.linear_terms()
                if terms is not None:
                    return Linear(
                        coefficients={k: v * scalar.value for k, v in terms[0].items()},
                        constant=terms[1] * scalar.value,
                    )
        return Product(factors=[self, other])

    def __rmul__(self, other):
        return as_expression(other) * self

    def __pow__(self, exponent):
        return Power(base=self, exponent=float(exponent))


class Constant(ExpressionNode):
    kind: Literal["constant"] = "constant"
    value: float

    def evaluate(self, values: Mapping[str, float]) -> float:
        return self.value

    def linear_terms(self) -> tuple[dict[str, float], float] | None:
        return {}, self.value


class VariableRef(ExpressionNode):
    """Reference to a decision variable (or a solver metric) by name."""

    kind: Literal["variable"] = "variable"
    name: str

    def evaluate(self, values: Mapping[str, float]) -> float:
        try:
            value = values[self.name]
        except KeyError as e:
            raise EvaluationError(f"No value bound for '{self.name}'") from e
        if isinstance(value, str):
            raise EvaluationError(f"Value of '{self.name}' is not numeric: {value!r}")
        return float(value)

    def variables(self) -> set[str]:
        return {self.name}

    def linear_terms(self) -> tuple[dict[str, float], float] | None:
        return {self.name: 1.0}, 0.0


class Linear(ExpressionNode):
    """Affine combination: sum(coefficient * variable) + constant."""

    kind: Literal["linear"] = "linear"
    coefficients: dict[str, float] = Field(default_factory=dict)
    constant: float = 0.0

    def evaluate(self, values: Mapping[str, float]) -> float:
        total = self.constant
        for name, coefficient in self.coefficients.items():
            total += coefficient * VariableRef(name=name).evaluate(values)
        return total

    def variables(self) -> set[str]:
        return set(self.coefficients)

    def linear_terms(self) -> tuple[dict[str, float], float] | None:
        return dict(self.coefficients), self.constant


class Sum(ExpressionNode):
    kind: Literal["sum"] = "sum"
    terms: list["Expression"]

    def evaluate(self, values: Mapping[str, float]) -> float:
        return sum(term.evaluate(values) for term in self.terms)

    def variables(self) -> set[str]:
        return set().union(*(term.variables() for term in self.terms))

    def linear_terms(self) -> tuple[dict[str, float], float] | None:
        coefficients: dict[str, float] = {}
        constant = 0.0
        for term in self.terms:
            terms = term.linear_terms()
            if terms is None:
                return None
            for name, coefficient in terms[0].items():
                coefficients[name] = coefficients.get(name, 0.0) + coefficient
            constant += terms[1]
        return coefficients, constant


class Product(ExpressionNode):
    kind: Literal["product"] = "product"
    factors: list["Expression"]

    def evaluate(self, values: Mapping[str, float]) -> float:
        result = 1.0
        for factor in self.factors:
            result *= factor.evaluate(values)
        return result

    def variables(self) -> set[str]:
        return set().union(*(factor.variables() for factor in self.factors))

    def linear_terms(self) -> tuple[dict[str, float], float] | None:
        # Linear only when at most one factor depends on variables.
        scale = 1.0
        varying = None
        for factor in self.factors:
            if factor.variables():
                if varying is not None:
                    return None
                varying = factor
            else:
                scale *= factor.evaluate({})
        if varying is None:
            return {}, scale
        terms = varying.linear_terms()
        if terms is None:
            return None
        return {k: v * scale for k, v in terms[0].items()}, terms[1] * scale


class Power(ExpressionNode):
    kind: Literal["power"] = "power"
    base: "Expression"
    exponent: float

    def evaluate(self, values: Mapping[str, float]) -> float:
        base = self.base.evaluate(values)
        try:
            result = base ** self.exponent
        except (OverflowError, ZeroDivisionError) as e:
            raise EvaluationError(f"Cannot raise {base} to {self.exponent}: {e}") from e
        if isinstance(result, complex):
            raise EvaluationError(f"Cannot raise {base} to {self.exponent}")
        return float(result)

    def variables(self) -> set[str]:
        return self.base.variables()

    def linear_terms(self) -> tuple[dict[str, float], float] | None:
        if self.exponent == 1.0:
            return self.base.linear_terms()
        if self.exponent == 0.0:
            return {}, 1.0
        return None


class Absolute(ExpressionNode):
    kind: Literal["abs"] = "abs"
    operand: "Expression"

    def evaluate(self, values: Mapping[str, float]) -> float:
        return abs(self.operand.evaluate(values))

    def variables(self) -> set[str]:
        return self.operand.variables()


class Condition(ExpressionNode):
    """Indicator: 1.0 when `operand <operator> value` holds, else 0.0."""

    kind: Literal["condition"] = "condition"
    operand: "Expression"
    operator: ComparisonOperator
    value: float = 0.0

    def evaluate(self, values: Mapping[str, float]) -> float:
        return 1.0 if compare(self.operand.evaluate(values), self.operator, self.value) else 0.0

    def variables(self) -> set[str]:
        return self.operand.variables()


Expression = Annotated[
    Union[Constant, VariableRef, Linear, Sum, Product, Power, Absolute, Condition],
    Field(discriminator="kind"),
]

for _model in (Sum, Product, Power, Absolute, Condition):
    _model.model_rebuild()


def as_expression(value) -> ExpressionNode:
    """Coerce numbers to constants; pass expression nodes through."""
    if isinstance(value, ExpressionNode):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return Constant(value=float(value))
    raise TypeError(f"Cannot use {type(value).__name__} in an expression")


def const(value: float) -> Constant:
    return Constant(value=float(value))


def var(name: str) -> VariableRef:
    return VariableRef(name=name)


def linear(coefficients: Mapping[str, float], constant: float = 0.0) -> Linear:
    return Linear(coefficients=dict(coefficients), constant=constant)
