"""
Constraint algebra over single-variable comparisons.

Used by the reasoning pre-check and by the conflict detector to decide
whether two conditions can both hold, and whether one implies another:

- numeric constraints reduce to intervals (``NEQ`` is handled as a hole)
- string constraints reduce to a finite set or the complement of one
- boolean constraints reduce to the set of allowed truth values
"""

import math
from dataclasses import dataclass
from typing import Any

from policy_logic.models.rules import (
    BooleanValue,
    NumericValue,
    Operator,
    StringSetValue,
    StringValue,
    ValueKind,
    format_number,
)

_SYMBOLS = {
    Operator.EQ: "==",
    Operator.NEQ: "!=",
    Operator.LT: "<",
    Operator.LTE: "<=",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.IN: "in",
    Operator.NOT_IN: "not in",
}


def operator_symbol(operator: Operator) -> str:
    return _SYMBOLS.get(operator, operator.value)


@dataclass(frozen=True)
class Interval:
    """A (possibly unbounded) interval of the real line."""
    low: float = -math.inf
    low_closed: bool = False
    high: float = math.inf
    high_closed: bool = False

    @property
    def is_empty(self) -> bool:
        if self.low > self.high:
            return True
        return self.low == self.high and not (self.low_closed and self.high_closed)

    @property
    def is_point(self) -> bool:
        return self.low == self.high and self.low_closed and self.high_closed

    def intersect(self, other: "Interval") -> "Interval":
        if self.low > other.low:
            low, low_closed = self.low, self.low_closed
        elif other.low > self.low:
            low, low_closed = other.low, other.low_closed
        else:
            low, low_closed = self.low, self.low_closed and other.low_closed

        if self.high < other.high:
            high, high_closed = self.high, self.high_closed
        elif other.high < self.high:
            high, high_closed = other.high, other.high_closed
        else:
            high, high_closed = self.high, self.high_closed and other.high_closed
        return Interval(low, low_closed, high, high_closed)

    def overlaps(self, other: "Interval") -> bool:
        return not self.intersect(other).is_empty

    def reaches(self, other: "Interval") -> bool:
        """Whether this interval extends at least to the lower end of ``other``."""
        if self.high > other.low:
            return True
        return self.high == other.low and self.high_closed and other.low_closed

    def contains(self, other: "Interval") -> bool:
        """True when ``other`` is a subset of this interval."""
        if other.is_empty:
            return True
        low_ok = self.low < other.low or (
            self.low == other.low and (self.low_closed or not other.low_closed)
        )
        high_ok = self.high > other.high or (
            self.high == other.high and (self.high_closed or not other.high_closed)
        )
        return low_ok and high_ok

    def contains_point(self, value: float) -> bool:
        return self.contains(Interval(value, True, value, True))

    def describe(self) -> str:
        if self.is_point:
            return f"[{format_number(self.low)}]"
        left = "[" if self.low_closed else "("
        right = "]" if self.high_closed else ")"
        low = "-inf" if self.low == -math.inf else format_number(self.low)
        high = "inf" if self.high == math.inf else format_number(self.high)
        return f"{left}{low}, {high}{right}"


@dataclass(frozen=True)
class Constraint:
    """``variable <operator> value`` for one comparison operator."""
    variable: str
    operator: Operator
    value: NumericValue | StringValue | BooleanValue | StringSetValue

    @classmethod
    def from_node(cls, node: Any, positive: bool = True) -> "Constraint":
        """Constraint of a leaf condition node (or comparison ``LogicalRule``),
        negated when ``positive`` is False."""
        operator = node.operator if positive else node.operator.negated()
        return cls(node.variable, operator, node.value)

    def negated(self) -> "Constraint":
        return Constraint(self.variable, self.operator.negated(), self.value)

    @property
    def domain(self) -> ValueKind:
        kind = self.value.value_kind
        return ValueKind.STRING if kind == ValueKind.STRING_SET else kind

    @property
    def interval(self) -> Interval | None:
        """Interval of a numeric constraint; None for NEQ and non-numeric ones."""
        if not isinstance(self.value, NumericValue):
            return None
        v = self.value.value
        return {
            Operator.EQ: Interval(v, True, v, True),
            Operator.LT: Interval(high=v),
            Operator.LTE: Interval(high=v, high_closed=True),
            Operator.GT: Interval(low=v),
            Operator.GTE: Interval(low=v, low_closed=True),
        }.get(self.operator)

    def describe(self) -> str:
        return f"{self.variable} {operator_symbol(self.operator)} {self.value.describe()}"

    def satisfied_by(self, candidate: Any) -> bool:
        """Evaluate the constraint against a concrete input value.

        Raises:
            TypeError: If ``candidate`` is not of the constraint's domain.
        """
        domain = self.domain
        if domain == ValueKind.NUMERIC:
            if isinstance(candidate, bool) or not isinstance(candidate, (int, float)):
                raise TypeError(f"expected a number, got {type(candidate).__name__}")
            if self.operator == Operator.NEQ:
                return candidate != self.value.value
            return self.interval.contains_point(float(candidate))
        if domain == ValueKind.BOOLEAN:
            if not isinstance(candidate, bool):
                raise TypeError(f"expected true/false, got {type(candidate).__name__}")
            return candidate in _allowed_booleans(self)
        values, complement = _string_set(self)
        # A list input holds several values: one match satisfies a positive
        # constraint, every element must pass a negative one.
        if isinstance(candidate, (list, tuple)):
            if not all(isinstance(item, str) for item in candidate):
                raise TypeError("expected a list of strings")
            if complement:
                return not any(item in values for item in candidate)
            return any(item in values for item in candidate)
        if not isinstance(candidate, str):
            raise TypeError(f"expected a string, got {type(candidate).__name__}")
        return (candidate in values) != complement


def _allowed_booleans(c: Constraint) -> frozenset[bool]:
    v = c.value.value
    return frozenset({v}) if c.operator == Operator.EQ else frozenset({not v})


def _string_set(c: Constraint) -> tuple[frozenset[str], bool]:
    """(values, complement) form of a string constraint."""
    if isinstance(c.value, StringValue):
        values = frozenset({c.value.value})
    else:
        values = frozenset(c.value.value)
    return values, c.operator in (Operator.NEQ, Operator.NOT_IN)


def _comparable(a: Constraint, b: Constraint) -> bool:
    return a.variable == b.variable and a.domain == b.domain


def jointly_satisfiable(a: Constraint, b: Constraint) -> bool:
    """Whether some value of the shared variable satisfies both constraints.

    Constraints on different variables (or of incompatible domains) are
    always jointly satisfiable.
    """
    if not _comparable(a, b):
        return True

    domain = a.domain
    if domain == ValueKind.NUMERIC:
        if a.operator == Operator.NEQ and b.operator == Operator.NEQ:
            return True
        if a.operator == Operator.NEQ or b.operator == Operator.NEQ:
            hole, other = (a, b) if a.operator == Operator.NEQ else (b, a)
            span = other.interval
            return not (span.is_point and span.low == hole.value.value)
        return a.interval.overlaps(b.interval)

    if domain == ValueKind.BOOLEAN:
        return bool(_allowed_booleans(a) & _allowed_booleans(b))

    a_values, a_comp = _string_set(a)
    b_values, b_comp = _string_set(b)
    if a_comp and b_comp:
        return True
    if not a_comp and not b_comp:
        return bool(a_values & b_values)
    positive, excluded = (a_values, b_values) if not a_comp else (b_values, a_values)
    return bool(positive - excluded)


def implies(a: Constraint, b: Constraint) -> bool:
    """Whether every value satisfying ``a`` also satisfies ``b``."""
    if not _comparable(a, b):
        return False

    domain = a.domain
    if domain == ValueKind.NUMERIC:
        if b.operator == Operator.NEQ:
            if a.operator == Operator.NEQ:
                return a.value.value == b.value.value
            return not a.interval.contains_point(b.value.value)
        if a.operator == Operator.NEQ:
            return False
        return b.interval.contains(a.interval)

    if domain == ValueKind.BOOLEAN:
        return _allowed_booleans(a) <= _allowed_booleans(b)

    a_values, a_comp = _string_set(a)
    b_values, b_comp = _string_set(b)
    if not a_comp and not b_comp:
        return a_values <= b_values
    if not a_comp and b_comp:
        return not (a_values & b_values)
    if a_comp and b_comp:
        return b_values <= a_values
    return False
