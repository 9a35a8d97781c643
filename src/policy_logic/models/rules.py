"""
Rule and Intermediate Representation models.

A policy clause arrives from the upstream extractor as a tree of
``LogicalRule`` nodes. Operands are a closed tagged union so operator/value
compatibility can be checked exhaustively.
"""

import hashlib
import json
from collections.abc import Iterator
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class Operator(str, Enum):
    """Comparison and logical operators of a rule node."""

    EQ = "EQ"
    NEQ = "NEQ"
    LT = "LT"
    LTE = "LTE"
    GT = "GT"
    GTE = "GTE"
    IN = "IN"
    NOT_IN = "NOT_IN"
    AND = "AND"
    OR = "OR"
    NOT = "NOT"

    @property
    def is_logical(self) -> bool:
        return self in _LOGICAL

    @property
    def is_comparison(self) -> bool:
        return self not in _LOGICAL

    @property
    def is_ordering(self) -> bool:
        return self in _ORDERING

    @property
    def is_membership(self) -> bool:
        return self in (Operator.IN, Operator.NOT_IN)

    def negated(self) -> "Operator":
        """Complement of a comparison operator (EQ <-> NEQ, LT <-> GTE, ...)."""
        try:
            return _NEGATIONS[self]
        except KeyError:
            raise ValueError(f"{self.value} has no comparison complement") from None


_LOGICAL = frozenset({Operator.AND, Operator.OR, Operator.NOT})
_ORDERING = frozenset({Operator.LT, Operator.LTE, Operator.GT, Operator.GTE})
_NEGATIONS = {
    Operator.EQ: Operator.NEQ,
    Operator.NEQ: Operator.EQ,
    Operator.LT: Operator.GTE,
    Operator.GTE: Operator.LT,
    Operator.LTE: Operator.GT,
    Operator.GT: Operator.LTE,
    Operator.IN: Operator.NOT_IN,
    Operator.NOT_IN: Operator.IN,
}


class ValueKind(str, Enum):
    """Domain types an operand (or a variable) can have."""

    NUMERIC = "numeric"
    STRING = "string"
    BOOLEAN = "boolean"
    STRING_SET = "string_set"


def format_number(value: float) -> str:
    """Render a float without a spurious ``.0`` for whole numbers."""
    if value == value and abs(value) < 1e16 and float(value).is_integer():
        return str(int(value))
    return repr(float(value))


# =============================================================================
# Operands
# =============================================================================


class NumericValue(BaseModel):
    kind: Literal["numeric"] = "numeric"
    value: float

    model_config = ConfigDict(frozen=True)

    @property
    def value_kind(self) -> ValueKind:
        return ValueKind.NUMERIC

    def describe(self) -> str:
        return format_number(self.value)


class StringValue(BaseModel):
    kind: Literal["string"] = "string"
    value: str

    model_config = ConfigDict(frozen=True)

    @property
    def value_kind(self) -> ValueKind:
        return ValueKind.STRING

    def describe(self) -> str:
        return json.dumps(self.value)


class BooleanValue(BaseModel):
    kind: Literal["boolean"] = "boolean"
    value: bool

    model_config = ConfigDict(frozen=True)

    @property
    def value_kind(self) -> ValueKind:
        return ValueKind.BOOLEAN

    def describe(self) -> str:
        return "true" if self.value else "false"


class StringSetValue(BaseModel):
    kind: Literal["string_set"] = "string_set"
    value: frozenset[str]

    model_config = ConfigDict(frozen=True)

    @field_serializer("value")
    def _sorted(self, value: frozenset[str]) -> list[str]:
        return sorted(value)

    @property
    def value_kind(self) -> ValueKind:
        return ValueKind.STRING_SET

    def describe(self) -> str:
        return "[" + ", ".join(json.dumps(v) for v in sorted(self.value)) + "]"


RuleValue = Annotated[
    Union[NumericValue, StringValue, BooleanValue, StringSetValue],
    Field(discriminator="kind"),
]


def coerce_rule_value(value: Any) -> Any:
    """Wrap a bare JSON scalar or list into its tagged operand form.

    Tagged mappings and operand models pass through untouched.
    """
    if value is None or isinstance(value, (BaseModel, dict)):
        return value
    if isinstance(value, bool):
        return {"kind": "boolean", "value": value}
    if isinstance(value, (int, float)):
        return {"kind": "numeric", "value": value}
    if isinstance(value, str):
        return {"kind": "string", "value": value}
    if isinstance(value, (list, tuple, set, frozenset)):
        return {"kind": "string_set", "value": list(value)}
    return value


# =============================================================================
# Rules
# =============================================================================


class LogicalRule(BaseModel):
    """
    A node of a logical expression tree extracted from one clause.

    Comparison rules (EQ..NOT_IN) constrain ``variable`` against ``value`` and
    have no children; AND/OR/NOT rules combine their ``children`` and carry no
    value. Structural parsing is lenient: emptiness and ranges are enforced by
    the IR validator so errors can name the offending rule.
    """

    rule_id: str = ""
    variable: str = ""
    operator: Operator
    value: RuleValue | None = None
    clause_reference: str = ""
    confidence: float | None = None
    logical_group: str | None = None
    children: tuple["LogicalRule", ...] = ()

    model_config = ConfigDict(frozen=True)

    @field_validator("rule_id", "variable", "clause_reference", mode="before")
    @classmethod
    def strip_identifiers(cls, v: Any) -> Any:
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v

    @field_validator("value", mode="before")
    @classmethod
    def wrap_bare_value(cls, v: Any) -> Any:
        return coerce_rule_value(v)

    @property
    def is_leaf(self) -> bool:
        return self.operator.is_comparison

    def walk(self) -> Iterator["LogicalRule"]:
        """Pre-order traversal of this rule and its descendants."""
        yield self
        for child in self.children:
            yield from child.walk()

    def leaves(self) -> list["LogicalRule"]:
        return [r for r in self.walk() if r.is_leaf]

    def depth(self) -> int:
        """Number of levels in the tree (a single comparison has depth 1)."""
        if not self.children:
            return 1
        return 1 + max(child.depth() for child in self.children)


LogicalRule.model_rebuild()


# =============================================================================
# Source documents
# =============================================================================


class ClauseRecord(BaseModel):
    """A clause of a source policy document."""

    clause_id: str = Field(..., min_length=1)
    text: str = ""
    readability: float | None = Field(
        default=None, ge=0.0, le=1.0,
        description="Externally computed readability index (1 = easiest)",
    )
    ambiguous: bool = Field(default=False, description="Flagged ambiguous upstream")

    model_config = ConfigDict(frozen=True)


class PolicyDocument(BaseModel):
    """A source document; compiles to one POLICY node."""

    policy_id: str = Field(..., min_length=1)
    title: str = ""
    entity_type: str | None = Field(
        default=None, description="Population the policy applies to"
    )
    clauses: tuple[ClauseRecord, ...] = ()
    requires: tuple[str, ...] = Field(
        default=(), description="Policies whose eligibility this policy requires"
    )
    applies_to: tuple[str, ...] = Field(
        default=(), description="Policies this policy is explicitly linked to"
    )

    model_config = ConfigDict(frozen=True)


class IntermediateRepresentation(BaseModel):
    """The rule set submitted by the neural-parsing collaborator."""

    schema_version: str = "1.0"
    rules: tuple[LogicalRule, ...] = ()
    documents: tuple[PolicyDocument, ...] = ()
    variable_domains: dict[str, ValueKind] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    def fingerprint(self) -> str:
        """SHA-256 of the canonical JSON form."""
        canonical = json.dumps(self.model_dump(mode="json"), sort_keys=True)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
