"""Static table of domain-incompatible condition pairs.

Each entry names two constraints that cannot plausibly hold for the same
applicant. A path whose conditions imply both sides of an entry is flagged
as a logical impossibility.
"""

from dataclasses import dataclass

from policy_logic.constraints import Constraint
from policy_logic.models.conflicts import ConflictSeverity
from policy_logic.models.rules import BooleanValue, NumericValue, Operator


@dataclass(frozen=True)
class ImpossibilityRule:
    """A pair of constraints that never co-occur in practice."""
    first: Constraint
    second: Constraint
    severity: ConflictSeverity
    reason: str


def _num(variable: str, operator: Operator, value: float) -> Constraint:
    return Constraint(variable, operator, NumericValue(value=value))


def _flag(variable: str, value: bool) -> Constraint:
    return Constraint(variable, Operator.EQ, BooleanValue(value=value))


IMPOSSIBILITY_RULES: list[ImpossibilityRule] = [
    ImpossibilityRule(
        _flag("is_student", True), _num("work_experience_years", Operator.GTE, 10),
        ConflictSeverity.MEDIUM,
        "A current student is not expected to have ten or more years of work experience",
    ),
    ImpossibilityRule(
        _num("age", Operator.LT, 18), _num("work_experience_years", Operator.GTE, 10),
        ConflictSeverity.HIGH,
        "A minor cannot have accumulated ten years of work experience",
    ),
    ImpossibilityRule(
        _num("age", Operator.LT, 18), _flag("is_retired", True),
        ConflictSeverity.HIGH,
        "A minor cannot be retired",
    ),
    ImpossibilityRule(
        _num("age", Operator.LT, 18), _num("pension_contribution_years", Operator.GTE, 10),
        ConflictSeverity.HIGH,
        "A minor cannot have ten years of pension contributions",
    ),
    ImpossibilityRule(
        _num("age", Operator.LT, 16), _flag("is_married", True),
        ConflictSeverity.MEDIUM,
        "Marriage below sixteen is not legally recognised",
    ),
    ImpossibilityRule(
        _flag("is_unemployed", True), _num("employment_income", Operator.GT, 0),
        ConflictSeverity.HIGH,
        "An unemployed applicant has no employment income",
    ),
    ImpossibilityRule(
        _flag("is_employed", False), _num("employment_income", Operator.GT, 0),
        ConflictSeverity.HIGH,
        "An applicant without employment has no employment income",
    ),
    ImpossibilityRule(
        _flag("has_dependents", False), _num("number_of_dependents", Operator.GT, 0),
        ConflictSeverity.HIGH,
        "An applicant without dependents cannot report a positive number of them",
    ),
    ImpossibilityRule(
        _flag("is_citizen", False), _num("years_of_citizenship", Operator.GT, 0),
        ConflictSeverity.HIGH,
        "A non-citizen has no years of citizenship",
    ),
    ImpossibilityRule(
        _flag("is_homeowner", False), _num("property_tax_paid", Operator.GT, 0),
        ConflictSeverity.LOW,
        "Property tax is normally paid by owners, not tenants",
    ),
]
