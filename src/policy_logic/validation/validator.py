"""
Schema and consistency validation of a submitted Intermediate Representation.

Validation is fail-fast: the first malformed rule rejects the whole rule set
with a ``SchemaValidationError`` naming the rule id and the offending field.
Low-confidence rules are not rejected here; they pass through and are
flagged when the graph is built.
"""

import math
from collections import Counter
from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from policy_logic.config import Settings, get_settings
from policy_logic.exceptions import SchemaValidationError
from policy_logic.models.rules import (
    IntermediateRepresentation,
    LogicalRule,
    Operator,
    ValueKind,
)

logger = structlog.get_logger(__name__)

REQUIRED_FIELDS = ("rule_id", "variable", "clause_reference")

SCALAR_KINDS = frozenset({ValueKind.NUMERIC, ValueKind.STRING, ValueKind.BOOLEAN})


class IRValidator:
    """Validates IR payloads before they enter the graph constructor."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def validate(self, payload: IntermediateRepresentation | Mapping[str, Any]) -> IntermediateRepresentation:
        """Validate an IR and return it unchanged.

        Args:
            payload: An ``IntermediateRepresentation`` or its raw JSON mapping.

        Returns:
            The validated IR.

        Raises:
            SchemaValidationError: On the first missing/invalid field, type
                mismatch, rule-tree cycle, duplicate id or unresolved clause.
        """
        ir = self._parse(payload)
        self._check_schema_version(ir)

        domains = self._declared_domains(ir)
        for root in ir.rules:
            self._check_tree(root, path=(), on_path=set(), domains=domains)

        self._check_unique_rule_ids(ir)
        self._check_documents(ir)

        threshold = self.settings.extraction_confidence_threshold
        low_confidence = [
            rule.rule_id
            for root in ir.rules
            for rule in root.walk()
            if rule.confidence < threshold
        ]
        if low_confidence:
            logger.warning(
                "low_confidence_rules_passed_through",
                count=len(low_confidence),
                threshold=threshold,
                rule_ids=low_confidence[:20],
            )

        logger.info(
            "ir_validated",
            schema_version=ir.schema_version,
            root_rules=len(ir.rules),
            documents=len(ir.documents),
        )
        return ir

    # =========================================================================
    # Parsing
    # =========================================================================

    def _parse(self, payload: Any) -> IntermediateRepresentation:
        if isinstance(payload, IntermediateRepresentation):
            return payload
        if not isinstance(payload, Mapping):
            raise SchemaValidationError(
                f"IR payload must be a mapping, got {type(payload).__name__}",
                error_code="MALFORMED_IR",
            )
        try:
            return IntermediateRepresentation.model_validate(dict(payload))
        except ValidationError as exc:
            raise self._from_pydantic(exc, payload) from exc

    def _from_pydantic(self, exc: ValidationError, payload: Mapping[str, Any]) -> SchemaValidationError:
        """Translate a pydantic error into the core's error shape."""
        errors = exc.errors()
        first = errors[0]
        rule_id, field = _locate(payload, first["loc"])
        missing = []
        for err in errors:
            if err["type"] == "missing":
                _, missing_field = _locate(payload, err["loc"])
                if missing_field and missing_field not in missing:
                    missing.append(missing_field)

        details: dict[str, Any] = {
            "errors": [
                {
                    "loc": ".".join(str(part) for part in err["loc"]),
                    "message": err["msg"],
                    "type": err["type"],
                }
                for err in errors
            ],
        }
        if missing:
            details["missing_fields"] = missing

        where = f"rule '{rule_id}'" if rule_id else "IR"
        return SchemaValidationError(
            f"Malformed {where}: {field or 'payload'}: {first['msg']}",
            error_code="MISSING_FIELD" if missing else "MALFORMED_IR",
            rule_id=rule_id,
            field=field,
            details=details,
        )

    # =========================================================================
    # Rule checks
    # =========================================================================

    def _check_schema_version(self, ir: IntermediateRepresentation) -> None:
        if ir.schema_version not in self.settings.supported_schema_versions:
            raise SchemaValidationError(
                f"Unsupported schema_version '{ir.schema_version}'",
                error_code="UNSUPPORTED_SCHEMA_VERSION",
                field="schema_version",
                details={"supported": list(self.settings.supported_schema_versions)},
            )

    def _declared_domains(self, ir: IntermediateRepresentation) -> dict[str, tuple[ValueKind, str]]:
        domains = {}
        for variable, kind in ir.variable_domains.items():
            if kind not in SCALAR_KINDS:
                raise SchemaValidationError(
                    f"Declared domain of '{variable}' must be a scalar type, got {kind.value}",
                    error_code="TYPE_MISMATCH",
                    field="variable_domains",
                    details={"variable": variable},
                )
            domains[variable] = (kind, "declared")
        return domains

    def _check_tree(
        self,
        rule: LogicalRule,
        path: tuple[str, ...],
        on_path: set[int],
        domains: dict[str, tuple[ValueKind, str]],
    ) -> None:
        """Depth-first check of one rule tree with a visited-in-path set."""
        if id(rule) in on_path or (rule.rule_id and rule.rule_id in path):
            raise SchemaValidationError(
                f"Rule '{rule.rule_id}' contains itself as a descendant",
                error_code="RULE_CYCLE",
                rule_id=rule.rule_id,
                field="children",
                details={"path": list(path) + [rule.rule_id]},
            )

        self._check_rule(rule, domains)

        on_path.add(id(rule))
        for child in rule.children:
            self._check_tree(child, path + (rule.rule_id,), on_path, domains)
        on_path.discard(id(rule))

    def _check_rule(self, rule: LogicalRule, domains: dict[str, tuple[ValueKind, str]]) -> None:
        missing = [name for name in REQUIRED_FIELDS if not getattr(rule, name)]
        if rule.confidence is None:
            missing.append("confidence")
        if rule.operator.is_comparison and rule.value is None:
            missing.append("value")
        if missing:
            raise SchemaValidationError(
                f"Rule '{rule.rule_id or '<unnamed>'}' is missing required field(s): "
                f"{', '.join(missing)}",
                error_code="MISSING_FIELD",
                rule_id=rule.rule_id or None,
                field=missing[0],
                details={"missing_fields": missing},
            )

        if math.isnan(rule.confidence) or not 0.0 <= rule.confidence <= 1.0:
            raise SchemaValidationError(
                f"Rule '{rule.rule_id}' has confidence {rule.confidence} outside [0, 1]",
                error_code="INVALID_CONFIDENCE",
                rule_id=rule.rule_id,
                field="confidence",
            )

        if rule.operator.is_logical:
            self._check_logical(rule)
        else:
            self._check_comparison(rule, domains)

    def _check_logical(self, rule: LogicalRule) -> None:
        if rule.value is not None:
            raise SchemaValidationError(
                f"Logical rule '{rule.rule_id}' ({rule.operator.value}) must not carry a value",
                error_code="TYPE_MISMATCH",
                rule_id=rule.rule_id,
                field="value",
            )
        if not rule.children:
            raise SchemaValidationError(
                f"Logical rule '{rule.rule_id}' ({rule.operator.value}) has no children",
                error_code="MISSING_CHILDREN",
                rule_id=rule.rule_id,
                field="children",
            )
        if rule.operator == Operator.NOT and len(rule.children) != 1:
            raise SchemaValidationError(
                f"NOT rule '{rule.rule_id}' must have exactly one child, has {len(rule.children)}",
                error_code="INVALID_CHILDREN",
                rule_id=rule.rule_id,
                field="children",
            )

    def _check_comparison(self, rule: LogicalRule, domains: dict[str, tuple[ValueKind, str]]) -> None:
        if rule.children:
            raise SchemaValidationError(
                f"Comparison rule '{rule.rule_id}' ({rule.operator.value}) must not have children",
                error_code="INVALID_CHILDREN",
                rule_id=rule.rule_id,
                field="children",
            )

        kind = rule.value.value_kind
        op = rule.operator
        problem = None
        if op.is_ordering and kind != ValueKind.NUMERIC:
            problem = "requires a numeric value"
        elif op.is_membership and kind != ValueKind.STRING_SET:
            problem = "requires a set of strings"
        elif op in (Operator.EQ, Operator.NEQ) and kind == ValueKind.STRING_SET:
            problem = "requires a scalar value"
        if problem:
            raise SchemaValidationError(
                f"Rule '{rule.rule_id}': {op.value} {problem}, got {kind.value}",
                error_code="TYPE_MISMATCH",
                rule_id=rule.rule_id,
                field="value",
                details={"operator": op.value, "value_kind": kind.value},
            )
        if kind == ValueKind.NUMERIC and not math.isfinite(rule.value.value):
            raise SchemaValidationError(
                f"Rule '{rule.rule_id}': numeric value must be finite, got {rule.value.value}",
                error_code="TYPE_MISMATCH",
                rule_id=rule.rule_id,
                field="value",
                details={"operator": op.value, "value_kind": kind.value},
            )

        domain =ValueKind.STRING if kind == ValueKind.STRING_SET else kind
        known = domains.get(rule.variable)
        if known is None:
            domains[rule.variable] = (domain, rule.rule_id)
        elif known[0] != domain:
            origin = "declared" if known[1] == "declared" else f"inferred from rule '{known[1]}'"
            raise SchemaValidationError(
                f"Rule '{rule.rule_id}': variable '{rule.variable}' has domain "
                f"{known[0].value} ({origin}), but value is {kind.value}",
                error_code="TYPE_MISMATCH",
                rule_id=rule.rule_id,
                field="value",
                details={"variable": rule.variable, "expected": known[0].value, "got": domain.value},
            )

    # =========================================================================
    # IR-level checks
    # =========================================================================

    def _check_unique_rule_ids(self, ir: IntermediateRepresentation) -> None:
        counts = Counter(rule.rule_id for root in ir.rules for rule in root.walk())
        for rule_id, count in counts.items():
            if count > 1:
                raise SchemaValidationError(
                    f"Rule id '{rule_id}' is used by {count} rules",
                    error_code="DUPLICATE_RULE_ID",
                    rule_id=rule_id,
                    field="rule_id",
                )

    def _check_documents(self, ir: IntermediateRepresentation) -> None:
        if not ir.documents:
            return

        policy_counts = Counter(doc.policy_id for doc in ir.documents)
        for policy_id, count in policy_counts.items():
            if count > 1:
                raise SchemaValidationError(
                    f"Policy id '{policy_id}' is declared by {count} documents",
                    error_code="DUPLICATE_POLICY_ID",
                    field="documents",
                    details={"policy_id": policy_id},
                )

        clause_ids: set[str] = set()
        for doc in ir.documents:
            for clause in doc.clauses:
                if clause.clause_id in clause_ids:
                    raise SchemaValidationError(
                        f"Clause id '{clause.clause_id}' appears in more than one place",
                        error_code="DUPLICATE_CLAUSE_ID",
                        field="documents",
                        details={"clause_id": clause.clause_id, "policy_id": doc.policy_id},
                    )
                clause_ids.add(clause.clause_id)

        for root in ir.rules:
            for rule in root.walk():
                if rule.clause_reference not in clause_ids:
                    raise SchemaValidationError(
                        f"Rule '{rule.rule_id}' references unknown clause "
                        f"'{rule.clause_reference}'",
                        error_code="UNRESOLVED_CLAUSE",
                        rule_id=rule.rule_id,
                        field="clause_reference",
                    )


def _locate(payload: Mapping[str, Any], loc: tuple[Any, ...]) -> tuple[str | None, str | None]:
    """Find the rule id and field name a pydantic error location points at."""
    node: Any = payload
    rule: Mapping[str, Any] | None = None
    in_rule_list = False
    for part in loc:
        if isinstance(part, int):
            if not isinstance(node, (list, tuple)) or not 0 <= part < len(node):
                break
            node = node[part]
            if in_rule_list and isinstance(node, Mapping):
                rule = node
            continue
        in_rule_list = part in ("rules", "children")
        node = node.get(part) if isinstance(node, Mapping) else None

    names = [part for part in loc if isinstance(part, str)]
    field = names[-1] if names else None

    rule_id = None
    if rule is not None:
        raw = rule.get("rule_id")
        rule_id = raw if isinstance(raw, str) and raw else None
    return rule_id, field


def validate_ir(payload: IntermediateRepresentation | Mapping[str, Any]) -> IntermediateRepresentation:
    """Validate with default settings."""
    return IRValidator().validate(payload)
