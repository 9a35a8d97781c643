"""
Human-readable rendering of rule trees, and the matching re-parser.

Syntax::

    AND(age >= 18, OR(income < 50000, is_student == true))
    region in ["north", "south"] {id="r7", clause="c3", confidence=0.85}
    NOT(`household size` > 4)

Comparison operators print as ``== != < <= > >= in`` and ``not in``.
Variables that are not plain identifiers (or collide with a keyword) are
back-quoted. The optional ``{...}`` block after an expression carries the
rule's metadata; when it is present ``parse_rule(print_rule(rule)) == rule``.
Without it, ids are derived from the position in the tree so that printing
and parsing a second time changes nothing.
"""

import json
import re

from policy_logic.constraints import operator_symbol
from policy_logic.exceptions import SchemaValidationError
from policy_logic.models.rules import (
    BooleanValue,
    LogicalRule,
    NumericValue,
    Operator,
    StringSetValue,
    StringValue,
    format_number,
)

KEYWORDS = frozenset({"AND", "OR", "NOT", "in", "not", "true", "false"})

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_.]*")

_TOKEN = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<string>"(?:[^"\\]|\\.)*")
    | (?P<quoted>`(?:[^`]|``)*`)
    | (?P<number>-?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
    | (?P<op>==|!=|<=|>=|<|>)
    | (?P<punct>[(),{}\[\]=])
    | (?P<ident>[A-Za-z_][A-Za-z0-9_.]*)
    """,
    re.VERBOSE,
)

_SYMBOL_OPERATORS = {
    "==": Operator.EQ,
    "!=": Operator.NEQ,
    "<": Operator.LT,
    "<=": Operator.LTE,
    ">": Operator.GT,
    ">=": Operator.GTE,
}

ANNOTATION_KEYS = ("id", "var", "clause", "confidence", "group")


# =============================================================================
# Printing
# =============================================================================


def print_rule(rule: LogicalRule, annotate: bool = True) -> str:
    """Render a rule tree on one line. Deterministic for equal rules."""
    if rule.operator.is_logical:
        inner = ", ".join(print_rule(child, annotate) for child in rule.children)
        text = f"{rule.operator.value}({inner})"
    else:
        text = (
            f"{format_variable(rule.variable)} "
            f"{operator_symbol(rule.operator)} {format_literal(rule.value)}"
        )
    if annotate:
        text += " " + _annotation(rule)
    return text


def format_variable(name: str) -> str:
    if _IDENTIFIER.fullmatch(name) and name not in KEYWORDS:
        return name
    return "`" + name.replace("`", "``") + "`"


def format_literal(value) -> str:
    if isinstance(value, NumericValue):
        return format_number(value.value)
    if isinstance(value, BooleanValue):
        return "true" if value.value else "false"
    if isinstance(value, StringValue):
        return json.dumps(value.value)
    if isinstance(value, StringSetValue):
        return "[" + ", ".join(json.dumps(v) for v in sorted(value.value)) + "]"
    raise SchemaValidationError(
        f"Cannot print operand {value!r}", error_code="TYPE_MISMATCH", field="value"
    )


def _annotation(rule: LogicalRule) -> str:
    parts = [f"id={json.dumps(rule.rule_id)}"]
    if rule.operator.is_logical:
        parts.append(f"var={json.dumps(rule.variable)}")
    parts.append(f"clause={json.dumps(rule.clause_reference)}")
    if rule.confidence is not None:
        parts.append(f"confidence={format_number(rule.confidence)}")
    if rule.logical_group is not None:
        parts.append(f"group={json.dumps(rule.logical_group)}")
    return "{" + ", ".join(parts) + "}"


# =============================================================================
# Parsing
# =============================================================================


def _tokenize(text: str) -> list[tuple[str, str, int]]:
    tokens = []
    pos = 0
    while pos < len(text):
        match = _TOKEN.match(text, pos)
        if match is None:
            raise _error(f"Unexpected character {text[pos]!r}", pos)
        kind = match.lastgroup
        if kind != "ws":
            tokens.append((kind, match.group(), pos))
        pos = match.end()
    return tokens


def _error(message: str, position: int) -> SchemaValidationError:
    return SchemaValidationError(
        f"{message} at position {position}",
        error_code="PARSE_ERROR",
        details={"position": position},
    )


class _Parser:
    """Recursive-descent parser over the token list."""

    def __init__(self, text: str, clause_reference: str, confidence: float):
        self.text = text
        self.tokens = _tokenize(text)
        self.index = 0
        self.clause_reference = clause_reference
        self.confidence = confidence

    def peek(self, offset: int = 0) -> tuple[str, str, int] | None:
        i = self.index + offset
        return self.tokens[i] if i < len(self.tokens) else None

    def next(self) -> tuple[str, str, int]:
        token = self.peek()
        if token is None:
            raise _error("Unexpected end of input", len(self.text))
        self.index += 1
        return token

    def expect(self, value: str) -> None:
        kind, text, pos = self.next()
        if text != value or kind == "string":
            raise _error(f"Expected {value!r}, found {text!r}", pos)

    def at(self, value: str) -> bool:
        token = self.peek()
        return token is not None and token[1] == value and token[0] in ("punct", "op", "ident")

    def parse(self, rule_id: str) -> LogicalRule:
        rule = self.expression(rule_id)
        token = self.peek()
        if token is not None:
            raise _error(f"Unexpected trailing {token[1]!r}", token[2])
        return rule

    def expression(self, rule_id: str) -> LogicalRule:
        token = self.peek()
        if token is None:
            raise _error("Expected an expression", len(self.text))
        nxt = self.peek(1)
        if token[0] == "ident" and token[1] in ("AND", "OR", "NOT") and nxt is not None and nxt[1] == "(":
            return self.logical(rule_id)
        return self.comparison(rule_id)

    def logical(self, rule_id: str) -> LogicalRule:
        _, name, _ = self.next()
        operator = Operator(name)
        self.expect("(")
        children = [self.expression(f"{rule_id}.0")]
        while self.at(","):
            self.next()
            children.append(self.expression(f"{rule_id}.{len(children)}"))
        self.expect(")")
        fields = {
            "rule_id": rule_id,
            "variable": name.lower(),
            "operator": operator,
            "children": tuple(children),
        }
        return self.finish(fields, logical=True)

    def comparison(self, rule_id: str) -> LogicalRule:
        kind, text, pos = self.next()
        if kind == "quoted":
            variable = text[1:-1].replace("``", "`")
        elif kind == "ident" and text not in KEYWORDS:
            variable = text
        else:
            raise _error(f"Expected a variable, found {text!r}", pos)

        kind, text, pos = self.next()
        if kind == "op":
            operator = _SYMBOL_OPERATORS[text]
        elif kind == "ident" and text == "in":
            operator = Operator.IN
        elif kind == "ident" and text == "not":
            self.expect("in")
            operator = Operator.NOT_IN
        else:
            raise _error(f"Expected a comparison operator, found {text!r}", pos)

        fields = {
            "rule_id": rule_id,
            "variable": variable,
            "operator": operator,
            "value": self.literal(),
        }
        return self.finish(fields, logical=False)

    def literal(self):
        kind, text, pos = self.next()
        if kind == "number":
            return NumericValue(value=float(text))
        if kind == "string":
            return StringValue(value=json.loads(text))
        if kind == "ident" and text in ("true", "false"):
            return BooleanValue(value=text == "true")
        if text == "[":
            items: list[str] = []
            if not self.at("]"):
                items.append(self.string())
                while self.at(","):
                    self.next()
                    items.append(self.string())
            self.expect("]")
            return StringSetValue(value=frozenset(items))
        raise _error(f"Expected a literal, found {text!r}", pos)

    def string(self) -> str:
        kind, text, pos = self.next()
        if kind != "string":
            raise _error(f"Expected a string, found {text!r}", pos)
        return json.loads(text)

    def finish(self, fields: dict, logical: bool) -> LogicalRule:
        fields.setdefault("clause_reference", self.clause_reference)
        fields.setdefault("confidence", self.confidence)
        if self.at("{"):
            fields.update(self.annotation(logical))
        return LogicalRule(**fields)

    def annotation(self, logical: bool) -> dict:
        self.expect("{")
        values: dict = {}
        while True:
            kind, key, pos = self.next()
            if kind != "ident" or key not in ANNOTATION_KEYS:
                raise _error(f"Unknown annotation key {key!r}", pos)
            if key == "var" and not logical:
                raise _error("'var' is only valid on AND/OR/NOT", pos)
            self.expect("=")
            kind, text, pos = self.next()
            if key == "confidence":
                if kind != "number":
                    raise _error(f"Expected a number for confidence, found {text!r}", pos)
                values["confidence"] = float(text)
            else:
                if kind != "string":
                    raise _error(f"Expected a string for {key}, found {text!r}", pos)
                field_name = {
                    "id": "rule_id",
                    "var": "variable",
                    "clause": "clause_reference",
                    "group": "logical_group",
                }[key]
                values[field_name] = json.loads(text)
            if self.at(","):
                self.next()
                continue
            break
        self.expect("}")
        return values


def parse_rule(
    text: str,
    clause_reference: str = "",
    confidence: float = 1.0,
    id_prefix: str = "r",
) -> LogicalRule:
    """Parse printed text back into a rule tree.

    Args:
        text: Output of ``print_rule`` (annotated or not).
        clause_reference: Clause id for nodes without an annotation.
        confidence: Confidence for nodes without an annotation.
        id_prefix: Root id for nodes without an annotation; children get
            ``<prefix>.<position>``.

    Raises:
        SchemaValidationError: With ``error_code="PARSE_ERROR"`` and the
            character position on malformed input.
    """
    return _Parser(text, clause_reference, confidence).parse(id_prefix)


def rules_equivalent(a: LogicalRule, b: LogicalRule) -> bool:
    """Same logical structure: operators, variables, operands and child order.

    Metadata (ids, clause references, confidence, groups) is ignored.
    """
    if a.operator != b.operator or len(a.children) != len(b.children):
        return False
    if a.operator.is_comparison and (a.variable != b.variable or a.value != b.value):
        return False
    return all(rules_equivalent(x, y) for x, y in zip(a.children, b.children))
