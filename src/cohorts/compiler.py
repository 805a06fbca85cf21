"""Compile cohort rules into a store predicate.

A cohort is a conjunction of rules. Each rule is checked against the field
whitelist, its value coerced to the field's type, and turned into one
`Condition` whose literals travel as bound parameters. Rules that cannot
be compiled (unknown field, unknown operator, bad literal) are skipped with
a warning; they never abort the rest of the cohort.

When nothing compiles, the predicate is always-true: the cohort degrades to
"all sessions" instead of failing the request.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from pydantic import ValidationError

from src.cohorts.fields import CohortField, ValueType
from src.cohorts.rules import Operator, Rule, as_number, as_text

logger = logging.getLogger(__name__)

ALWAYS_TRUE_SQL = "1=1"
LIKE_ESCAPE = "\\"


@dataclass(frozen=True)
class Condition:
    column: str
    op: str  # one of "=", ">", "<", "LIKE", "BETWEEN"
    params: tuple

    def to_sql(self) -> str:
        if self.op == "BETWEEN":
            return f"{self.column} BETWEEN ? AND ?"
        if self.op == "LIKE":
            return f"{self.column} LIKE ? ESCAPE '{LIKE_ESCAPE}'"
        return f"{self.column} {self.op} ?"

    def render_inline(self) -> str:
        literals = [quote_literal(p) for p in self.params]
        if self.op == "BETWEEN":
            return f"{self.column} BETWEEN {literals[0]} AND {literals[1]}"
        if self.op == "LIKE":
            return f"{self.column} LIKE {literals[0]} ESCAPE '{LIKE_ESCAPE}'"
        return f"{self.column} {self.op} {literals[0]}"


@dataclass(frozen=True)
class CompiledPredicate:
    """Ordered AND of conditions. Empty means always-true."""

    conditions: tuple[Condition, ...] = ()

    @property
    def is_always_true(self) -> bool:
        return not self.conditions

    @property
    def columns(self) -> list[str]:
        return [c.column for c in self.conditions]

    def to_sql(self) -> tuple[str, list]:
        """Return (sql, params) with `?` placeholders for every literal."""
        if self.is_always_true:
            return ALWAYS_TRUE_SQL, []
        sql = " AND ".join(c.to_sql() for c in self.conditions)
        params = [p for c in self.conditions for p in c.params]
        return sql, params

    def render_inline(self) -> str:
        """Render with escaped literals, for logs and stores without binding."""
        if self.is_always_true:
            return ALWAYS_TRUE_SQL
        return " AND ".join(c.render_inline() for c in self.conditions)


ALWAYS_TRUE = CompiledPredicate()


@dataclass(frozen=True)
class CompileWarning:
    rule_index: int
    field: str
    reason: str

    def __str__(self) -> str:
        return f"rule {self.rule_index} ({self.field}): {self.reason}"


@dataclass
class CompileResult:
    predicate: CompiledPredicate
    warnings: list[CompileWarning] = field(default_factory=list)


class _SkipRule(Exception):
    pass


def quote_literal(value) -> str:
    """Render a literal using the store's quoting rules.

    Strings are wrapped in single quotes with embedded quotes doubled, which
    is the only escape a standard SQL string literal recognises.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    text = str(value).replace("'", "''")
    return f"'{text}'"


def escape_like(text: str) -> str:
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def compile_rules(rules: Iterable[Rule | Mapping]) -> CompileResult:
    conditions = []
    warnings = []

    for index, raw in enumerate(rules or ()):
        field_name = _field_name(raw)
        try:
            rule = raw if isinstance(raw, Rule) else Rule.model_validate(raw)
            conditions.append(_compile_rule(rule))
        except ValidationError as exc:
            warnings.append(CompileWarning(index, field_name, f"malformed rule: {exc.error_count()} error(s)"))
        except _SkipRule as exc:
            warnings.append(CompileWarning(index, field_name, str(exc)))

    for warning in warnings:
        logger.warning(f"Skipping cohort {warning}")

    return CompileResult(CompiledPredicate(tuple(conditions)), warnings)


def compile(rules: Iterable[Rule | Mapping]) -> CompiledPredicate:
    return compile_rules(rules).predicate


def _field_name(raw) -> str:
    if isinstance(raw, Rule):
        return raw.field
    if isinstance(raw, Mapping):
        return str(raw.get("field", "?"))
    return "?"


def _compile_rule(rule: Rule) -> Condition:
    cohort_field = CohortField.lookup(rule.field)
    if cohort_field is None:
        raise _SkipRule(f"unsupported field {rule.field!r}")

    operator = Operator.parse(rule.operator)
    if operator is None:
        raise _SkipRule(f"unsupported operator {rule.operator!r}")

    column = cohort_field.store_column

    if cohort_field.value_type is ValueType.BOOLEAN:
        flag = as_text(rule.typed_value).strip().lower() == "true"
        return Condition(column, "=", (flag,))

    if cohort_field.value_type is ValueType.NUMBER:
        return _compile_numeric(column, operator, rule)

    if cohort_field.value_type is ValueType.STRING:
        return _compile_string(column, operator, rule)

    raise _SkipRule(f"unhandled value type {cohort_field.value_type!r}")


def _compile_numeric(column: str, operator: Operator, rule: Rule) -> Condition:
    if operator is Operator.CONTAINS:
        raise _SkipRule("contains is not valid on a numeric field")

    number = as_number(rule.typed_value)
    if number is None:
        raise _SkipRule(f"value {rule.value!r} is not a number")

    if operator is Operator.BETWEEN:
        return _compile_between(column, number, rule)
    if operator is Operator.GREATER_THAN:
        return Condition(column, ">", (number,))
    if operator is Operator.LESS_THAN:
        return Condition(column, "<", (number,))
    return Condition(column, "=", (number,))


def _compile_between(column: str, low: float, rule: Rule) -> Condition:
    second = rule.typed_value2
    if second is None:
        raise _SkipRule("between requires value2")
    high = as_number(second)
    if high is None:
        raise _SkipRule(f"value2 {rule.value2!r} is not a number")
    if high < low:
        low, high = high, low
    return Condition(column, "BETWEEN", (low, high))


def _compile_string(column: str, operator: Operator, rule: Rule) -> Condition:
    if operator in (Operator.GREATER_THAN, Operator.LESS_THAN, Operator.BETWEEN):
        raise _SkipRule(f"{operator.value} is not valid on a text field")

    text = as_text(rule.typed_value)
    if operator is Operator.CONTAINS:
        return Condition(column, "LIKE", (f"%{escape_like(text)}%",))
    return Condition(column, "=", (text,))
