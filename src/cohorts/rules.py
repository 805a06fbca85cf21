"""Cohort definitions and the rules they are made of.

Rules arrive from the dashboard as loose JSON and are untrusted. They are
validated into `Rule` models here, and their values are turned into a
small tagged union (`TextValue` | `NumberValue`) exactly once, at the
compiler boundary. Nothing past the compiler sees raw JSON values.
"""

import hashlib
import json
import math
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict


class Operator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    BETWEEN = "between"

    @classmethod
    def parse(cls, raw: str) -> "Operator | None":
        try:
            return cls(raw)
        except ValueError:
            return None


@dataclass(frozen=True)
class TextValue:
    text: str


@dataclass(frozen=True)
class NumberValue:
    number: float


RuleValue = TextValue | NumberValue


def to_rule_value(raw: str | int | float | bool) -> RuleValue:
    if isinstance(raw, bool):
        return TextValue("true" if raw else "false")
    if isinstance(raw, (int, float)):
        return NumberValue(float(raw))
    return TextValue(str(raw))


def as_number(value: RuleValue) -> float | None:
    """Coerce a rule value to a finite float, or None if it is not one."""
    if isinstance(value, NumberValue):
        number = value.number
    else:
        try:
            number = float(value.text.strip())
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def as_text(value: RuleValue) -> str:
    if isinstance(value, TextValue):
        return value.text
    if value.number.is_integer():
        return str(int(value.number))
    return repr(value.number)


class Rule(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    # Kept as a plain string so unknown operators can be skipped, not rejected
    operator: str
    value: str | int | float | bool
    value2: str | int | float | bool | None = None

    @property
    def typed_value(self) -> RuleValue:
        return to_rule_value(self.value)

    @property
    def typed_value2(self) -> RuleValue | None:
        if self.value2 is None:
            return None
        return to_rule_value(self.value2)


class Cohort(BaseModel):
    """A named segment owned by one site.

    Frozen so a computation never observes its rules changing mid-query.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    site_id: str
    name: str
    rules: tuple[Rule, ...] = ()

    @property
    def rules_hash(self) -> str:
        canonical = json.dumps(
            [r.model_dump() for r in self.rules],
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode()).hexdigest()[:16]
