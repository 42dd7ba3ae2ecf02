"""
Rule conditions — a closed predicate language evaluated against a context slice.

Conditions are persisted as JSON documents:

    {"type": "always"}
    {"type": "selected", "rule_id": "<uuid>"}            # rule_id optional
    {"type": "compare", "field": "floor", "op": "gt", "value": 3}
    {"type": "all", "conditions": [...]}
    {"type": "any", "conditions": [...]}
    {"type": "not", "condition": {...}}

A slice exposes `fields` (name -> value) and `selection` (set of selected ids).
A compare on a field the slice does not carry never matches. Comparing values
of incompatible types raises TypeError; the engine turns that into a skipped rule.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Tuple

from ..errors import ValidationError

OPERATORS = ("eq", "ne", "gt", "gte", "lt", "lte", "in", "not_in")


class Condition(ABC):

    @abstractmethod
    def matches(self, view, rule_id: str) -> bool:
        pass

    @abstractmethod
    def to_dict(self) -> dict:
        pass


@dataclass(frozen=True)
class Always(Condition):

    def matches(self, view, rule_id: str) -> bool:
        return True

    def to_dict(self) -> dict:
        return {"type": "always"}


@dataclass(frozen=True)
class IsSelected(Condition):
    """True when the rule's own id (or an explicit id) is selected for the slice."""

    rule_id: Optional[str] = None

    def matches(self, view, rule_id: str) -> bool:
        return (self.rule_id or rule_id) in view.selection

    def to_dict(self) -> dict:
        data = {"type": "selected"}
        if self.rule_id:
            data["rule_id"] = self.rule_id
        return data


def _numeric(value):
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return Decimal(str(value))
    return value


@dataclass(frozen=True)
class Compare(Condition):
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in OPERATORS:
            raise ValidationError(f"Unknown comparison operator: {self.op!r}", field="op")
        if self.op in ("in", "not_in") and not isinstance(self.value, (list, tuple, set, frozenset)):
            raise ValidationError(f"Operator {self.op!r} needs a list operand", field="value")

    def matches(self, view, rule_id: str) -> bool:
        if self.field not in view.fields:
            return False
        actual = view.fields[self.field]
        if actual is None:
            return False
        actual = _numeric(actual)

        if self.op in ("in", "not_in"):
            found = any(actual == _numeric(v) for v in self.value)
            return found if self.op == "in" else not found

        expected = _numeric(self.value)
        if self.op == "eq":
            return actual == expected
        if self.op == "ne":
            return actual != expected
        if self.op == "gt":
            return actual > expected
        if self.op == "gte":
            return actual >= expected
        if self.op == "lt":
            return actual < expected
        return actual <= expected

    def to_dict(self) -> dict:
        value = list(self.value) if isinstance(self.value, (tuple, set, frozenset)) else self.value
        return {"type": "compare", "field": self.field, "op": self.op, "value": value}


@dataclass(frozen=True, init=False)
class AllOf(Condition):
    conditions: Tuple[Condition, ...]

    def __init__(self, *conditions: Condition):
        object.__setattr__(self, "conditions", tuple(conditions))

    def matches(self, view, rule_id: str) -> bool:
        return all(c.matches(view, rule_id) for c in self.conditions)

    def to_dict(self) -> dict:
        return {"type": "all", "conditions": [c.to_dict() for c in self.conditions]}


@dataclass(frozen=True, init=False)
class AnyOf(Condition):
    conditions: Tuple[Condition, ...]

    def __init__(self, *conditions: Condition):
        object.__setattr__(self, "conditions", tuple(conditions))

    def matches(self, view, rule_id: str) -> bool:
        return any(c.matches(view, rule_id) for c in self.conditions)

    def to_dict(self) -> dict:
        return {"type": "any", "conditions": [c.to_dict() for c in self.conditions]}


@dataclass(frozen=True)
class Not(Condition):
    condition: Condition

    def matches(self, view, rule_id: str) -> bool:
        return not self.condition.matches(view, rule_id)

    def to_dict(self) -> dict:
        return {"type": "not", "condition": self.condition.to_dict()}


def condition_from_dict(data) -> Condition:
    """Parse a persisted condition document. None means 'always'."""
    if data is None:
        return Always()
    if not isinstance(data, dict) or "type" not in data:
        raise ValidationError(f"Malformed condition: {data!r}", field="condition")

    kind = data["type"]
    if kind == "always":
        return Always()
    if kind == "selected":
        return IsSelected(data.get("rule_id"))
    if kind == "compare":
        try:
            return Compare(data["field"], data["op"], data["value"])
        except KeyError as e:
            raise ValidationError(f"Compare condition is missing {e.args[0]!r}", field="condition")
    if kind in ("all", "any"):
        children = [condition_from_dict(c) for c in data.get("conditions", [])]
        return AllOf(*children) if kind == "all" else AnyOf(*children)
    if kind == "not":
        return Not(condition_from_dict(data.get("condition")))
    raise ValidationError(f"Unknown condition type: {kind!r}", field="condition")
