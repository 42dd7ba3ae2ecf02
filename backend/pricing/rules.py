"""
Business rule representation.

A rule is immutable for the duration of a calculation. Its signed value is
either a percentage of the running subtotal or a fixed euro amount; REDUCTION
rules are always negative, whatever sign the catalog stored.
"""

import enum
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from ..errors import RuleConditionError, ValidationError
from .conditions import Always, Condition
from .context import ServiceType, parse_service_type

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Round to cents, half-up (1.005 -> 1.01)."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class Scope(str, enum.Enum):
    GLOBAL = "GLOBAL"
    PICKUP = "PICKUP"
    DELIVERY = "DELIVERY"
    BOTH = "BOTH"


class Category(str, enum.Enum):
    SURCHARGE = "SURCHARGE"
    REDUCTION = "REDUCTION"
    FIXED = "FIXED"
    MINIMUM = "MINIMUM"


class RuleKind(str, enum.Enum):
    """Which breakdown bucket a non-reduction rule lands in."""
    CONSTRAINT = "CONSTRAINT"
    SERVICE = "SERVICE"
    EQUIPMENT = "EQUIPMENT"


@dataclass(frozen=True)
class RuleOutcome:
    matched: bool
    error: Optional[RuleConditionError] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class Rule:
    id: str
    name: str
    service_type: ServiceType
    value: Decimal
    is_percentage: bool = True
    scope: Scope = Scope.GLOBAL
    category: Category = Category.SURCHARGE
    kind: RuleKind = RuleKind.CONSTRAINT
    condition: Condition = field(default_factory=Always)
    priority: int = 100
    is_active: bool = True

    def __post_init__(self):
        try:
            value = Decimal(str(self.value))
        except ArithmeticError:
            raise ValidationError(f"Rule {self.id} has a non-numeric value: {self.value!r}", field="value")
        if not value.is_finite():
            raise ValidationError(f"Rule {self.id} has a non-finite value", field="value")
        category = Category(self.category)
        if category == Category.REDUCTION:
            value = -abs(value)

        object.__setattr__(self, "id", str(self.id).lower())
        object.__setattr__(self, "value", value)
        object.__setattr__(self, "service_type", parse_service_type(self.service_type))
        object.__setattr__(self, "scope", Scope(self.scope))
        object.__setattr__(self, "category", category)
        object.__setattr__(self, "kind", RuleKind(self.kind))
        if category == Category.MINIMUM:
            object.__setattr__(self, "condition", Always())

    @property
    def sort_key(self):
        return (self.priority, self.id)

    @property
    def is_reduction(self) -> bool:
        return self.category == Category.REDUCTION

    @property
    def is_minimum(self) -> bool:
        return self.category == Category.MINIMUM

    def evaluate(self, view) -> RuleOutcome:
        """Evaluate the condition against one slice. Never raises."""
        try:
            return RuleOutcome(bool(self.condition.matches(view, self.id)))
        except Exception as e:
            return RuleOutcome(False, RuleConditionError(self.id, self.name, e))

    def impact(self, step_base: Decimal) -> Decimal:
        """Euro amount of one application against the subtotal at its step."""
        if self.is_percentage:
            return to_money(step_base * self.value / Decimal(100))
        return to_money(self.value)

    def floor_amount(self, base_price: Decimal) -> Decimal:
        """For MINIMUM rules: the price the quote may not go below."""
        if self.is_percentage:
            return to_money(base_price * self.value / Decimal(100))
        return to_money(self.value)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "service_type": self.service_type.value,
            "value": float(self.value),
            "is_percentage": self.is_percentage,
            "scope": self.scope.value,
            "category": self.category.value,
            "kind": self.kind.value,
            "condition": self.condition.to_dict(),
            "priority": self.priority,
            "is_active": self.is_active,
        }
