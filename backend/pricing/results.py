"""
Result containers of one calculation.

RuleExecutionResult is built fresh by RuleEngine.execute() and owned by the
caller. Quote is the public projection returned by a strategy.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional

from .rules import Category, RuleKind, Scope

ZERO = Decimal("0.00")

DECLARED = "declared"
INFERRED = "inferred"


@dataclass(frozen=True)
class AppliedRule:
    id: str
    name: str
    category: Category
    kind: RuleKind
    scope: Scope
    value: Decimal
    is_percentage: bool
    impact: Decimal
    address: str            # pickup | delivery | global
    traceability: str       # declared | inferred
    step_base: Decimal

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "kind": self.kind.value,
            "scope": self.scope.value,
            "value": str(self.value),
            "is_percentage": self.is_percentage,
            "impact": str(self.impact),
            "address": self.address,
            "traceability": self.traceability,
            "step_base": str(self.step_base),
        }


@dataclass(frozen=True)
class ConsumedConstraint:
    id: str
    name: str
    consumed_by: str
    address: str
    reason: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "consumed_by": self.consumed_by,
                "address": self.address, "reason": self.reason}


@dataclass(frozen=True)
class SkippedRule:
    id: str
    name: str
    address: str
    error: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "address": self.address, "error": self.error}


@dataclass
class AddressCosts:
    constraints: List[AppliedRule] = field(default_factory=list)
    additional_services: List[AppliedRule] = field(default_factory=list)
    equipment: List[AppliedRule] = field(default_factory=list)
    reductions: List[AppliedRule] = field(default_factory=list)

    def add(self, applied: AppliedRule) -> None:
        if applied.category == Category.REDUCTION:
            self.reductions.append(applied)
        elif applied.kind == RuleKind.EQUIPMENT:
            self.equipment.append(applied)
        elif applied.kind == RuleKind.SERVICE:
            self.additional_services.append(applied)
        else:
            self.constraints.append(applied)

    @staticmethod
    def _sum(items: List[AppliedRule]) -> Decimal:
        return sum((a.impact for a in items), ZERO)

    @property
    def constraints_total(self) -> Decimal:
        return self._sum(self.constraints)

    @property
    def services_total(self) -> Decimal:
        return self._sum(self.additional_services)

    @property
    def equipment_total(self) -> Decimal:
        return self._sum(self.equipment)

    @property
    def reductions_total(self) -> Decimal:
        return self._sum(self.reductions)

    @property
    def total(self) -> Decimal:
        return (self.constraints_total + self.services_total
                + self.equipment_total + self.reductions_total)

    def to_dict(self) -> dict:
        return {
            "constraints": [a.to_dict() for a in self.constraints],
            "additional_services": [a.to_dict() for a in self.additional_services],
            "equipment": [a.to_dict() for a in self.equipment],
            "reductions": [a.to_dict() for a in self.reductions],
            "total": str(self.total),
        }


@dataclass
class RuleExecutionResult:
    service_type: str
    base_price: Decimal
    options_price: Decimal = ZERO
    pickup_costs: AddressCosts = field(default_factory=AddressCosts)
    delivery_costs: AddressCosts = field(default_factory=AddressCosts)
    global_costs: AddressCosts = field(default_factory=AddressCosts)
    applied_rules: List[AppliedRule] = field(default_factory=list)
    consumed_constraints: List[ConsumedConstraint] = field(default_factory=list)
    declared_constraints: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    inferred_constraints: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    inference_metadata: Dict[str, dict] = field(default_factory=dict)
    skipped_rules: List[SkippedRule] = field(default_factory=list)
    catalog_fallback: bool = False
    total_rules_evaluated: int = 0
    raw_total: Decimal = ZERO
    floor_price: Decimal = ZERO
    minimum_rule_id: Optional[str] = None
    minimum_price_applied: bool = False
    final_price: Decimal = ZERO

    def costs_for(self, address: str) -> AddressCosts:
        return {"pickup": self.pickup_costs, "delivery": self.delivery_costs,
                "global": self.global_costs}[address]

    def record(self, applied: AppliedRule) -> None:
        self.applied_rules.append(applied)
        self.costs_for(applied.address).add(applied)

    def rules_at(self, address: str) -> List[AppliedRule]:
        return [a for a in self.applied_rules if a.address == address]

    def to_dict(self) -> dict:
        """Deterministic snapshot (inference timestamps included as given)."""
        return {
            "service_type": self.service_type,
            "base_price": str(self.base_price),
            "options_price": str(self.options_price),
            "pickup_costs": self.pickup_costs.to_dict(),
            "delivery_costs": self.delivery_costs.to_dict(),
            "global_costs": self.global_costs.to_dict(),
            "applied_rules": [a.to_dict() for a in self.applied_rules],
            "consumed_constraints": [c.to_dict() for c in self.consumed_constraints],
            "declared_constraints": {k: sorted(v) for k, v in sorted(self.declared_constraints.items())},
            "inferred_constraints": {k: sorted(v) for k, v in sorted(self.inferred_constraints.items())},
            "inference_metadata": self.inference_metadata,
            "skipped_rules": [s.to_dict() for s in self.skipped_rules],
            "catalog_fallback": self.catalog_fallback,
            "total_rules_evaluated": self.total_rules_evaluated,
            "raw_total": str(self.raw_total),
            "floor_price": str(self.floor_price),
            "minimum_rule_id": self.minimum_rule_id,
            "minimum_price_applied": self.minimum_price_applied,
            "final_price": str(self.final_price),
        }


@dataclass(frozen=True)
class LineItem:
    label: str
    amount: Decimal
    address: Optional[str] = None
    rule_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {"label": self.label, "amount": float(self.amount),
                "address": self.address, "rule_id": self.rule_id}


@dataclass(frozen=True)
class Quote:
    base_price: Decimal
    total_price: Decimal
    currency: str
    line_items: List[LineItem]

    def to_dict(self) -> dict:
        return {
            "base_price": float(self.base_price),
            "total_price": float(self.total_price),
            "currency": self.currency,
            "line_items": [item.to_dict() for item in self.line_items],
        }
