"""
ResultFormatter — projects a RuleExecutionResult into the external response shape.

No pricing decision happens here. grand_total is always the
engine's clamped final_price.
"""

import logging
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional

from .context import ADDRESSES, CalculationContext
from .results import AddressCosts, AppliedRule, RuleExecutionResult
from .rules import Category
from .scope import GLOBAL

logger = logging.getLogger(__name__)

NameResolver = Callable[[Iterable[str]], List[str]]

BUCKETS = ("constraints", "additional_services", "equipment", "reductions")


def money(value) -> float:
    return round(float(value), 2)


class ResultFormatter:

    def __init__(self, currency: str = "EUR"):
        self.currency = currency

    def resolve_names(self, resolver: Optional[NameResolver], rule_ids: Iterable[str]) -> Dict[str, str]:
        """id -> label. A failing or short resolver leaves ids unresolved."""
        wanted = sorted(set(rule_ids))
        if resolver is None or not wanted:
            return {}
        try:
            names = list(resolver(wanted))
        except Exception as e:
            logger.warning(f"Name lookup failed, echoing ids: {e}")
            return {}
        if len(names) != len(wanted):
            logger.debug(f"Name lookup returned {len(names)} labels for {len(wanted)} ids")
        return {i: n for i, n in zip(wanted, names) if n and n != i}

    def format(self, result: RuleExecutionResult, context: CalculationContext,
               components: Optional[Dict[str, Decimal]] = None,
               name_resolver: Optional[NameResolver] = None) -> dict:
        components = components or {}
        all_ids = {a.id for a in result.applied_rules}
        all_ids |= {c.id for c in result.consumed_constraints}
        for selected in result.declared_constraints.values():
            all_ids |= set(selected)
        names = self.resolve_names(name_resolver, all_ids)

        def label(rule_id: str, fallback: Optional[str] = None) -> str:
            return names.get(rule_id) or fallback or rule_id

        def item(applied: AppliedRule) -> dict:
            if applied.category == Category.REDUCTION:
                kind = "reduction"
            else:
                kind = applied.kind.value.lower()
            return {
                "id": applied.id,
                "name": label(applied.id, applied.name),
                "type": kind,
                "impact": money(applied.impact),
                "address": applied.address,
                "traceability": applied.traceability,
                "scope": applied.scope.value,
                "value": float(applied.value),
                "is_percentage": applied.is_percentage,
            }

        def bucket_items(costs: AddressCosts) -> dict:
            return {name: [item(a) for a in getattr(costs, name)] for name in BUCKETS}

        breakdown = {}
        for address in ADDRESSES + (GLOBAL,):
            costs = result.costs_for(address)
            section = bucket_items(costs)
            section["subtotal"] = money(costs.total)
            breakdown[address] = section

        details_by_address = {}
        for address in ADDRESSES:
            section = bucket_items(result.costs_for(address))
            section["declared"] = [
                {"id": i, "name": label(i)} for i in sorted(result.declared_constraints.get(address, ()))
            ]
            section["inferred"] = [
                {"id": i, "name": label(i)} for i in sorted(result.inferred_constraints.get(address, ()))
            ]
            details_by_address[address] = section

        costs = [result.costs_for(a) for a in ADDRESSES + (GLOBAL,)]
        summary = {
            "base": money(result.base_price),
            "travel_cost": money(components.get("travel_cost", 0)),
            "options": money(result.options_price),
            "constraints": money(sum((c.constraints_total for c in costs), Decimal(0))),
            "additional_services": money(sum((c.services_total for c in costs), Decimal(0))),
            "equipment": money(sum((c.equipment_total for c in costs), Decimal(0))),
            "reductions": money(sum((c.reductions_total for c in costs), Decimal(0))),
            "total": money(result.final_price),
            "currency": self.currency,
        }

        echo = context.to_dict()
        for key in ("pickup_selections", "delivery_selections", "global_selections"):
            echo.pop(key, None)
        echo["selections"] = {
            bucket: sorted(result.declared_constraints.get(bucket, ()))
            for bucket in ADDRESSES + (GLOBAL,)
        }

        return {
            "context": echo,
            "summary": summary,
            "base_price_components": {k: money(v) for k, v in components.items()},
            "breakdown": breakdown,
            "applied_rules": [item(a) for a in result.applied_rules],
            "details_by_address": details_by_address,
            "consumed_constraints": [
                dict(c.to_dict(), name=label(c.id, c.name)) for c in result.consumed_constraints
            ],
            "inference_metadata": result.inference_metadata,
            "skipped_rules": [s.to_dict() for s in result.skipped_rules],
            "catalog_fallback": result.catalog_fallback,
            "total_rules_evaluated": result.total_rules_evaluated,
            "minimum_price": {
                "floor_price": money(result.floor_price),
                "raw_total": money(result.raw_total),
                "applied": result.minimum_price_applied,
                "rule_id": result.minimum_rule_id,
            },
            "totals": {
                "by_address": {a: breakdown[a]["subtotal"] for a in ADDRESSES + (GLOBAL,)},
            },
            "grand_total": money(result.final_price),
        }
