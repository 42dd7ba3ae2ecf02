"""
RuleEngine — evaluates the rule catalog against a calculation context.

Evaluation order:
  1. resolve selections, infer equipment, consume subsumed constraints
  2. GLOBAL rules, once, against the merged slice
  3. PICKUP rules against the pickup slice
  4. DELIVERY rules against the delivery slice
  5. BOTH rules against each address slice independently
  6. REDUCTION rules (any scope)
then the minimum-price floor clamp.

Percentage rules are computed against the subtotal at the start of their step
(base + options + everything applied in earlier steps). Rules within one step
do not compound on each other.
"""

import logging
from decimal import ROUND_CEILING, Decimal
from typing import Dict, FrozenSet, List, Optional, Tuple

from ..errors import CatalogUnavailableError, ValidationError
from .context import ADDRESSES, CalculationContext
from .inference import InferenceEngine
from .results import AppliedRule, DECLARED, INFERRED, RuleExecutionResult, SkippedRule
from .rules import CENT, Rule, Scope, to_money
from .scope import GLOBAL, ContextSlice, ScopeResolver

logger = logging.getLogger(__name__)

DEFAULT_MINIMUM_PRICE_RATIO = Decimal("0.9")

STEPS = (
    ("global", lambda r: not r.is_reduction and r.scope == Scope.GLOBAL),
    ("pickup", lambda r: not r.is_reduction and r.scope == Scope.PICKUP),
    ("delivery", lambda r: not r.is_reduction and r.scope == Scope.DELIVERY),
    ("both", lambda r: not r.is_reduction and r.scope == Scope.BOTH),
    ("reductions", lambda r: r.is_reduction),
)


class RuleEngine:
    """Stateless between calls; one instance can serve concurrent calculations."""

    def __init__(self, scope_resolver: Optional[ScopeResolver] = None,
                 inference: Optional[InferenceEngine] = None,
                 minimum_price_ratio=DEFAULT_MINIMUM_PRICE_RATIO):
        self.scope_resolver = scope_resolver or ScopeResolver()
        self.inference = inference or InferenceEngine()
        self.minimum_price_ratio = Decimal(str(minimum_price_ratio))

    @classmethod
    def from_settings(cls, settings, clock=None) -> "RuleEngine":
        return cls(
            scope_resolver=ScopeResolver(max_ids_per_bucket=settings.MAX_IDS_PER_BUCKET),
            inference=InferenceEngine(
                floor_threshold=settings.FURNITURE_LIFT_FLOOR_THRESHOLD,
                enabled=settings.INFERENCE_ENABLED,
                clock=clock,
                carry_threshold=settings.CARRY_DISTANCE_THRESHOLD,
            ),
            minimum_price_ratio=settings.MINIMUM_PRICE_RATIO,
        )

    def execute(self, context: CalculationContext, base_price, catalog,
                options_price=0) -> RuleExecutionResult:
        context.validate()
        base = to_money(base_price)
        options = to_money(options_price)
        if base < 0 or options < 0:
            raise ValidationError(f"Base and options prices must be non-negative, got {base} / {options}",
                                  field="base_price")

        with context.read_only():
            selections = self.scope_resolver.resolve_selections(context)
            rules, fallback = self._load_rules(catalog, context.service_type)

            result = RuleExecutionResult(
                service_type=context.service_type.value,
                base_price=base,
                options_price=options,
                catalog_fallback=fallback,
            )
            result.declared_constraints = {
                "pickup": selections.pickup,
                "delivery": selections.delivery,
                GLOBAL: selections.global_,
            }

            decisions = self.inference.infer(context, selections)
            carry = self.inference.infer_carry(context, selections)
            inferred = self.inference.inferred_ids(decisions, carry)
            result.inferred_constraints = dict(inferred)
            result.inference_metadata = {
                a: dict(d.to_dict(), long_carry=carry[a].to_dict()) for a, d in decisions.items()
            }

            slices = self.scope_resolver.build_slices(context, selections, inferred)

            pricing_rules = [r for r in rules if not r.is_minimum]
            consumed: Dict[str, FrozenSet[str]] = {}
            for address in ADDRESSES:
                items = self.inference.consume(slices[address], pricing_rules)
                result.consumed_constraints.extend(items)
                consumed[address] = frozenset(c.id for c in items)

            subtotal = base + options
            for step, belongs in STEPS:
                step_rules = sorted((r for r in pricing_rules if belongs(r)), key=lambda r: r.sort_key)
                subtotal += self._run_step(step_rules, slices, consumed, inferred, subtotal, result)

            result.raw_total = to_money(subtotal)
            self._apply_floor(result, rules)

        logger.info(
            f"{result.service_type} quote: base={base} raw={result.raw_total} "
            f"final={result.final_price} applied={len(result.applied_rules)} "
            f"skipped={len(result.skipped_rules)}"
        )
        return result

    def _load_rules(self, catalog, service_type) -> Tuple[List[Rule], bool]:
        rules: List[Rule] = []
        try:
            for scope in Scope:
                rules.extend(catalog.list_active_rules(service_type, scope))
        except CatalogUnavailableError as e:
            logger.warning(f"Rule catalog unavailable, pricing {service_type.value} without rules: {e}")
            return [], True
        return [r for r in rules if r.is_active and r.service_type == service_type], False

    def _run_step(self, step_rules: List[Rule], slices: Dict[str, ContextSlice],
                  consumed: Dict[str, FrozenSet[str]], inferred: Dict[str, FrozenSet[str]],
                  step_base: Decimal, result: RuleExecutionResult) -> Decimal:
        step_total = Decimal("0")
        for rule in step_rules:
            for view in self.scope_resolver.instances(rule, slices):
                if rule.id in consumed.get(view.address, ()):
                    continue
                result.total_rules_evaluated += 1
                outcome = rule.evaluate(view)
                if outcome.failed:
                    logger.warning(f"Skipping rule {rule.id} at {view.address}: {outcome.error}")
                    result.skipped_rules.append(
                        SkippedRule(rule.id, rule.name, view.address, str(outcome.error.cause))
                    )
                    continue
                if not outcome.matched:
                    continue

                impact = rule.impact(step_base)
                result.record(AppliedRule(
                    id=rule.id,
                    name=rule.name,
                    category=rule.category,
                    kind=rule.kind,
                    scope=rule.scope,
                    value=rule.value,
                    is_percentage=rule.is_percentage,
                    impact=impact,
                    address=view.address,
                    traceability=self._traceability(rule.id, view.address, inferred),
                    step_base=step_base,
                ))
                step_total += impact
        return step_total

    @staticmethod
    def _traceability(rule_id: str, address: str, inferred: Dict[str, FrozenSet[str]]) -> str:
        if address == GLOBAL:
            hit = any(rule_id in ids for ids in inferred.values())
        else:
            hit = rule_id in inferred.get(address, ())
        return INFERRED if hit else DECLARED

    def _apply_floor(self, result: RuleExecutionResult, rules: List[Rule]) -> None:
        # rounded up so the floor is never a cent under base * ratio
        floor = (result.base_price * self.minimum_price_ratio).quantize(CENT, rounding=ROUND_CEILING)

        minimums = sorted((r for r in rules if r.is_minimum), key=lambda r: r.sort_key)
        if len(minimums) > 1:
            logger.warning(
                f"{len(minimums)} MINIMUM rules for {result.service_type}, using {minimums[0].id}"
            )
        if minimums:
            result.minimum_rule_id = minimums[0].id
            floor = max(floor, minimums[0].floor_amount(result.base_price))

        result.floor_price = floor
        result.final_price = max(result.raw_total, floor)
        result.minimum_price_applied = result.final_price > result.raw_total
        if result.minimum_price_applied:
            logger.info(f"Final price clamped from {result.raw_total} to floor {floor}")
