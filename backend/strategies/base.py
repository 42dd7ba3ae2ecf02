"""
Abstract base class for all service-family pricing strategies.

Input: CalculationContext (validated) + a rule catalog snapshot
Output: Quote, built from the RuleEngine's RuleExecutionResult

A strategy only computes the base and options prices. Rules, inference and
the minimum-price floor are always the RuleEngine's job.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Optional

from ..config import settings as default_settings
from ..pricing.context import ADDRESSES, CalculationContext, ServiceType
from ..pricing.engine import RuleEngine
from ..pricing.results import LineItem, Quote, RuleExecutionResult
from ..pricing.rules import to_money

logger = logging.getLogger(__name__)


def _rate(value) -> Decimal:
    return Decimal(str(value))


class BaseStrategy(ABC):
    """All service-family strategies inherit from this."""

    SERVICE_TYPE: ServiceType = None

    # option flag -> flat price, override per strategy
    OPTION_PRICES: Dict[str, float] = {}

    def __init__(self, engine: Optional[RuleEngine] = None, settings=None):
        self.settings = settings or default_settings
        self.engine = engine or RuleEngine.from_settings(self.settings)

    @abstractmethod
    def price_components(self, context: CalculationContext) -> Dict[str, Decimal]:
        """
        Named components of the base price, e.g. {"volume_cost": ..., "travel_cost": ...}.
        Their sum is the base price.
        """
        pass

    def calculate_base_price(self, context: CalculationContext) -> Decimal:
        return to_money(sum(self.price_components(context).values(), Decimal(0)))

    def calculate_options_price(self, context: CalculationContext) -> Decimal:
        """Flat prices of the option flags set on the context. Unknown flags cost nothing."""
        total = Decimal(0)
        for name, price in self.OPTION_PRICES.items():
            if context.option(name):
                total += _rate(price)
        return to_money(total)

    def execute(self, context: CalculationContext, catalog) -> RuleExecutionResult:
        context.validate()
        base_price = self.calculate_base_price(context)
        options_price = self.calculate_options_price(context)
        logger.debug(f"{self.SERVICE_TYPE.value} base={base_price} options={options_price}")
        return self.engine.execute(context, base_price, catalog, options_price=options_price)

    def calculate(self, context: CalculationContext, catalog) -> Quote:
        execution = self.execute(context, catalog)
        return self.build_quote(execution, self.price_components(context))

    def build_quote(self, execution: RuleExecutionResult,
                    components: Dict[str, Decimal]) -> Quote:
        items = [self.make_line_item(name, amount) for name, amount in components.items() if amount]
        if execution.options_price:
            items.append(self.make_line_item("options", execution.options_price))
        for applied in execution.applied_rules:
            items.append(self.make_line_item(applied.name, applied.impact,
                                             address=applied.address, rule_id=applied.id))
        if execution.minimum_price_applied:
            items.append(self.make_line_item(
                "minimum_price_adjustment", execution.final_price - execution.raw_total
            ))
        return Quote(
            base_price=execution.base_price,
            total_price=execution.final_price,
            currency=self.settings.CURRENCY,
            line_items=items,
        )

    # --- Helper methods for all strategies ---

    def address_adjustments(self, context: CalculationContext) -> Dict[str, Decimal]:
        """
        Per-address base price adjustments: each floor climbed without elevator
        costs FLOOR_WITHOUT_ELEVATOR_RATE. A long carry distance is not priced here,
        it is inferred by the rule engine and charged by its catalog rule.
        """
        adjustments = {}
        floor_rate = _rate(self.settings.FLOOR_WITHOUT_ELEVATOR_RATE)
        for address in ADDRESSES:
            fields = context.address_fields(address)
            if fields["elevator"] == "no" and fields["floor"] > 0:
                adjustments[f"{address}_floor_surcharge"] = to_money(fields["floor"] * floor_rate)
        return adjustments

    def travel_cost(self, context: CalculationContext, rate) -> Decimal:
        return to_money(context.get_value("distance", Decimal(0)) * _rate(rate))

    def make_line_item(self, label: str, amount, address: str = None, rule_id: str = None) -> LineItem:
        return LineItem(label=label, amount=to_money(amount), address=address, rule_id=rule_id)
