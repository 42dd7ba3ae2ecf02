"""
Packing — labour-driven base price.

base = workers × duration × PACKING_WORKER_HOUR_RATE + distance × MOVING_DISTANCE_RATE
       + per-address floor adjustments
"""

from decimal import Decimal
from typing import Dict

from ..pricing.context import CalculationContext, ServiceType
from ..pricing.rules import to_money
from .base import BaseStrategy, _rate


class PackingStrategy(BaseStrategy):

    SERVICE_TYPE = ServiceType.PACKING

    OPTION_PRICES = {
        "packing_materials": 50.0,
        "fragile_items": 40.0,
    }

    def price_components(self, context: CalculationContext) -> Dict[str, Decimal]:
        workers = context.get_value("workers", 1)
        duration = context.get_value("duration", Decimal(1))
        components = {
            "labour_cost": to_money(workers * duration * _rate(self.settings.PACKING_WORKER_HOUR_RATE)),
            "travel_cost": self.travel_cost(context, self.settings.MOVING_DISTANCE_RATE),
        }
        components.update(self.address_adjustments(context))
        return components
